"""Embedded payload detection.

Scans for content that belongs to a different, usually active, format
than the file that carries it:

- Executable headers (validated PE, ELF, Mach-O) beyond offset 0
- The EICAR anti-malware test string
- URLs, shell-command text and script blocks
- Shellcode idioms (NOP sleds, known decoder prologues)
- Base64 blobs that decode to an executable or a shell command

Confidence follows pattern specificity: a validated executable header or
an exact test string outranks a heuristic text pattern. Hits of the same
kind that touch or overlap are merged; hits of different kinds are kept
as independent signals.
"""

import base64
import binascii
import logging
import re
from collections.abc import Callable, Iterator
from functools import lru_cache

from bytesentinel.config import AnalysisConfig
from bytesentinel.formats.containers import (
    ELF_MAGIC,
    MACHO_MAGICS,
    elf_extent,
    macho_valid,
    pe_extent,
    pe_header_offset,
)
from bytesentinel.formats.magic import IdentificationResult
from bytesentinel.formats.registry import FormatCategory, family_of
from bytesentinel.scanner.cancellation import CancellationToken, checkpoint
from bytesentinel.scanner.results import EmbeddedPayload, PayloadAnalysis, PayloadKind
from bytesentinel.signatures.patterns import (
    BASE64_EXECUTABLE_CONFIDENCE,
    BASE64_SHELL_CONFIDENCE,
    EICAR_SIGNATURE,
    IP_URL_CONFIDENCE,
    IPV4_HOST,
    NAMESPACE_HOSTS,
    NOP,
    NOP_SLED_CONFIDENCE,
    SCRIPT_PATTERNS,
    SHELL_COMMAND_PATTERNS,
    SHELLCODE_PROLOGUES,
    SLED_FOLLOWING_OPCODES,
    URL_CONFIDENCE,
    URL_PATTERN,
)

logger = logging.getLogger(__name__)

EXECUTABLE_CONFIDENCE = 95
MACHO_CONFIDENCE = 80
TEST_PATTERN_CONFIDENCE = 100

# Links are routine in documents, markup and text
LINK_BEARING_CATEGORIES = frozenset(
    {FormatCategory.DOCUMENT, FormatCategory.TEXT, FormatCategory.SCRIPT}
)
EXPECTED_URL_CONFIDENCE = 10
EXPECTED_IP_URL_CONFIDENCE = 30

# Characters of a base64 run decoded for inspection
BASE64_DECODE_CHARS = 4096

# Matches consumed between cancellation checks
CHECKPOINT_INTERVAL = 256

Hunter = Callable[[bytes, IdentificationResult, AnalysisConfig], Iterator[EmbeddedPayload]]


def _find_all(data: bytes, needle: bytes, start: int = 0) -> Iterator[int]:
    pos = data.find(needle, start)
    while pos >= 0:
        yield pos
        pos = data.find(needle, pos + 1)


def _hunt_executables(
    data: bytes, identification: IdentificationResult, config: AnalysisConfig
) -> Iterator[EmbeddedPayload]:
    """Validated executable headers past offset 0, unlike the outer format."""
    outer = identification.format

    if outer != "pe":
        for pos in _find_all(data, b"MZ", 1):
            pe = pe_header_offset(data, pos)
            if pe is None:
                continue
            end = pe_extent(data, pos) or pe + 24
            yield EmbeddedPayload(
                PayloadKind.EXECUTABLE,
                pos,
                end - pos,
                EXECUTABLE_CONFIDENCE,
                f"Embedded PE executable (PE header at offset {pe})",
            )

    if outer != "elf":
        for pos in _find_all(data, ELF_MAGIC, 1):
            end = elf_extent(data, pos)
            if end is None:
                continue
            yield EmbeddedPayload(
                PayloadKind.EXECUTABLE,
                pos,
                end - pos,
                EXECUTABLE_CONFIDENCE,
                "Embedded ELF executable",
            )

    if outer != "macho":
        for magic in MACHO_MAGICS:
            for pos in _find_all(data, magic, 1):
                if macho_valid(data, pos):
                    yield EmbeddedPayload(
                        PayloadKind.EXECUTABLE,
                        pos,
                        28,
                        MACHO_CONFIDENCE,
                        "Embedded Mach-O header",
                    )


def _hunt_test_pattern(
    data: bytes, identification: IdentificationResult, config: AnalysisConfig
) -> Iterator[EmbeddedPayload]:
    """The EICAR test string, anywhere in the buffer."""
    for pos in _find_all(data, EICAR_SIGNATURE):
        yield EmbeddedPayload(
            PayloadKind.KNOWN_TEST_PATTERN,
            pos,
            len(EICAR_SIGNATURE),
            TEST_PATTERN_CONFIDENCE,
            "EICAR anti-malware test string",
        )


def _is_namespace_host(host: str) -> bool:
    return any(host == ns or host.endswith("." + ns) for ns in NAMESPACE_HOSTS)


def _hunt_urls(
    data: bytes, identification: IdentificationResult, config: AnalysisConfig
) -> Iterator[EmbeddedPayload]:
    """URL-like text; IP-literal hosts score higher, namespace hosts are ignored."""
    expected = identification.category in LINK_BEARING_CATEGORIES or family_of(
        identification.format
    ) == "zip"

    for match in URL_PATTERN.finditer(data):
        raw_host = match.group(1)
        host = raw_host.decode("ascii", errors="replace").lower()
        if _is_namespace_host(host):
            continue

        ip_literal = raw_host.startswith(b"[") or IPV4_HOST.fullmatch(raw_host) is not None
        if expected:
            confidence = EXPECTED_IP_URL_CONFIDENCE if ip_literal else EXPECTED_URL_CONFIDENCE
        else:
            confidence = IP_URL_CONFIDENCE if ip_literal else URL_CONFIDENCE

        url = match.group().decode("ascii", errors="replace")
        description = f"URL with IP-literal host: {url[:80]}" if ip_literal else f"URL: {url[:80]}"
        yield EmbeddedPayload(
            PayloadKind.URL, match.start(), match.end() - match.start(), confidence, description
        )


def _hunt_shell_commands(
    data: bytes, identification: IdentificationResult, config: AnalysisConfig
) -> Iterator[EmbeddedPayload]:
    for _, pattern, confidence, description in SHELL_COMMAND_PATTERNS:
        for match in pattern.finditer(data):
            yield EmbeddedPayload(
                PayloadKind.SHELL_COMMAND,
                match.start(),
                match.end() - match.start(),
                confidence,
                description,
            )


@lru_cache(maxsize=8)
def _nop_sled_pattern(min_length: int) -> re.Pattern:
    return re.compile(re.escape(bytes([NOP])) + b"{%d,}" % min_length)


def _hunt_shellcode(
    data: bytes, identification: IdentificationResult, config: AnalysisConfig
) -> Iterator[EmbeddedPayload]:
    """NOP sleds that lead into code, and known shellcode prologues."""
    # Compilers pad executables with NOP runs followed by ordinary prologues
    if identification.category != FormatCategory.EXECUTABLE:
        for match in _nop_sled_pattern(config.nop_sled_min).finditer(data):
            end = match.end()
            if end < len(data) and data[end] in SLED_FOLLOWING_OPCODES:
                yield EmbeddedPayload(
                    PayloadKind.SHELLCODE,
                    match.start(),
                    end - match.start() + 1,
                    NOP_SLED_CONFIDENCE,
                    f"NOP sled of {end - match.start()} bytes followed by opcode 0x{data[end]:02x}",
                )

    for prologue, confidence, description in SHELLCODE_PROLOGUES:
        for pos in _find_all(data, prologue):
            yield EmbeddedPayload(PayloadKind.SHELLCODE, pos, len(prologue), confidence, description)


def _hunt_scripts(
    data: bytes, identification: IdentificationResult, config: AnalysisConfig
) -> Iterator[EmbeddedPayload]:
    """Script blocks; markup and script files only report encoded PowerShell."""
    in_script = identification.category == FormatCategory.SCRIPT
    for name, pattern, confidence, description in SCRIPT_PATTERNS:
        if in_script and name != "powershell_encoded":
            continue
        for match in pattern.finditer(data):
            yield EmbeddedPayload(
                PayloadKind.SCRIPT,
                match.start(),
                match.end() - match.start(),
                confidence,
                description,
            )


@lru_cache(maxsize=8)
def _base64_pattern(min_length: int) -> re.Pattern:
    return re.compile(rb"[A-Za-z0-9+/]{%d,}={0,2}" % min_length)


def _classify_decoded(decoded: bytes) -> tuple[int, str] | None:
    if decoded.startswith(b"MZ") and pe_header_offset(decoded) is not None:
        return BASE64_EXECUTABLE_CONFIDENCE, "Base64-encoded PE executable"
    if decoded.startswith(ELF_MAGIC):
        return BASE64_EXECUTABLE_CONFIDENCE, "Base64-encoded ELF executable"
    for _, pattern, _, description in SHELL_COMMAND_PATTERNS:
        if pattern.search(decoded):
            return BASE64_SHELL_CONFIDENCE, f"Base64-encoded shell command ({description})"
    return None


def _hunt_base64(
    data: bytes, identification: IdentificationResult, config: AnalysisConfig
) -> Iterator[EmbeddedPayload]:
    """Base64 runs whose decoded head is an executable or a shell command."""
    for match in _base64_pattern(config.min_base64_length).finditer(data):
        head = match.group()[:BASE64_DECODE_CHARS].rstrip(b"=")
        head = head[: len(head) - len(head) % 4]
        try:
            decoded = base64.b64decode(head)
        except (binascii.Error, ValueError):
            continue
        verdict = _classify_decoded(decoded)
        if verdict is None:
            continue
        confidence, description = verdict
        yield EmbeddedPayload(
            PayloadKind.BASE64_BLOB,
            match.start(),
            match.end() - match.start(),
            confidence,
            description,
        )


_HUNTERS: tuple[Hunter, ...] = (
    _hunt_executables,
    _hunt_test_pattern,
    _hunt_urls,
    _hunt_shell_commands,
    _hunt_shellcode,
    _hunt_scripts,
    _hunt_base64,
)


def merge_hits(hits: list[EmbeddedPayload]) -> list[EmbeddedPayload]:
    """Merge same-kind hits that overlap or touch; different kinds stay separate."""
    merged: list[EmbeddedPayload] = []
    for hit in sorted(hits, key=lambda h: (h.kind.value, h.offset, -h.length)):
        if merged:
            last = merged[-1]
            if last.kind == hit.kind and hit.offset <= last.offset + last.length:
                end = max(last.offset + last.length, hit.offset + hit.length)
                best = last if last.confidence >= hit.confidence else hit
                merged[-1] = EmbeddedPayload(
                    last.kind,
                    last.offset,
                    end - last.offset,
                    best.confidence,
                    best.description,
                )
                continue
        merged.append(hit)
    return merged


def _cap_per_kind(hits: list[EmbeddedPayload], limit: int) -> list[EmbeddedPayload]:
    by_kind: dict[PayloadKind, list[EmbeddedPayload]] = {}
    for hit in hits:
        by_kind.setdefault(hit.kind, []).append(hit)
    kept = []
    for kind_hits in by_kind.values():
        kind_hits.sort(key=lambda h: (-h.confidence, h.offset))
        kept.extend(kind_hits[:limit])
    return kept


def payload_risk(payloads: tuple[EmbeddedPayload, ...] | list[EmbeddedPayload], kind_bonus: int) -> int:
    """Highest hit confidence plus a bonus per additional distinct kind, capped at 100."""
    if not payloads:
        return 0
    kinds = {p.kind for p in payloads}
    highest = max(p.confidence for p in payloads)
    return min(100, highest + kind_bonus * (len(kinds) - 1))


def hunt_payloads(
    data: bytes,
    identification: IdentificationResult,
    config: AnalysisConfig | None = None,
    cancel: CancellationToken | None = None,
) -> PayloadAnalysis:
    """Scan a buffer for embedded payloads.

    Args:
        data: Raw file content
        identification: Result from the magic identifier
        config: Analysis configuration (scan extent, limits)
        cancel: Token checked while each pattern family is scanned

    Returns:
        PayloadAnalysis with hits ordered by offset
    """
    config = config or AnalysisConfig()
    scan = data[: config.max_scan_bytes]

    hits: list[EmbeddedPayload] = []
    for hunter in _HUNTERS:
        # Each hunter yields one kind; a flood of matches stops at the limit
        for count, hit in enumerate(hunter(scan, identification, config), 1):
            hits.append(hit)
            if count % CHECKPOINT_INTERVAL == 0:
                checkpoint(cancel)
            if count >= config.max_pattern_matches:
                logger.debug(
                    "%s stopped after %d matches", hunter.__name__, config.max_pattern_matches
                )
                break
        checkpoint(cancel)

    kept = _cap_per_kind(merge_hits(hits), config.max_hits_per_kind)
    kept.sort(key=lambda h: (h.offset, h.kind.value, -h.confidence, h.length))

    if kept:
        logger.info(
            "Embedded payloads in %s: %s",
            identification.format,
            ", ".join(sorted({h.kind.value for h in kept})),
        )

    return PayloadAnalysis(
        payloads=tuple(kept),
        overall_risk=payload_risk(kept, config.policy.payload_kind_bonus),
    )
