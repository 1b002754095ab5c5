"""Polyglot file detection.

A polyglot parses validly as more than one format: an image with a ZIP
archive appended, a PDF whose header sits after a PE stub, an HTML page
that is also a GIF. Rather than parsing every format against every other,
the primary format is walked to its logical end and a small fixed set of
formats commonly smuggled this way is tried at a few anchor offsets:

- byte 0
- the primary format's logical end (where appended content starts)
- each format's own convention (a ZIP located backwards from its
  end-of-central-directory record, a PDF header within the first 1 KiB)

Parsers validate structure, not just magic bytes.
"""

import logging
import re
import struct
import zlib
from collections.abc import Callable

from bytesentinel.config import AnalysisConfig
from bytesentinel.formats.containers import (
    elf_extent,
    find_zip_end,
    gzip_extent,
    logical_end,
    pdf_end,
    pe_extent,
    rar_valid,
    sevenzip_extent,
    valid_zip_local_header,
    zip_archive_start,
)
from bytesentinel.formats.magic import IdentificationResult
from bytesentinel.formats.registry import (
    ACTIVE_CATEGORIES,
    UNKNOWN_FORMAT,
    FormatCategory,
    category_of,
    family_of,
)
from bytesentinel.scanner.cancellation import CancellationToken, checkpoint
from bytesentinel.scanner.results import PolyglotAnalysis, PolyglotComponent

logger = logging.getLogger(__name__)

PDF_HEADER_WINDOW = 1024

HTML_START = re.compile(rb"\s*(?:\xef\xbb\xbf)?\s*<(?:!doctype\s+html|html)\b", re.IGNORECASE)
HTML_END = re.compile(rb"</html\s*>", re.IGNORECASE)
SCRIPT_START = re.compile(rb"#!\s*/[\x21-\x7e]+[^\n\x00]*\n")


def _parse_zip(data: bytes, start: int) -> int | None:
    if not valid_zip_local_header(data, start):
        return None
    eocd = find_zip_end(data)
    if eocd is None or eocd.offset <= start:
        return None
    return eocd.end


def _parse_rar(data: bytes, start: int) -> int | None:
    return len(data) if rar_valid(data, start) else None


def _parse_pdf(data: bytes, start: int) -> int | None:
    if data[start : start + 5] != b"%PDF-":
        return None
    return pdf_end(data, start)


def _parse_html(data: bytes, start: int) -> int | None:
    if not HTML_START.match(data, start):
        return None
    last_end = None
    for match in HTML_END.finditer(data, start):
        last_end = match.end()
    return last_end if last_end is not None else len(data)


def _parse_script(data: bytes, start: int) -> int | None:
    if not SCRIPT_START.match(data, start):
        return None
    return len(data)


# Secondary formats tried at every anchor, in a fixed order
SECONDARY_PARSERS: dict[str, Callable[[bytes, int], int | None]] = {
    "zip": _parse_zip,
    "rar": _parse_rar,
    "7z": sevenzip_extent,
    "gzip": gzip_extent,
    "pe": pe_extent,
    "elf": elf_extent,
    "pdf": _parse_pdf,
    "html": _parse_html,
    "script": _parse_script,
}

# Formats whose presence in a polyglot makes it more dangerous
DANGEROUS_COMPONENT_CATEGORIES = ACTIVE_CATEGORIES | {FormatCategory.ARCHIVE}


def _format_anchors(data: bytes, fmt: str) -> list[int]:
    """Anchor offsets given by a format's own location convention."""
    if fmt == "zip":
        start = zip_archive_start(data)
        return [start] if start is not None and start >= 0 else []
    if fmt == "pdf":
        pos = data.find(b"%PDF-", 0, PDF_HEADER_WINDOW)
        return [pos] if pos >= 0 else []
    return []


def _primary_component(
    data: bytes, identification: IdentificationResult
) -> PolyglotComponent | None:
    fmt = identification.format
    if fmt == UNKNOWN_FORMAT or identification.category == FormatCategory.TEXT:
        return None
    start = identification.offset if fmt == "pdf" else 0
    end = logical_end(data, fmt, start)
    if end is None or end > len(data):
        end = len(data)
    return PolyglotComponent(fmt, identification.category, start, end)


def _ranges_overlap(components: list[PolyglotComponent]) -> bool:
    for i, a in enumerate(components):
        for b in components[i + 1 :]:
            if a.start < b.end and b.start < a.end:
                return True
    return False


def detect_polyglot(
    data: bytes,
    identification: IdentificationResult,
    config: AnalysisConfig | None = None,
    cancel: CancellationToken | None = None,
) -> PolyglotAnalysis:
    """Check whether a buffer parses validly as more than one format.

    Args:
        data: Raw file content
        identification: Result from the magic identifier
        config: Analysis configuration (scan extent)
        cancel: Token checked after each secondary format

    Returns:
        PolyglotAnalysis listing each format that parses and its byte range
    """
    config = config or AnalysisConfig()
    scan = data[: config.max_scan_bytes]
    if not scan:
        return PolyglotAnalysis(detected=False)

    components: list[PolyglotComponent] = []
    families: set[str] = set()

    primary = _primary_component(scan, identification)
    common_anchors = {0}
    if primary is not None:
        components.append(primary)
        families.add(family_of(primary.format))
        if primary.end < len(scan):
            common_anchors.add(primary.end)

    for fmt, parser in SECONDARY_PARSERS.items():
        if family_of(fmt) in families:
            checkpoint(cancel)
            continue

        anchors = sorted(common_anchors.union(_format_anchors(scan, fmt)))
        for anchor in anchors:
            try:
                end = parser(scan, anchor)
            except (struct.error, zlib.error, IndexError):
                end = None
            if end is not None and end > anchor:
                components.append(PolyglotComponent(fmt, category_of(fmt), anchor, end))
                families.add(family_of(fmt))
                break
        checkpoint(cancel)

    components.sort(key=lambda c: (c.start, c.format))
    detected = len(components) >= 2
    if detected:
        logger.info(
            "Polyglot: %s",
            ", ".join(f"{c.format}@{c.start}-{c.end}" for c in components),
        )

    return PolyglotAnalysis(
        detected=detected,
        components=tuple(components),
        overlapping=_ranges_overlap(components),
    )


def has_dangerous_component(analysis: PolyglotAnalysis) -> bool:
    """Whether an executable, script or archive takes part in the polyglot."""
    return any(c.category in DANGEROUS_COMPONENT_CATEGORIES for c in analysis.components)
