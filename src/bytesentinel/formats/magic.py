"""Magic byte detection for file format identification.

Formats are identified from their content, never from a file extension or
declared content type, so a renamed executable is still reported as an
executable. Signatures are written as hex strings where ``??`` matches any
byte, which lets one entry check a container's form type (RIFF....WEBP) or
an ISO-BMFF brand at offset 4.
"""

import logging
from dataclasses import dataclass, field

from bytesentinel.formats.containers import pe_header_offset, zip_flavor
from bytesentinel.formats.registry import (
    UNKNOWN_FORMAT,
    FormatCategory,
    category_of,
    get_format_info,
)

logger = logging.getLogger(__name__)

# Bytes inspected by the plain-text fallback
TEXT_WINDOW = 4096
TEXT_PRINTABLE_RATIO = 0.95
TEXT_CONFIDENCE = 40


@dataclass(frozen=True)
class FormatSignature:
    """A byte pattern that identifies a format.

    ``pattern`` holds one entry per byte; ``None`` is a wildcard.
    ``search_window`` of 0 means the pattern must sit exactly at ``offset``;
    a positive value allows it anywhere in the first ``search_window`` bytes.
    """

    format: str
    pattern: tuple[int | None, ...]
    offset: int = 0
    search_window: int = 0
    priority: int = 0
    confidence: int = 90
    description: str = ""

    @classmethod
    def from_hex(
        cls,
        fmt: str,
        hex_pattern: str,
        offset: int = 0,
        search_window: int = 0,
        priority: int = 0,
        confidence: int = 90,
        description: str = "",
    ) -> "FormatSignature":
        """Build a signature from a hex string such as ``"52 49 46 46 ?? ?? ?? ??"``."""
        tokens = hex_pattern.split()
        pattern = tuple(None if tok == "??" else int(tok, 16) for tok in tokens)
        return cls(fmt, pattern, offset, search_window, priority, confidence, description)

    @property
    def specificity(self) -> int:
        """Number of non-wildcard bytes."""
        return sum(1 for b in self.pattern if b is not None)

    def _matches_at(self, data: bytes, pos: int) -> bool:
        if pos < 0 or pos + len(self.pattern) > len(data):
            return False
        for i, expected in enumerate(self.pattern):
            if expected is not None and data[pos + i] != expected:
                return False
        return True

    def match(self, data: bytes) -> int | None:
        """Return the offset where this signature matches, or None."""
        if not self.pattern:
            return None

        if self.search_window <= 0:
            return self.offset if self._matches_at(data, self.offset) else None

        limit = min(len(data), self.offset + self.search_window)
        if None not in self.pattern:
            pos = data.find(bytes(self.pattern), self.offset, limit + len(self.pattern) - 1)
            return pos if pos >= 0 else None

        for pos in range(self.offset, limit):
            if self._matches_at(data, pos):
                return pos
        return None


def _ascii_hex(text: str) -> str:
    return " ".join(f"{b:02X}" for b in text.encode("ascii"))


def _sig(fmt: str, hex_pattern: str, **kwargs) -> FormatSignature:
    return FormatSignature.from_hex(fmt, hex_pattern, **kwargs)


def _ftyp(fmt: str, brand: str, confidence: int = 92) -> FormatSignature:
    # ISO-BMFF: box size at 0, "ftyp" + major brand at offset 4
    return _sig(fmt, _ascii_hex("ftyp" + brand), offset=4, confidence=confidence,
                description=f"ISO-BMFF brand '{brand.strip()}'")


def _riff(fmt: str, form: str) -> FormatSignature:
    return _sig(fmt, "52 49 46 46 ?? ?? ?? ?? " + _ascii_hex(form), confidence=95,
                description=f"RIFF form '{form.strip()}'")


DEFAULT_SIGNATURES: tuple[FormatSignature, ...] = (
    # Images
    _sig("jpeg", "FF D8 FF", confidence=95, description="JPEG SOI marker"),
    _sig("png", "89 50 4E 47 0D 0A 1A 0A", confidence=99, description="PNG signature"),
    _sig("gif", _ascii_hex("GIF87a"), confidence=98, description="GIF87a header"),
    _sig("gif", _ascii_hex("GIF89a"), confidence=98, description="GIF89a header"),
    _sig("bmp", "42 4D ?? ?? ?? ?? 00 00 00 00", confidence=80,
         description="BMP header with zero reserved fields"),
    _sig("tiff", "49 49 2A 00", confidence=90, description="TIFF little-endian"),
    _sig("tiff", "4D 4D 00 2A", confidence=90, description="TIFF big-endian"),
    _sig("ico", "00 00 01 00", priority=-1, confidence=60, description="ICO directory"),
    _riff("webp", "WEBP"),
    _ftyp("heic", "heic"),
    _ftyp("heic", "heix"),
    _ftyp("heif", "mif1"),
    _ftyp("heif", "msf1"),
    _ftyp("avif", "avif"),
    _ftyp("avif", "avis"),
    _sig("svg", _ascii_hex("http://www.w3.org/2000/svg"), search_window=1024,
         confidence=85, description="SVG namespace"),
    _sig("svg", _ascii_hex("<svg"), search_window=1024, confidence=70,
         description="SVG root element"),
    # Video
    _ftyp("mp4", "isom"),
    _ftyp("mp4", "iso2"),
    _ftyp("mp4", "mp41"),
    _ftyp("mp4", "mp42"),
    _ftyp("mp4", "avc1"),
    _ftyp("mp4", "dash"),
    _ftyp("m4v", "M4V "),
    _ftyp("mov", "qt  "),
    _ftyp("m4a", "M4A "),
    _sig("isobmff", _ascii_hex("ftyp"), offset=4, confidence=70,
         description="ISO-BMFF container, unrecognized brand"),
    _riff("avi", "AVI "),
    _riff("wav", "WAVE"),
    _sig("mkv", "1A 45 DF A3", confidence=90, description="EBML header"),
    _sig("flv", "46 4C 56 01", confidence=90, description="FLV header"),
    # Audio
    _sig("mp3", "49 44 33", confidence=85, description="ID3 tag"),
    _sig("mp3", "FF FB", priority=-1, confidence=50, description="MPEG audio frame sync"),
    _sig("mp3", "FF F3", priority=-1, confidence=50, description="MPEG audio frame sync"),
    _sig("mp3", "FF F2", priority=-1, confidence=50, description="MPEG audio frame sync"),
    _sig("flac", _ascii_hex("fLaC"), confidence=95, description="FLAC stream marker"),
    _sig("ogg", _ascii_hex("OggS"), confidence=95, description="Ogg page header"),
    # Documents
    _sig("pdf", _ascii_hex("%PDF-"), search_window=1024, confidence=95,
         description="PDF header"),
    _sig("ole", "D0 CF 11 E0 A1 B1 1A E1", confidence=95,
         description="OLE compound file header"),
    _sig("rtf", _ascii_hex("{\\rtf"), confidence=95, description="RTF header"),
    _sig("xml", _ascii_hex("<?xml"), confidence=70, description="XML declaration"),
    # Archives
    _sig("zip", "50 4B 03 04", priority=1, confidence=90, description="ZIP local file header"),
    _sig("zip", "50 4B 05 06", confidence=85, description="Empty ZIP archive"),
    _sig("zip", "50 4B 07 08", confidence=85, description="Spanned ZIP archive"),
    _sig("rar", "52 61 72 21 1A 07 00", confidence=98, description="RAR 4 signature"),
    _sig("rar", "52 61 72 21 1A 07 01 00", confidence=98, description="RAR 5 signature"),
    _sig("7z", "37 7A BC AF 27 1C", confidence=98, description="7-Zip signature"),
    _sig("gzip", "1F 8B 08", confidence=90, description="gzip deflate stream"),
    _sig("bzip2", _ascii_hex("BZh"), confidence=80, description="bzip2 stream"),
    _sig("xz", "FD 37 7A 58 5A 00", confidence=98, description="xz stream"),
    _sig("tar", _ascii_hex("ustar"), offset=257, confidence=90, description="POSIX tar header"),
    # Executables
    _sig("pe", _ascii_hex("MZ"), confidence=70, description="DOS MZ header"),
    _sig("elf", "7F 45 4C 46", confidence=95, description="ELF identification"),
    _sig("macho", "FE ED FA CE", confidence=90, description="Mach-O 32-bit"),
    _sig("macho", "FE ED FA CF", confidence=90, description="Mach-O 64-bit"),
    _sig("macho", "CE FA ED FE", confidence=90, description="Mach-O 32-bit (LE)"),
    _sig("macho", "CF FA ED FE", confidence=90, description="Mach-O 64-bit (LE)"),
    _sig("macho", "CA FE BA BE", priority=-1, confidence=70,
         description="Mach-O universal binary"),
    # Scripts and active markup
    _sig("script", _ascii_hex("#!"), confidence=80, description="Interpreter line"),
    _sig("html", _ascii_hex("<!DOCTYPE html"), search_window=1024, confidence=90,
         description="HTML doctype"),
    _sig("html", _ascii_hex("<!doctype html"), search_window=1024, confidence=90,
         description="HTML doctype"),
    _sig("html", _ascii_hex("<html"), search_window=1024, confidence=80,
         description="HTML root element"),
    _sig("html", _ascii_hex("<HTML"), search_window=1024, confidence=80,
         description="HTML root element"),
    _sig("html", _ascii_hex("<script"), search_window=1024, priority=-1, confidence=70,
         description="Script element"),
)


@dataclass(frozen=True)
class IdentificationResult:
    """Result of format identification."""

    format: str
    category: FormatCategory
    mime_type: str
    confidence: int
    offset: int = 0
    length: int = 0
    description: str = ""
    candidates: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def unknown(cls) -> "IdentificationResult":
        """Result for content no signature matched."""
        return cls(
            format=UNKNOWN_FORMAT,
            category=FormatCategory.UNKNOWN,
            mime_type="application/octet-stream",
            confidence=0,
            description="No known signature",
        )

    @property
    def is_unknown(self) -> bool:
        return self.format == UNKNOWN_FORMAT

    def to_dict(self) -> dict:
        """Convert identification to dictionary."""
        return {
            "format": self.format,
            "category": self.category.value,
            "mime_type": self.mime_type,
            "confidence": self.confidence,
            "offset": self.offset,
            "length": self.length,
            "description": self.description,
            "candidates": list(self.candidates),
        }


def _rank_key(item: tuple[FormatSignature, int]) -> tuple:
    sig, pos = item
    return (-sig.specificity, pos, -sig.priority, sig.format)


def _build_result(fmt: str, confidence: int, offset: int, length: int,
                  description: str, candidates: tuple[str, ...]) -> IdentificationResult:
    info = get_format_info(fmt)
    return IdentificationResult(
        format=fmt,
        category=category_of(fmt),
        mime_type=info.mime_type if info else "application/octet-stream",
        confidence=confidence,
        offset=offset,
        length=length,
        description=description or (info.description if info else ""),
        candidates=candidates,
    )


def _looks_like_text(window: bytes) -> bool:
    """Check whether a leading window is (UTF-8) printable text."""
    try:
        text = window.decode("utf-8")
    except UnicodeDecodeError as exc:
        # A multi-byte sequence cut off by the window edge is still text
        if exc.start < len(window) - 3:
            return False
        text = window[: exc.start].decode("utf-8", errors="replace")

    if not text:
        return False
    printable = sum(1 for ch in text if ch.isprintable() or ch in "\t\n\r")
    return printable / len(text) >= TEXT_PRINTABLE_RATIO


def _refine(fmt: str, data: bytes, sig: FormatSignature) -> tuple[str, int, str]:
    """Resolve container formats to their concrete flavor.

    Returns:
        (format, confidence, description)
    """
    if fmt == "zip":
        flavor = zip_flavor(data)
        if flavor:
            return flavor, max(sig.confidence, 90), f"ZIP-based {flavor} container"
        return fmt, sig.confidence, sig.description

    if fmt == "pe":
        if pe_header_offset(data) is not None:
            return fmt, 98, "PE executable (MZ header with valid PE signature)"
        return fmt, sig.confidence, "DOS MZ header without PE signature"

    return fmt, sig.confidence, sig.description


def identify(
    data: bytes,
    signatures: tuple[FormatSignature, ...] = DEFAULT_SIGNATURES,
) -> IdentificationResult:
    """Identify the format of a byte buffer from its content.

    All matching signatures are ranked by specificity, then offset, then
    declared priority, then format id, so the same bytes always produce
    the same result.

    Args:
        data: Raw file content
        signatures: Signature table to match against

    Returns:
        IdentificationResult; unknown with confidence 0 when nothing matches
    """
    if not data:
        return IdentificationResult.unknown()

    matches = []
    for sig in signatures:
        pos = sig.match(data)
        if pos is not None:
            matches.append((sig, pos))

    if not matches:
        if _looks_like_text(data[:TEXT_WINDOW]):
            return _build_result("text", TEXT_CONFIDENCE, 0, 0, "Printable text", ())
        return IdentificationResult.unknown()

    matches.sort(key=_rank_key)

    # One entry per format, keeping each format's best-ranked match
    ranked: list[tuple[FormatSignature, int]] = []
    seen: set[str] = set()
    for sig, pos in matches:
        if sig.format not in seen:
            seen.add(sig.format)
            ranked.append((sig, pos))

    best_sig, best_pos = ranked[0]
    fmt, confidence, description = _refine(best_sig.format, data, best_sig)
    candidates = tuple(sig.format for sig, _ in ranked[1:])

    logger.debug("Identified %s at offset %d (candidates: %s)", fmt, best_pos, candidates)
    return _build_result(
        fmt, confidence, best_pos, len(best_sig.pattern), description, candidates
    )
