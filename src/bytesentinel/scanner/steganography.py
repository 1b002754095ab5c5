"""Steganography detection.

Looks for content hidden inside an otherwise valid carrier:
- Trailing data after the format's logical end (PNG IEND, JPEG EOI, ...)
- Least-significant-bit embedding in raster images
- Printable text runs inside formats that should not carry text
- PNG text chunks with unusual keywords or oversized bodies

Each technique reports its own confidence. The overall confidence is the
maximum, not a sum, because the techniques are not independent evidence
of the same hiding method.
"""

import io
import logging
import re
import struct
import zlib
from functools import lru_cache

import numpy as np
from PIL import Image

from bytesentinel.config import AnalysisConfig
from bytesentinel.formats.containers import (
    iter_png_chunks,
    jpeg_metadata_ranges,
    logical_end,
)
from bytesentinel.formats.magic import IdentificationResult, identify
from bytesentinel.formats.registry import FormatCategory, family_of
from bytesentinel.scanner.cancellation import CancellationToken, checkpoint
from bytesentinel.scanner.entropy import shannon_entropy
from bytesentinel.scanner.results import (
    ExtractedArtifacts,
    SteganographyAnalysis,
    StegoTechnique,
    TechniqueFinding,
)
from bytesentinel.signatures.patterns import (
    AI_PNG_KEYWORDS,
    METADATA_PNG_KEYWORDS,
    PNG_TEXT_CHUNK_TYPES,
    PNG_TEXT_MAX_BODY,
    PNG_TEXT_SUSPICIOUS_CONFIDENCE,
    STANDARD_PNG_KEYWORDS,
)

logger = logging.getLogger(__name__)

# Formats with a defined end-of-stream marker
TRAILING_DATA_FORMATS = frozenset({"png", "jpeg", "gif", "pdf", "bmp"})

TRAILING_BASE_CONFIDENCE = 70
TRAILING_SIGNATURE_BONUS = 20
TRAILING_MAX_CONFIDENCE = 95
TRAILING_PADDING_CONFIDENCE = 30

# LSB analysis
LSB_FORMATS = frozenset({"png", "bmp"})
LSB_IMAGE_MODES = {"L": 1, "LA": 1, "RGB": 3, "RGBA": 3}  # mode -> color samples per pixel
LSB_MAX_SAMPLES = 512 * 1024
LSB_ENTROPY_THRESHOLD = 0.97
LSB_MIN_DELTA = 0.05
LSB_BASE_CONFIDENCE = 50
LSB_DELTA_FACTOR = 350
LSB_MAX_CONFIDENCE = 85
LSB_MESSAGE_CONFIDENCE = 80
LSB_MIN_MESSAGE = 6

# Printable runs
PRINTABLE_RUN_CATEGORIES = frozenset(
    {FormatCategory.IMAGE, FormatCategory.VIDEO, FormatCategory.AUDIO, FormatCategory.ARCHIVE}
)
# Archives whose members are stored as-is legitimately contain text
TEXT_CARRYING_ARCHIVES = frozenset({"zip", "tar"})
PRINTABLE_RUN_BASE = 35
PRINTABLE_RUN_STEP = 10
PRINTABLE_RUN_MAX_CONFIDENCE = 75
PRINTABLE_RUN_MIN_ALNUM = 8
METADATA_MARKERS = (b"xmpmeta", b"<?xpacket", b"<rdf:", b"<?xml", b"XMP Data")


class _ArtifactCollector:
    """Accumulates extracted artifacts within fixed count and size limits."""

    def __init__(self, max_items: int, max_bytes: int):
        self.max_items = max_items
        self.max_bytes = max_bytes
        self.messages: list[str] = []
        self.samples: list[str] = []
        self.offsets: list[int] = []
        self.hidden_bytes = 0

    def add(self, offset: int, raw: bytes, message: str | None = None, hidden: int = 0) -> None:
        self.hidden_bytes += hidden
        if len(self.offsets) < self.max_items:
            self.offsets.append(offset)
        if len(self.samples) < self.max_items and raw:
            self.samples.append(raw[: self.max_bytes].hex())
        if message and len(self.messages) < self.max_items:
            self.messages.append(message[: self.max_bytes])

    def build(self) -> ExtractedArtifacts | None:
        if not (self.messages or self.samples or self.offsets or self.hidden_bytes):
            return None
        return ExtractedArtifacts(
            messages=tuple(self.messages),
            samples=tuple(self.samples),
            hidden_bytes=self.hidden_bytes,
            offsets=tuple(self.offsets),
        )


def _as_text(raw: bytes) -> str | None:
    """Decode bytes that are entirely printable ASCII, else None."""
    if raw and all(0x20 <= b < 0x7F or b in (0x09, 0x0A, 0x0D) for b in raw):
        return raw.decode("ascii")
    return None


# ---------------------------------------------------------------------------
# Trailing data
# ---------------------------------------------------------------------------


def _check_trailing_data(
    data: bytes,
    identification: IdentificationResult,
    config: AnalysisConfig,
    artifacts: _ArtifactCollector,
) -> TechniqueFinding | None:
    """Detect bytes appended after the format's logical end."""
    fmt = identification.format
    if fmt not in TRAILING_DATA_FORMATS and family_of(fmt) != "zip":
        return None

    end = logical_end(data, fmt, identification.offset if fmt == "pdf" else 0)
    if end is None or end >= len(data):
        return None

    trailing = data[end:]
    if len(trailing) <= config.trailing_data_min:
        return None

    evidence = [f"{len(trailing)} bytes after end of {fmt} data at offset {end}"]
    if trailing.strip(b"\x00") == b"" or trailing.strip(b"\xff") == b"":
        evidence.append("Trailing bytes are uniform padding")
        return TechniqueFinding(
            StegoTechnique.TRAILING_DATA, TRAILING_PADDING_CONFIDENCE, tuple(evidence)
        )

    confidence = TRAILING_BASE_CONFIDENCE
    inner = identify(trailing[:4096])
    if inner.category not in (FormatCategory.UNKNOWN, FormatCategory.TEXT):
        confidence = min(TRAILING_MAX_CONFIDENCE, confidence + TRAILING_SIGNATURE_BONUS)
        evidence.append(f"Trailing data begins with a {inner.format} signature")

    artifacts.add(
        end,
        trailing,
        message=_as_text(trailing[: artifacts.max_bytes]),
        hidden=len(trailing),
    )
    return TechniqueFinding(StegoTechnique.TRAILING_DATA, confidence, tuple(evidence))


# ---------------------------------------------------------------------------
# LSB embedding
# ---------------------------------------------------------------------------


def _image_samples(data: bytes, max_pixels: int) -> np.ndarray | None:
    """Color samples of a decoded raster image in row-major order.

    Alpha is dropped. Images larger than ``max_pixels`` are not decoded:
    the size check runs on the header, before any pixel data is inflated.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            color_channels = LSB_IMAGE_MODES.get(img.mode)
            if color_channels is None:
                return None
            width, height = img.size
            if width * height > max_pixels:
                logger.debug("LSB analysis skipped for %dx%d image", width, height)
                return None
            img.load()
            pixels = np.asarray(img)
    except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as e:
        logger.debug("Image decode failed: %s", e)
        return None

    if pixels.ndim == 3:
        pixels = pixels[:, :, :color_channels]
    return pixels.reshape(-1)[:LSB_MAX_SAMPLES]


def _bit_plane_entropy(samples: np.ndarray, bit: int) -> float:
    """Normalized (0-1) entropy of one bit plane, packed eight bits per byte."""
    plane = (samples >> bit) & 1
    usable = len(plane) - len(plane) % 8
    return shannon_entropy(np.packbits(plane[:usable]).tobytes()) / 8.0


def _lsb_message(samples: np.ndarray, max_bytes: int) -> str | None:
    """Read a NUL-terminated printable message from the head of the LSB stream."""
    count = min(len(samples) // 8, max_bytes + 1)
    stream = np.packbits(samples[: count * 8] & 1).tobytes()
    head, nul, _ = stream.partition(b"\x00")
    if not nul:
        return None
    text = _as_text(head)
    if text and len(text) >= LSB_MIN_MESSAGE:
        return text
    return None


def _check_lsb(
    data: bytes,
    identification: IdentificationResult,
    config: AnalysisConfig,
    artifacts: _ArtifactCollector,
) -> TechniqueFinding | None:
    """Compare LSB-plane entropy with the next plane up."""
    if identification.format not in LSB_FORMATS:
        return None
    samples = _image_samples(data, config.lsb_max_pixels)
    if samples is None or samples.size == 0:
        return None

    confidence = 0
    evidence = []

    message = _lsb_message(samples, artifacts.max_bytes)
    if message:
        confidence = LSB_MESSAGE_CONFIDENCE
        evidence.append(f"NUL-terminated message of {len(message)} characters in LSB plane")
        artifacts.add(0, message.encode("ascii"), message=message, hidden=len(message))

    if len(samples) >= config.lsb_min_samples:
        lsb = _bit_plane_entropy(samples, 0)
        plane1 = _bit_plane_entropy(samples, 1)
        delta = lsb - plane1
        if lsb >= LSB_ENTROPY_THRESHOLD and delta >= LSB_MIN_DELTA:
            plane_conf = min(LSB_MAX_CONFIDENCE, int(LSB_BASE_CONFIDENCE + delta * LSB_DELTA_FACTOR))
            confidence = max(confidence, plane_conf)
            evidence.append(
                f"LSB plane entropy {lsb:.3f} exceeds bit plane 1 ({plane1:.3f}) "
                f"over {len(samples)} samples"
            )

    if not confidence:
        return None
    return TechniqueFinding(StegoTechnique.LSB_ANOMALY, confidence, tuple(evidence))


# ---------------------------------------------------------------------------
# Printable runs
# ---------------------------------------------------------------------------


@lru_cache(maxsize=8)
def _printable_run_pattern(min_run: int) -> re.Pattern:
    return re.compile(rb"[\x20-\x7e\t\r\n]{%d,}" % min_run)


def _metadata_ranges(data: bytes, fmt: str) -> list[tuple[int, int]]:
    """Byte ranges where text is expected (metadata segments)."""
    if fmt == "jpeg":
        return jpeg_metadata_ranges(data)
    if fmt == "png":
        return [
            (chunk.offset, chunk.end)
            for chunk in iter_png_chunks(data)
            if chunk.type in PNG_TEXT_CHUNK_TYPES
        ]
    if fmt == "mp3" and data[:3] == b"ID3" and len(data) >= 10:
        # ID3v2 size is a 28-bit syncsafe integer
        size = 0
        for b in data[6:10]:
            size = (size << 7) | (b & 0x7F)
        return [(0, 10 + size)]
    return []


def _check_printable_runs(
    data: bytes,
    identification: IdentificationResult,
    config: AnalysisConfig,
    artifacts: _ArtifactCollector,
) -> TechniqueFinding | None:
    """Find long printable runs in formats that should not carry text."""
    fmt = identification.format
    if identification.category not in PRINTABLE_RUN_CATEGORIES:
        return None
    if family_of(fmt) in TEXT_CARRYING_ARCHIVES:
        return None

    excluded = _metadata_ranges(data, fmt)
    runs = []
    for match in _printable_run_pattern(config.min_printable_run).finditer(data):
        start, end = match.span()
        if any(lo <= start and end <= hi for lo, hi in excluded):
            continue
        run = match.group()
        if any(marker in run for marker in METADATA_MARKERS):
            continue
        if sum(1 for b in run if chr(b).isalnum()) < PRINTABLE_RUN_MIN_ALNUM:
            continue
        if len(set(run)) == 1:
            continue
        runs.append((start, run))

    if not runs:
        return None

    for start, run in runs:
        artifacts.add(start, run, message=run.decode("ascii"))

    confidence = min(PRINTABLE_RUN_MAX_CONFIDENCE, PRINTABLE_RUN_BASE + PRINTABLE_RUN_STEP * len(runs))
    evidence = [f"{len(runs)} printable run(s) of {config.min_printable_run}+ bytes in {fmt} data"]
    evidence.extend(f"{len(run)} bytes at offset {start}" for start, run in runs[:3])
    return TechniqueFinding(StegoTechnique.PRINTABLE_RUNS, confidence, tuple(evidence))


# ---------------------------------------------------------------------------
# PNG text chunks
# ---------------------------------------------------------------------------


def _png_text_body(ctype: bytes, body: bytes, limit: int) -> tuple[str, bytes] | None:
    """Split a text chunk into (keyword, text bytes), inflating compressed text."""
    keyword, sep, rest = body.partition(b"\x00")
    if not sep:
        return None
    name = keyword.decode("latin-1")

    if ctype == b"tEXt":
        return name, rest

    if ctype == b"zTXt":
        compressed = rest[1:]
    else:
        # iTXt: compression flag, method, language\0, translated keyword\0, text
        if len(rest) < 2:
            return None
        flag = rest[0]
        parts = rest[2:].split(b"\x00", 2)
        if len(parts) < 3:
            return None
        if not flag:
            return name, parts[2]
        compressed = parts[2]

    try:
        return name, zlib.decompressobj().decompress(compressed, limit)
    except zlib.error:
        return name, b""


def _check_png_text(
    data: bytes,
    identification: IdentificationResult,
    config: AnalysisConfig,
    artifacts: _ArtifactCollector,
) -> TechniqueFinding | None:
    """Flag PNG text chunks with non-standard keywords or oversized bodies."""
    if identification.format != "png":
        return None

    evidence = []
    for chunk in iter_png_chunks(data):
        if chunk.type not in PNG_TEXT_CHUNK_TYPES:
            continue
        body = data[chunk.data_offset : chunk.data_offset + chunk.length]
        parsed = _png_text_body(chunk.type, body, config.max_scan_bytes)
        if parsed is None:
            evidence.append(f"Malformed {chunk.type.decode()} chunk at offset {chunk.offset}")
            continue

        keyword, text = parsed
        if keyword in AI_PNG_KEYWORDS or keyword in METADATA_PNG_KEYWORDS:
            continue
        if keyword in STANDARD_PNG_KEYWORDS and len(text) <= PNG_TEXT_MAX_BODY:
            continue

        if keyword not in STANDARD_PNG_KEYWORDS:
            reason = f"non-standard keyword '{keyword[:40]}'"
        else:
            reason = f"{len(text)}-byte body"
        evidence.append(f"{chunk.type.decode()} chunk at offset {chunk.offset}: {reason}")
        artifacts.add(
            chunk.offset,
            text,
            message=_as_text(text[: artifacts.max_bytes]),
            hidden=len(text),
        )

    if not evidence:
        return None
    return TechniqueFinding(
        StegoTechnique.PNG_TEXT_CHUNKS, PNG_TEXT_SUSPICIOUS_CONFIDENCE, tuple(evidence)
    )


_TECHNIQUES = (
    _check_trailing_data,
    _check_lsb,
    _check_printable_runs,
    _check_png_text,
)


def detect_steganography(
    data: bytes,
    identification: IdentificationResult,
    config: AnalysisConfig | None = None,
    cancel: CancellationToken | None = None,
) -> SteganographyAnalysis:
    """Scan a buffer for content hidden inside its carrier format.

    Args:
        data: Raw file content
        identification: Result from the magic identifier
        config: Analysis configuration (scan extent, thresholds, artifact caps)
        cancel: Token checked after each technique

    Returns:
        SteganographyAnalysis with techniques ordered by confidence
    """
    config = config or AnalysisConfig()
    scan = data[: config.max_scan_bytes]
    artifacts = _ArtifactCollector(config.max_artifacts, config.max_artifact_bytes)

    findings = []
    for technique in _TECHNIQUES:
        try:
            finding = technique(scan, identification, config, artifacts)
        except (struct.error, IndexError) as e:
            # Structure we could not walk is not evidence of anything
            logger.debug("%s skipped on malformed input: %s", technique.__name__, e)
            finding = None
        if finding is not None:
            findings.append(finding)
        checkpoint(cancel)

    findings.sort(key=lambda f: (-f.confidence, f.technique.value))
    confidence = findings[0].confidence if findings else 0
    detected = confidence > config.stego_detection_threshold

    if detected:
        logger.info(
            "Steganography indicators in %s: %s",
            identification.format,
            ", ".join(f.technique.value for f in findings),
        )

    return SteganographyAnalysis(
        detected=detected,
        confidence=confidence,
        techniques=tuple(findings),
        artifacts=artifacts.build(),
    )
