"""Structural walkers for container formats.

These parsers validate structure rather than just magic bytes: a JPEG is
walked segment by segment to its EOI marker, a ZIP is located backwards
from its end-of-central-directory record, a PE header is followed through
``e_lfanew`` to its section table. Every function takes a start offset so
the same walker can be used on content embedded inside another file.

Malformed input never raises; walkers return None (or stop iterating).
"""

import io
import struct
import zipfile
import zlib
from collections.abc import Iterator
from dataclasses import dataclass

from bytesentinel.formats.registry import family_of

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
GIF_SIGNATURES = (b"GIF87a", b"GIF89a")
ZIP_LOCAL_HEADER = b"PK\x03\x04"
ZIP_CENTRAL_HEADER = b"PK\x01\x02"
ZIP_END_RECORD = b"PK\x05\x06"
SEVENZIP_SIGNATURE = b"7z\xbc\xaf\x27\x1c"
RAR4_SIGNATURE = b"Rar!\x1a\x07\x00"
RAR5_SIGNATURE = b"Rar!\x1a\x07\x01\x00"
ELF_MAGIC = b"\x7fELF"
MACHO_MAGICS = {
    b"\xfe\xed\xfa\xce": ">",
    b"\xfe\xed\xfa\xcf": ">",
    b"\xce\xfa\xed\xfe": "<",
    b"\xcf\xfa\xed\xfe": "<",
}

# Compression methods seen in real ZIP archives
ZIP_METHODS = frozenset({0, 1, 6, 8, 9, 12, 14, 19, 93, 95, 96, 97, 98, 99})

MAX_PE_HEADER_OFFSET = 0x10000
MAX_PE_SECTIONS = 96
GZIP_WINDOW_BYTES = 256 * 1024
GZIP_INFLATE_LIMIT = 4 * 1024 * 1024


# ---------------------------------------------------------------------------
# PNG
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PngChunk:
    """A PNG chunk located in a buffer."""

    type: bytes
    offset: int  # Start of the length field
    length: int

    @property
    def data_offset(self) -> int:
        return self.offset + 8

    @property
    def end(self) -> int:
        return self.offset + 12 + self.length


def iter_png_chunks(data: bytes, start: int = 0) -> Iterator[PngChunk]:
    """Yield PNG chunks in order, stopping after IEND or at the first bad chunk."""
    if data[start : start + 8] != PNG_SIGNATURE:
        return

    pos = start + 8
    n = len(data)
    while pos + 12 <= n:
        length, ctype = struct.unpack_from(">I4s", data, pos)
        if not ctype.isalpha() or pos + 12 + length > n:
            return
        chunk = PngChunk(ctype, pos, length)
        yield chunk
        if ctype == b"IEND":
            return
        pos = chunk.end


def png_end(data: bytes, start: int = 0) -> int | None:
    """Offset just past the IEND chunk, or None if IEND is never reached."""
    for chunk in iter_png_chunks(data, start):
        if chunk.type == b"IEND":
            return chunk.end
    return None


# ---------------------------------------------------------------------------
# JPEG
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class JpegSegment:
    marker: int
    offset: int
    end: int


def _skip_entropy_coded(data: bytes, pos: int) -> int | None:
    """Find the next real marker after entropy-coded scan data."""
    n = len(data)
    while True:
        idx = data.find(b"\xff", pos)
        if idx < 0 or idx + 1 >= n:
            return None
        nxt = data[idx + 1]
        if nxt == 0x00 or 0xD0 <= nxt <= 0xD7:
            # Stuffed byte or restart marker: still inside the scan
            pos = idx + 2
        elif nxt == 0xFF:
            pos = idx + 1
        else:
            return idx


def iter_jpeg_segments(data: bytes, start: int = 0) -> Iterator[JpegSegment]:
    """Yield JPEG marker segments up to and including EOI."""
    if data[start : start + 2] != b"\xff\xd8":
        return

    yield JpegSegment(0xD8, start, start + 2)
    pos = start + 2
    n = len(data)
    while pos + 2 <= n:
        if data[pos] != 0xFF:
            return
        marker = data[pos + 1]
        if marker == 0xFF:
            pos += 1
            continue
        if marker == 0xD9:
            yield JpegSegment(marker, pos, pos + 2)
            return
        if marker == 0x01 or 0xD0 <= marker <= 0xD7:
            pos += 2
            continue
        if pos + 4 > n:
            return
        (seg_len,) = struct.unpack_from(">H", data, pos + 2)
        seg_end = pos + 2 + seg_len
        if seg_len < 2 or seg_end > n:
            return
        yield JpegSegment(marker, pos, seg_end)
        if marker == 0xDA:
            next_marker = _skip_entropy_coded(data, seg_end)
            if next_marker is None:
                return
            pos = next_marker
        else:
            pos = seg_end


def jpeg_end(data: bytes, start: int = 0) -> int | None:
    """Offset just past the EOI marker that closes the image."""
    for segment in iter_jpeg_segments(data, start):
        if segment.marker == 0xD9:
            return segment.end
    return None


def jpeg_metadata_ranges(data: bytes) -> list[tuple[int, int]]:
    """Byte ranges of APPn and COM segments (EXIF, XMP, ICC, comments)."""
    return [
        (seg.offset, seg.end)
        for seg in iter_jpeg_segments(data)
        if 0xE0 <= seg.marker <= 0xEF or seg.marker == 0xFE
    ]


# ---------------------------------------------------------------------------
# GIF
# ---------------------------------------------------------------------------


def _skip_sub_blocks(data: bytes, pos: int) -> int | None:
    n = len(data)
    while pos < n:
        size = data[pos]
        pos += 1
        if size == 0:
            return pos
        pos += size
    return None


def gif_end(data: bytes, start: int = 0) -> int | None:
    """Offset just past the GIF trailer (0x3B), found by walking blocks."""
    if data[start : start + 6] not in GIF_SIGNATURES:
        return None

    n = len(data)
    pos = start + 6
    if pos + 7 > n:
        return None
    flags = data[pos + 4]
    pos += 7
    if flags & 0x80:
        pos += 3 * (2 << (flags & 0x07))

    while pos is not None and pos < n:
        block = data[pos]
        if block == 0x3B:
            return pos + 1
        if block == 0x21:
            # Extension: introducer, label, sub-blocks
            pos = _skip_sub_blocks(data, pos + 2)
        elif block == 0x2C:
            if pos + 10 > n:
                return None
            flags = data[pos + 9]
            pos += 10
            if flags & 0x80:
                pos += 3 * (2 << (flags & 0x07))
            # LZW minimum code size, then image sub-blocks
            pos = _skip_sub_blocks(data, pos + 1)
        else:
            return None
    return None


# ---------------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------------


def pdf_end(data: bytes, start: int = 0) -> int | None:
    """Offset past the last ``%%EOF`` marker and its line ending."""
    if data.find(b"%PDF-", start, start + 1024) < 0:
        return None
    idx = data.rfind(b"%%EOF", start)
    if idx < 0:
        return None
    end = idx + 5
    while end < len(data) and data[end] in (0x0D, 0x0A) and end < idx + 7:
        end += 1
    return end


# ---------------------------------------------------------------------------
# ZIP
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ZipEndRecord:
    """End-of-central-directory record."""

    offset: int
    entries: int
    cd_size: int
    cd_offset: int
    comment_length: int

    @property
    def end(self) -> int:
        return self.offset + 22 + self.comment_length

    @property
    def archive_start(self) -> int:
        """Where the archive begins when its offsets are relative to itself."""
        return self.offset - self.cd_size - self.cd_offset


def find_zip_end(data: bytes) -> ZipEndRecord | None:
    """Locate the end-of-central-directory record, searching backwards."""
    n = len(data)
    floor = max(0, n - 22 - 0xFFFF)
    pos = data.rfind(ZIP_END_RECORD, floor)
    while pos >= 0:
        if pos + 22 <= n:
            (_, _, _, _, entries, cd_size, cd_offset, comment_len) = struct.unpack_from(
                "<IHHHHIIH", data, pos
            )
            if pos + 22 + comment_len <= n and cd_size + cd_offset <= pos:
                return ZipEndRecord(pos, entries, cd_size, cd_offset, comment_len)
        pos = data.rfind(ZIP_END_RECORD, floor, pos)
    return None


def valid_zip_local_header(data: bytes, pos: int) -> bool:
    """Check a local file header's fields are sane, not just its magic."""
    if pos < 0 or data[pos : pos + 4] != ZIP_LOCAL_HEADER or pos + 30 > len(data):
        return False
    version, _, method = struct.unpack_from("<HHH", data, pos + 4)
    name_len, extra_len = struct.unpack_from("<HH", data, pos + 26)
    if version > 100 or method not in ZIP_METHODS:
        return False
    if name_len == 0 or name_len > 1024:
        return False
    return pos + 30 + name_len + extra_len <= len(data)


def zip_archive_start(data: bytes) -> int | None:
    """Offset of the first local header of the archive that ends the buffer."""
    eocd = find_zip_end(data)
    if eocd is None:
        return None
    if eocd.entries == 0:
        return eocd.archive_start

    candidate = eocd.archive_start
    if valid_zip_local_header(data, candidate):
        return candidate

    # Offsets may already be absolute (self-extractors, "zip -A")
    cd_pos = eocd.offset - eocd.cd_size
    if cd_pos >= 0 and data[cd_pos : cd_pos + 4] == ZIP_CENTRAL_HEADER and cd_pos + 46 <= len(data):
        (local_offset,) = struct.unpack_from("<I", data, cd_pos + 42)
        if valid_zip_local_header(data, local_offset):
            return local_offset
    return None


def _odf_mimetype(zf: zipfile.ZipFile) -> bytes:
    with zf.open("mimetype") as member:
        return member.read(128)


def zip_flavor(data: bytes) -> str | None:
    """Resolve a ZIP archive to the container format it implements."""
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            names = zf.namelist()
            mimetype = _odf_mimetype(zf) if "mimetype" in names else b""
    except (OSError, EOFError, ValueError, RuntimeError, NotImplementedError, zlib.error, zipfile.BadZipFile):
        return None
    if not names:
        return None

    if mimetype.startswith(b"application/vnd.oasis.opendocument"):
        return "odf"
    if any(name.startswith("word/") for name in names):
        return "docx"
    if any(name.startswith("xl/") for name in names):
        return "xlsx"
    if any(name.startswith("ppt/") for name in names):
        return "pptx"
    if "AndroidManifest.xml" in names or "classes.dex" in names:
        return "apk"
    if "META-INF/MANIFEST.MF" in names:
        return "jar"
    return None


# ---------------------------------------------------------------------------
# Executables
# ---------------------------------------------------------------------------


def pe_header_offset(data: bytes, start: int = 0) -> int | None:
    """Follow ``e_lfanew`` from an MZ header to a ``PE\\0\\0`` signature."""
    if data[start : start + 2] != b"MZ" or start + 64 > len(data):
        return None
    (e_lfanew,) = struct.unpack_from("<I", data, start + 0x3C)
    if e_lfanew < 0x40 or e_lfanew > MAX_PE_HEADER_OFFSET:
        return None
    pe = start + e_lfanew
    if pe + 24 > len(data) or data[pe : pe + 4] != b"PE\x00\x00":
        return None
    return pe


def pe_extent(data: bytes, start: int = 0) -> int | None:
    """End offset of a PE image, from its section table.

    Returns None unless the header and a non-empty section table are intact.
    """
    pe = pe_header_offset(data, start)
    if pe is None:
        return None
    num_sections = struct.unpack_from("<H", data, pe + 6)[0]
    opt_size = struct.unpack_from("<H", data, pe + 20)[0]
    if num_sections == 0 or num_sections > MAX_PE_SECTIONS:
        return None

    table = pe + 24 + opt_size
    table_end = table + 40 * num_sections
    if table_end > len(data):
        return None

    end = table_end
    for i in range(num_sections):
        raw_size, raw_ptr = struct.unpack_from("<II", data, table + 40 * i + 16)
        if raw_size:
            end = max(end, start + raw_ptr + raw_size)
    return min(end, len(data))


def elf_extent(data: bytes, start: int = 0) -> int | None:
    """End offset of an ELF image, or None if the identification is invalid."""
    ident = data[start : start + 16]
    if len(ident) < 16 or ident[:4] != ELF_MAGIC:
        return None
    elf_class, encoding, version = ident[4], ident[5], ident[6]
    if elf_class not in (1, 2) or encoding not in (1, 2) or version != 1:
        return None

    order = "<" if encoding == 1 else ">"
    if elf_class == 1:
        header_size = 52
        fmt, ph_at, sh_at = order + "I", 0x1C, 0x20
        phent_at = 0x2A
    else:
        header_size = 64
        fmt, ph_at, sh_at = order + "Q", 0x20, 0x28
        phent_at = 0x36
    if start + header_size > len(data):
        return None

    (phoff,) = struct.unpack_from(fmt, data, start + ph_at)
    (shoff,) = struct.unpack_from(fmt, data, start + sh_at)
    phentsize, phnum, shentsize, shnum = struct.unpack_from(
        order + "HHHH", data, start + phent_at
    )
    end = header_size
    if phoff:
        end = max(end, phoff + phentsize * phnum)
    if shoff:
        end = max(end, shoff + shentsize * shnum)
    return min(start + end, len(data))


def macho_valid(data: bytes, start: int = 0) -> bool:
    """Check a Mach-O header's magic and load-command counts."""
    order = MACHO_MAGICS.get(data[start : start + 4])
    if order is None or start + 28 > len(data):
        return False
    ncmds, sizeofcmds = struct.unpack_from(order + "II", data, start + 16)
    return 0 < ncmds <= 4096 and 0 < sizeofcmds <= len(data)


# ---------------------------------------------------------------------------
# Other archives
# ---------------------------------------------------------------------------


def sevenzip_extent(data: bytes, start: int = 0) -> int | None:
    """End offset of a 7z archive, validating the start-header CRC."""
    if data[start : start + 6] != SEVENZIP_SIGNATURE or start + 32 > len(data):
        return None
    (stored_crc,) = struct.unpack_from("<I", data, start + 8)
    start_header = data[start + 12 : start + 32]
    if zlib.crc32(start_header) & 0xFFFFFFFF != stored_crc:
        return None
    next_offset, next_size, _ = struct.unpack("<QQI", start_header)
    return min(start + 32 + next_offset + next_size, len(data))


def _read_vint(data: bytes, pos: int) -> tuple[int, int] | None:
    value = 0
    for shift in range(0, 70, 7):
        if pos >= len(data):
            return None
        byte = data[pos]
        pos += 1
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value, pos
    return None


def rar_valid(data: bytes, start: int = 0) -> bool:
    """Check a RAR marker is followed by a main archive header."""
    if data[start : start + 7] == RAR4_SIGNATURE:
        # Marker block is 7 bytes; archive header has HEAD_TYPE 0x73
        return start + 10 <= len(data) and data[start + 9] == 0x73
    if data[start : start + 8] == RAR5_SIGNATURE:
        # CRC32, header size vint, header type vint (1 = main archive)
        size = _read_vint(data, start + 12)
        if size is None:
            return False
        kind = _read_vint(data, size[1])
        return kind is not None and kind[0] == 1
    return False


def gzip_extent(data: bytes, start: int = 0) -> int | None:
    """End offset of a gzip member, or None if the stream does not inflate."""
    header = data[start : start + 10]
    if len(header) < 10 or header[:3] != b"\x1f\x8b\x08" or header[3] & 0xE0:
        return None

    window = data[start : start + GZIP_WINDOW_BYTES]
    inflater = zlib.decompressobj(31)
    try:
        inflater.decompress(window, GZIP_INFLATE_LIMIT)
    except zlib.error:
        return None
    if inflater.eof:
        return start + len(window) - len(inflater.unused_data)
    return len(data)


# ---------------------------------------------------------------------------
# Simple length-prefixed formats
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BmpHeader:
    file_size: int
    pixel_offset: int
    width: int
    height: int
    bits_per_pixel: int
    compression: int


def bmp_header(data: bytes, start: int = 0) -> BmpHeader | None:
    """Parse the BITMAPFILEHEADER and BITMAPINFOHEADER."""
    if data[start : start + 2] != b"BM" or start + 34 > len(data):
        return None
    file_size, _, pixel_offset, info_size = struct.unpack_from("<IIII", data, start + 2)
    if info_size < 40:
        return None
    width, height, _, bpp, compression = struct.unpack_from("<iiHHI", data, start + 18)
    return BmpHeader(file_size, pixel_offset, width, height, bpp, compression)


def riff_end(data: bytes, start: int = 0) -> int | None:
    if data[start : start + 4] != b"RIFF" or start + 8 > len(data):
        return None
    (size,) = struct.unpack_from("<I", data, start + 4)
    # Chunks are word aligned
    return start + 8 + size + (size & 1)


def logical_end(data: bytes, fmt: str, start: int = 0) -> int | None:
    """Where a format's own structure says its content ends.

    Args:
        data: Buffer containing the format
        fmt: Canonical format id
        start: Offset where the format begins

    Returns:
        End offset, or None when the format has no end convention or the
        structure could not be walked
    """
    if fmt == "png":
        return png_end(data, start)
    if fmt == "jpeg":
        return jpeg_end(data, start)
    if fmt == "gif":
        return gif_end(data, start)
    if fmt == "pdf":
        return pdf_end(data, start)
    if fmt == "bmp":
        header = bmp_header(data, start)
        if header is None or header.file_size < 26:
            return None
        return start + header.file_size
    if fmt == "pe":
        return pe_extent(data, start)
    if fmt == "elf":
        return elf_extent(data, start)
    if fmt == "7z":
        return sevenzip_extent(data, start)
    if fmt == "gzip":
        return gzip_extent(data, start)

    family = family_of(fmt)
    if family == "zip":
        eocd = find_zip_end(data)
        return eocd.end if eocd and eocd.offset >= start else None
    if family == "riff":
        return riff_end(data, start)
    return None
