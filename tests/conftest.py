"""Pytest fixtures for ByteSentinel tests.

Sample files are built byte by byte here; nothing in them is executable.
"""

import io
import random
import struct
import zipfile
import zlib

import pytest

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

EICAR = rb"X5O!P%@AP[4\PZX54(P^)7CC)7}$EICAR-STANDARD-ANTIVIRUS-TEST-FILE!$H+H*"


def _png_chunk(ctype: bytes, body: bytes) -> bytes:
    crc = zlib.crc32(ctype + body) & 0xFFFFFFFF
    return struct.pack(">I", len(body)) + ctype + body + struct.pack(">I", crc)


def _build_png(width, height, rows, color_type=2, extra_chunks=(), filter_type=0):
    ihdr = struct.pack(">IIBBBBB", width, height, 8, color_type, 0, 0, 0)
    raw = b"".join(bytes([filter_type]) + row for row in rows)
    return (
        PNG_SIGNATURE
        + _png_chunk(b"IHDR", ihdr)
        + b"".join(_png_chunk(ctype, body) for ctype, body in extra_chunks)
        + _png_chunk(b"IDAT", zlib.compress(raw))
        + _png_chunk(b"IEND", b"")
    )


def _build_zip(members):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_STORED) as zf:
        for name, content in members:
            zf.writestr(zipfile.ZipInfo(name, date_time=(2020, 1, 1, 0, 0, 0)), content)
    return buffer.getvalue()


@pytest.fixture
def fixtures_dir(tmp_path):
    """Create a temporary fixtures directory."""
    return tmp_path


@pytest.fixture
def build_png():
    """Factory for 8-bit PNGs from pixel rows, all stored with one filter type."""
    return _build_png


@pytest.fixture
def build_zip():
    """Factory for stored ZIP archives from (name, content) pairs."""
    return _build_zip


@pytest.fixture
def png_bytes():
    """A 16x16 RGB gradient. Every sample is even, so the LSB plane is empty."""
    rows = [
        bytes(
            v
            for x in range(16)
            for v in ((x * 16) % 256, (y * 16) % 256, ((x + y) * 8) % 256)
        )
        for y in range(16)
    ]
    return _build_png(16, 16, rows)


@pytest.fixture
def lsb_png_bytes():
    """A flat 256x256 RGB image whose sample LSBs carry random bits."""
    rng = random.Random(20240611)
    rows = [bytes(0x80 | rng.getrandbits(1) for _ in range(256 * 3)) for _ in range(256)]
    return _build_png(256, 256, rows)


@pytest.fixture
def jpeg_bytes():
    """A structurally complete baseline JPEG (SOI ... EOI)."""

    def segment(marker: int, payload: bytes) -> bytes:
        return bytes([0xFF, marker]) + struct.pack(">H", len(payload) + 2) + payload

    return (
        b"\xff\xd8"
        + segment(0xE0, b"JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00")
        + segment(0xDB, b"\x00" + b"\x01" * 64)
        + segment(0xC0, b"\x08\x00\x01\x00\x01\x01\x01\x11\x00")
        + segment(0xC4, b"\x00" + bytes(16) + b"\x00")
        + segment(0xDA, b"\x01\x01\x00\x00\x3f\x00")
        + b"\x12\x34\xff\x00\x56\x78"
        + b"\xff\xd9"
    )


@pytest.fixture
def gif_bytes():
    """A 1x1 GIF89a with a two-entry global color table."""
    return (
        b"GIF89a"
        + struct.pack("<HHBBB", 1, 1, 0x80, 0, 0)
        + b"\x00\x00\x00\xff\xff\xff"
        + b"\x2c"
        + struct.pack("<HHHHB", 0, 0, 1, 1, 0)
        + b"\x02\x02\x44\x01\x00"
        + b"\x3b"
    )


@pytest.fixture
def pe_bytes():
    """A minimal PE image: MZ stub, PE header and one 512-byte section."""
    dos = bytearray(0x40)
    dos[0:2] = b"MZ"
    struct.pack_into("<I", dos, 0x3C, 0x40)

    coff = struct.pack("<HHIIIHH", 0x14C, 1, 0, 0, 0, 0, 0x0102)
    section = struct.pack(
        "<8sIIIIIIHHI", b".text\x00\x00\x00", 0x200, 0x1000, 0x200, 0x200, 0, 0, 0, 0, 0x60000020
    )
    header = bytes(dos) + b"PE\x00\x00" + coff + section
    body = bytes((i * 7 + 3) % 251 for i in range(0x200))
    return header + bytes(0x200 - len(header)) + body


@pytest.fixture
def elf_bytes():
    """A minimal 64-bit little-endian ELF header with one program header."""
    ident = b"\x7fELF\x02\x01\x01" + bytes(9)
    header = ident + struct.pack(
        "<HHIQQQIHHHHHH", 2, 0x3E, 1, 0x401000, 64, 0, 0, 64, 56, 1, 64, 0, 0
    )
    program_header = struct.pack("<IIQQQQQQ", 1, 5, 0, 0x400000, 0x400000, 120, 120, 0x1000)
    return header + program_header


@pytest.fixture
def zip_bytes():
    """A stored ZIP archive with one short text member."""
    return _build_zip([("hello.txt", b"hello world\n")])


@pytest.fixture
def docx_bytes():
    """A ZIP archive laid out like an Office document."""
    return _build_zip(
        [
            ("[Content_Types].xml", b"<Types/>"),
            ("word/document.xml", b"<w:document/>"),
        ]
    )


@pytest.fixture
def eicar_bytes():
    """The EICAR anti-malware test string."""
    return EICAR


@pytest.fixture
def random_bytes():
    """64 KiB of seeded pseudo-random bytes."""
    return random.Random(7).randbytes(64 * 1024)


@pytest.fixture
def gzip_like_bytes(random_bytes):
    """A gzip header followed by incompressible data."""
    return b"\x1f\x8b\x08\x00\x00\x00\x00\x00\x00\x03" + random_bytes


@pytest.fixture
def png_file(fixtures_dir, png_bytes):
    """Write the sample PNG to disk."""
    filepath = fixtures_dir / "picture.png"
    filepath.write_bytes(png_bytes)
    return filepath


@pytest.fixture
def disguised_pe_file(fixtures_dir, pe_bytes):
    """Write the sample PE under an image filename."""
    filepath = fixtures_dir / "holiday.jpg"
    filepath.write_bytes(pe_bytes)
    return filepath
