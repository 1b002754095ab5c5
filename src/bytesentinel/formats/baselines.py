"""Expected Shannon entropy ranges per format, in bits per byte.

Compressed and encoded formats sit close to 8 bits; uncompressed rasters,
executables and text sit well below. A file whose entropy falls outside its
format's range is unusual, though entropy alone is weak evidence.
"""

# Used when the format is unknown or has no curated range
GENERIC_BASELINE: tuple[float, float] = (0.5, 7.9)

DEFAULT_BASELINES: dict[str, tuple[float, float]] = {
    # Images
    "jpeg": (7.0, 7.99),
    "png": (6.5, 7.95),
    "gif": (5.0, 7.5),
    "bmp": (3.0, 7.0),
    "tiff": (3.0, 7.9),
    "webp": (7.0, 7.95),
    "heic": (7.2, 7.99),
    "heif": (7.2, 7.99),
    "avif": (7.3, 7.99),
    "ico": (2.0, 7.5),
    "svg": (4.0, 6.0),
    # Video and audio
    "mp4": (7.0, 7.99),
    "mov": (7.0, 7.99),
    "m4v": (7.0, 7.99),
    "m4a": (6.8, 7.99),
    "mkv": (7.0, 7.99),
    "avi": (6.5, 7.99),
    "mp3": (6.8, 7.95),
    "flac": (6.5, 7.8),
    "ogg": (6.8, 7.99),
    "wav": (3.0, 7.8),
    # Documents and text
    "pdf": (3.0, 7.8),
    "ole": (2.0, 7.5),
    "rtf": (3.5, 5.8),
    "xml": (4.0, 6.0),
    "docx": (7.0, 8.0),
    "xlsx": (7.0, 8.0),
    "pptx": (7.0, 8.0),
    "odf": (7.0, 8.0),
    "text": (2.0, 6.5),
    # Archives
    "zip": (7.0, 8.0),
    "jar": (7.0, 8.0),
    "apk": (7.0, 8.0),
    "rar": (7.0, 8.0),
    "7z": (7.0, 8.0),
    "gzip": (7.0, 8.0),
    "bzip2": (7.0, 8.0),
    "xz": (7.0, 8.0),
    "tar": (1.0, 7.9),
    # Executables
    "pe": (4.0, 7.8),
    "elf": (4.0, 7.8),
    "macho": (4.0, 7.8),
    # Scripts
    "script": (3.5, 6.0),
    "html": (4.0, 6.0),
    "javascript": (4.0, 6.2),
}


def baseline_for(
    fmt: str,
    baselines: dict[str, tuple[float, float]] | None = None,
) -> tuple[tuple[float, float], bool]:
    """Look up the expected entropy range for a format.

    Returns:
        ((expected_min, expected_max), has_baseline)
    """
    table = DEFAULT_BASELINES if baselines is None else baselines
    if fmt in table:
        return table[fmt], True
    return GENERIC_BASELINE, False
