"""Canonical format identifiers, categories and type-name normalization.

Every component speaks in canonical format ids ("jpeg", "pe", "zip", ...).
Claimed types arrive in many spellings (extensions, MIME types, whole
filenames), so they are normalized here before anything compares them.
"""

from dataclasses import dataclass
from enum import Enum


class FormatCategory(Enum):
    """Broad family a format belongs to."""

    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    ARCHIVE = "archive"
    EXECUTABLE = "executable"
    SCRIPT = "script"
    TEXT = "text"
    UNKNOWN = "unknown"


# Categories that cannot act on their own when opened
PASSIVE_CATEGORIES = frozenset(
    {
        FormatCategory.IMAGE,
        FormatCategory.VIDEO,
        FormatCategory.AUDIO,
        FormatCategory.DOCUMENT,
        FormatCategory.TEXT,
    }
)

# Categories whose content runs when opened
ACTIVE_CATEGORIES = frozenset({FormatCategory.EXECUTABLE, FormatCategory.SCRIPT})


@dataclass(frozen=True)
class FormatInfo:
    """Static description of a canonical format."""

    format: str
    category: FormatCategory
    mime_type: str
    description: str
    family: str | None = None  # e.g. docx belongs to the zip family


UNKNOWN_FORMAT = "unknown"

_C = FormatCategory

FORMATS: dict[str, FormatInfo] = {
    info.format: info
    for info in (
        # Images
        FormatInfo("jpeg", _C.IMAGE, "image/jpeg", "JPEG image"),
        FormatInfo("png", _C.IMAGE, "image/png", "PNG image"),
        FormatInfo("gif", _C.IMAGE, "image/gif", "GIF image"),
        FormatInfo("bmp", _C.IMAGE, "image/bmp", "BMP image"),
        FormatInfo("tiff", _C.IMAGE, "image/tiff", "TIFF image"),
        FormatInfo("webp", _C.IMAGE, "image/webp", "WebP image", family="riff"),
        FormatInfo("ico", _C.IMAGE, "image/x-icon", "Windows icon"),
        FormatInfo("heic", _C.IMAGE, "image/heic", "HEIC image", family="isobmff"),
        FormatInfo("heif", _C.IMAGE, "image/heif", "HEIF image", family="isobmff"),
        FormatInfo("avif", _C.IMAGE, "image/avif", "AVIF image", family="isobmff"),
        FormatInfo("svg", _C.IMAGE, "image/svg+xml", "SVG vector image"),
        # Video
        FormatInfo("mp4", _C.VIDEO, "video/mp4", "MP4 video", family="isobmff"),
        FormatInfo("m4v", _C.VIDEO, "video/x-m4v", "Apple M4V video", family="isobmff"),
        FormatInfo("mov", _C.VIDEO, "video/quicktime", "QuickTime video", family="isobmff"),
        FormatInfo(
            "isobmff", _C.VIDEO, "application/octet-stream", "ISO base media container",
            family="isobmff",
        ),
        FormatInfo("avi", _C.VIDEO, "video/x-msvideo", "AVI video", family="riff"),
        FormatInfo("mkv", _C.VIDEO, "video/x-matroska", "Matroska / WebM video"),
        FormatInfo("flv", _C.VIDEO, "video/x-flv", "Flash video"),
        # Audio
        FormatInfo("mp3", _C.AUDIO, "audio/mpeg", "MP3 audio"),
        FormatInfo("m4a", _C.AUDIO, "audio/mp4", "Apple M4A audio", family="isobmff"),
        FormatInfo("wav", _C.AUDIO, "audio/wav", "WAVE audio", family="riff"),
        FormatInfo("flac", _C.AUDIO, "audio/flac", "FLAC audio"),
        FormatInfo("ogg", _C.AUDIO, "audio/ogg", "Ogg container"),
        # Documents
        FormatInfo("pdf", _C.DOCUMENT, "application/pdf", "PDF document"),
        FormatInfo("ole", _C.DOCUMENT, "application/x-ole-storage", "OLE compound document"),
        FormatInfo("rtf", _C.DOCUMENT, "application/rtf", "Rich Text document"),
        FormatInfo("xml", _C.DOCUMENT, "application/xml", "XML document"),
        FormatInfo(
            "docx", _C.DOCUMENT,
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            "Word document", family="zip",
        ),
        FormatInfo(
            "xlsx", _C.DOCUMENT,
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            "Excel workbook", family="zip",
        ),
        FormatInfo(
            "pptx", _C.DOCUMENT,
            "application/vnd.openxmlformats-officedocument.presentationml.presentation",
            "PowerPoint presentation", family="zip",
        ),
        FormatInfo(
            "odf", _C.DOCUMENT, "application/vnd.oasis.opendocument", "OpenDocument file",
            family="zip",
        ),
        # Text
        FormatInfo("text", _C.TEXT, "text/plain", "Plain text"),
        # Archives
        FormatInfo("zip", _C.ARCHIVE, "application/zip", "ZIP archive", family="zip"),
        FormatInfo("jar", _C.ARCHIVE, "application/java-archive", "Java archive", family="zip"),
        FormatInfo(
            "apk", _C.ARCHIVE, "application/vnd.android.package-archive", "Android package",
            family="zip",
        ),
        FormatInfo("rar", _C.ARCHIVE, "application/vnd.rar", "RAR archive"),
        FormatInfo("7z", _C.ARCHIVE, "application/x-7z-compressed", "7-Zip archive"),
        FormatInfo("gzip", _C.ARCHIVE, "application/gzip", "gzip stream"),
        FormatInfo("bzip2", _C.ARCHIVE, "application/x-bzip2", "bzip2 stream"),
        FormatInfo("xz", _C.ARCHIVE, "application/x-xz", "xz stream"),
        FormatInfo("tar", _C.ARCHIVE, "application/x-tar", "tar archive"),
        # Executables
        FormatInfo("pe", _C.EXECUTABLE, "application/vnd.microsoft.portable-executable",
                   "Windows PE executable"),
        FormatInfo("elf", _C.EXECUTABLE, "application/x-executable", "ELF executable"),
        FormatInfo("macho", _C.EXECUTABLE, "application/x-mach-binary", "Mach-O binary"),
        # Scripts and active markup
        FormatInfo("script", _C.SCRIPT, "text/x-shellscript", "Script with interpreter line"),
        FormatInfo("html", _C.SCRIPT, "text/html", "HTML document"),
        FormatInfo("javascript", _C.SCRIPT, "text/javascript", "JavaScript source"),
        FormatInfo("powershell", _C.SCRIPT, "text/x-powershell", "PowerShell script"),
        FormatInfo("batch", _C.SCRIPT, "application/x-bat", "Windows batch file"),
        FormatInfo("vbscript", _C.SCRIPT, "text/vbscript", "VBScript source"),
        FormatInfo("python", _C.SCRIPT, "text/x-python", "Python source"),
    )
}

# Extensions and MIME types that map onto canonical ids
TYPE_ALIASES: dict[str, str] = {
    # Images
    "jpg": "jpeg",
    "jpe": "jpeg",
    "jfif": "jpeg",
    "pjpeg": "jpeg",
    "image/jpeg": "jpeg",
    "image/jpg": "jpeg",
    "image/pjpeg": "jpeg",
    "image/png": "png",
    "image/gif": "gif",
    "dib": "bmp",
    "image/bmp": "bmp",
    "image/x-ms-bmp": "bmp",
    "tif": "tiff",
    "image/tiff": "tiff",
    "image/webp": "webp",
    "image/x-icon": "ico",
    "image/vnd.microsoft.icon": "ico",
    "image/heic": "heic",
    "image/heif": "heif",
    "image/avif": "avif",
    "image/svg+xml": "svg",
    # Video and audio
    "video/mp4": "mp4",
    "video/x-m4v": "m4v",
    "qt": "mov",
    "video/quicktime": "mov",
    "video/x-msvideo": "avi",
    "webm": "mkv",
    "video/webm": "mkv",
    "video/x-matroska": "mkv",
    "video/x-flv": "flv",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/mp4": "m4a",
    "audio/x-m4a": "m4a",
    "wave": "wav",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/flac": "flac",
    "oga": "ogg",
    "ogv": "ogg",
    "audio/ogg": "ogg",
    # Documents and text
    "application/pdf": "pdf",
    "doc": "ole",
    "xls": "ole",
    "ppt": "ole",
    "msi": "ole",
    "application/msword": "ole",
    "application/vnd.ms-excel": "ole",
    "application/rtf": "rtf",
    "text/rtf": "rtf",
    "application/xml": "xml",
    "text/xml": "xml",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": "pptx",
    "odt": "odf",
    "ods": "odf",
    "odp": "odf",
    "txt": "text",
    "log": "text",
    "md": "text",
    "csv": "text",
    "json": "text",
    "ini": "text",
    "cfg": "text",
    "text/plain": "text",
    "text/csv": "text",
    "text/markdown": "text",
    "application/json": "text",
    # Archives
    "application/zip": "zip",
    "application/x-zip-compressed": "zip",
    "application/java-archive": "jar",
    "application/vnd.android.package-archive": "apk",
    "application/vnd.rar": "rar",
    "application/x-rar-compressed": "rar",
    "application/x-7z-compressed": "7z",
    "gz": "gzip",
    "tgz": "gzip",
    "application/gzip": "gzip",
    "application/x-gzip": "gzip",
    "bz2": "bzip2",
    "application/x-bzip2": "bzip2",
    "application/x-xz": "xz",
    "application/x-tar": "tar",
    # Executables
    "exe": "pe",
    "dll": "pe",
    "sys": "pe",
    "scr": "pe",
    "cpl": "pe",
    "ocx": "pe",
    "efi": "pe",
    "com": "pe",
    "application/x-msdownload": "pe",
    "application/x-dosexec": "pe",
    "application/vnd.microsoft.portable-executable": "pe",
    "so": "elf",
    "bin": "elf",
    "application/x-executable": "elf",
    "application/x-elf": "elf",
    "application/x-sharedlib": "elf",
    "dylib": "macho",
    "application/x-mach-binary": "macho",
    # Scripts
    "sh": "script",
    "bash": "script",
    "zsh": "script",
    "text/x-shellscript": "script",
    "application/x-sh": "script",
    "htm": "html",
    "xhtml": "html",
    "hta": "html",
    "text/html": "html",
    "application/xhtml+xml": "html",
    "js": "javascript",
    "mjs": "javascript",
    "text/javascript": "javascript",
    "application/javascript": "javascript",
    "ps1": "powershell",
    "psm1": "powershell",
    "bat": "batch",
    "cmd": "batch",
    "application/x-bat": "batch",
    "vbs": "vbscript",
    "vbe": "vbscript",
    "text/vbscript": "vbscript",
    "py": "python",
    "text/x-python": "python",
}

# Claimed types that carry no information about the content
GENERIC_CLAIMS = frozenset(
    {
        "",
        "application/octet-stream",
        "binary/octet-stream",
        "application/unknown",
        "unknown",
        "none",
    }
)


def get_format_info(fmt: str) -> FormatInfo | None:
    """Look up the static description of a canonical format id."""
    return FORMATS.get(fmt)


def category_of(fmt: str) -> FormatCategory:
    """Category of a canonical format id (UNKNOWN when not registered)."""
    info = FORMATS.get(fmt)
    return info.category if info else FormatCategory.UNKNOWN


def family_of(fmt: str) -> str:
    """Container family of a format; formats without one are their own family."""
    info = FORMATS.get(fmt)
    if info and info.family:
        return info.family
    return fmt


def normalize_type(claimed: str | None) -> str:
    """Normalize an extension, MIME type or filename to a canonical format id.

    Args:
        claimed: ".JPG", "jpg", "image/jpeg", "photo.jpg" or None

    Returns:
        Canonical id, or the cleaned-up input when it maps to nothing known,
        or "unknown" for empty / generic claims
    """
    if claimed is None:
        return UNKNOWN_FORMAT

    value = claimed.strip().lower()
    # Drop MIME parameters ("text/html; charset=utf-8")
    value = value.split(";", 1)[0].strip()

    if value in GENERIC_CLAIMS:
        return UNKNOWN_FORMAT
    if value in FORMATS:
        return value
    if value in TYPE_ALIASES:
        return TYPE_ALIASES[value]

    # Filenames and dotted extensions: use the last suffix
    if "/" not in value and "." in value:
        suffix = value.rsplit(".", 1)[1]
        if not suffix:
            return UNKNOWN_FORMAT
        if suffix in FORMATS:
            return suffix
        return TYPE_ALIASES.get(suffix, suffix)

    return value
