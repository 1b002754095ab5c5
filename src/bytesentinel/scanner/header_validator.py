"""Claimed type versus content type validation.

A file's claimed type comes from its declared content type or, when that
is missing or generic, its filename extension. The claim is compared to
what the magic identifier found in the bytes. Active content (executables,
scripts) claimed as passive media is the masquerading pattern; a mismatch
between two passive types is recorded but never suspicious.
"""

from pathlib import PurePath

from bytesentinel.formats.magic import IdentificationResult
from bytesentinel.formats.registry import (
    ACTIVE_CATEGORIES,
    FORMATS,
    GENERIC_CLAIMS,
    PASSIVE_CATEGORIES,
    UNKNOWN_FORMAT,
    category_of,
    family_of,
    normalize_type,
)
from bytesentinel.scanner.results import HeaderValidation, MismatchClass
from bytesentinel.signatures.patterns import DANGEROUS_EXTENSIONS

# Formats a plain-text identification can plausibly stand for
TEXT_BASED_FORMATS = frozenset(
    {
        "text",
        "xml",
        "svg",
        "rtf",
        "html",
        "script",
        "javascript",
        "powershell",
        "batch",
        "vbscript",
        "python",
    }
)


def resolve_claim(claimed_type: str | None, filename: str | None) -> str | None:
    """Pick the claim to validate: declared type first, then the filename.

    Returns:
        Canonical format id, or None when nothing was claimed
    """
    if claimed_type and claimed_type.strip().lower() not in GENERIC_CLAIMS:
        claim = normalize_type(claimed_type)
        if claim != UNKNOWN_FORMAT:
            return claim

    if filename:
        name = PurePath(filename).name
        if "." in name.strip("."):
            claim = normalize_type(name)
            if claim != UNKNOWN_FORMAT:
                return claim
    return None


def detect_double_extension(filename: str | None) -> str | None:
    """Detect double extension tricks like 'invoice.exe.pdf'.

    Returns:
        The hidden inner extension, or None
    """
    if not filename:
        return None
    parts = PurePath(filename).name.lower().split(".")
    if len(parts) <= 2:
        return None
    inner, outer = parts[-2], parts[-1]
    if inner in DANGEROUS_EXTENSIONS and outer not in DANGEROUS_EXTENSIONS:
        return inner
    return None


def _equivalent(claim: str, actual: str) -> bool:
    if claim == actual:
        return True
    family = family_of(claim)
    if family != family_of(actual):
        return False
    # docx claimed as zip (or the reverse) is fine; webp claimed as wav is not
    return family in (claim, actual) or category_of(claim) == category_of(actual)


def classify_mismatch(claim: str | None, actual: str) -> MismatchClass:
    """Classify how far a claimed type is from the actual type."""
    if claim is None or _equivalent(claim, actual):
        return MismatchClass.NONE
    if actual == UNKNOWN_FORMAT or claim not in FORMATS:
        return MismatchClass.MINOR

    claimed_category = category_of(claim)
    actual_category = category_of(actual)
    if actual_category in ACTIVE_CATEGORIES and claimed_category in PASSIVE_CATEGORIES:
        return MismatchClass.MASQUERADE
    if actual == "text" and claim in TEXT_BASED_FORMATS:
        return MismatchClass.MINOR
    if claimed_category == actual_category:
        return MismatchClass.MINOR
    return MismatchClass.CROSS_CATEGORY


def validate_header(
    identification: IdentificationResult,
    claimed_type: str | None = None,
    filename: str | None = None,
    size: int | None = None,
) -> HeaderValidation:
    """Compare the claimed type of a file against its identified type.

    Args:
        identification: Result from the magic identifier
        claimed_type: Declared content type or extension ("image/png", "jpg")
        filename: Original filename, used when the claim is missing or generic
        size: Bytes of content; an empty file has nothing to contradict a claim

    Returns:
        HeaderValidation; ``suspicious`` only for the masquerading pattern
    """
    claim = resolve_claim(claimed_type, filename)
    actual = identification.format
    if size == 0:
        return HeaderValidation(
            claimed_type=claim, actual_type=actual, match=claim is None, suspicious=False
        )

    mismatch = classify_mismatch(claim, actual)

    return HeaderValidation(
        claimed_type=claim,
        actual_type=actual,
        match=mismatch is MismatchClass.NONE,
        suspicious=mismatch is MismatchClass.MASQUERADE,
        mismatch=mismatch,
        double_extension=detect_double_extension(filename),
    )
