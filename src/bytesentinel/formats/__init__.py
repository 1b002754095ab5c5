"""Format identification, registry and structure walkers."""

from bytesentinel.formats.magic import (
    DEFAULT_SIGNATURES,
    FormatSignature,
    IdentificationResult,
    identify,
)
from bytesentinel.formats.registry import FormatCategory, normalize_type

__all__ = [
    "DEFAULT_SIGNATURES",
    "FormatSignature",
    "IdentificationResult",
    "identify",
    "FormatCategory",
    "normalize_type",
]
