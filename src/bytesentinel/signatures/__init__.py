"""Byte and text patterns for detection."""

from bytesentinel.signatures.patterns import (
    DANGEROUS_EXTENSIONS,
    EICAR_SIGNATURE,
    SHELL_COMMAND_PATTERNS,
)

__all__ = ["DANGEROUS_EXTENSIONS", "EICAR_SIGNATURE", "SHELL_COMMAND_PATTERNS"]
