"""Microchip number validation per the Defra database checking protocol.

Accepts ISO 15-digit numbers, AVID (`012*345*678`) and 10-character
hex forms. Stored and compared in normalized form.
"""

import re

MIN_LENGTH = 9
MAX_LENGTH = 16
VALID_CHARS = re.compile(r"^[0-9A-Fa-f*]+$")


class MicrochipFormatError(ValueError):
    pass


def normalize_microchip(raw: str) -> str:
    """012*345*678 -> 012345678; hex digits are upper-cased."""

    return (raw or "").strip().replace("*", "").upper()


def validate_microchip(raw: str | None) -> str:
    """Return the normalized chip number or raise `MicrochipFormatError`."""

    value = (raw or "").strip()
    if not value:
        raise MicrochipFormatError("Microchip number is required.")
    if len(value) > MAX_LENGTH:
        raise MicrochipFormatError(f"Microchip number must be at most {MAX_LENGTH} characters.")
    if len(value) < MIN_LENGTH:
        raise MicrochipFormatError(f"Microchip number must be at least {MIN_LENGTH} characters.")
    if not VALID_CHARS.match(value):
        raise MicrochipFormatError(
            "Microchip number may only contain digits (0-9), letters A-F, and asterisks (e.g. AVID format)."
        )
    normalized = normalize_microchip(value)
    if len(normalized) < MIN_LENGTH:
        raise MicrochipFormatError("Microchip number appears invalid. Please check the format.")
    return normalized
