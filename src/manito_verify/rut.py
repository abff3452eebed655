"""
Chilean RUT (Rol Unico Tributario) format and check-digit validation.

RUT format: XX.XXX.XXX-Y where Y is the modulo-11 verification digit
(0-9 or K). Examples: 12.345.678-5, 9.876.543-3
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

_NON_RUT_CHARS = re.compile(r"[^0-9K]")
MIN_RUT_LENGTH = 2
MAX_RUT_LENGTH = 9


@dataclass(frozen=True)
class RutCheck:
    is_valid: bool
    error: Optional[str] = None
    formatted: Optional[str] = None


def clean_rut(rut: str) -> str:
    """Strip dots, hyphens and spaces; upper-case the K digit."""
    return _NON_RUT_CHARS.sub("", rut.upper())


def compute_check_digit(body: str) -> str:
    """
    Compute the verification digit for a numeric RUT body.

    Digits are weighted 2..7 (cycling) from right to left; the digit is
    11 - (sum mod 11), with 11 -> '0' and 10 -> 'K'.
    """
    digits = re.sub(r"[^0-9]", "", body)
    total = 0
    multiplier = 2
    for char in reversed(digits):
        total += int(char) * multiplier
        multiplier = 2 if multiplier == 7 else multiplier + 1

    digit = 11 - (total % 11)
    if digit == 11:
        return "0"
    if digit == 10:
        return "K"
    return str(digit)


def format_rut(rut: str) -> str:
    """Format a RUT with thousands dots and hyphen: 123456785 -> 12.345.678-5."""
    cleaned = clean_rut(rut)
    if len(cleaned) < MIN_RUT_LENGTH:
        return cleaned
    body, digit = cleaned[:-1], cleaned[-1]
    groups = []
    while body:
        groups.insert(0, body[-3:])
        body = body[:-3]
    return f"{'.'.join(groups)}-{digit}"


def validate_rut(rut: Optional[str]) -> RutCheck:
    """Validate format and check digit locally. No network access."""
    if not rut or not isinstance(rut, str):
        return RutCheck(False, "RUT is required")

    cleaned = clean_rut(rut)
    if len(cleaned) < MIN_RUT_LENGTH:
        return RutCheck(False, f"RUT must have at least {MIN_RUT_LENGTH} characters")
    if len(cleaned) > MAX_RUT_LENGTH:
        return RutCheck(False, f"RUT cannot exceed {MAX_RUT_LENGTH} characters")

    body, digit = cleaned[:-1], cleaned[-1]
    if not body.isdigit():
        return RutCheck(False, "RUT body must be numeric")
    if digit != compute_check_digit(body):
        return RutCheck(False, "Invalid RUT: check digit mismatch")

    return RutCheck(True, formatted=format_rut(cleaned))
