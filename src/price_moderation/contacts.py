"""
Normalization of contact identifiers and validation of catalog references.

Pure Python - no external dependencies.
"""

import math
import re

REFERENCE_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]{0,63}$")

_NON_DIGITS = re.compile(r"\D")


def normalize_contact(contact: str | None) -> str:
    """
    Reduce a contact identifier (phone number) to its digits.

    "(75) 98888-7777" and "75988887777" both normalize to "75988887777".
    Returns an empty string for None or digitless input.
    """
    if not contact:
        return ""
    return _NON_DIGITS.sub("", contact)


def is_valid_reference(value: str | None) -> bool:
    """Check that a product/market identifier is a well-formed reference."""
    if not value or not isinstance(value, str):
        return False
    return REFERENCE_PATTERN.match(value) is not None


def parse_price(value) -> float | None:
    """
    Parse a submitted price.

    Accepts numbers and numeric strings, including a decimal comma
    ("4,99"). Returns None for anything that is not a finite positive number.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", ".")
        if not value:
            return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(price) or price <= 0:
        return None
    return price
