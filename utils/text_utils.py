"""
Text utilities for comparing position names and numbers.

Names come from customer spreadsheets (mostly Russian), numbers are
plain ("12") or dotted ("2.3.1").
"""

import re
from typing import Optional


def normalize_text(value: Optional[str]) -> str:
    """
    Normalize a work name for comparison.

    - "  Монтаж ОКОН " → "монтаж окон"
    - None → ""

    Args:
        value: Raw text (may be None)

    Returns:
        Trimmed lowercase string
    """
    if not value:
        return ""
    return value.strip().lower()


def normalize_number(value: Optional[str]) -> Optional[str]:
    """
    Normalize a position number for comparison.

    Strips whitespace and trailing dots ("2.3." → "2.3").
    Returns None for empty input.
    """
    if value is None:
        return None

    cleaned = str(value).strip().rstrip(".")

    if not cleaned:
        return None

    return cleaned


def split_number(value: str) -> list[str]:
    """Split a dotted number into its parts: "2.3.1" → ["2", "3", "1"]."""
    return [part.strip() for part in value.split(".")]


def parse_int(value: str) -> Optional[int]:
    """Parse a plain integer number, None if it is not one."""
    if re.fullmatch(r"[+-]?\d+", value.strip()):
        return int(value)
    return None


def clean_text(value: Optional[str], max_length: int = 500) -> Optional[str]:
    """
    Clean text for storage (keeps case).

    - Strips whitespace
    - Truncates to max length
    - Returns None for empty/whitespace-only strings

    Args:
        value: Raw text from the spreadsheet
        max_length: Maximum characters to store

    Returns:
        Cleaned text or None
    """
    if not value:
        return None

    value = value.strip()

    if not value:
        return None

    if len(value) > max_length:
        value = value[:max_length]

    return value
