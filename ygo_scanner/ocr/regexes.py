"""Regex patterns for card text extraction."""

import re
from typing import Optional, Pattern

from ..core.constants import ATTRIBUTES, CARD_TYPES, NAME_MAX_LENGTH, NAME_TRUNCATE_TOKENS

# Stats and level: the token directly followed by digits, first match wins
ATK_PATTERN = re.compile(r"ATK\s*(\d+)", re.IGNORECASE)
DEF_PATTERN = re.compile(r"DEF\s*(\d+)", re.IGNORECASE)
LEVEL_PATTERN = re.compile(r"(?:LEVEL|RANK)\s*(\d+)", re.IGNORECASE)

# Any stats token; the effect block ends at the first line containing one
STATS_TOKEN_PATTERN = re.compile(r"ATK|DEF", re.IGNORECASE)

DIGITS_ONLY_PATTERN = re.compile(r"^\d+$")

_LEADING_DIGITS = re.compile(r"^\d+")
_WHITESPACE = re.compile(r"\s+")
_NAME_DISALLOWED = re.compile(r"[^\w\s\-'\".,]")
_LETTERS = re.compile(r"[A-Z]+")


def parse_number(pattern: Pattern, text: str) -> Optional[int]:
    """
    Return the first captured number for ``pattern`` in ``text``.

    Examples:
        >>> parse_number(ATK_PATTERN, "ATK/2500 DEF/2100")
        >>> parse_number(ATK_PATTERN, "ATK 2500 DEF 2100")
        2500
    """
    match = pattern.search(text or "")
    if not match:
        return None
    return int(match.group(1))


def clean_name_line(line: str) -> str:
    """
    Clean a candidate name line from OCR output.

    Leading digits are dropped, whitespace collapsed and characters outside
    word characters, space, hyphen, apostrophe, quotes, comma and period are
    stripped. Overlong results keep their first few tokens; anything still
    too long is rejected as an empty string.

    Examples:
        >>> clean_name_line("3 Dark    Magician!!")
        'Dark Magician'
        >>> clean_name_line("Dark Magician")
        'Dark Magician'
    """
    name = _LEADING_DIGITS.sub("", (line or "").strip())
    name = _WHITESPACE.sub(" ", name)
    name = _NAME_DISALLOWED.sub("", name).strip()

    if len(name) > NAME_MAX_LENGTH:
        name = " ".join(name.split(" ")[:NAME_TRUNCATE_TOKENS])

    if 0 < len(name) < NAME_MAX_LENGTH:
        return name
    return ""


def normalize_attribute(value: Optional[str]) -> Optional[str]:
    """
    The first known attribute named in ``value``, or None.

    Examples:
        >>> normalize_attribute("Light attribute")
        'LIGHT'
        >>> normalize_attribute("shiny")
    """
    for token in _LETTERS.findall((value or "").upper()):
        if token in ATTRIBUTES:
            return token
    return None


def normalize_card_type(value: Optional[str]) -> Optional[str]:
    """
    Monster, Spell or Trap when ``value`` names one of them, else None.

    Examples:
        >>> normalize_card_type("Normal Monster")
        'Monster'
        >>> normalize_card_type("trap card")
        'Trap'
    """
    upper = (value or "").upper()
    for card_type in CARD_TYPES:
        if card_type in upper:
            return card_type.capitalize()
    return None
