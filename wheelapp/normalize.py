"""Hebrew letter normalization helpers.

Five Hebrew letters have a final (sofit) glyph used at the end of a word.
The game treats both glyphs as the same letter, so every comparison goes
through :func:`normalize` first.
"""

from __future__ import annotations

from typing import Dict, Tuple


_FINAL_TO_REGULAR: Dict[str, str] = {
    "ך": "כ",
    "ם": "מ",
    "ן": "נ",
    "ף": "פ",
    "ץ": "צ",
}

_REGULAR_TO_FINAL: Dict[str, str] = {
    regular: final for final, regular in _FINAL_TO_REGULAR.items()
}

#: Apostrophe and quote look-alikes players type for geresh and gershayim.
_PUNCTUATION_FOLD: Dict[str, str] = {
    "'": "\u05f3",
    "\u2019": "\u05f3",
    "`": "\u05f3",
    "\"": "\u05f4",
    "\u201d": "\u05f4",
}

#: Canonical letters in alphabet order, used to build the letter keyboard.
HEBREW_LETTERS: Tuple[str, ...] = (
    "א",
    "ב",
    "ג",
    "ד",
    "ה",
    "ו",
    "ז",
    "ח",
    "ט",
    "י",
    "כ",
    "ל",
    "מ",
    "נ",
    "ס",
    "ע",
    "פ",
    "צ",
    "ק",
    "ר",
    "ש",
    "ת",
)

_FIRST_LETTER = 0x05D0
_LAST_LETTER = 0x05EA


def normalize(char: str) -> str:
    """Return the canonical (non-final) form of ``char``."""

    return _FINAL_TO_REGULAR.get(char, char)


def both_forms(letter: str) -> Tuple[str, ...]:
    """Return every glyph that spells ``letter`` inside a stored word."""

    canonical = normalize(letter)
    final = _REGULAR_TO_FINAL.get(canonical)
    if final is None:
        return (canonical,)
    return (canonical, final)


def is_hebrew_letter(char: str) -> bool:
    if len(char) != 1:
        return False
    return _FIRST_LETTER <= ord(char) <= _LAST_LETTER


def normalize_string(text: str) -> str:
    """Normalize every letter of ``text`` and drop all whitespace.

    ASCII and typographic apostrophes or quotes count as geresh and gershayim.
    """

    return "".join(
        _PUNCTUATION_FOLD.get(char, normalize(char))
        for char in text
        if not char.isspace()
    )


def equals_ignoring_form_and_spaces(first: str, second: str) -> bool:
    """Compare two answers ignoring final-letter glyphs and spacing."""

    return normalize_string(first) == normalize_string(second)


__all__ = [
    "HEBREW_LETTERS",
    "both_forms",
    "equals_ignoring_form_and_spaces",
    "is_hebrew_letter",
    "normalize",
    "normalize_string",
]
