"""
Match a resolved attribute value against the option list OLX allows.

Cascade, first hit wins:
    exact -> case-insensitive -> diacritic-normalized -> stem -> substring

No hit returns None; OLX rejects unknown option values, so the caller drops
the attribute instead of sending it raw.
"""
from __future__ import annotations

import unicodedata
from typing import Callable, Iterable

# NFKD leaves these alone
_LETTER_MAP = str.maketrans({"đ": "dj", "Đ": "dj", "ø": "o", "ł": "l", "ß": "ss"})

MIN_STEM_LENGTH = 3


def normalize(text: str) -> str:
    text = str(text).strip().translate(_LETTER_MAP)
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(stripped.lower().split())


def _common_prefix_length(a: str, b: str) -> int:
    length = 0
    for x, y in zip(a, b):
        if x != y:
            break
        length += 1
    return length


def stem_match(value: str, option: str) -> bool:
    """
    "Desno" ~ "Desni", "Automatik" ~ "Automatski": the normalized words share
    at least MIN_STEM_LENGTH leading characters.
    """
    return _common_prefix_length(normalize(value), normalize(option)) >= MIN_STEM_LENGTH


def _substring_match(value: str, option: str) -> bool:
    a, b = normalize(value), normalize(option)
    if not a or not b:
        return False
    return a in b or b in a


_MATCHERS: tuple[Callable[[str, str], bool], ...] = (
    lambda value, option: value == option,
    lambda value, option: value.lower() == option.lower(),
    lambda value, option: normalize(value) == normalize(option),
    stem_match,
    _substring_match,
)


def match_option(value, options: Iterable[str]) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    options = [str(o) for o in options if o is not None]
    if not value or not options:
        return None
    for matcher in _MATCHERS:
        for option in options:
            if matcher(value, option):
                return option
    return None
