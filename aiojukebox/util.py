"""Utility functions for aiojukebox."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from typing import NamedTuple

TAG_PREFIX = "#"

_SEPARATORS = re.compile(r"[\s\-_.]+")
_NON_WORD = re.compile(r"[^\w]+")

# Variations normalization alone can't collapse, keyed by normalized form
TAG_ALIASES: dict[str, str] = {
    "db": "dnb",
    "drumandbass": "dnb",
    "drumbass": "dnb",
    "drumnbass": "dnb",
    "edm": "electronic",
    "electronica": "electronic",
    "housemusic": "house",
    "rb": "rnb",
    "randb": "rnb",
}


def normalize_tag(tag: str) -> str:
    """
    Normalize a tag for matching.

    Lowercases, removes whitespace, hyphens, underscores and dots, then removes any
    remaining non-word character and maps known aliases, e.g. ``Hip-Hop`` -> ``hiphop``
    and ``D&B`` -> ``dnb``.
    """
    normalized = _NON_WORD.sub("", _SEPARATORS.sub("", tag.lower()))
    return TAG_ALIASES.get(normalized, normalized)


def tag_match_keys(tag: str) -> frozenset[str]:
    """
    Return the normalized keys a tag term must equal to match this tag.

    These are the normalized tag itself plus each of its normalized words, so
    ``Chill-Vibes`` is matched by ``chillvibes``, ``chill`` and ``vibes``.
    """
    keys = {normalize_tag(tag)}
    keys.update(normalize_tag(word) for word in _SEPARATORS.split(tag))
    keys.discard("")
    return frozenset(keys)


class SearchTerms(NamedTuple):
    """Search terms split by kind."""

    text: tuple[str, ...]
    """Lowercased free-text terms."""
    tags: tuple[str, ...]
    """Normalized tag terms."""


def split_search_terms(terms: Iterable[str]) -> SearchTerms:
    """Split raw search terms into free-text terms and ``#``-prefixed tag terms."""
    text: list[str] = []
    tags: list[str] = []
    for raw in terms:
        term = raw.strip()
        if term.startswith(TAG_PREFIX):
            normalized = normalize_tag(term.lstrip(TAG_PREFIX))
            if normalized:
                tags.append(normalized)
        elif term:
            text.append(term.lower())
    return SearchTerms(tuple(text), tuple(tags))


def matches_any_text(terms: Sequence[str], fields: Iterable[str | None]) -> bool:
    """Return True if any lowercased term is a substring of any field."""
    haystack = [value.lower() for value in fields if value]
    return any(term in value for term in terms for value in haystack)


def pence(amount: float) -> int:
    """Return a monetary amount in whole pence."""
    return round(amount * 100)
