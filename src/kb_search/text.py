"""
Tokenization and light stemming shared by the lexical index and the local embedder.
"""

from __future__ import annotations

import re

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_MIN_TOKEN_LENGTH = 3

# Applied in order, each at most once.
_SUFFIX_RULES: tuple[tuple[str, str], ...] = (
    ("ing", ""),
    ("tion", "t"),
    ("ies", "y"),
    ("es", ""),
    ("s", ""),
)


def stem(token: str) -> str:
    """Collapse plurals and verb forms with a fixed suffix-stripping chain."""
    for suffix, replacement in _SUFFIX_RULES:
        if token.endswith(suffix):
            token = token[: -len(suffix)] + replacement
    return token


def tokenize(text: str | None) -> list[str]:
    """Split free text into normalized, stemmed terms."""
    if not text:
        return []
    cleaned = _NON_ALNUM_RE.sub(" ", text.lower())
    terms: list[str] = []
    for raw in cleaned.split():
        if len(raw) < _MIN_TOKEN_LENGTH:
            continue
        term = stem(raw)
        if term:
            terms.append(term)
    return terms


def normalize_query(text: str) -> str:
    return text.strip().lower()
