"""Name normalization used for natural-key matching and duplicate audits."""

from __future__ import annotations

import re
import unicodedata

_WHITESPACE = re.compile(r"\s+")
_NON_WORD = re.compile(r"[^\w\s]", flags=re.UNICODE)


def normalize_name(value: str) -> str:
    """Case-insensitive comparison form: casefolded, trimmed, inner whitespace collapsed."""

    return _WHITESPACE.sub(" ", value.strip()).casefold()


def fold_name(value: str) -> str:
    """Looser form that also drops accents and punctuation.

    Two names that only agree after folding are near matches, never exact ones.
    """

    decomposed = unicodedata.normalize("NFKD", value)
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return normalize_name(_NON_WORD.sub(" ", stripped))
