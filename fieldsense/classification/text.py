"""Text normalisation for field attributes.

Rules applied in order
----------------------
1. Split camelCase / PascalCase runs (``firstName`` -> ``first Name``,
   ``URLField`` -> ``URL Field``).
2. Lower-case.
3. Replace underscores, hyphens and any other punctuation with spaces.
4. Correct common misspellings token by token (``frist`` -> ``first``).
5. Drop stop words and single-character tokens.
6. Collapse whitespace.

The same function normalises keyword tables at load time, so keywords and
field text always meet in the same form.
"""
from __future__ import annotations

import re

_CAMEL_LOWER_UPPER = re.compile(r"([a-z])([A-Z])")
_CAMEL_ACRONYM = re.compile(r"([A-Z])([A-Z][a-z])")
_NON_WORD = re.compile(r"[^\w]+|_+")

# Generic form chatter. Words that carry field meaning on their own
# ("type", "from", "over", "other") are deliberately absent.
STOP_WORDS: frozenset[str] = frozenset({
    "the", "and", "for", "of", "are", "you", "have", "enter", "your",
    "please", "select", "choose", "this", "that", "with", "will",
    "can", "could", "would", "should", "here", "there", "into", "through",
    "during", "before", "after", "above", "below", "between", "under",
    "again", "further", "then", "once", "only", "just", "more", "most",
    "some", "such", "our", "us", "field", "input", "required", "optional",
    "provide", "valid", "invalid", "format", "example", "an", "is", "a",
})

TYPO_CORRECTIONS: dict[str, str] = {
    "frist": "first",
    "fisrt": "first",
    "firts": "first",
    "lsat": "last",
    "lastn": "last",
    "emial": "email",
    "emal": "email",
    "phoen": "phone",
    "adress": "address",
    "addres": "address",
    "compnay": "company",
    "salery": "salary",
    "univeristy": "university",
    "expereince": "experience",
}


def split_camel_case(text: str) -> str:
    text = _CAMEL_LOWER_UPPER.sub(r"\1 \2", text)
    return _CAMEL_ACRONYM.sub(r"\1 \2", text)


def tokenize(text: str | None) -> list[str]:
    """Return the normalised tokens of *text* (empty list for empty input)."""
    if not text:
        return []
    spaced = _NON_WORD.sub(" ", split_camel_case(text).lower())
    tokens: list[str] = []
    for raw in spaced.split():
        token = TYPO_CORRECTIONS.get(raw, raw)
        if len(token) < 2 or token in STOP_WORDS:
            continue
        tokens.append(token)
    return tokens


def normalize_text(text: str | None) -> str:
    """Normalise *text* to a single space-separated lower-case string."""
    return " ".join(tokenize(text))
