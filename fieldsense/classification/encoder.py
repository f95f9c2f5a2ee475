"""Feature encoders: FieldDescriptor -> fixed-length vector in [0, 1].

Two encodings live side by side:

``FeatureEncoder`` (current generation)
    One keyword-presence scalar per taxonomy class, in taxonomy order,
    followed by nine structural scalars (input-type one-hot, has-label,
    has-placeholder, list control, multi-line). This is what the learned
    classifier consumes.

``LegacyHashEncoder``
    Hashed bag-of-words over label / name / context text. Kept so snapshots
    from the first model generation can still be evaluated.

Both are pure: no I/O, no randomness, never raise on missing attributes.
"""
from __future__ import annotations

import logging
import re
from typing import Mapping, Sequence

import numpy as np

from fieldsense.classification.models import FieldDescriptor
from fieldsense.classification.taxonomy import Taxonomy
from fieldsense.classification.text import normalize_text

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Structural features
# ---------------------------------------------------------------------------

INPUT_TYPES: tuple[str, ...] = ("text", "email", "tel", "number", "file")
_LIST_CONTROLS: frozenset[str] = frozenset({"select", "select-one", "select-multiple", "combobox", "datalist"})
_MULTILINE_CONTROLS: frozenset[str] = frozenset({"textarea"})

STRUCTURAL_DIM = len(INPUT_TYPES) + 4

# Keyword score saturates once this many keyword words are present.
_KEYWORD_SATURATION: float = 3.0


def structural_features(descriptor: FieldDescriptor) -> list[float]:
    input_type = (descriptor.input_type or "text").lower()
    tag = (descriptor.tag_name or "").lower()
    one_hot = [1.0 if input_type == t else 0.0 for t in INPUT_TYPES]
    return one_hot + [
        1.0 if descriptor.label else 0.0,
        1.0 if descriptor.placeholder else 0.0,
        1.0 if input_type in _LIST_CONTROLS or tag in _LIST_CONTROLS else 0.0,
        1.0 if input_type in _MULTILINE_CONTROLS or tag in _MULTILINE_CONTROLS else 0.0,
    ]


class FeatureEncoder:
    """Keyword-presence + structural encoder sized by the taxonomy."""

    VERSION = "3.1"

    def __init__(self, taxonomy: Taxonomy, keywords: Mapping[str, Sequence[str]]) -> None:
        unknown = sorted(set(keywords) - set(taxonomy.classes))
        if unknown:
            raise ValueError(f"keyword table references classes outside the taxonomy: {unknown}")

        self._taxonomy = taxonomy
        # Per class, in taxonomy order: (padded normalised keyword, word count)
        self._keywords: list[list[tuple[str, int]]] = []
        for name in taxonomy.classes:
            entries: list[tuple[str, int]] = []
            for keyword in keywords.get(name, ()):
                normalised = normalize_text(keyword)
                if not normalised:
                    logger.debug("Encoder: keyword for %s normalises to nothing, skipped", name)
                    continue
                entries.append((f" {normalised} ", len(normalised.split())))
            self._keywords.append(entries)

    @property
    def dimension(self) -> int:
        return self._taxonomy.size + STRUCTURAL_DIM

    @property
    def taxonomy(self) -> Taxonomy:
        return self._taxonomy

    @staticmethod
    def collect_text(descriptor: FieldDescriptor) -> str:
        parts = (
            descriptor.name,
            descriptor.id,
            descriptor.label,
            descriptor.placeholder,
            descriptor.parent_context,
            descriptor.sibling_context,
        )
        return " ".join(p for p in parts if p)

    def keyword_scores(self, normalised_text: str) -> list[float]:
        padded = f" {normalised_text} "
        scores: list[float] = []
        for entries in self._keywords:
            score = 0
            for keyword, words in entries:
                if keyword in padded:
                    score += words
            scores.append(min(score / _KEYWORD_SATURATION, 1.0))
        return scores

    def encode(self, descriptor: FieldDescriptor | None) -> np.ndarray:
        """Return the feature vector for *descriptor*.

        ``None`` or an empty descriptor yields a legal all-default vector
        rather than an error.
        """
        if descriptor is None:
            return np.zeros(self.dimension, dtype=np.float64)

        text = normalize_text(self.collect_text(descriptor))
        features = self.keyword_scores(text) + structural_features(descriptor)
        return np.asarray(features, dtype=np.float64)


# ---------------------------------------------------------------------------
# Legacy hashed bag-of-words
# ---------------------------------------------------------------------------

_LEGACY_INPUT_TYPES: tuple[str, ...] = ("text", "number", "email", "password", "tel")
_LEGACY_LABEL_SLOTS = 10
_LEGACY_NAME_SLOTS = 10
_LEGACY_CONTEXT_SLOTS = 5
_DIGITS = re.compile(r"\d")
_WORD_SPLIT = re.compile(r"\W+")


def _int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def legacy_hash(word: str) -> int:
    """32-bit signed string hash (``h = h * 31 + code``) used by the legacy model."""
    h = 0
    for ch in word:
        h = _int32((h << 5) - h + ord(ch))
    return h


def _hashed_slots(text: str, slots: int) -> list[float]:
    bucket = [0.0] * slots
    cleaned = _DIGITS.sub("", text.lower())
    for word in _WORD_SPLIT.split(cleaned):
        if len(word) > 2:
            bucket[abs(legacy_hash(word)) % slots] = 1.0
    return bucket


class LegacyHashEncoder:
    """First-generation hashed encoder (33 dimensions)."""

    VERSION = "1.0"
    dimension = len(_LEGACY_INPUT_TYPES) + 3 + _LEGACY_LABEL_SLOTS + _LEGACY_NAME_SLOTS + _LEGACY_CONTEXT_SLOTS

    def encode(self, descriptor: FieldDescriptor | None) -> np.ndarray:
        if descriptor is None:
            return np.zeros(self.dimension, dtype=np.float64)

        input_type = (descriptor.input_type or "text").lower()
        name_text = " ".join(p for p in (descriptor.name, descriptor.id) if p)
        context_text = " ".join(p for p in (descriptor.parent_context, descriptor.sibling_context) if p)

        features = [1.0 if input_type == t else 0.0 for t in _LEGACY_INPUT_TYPES]
        features += [
            1.0 if descriptor.label else 0.0,
            1.0 if descriptor.placeholder else 0.0,
            1.0,  # visual weight; the page layer always reported visible fields
        ]
        features += _hashed_slots(descriptor.label or descriptor.placeholder, _LEGACY_LABEL_SLOTS)
        features += _hashed_slots(name_text, _LEGACY_NAME_SLOTS)
        features += _hashed_slots(context_text, _LEGACY_CONTEXT_SLOTS)
        return np.asarray(features, dtype=np.float64)

