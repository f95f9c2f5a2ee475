"""Taxonomy and alias table.

The taxonomy is the single source of truth for class names: the encoder
sizes its keyword block from it, the learned classifier sizes its output
layer from it, and arbitration looks categories up in it. Everything that
names a class (rule tables, hint tables, aliases, snapshots) is validated
against it once, at load time.
"""
from __future__ import annotations

import hashlib
import logging
from typing import Iterable, Mapping

from fieldsense.core.constants import (
    CATEGORIES,
    CLASS_CATEGORY_MAP,
    DEFAULT_CATEGORY,
    ORDERED_CLASSES,
    UNKNOWN_CLASS,
)

logger = logging.getLogger(__name__)


class Taxonomy:
    """Ordered, de-duplicated class list with a class -> category map."""

    def __init__(self, classes: Iterable[str], categories: Mapping[str, str] | None = None) -> None:
        ordered = tuple(classes)
        if not ordered:
            raise ValueError("taxonomy must contain at least one class")
        if ordered[0] != UNKNOWN_CLASS:
            raise ValueError(f"taxonomy index 0 must be {UNKNOWN_CLASS!r}, got {ordered[0]!r}")

        seen: set[str] = set()
        duplicates: set[str] = set()
        for name in ordered:
            if name in seen:
                duplicates.add(name)
            seen.add(name)
        if duplicates:
            raise ValueError(f"duplicate taxonomy classes: {sorted(duplicates)}")

        categories = dict(categories or {})
        unknown_refs = sorted(set(categories) - seen)
        if unknown_refs:
            raise ValueError(f"category map references classes outside the taxonomy: {unknown_refs}")
        bad_categories = sorted({v for v in categories.values() if v not in CATEGORIES})
        if bad_categories:
            raise ValueError(f"unsupported categories: {bad_categories}")

        self._classes = ordered
        self._index = {name: i for i, name in enumerate(ordered)}
        self._categories = {name: categories.get(name, DEFAULT_CATEGORY) for name in ordered}

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def default(cls) -> Taxonomy:
        """Return the built-in taxonomy from ``fieldsense.core.constants``."""
        return cls(ORDERED_CLASSES, CLASS_CATEGORY_MAP)

    @classmethod
    def from_wire(cls, data: Mapping[str, object]) -> Taxonomy:
        """Build from the wire format ``{"classes": [...], "categories": {...}}``."""
        classes = data.get("classes")
        if not isinstance(classes, list):
            raise ValueError("taxonomy wire format requires a 'classes' list")
        categories = data.get("categories") or {}
        if not isinstance(categories, dict):
            raise ValueError("taxonomy 'categories' must be a mapping")
        return cls(classes, categories)

    def to_wire(self) -> dict[str, object]:
        return {"classes": list(self._classes), "categories": dict(self._categories)}

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @property
    def classes(self) -> tuple[str, ...]:
        return self._classes

    @property
    def size(self) -> int:
        return len(self._classes)

    def __len__(self) -> int:
        return len(self._classes)

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def contains(self, name: str) -> bool:
        return name in self._index

    def index_of(self, name: str) -> int:
        """Return the output-layer index of *name*, or -1 if it is not a class."""
        return self._index.get(name, -1)

    def name_at(self, index: int) -> str:
        if not 0 <= index < len(self._classes):
            raise IndexError(f"class index out of range: {index}")
        return self._classes[index]

    def category_of(self, name: str) -> str:
        return self._categories.get(name, DEFAULT_CATEGORY)

    def classes_in(self, category: str) -> list[str]:
        return [name for name in self._classes if self._categories[name] == category]

    def fingerprint(self) -> str:
        """Stable short hash of the ordered class list.

        Recorded in model snapshots; reordering classes changes it.
        """
        digest = hashlib.sha256("\n".join(self._classes).encode("utf-8")).hexdigest()
        return digest[:16]


class AliasTable:
    """One-hop mapping from legacy/synonym class names to canonical classes."""

    def __init__(self, aliases: Mapping[str, str], taxonomy: Taxonomy) -> None:
        problems: list[str] = []
        for alias, target in aliases.items():
            if alias in taxonomy:
                problems.append(f"{alias!r} is a canonical class and cannot be an alias")
            if target in aliases:
                problems.append(f"{alias!r} -> {target!r} chains to another alias")
            elif target not in taxonomy:
                problems.append(f"{alias!r} -> {target!r} targets an unknown class")
        if problems:
            raise ValueError("invalid alias table: " + "; ".join(problems))

        self._aliases = dict(aliases)
        logger.debug("AliasTable: %d aliases loaded", len(self._aliases))

    def resolve(self, name: str) -> str:
        """Return the canonical class for *name*; canonical names pass through unchanged."""
        return self._aliases.get(name, name)

    def is_alias(self, name: str) -> bool:
        return name in self._aliases

    def __len__(self) -> int:
        return len(self._aliases)

    def items(self) -> list[tuple[str, str]]:
        return sorted(self._aliases.items())
