"""Value types shared by the classification components.

``FieldDescriptor`` is the raw evidence about one form field, produced by
the page-scraping layer. ``ClassificationResult`` is what every classifier
and the arbitration policy return. Both are frozen: nothing downstream may
mutate them.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Mapping

from fieldsense.core.constants import UNKNOWN_CLASS


class Tier(StrEnum):
    """Which decision step produced a result."""

    # Pattern classifier ladder
    AUTOFILL_HINT = "autofill_hint"
    COMPENSATION = "compensation"
    DATE = "date"
    PATTERN_SCAN = "pattern_scan"

    # Learned classifier
    LEARNED = "learned"

    # Arbitration ladder
    UNANIMOUS = "unanimous"
    PATTERN_STRONG = "pattern_strong"
    LEARNED_STRONG = "learned_strong"
    WEIGHTED_VOTE = "weighted_vote"
    FALLBACK = "fallback"
    AMBIGUOUS = "ambiguous"


ARBITRATION_TIERS: tuple[Tier, ...] = (
    Tier.UNANIMOUS,
    Tier.PATTERN_STRONG,
    Tier.LEARNED_STRONG,
    Tier.WEIGHTED_VOTE,
    Tier.FALLBACK,
    Tier.AMBIGUOUS,
)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


@dataclass(frozen=True, slots=True)
class FieldDescriptor:
    """Surface attributes of one form field."""

    label: str = ""
    name: str = ""
    id: str = ""
    placeholder: str = ""
    input_type: str = "text"
    autofill_hint: str | None = None
    parent_context: str = ""
    sibling_context: str = ""
    tag_name: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> FieldDescriptor:
        """Build a descriptor from scraper output.

        Accepts both snake_case and the camelCase keys emitted by the page
        scripts (``inputType``/``type``, ``autocomplete``, ``parentContext``,
        ``siblingContext``, ``tagName``). Missing or ``None`` values degrade
        to empty strings.
        """
        if not data:
            return cls()

        def pick(*keys: str) -> Any:
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        hint = _text(pick("autofill_hint", "autofillHint", "autocomplete"))
        input_type = _text(pick("input_type", "inputType", "type")).lower()
        return cls(
            label=_text(pick("label", "ariaLabel")),
            name=_text(pick("name")),
            id=_text(pick("id")),
            placeholder=_text(pick("placeholder")),
            input_type=input_type or "text",
            autofill_hint=hint or None,
            parent_context=_text(pick("parent_context", "parentContext")),
            sibling_context=_text(pick("sibling_context", "siblingContext")),
            tag_name=_text(pick("tag_name", "tagName")).lower(),
        )

    def own_text(self) -> str:
        """Lower-cased text of the field's own attributes."""
        parts = (self.label, self.name, self.id, self.placeholder, self.autofill_hint or "")
        return " ".join(p for p in parts if p).lower()

    def full_context(self, parent_context: str | None = None, sibling_context: str | None = None) -> str:
        """Own text plus surrounding parent and sibling text, lower-cased."""
        parent = self.parent_context if parent_context is None else parent_context
        sibling = self.sibling_context if sibling_context is None else sibling_context
        parts = (self.own_text(), parent.lower(), sibling.lower())
        return " ".join(p for p in parts if p)


@dataclass(frozen=True, slots=True)
class ClassificationResult:
    """Final or intermediate decision for one field.

    ``details`` carries auxiliary observability metadata (the losing
    classifier's opinion, vote scores, matched sources); it never affects
    ``label`` or ``confidence``.
    """

    label: str
    confidence: float
    tier: Tier
    category: str
    source: str = ""
    details: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence!r}")

    @property
    def is_unknown(self) -> bool:
        return self.label == UNKNOWN_CLASS

    def as_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "confidence": round(self.confidence, 4),
            "tier": str(self.tier),
            "category": self.category,
            "source": self.source,
            "details": dict(self.details),
        }
