"""Pattern rule dataclasses.

A ``PatternRule`` describes how the pattern classifier recognises one
class; a ``RuleSet`` is the complete, validated table the classifier runs
against. Rule sets are data: they are loaded from
``fieldsense/data/patterns.yaml`` by ``fieldsense.classification.loader``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field


@dataclass(frozen=True)
class ContextFilter:
    """Gating predicate evaluated against the full context string.

    The rule may only win when ``require`` (if set) matches and ``forbid``
    (if set) does not.
    """

    require: re.Pattern[str] | None = None
    forbid: re.Pattern[str] | None = None

    def allows(self, full_context: str) -> bool:
        if self.require is not None and not self.require.search(full_context):
            return False
        if self.forbid is not None and self.forbid.search(full_context):
            return False
        return True


@dataclass(frozen=True)
class PatternRule:
    """Recognition rule for one class name (canonical or alias)."""

    label: str
    patterns: tuple[re.Pattern[str], ...]
    confidence: float
    exclusion: re.Pattern[str] | None = None
    category: str | None = None
    context_filter: ContextFilter | None = None

    def matches(self, text: str) -> bool:
        if not text:
            return False
        return any(p.search(text) for p in self.patterns)

    def is_excluded(self, full_context: str) -> bool:
        return self.exclusion is not None and bool(self.exclusion.search(full_context))

    def context_allows(self, full_context: str) -> bool:
        return self.context_filter is None or self.context_filter.allows(full_context)


@dataclass(frozen=True)
class CompensationCues:
    cue: re.Pattern[str]
    expected: re.Pattern[str]
    current: re.Pattern[str]


@dataclass(frozen=True)
class DateCues:
    cue: re.Pattern[str]
    start: re.Pattern[str]
    end: re.Pattern[str]
    education_context: re.Pattern[str]
    work_context: re.Pattern[str]


@dataclass
class RuleSet:
    """Validated pattern table plus the fixed-ladder cue tables."""

    version: int
    rules: dict[str, PatternRule]
    autofill_hints: dict[str, str]
    compensation: CompensationCues
    dates: DateCues
    priorities: dict[str, int] = field(default_factory=dict)

    def priority_of(self, label: str) -> int:
        """Conflict-resolution priority; classes absent from the table rank 0."""
        return self.priorities.get(label, 0)

    def get(self, label: str) -> PatternRule:
        try:
            return self.rules[label]
        except KeyError:
            raise KeyError(f"No pattern rule for class: {label!r}")

    def labels(self) -> list[str]:
        return list(self.rules)

    def __len__(self) -> int:
        return len(self.rules)
