"""Deterministic rule-based field classifier.

Ladder (first step that produces a class wins)
----------------------------------------------
1. Platform autofill hint  -> static hint table, confidence 0.99.
2. Compensation cue        -> salary_expected / salary_current, 0.99.
3. Date cue                -> start/end x education/work context, 0.93
                              (0.88 when the context is ambiguous).
4. Weighted source scan    -> every rule tested against label, placeholder,
                              name/id, parent and sibling context.

The winning class name goes through the alias table before it is returned,
so the caller only ever sees canonical taxonomy classes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from fieldsense.classification.models import ClassificationResult, FieldDescriptor, Tier
from fieldsense.classification.rules import PatternRule, RuleSet
from fieldsense.classification.taxonomy import AliasTable, Taxonomy
from fieldsense.classification.text import normalize_text

logger = logging.getLogger(__name__)

LADDER_CONFIDENCE = 0.99
DATE_CONFIDENCE = 0.93
AMBIGUOUS_DATE_CONFIDENCE = 0.88

# Source weights for the weighted scan.
SOURCE_WEIGHTS: dict[str, float] = {
    "label": 1.0,
    "placeholder": 0.8,
    "name_id": 0.6,
    "parent": 0.4,
    "sibling": 0.3,
}

# Confidence multiplier by the strongest matching source.
_LABEL_FACTOR = 1.0
_PLACEHOLDER_FACTOR = 0.97
_NAME_ID_FACTOR = 0.94
_CONTEXT_ONLY_FACTOR = 0.90

UNUSED_HINT_BONUS = 0.05
MULTI_ATTRIBUTE_BONUS = 0.03
NEAR_MISS_PENALTY = 0.10
MIN_CONFIDENCE = 0.60
MAX_CONFIDENCE = 0.99

_IGNORED_HINTS: frozenset[str] = frozenset({"on", "off"})


@dataclass(frozen=True)
class _Sources:
    label: str
    placeholder: str
    name: str
    id: str
    parent: str
    sibling: str
    own: str
    full: str


@dataclass
class _Candidate:
    rule: PatternRule
    score: float
    priority: int
    matched: tuple[str, ...]
    attributes: int


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class PatternClassifier:
    """Rule-ladder classifier over a validated ``RuleSet``.

    Parameters
    ----------
    rules:
        Loaded rule table (see ``fieldsense.classification.loader``).
    aliases:
        Alias table applied to every winning class name.
    taxonomy:
        Used to resolve the result category.
    min_score:
        Floor the winning weighted-scan score must reach. The default admits
        a lone name/id match (0.6) but rejects parent-only context (0.4).
    """

    def __init__(
        self,
        rules: RuleSet,
        aliases: AliasTable,
        taxonomy: Taxonomy,
        min_score: float = 0.6,
    ) -> None:
        self._rules = rules
        self._aliases = aliases
        self._taxonomy = taxonomy
        self._min_score = min_score

    @property
    def rules(self) -> RuleSet:
        return self._rules

    @property
    def min_score(self) -> float:
        return self._min_score

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def classify(
        self,
        descriptor: FieldDescriptor | None,
        context: Mapping[str, str] | None = None,
    ) -> ClassificationResult | None:
        """Classify *descriptor*; ``None`` means no rule matched.

        *context* may carry ``parent_context`` / ``sibling_context`` strings
        that replace the descriptor's own surrounding text.
        """
        if descriptor is None:
            return None

        sources = self._sources(descriptor, context or {})
        hint = self._from_hint(descriptor)
        if hint is not None:
            return hint
        for step in (self._from_compensation, self._from_dates, self._from_scan):
            result = step(descriptor, sources)
            if result is not None:
                return result
        logger.debug("Pattern: no match")
        return None

    # ------------------------------------------------------------------
    # Ladder steps
    # ------------------------------------------------------------------

    def _from_hint(self, descriptor: FieldDescriptor) -> ClassificationResult | None:
        hint = (descriptor.autofill_hint or "").lower()
        # The field token is last: "section-a shipping postal-code".
        for token in reversed(hint.split()):
            if token in _IGNORED_HINTS:
                continue
            target = self._rules.autofill_hints.get(token)
            if target is not None:
                return self._result(target, LADDER_CONFIDENCE, Tier.AUTOFILL_HINT, {"hint": token})
        return None

    def _from_compensation(self, descriptor: FieldDescriptor, sources: _Sources) -> ClassificationResult | None:
        cues = self._rules.compensation
        if not cues.cue.search(sources.own):
            return None
        if cues.expected.search(sources.own):
            return self._result("salary_expected", LADDER_CONFIDENCE, Tier.COMPENSATION)
        if cues.current.search(sources.own):
            return self._result("salary_current", LADDER_CONFIDENCE, Tier.COMPENSATION)
        return None

    def _from_dates(self, descriptor: FieldDescriptor, sources: _Sources) -> ClassificationResult | None:
        cues = self._rules.dates
        if not cues.cue.search(sources.own):
            return None

        is_start = bool(cues.start.search(sources.own))
        is_end = bool(cues.end.search(sources.own))
        if not (is_start or is_end):
            return None

        education = bool(cues.education_context.search(sources.full))
        work = bool(cues.work_context.search(sources.full))
        details = {"education_context": education, "work_context": work}
        if is_start and education:
            return self._result("education_start_date", DATE_CONFIDENCE, Tier.DATE, details)
        if is_start and work:
            return self._result("job_start_date", DATE_CONFIDENCE, Tier.DATE, details)
        if is_end and education:
            return self._result("education_end_date", DATE_CONFIDENCE, Tier.DATE, details)
        if is_end and work:
            return self._result("job_end_date", DATE_CONFIDENCE, Tier.DATE, details)

        label = "job_start_date" if is_start else "job_end_date"
        return self._result(label, AMBIGUOUS_DATE_CONFIDENCE, Tier.DATE, details)

    def _from_scan(self, descriptor: FieldDescriptor, sources: _Sources) -> ClassificationResult | None:
        best: _Candidate | None = None
        for rule in self._rules.rules.values():
            if rule.is_excluded(sources.full):
                logger.debug("Pattern: %s vetoed by exclusion", rule.label)
                continue
            if not rule.context_allows(sources.full):
                continue

            candidate = self._score(rule, sources)
            if candidate is None:
                continue
            if best is None or (candidate.score, candidate.priority) > (best.score, best.priority):
                best = candidate

        if best is None or best.score < self._min_score:
            return None

        confidence = best.rule.confidence * self._source_factor(best.matched)
        if descriptor.autofill_hint and descriptor.autofill_hint.lower() not in _IGNORED_HINTS:
            confidence += UNUSED_HINT_BONUS
        if best.attributes >= 2:
            confidence += MULTI_ATTRIBUTE_BONUS
        near_miss = self._near_miss(best.rule, sources)
        if near_miss:
            confidence -= NEAR_MISS_PENALTY

        details = {
            "rule": best.rule.label,
            "score": best.score,
            "sources": list(best.matched),
            "priority": best.priority,
            "near_miss": near_miss,
        }
        return self._result(
            best.rule.label,
            _clamp(confidence, MIN_CONFIDENCE, MAX_CONFIDENCE),
            Tier.PATTERN_SCAN,
            details,
            category=best.rule.category,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _sources(descriptor: FieldDescriptor, context: Mapping[str, str]) -> _Sources:
        parent = context.get("parent_context")
        sibling = context.get("sibling_context")
        parent = descriptor.parent_context if parent is None else parent
        sibling = descriptor.sibling_context if sibling is None else sibling
        return _Sources(
            label=descriptor.label,
            placeholder=descriptor.placeholder,
            name=descriptor.name,
            id=descriptor.id,
            parent=parent,
            sibling=sibling,
            own=descriptor.own_text(),
            full=descriptor.full_context(parent, sibling),
        )

    def _score(self, rule: PatternRule, sources: _Sources) -> _Candidate | None:
        name_hit = rule.matches(sources.name)
        id_hit = rule.matches(sources.id)
        hits = {
            "label": rule.matches(sources.label),
            "placeholder": rule.matches(sources.placeholder),
            "name_id": name_hit or id_hit,
            "parent": rule.matches(sources.parent),
            "sibling": rule.matches(sources.sibling),
        }
        matched = tuple(source for source, hit in hits.items() if hit)
        if not matched:
            return None
        # Rounded so that e.g. 0.4 + 0.3 compares equal to 0.7.
        score = round(sum(SOURCE_WEIGHTS[s] for s in matched), 6)
        attributes = sum((hits["label"], hits["placeholder"], name_hit, id_hit))
        return _Candidate(
            rule=rule,
            score=score,
            priority=self._rules.priority_of(rule.label),
            matched=matched,
            attributes=attributes,
        )

    @staticmethod
    def _source_factor(matched: tuple[str, ...]) -> float:
        if "label" in matched:
            return _LABEL_FACTOR
        if "placeholder" in matched:
            return _PLACEHOLDER_FACTOR
        if "name_id" in matched:
            return _NAME_ID_FACTOR
        return _CONTEXT_ONLY_FACTOR

    @staticmethod
    def _near_miss(rule: PatternRule, sources: _Sources) -> bool:
        """True when the exclusion only fires once the context is normalised."""
        if rule.exclusion is None:
            return False
        return bool(rule.exclusion.search(normalize_text(sources.full)))

    def _result(
        self,
        label: str,
        confidence: float,
        tier: Tier,
        details: dict[str, Any] | None = None,
        category: str | None = None,
    ) -> ClassificationResult:
        canonical = self._aliases.resolve(label)
        payload = {"rule_tier": str(tier), **(details or {})}
        if canonical != label:
            payload["alias"] = label
        logger.debug("Pattern: label=%s conf=%.3f tier=%s", canonical, confidence, tier)
        return ClassificationResult(
            label=canonical,
            confidence=float(confidence),
            tier=tier,
            category=category or self._taxonomy.category_of(canonical),
            source="pattern",
            details=payload,
        )
