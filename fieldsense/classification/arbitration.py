"""Ensemble arbitration between the pattern and learned classifiers.

Tiers, checked in order; the first that applies produces the result:

1. unanimous       both propose the same non-unknown class -> fixed high confidence
2. pattern_strong  pattern confidence >= profile.pattern_strong
3. learned_strong  learned confidence > profile.learned_strong and
                   pattern confidence < profile.weak_ceiling
4. weighted_vote   both propose different classes -> larger weighted score wins
5. fallback        exactly one proposes something -> returned unchanged
   ambiguous       neither does -> unknown at confidence 0

The profile (thresholds and vote weights) is chosen from the category of
the proposed class: the pattern label when there is one, else the learned
label.

When the caller passes the field's declared input type, a learned label
that contradicts it (a non-email class on ``type=email``, a non-date class
on ``type=date``, a name class on ``type=number``) cannot win tier 3, has
its vote score scaled by ``input_type_penalty`` outside conflict groups and
never gets the conflict-group boost. Pattern rules are type-safe by
construction and are not checked.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from fieldsense.classification.models import ClassificationResult, Tier
from fieldsense.classification.taxonomy import Taxonomy
from fieldsense.core.constants import (
    CONFLICT_GROUPS,
    CONTEXT_FAVORED_CATEGORIES,
    PATTERN_FAVORED_CATEGORIES,
    UNKNOWN_CLASS,
)
from fieldsense.core.settings import Settings, get_settings

logger = logging.getLogger(__name__)

# Learned must beat pattern confidence by this much for the conflict-group boost.
_CONFLICT_LEAD = 0.1


@dataclass(frozen=True)
class ArbitrationProfile:
    pattern_strong: float
    learned_strong: float
    weak_ceiling: float
    pattern_weight: float
    learned_weight: float


DEFAULT_PROFILE = ArbitrationProfile(0.95, 0.85, 0.80, 0.5, 0.5)
PATTERN_FAVORED_PROFILE = ArbitrationProfile(0.90, 0.92, 0.80, 0.7, 0.3)
CONTEXT_FAVORED_PROFILE = ArbitrationProfile(0.97, 0.75, 0.85, 0.4, 0.6)


@dataclass(frozen=True)
class ArbitrationConfig:
    unanimous_confidence: float = 0.99
    default: ArbitrationProfile = DEFAULT_PROFILE
    pattern_favored: ArbitrationProfile = PATTERN_FAVORED_PROFILE
    context_favored: ArbitrationProfile = CONTEXT_FAVORED_PROFILE
    pattern_favored_categories: frozenset[str] = PATTERN_FAVORED_CATEGORIES
    context_favored_categories: frozenset[str] = CONTEXT_FAVORED_CATEGORIES
    # 0.0 disables: minimum top-1/top-2 probability gap for a learned_strong win.
    learned_margin: float = 0.0
    conflict_groups: tuple[frozenset[str], ...] = CONFLICT_GROUPS
    # 0.0 disables: added to the learned vote score inside a conflict group.
    conflict_group_boost: float = 0.0
    input_type_check: bool = True
    # Multiplier on an input-type-incompatible learned vote score.
    input_type_penalty: float = 0.1

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ArbitrationConfig:
        s = settings or get_settings()
        return cls(
            unanimous_confidence=s.unanimous_confidence,
            default=ArbitrationProfile(
                s.default_pattern_strong,
                s.default_learned_strong,
                s.default_weak_ceiling,
                s.default_pattern_weight,
                s.default_learned_weight,
            ),
            pattern_favored=ArbitrationProfile(
                s.pattern_favored_pattern_strong,
                s.pattern_favored_learned_strong,
                s.pattern_favored_weak_ceiling,
                s.pattern_favored_pattern_weight,
                s.pattern_favored_learned_weight,
            ),
            context_favored=ArbitrationProfile(
                s.context_favored_pattern_strong,
                s.context_favored_learned_strong,
                s.context_favored_weak_ceiling,
                s.context_favored_pattern_weight,
                s.context_favored_learned_weight,
            ),
            learned_margin=s.learned_margin,
            conflict_group_boost=s.conflict_group_boost,
            input_type_check=s.input_type_check,
            input_type_penalty=s.input_type_penalty,
        )


@dataclass
class ArbitrationMetrics:
    """Best-effort counters; callers own and merge them."""

    total: int = 0
    tier_counts: Counter = field(default_factory=Counter)
    pattern_wins: int = 0
    learned_wins: int = 0

    def record(self, result: ClassificationResult) -> None:
        self.total += 1
        self.tier_counts[str(result.tier)] += 1
        if result.source == "pattern":
            self.pattern_wins += 1
        elif result.source == "learned":
            self.learned_wins += 1

    def merge(self, other: ArbitrationMetrics) -> None:
        self.total += other.total
        self.tier_counts.update(other.tier_counts)
        self.pattern_wins += other.pattern_wins
        self.learned_wins += other.learned_wins

    def as_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "tier_counts": dict(self.tier_counts),
            "pattern_wins": self.pattern_wins,
            "learned_wins": self.learned_wins,
        }


def _proposal(result: ClassificationResult | None) -> tuple[str | None, float]:
    if result is None or result.label == UNKNOWN_CLASS:
        return None, 0.0
    return result.label, result.confidence


def fits_input_type(label: str, input_type: str | None) -> bool:
    """Whether *label* is plausible for an ``<input>`` of *input_type*."""
    kind = (input_type or "").lower()
    if kind == "date":
        return "date" in label or "dob" in label
    if kind == "email":
        return "email" in label
    if kind == "number":
        return "name" not in label
    return True


class ArbitrationPolicy:
    """Merges one pattern opinion and one learned opinion into a final result.

    Raises ``ValueError`` at construction if a conflict group names a class
    outside the taxonomy.
    """

    def __init__(self, taxonomy: Taxonomy, config: ArbitrationConfig | None = None) -> None:
        self._taxonomy = taxonomy
        self._config = config or ArbitrationConfig()
        for group in self._config.conflict_groups:
            unknown = sorted(name for name in group if name not in taxonomy)
            if unknown:
                raise ValueError(f"conflict group {sorted(group)} names unknown classes: {unknown}")

    @property
    def config(self) -> ArbitrationConfig:
        return self._config

    def profile_for(self, label: str | None) -> ArbitrationProfile:
        if not label:
            return self._config.default
        category = self._taxonomy.category_of(label)
        if category in self._config.pattern_favored_categories:
            return self._config.pattern_favored
        if category in self._config.context_favored_categories:
            return self._config.context_favored
        return self._config.default

    def arbitrate(
        self,
        pattern: ClassificationResult | None,
        learned: ClassificationResult | None,
        metrics: ArbitrationMetrics | None = None,
        *,
        input_type: str | None = None,
    ) -> ClassificationResult:
        result = self._decide(pattern, learned, input_type)
        if metrics is not None:
            metrics.record(result)
        logger.debug(
            "Arbitration: label=%s conf=%.3f tier=%s source=%s",
            result.label, result.confidence, result.tier, result.source,
        )
        return result

    # ------------------------------------------------------------------

    def _decide(
        self,
        pattern: ClassificationResult | None,
        learned: ClassificationResult | None,
        input_type: str | None = None,
    ) -> ClassificationResult:
        cfg = self._config
        p_label, p_conf = _proposal(pattern)
        l_label, l_conf = _proposal(learned)
        profile = self.profile_for(p_label or l_label)
        type_ok = l_label is None or not cfg.input_type_check or fits_input_type(l_label, input_type)
        opinions = {
            "pattern_label": p_label,
            "pattern_confidence": p_conf,
            "learned_label": l_label,
            "learned_confidence": l_conf,
        }
        if not type_ok:
            opinions["input_type_mismatch"] = True

        # 1. unanimous
        if p_label is not None and p_label == l_label:
            return self._build(p_label, cfg.unanimous_confidence, Tier.UNANIMOUS, "ensemble", opinions)

        # 2. pattern_strong
        if p_label is not None and p_conf >= profile.pattern_strong:
            return self._build(p_label, p_conf, Tier.PATTERN_STRONG, "pattern", opinions, pattern)

        # 3. learned_strong
        if l_label is not None and l_conf > profile.learned_strong and p_conf < profile.weak_ceiling:
            margin = learned.details.get("margin") if learned is not None else None
            margin_ok = cfg.learned_margin <= 0.0 or margin is None or margin >= cfg.learned_margin
            if margin_ok and type_ok:
                return self._build(l_label, l_conf, Tier.LEARNED_STRONG, "learned", opinions, learned)

        # 4. weighted_vote
        if p_label is not None and l_label is not None:
            p_score = p_conf * profile.pattern_weight
            l_score = l_conf * profile.learned_weight
            if self._in_conflict_group(p_label, l_label):
                if type_ok and cfg.conflict_group_boost > 0.0 and l_conf > p_conf + _CONFLICT_LEAD:
                    l_score += cfg.conflict_group_boost
            elif not type_ok:
                l_score *= cfg.input_type_penalty
            vote = {**opinions, "pattern_score": p_score, "learned_score": l_score}
            if p_score >= l_score:
                vote.update(other_label=l_label, other_confidence=l_conf)
                return self._build(p_label, p_conf, Tier.WEIGHTED_VOTE, "pattern", vote, pattern)
            vote.update(other_label=p_label, other_confidence=p_conf)
            return self._build(l_label, l_conf, Tier.WEIGHTED_VOTE, "learned", vote, learned)

        # 5. fallback / ambiguous
        if p_label is not None:
            return self._build(p_label, p_conf, Tier.FALLBACK, "pattern", opinions, pattern)
        if l_label is not None:
            return self._build(l_label, l_conf, Tier.FALLBACK, "learned", opinions, learned)
        return self._build(UNKNOWN_CLASS, 0.0, Tier.AMBIGUOUS, "none", opinions)

    def _in_conflict_group(self, a: str, b: str) -> bool:
        return any(a in group and b in group for group in self._config.conflict_groups)

    def _build(
        self,
        label: str,
        confidence: float,
        tier: Tier,
        source: str,
        details: dict[str, Any],
        origin: ClassificationResult | None = None,
    ) -> ClassificationResult:
        payload = dict(details)
        if origin is not None:
            payload["origin_tier"] = str(origin.tier)
            rule_tier = origin.details.get("rule_tier")
            if rule_tier is not None:
                payload["rule_tier"] = rule_tier
        category = origin.category if origin is not None else self._taxonomy.category_of(label)
        return ClassificationResult(
            label=label,
            confidence=min(max(float(confidence), 0.0), 1.0),
            tier=tier,
            category=category,
            source=source,
            details=payload,
        )
