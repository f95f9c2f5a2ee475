"""Tests for fieldsense.classification.arbitration.

Covers:
- Each tier: unanimous, pattern_strong, learned_strong, weighted_vote,
  fallback, ambiguous
- Category-specific profiles (pattern-favoured, context-favoured, default)
- Optional learned margin and conflict-group boost
- Declared input type gating learned overrides and votes
- Conflict groups validated against the taxonomy
- Metrics and settings overrides
"""
from __future__ import annotations

import pytest

from fieldsense.classification.arbitration import (
    CONTEXT_FAVORED_PROFILE,
    DEFAULT_PROFILE,
    PATTERN_FAVORED_PROFILE,
    ArbitrationConfig,
    ArbitrationMetrics,
    ArbitrationPolicy,
    fits_input_type,
)
from fieldsense.classification.models import ClassificationResult, Tier
from fieldsense.classification.taxonomy import Taxonomy

_TAXONOMY = Taxonomy.default()


def _pattern(label: str, confidence: float, tier: Tier = Tier.PATTERN_SCAN) -> ClassificationResult:
    return ClassificationResult(
        label=label,
        confidence=confidence,
        tier=tier,
        category=_TAXONOMY.category_of(label),
        source="pattern",
        details={"rule_tier": str(tier)},
    )


def _learned(label: str, confidence: float, margin: float = 0.5) -> ClassificationResult:
    return ClassificationResult(
        label=label,
        confidence=confidence,
        tier=Tier.LEARNED,
        category=_TAXONOMY.category_of(label),
        source="learned",
        details={"margin": margin},
    )


# ===========================================================================
# Tiers
# ===========================================================================


class TestUnanimous:
    def test_agreement_overrides_both_confidences(self, policy) -> None:
        result = policy.arbitrate(_pattern("email", 0.80), _learned("email", 0.70))
        assert result.label == "email"
        assert result.confidence == 0.99
        assert result.tier == Tier.UNANIMOUS
        assert result.source == "ensemble"
        assert result.category == "contact"

    @pytest.mark.parametrize("label", ["first_name", "job_title", "gender", "salary_expected"])
    @pytest.mark.parametrize("p_conf, l_conf", [(0.61, 0.30), (0.99, 0.99), (0.70, 0.95)])
    def test_any_agreement_is_unanimous(self, policy, label: str, p_conf: float, l_conf: float) -> None:
        result = policy.arbitrate(_pattern(label, p_conf), _learned(label, l_conf))
        assert result.tier == Tier.UNANIMOUS
        assert result.confidence == 0.99

    def test_agreement_on_unknown_is_not_unanimous(self, policy) -> None:
        result = policy.arbitrate(None, _learned("unknown", 0.9))
        assert result.tier == Tier.AMBIGUOUS


class TestPatternStrong:
    def test_pattern_favoured_threshold(self, policy) -> None:
        result = policy.arbitrate(_pattern("first_name", 0.95), _learned("last_name", 0.99))
        assert result.label == "first_name"
        assert result.confidence == 0.95
        assert result.tier == Tier.PATTERN_STRONG
        assert result.source == "pattern"
        assert result.details["learned_label"] == "last_name"
        assert result.details["rule_tier"] == "pattern_scan"

    def test_context_favoured_needs_more(self, policy) -> None:
        # 0.95 clears the pattern-favoured bar (0.90) but not the context-favoured one (0.97).
        result = policy.arbitrate(_pattern("job_title", 0.95), _learned("company_name", 0.90))
        assert result.tier != Tier.PATTERN_STRONG


class TestLearnedStrong:
    def test_learned_alone_above_threshold(self, policy) -> None:
        result = policy.arbitrate(None, _learned("skills", 0.80))
        assert result.label == "skills"
        assert result.tier == Tier.LEARNED_STRONG
        assert result.source == "learned"

    def test_learned_beats_weak_pattern(self, policy) -> None:
        result = policy.arbitrate(_pattern("email", 0.5), _learned("phone", 0.95))
        assert result.label == "phone"
        assert result.tier == Tier.LEARNED_STRONG
        assert result.details["pattern_label"] == "email"

    def test_threshold_is_strict(self, policy) -> None:
        result = policy.arbitrate(None, _learned("skills", 0.75))
        assert result.tier == Tier.FALLBACK
        assert result.label == "skills"

    def test_pattern_above_weak_ceiling_blocks(self, policy) -> None:
        result = policy.arbitrate(_pattern("gender", 0.94), _learned("race", 0.90))
        assert result.tier == Tier.WEIGHTED_VOTE


class TestWeightedVote:
    def test_default_profile_prefers_higher_pattern(self, policy) -> None:
        result = policy.arbitrate(_pattern("gender", 0.94), _learned("race", 0.90))
        assert result.label == "gender"
        assert result.confidence == 0.94
        assert result.source == "pattern"
        assert result.details["pattern_score"] == pytest.approx(0.47)
        assert result.details["learned_score"] == pytest.approx(0.45)
        assert result.details["other_label"] == "race"

    def test_context_favoured_profile_leans_learned(self, policy) -> None:
        result = policy.arbitrate(_pattern("company_name", 0.90), _learned("job_title", 0.95))
        assert result.label == "job_title"
        assert result.tier == Tier.WEIGHTED_VOTE
        assert result.source == "learned"
        assert result.confidence == 0.95
        assert result.details["other_label"] == "company_name"
        assert result.details["other_confidence"] == 0.90

    def test_tie_goes_to_pattern(self, policy) -> None:
        result = policy.arbitrate(_pattern("gender", 0.6), _learned("race", 0.6))
        assert result.label == "gender"
        assert result.tier == Tier.WEIGHTED_VOTE


class TestFallback:
    def test_pattern_only(self, policy) -> None:
        result = policy.arbitrate(_pattern("city", 0.70), None)
        assert result.label == "city"
        assert result.confidence == 0.70
        assert result.tier == Tier.FALLBACK
        assert result.source == "pattern"

    def test_learned_unknown_counts_as_no_opinion(self, policy) -> None:
        result = policy.arbitrate(_pattern("city", 0.70), _learned("unknown", 0.99))
        assert result.tier == Tier.FALLBACK
        assert result.label == "city"

    @pytest.mark.parametrize(
        "pattern, learned",
        [(None, None), (None, _learned("unknown", 0.4)), (_pattern("unknown", 0.7), None)],
    )
    def test_ambiguous(self, policy, pattern, learned) -> None:
        result = policy.arbitrate(pattern, learned)
        assert result.label == "unknown"
        assert result.confidence == 0.0
        assert result.tier == Tier.AMBIGUOUS
        assert result.source == "none"
        assert result.is_unknown


# ===========================================================================
# Profiles and options
# ===========================================================================


class TestProfiles:
    @pytest.mark.parametrize(
        "label, profile",
        [
            ("email", PATTERN_FAVORED_PROFILE),
            ("city", PATTERN_FAVORED_PROFILE),
            ("linkedin_url", PATTERN_FAVORED_PROFILE),
            ("job_title", CONTEXT_FAVORED_PROFILE),
            ("gpa", CONTEXT_FAVORED_PROFILE),
            ("notice_period_in_days", CONTEXT_FAVORED_PROFILE),
            ("gender", DEFAULT_PROFILE),
            ("salary_expected", DEFAULT_PROFILE),
            (None, DEFAULT_PROFILE),
        ],
    )
    def test_profile_for(self, policy, label, profile) -> None:
        assert policy.profile_for(label) == profile

    def test_vote_weights_sum_to_one(self) -> None:
        for profile in (DEFAULT_PROFILE, PATTERN_FAVORED_PROFILE, CONTEXT_FAVORED_PROFILE):
            assert profile.pattern_weight + profile.learned_weight == pytest.approx(1.0)


class TestOptions:
    def test_learned_margin_blocks_narrow_win(self, taxonomy) -> None:
        policy = ArbitrationPolicy(taxonomy, ArbitrationConfig(learned_margin=0.2))
        narrow = policy.arbitrate(None, _learned("skills", 0.80, margin=0.1))
        assert narrow.tier == Tier.FALLBACK
        wide = policy.arbitrate(None, _learned("skills", 0.80, margin=0.3))
        assert wide.tier == Tier.LEARNED_STRONG

    def test_conflict_group_boost(self, taxonomy) -> None:
        pattern = _pattern("current_location", 0.75)
        learned = _learned("preferred_location", 0.88)

        plain = ArbitrationPolicy(taxonomy).arbitrate(pattern, learned)
        assert plain.label == "current_location"

        boosted = ArbitrationPolicy(taxonomy, ArbitrationConfig(conflict_group_boost=0.3)).arbitrate(pattern, learned)
        assert boosted.label == "preferred_location"
        assert boosted.details["learned_score"] == pytest.approx(0.88 * 0.3 + 0.3)

    def test_boost_ignored_outside_conflict_groups(self, taxonomy) -> None:
        policy = ArbitrationPolicy(taxonomy, ArbitrationConfig(conflict_group_boost=0.3))
        result = policy.arbitrate(_pattern("city", 0.75), _learned("state", 0.88))
        assert result.label == "city"

    def test_from_settings_reads_environment(self, monkeypatch, clean_settings) -> None:
        monkeypatch.setenv("ARB_UNANIMOUS_CONFIDENCE", "0.97")
        monkeypatch.setenv("ARB_CONTEXT_FAVORED_LEARNED_STRONG", "0.8")
        monkeypatch.setenv("ARB_INPUT_TYPE_CHECK", "false")
        config = ArbitrationConfig.from_settings()
        assert config.unanimous_confidence == 0.97
        assert config.context_favored.learned_strong == 0.8
        assert config.default == DEFAULT_PROFILE
        assert config.input_type_check is False
        assert config.input_type_penalty == 0.1

    def test_conflict_group_with_unknown_class_rejected(self, taxonomy) -> None:
        config = ArbitrationConfig(conflict_groups=(frozenset({"city", "favourite_colour"}),))
        with pytest.raises(ValueError, match="unknown classes: \\['favourite_colour'\\]"):
            ArbitrationPolicy(taxonomy, config)

    def test_default_conflict_groups_accepted(self, taxonomy) -> None:
        assert ArbitrationPolicy(taxonomy).config.conflict_groups


class TestInputTypeCheck:
    @pytest.mark.parametrize(
        "label, input_type, expected",
        [
            ("date_of_birth", "date", True),
            ("education_start_date", "date", True),
            ("city", "date", False),
            ("email_secondary", "email", True),
            ("phone", "EMAIL", False),
            ("first_name", "number", False),
            ("years_experience", "number", True),
            ("first_name", "text", True),
            ("first_name", None, True),
        ],
    )
    def test_fits_input_type(self, label: str, input_type, expected: bool) -> None:
        assert fits_input_type(label, input_type) is expected

    def test_incompatible_learned_cannot_override(self, policy) -> None:
        learned = _learned("first_name", 0.95)
        assert policy.arbitrate(None, learned).tier == Tier.LEARNED_STRONG

        result = policy.arbitrate(None, learned, input_type="email")
        assert result.tier == Tier.FALLBACK
        assert result.label == "first_name"
        assert result.details["input_type_mismatch"] is True

    def test_name_class_blocked_on_number_field(self, policy) -> None:
        result = policy.arbitrate(None, _learned("first_name", 0.95), input_type="number")
        assert result.tier == Tier.FALLBACK

    def test_compatible_learned_still_overrides(self, policy) -> None:
        result = policy.arbitrate(None, _learned("email", 0.95), input_type="email")
        assert result.tier == Tier.LEARNED_STRONG
        assert "input_type_mismatch" not in result.details

    def test_incompatible_vote_is_penalised(self, policy) -> None:
        pattern, learned = _pattern("company_name", 0.90), _learned("job_title", 0.95)
        assert policy.arbitrate(pattern, learned).label == "job_title"

        result = policy.arbitrate(pattern, learned, input_type="date")
        assert result.label == "company_name"
        assert result.tier == Tier.WEIGHTED_VOTE
        assert result.details["learned_score"] == pytest.approx(0.95 * 0.6 * 0.1)

    def test_conflict_group_boost_requires_compatible_type(self, taxonomy) -> None:
        policy = ArbitrationPolicy(taxonomy, ArbitrationConfig(conflict_group_boost=0.3))
        pattern, learned = _pattern("current_location", 0.75), _learned("preferred_location", 0.88)
        assert policy.arbitrate(pattern, learned, input_type="text").label == "preferred_location"

        result = policy.arbitrate(pattern, learned, input_type="email")
        assert result.label == "current_location"
        # Inside a conflict group the score is neither boosted nor penalised.
        assert result.details["learned_score"] == pytest.approx(0.88 * 0.3)

    def test_check_can_be_disabled(self, taxonomy) -> None:
        policy = ArbitrationPolicy(taxonomy, ArbitrationConfig(input_type_check=False))
        result = policy.arbitrate(None, _learned("first_name", 0.95), input_type="email")
        assert result.tier == Tier.LEARNED_STRONG


# ===========================================================================
# Metrics and invariants
# ===========================================================================


class TestMetrics:
    def test_record_and_merge(self, policy) -> None:
        a, b = ArbitrationMetrics(), ArbitrationMetrics()
        policy.arbitrate(_pattern("email", 0.9), _learned("email", 0.9), a)
        policy.arbitrate(_pattern("city", 0.7), None, a)
        policy.arbitrate(None, _learned("skills", 0.9), b)
        policy.arbitrate(None, None, b)

        a.merge(b)
        assert a.total == 4
        assert a.tier_counts == {"unanimous": 1, "fallback": 1, "learned_strong": 1, "ambiguous": 1}
        assert a.pattern_wins == 1
        assert a.learned_wins == 1
        assert a.as_dict()["total"] == 4


_GRID = [
    (_pattern(p, pc) if p else None, _learned(l, lc) if l else None)
    for p, pc in [("email", 0.99), ("job_title", 0.62), ("gender", 0.85), (None, 0.0)]
    for l, lc in [("email", 0.96), ("company_name", 0.51), ("unknown", 0.9), (None, 0.0)]
]


class TestInvariants:
    @pytest.mark.parametrize("pattern, learned", _GRID)
    def test_result_is_well_formed(self, policy, taxonomy, pattern, learned) -> None:
        result = policy.arbitrate(pattern, learned)
        assert 0.0 <= result.confidence <= 1.0
        assert result.label in taxonomy
        assert result.tier in {
            Tier.UNANIMOUS, Tier.PATTERN_STRONG, Tier.LEARNED_STRONG,
            Tier.WEIGHTED_VOTE, Tier.FALLBACK, Tier.AMBIGUOUS,
        }
        proposals = {r.label for r in (pattern, learned) if r is not None and not r.is_unknown}
        if proposals:
            assert result.label in proposals
        else:
            assert result.is_unknown

    @pytest.mark.parametrize("pattern, learned", _GRID)
    def test_deterministic(self, policy, pattern, learned) -> None:
        assert policy.arbitrate(pattern, learned) == policy.arbitrate(pattern, learned)
