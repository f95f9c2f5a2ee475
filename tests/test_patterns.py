"""Tests for fieldsense.classification.patterns: the rule-ladder classifier.

Covers:
- Ladder order: autofill hint, compensation, dates, weighted scan
- Source weights, confidence discounts, bonuses, near-miss penalty
- Exclusion veto, context filters, priority tie-breaking
- Alias resolution of the winning rule
- Determinism and None on no match
"""
from __future__ import annotations

import pytest

from fieldsense.classification.models import FieldDescriptor, Tier


def _classify(pattern_classifier, **fields):
    return pattern_classifier.classify(FieldDescriptor(**fields))


# ===========================================================================
# Ladder steps 1-3
# ===========================================================================


class TestAutofillHint:
    def test_family_name_dominates_label(self, pattern_classifier) -> None:
        result = _classify(pattern_classifier, label="Random Text", autofill_hint="family-name")
        assert result.label == "last_name"
        assert result.confidence >= 0.95
        assert result.tier == Tier.AUTOFILL_HINT
        assert result.details["rule_tier"] == "autofill_hint"
        assert result.source == "pattern"

    def test_last_token_of_hint_is_used(self, pattern_classifier) -> None:
        result = _classify(pattern_classifier, autofill_hint="section-a shipping postal-code")
        assert result.label == "zip_code"

    def test_hint_target_goes_through_alias_table(self, pattern_classifier) -> None:
        result = _classify(pattern_classifier, autofill_hint="address-line1")
        assert result.label == "address_line"
        assert result.details["alias"] == "address_line_1"

    @pytest.mark.parametrize("hint", ["on", "off", "OFF"])
    def test_on_off_are_ignored(self, pattern_classifier, hint: str) -> None:
        result = _classify(pattern_classifier, label="Email", autofill_hint=hint)
        assert result.label == "email"
        assert result.tier == Tier.PATTERN_SCAN
        assert result.confidence == pytest.approx(0.99)


class TestCompensation:
    @pytest.mark.parametrize(
        "label, expected",
        [
            ("Expected CTC", "salary_expected"),
            ("Desired salary (USD)", "salary_expected"),
            ("Current Salary", "salary_current"),
            ("Present CTC", "salary_current"),
        ],
    )
    def test_sub_cue_chooses_class(self, pattern_classifier, label: str, expected: str) -> None:
        result = _classify(pattern_classifier, label=label)
        assert result.label == expected
        assert result.confidence >= 0.95
        assert result.tier == Tier.COMPENSATION
        assert result.category == "compensation"


class TestDates:
    def test_start_date_in_education_section(self, pattern_classifier) -> None:
        result = _classify(pattern_classifier, label="Start Date", parent_context="Education History")
        assert result.label == "education_start_date"
        assert result.confidence == pytest.approx(0.93)
        assert result.tier == Tier.DATE

    def test_start_date_in_work_section(self, pattern_classifier) -> None:
        result = _classify(pattern_classifier, label="Start Date", parent_context="Work Experience")
        assert result.label == "job_start_date"
        assert result.confidence == pytest.approx(0.93)

    def test_end_date_in_education_section(self, pattern_classifier) -> None:
        result = _classify(pattern_classifier, label="End Date", sibling_context="University of Somewhere")
        assert result.label == "education_end_date"

    def test_ambiguous_context_defaults_to_work_history(self, pattern_classifier) -> None:
        result = _classify(pattern_classifier, label="End Date")
        assert result.label == "job_end_date"
        assert result.confidence == pytest.approx(0.88)

    def test_context_argument_overrides_descriptor(self, pattern_classifier) -> None:
        d = FieldDescriptor(label="Start Date", parent_context="Work Experience")
        result = pattern_classifier.classify(d, context={"parent_context": "Education"})
        assert result.label == "education_start_date"

    def test_date_without_start_or_end_falls_through(self, pattern_classifier) -> None:
        result = _classify(pattern_classifier, label="Date of Birth")
        assert result.label == "date_of_birth"
        assert result.tier == Tier.PATTERN_SCAN


# ===========================================================================
# Weighted scan
# ===========================================================================


class TestWeightedScan:
    def test_label_match_keeps_base_confidence(self, pattern_classifier) -> None:
        result = _classify(pattern_classifier, label="First Name")
        assert result.label == "first_name"
        assert result.confidence == pytest.approx(0.97)
        assert result.details["sources"] == ["label"]
        assert result.details["score"] == pytest.approx(1.0)

    def test_multiple_attributes_add_bonus(self, pattern_classifier) -> None:
        result = _classify(pattern_classifier, label="First Name", name="first_name")
        assert result.label == "first_name"
        assert result.confidence == pytest.approx(0.99)
        assert result.details["score"] == pytest.approx(1.6)

    def test_placeholder_only_is_discounted(self, pattern_classifier) -> None:
        result = _classify(pattern_classifier, placeholder="Your city")
        assert result.label == "city"
        assert result.confidence == pytest.approx(0.94 * 0.97)

    def test_name_only_accepted_at_floor(self, pattern_classifier) -> None:
        result = _classify(pattern_classifier, name="zip")
        assert result.label == "zip_code"
        assert result.confidence == pytest.approx(0.97 * 0.94)
        assert result.details["score"] == pytest.approx(0.6)

    def test_parent_context_alone_is_below_floor(self, pattern_classifier) -> None:
        assert _classify(pattern_classifier, parent_context="Email") is None

    def test_unused_hint_adds_bonus(self, pattern_classifier) -> None:
        result = _classify(pattern_classifier, label="Website", autofill_hint="x-unknown")
        assert result.label == "portfolio_url"
        assert result.confidence == pytest.approx(0.93 + 0.05)

    def test_priority_breaks_ties(self, pattern_classifier) -> None:
        # Both email and email_secondary match the label with score 1.0.
        result = _classify(pattern_classifier, label="Secondary Email")
        assert result.label == "email_secondary"

    def test_exclusion_is_a_veto(self, pattern_classifier) -> None:
        result = _classify(pattern_classifier, label="Email Address")
        assert result.label == "email"
        assert _classify(pattern_classifier, label="Company Website") is None

    def test_near_miss_exclusion_penalised(self, pattern_classifier) -> None:
        # "compnay website" only trips the exclusion after typo correction.
        result = _classify(pattern_classifier, label="Website URL", parent_context="Compnay website details")
        assert result.label == "portfolio_url"
        assert result.details["near_miss"] is True
        assert result.confidence == pytest.approx(0.93 - 0.10)

    def test_context_filter_gates_rule(self, pattern_classifier) -> None:
        result = _classify(pattern_classifier, label="Employment Start")
        assert result.label == "job_start_date"
        assert _classify(pattern_classifier, label="Employment Start", parent_context="Education") is None

    def test_alias_rule_resolves_to_canonical(self, pattern_classifier) -> None:
        result = _classify(pattern_classifier, label="Personal Website")
        assert result.label == "portfolio_url"
        assert result.details["alias"] == "website_url"
        assert result.category == "online_presence"


# ===========================================================================
# Contract
# ===========================================================================


_SAMPLE_FIELDS = [
    FieldDescriptor(label="LinkedIn Profile"),
    FieldDescriptor(label="Mobile Phone", name="mobilePhone"),
    FieldDescriptor(label="Address Line 2"),
    FieldDescriptor(label="Notice Period"),
    FieldDescriptor(label="Upload your resume", input_type="file"),
    FieldDescriptor(label="How did you hear about us?"),
    FieldDescriptor(placeholder="Apt, suite, unit"),
    FieldDescriptor(label="Are you legally authorized to work in the US?"),
]


class TestContract:
    def test_none_and_empty_descriptor(self, pattern_classifier) -> None:
        assert pattern_classifier.classify(None) is None
        assert pattern_classifier.classify(FieldDescriptor()) is None

    def test_gibberish_has_no_match(self, pattern_classifier) -> None:
        assert _classify(pattern_classifier, label="Qwzx vbnm") is None

    @pytest.mark.parametrize("descriptor", _SAMPLE_FIELDS)
    def test_results_are_canonical_and_bounded(self, pattern_classifier, taxonomy, aliases, descriptor) -> None:
        result = pattern_classifier.classify(descriptor)
        assert result is not None
        assert result.label in taxonomy
        assert not aliases.is_alias(result.label)
        assert 0.60 <= result.confidence <= 0.99
        assert result.category == taxonomy.category_of(result.label)

    @pytest.mark.parametrize("descriptor", _SAMPLE_FIELDS)
    def test_deterministic(self, pattern_classifier, descriptor) -> None:
        assert pattern_classifier.classify(descriptor) == pattern_classifier.classify(descriptor)
