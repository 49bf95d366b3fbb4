"""
PatternFormatter tests.

Covers the token language, prefix/suffix wrapping, modifier rendering and
configuration-time validation.  Pure: no database.
"""

import pytest

from registrar_kernel.domain.pattern import (
    PatternFormatter,
    PatternValues,
    analyze,
    join_modifiers,
    normalize_modifiers,
    split_modifiers,
)
from registrar_kernel.exceptions import (
    InvalidModifierError,
    MissingPatternValueError,
    PatternConfigurationError,
    UnknownPatternTokenError,
)


@pytest.fixture
def formatter():
    return PatternFormatter()


@pytest.fixture
def values():
    return PatternValues(code="PO", year=2024, month=3, day=7, sequence=42, site="HQ")


class TestTokenSubstitution:
    def test_site_year_sequence(self, formatter, values):
        assert formatter.format("{SITE}-PO-{YYYY}-{#####}", values, 5) == "HQ-PO-2024-00042"

    def test_code_and_doctype_alias(self, formatter, values):
        assert formatter.format("{CODE}/{DOCTYPE}/{###}", values, 3) == "PO/PO/042"

    def test_short_year_month_day(self, formatter, values):
        assert formatter.format("{YY}{MM}{DD}-{####}", values, 4) == "240307-0042"

    def test_every_sequence_run_renders_the_same_value(self, formatter, values):
        assert formatter.format("{#####}-{#####}", values, 5) == "00042-00042"

    def test_sequence_wider_than_pad_is_not_truncated(self, formatter):
        values = PatternValues(code="INV", year=2024, month=1, sequence=1234567)
        assert formatter.format("{CODE}-{#####}", values, 5) == "INV-1234567"

    def test_literal_text_is_preserved(self, formatter, values):
        assert formatter.format("DOC.{CODE}.{#####}.X", values, 5) == "DOC.PO.00042.X"

    def test_unknown_token_fails_closed(self, formatter, values):
        with pytest.raises(UnknownPatternTokenError) as exc_info:
            formatter.format("{SITE}-{WAREHOUSE}-{#####}", values, 5)
        assert exc_info.value.token == "WAREHOUSE"

    def test_missing_site_value(self, formatter):
        values = PatternValues(code="PO", year=2024, month=1, sequence=1)
        with pytest.raises(MissingPatternValueError):
            formatter.format("{SITE}-{#####}", values, 5)

    def test_formatting_is_pure(self, formatter, values):
        pattern = "{SITE}-{CODE}-{YYYY}-{MM}-{#####}"
        first = formatter.format(pattern, values, 5)
        second = formatter.format(pattern, values, 5)
        assert first == second == "HQ-PO-2024-03-00042"


class TestRender:
    def test_prefix_and_suffix_wrap_the_core(self, formatter):
        values = PatternValues(code="TEST", year=2024, month=1, sequence=1)
        assert formatter.render("{CODE}-{#####}", values, 5, "PRE-", "-SUF") == "PRE-TEST-00001-SUF"

    def test_no_prefix_or_suffix(self, formatter, values):
        assert formatter.render("{CODE}-{#####}", values, 5) == "PO-00042"


class TestModifiers:
    def test_parenthesis_separator_is_closed(self, formatter):
        assert formatter.append_modifiers("HQ-PO-2024-00001", ["SBW"], "(") == "HQ-PO-2024-00001(SBW)"

    def test_multiple_modifiers(self, formatter):
        assert formatter.append_modifiers("X", ["A", "C"], "(") == "X(A)(C)"

    def test_other_separators_stay_open(self, formatter):
        assert formatter.append_modifiers("X", ["A", "C"], "-") == "X-A-C"

    def test_default_separator(self, formatter):
        assert formatter.append_modifiers("X", ["RUSH"]) == "X(RUSH)"

    def test_normalize_keeps_request_order_and_drops_duplicates(self):
        result = normalize_modifiers(
            "SA", ["PC", "A", "PC", " "], supports_modifiers=True, allowed=["A", "C", "PC"]
        )
        assert result == ("PC", "A")

    def test_normalize_accepts_single_string(self):
        assert normalize_modifiers("PO", "SBW", supports_modifiers=True, allowed=["SBW"]) == ("SBW",)

    def test_normalize_none_is_empty(self):
        assert normalize_modifiers("PO", None, supports_modifiers=False, allowed=[]) == ()

    def test_modifier_not_in_allow_list(self):
        with pytest.raises(InvalidModifierError) as exc_info:
            normalize_modifiers("PO", ["XYZ"], supports_modifiers=True, allowed=["SBW", "RUSH"])
        assert exc_info.value.allowed == ["RUSH", "SBW"]

    def test_type_without_modifier_support(self):
        with pytest.raises(InvalidModifierError):
            normalize_modifiers("PR", ["SBW"], supports_modifiers=False, allowed=[])

    def test_storage_form(self):
        assert join_modifiers(("A", "C")) == "A,C"
        assert join_modifiers(()) is None
        assert split_modifiers("A,C") == ("A", "C")
        assert split_modifiers(None) == ()


class TestValidate:
    def test_analysis(self):
        analysis = analyze("{SITE}-SA-{YYYY}-{MM}-{#####}")
        assert analysis.has_site
        assert analysis.has_year
        assert analysis.has_month
        assert analysis.sequence_widths == (5,)

    def test_valid_monthly_pattern(self, formatter):
        formatter.validate(
            "{SITE}-SA-{YYYY}-{MM}-{#####}",
            5,
            reset_cycle="monthly",
            requires_site_code=True,
        )

    def test_empty_pattern(self, formatter):
        with pytest.raises(PatternConfigurationError):
            formatter.validate("  ", 5)

    def test_no_sequence_token(self, formatter):
        with pytest.raises(PatternConfigurationError, match="sequence token"):
            formatter.validate("{CODE}-{YYYY}", 5)

    def test_width_must_match_number_length(self, formatter):
        with pytest.raises(PatternConfigurationError, match="number_length"):
            formatter.validate("{CODE}-{######}", 5)

    def test_yearly_reset_needs_year_token(self, formatter):
        with pytest.raises(PatternConfigurationError, match="yearly"):
            formatter.validate("{CODE}-{#####}", 5, reset_cycle="yearly")

    def test_monthly_reset_needs_month_token(self, formatter):
        with pytest.raises(PatternConfigurationError, match="monthly"):
            formatter.validate("{CODE}-{YYYY}-{#####}", 5, reset_cycle="monthly")

    def test_never_reset_needs_no_year(self, formatter):
        formatter.validate("{CODE}-{#####}", 5, reset_cycle="never")

    def test_site_flag_must_agree_with_pattern(self, formatter):
        with pytest.raises(PatternConfigurationError, match="no \\{SITE\\}"):
            formatter.validate("{CODE}-{#####}", 5, requires_site_code=True)
        with pytest.raises(PatternConfigurationError, match="requires_site_code is not set"):
            formatter.validate("{SITE}-{#####}", 5, requires_site_code=False)

    def test_unknown_token_rejected_at_configuration_time(self, formatter):
        with pytest.raises(UnknownPatternTokenError):
            formatter.validate("{DEPT}-{#####}", 5)
