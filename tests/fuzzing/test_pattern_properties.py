"""
Property-based tests for number rendering.

Hypothesis generates sequences, widths and modifier requests; the
properties below must hold for every draw:

- The sequence segment parses back to the allocated integer.
- Within one width, string order equals numeric order.
- Normalized modifiers are a duplicate-free, order-preserving subset of
  the allow-list.
- Bracketed modifiers always balance.
- A pattern validates exactly when its '#' run matches number_length.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from registrar_kernel.domain.pattern import (
    PatternFormatter,
    PatternValues,
    join_modifiers,
    normalize_modifiers,
    split_modifiers,
)
from registrar_kernel.exceptions import PatternConfigurationError

ALLOWED = ("SBW", "RUSH", "PARTIAL", "A", "PC")

formatter = PatternFormatter()

widths = st.integers(min_value=1, max_value=8)
sequences = st.integers(min_value=1, max_value=10**9)
years = st.integers(min_value=2000, max_value=2099)
months = st.integers(min_value=1, max_value=12)


def _values(sequence: int, year: int = 2024, month: int = 6) -> PatternValues:
    return PatternValues(code="PO", year=year, month=month, sequence=sequence, site="HQ")


class TestSequenceRendering:
    @given(sequence=sequences, width=widths)
    def test_sequence_segment_round_trips(self, sequence, width):
        rendered = formatter.format("{CODE}-{" + "#" * width + "}", _values(sequence), width)

        segment = rendered.split("-", 1)[1]
        assert int(segment) == sequence
        assert len(segment) == max(width, len(str(sequence)))

    @given(
        width=widths,
        pair=st.tuples(sequences, sequences),
    )
    def test_lexical_order_matches_numeric_order_within_width(self, width, pair):
        limit = 10**width - 1
        a, b = (min(n, limit) for n in pair)
        pattern = "{SITE}-{CODE}-{YYYY}-{" + "#" * width + "}"

        left = formatter.format(pattern, _values(a), width)
        right = formatter.format(pattern, _values(b), width)

        assert (left < right) == (a < b)
        assert (left == right) == (a == b)

    @given(sequence=sequences, year=years, month=months)
    def test_period_tokens_are_fixed_width(self, sequence, year, month):
        rendered = formatter.format("{YYYY}{YY}{MM}-{#####}", _values(sequence, year, month), 5)

        head = rendered.split("-", 1)[0]
        assert len(head) == 8
        assert head[:4] == str(year)
        assert head[4:6] == str(year)[2:]
        assert int(head[6:]) == month


class TestModifierProperties:
    @given(requested=st.lists(st.sampled_from(ALLOWED), max_size=12))
    def test_normalized_is_ordered_unique_subset(self, requested):
        result = normalize_modifiers("PO", requested, supports_modifiers=True, allowed=ALLOWED)

        assert len(result) == len(set(result))
        assert set(result) == set(requested)
        assert list(result) == sorted(set(requested), key=requested.index)

    @given(modifiers=st.lists(st.sampled_from(ALLOWED), min_size=1, max_size=5, unique=True))
    def test_bracketed_modifiers_balance(self, modifiers):
        number = formatter.append_modifiers("HQ-PO-2024-00001", modifiers, "(")

        assert number.count("(") == number.count(")") == len(modifiers)
        assert number.startswith("HQ-PO-2024-00001")

    @given(modifiers=st.lists(st.sampled_from(ALLOWED), max_size=5, unique=True))
    def test_storage_form_round_trips(self, modifiers):
        assert split_modifiers(join_modifiers(modifiers)) == tuple(modifiers)


class TestValidationProperties:
    @settings(max_examples=50)
    @given(hashes=widths, number_length=widths)
    def test_width_must_match_number_length(self, hashes, number_length):
        pattern = "{CODE}-{YYYY}-{" + "#" * hashes + "}"

        if hashes == number_length:
            analysis = formatter.validate(pattern, number_length, reset_cycle="yearly")
            assert analysis.sequence_widths == (hashes,)
        else:
            with pytest.raises(PatternConfigurationError):
                formatter.validate(pattern, number_length, reset_cycle="yearly")
