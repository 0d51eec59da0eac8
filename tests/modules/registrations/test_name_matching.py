"""
Tests for name similarity scoring.
"""

import pytest

from alumni.modules.registrations.name_matching import normalize_name, similarity


class TestNormalizeName:
    def test_collapses_whitespace_and_lowercases(self):
        assert normalize_name("  John   DOE\t") == "john doe"

    def test_none_is_empty(self):
        assert normalize_name(None) == ""


class TestSimilarity:
    def test_identical_names_score_100(self):
        assert similarity("Jane Wanjiru", "Jane Wanjiru") == 100

    def test_case_and_spacing_are_ignored(self):
        assert similarity("jane  wanjiru", "JANE WANJIRU ") == 100

    def test_one_letter_missing(self):
        # distance 1 over 8 characters, truncated
        assert similarity("Jon Doe", "John Doe") == 87

    def test_is_symmetric(self):
        assert similarity("Jon Doe", "John Doe") == similarity("John Doe", "Jon Doe")

    def test_unrelated_names_fall_below_threshold(self):
        assert similarity("Alice Smith", "Bob Jones") < 80

    @pytest.mark.parametrize("a,b", [("", "John Doe"), ("John Doe", None), ("   ", "   ")])
    def test_empty_name_scores_zero(self, a, b):
        assert similarity(a, b) == 0

    def test_score_is_bounded(self):
        score = similarity("A", "Completely Different Name")
        assert 0 <= score <= 100
