"""
Unit tests for description similarity helpers.
"""
import pytest

from ledgerline.services.text_similarity import (
    description_similarity,
    jaccard_similarity,
    levenshtein_distance,
    levenshtein_ratio,
    normalize_text,
    significant_words,
)


class TestNormalization:

    def test_normalize_text(self):
        assert normalize_text("  UPI/Payment-Swiggy  ") == "upi payment swiggy"
        assert normalize_text(None) == ""

    def test_significant_words(self):
        assert significant_words("To a UPI payment") == {"upi", "payment"}


class TestLevenshtein:

    @pytest.mark.parametrize("a,b,expected", [
        ("kitten", "sitting", 3),
        ("", "abc", 3),
        ("same", "same", 0),
    ])
    def test_distance(self, a, b, expected):
        assert levenshtein_distance(a, b) == expected

    def test_ratio(self):
        assert levenshtein_ratio("", "") == 1.0
        assert levenshtein_ratio("abcd", "abcx") == 0.75


class TestDescriptionSimilarity:

    def test_reordered_words(self):
        """Test word order does not matter."""
        assert description_similarity("Swiggy UPI Payment", "UPI Payment Swiggy") == 1.0

    def test_typo(self):
        """Test a one-letter OCR slip still scores high."""
        assert description_similarity("Grocery Store", "Grocery Stor3") > 0.9

    def test_unrelated(self):
        assert description_similarity("Grocery Store", "Electricity Bill") < 0.5

    def test_empty(self):
        assert description_similarity("", "") == 1.0
        assert description_similarity("Grocery", "") == 0.0

    def test_jaccard(self):
        assert jaccard_similarity("upi payment swiggy", "upi payment swiggy ltd") == 0.75
        assert jaccard_similarity("a b", "c d") == 0.0
