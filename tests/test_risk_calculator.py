"""
Risk calculator tests:
  - Category bands at every boundary
  - Significance threshold (strictly above 12)
  - Input validation (no clamping, no coercion)
  - One-way significance upgrade on rows
"""

from types import SimpleNamespace

import pytest

from hira.core.exceptions import InvalidInputError
from hira.services import risk_calculator
from hira.services.risk_calculator import (
    HIGH,
    LOW,
    MODERATE,
    NOT_SIGNIFICANT,
    SIGNIFICANT,
    VERY_HIGH,
    VERY_LOW,
    apply_to_row,
    category_for,
    score,
)


class TestScore:

    @pytest.mark.parametrize("likelihood,consequence,expected_score,expected_category", [
        (1, 1, 1, VERY_LOW),
        (2, 2, 4, VERY_LOW),
        (1, 5, 5, LOW),
        (2, 4, 8, LOW),
        (3, 3, 9, MODERATE),
        (3, 4, 12, MODERATE),
        (3, 5, 15, HIGH),
        (4, 5, 20, HIGH),
        (5, 5, 25, VERY_HIGH),
    ])
    def test_bands(self, likelihood, consequence, expected_score, expected_category):
        result = score(likelihood, consequence)
        assert result.risk_score == expected_score
        assert result.category == expected_category

    def test_twelve_is_not_significant(self):
        assert score(3, 4).auto_significant is False

    def test_above_twelve_is_significant(self):
        assert score(3, 5).auto_significant is True
        assert score(4, 4).auto_significant is True

    @pytest.mark.parametrize("likelihood,consequence", [
        (0, 3), (6, 3), (3, 0), (3, 6), (-1, 2),
    ])
    def test_out_of_range_rejected(self, likelihood, consequence):
        with pytest.raises(InvalidInputError):
            score(likelihood, consequence)

    @pytest.mark.parametrize("value", ["3", 2.5, 3.0, None, True])
    def test_non_integer_rejected(self, value):
        with pytest.raises(InvalidInputError) as exc:
            score(value, 3)
        assert exc.value.details["field"] == "likelihood"

    def test_category_for_above_twenty(self):
        assert category_for(21) == VERY_HIGH
        assert category_for(20) == HIGH

    def test_categories_ordered_low_to_high(self):
        assert risk_calculator.RISK_CATEGORIES == (VERY_LOW, LOW, MODERATE, HIGH, VERY_HIGH)


class TestApplyToRow:

    def _row(self, likelihood, consequence, significance=NOT_SIGNIFICANT):
        return SimpleNamespace(likelihood=likelihood, consequence=consequence,
                               significance=significance)

    def test_upgrades_when_score_crosses_threshold(self):
        row = self._row(4, 4)
        apply_to_row(row)
        assert row.significance == SIGNIFICANT

    def test_never_downgrades(self):
        row = self._row(1, 1, significance=SIGNIFICANT)
        result = apply_to_row(row)
        assert result.auto_significant is False
        assert row.significance == SIGNIFICANT

    def test_low_score_keeps_not_significant(self):
        row = self._row(2, 3)
        apply_to_row(row)
        assert row.significance == NOT_SIGNIFICANT
