"""
HIRA — Risk Calculator

Maps a (likelihood, consequence) pair onto a risk score, a banded risk
category and the default significance flag.

    score = likelihood × consequence          (1–25)

    ≤ 4   Very Low
    ≤ 8   Low
    ≤ 12  Moderate
    ≤ 20  High
    > 20  Very High

Scores above 12 are significant by default. The upgrade is one-way: a row
is forced to "Significant" when its score crosses 12 but is never forced
back, so a reviewer's manual downgrade survives later edits.

Usage:
    from hira.services.risk_calculator import score

    result = score(3, 5)   # RiskScore(risk_score=15, category="High", auto_significant=True)
"""

from typing import NamedTuple

from hira.core.exceptions import InvalidInputError

FACTOR_MIN = 1
FACTOR_MAX = 5

SIGNIFICANCE_THRESHOLD = 12

VERY_LOW = "Very Low"
LOW = "Low"
MODERATE = "Moderate"
HIGH = "High"
VERY_HIGH = "Very High"

# Lowest → highest
RISK_CATEGORIES = (VERY_LOW, LOW, MODERATE, HIGH, VERY_HIGH)

# (inclusive upper bound, category)
_BANDS = (
    (4, VERY_LOW),
    (8, LOW),
    (12, MODERATE),
    (20, HIGH),
)

SIGNIFICANT = "Significant"
NOT_SIGNIFICANT = "Not Significant"
SIGNIFICANCE_OPTIONS = (SIGNIFICANT, NOT_SIGNIFICANT)


class RiskScore(NamedTuple):
    risk_score: int
    category: str
    auto_significant: bool


def validate_factor(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInputError(
            f"{name} must be an integer {FACTOR_MIN}-{FACTOR_MAX}",
            details={"field": name, "value": value},
        )
    if not FACTOR_MIN <= value <= FACTOR_MAX:
        raise InvalidInputError(
            f"{name} must be between {FACTOR_MIN} and {FACTOR_MAX}",
            details={"field": name, "value": value},
        )
    return value


def category_for(risk_score: int) -> str:
    """Band a numeric risk score into its category."""
    for upper, category in _BANDS:
        if risk_score <= upper:
            return category
    return VERY_HIGH


def score(likelihood: int, consequence: int) -> RiskScore:
    """Score a likelihood/consequence pair.

    Raises:
        InvalidInputError: either factor is not an integer in [1, 5].
    """
    likelihood = validate_factor("likelihood", likelihood)
    consequence = validate_factor("consequence", consequence)
    risk_score = likelihood * consequence
    return RiskScore(
        risk_score=risk_score,
        category=category_for(risk_score),
        auto_significant=risk_score > SIGNIFICANCE_THRESHOLD,
    )


def apply_to_row(row) -> RiskScore:
    """Re-score a worksheet row after a likelihood/consequence change.

    Only ever upgrades ``row.significance``; never downgrades it.
    """
    result = score(row.likelihood, row.consequence)
    if result.auto_significant:
        row.significance = SIGNIFICANT
    return result
