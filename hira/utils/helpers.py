"""Shared parsing helpers used by services and the blueprint.

parse_date:        lenient — returns None on bad input (query-string filters)
parse_date_input:  strict — raises InvalidInputError on bad input (payload fields)
parse_rating:      optional 1–5 integer rating
"""
import logging
from datetime import date, datetime

from hira.core.exceptions import InvalidInputError

logger = logging.getLogger(__name__)


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY (European format)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_date_input(value, field: str = "date"):
    """Parse a date value, raising InvalidInputError on bad input.

    Same as parse_date() but strict: an unparseable non-empty value is a
    caller error, not an absent date.
    """
    if value is None or value == "":
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise InvalidInputError(
            f"Invalid {field}. Use YYYY-MM-DD or DD.MM.YYYY.",
            details={"field": field, "value": str(value)},
        )
    return parsed


def parse_rating(value, field: str = "rating", *, required: bool = False):
    """Validate a 1–5 rating. Returns None when optional and absent."""
    if value is None or value == "":
        if required:
            raise InvalidInputError(f"{field} is required (1-5)", details={"field": field})
        return None
    if isinstance(value, bool):
        raise InvalidInputError(f"{field} must be an integer 1-5", details={"field": field})
    try:
        rating = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"{field} must be an integer 1-5",
                                details={"field": field}) from exc
    if rating != value and not isinstance(value, str):
        raise InvalidInputError(f"{field} must be an integer 1-5", details={"field": field})
    if not 1 <= rating <= 5:
        raise InvalidInputError(f"{field} must be between 1 and 5",
                                details={"field": field, "value": rating})
    return rating


def is_blank(value) -> bool:
    """True for None or a string that is empty after stripping."""
    return value is None or not str(value).strip()
