"""
HIRA — Assessment number generator

Format: {PREFIX}-{YYMM}-{SEQ}   (e.g. HIRA-2610-001, HIRA-2610-042)

SEQ is 3-digit and restarts every month; numbers are unique per company.
The prefix comes from ``ASSESSMENT_NUMBER_PREFIX``.
"""

from datetime import date

from flask import current_app
from sqlalchemy import func

from hira.models import db
from hira.models.hira import Assessment

DEFAULT_PREFIX = "HIRA"


def _prefix() -> str:
    return current_app.config.get("ASSESSMENT_NUMBER_PREFIX") or DEFAULT_PREFIX


def generate_assessment_number(company_id: int, today: date | None = None) -> str:
    """Generate the next assessment number for a company in the current month."""
    today = today or date.today()
    stem = f"{_prefix()}-{today:%y%m}-"
    count = (
        db.session.query(func.count(Assessment.id))
        .filter(
            Assessment.company_id == company_id,
            Assessment.assessment_number.like(f"{stem}%"),
        )
        .scalar()
    ) or 0

    seq = count + 1
    return f"{stem}{seq:03d}"
