"""
HIRA Lifecycle Engine
Assessment domain model.

Models:
    - Assessment:   aggregate root (metadata, team, status, lifecycle timestamps)
    - WorksheetRow: one task/hazard pairing, ordered within its assessment

Only the inputs of the risk algorithm are stored on a row (likelihood,
consequence, target date, action status, recommendation). Risk score,
category and action-item membership are computed on read so they can
never drift from their inputs.
"""

from datetime import datetime, timezone

from hira.models import db
from hira.services.risk_calculator import NOT_SIGNIFICANT, category_for

# ── Constants ────────────────────────────────────────────────────────────────

HIRA_STATUSES = (
    "draft",
    "assigned",
    "in_progress",
    "completed",
    "approved",
    "rejected",
    "actions_assigned",
    "actions_completed",
    "closed",
)

TERMINAL_STATUSES = frozenset({"closed"})

ROUTINE = "Routine"
NON_ROUTINE = "Non-Routine"
ROUTINE_OPTIONS = (ROUTINE, NON_ROUTINE)

ACTION_OPEN = "Open"
ACTION_IN_PROGRESS = "In Progress"
ACTION_COMPLETED = "Completed"
ACTION_STATUSES = (ACTION_OPEN, ACTION_IN_PROGRESS, ACTION_COMPLETED)

ASSESSMENT_PRIORITIES = ("low", "medium", "high", "critical")

# Worksheet content, frozen once the assessment is approved
ROW_CONTENT_FIELDS = (
    "task_name",
    "activity_service",
    "routine_non_routine",
    "hazard_concern",
    "hazard_description",
    "likelihood",
    "consequence",
    "existing_risk_control",
    "significance",
    "recommendation",
)

# Action tracking, editable after approval
ROW_ACTION_FIELDS = (
    "action_owner_id",
    "target_date",
    "action_status",
    "remarks",
    "completion_evidence",
    "actual_completion_date",
)

ROW_FIELDS = ROW_CONTENT_FIELDS + ROW_ACTION_FIELDS

REQUIRED_FOR_COMPLETION = (
    "task_name",
    "activity_service",
    "hazard_concern",
    "hazard_description",
    "recommendation",
)


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


assessment_team = db.Table(
    "hira_assessment_team",
    db.Column("assessment_id", db.Integer,
              db.ForeignKey("hira_assessments.id", ondelete="CASCADE"), primary_key=True),
    db.Column("user_id", db.Integer,
              db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class Assessment(db.Model):
    """
    HIRA assessment — the aggregate root.

    Lifecycle timestamps are written once, by the transition that reaches
    the matching status (see hira_lifecycle.HIRA_TRANSITIONS).
    """

    __tablename__ = "hira_assessments"
    __table_args__ = (
        db.Index("ix_hira_company_status", "company_id", "status"),
        db.Index("ix_hira_company_plant", "company_id", "plant_id"),
        db.UniqueConstraint("company_id", "assessment_number", name="uq_hira_company_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, nullable=False, index=True)
    plant_id = db.Column(db.Integer, nullable=True)
    area_id = db.Column(db.Integer, nullable=True)

    assessment_number = db.Column(db.String(40), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    process = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    assessment_date = db.Column(db.Date, nullable=False)
    review_date = db.Column(db.Date, comment="Due date set at assignment")
    priority = db.Column(db.String(20))

    assessor_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))

    status = db.Column(db.String(30), nullable=False, default="draft")

    # Lifecycle timestamps
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    assigned_at = db.Column(db.DateTime(timezone=True))
    started_at = db.Column(db.DateTime(timezone=True))
    completed_at = db.Column(db.DateTime(timezone=True))
    approved_at = db.Column(db.DateTime(timezone=True))
    rejected_at = db.Column(db.DateTime(timezone=True))
    actions_assigned_at = db.Column(db.DateTime(timezone=True))
    actions_completed_at = db.Column(db.DateTime(timezone=True))
    closed_at = db.Column(db.DateTime(timezone=True))

    # Assignment / approval / closure metadata
    assignment_comments = db.Column(db.Text)
    approved_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    approval_comments = db.Column(db.Text)
    approval_rating = db.Column(db.Integer)
    rejection_reason = db.Column(db.Text)
    closed_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    closure_comments = db.Column(db.Text)
    lessons_learned = db.Column(db.Text)
    performance_rating = db.Column(db.Integer)

    ai_suggestions = db.Column(db.JSON, comment="Last AI suggestion set for this assessment")

    # Relationships
    assessor = db.relationship("User", foreign_keys=[assessor_id])
    created_by = db.relationship("User", foreign_keys=[created_by_id])
    approved_by = db.relationship("User", foreign_keys=[approved_by_id])
    team = db.relationship("User", secondary=assessment_team, order_by="User.id")
    worksheet_rows = db.relationship(
        "WorksheetRow",
        back_populates="assessment",
        order_by="WorksheetRow.position",
        cascade="all, delete-orphan",
    )

    @property
    def team_ids(self) -> set[int]:
        return {member.id for member in self.team}

    def to_dict(self, include_rows: bool = True) -> dict:
        d = {
            "id": self.id,
            "company_id": self.company_id,
            "plant_id": self.plant_id,
            "area_id": self.area_id,
            "assessment_number": self.assessment_number,
            "title": self.title,
            "process": self.process,
            "description": self.description,
            "assessment_date": _iso(self.assessment_date),
            "review_date": _iso(self.review_date),
            "priority": self.priority,
            "status": self.status,
            "assessor": self.assessor.to_ref() if self.assessor else None,
            "created_by_id": self.created_by_id,
            "team": [member.to_ref() for member in self.team],
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "assigned_at": _iso(self.assigned_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "approved_at": _iso(self.approved_at),
            "rejected_at": _iso(self.rejected_at),
            "actions_assigned_at": _iso(self.actions_assigned_at),
            "actions_completed_at": _iso(self.actions_completed_at),
            "closed_at": _iso(self.closed_at),
            "assignment_comments": self.assignment_comments,
            "approved_by": self.approved_by.to_ref() if self.approved_by else None,
            "approval_comments": self.approval_comments,
            "approval_rating": self.approval_rating,
            "rejection_reason": self.rejection_reason,
            "closed_by_id": self.closed_by_id,
            "closure_comments": self.closure_comments,
            "lessons_learned": self.lessons_learned,
            "performance_rating": self.performance_rating,
            "ai_suggestions": self.ai_suggestions,
        }
        if include_rows:
            d["worksheet_rows"] = [row.to_dict() for row in self.worksheet_rows]
        return d

    def __repr__(self):
        return f"<Assessment {self.assessment_number} [{self.status}]>"


class WorksheetRow(db.Model):
    """One task/hazard pairing — the unit a risk score is computed against."""

    __tablename__ = "hira_worksheet_rows"
    __table_args__ = (
        db.Index("ix_hira_rows_assessment_position", "assessment_id", "position"),
    )

    id = db.Column(db.Integer, primary_key=True)
    assessment_id = db.Column(
        db.Integer,
        db.ForeignKey("hira_assessments.id", ondelete="CASCADE"),
        nullable=False,
    )
    position = db.Column(db.Integer, nullable=False, default=0,
                         comment="Order within the worksheet; action updates address rows by it")

    task_name = db.Column(db.String(255), default="")
    activity_service = db.Column(db.String(255), default="")
    routine_non_routine = db.Column(db.String(20), default=ROUTINE)
    hazard_concern = db.Column(db.String(255), default="")
    hazard_description = db.Column(db.Text, default="")
    likelihood = db.Column(db.Integer, nullable=False, default=1)
    consequence = db.Column(db.Integer, nullable=False, default=1)
    existing_risk_control = db.Column(db.Text, default="")
    significance = db.Column(db.String(20), nullable=False, default=NOT_SIGNIFICANT)
    recommendation = db.Column(db.Text, default="")

    action_owner_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    target_date = db.Column(db.Date)
    action_status = db.Column(db.String(20), nullable=False, default=ACTION_OPEN)
    remarks = db.Column(db.Text)
    completion_evidence = db.Column(db.Text)
    actual_completion_date = db.Column(db.Date)

    assessment = db.relationship("Assessment", back_populates="worksheet_rows")
    action_owner = db.relationship("User", foreign_keys=[action_owner_id])

    @property
    def risk_score(self) -> int:
        return (self.likelihood or 0) * (self.consequence or 0)

    @property
    def risk_category(self) -> str:
        return category_for(self.risk_score)

    @property
    def is_action_item(self) -> bool:
        return bool(self.recommendation and self.recommendation.strip())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "position": self.position,
            "task_name": self.task_name,
            "activity_service": self.activity_service,
            "routine_non_routine": self.routine_non_routine,
            "hazard_concern": self.hazard_concern,
            "hazard_description": self.hazard_description,
            "likelihood": self.likelihood,
            "consequence": self.consequence,
            "risk_score": self.risk_score,
            "risk_category": self.risk_category,
            "existing_risk_control": self.existing_risk_control,
            "significance": self.significance,
            "recommendation": self.recommendation,
            "action_owner_id": self.action_owner_id,
            "action_owner": self.action_owner.to_ref() if self.action_owner else None,
            "target_date": _iso(self.target_date),
            "action_status": self.action_status,
            "remarks": self.remarks,
            "completion_evidence": self.completion_evidence,
            "actual_completion_date": _iso(self.actual_completion_date),
        }

    def __repr__(self):
        return f"<WorksheetRow {self.position}: {self.task_name!r} score={self.risk_score}>"
