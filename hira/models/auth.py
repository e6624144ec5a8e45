"""
HIRA Lifecycle Engine
User model and role groups.

Authentication lives outside this service; a User row only carries what the
permission predicates need: identity, company, plant and a role name.
"""

from datetime import datetime, timezone

from hira.models import db

# ── Role groups ──────────────────────────────────────────────────────────────

KNOWN_ROLES = frozenset({
    "platform_owner", "company_owner", "superadmin", "admin", "plant_head",
    "safety_incharge", "hod", "contractor", "worker", "user", "assessor",
})

# "admin/owner": may assign and close assessments
OWNER_ROLES = frozenset({"platform_owner", "company_owner", "superadmin", "admin", "plant_head"})

# May approve/reject alongside the lead assessor
APPROVER_ROLES = frozenset({"superadmin", "admin"})

# May manage action items on any assessment in the company
SUPERADMIN_ROLES = frozenset({"superadmin", "platform_owner"})


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, nullable=False, index=True)
    plant_id = db.Column(db.Integer, nullable=True, index=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(40), nullable=False, default="user")
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("company_id", "email", name="uq_user_company_email"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "plant_id": self.plant_id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
        }

    def to_ref(self):
        """Compact reference embedded in assessment payloads."""
        return {"id": self.id, "name": self.name, "email": self.email, "role": self.role}

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"
