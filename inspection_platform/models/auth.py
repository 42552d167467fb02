"""
User directory model.

Credential storage and session issuance live outside this service; the
row here only carries what scoping and assignment need: role and the
caller's place in the Organization → Area → Department tree.
"""

from datetime import datetime, timezone

from inspection_platform.models import db


# ── Roles ────────────────────────────────────────────────────────────────────

class Roles:
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    MINI_ADMIN = "MINI_ADMIN"
    INSPECTOR = "INSPECTOR"


class User(db.Model):
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_org_role", "organization_id", "role"),
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), unique=True, nullable=False)
    name = db.Column(db.String(200))
    role = db.Column(db.String(20), nullable=False, default=Roles.INSPECTOR,
                     comment="SUPER_ADMIN | ADMIN | MINI_ADMIN | INSPECTOR")
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    area_id = db.Column(
        db.Integer, db.ForeignKey("areas.id", ondelete="SET NULL"), nullable=True,
    )
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    organization = db.relationship("Organization")
    area = db.relationship("Area")
    department = db.relationship("Department")

    @property
    def is_inspector(self) -> bool:
        return self.role == Roles.INSPECTOR

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "organization_id": self.organization_id,
            "area_id": self.area_id,
            "department_id": self.department_id,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} [{self.role}]>"
