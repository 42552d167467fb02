"""
Organization hierarchy models — Organization → Area → Department.

Departments carry both their parent area and a denormalised
organization_id so organization-scoped filters need a single join.
The two must agree: a department's organization is its area's organization.
"""

from datetime import datetime, timezone

from sqlalchemy.orm import validates

from inspection_platform.models import db


# ═══════════════════════════════════════════════════════════════
# 1. ORGANIZATIONS
# ═══════════════════════════════════════════════════════════════
class Organization(db.Model):
    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # Relationships
    areas = db.relationship("Area", back_populates="organization", lazy="dynamic",
                            cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Organization {self.id}: {self.name}>"


# ═══════════════════════════════════════════════════════════════
# 2. AREAS
# ═══════════════════════════════════════════════════════════════
class Area(db.Model):
    __tablename__ = "areas"
    __table_args__ = (
        db.UniqueConstraint("organization_id", "name", name="uq_area_org_name"),
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    organization = db.relationship("Organization", back_populates="areas")
    departments = db.relationship("Department", back_populates="area", lazy="dynamic",
                                  cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "description": self.description,
        }

    def __repr__(self):
        return f"<Area {self.id}: {self.name}>"


# ═══════════════════════════════════════════════════════════════
# 3. DEPARTMENTS
# ═══════════════════════════════════════════════════════════════
class Department(db.Model):
    __tablename__ = "departments"
    __table_args__ = (
        db.UniqueConstraint("area_id", "name", name="uq_department_area_name"),
        db.Index("ix_departments_org_area", "organization_id", "area_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    area_id = db.Column(
        db.Integer, db.ForeignKey("areas.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        comment="Denormalised from area.organization_id",
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    area = db.relationship("Area", back_populates="departments")
    organization = db.relationship("Organization")

    @validates("area")
    def _sync_organization(self, key, area):
        if area is not None and area.organization_id is not None:
            if self.organization_id is not None and self.organization_id != area.organization_id:
                raise ValueError("Department organization must match its area's organization")
            self.organization_id = area.organization_id
        return area

    def to_dict(self):
        return {
            "id": self.id,
            "area_id": self.area_id,
            "organization_id": self.organization_id,
            "name": self.name,
            "description": self.description,
        }

    def __repr__(self):
        return f"<Department {self.id}: {self.name}>"
