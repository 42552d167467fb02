"""
Template domain models.

Models:
    - MasterTemplate: reusable checklist definition plus its recurrence policy
    - ChecklistItem: ordered checklist entry with a stable QR correlation id
    - TemplateDepartment: recurrence target (template × department) with an
      optional default inspector
"""

import secrets
from datetime import datetime, timezone

from inspection_platform.models import db


def generate_qr_code_id() -> str:
    return secrets.token_hex(8)


class MasterTemplate(db.Model):
    """
    Reusable checklist definition owned by one organization.

    ``cadence_type``/``cadence_config`` describe the recurrence policy
    (see ``services.cadence``); a template without a cadence is only ever
    instantiated on demand. ``frequency`` is the legacy day interval.
    """

    __tablename__ = "master_templates"
    __table_args__ = (
        db.Index("ix_master_templates_org_active", "organization_id", "is_active"),
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    is_active = db.Column(db.Boolean, default=True)

    # Recurrence policy
    cadence_type = db.Column(db.String(30), nullable=True,
                             comment="interval | monthly | nth_weekday")
    cadence_config = db.Column(db.JSON, default=dict,
                               comment='e.g. {"days": 7} or {"n": 1, "weekday": 0}')
    frequency = db.Column(db.Integer, nullable=True,
                          comment="Legacy interval in days; used when cadence_type is empty")
    anchor_date = db.Column(db.Date, nullable=True,
                            comment="First occurrence; defaults to the sweep date")
    lead_days = db.Column(db.Integer, default=0,
                          comment="Create an occurrence this many days before it is due")

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    organization = db.relationship("Organization")
    checklist_items = db.relationship(
        "ChecklistItem", back_populates="template",
        order_by="ChecklistItem.sort_order", cascade="all, delete-orphan",
    )
    targets = db.relationship(
        "TemplateDepartment", back_populates="template", cascade="all, delete-orphan",
    )

    def to_dict(self, include_items=False):
        d = {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "cadence_type": self.cadence_type,
            "cadence_config": self.cadence_config or {},
            "frequency": self.frequency,
            "anchor_date": self.anchor_date.isoformat() if self.anchor_date else None,
            "lead_days": self.lead_days or 0,
            "department_ids": [t.department_id for t in self.targets],
        }
        if include_items:
            d["checklist_items"] = [i.to_dict() for i in self.checklist_items]
        return d

    def __repr__(self):
        return f"<MasterTemplate {self.id}: {self.name}>"


class ChecklistItem(db.Model):
    __tablename__ = "checklist_items"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("master_templates.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    sort_order = db.Column(db.Integer, default=0)
    qr_code_id = db.Column(db.String(32), unique=True, nullable=False,
                           default=generate_qr_code_id)

    template = db.relationship("MasterTemplate", back_populates="checklist_items")

    def to_dict(self):
        return {
            "id": self.id,
            "template_id": self.template_id,
            "title": self.title,
            "description": self.description,
            "sort_order": self.sort_order,
            "qr_code_id": self.qr_code_id,
        }


class TemplateDepartment(db.Model):
    """Recurrence target: the sweep keeps one schedule per row."""

    __tablename__ = "template_departments"
    __table_args__ = (
        db.UniqueConstraint("template_id", "department_id", name="uq_template_department"),
    )

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("master_templates.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    default_inspector_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    template = db.relationship("MasterTemplate", back_populates="targets")
    department = db.relationship("Department")
    default_inspector = db.relationship("User")

    def __repr__(self):
        return f"<TemplateDepartment t={self.template_id} d={self.department_id}>"
