"""
Inspection domain models.

Models:
    - InspectionInstance: one dated occurrence of a template for a department
    - InspectionReport: execution record (one per instance)
    - ReportItem: per-checklist-item result inside a report

Duplicate prevention for scheduled occurrences is enforced by the store:
UNIQUE (template_id, department_id, period_key). Sweep-created rows carry
the due-date bucket as ``period_key``; on-demand rows leave it NULL, and
NULLs never collide in a SQL unique constraint.
"""

from datetime import datetime, timezone

from inspection_platform.models import db


# ── Constants ────────────────────────────────────────────────────────────────

class InspectionStatus:
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


# The only state from which an instance may be deleted.
INITIAL_STATUS = InspectionStatus.PENDING

OPEN_STATUSES = (InspectionStatus.PENDING, InspectionStatus.IN_PROGRESS)


class InspectionInstance(db.Model):
    __tablename__ = "inspection_instances"
    __table_args__ = (
        db.UniqueConstraint(
            "template_id", "department_id", "period_key",
            name="uq_inspection_template_department_period",
        ),
        db.Index("idx_inspection_template_department_due", "template_id", "department_id", "due_date"),
        db.Index("idx_inspection_inspector_status", "inspector_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("master_templates.id", ondelete="CASCADE"),
        nullable=False,
    )
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    inspector_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    status = db.Column(db.String(20), nullable=False, default=InspectionStatus.PENDING,
                       comment="PENDING | IN_PROGRESS | COMPLETED")
    period_key = db.Column(db.String(10), nullable=True,
                           comment="ISO date of the scheduled bucket; NULL for on-demand rows")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False,
                           default=lambda: datetime.now(timezone.utc))

    template = db.relationship("MasterTemplate")
    department = db.relationship("Department")
    inspector = db.relationship("User")
    report = db.relationship(
        "InspectionReport", back_populates="instance", uselist=False,
        cascade="all, delete-orphan",
    )

    @property
    def report_item_count(self) -> int:
        if self.report is None:
            return 0
        return len(self.report.items)

    def to_dict(self):
        return {
            "id": self.id,
            "template_id": self.template_id,
            "template_name": self.template.name if self.template else None,
            "department_id": self.department_id,
            "department_name": self.department.name if self.department else None,
            "inspector_id": self.inspector_id,
            "inspector_name": self.inspector.name if self.inspector else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "status": self.status,
            "period_key": self.period_key,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "report_item_count": self.report_item_count,
        }

    def __repr__(self):
        return f"<InspectionInstance {self.id}: t={self.template_id} d={self.department_id} [{self.status}]>"


class InspectionReport(db.Model):
    __tablename__ = "inspection_reports"

    id = db.Column(db.Integer, primary_key=True)
    instance_id = db.Column(
        db.Integer, db.ForeignKey("inspection_instances.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    locked = db.Column(db.Boolean, default=False)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    instance = db.relationship("InspectionInstance", back_populates="report")
    items = db.relationship("ReportItem", back_populates="report", cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "instance_id": self.instance_id,
            "locked": self.locked,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "items": [i.to_dict() for i in self.items],
        }


class ReportItem(db.Model):
    __tablename__ = "report_items"
    __table_args__ = (
        db.UniqueConstraint("report_id", "checklist_item_id", name="uq_report_item_checklist"),
    )

    id = db.Column(db.Integer, primary_key=True)
    report_id = db.Column(
        db.Integer, db.ForeignKey("inspection_reports.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    checklist_item_id = db.Column(
        db.Integer, db.ForeignKey("checklist_items.id", ondelete="CASCADE"),
        nullable=False,
    )
    approved = db.Column(db.Boolean, default=False)
    comments = db.Column(db.Text, nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    report = db.relationship("InspectionReport", back_populates="items")

    def to_dict(self):
        return {
            "id": self.id,
            "checklist_item_id": self.checklist_item_id,
            "approved": self.approved,
            "comments": self.comments,
        }
