"""
Sparks Immersion Planner
Checklist template model.

Models:
    - ChecklistTemplate: a reusable named checklist
    - TaskTemplateItem: one task blueprint, dated relative to the immersion
"""

from datetime import datetime, timezone

from sparks.models import db


# ── Constants ────────────────────────────────────────────────────────────────

DUE_BASIS_START = "start"
DUE_BASIS_END = "end"
DUE_BASES = {DUE_BASIS_START, DUE_BASIS_END}


class ChecklistTemplate(db.Model):
    __tablename__ = "checklist_templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    is_active = db.Column(db.Boolean, default=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    items = db.relationship(
        "TaskTemplateItem", back_populates="template",
        cascade="all, delete-orphan", order_by="TaskTemplateItem.sort_order",
    )

    def to_dict(self, include_items=False):
        d = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_items:
            d["items"] = [i.to_dict() for i in self.items]
        return d

    def __repr__(self):
        return f"<ChecklistTemplate {self.id}: {self.name[:40]}>"


class TaskTemplateItem(db.Model):
    """
    A task blueprint.

    The generated task is due ``offset_days`` after the immersion's start
    (``due_basis="start"``) or end date. Editing an item never touches tasks
    that were already generated from it.
    """

    __tablename__ = "checklist_template_items"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("checklist_templates.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    phase = db.Column(db.String(20), nullable=False, comment="PRE, DURING, POST")
    area = db.Column(db.String(100), nullable=True)
    title = db.Column(db.String(300), nullable=False)
    due_basis = db.Column(db.String(10), default=DUE_BASIS_START, comment="start or end")
    offset_days = db.Column(db.Integer, default=0)
    sort_order = db.Column(db.Integer, default=0)
    # Kept for display only; generated tasks take the immersion owner
    responsible_id = db.Column(db.Integer, nullable=True)

    template = db.relationship("ChecklistTemplate", back_populates="items")

    def to_dict(self):
        return {
            "id": self.id,
            "template_id": self.template_id,
            "phase": self.phase,
            "area": self.area,
            "title": self.title,
            "due_basis": self.due_basis,
            "offset_days": self.offset_days,
            "sort_order": self.sort_order,
            "responsible_id": self.responsible_id,
        }

    def __repr__(self):
        return f"<TaskTemplateItem {self.id}: {self.phase}/{self.title[:30]}>"
