"""
Sparks Immersion Planner
Immersion domain model.

Models:
    - Profile: people who own immersions and tasks (e-mail recipients)
    - Immersion: a scheduled multi-day event
    - Task: one checklist task of an immersion
"""

from datetime import datetime, timezone

from sparks.models import db


# ── Constants ────────────────────────────────────────────────────────────────

IMMERSION_PLANNING = "Planejamento"
IMMERSION_IN_PROGRESS = "Em andamento"
IMMERSION_COMPLETED = "Concluída"
IMMERSION_CANCELLED = "Cancelada"
IMMERSION_STATUSES = [IMMERSION_IN_PROGRESS, IMMERSION_PLANNING, IMMERSION_COMPLETED, IMMERSION_CANCELLED]

# Legacy labels still found in older rows
_LEGACY_IMMERSION_STATUS = {"Em execução": IMMERSION_IN_PROGRESS}

TASK_SCHEDULED = "Programada"
TASK_IN_PROGRESS = "Em andamento"
TASK_DONE = "Concluída"
TASK_OVERDUE = "Atrasada"
TASK_STATUSES = {TASK_SCHEDULED, TASK_IN_PROGRESS, TASK_DONE, TASK_OVERDUE}

PHASE_PRE = "PRE"
PHASE_DURING = "DURING"
PHASE_POST = "POST"
TASK_PHASES = (PHASE_PRE, PHASE_DURING, PHASE_POST)

# Labels used by the checklist screens before the phase enum was fixed
_PHASE_ALIASES = {
    "PA-PRE": PHASE_PRE,
    "PRÉ": PHASE_PRE,
    "DURANTE": PHASE_DURING,
    "POS": PHASE_POST,
    "PÓS": PHASE_POST,
}


def normalize_immersion_status(status: str | None) -> str:
    if not status:
        return ""
    return _LEGACY_IMMERSION_STATUS.get(status, status)


def normalize_phase(phase: str | None) -> str | None:
    """Map legacy phase labels to PRE / DURING / POST; unknown values pass through."""
    if phase is None:
        return None
    value = phase.strip().upper()
    return _PHASE_ALIASES.get(value, value) or None


def _utcnow():
    return datetime.now(timezone.utc)


class Profile(db.Model):
    """A platform user. Only ``name`` and ``email`` matter to the engine."""

    __tablename__ = "profiles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False, default="")
    email = db.Column(db.String(255), nullable=True, index=True)
    role = db.Column(db.String(30), default="viewer")
    is_active = db.Column(db.Boolean, default=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    @property
    def label(self) -> str:
        return self.name or self.email or str(self.id)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Profile {self.id}: {self.name}>"


class Immersion(db.Model):
    """
    A multi-day event being planned.

    ``consultant_name`` is the legacy free-text consultant field; the risk
    e-mail falls back to it when ``consultant_id`` is empty.
    """

    __tablename__ = "immersions"

    id = db.Column(db.Integer, primary_key=True)
    immersion_name = db.Column(db.String(200), nullable=False)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(30), default=IMMERSION_PLANNING, index=True)

    consultant_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    designer_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    checklist_owner_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    consultant_name = db.Column(db.String(150), nullable=True)
    checklist_template_id = db.Column(
        db.Integer, db.ForeignKey("checklist_templates.id", ondelete="SET NULL"), nullable=True,
    )

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    tasks = db.relationship("Task", back_populates="immersion", passive_deletes=True)

    @property
    def is_in_progress(self) -> bool:
        return normalize_immersion_status(self.status) == IMMERSION_IN_PROGRESS

    def to_dict(self):
        return {
            "id": self.id,
            "immersion_name": self.immersion_name,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "status": normalize_immersion_status(self.status),
            "consultant_id": self.consultant_id,
            "designer_id": self.designer_id,
            "checklist_owner_id": self.checklist_owner_id,
            "consultant_name": self.consultant_name,
            "checklist_template_id": self.checklist_template_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Immersion {self.id}: {self.immersion_name[:40]}>"


class Task(db.Model):
    """
    One checklist task of an immersion.

    ``status`` is informational: urgency is always derived from ``due_date``.
    ``template_key`` is set only on tasks generated from a checklist template
    and is unique per immersion, which backs idempotent re-application.
    """

    __tablename__ = "immersion_tasks"
    __table_args__ = (
        db.UniqueConstraint("immersion_id", "template_key", name="uq_task_immersion_template_key"),
    )

    id = db.Column(db.Integer, primary_key=True)
    immersion_id = db.Column(
        db.Integer, db.ForeignKey("immersions.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    template_item_id = db.Column(db.Integer, nullable=True)
    phase = db.Column(db.String(20), nullable=True)
    title = db.Column(db.String(300), nullable=False)
    responsible_id = db.Column(
        db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    due_date = db.Column(db.Date, nullable=True, index=True)
    status = db.Column(db.String(30), default=TASK_SCHEDULED)
    done_at = db.Column(db.DateTime(timezone=True), nullable=True)
    template_key = db.Column(db.String(400), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    immersion = db.relationship("Immersion", back_populates="tasks")
    responsible = db.relationship("Profile", foreign_keys=[responsible_id])

    @property
    def is_done(self) -> bool:
        return self.status == TASK_DONE or self.done_at is not None

    @property
    def is_open(self) -> bool:
        return not self.is_done

    def to_dict(self):
        return {
            "id": self.id,
            "immersion_id": self.immersion_id,
            "template_item_id": self.template_item_id,
            "phase": self.phase,
            "title": self.title,
            "responsible_id": self.responsible_id,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "status": self.status,
            "done_at": self.done_at.isoformat() if self.done_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Task {self.id}: {self.title[:40]}>"
