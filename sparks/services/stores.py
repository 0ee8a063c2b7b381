"""
Sparks Immersion Planner
Collaborator stores — SQLAlchemy-backed persistence for the planning engine.

The template engine, the notification scheduler and the dashboards never
touch ``db.session`` directly; they receive a ``Stores`` bundle built once
per call. Every store method wraps ``SQLAlchemyError`` into
``TransientIOError`` so callers can isolate a failed unit of work.

Also hosts the Clock used by the scheduler:
    - SystemClock: wall-clock "now" in the configured APP_TIMEZONE
    - FixedClock: frozen instant, for tests and manual re-runs
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from sparks.core.exceptions import ConflictError, TransientIOError
from sparks.models import db
from sparks.models.immersion import TASK_DONE, TASK_OVERDUE, Immersion, Profile, Task
from sparks.models.notification import NotificationLogEntry
from sparks.models.template import ChecklistTemplate, TaskTemplateItem

logger = logging.getLogger(__name__)


@contextmanager
def _io(operation: str, *, rollback: bool = False):
    try:
        yield
    except SQLAlchemyError as exc:
        if rollback:
            db.session.rollback()
        logger.warning("Store operation %s failed: %s", operation, exc)
        raise TransientIOError(operation, exc) from exc


def _open_task_clause():
    return and_(
        or_(Task.status.is_(None), Task.status != TASK_DONE),
        Task.done_at.is_(None),
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Clock
# ═══════════════════════════════════════════════════════════════════════════


class SystemClock:
    def __init__(self, tz_name: str | None = None):
        self.tz = ZoneInfo(tz_name) if tz_name else None

    def now(self) -> datetime:
        return datetime.now(self.tz) if self.tz else datetime.now().astimezone()


class FixedClock:
    def __init__(self, instant: datetime):
        self.instant = instant

    def now(self) -> datetime:
        return self.instant


# ═══════════════════════════════════════════════════════════════════════════
#  Task / Immersion / Profile / Template stores
# ═══════════════════════════════════════════════════════════════════════════


class TaskStore:
    def list_open_tasks(
        self,
        *,
        due_before: date | None = None,
        due_from: date | None = None,
        due_to: date | None = None,
        immersion_id: int | None = None,
        responsible_id: int | None = None,
    ) -> list[Task]:
        """Open tasks (not done, no ``done_at``), ordered by due date then id."""
        stmt = select(Task).where(_open_task_clause())
        if due_before is not None:
            stmt = stmt.where(Task.due_date < due_before)
        if due_from is not None:
            stmt = stmt.where(Task.due_date >= due_from)
        if due_to is not None:
            stmt = stmt.where(Task.due_date <= due_to)
        if immersion_id is not None:
            stmt = stmt.where(Task.immersion_id == immersion_id)
        if responsible_id is not None:
            stmt = stmt.where(Task.responsible_id == responsible_id)
        stmt = stmt.order_by(Task.due_date.asc(), Task.id.asc())
        with _io("list_open_tasks"):
            return list(db.session.execute(stmt).scalars().all())

    def list_tasks(self, immersion_id: int | None = None) -> list[Task]:
        stmt = select(Task)
        if immersion_id is not None:
            stmt = stmt.where(Task.immersion_id == immersion_id)
        with _io("list_tasks"):
            return list(db.session.execute(stmt.order_by(Task.id)).scalars().all())

    def insert_task(self, task: Task) -> Task:
        """Insert and commit a single task; a failure leaves earlier inserts intact.

        Raises:
            ConflictError: the immersion already has a task with this ``template_key``.
            TransientIOError: any other database failure.
        """
        with _io("insert_task", rollback=True):
            db.session.add(task)
            try:
                db.session.commit()
            except IntegrityError as exc:
                db.session.rollback()
                if task.template_key is None:
                    raise
                raise ConflictError("Task", "template_key", task.template_key) from exc
        return task

    def insert_tasks(self, tasks: list[Task]) -> list[Task]:
        """Insert a batch in one commit, along with anything already pending in the session."""
        with _io("insert_tasks", rollback=True):
            db.session.add_all(tasks)
            db.session.commit()
        return tasks

    def update_task_status(self, task_id: int, status: str) -> Task | None:
        with _io("update_task_status", rollback=True):
            task = db.session.get(Task, task_id)
            if task is None:
                return None
            task.status = status
            db.session.commit()
        return task

    def mark_overdue(self, today: date) -> int:
        """Flag open tasks past their due date with the informational Atrasada status."""
        stmt = select(Task).where(
            _open_task_clause(),
            Task.due_date < today,
            or_(Task.status.is_(None), Task.status != TASK_OVERDUE),
        )
        with _io("mark_overdue", rollback=True):
            tasks = db.session.execute(stmt).scalars().all()
            for t in tasks:
                t.status = TASK_OVERDUE
            db.session.commit()
        return len(tasks)


class ImmersionStore:
    def get_immersion(self, immersion_id: int) -> Immersion | None:
        with _io("get_immersion"):
            return db.session.get(Immersion, immersion_id)

    def list_immersions(
        self,
        *,
        ids=None,
        created_since: datetime | None = None,
        exclude_statuses=None,
    ) -> list[Immersion]:
        stmt = select(Immersion)
        if ids is not None:
            stmt = stmt.where(Immersion.id.in_(list(ids)))
        if created_since is not None:
            # timestamps are written in UTC
            if created_since.tzinfo is not None:
                created_since = created_since.astimezone(timezone.utc)
            stmt = stmt.where(Immersion.created_at >= created_since)
        if exclude_statuses:
            stmt = stmt.where(or_(Immersion.status.is_(None), Immersion.status.not_in(list(exclude_statuses))))
        with _io("list_immersions"):
            return list(db.session.execute(stmt.order_by(Immersion.id)).scalars().all())

    def insert_immersion(self, immersion: Immersion, *, commit: bool = True) -> Immersion:
        """With ``commit=False`` the row is only flushed; the next commit or rollback decides it."""
        with _io("insert_immersion", rollback=True):
            db.session.add(immersion)
            if commit:
                db.session.commit()
            else:
                db.session.flush()
        return immersion

    def set_checklist_template(self, immersion: Immersion, template_id: int) -> None:
        with _io("set_checklist_template", rollback=True):
            immersion.checklist_template_id = template_id
            db.session.commit()


class ProfileStore:
    def get_profiles_by_ids(self, ids) -> dict[int, Profile]:
        ids = {i for i in ids if i is not None}
        if not ids:
            return {}
        with _io("get_profiles_by_ids"):
            rows = db.session.execute(select(Profile).where(Profile.id.in_(ids))).scalars().all()
        return {p.id: p for p in rows}

    def find_profile_by_name_ci(self, name: str | None) -> Profile | None:
        needle = (name or "").strip().lower()
        if not needle:
            return None
        stmt = (
            select(Profile)
            .where(func.lower(func.trim(Profile.name)) == needle)
            .order_by(Profile.id)
            .limit(1)
        )
        with _io("find_profile_by_name_ci"):
            return db.session.execute(stmt).scalars().first()

    def list_profiles(self) -> list[Profile]:
        with _io("list_profiles"):
            return list(db.session.execute(select(Profile).order_by(Profile.name)).scalars().all())


class TemplateStore:
    def get_template(self, template_id: int) -> ChecklistTemplate | None:
        with _io("get_template"):
            return db.session.get(ChecklistTemplate, template_id)

    def list_template_items(self, template_id: int) -> list[TaskTemplateItem]:
        stmt = (
            select(TaskTemplateItem)
            .where(TaskTemplateItem.template_id == template_id)
            .order_by(TaskTemplateItem.sort_order, TaskTemplateItem.id)
        )
        with _io("list_template_items"):
            return list(db.session.execute(stmt).scalars().all())


# ═══════════════════════════════════════════════════════════════════════════
#  Notification log store
# ═══════════════════════════════════════════════════════════════════════════


def naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _served_clause(rule_key: str, to_email: str, since: datetime):
    return and_(
        NotificationLogEntry.rule_key == rule_key,
        func.lower(NotificationLogEntry.to_email) == to_email.strip().lower(),
        NotificationLogEntry.status == "ok",
        NotificationLogEntry.created_at > naive_utc(since),
    )


class NotificationLogStore:
    def insert_log_entry(self, entry: dict) -> NotificationLogEntry:
        """Append one audit row. ``created_at`` may be aware; it is stored as naive UTC."""
        values = dict(entry)
        if values.get("created_at") is not None:
            values["created_at"] = naive_utc(values["created_at"])
        row = NotificationLogEntry(**values)
        with _io("insert_log_entry", rollback=True):
            db.session.add(row)
            db.session.commit()
        return row

    def query_recent(self, rule_key: str, to_email: str, since: datetime) -> bool:
        """True when an ``ok`` entry for (rule, recipient) exists strictly after ``since``."""
        stmt = select(NotificationLogEntry.id).where(_served_clause(rule_key, to_email, since)).limit(1)
        with _io("query_recent"):
            return db.session.execute(stmt).first() is not None

    def last_sent_at(self, rule_key: str, to_email: str, since: datetime) -> datetime | None:
        """Newest ``ok`` entry time (naive UTC) for (rule, recipient) after ``since``, or None."""
        stmt = select(func.max(NotificationLogEntry.created_at)).where(_served_clause(rule_key, to_email, since))
        with _io("last_sent_at"):
            return db.session.execute(stmt).scalar()

    def list_entries(self, *, rule_key: str | None = None, limit: int = 100) -> list[NotificationLogEntry]:
        stmt = select(NotificationLogEntry)
        if rule_key:
            stmt = stmt.where(NotificationLogEntry.rule_key == rule_key)
        stmt = stmt.order_by(NotificationLogEntry.created_at.desc(), NotificationLogEntry.id.desc()).limit(limit)
        with _io("list_log_entries"):
            return list(db.session.execute(stmt).scalars().all())


@dataclass
class Stores:
    """The collaborator bundle handed to services."""

    tasks: TaskStore = field(default_factory=TaskStore)
    immersions: ImmersionStore = field(default_factory=ImmersionStore)
    profiles: ProfileStore = field(default_factory=ProfileStore)
    templates: TemplateStore = field(default_factory=TemplateStore)
    log: NotificationLogStore = field(default_factory=NotificationLogStore)
