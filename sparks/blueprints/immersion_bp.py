"""
Sparks Immersion Planner
Immersion & Task Blueprint.

Provides:
    - Checklist template application (idempotent)
    - Manual task creation with owner / due date defaults
    - Prioritised task list with urgency bucket per task
    - Immersion clone with shifted task dates
    - Task status update
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request

from sparks.core.exceptions import NotFoundError, ValidationError
from sparks.models.immersion import (
    IMMERSION_PLANNING,
    TASK_PHASES,
    TASK_SCHEDULED,
    TASK_STATUSES,
    Immersion,
    Task,
    normalize_phase,
)
from sparks.services.stores import Stores, SystemClock
from sparks.services.task_defaults import resolve_task_defaults
from sparks.services.template_engine import apply_checklist_template, shift_tasks_for_clone
from sparks.utils.dates import classify, sort_tasks_by_priority, to_date_only
from sparks.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

immersion_bp = Blueprint("immersion", __name__, url_prefix="/api/v1")
register_error_handlers(immersion_bp)


def _today():
    as_of = request.args.get("as_of")
    if as_of:
        return to_date_only(as_of)
    return SystemClock(current_app.config.get("APP_TIMEZONE")).now().date()


def _get_immersion(stores: Stores, immersion_id: int) -> Immersion:
    immersion = stores.immersions.get_immersion(immersion_id)
    if immersion is None:
        raise NotFoundError(resource="Immersion", resource_id=immersion_id)
    return immersion


# ═══════════════════════════════════════════════════════════════════════════
#  TEMPLATES
# ═══════════════════════════════════════════════════════════════════════════

@immersion_bp.route("/immersions/<int:immersion_id>/apply-template", methods=["POST"])
def apply_template(immersion_id):
    """Apply a checklist template; returns inserted / skipped / omitted / failed counts."""
    data = request.get_json(silent=True) or {}
    counts = apply_checklist_template(immersion_id, data.get("template_id"), Stores())
    return jsonify({"immersion_id": immersion_id, "template_id": data.get("template_id"), **counts})


# ═══════════════════════════════════════════════════════════════════════════
#  TASKS
# ═══════════════════════════════════════════════════════════════════════════

@immersion_bp.route("/immersions/<int:immersion_id>/tasks", methods=["GET"])
def list_tasks(immersion_id):
    stores = Stores()
    _get_immersion(stores, immersion_id)
    today = _today()
    tasks = sort_tasks_by_priority(stores.tasks.list_tasks(immersion_id))
    items = []
    for t in tasks:
        d = t.to_dict()
        d["bucket"] = classify(t.due_date, today)
        items.append(d)
    return jsonify({"items": items, "total": len(items), "as_of": today.isoformat()})


@immersion_bp.route("/immersions/<int:immersion_id>/tasks", methods=["POST"])
def create_task(immersion_id):
    """Create a manual task; missing owner and due date come from the immersion."""
    stores = Stores()
    immersion = _get_immersion(stores, immersion_id)
    data = request.get_json(silent=True) or {}

    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required", details={"title": "missing"})

    phase = normalize_phase(data.get("phase"))
    if phase is not None and phase not in TASK_PHASES:
        raise ValidationError(
            f"Invalid phase. Must be one of: {list(TASK_PHASES)}", details={"phase": data.get("phase")},
        )

    status = data.get("status") or TASK_SCHEDULED
    if status not in TASK_STATUSES:
        raise ValidationError(
            f"Invalid status. Must be one of: {sorted(TASK_STATUSES)}", details={"status": status},
        )

    fields = resolve_task_defaults({
        "phase": phase,
        "title": title,
        "responsible_id": data.get("responsible_id"),
        "due_date": to_date_only(data.get("due_date")),
    }, immersion)

    task = Task(
        immersion_id=immersion_id,
        phase=fields["phase"],
        title=fields["title"],
        responsible_id=fields["responsible_id"],
        due_date=fields["due_date"],
        status=status,
        notes=data.get("notes"),
    )
    stores.tasks.insert_task(task)
    logger.info("Task %s created on immersion %s", task.id, immersion_id, extra={"immersion_id": immersion_id})
    return jsonify(task.to_dict()), 201


@immersion_bp.route("/tasks/<int:task_id>/status", methods=["PATCH"])
def update_task_status(task_id):
    data = request.get_json(silent=True) or {}
    status = data.get("status")
    if status not in TASK_STATUSES:
        raise ValidationError(
            f"Invalid status. Must be one of: {sorted(TASK_STATUSES)}", details={"status": status},
        )
    task = Stores().tasks.update_task_status(task_id, status)
    if task is None:
        raise NotFoundError(resource="Task", resource_id=task_id)
    return jsonify(task.to_dict())


# ═══════════════════════════════════════════════════════════════════════════
#  CLONE
# ═══════════════════════════════════════════════════════════════════════════

@immersion_bp.route("/immersions/<int:immersion_id>/clone", methods=["POST"])
def clone_immersion(immersion_id):
    """
    Duplicate an immersion and its checklist.

    Task due dates move by the difference between the new and the original
    start date; every copied task restarts as Programada.
    """
    stores = Stores()
    source = _get_immersion(stores, immersion_id)
    data = request.get_json(silent=True) or {}

    new_start = to_date_only(data.get("start_date"))
    if new_start is None:
        raise ValidationError("start_date is required", details={"start_date": "missing"})
    new_end = to_date_only(data.get("end_date"))
    if new_end is None and source.start_date and source.end_date:
        new_end = new_start + (source.end_date - source.start_date)

    clone = Immersion(
        immersion_name=(data.get("immersion_name") or f"{source.immersion_name} (cópia)").strip(),
        start_date=new_start,
        end_date=new_end,
        status=IMMERSION_PLANNING,
        consultant_id=source.consultant_id,
        designer_id=source.designer_id,
        checklist_owner_id=source.checklist_owner_id,
        consultant_name=source.consultant_name,
        checklist_template_id=source.checklist_template_id,
    )
    source_tasks = stores.tasks.list_tasks(immersion_id)
    stores.immersions.insert_immersion(clone, commit=False)
    copies = shift_tasks_for_clone(source_tasks, source.start_date, new_start, new_immersion_id=clone.id)
    # one commit for the clone and its tasks
    stores.tasks.insert_tasks(copies)

    logger.info("Immersion %s cloned into %s with %d task(s)", immersion_id, clone.id, len(copies),
                extra={"immersion_id": clone.id})
    return jsonify({"immersion": clone.to_dict(), "tasks_copied": len(copies)}), 201
