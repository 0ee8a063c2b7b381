"""
Sparks Immersion Planner
Template Application Engine — materialises checklist templates into tasks.

Flow:
    1. Each template item is dated from the immersion: ``base + offset_days``
       where base is the end date for ``due_basis="end"``, else the start date.
    2. Items whose (phase, title) key already exists on the immersion are
       skipped, so re-applying a template is always safe.
    3. Items that cannot be dated (missing base date, out-of-range offset)
       are omitted; the rest of the batch continues.
    4. New tasks are owned by the immersion's checklist owner (see
       task_defaults), never by the responsible stored on the template item.

Also provides ``shift_tasks_for_clone`` used when an immersion is duplicated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta

from sparks.core.exceptions import ConflictError, NotFoundError, TransientIOError, ValidationError
from sparks.models.immersion import TASK_SCHEDULED, Task
from sparks.models.template import DUE_BASIS_END
from sparks.services.stores import Stores
from sparks.services.task_defaults import resolve_owner

logger = logging.getLogger(__name__)


@dataclass
class TemplateApplication:
    to_insert: list[Task] = field(default_factory=list)
    skipped: int = 0
    omitted: int = 0


def task_dedup_key(phase: str | None, title: str | None) -> str:
    return f"{(phase or '').strip().lower()}::{(title or '').strip().lower()}"


def compute_due_date(item, immersion) -> date | None:
    base = immersion.end_date if (item.due_basis or "").strip().lower() == DUE_BASIS_END else immersion.start_date
    if base is None:
        return None
    try:
        return base + timedelta(days=int(item.offset_days or 0))
    except OverflowError:
        return None


def apply_template(items, immersion, existing_tasks, owner_id=None) -> TemplateApplication:
    """Compute the tasks a template would add to an immersion.

    Pure: nothing is persisted. ``owner_id`` defaults to the immersion's
    resolved owner.
    """
    if owner_id is None:
        owner_id = resolve_owner(immersion)

    seen = set()
    for t in existing_tasks:
        seen.add(task_dedup_key(t.phase, t.title))
        if getattr(t, "template_key", None):
            seen.add(t.template_key)

    ordered = sorted(
        items,
        key=lambda i: (i.sort_order or 0, (i.phase or "").strip(), (i.title or "").strip()),
    )

    result = TemplateApplication()
    for item in ordered:
        key = task_dedup_key(item.phase, item.title)
        if key in seen:
            result.skipped += 1
            continue
        due = compute_due_date(item, immersion)
        if due is None:
            result.omitted += 1
            continue
        seen.add(key)
        result.to_insert.append(Task(
            immersion_id=immersion.id,
            template_item_id=item.id,
            phase=(item.phase or "").strip(),
            title=(item.title or "").strip(),
            responsible_id=owner_id,
            due_date=due,
            status=TASK_SCHEDULED,
            template_key=key,
        ))
    return result


def _require_id(value, name: str) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        parsed = 0
    if parsed <= 0:
        raise ValidationError(f"{name} is required", details={name: "must be a positive integer"})
    return parsed


def apply_checklist_template(immersion_id, template_id, stores: Stores | None = None) -> dict:
    """Apply a stored checklist template to a stored immersion.

    Returns counts only: ``{inserted, skipped, omitted, failed}``.
    A failed insert is logged and counted; it never aborts the batch.
    """
    immersion_id = _require_id(immersion_id, "immersion_id")
    template_id = _require_id(template_id, "template_id")
    stores = stores or Stores()

    immersion = stores.immersions.get_immersion(immersion_id)
    if immersion is None:
        raise NotFoundError(resource="Immersion", resource_id=immersion_id)
    template = stores.templates.get_template(template_id)
    if template is None:
        raise NotFoundError(resource="ChecklistTemplate", resource_id=template_id)

    items = stores.templates.list_template_items(template_id)
    existing = stores.tasks.list_tasks(immersion_id)
    stores.immersions.set_checklist_template(immersion, template_id)

    plan = apply_template(items, immersion, existing)

    inserted = failed = 0
    skipped = plan.skipped
    for task in plan.to_insert:
        try:
            stores.tasks.insert_task(task)
            inserted += 1
        except ConflictError:
            # inserted meanwhile by a concurrent application
            skipped += 1
        except TransientIOError as exc:
            failed += 1
            logger.warning(
                "Task insert failed: immersion=%s title=%r error=%s",
                immersion_id, task.title, exc.cause,
                extra={"immersion_id": immersion_id},
            )

    logger.info(
        "Template %s applied to immersion %s: inserted=%d skipped=%d omitted=%d failed=%d",
        template_id, immersion_id, inserted, skipped, plan.omitted, failed,
        extra={"immersion_id": immersion_id},
    )
    return {
        "inserted": inserted,
        "skipped": skipped,
        "omitted": plan.omitted,
        "failed": failed,
    }


def shift_tasks_for_clone(tasks, source_start: date | None, new_start: date | None, new_immersion_id=None) -> list[Task]:
    """Copy tasks for a cloned immersion, moving due dates by the start-date delta.

    Copies come back unsaved, with status reset to Programada and no ``done_at``.
    """
    delta = timedelta(days=(new_start - source_start).days) if source_start and new_start else timedelta(0)
    copies = []
    for t in tasks:
        due = t.due_date
        if due is not None:
            try:
                due = due + delta
            except OverflowError:
                due = None
        copies.append(Task(
            immersion_id=new_immersion_id,
            template_item_id=t.template_item_id,
            phase=t.phase,
            title=t.title,
            responsible_id=t.responsible_id,
            due_date=due,
            status=TASK_SCHEDULED,
            done_at=None,
            template_key=t.template_key,
            notes=t.notes,
        ))
    return copies
