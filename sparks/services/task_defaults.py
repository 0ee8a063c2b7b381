"""
Sparks Immersion Planner
Task defaults — fills the owner and due date of a task from its immersion.

Rules:
    - Owner: the immersion's checklist owner, else its consultant.
    - Due date by phase:
        PRE    → start_date - 7 days
        DURING → start_date
        POST   → end_date + 7 days (start_date when the end is unknown)

Values already present on the task always win; only missing fields are filled.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta

from sparks.models.immersion import PHASE_DURING, PHASE_POST, PHASE_PRE, normalize_phase

logger = logging.getLogger(__name__)

PRE_LEAD_DAYS = 7
POST_LAG_DAYS = 7


def resolve_owner(immersion) -> int | None:
    if immersion is None:
        return None
    return immersion.checklist_owner_id or immersion.consultant_id or None


def resolve_due_date(
    phase: str | None,
    immersion,
    pre_lead_days: int = PRE_LEAD_DAYS,
    post_lag_days: int = POST_LAG_DAYS,
) -> date | None:
    if immersion is None:
        return None
    start = immersion.start_date
    end = immersion.end_date
    key = normalize_phase(phase)
    try:
        if key == PHASE_PRE:
            return start - timedelta(days=pre_lead_days) if start else None
        if key == PHASE_DURING:
            return start
        if key == PHASE_POST:
            if end:
                return end + timedelta(days=post_lag_days)
            return start
    except OverflowError:
        logger.warning("Due date out of range for phase=%s immersion=%s", phase, getattr(immersion, "id", None))
    return None


def resolve_task_defaults(task: dict, immersion) -> dict:
    """Return a copy of ``task`` with ``responsible_id`` / ``due_date`` filled where missing."""
    resolved = dict(task)
    if resolved.get("responsible_id") is None:
        resolved["responsible_id"] = resolve_owner(immersion)
    if resolved.get("due_date") is None:
        resolved["due_date"] = resolve_due_date(resolved.get("phase"), immersion)
    return resolved
