"""
Sparks Immersion Planner
Scheduled Jobs — concrete jobs run by SchedulerService.

Jobs:
    - email_notifications: one notification rule cycle
    - overdue_marker: flags open tasks past due with the "Atrasada" status
"""

from __future__ import annotations

import logging
from typing import Any

from sparks.services.scheduler_service import register_job
from sparks.services.stores import SystemClock, TaskStore

logger = logging.getLogger(__name__)


@register_job("email_notifications")
def send_email_notifications(app, force: bool = False, dry_run: bool | None = None) -> dict[str, Any]:
    """Evaluate the e-mail notification rules and dispatch reminders."""
    from sparks.services.notification_scheduler import run_notification_cycle

    result = run_notification_cycle(force=force, dry_run=dry_run)
    return result.to_dict()


@register_job("overdue_marker")
def mark_overdue_tasks(app) -> dict[str, Any]:
    """Set the informational Atrasada status on open tasks past their due date."""
    today = SystemClock(app.config.get("APP_TIMEZONE")).now().date()
    updated = TaskStore().mark_overdue(today)
    logger.info("Overdue marker updated %d task(s)", updated, extra={"job_name": "overdue_marker"})
    return {"updated": updated, "date": today.isoformat()}
