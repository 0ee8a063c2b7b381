"""
Sparks Immersion Planner
Scheduler Service — registry and runner for periodic jobs.

The planner has no in-process timer: an external invoker (platform cron,
``flask run-notifications``, or the cron HTTP endpoint) wakes it up and the
job runs once inside the app context. This service keeps the registry of
job functions and records each run on its ScheduledJob row.

Architecture:
    - register_job: decorator adding a function to the registry
    - SchedulerService.run_job: executes one job and records the outcome
    - Jobs are stored in the ScheduledJob model for run history
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from flask import Flask
from sqlalchemy import select

from sparks.models import db
from sparks.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("email_notifications")
        def send_email_notifications(app, **kwargs):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    return dict(_job_registry)


def _job_record(job_name: str) -> ScheduledJob | None:
    return db.session.execute(
        select(ScheduledJob).where(ScheduledJob.job_name == job_name)
    ).scalars().first()


class SchedulerService:
    """
    Job runner bound to the Flask app.

    Jobs are executed within the app context; their return value (a dict)
    is stored as ``last_run_result``.
    """

    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs", len(_job_registry))

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Create the missing ScheduledJob rows for registered jobs."""
        if not cls._app:
            return []

        created = []
        with cls._app.app_context():
            for name, fn in _job_registry.items():
                if _job_record(name) is None:
                    job = ScheduledJob(
                        job_name=name,
                        description=(fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0],
                        schedule_type="cron",
                        schedule_config=_get_default_schedule(name),
                        status="active",
                        is_enabled=True,
                        run_count=0,
                        error_count=0,
                    )
                    db.session.add(job)
                    created.append(job)
            if created:
                db.session.commit()
                logger.info("Created %d scheduled job records", len(created))
        return created

    @classmethod
    def run_job(cls, job_name: str, **kwargs) -> dict:
        """
        Execute a single job by name.

        Keyword arguments are passed through to the job function.

        Returns:
            Dict with job_name, status, duration_ms, result and error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}
        if not cls._app:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        start = time.monotonic()
        result = None
        error = None
        status = "success"

        with cls._app.app_context():
            record = _job_record(job_name)
            if record is not None and not record.is_enabled:
                logger.info("Job %s is paused; skipping", job_name, extra={"job_name": job_name})
                return {"job_name": job_name, "status": "skipped", "duration_ms": 0,
                        "result": None, "error": None}

            try:
                result = fn(cls._app, **kwargs)
            except Exception as exc:
                db.session.rollback()
                status = "failed"
                error = str(exc)
                logger.exception("Job %s failed: %s", job_name, exc, extra={"job_name": job_name})

            duration_ms = int((time.monotonic() - start) * 1000)

            try:
                record = _job_record(job_name)
                if record is not None:
                    record.record_run(
                        status=status,
                        duration_ms=duration_ms,
                        result=result if isinstance(result, dict) else {"output": str(result)},
                        error=error,
                    )
                    db.session.commit()
            except Exception:
                db.session.rollback()
                logger.exception("Failed to update job record for %s", job_name)

        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def list_jobs(cls) -> list[dict]:
        jobs = []
        for name in _job_registry:
            record = _job_record(name)
            jobs.append({
                "job_name": name,
                "registered": True,
                "db_record": record.to_dict() if record else None,
            })
        return jobs

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        record = _job_record(job_name)
        if not record:
            return None
        record.is_enabled = enabled
        record.status = "active" if enabled else "paused"
        db.session.commit()
        return record.to_dict()


def _get_default_schedule(job_name: str) -> dict:
    """Suggested invoker schedule per job, shown to operators."""
    defaults = {
        "email_notifications": {"hour": "*", "minute": "0", "description": "Hourly"},
        "overdue_marker": {"hour": "3", "minute": "0", "description": "Daily at 03:00"},
    }
    return defaults.get(job_name, {"hour": "0", "minute": "0", "description": "Daily at midnight"})
