"""
Sparks Immersion Planner
Notification Blueprint.

Provides:
    - Bell counters (overdue / today / due soon)
    - E-mail rule configuration (rules, templates, sender settings)
    - Notification log viewing
    - Scheduled job listing and manual trigger
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request

from sparks.core.exceptions import NotFoundError
from sparks.services.notification_config import (
    get_config_overview,
    update_rule,
    update_settings,
    update_template,
)
from sparks.services.scheduler_service import SchedulerService, get_registered_jobs
from sparks.services.stores import Stores, SystemClock
from sparks.utils.dates import summarize_buckets, to_date_only
from sparks.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification", __name__, url_prefix="/api/v1")
register_error_handlers(notification_bp)


# ═══════════════════════════════════════════════════════════════════════════
#  BELL
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notifications/summary", methods=["GET"])
def bell_summary():
    """Counters for the notification bell, optionally scoped to one responsible."""
    as_of = request.args.get("as_of")
    today = to_date_only(as_of) if as_of else SystemClock(current_app.config.get("APP_TIMEZONE")).now().date()
    user_id = request.args.get("user_id", type=int)
    tasks = Stores().tasks.list_open_tasks(responsible_id=user_id)
    return jsonify({**summarize_buckets(tasks, today), "as_of": today.isoformat()})


# ═══════════════════════════════════════════════════════════════════════════
#  CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notifications/config", methods=["GET"])
def get_config():
    return jsonify(get_config_overview(current_app.config))


@notification_bp.route("/notifications/rules/<rule_key>", methods=["PUT"])
def put_rule(rule_key):
    data = request.get_json(silent=True) or {}
    rule = update_rule(rule_key, data)
    return jsonify(rule.to_dict())


@notification_bp.route("/notifications/templates/<rule_key>", methods=["PUT"])
def put_template(rule_key):
    data = request.get_json(silent=True) or {}
    tpl = update_template(rule_key, data)
    return jsonify({"rule_key": rule_key, **vars(tpl)})


@notification_bp.route("/notifications/settings", methods=["PUT"])
def put_settings():
    data = request.get_json(silent=True) or {}
    return jsonify(vars(update_settings(data)))


# ═══════════════════════════════════════════════════════════════════════════
#  LOG
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notifications/log", methods=["GET"])
def list_log():
    rule_key = request.args.get("rule_key")
    limit = min(request.args.get("limit", 100, type=int), 500)
    entries = Stores().log.list_entries(rule_key=rule_key, limit=limit)
    return jsonify({"items": [e.to_dict() for e in entries], "total": len(entries)})


# ═══════════════════════════════════════════════════════════════════════════
#  SCHEDULED JOBS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/scheduler/jobs", methods=["GET"])
def list_jobs():
    return jsonify({"items": SchedulerService.list_jobs()})


@notification_bp.route("/scheduler/jobs/<job_name>/run", methods=["POST"])
def run_job(job_name):
    if job_name not in get_registered_jobs():
        raise NotFoundError(resource="ScheduledJob", resource_id=job_name)
    result = SchedulerService.run_job(job_name)
    status = 200 if result["status"] in ("success", "skipped") else 500
    return jsonify(result), status
