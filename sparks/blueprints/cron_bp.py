"""
Sparks Immersion Planner
Cron Blueprint — entry point for the external scheduler.

    POST|GET /api/v1/cron/email-notifications?force=1&dry_run=1

Guarded by CRON_TOKEN (``?token=`` or ``X-Cron-Token`` header) when set.
Without ``dry_run`` the mode follows ENABLE_EMAIL_NOTIFICATIONS.
"""

from __future__ import annotations

import hmac
import logging

from flask import Blueprint, current_app, jsonify, request

from sparks.services.notification_scheduler import run_notification_cycle
from sparks.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

cron_bp = Blueprint("cron", __name__, url_prefix="/api/v1/cron")
register_error_handlers(cron_bp)


def _flag(name: str) -> bool | None:
    value = request.args.get(name)
    if value is None:
        return None
    return value.strip().lower() in ("1", "true", "yes")


@cron_bp.route("/email-notifications", methods=["GET", "POST"])
def email_notifications():
    expected = current_app.config.get("CRON_TOKEN")
    if expected:
        token = request.args.get("token") or request.headers.get("X-Cron-Token") or ""
        if not hmac.compare_digest(token, expected):
            logger.warning("Cron call rejected: invalid token from %s", request.remote_addr)
            return api_error(E.UNAUTHORIZED, "Invalid cron token")

    force = bool(_flag("force"))
    dry_run = _flag("dry_run")
    result = run_notification_cycle(force=force, dry_run=dry_run)
    return jsonify({"ok": True, **result.to_dict()})
