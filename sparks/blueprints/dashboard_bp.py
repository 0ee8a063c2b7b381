"""
Sparks Immersion Planner
Dashboard Blueprint — risk, workload and KPI panels.

Endpoints:
    GET /api/v1/dashboard/risk       — immersions ranked by risk score
    GET /api/v1/dashboard/workload   — open-task load per responsible
    GET /api/v1/dashboard/summary    — KPI counters (optionally per user)

All endpoints accept ``?as_of=YYYY-MM-DD`` to evaluate another day.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from sparks.services.risk_service import dashboard_summary, score_immersions, score_workload
from sparks.services.stores import Stores, SystemClock
from sparks.utils.dates import to_date_only
from sparks.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/v1/dashboard")
register_error_handlers(dashboard_bp)


def _today():
    as_of = request.args.get("as_of")
    if as_of:
        return to_date_only(as_of)
    return SystemClock(current_app.config.get("APP_TIMEZONE")).now().date()


@dashboard_bp.route("/risk", methods=["GET"])
def risk():
    stores = Stores()
    today = _today()
    limit = request.args.get("limit", 6, type=int)
    rows = score_immersions(stores.tasks.list_tasks(), stores.immersions.list_immersions(), today, limit=limit)
    return jsonify({"items": rows, "as_of": today.isoformat()})


@dashboard_bp.route("/workload", methods=["GET"])
def workload():
    stores = Stores()
    today = _today()
    limit = request.args.get("limit", 12, type=int)
    rows = score_workload(stores.tasks.list_tasks(), stores.profiles.list_profiles(), today, limit=limit)
    return jsonify({"items": rows, "as_of": today.isoformat()})


@dashboard_bp.route("/summary", methods=["GET"])
def summary():
    stores = Stores()
    today = _today()
    user_id = request.args.get("user_id", type=int)
    stats = dashboard_summary(stores.tasks.list_tasks(), stores.immersions.list_immersions(), today,
                              user_id=user_id)
    return jsonify({"stats": stats, "as_of": today.isoformat()})
