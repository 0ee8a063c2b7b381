"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in sparks/__init__.py with no default limits;
this module applies granular limits per blueprint.

Usage:
    from sparks.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Cron endpoint:    CRON_RATE_LIMIT (default 12/hour)
        - Write endpoints:  60/minute
        - Dashboards:       200/minute
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    cron_limit = app.config.get("CRON_RATE_LIMIT", "12/hour")
    bp = app.blueprints.get("cron")
    if bp:
        limiter.limit(cron_limit)(bp)

    for bp_name in ("immersion", "notification"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit("60/minute")(bp)

    bp = app.blueprints.get("dashboard")
    if bp:
        limiter.limit("200/minute")(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — cron: %s, write: 60/min, dashboard: 200/min", cron_limit)
