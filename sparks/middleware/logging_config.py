"""
Logging setup for the planner.

Two renderings of the same record:
    - JSONFormatter       production, one JSON object per line
    - ReadableFormatter   development and tests, one short text line

Scheduler and request code attach context through ``extra=``; the fields
below are picked up when present (``rule_key``, ``immersion_id``, ``job_name``
and the request timing fields).
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

REQUEST_FIELDS = ("request_id", "method", "path", "status", "duration_ms", "remote_addr")
DOMAIN_FIELDS = ("rule_key", "immersion_id", "job_name")


def record_context(record: logging.LogRecord) -> dict:
    """Extra fields set on ``record``, in a stable order."""
    ctx = {}
    for key in DOMAIN_FIELDS + REQUEST_FIELDS:
        value = getattr(record, key, None)
        if value is not None:
            ctx[key] = value
    return ctx


class JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(record_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger (rule): message [12ms] immersion=4``"""

    def format(self, record: logging.LogRecord) -> str:
        ctx = record_context(record)
        parts = [
            datetime.fromtimestamp(record.created).strftime("%H:%M:%S"),
            f"{record.levelname:<8}",
        ]
        scope = f" ({ctx.pop('rule_key')})" if "rule_key" in ctx else ""
        parts.append(f"{record.name}{scope}: {record.getMessage()}")
        duration = ctx.pop("duration_ms", None)
        if duration is not None:
            parts.append(f"[{duration:.0f}ms]")
        for key in ("immersion_id", "job_name"):
            if key in ctx:
                parts.append(f"{key.split('_')[0]}={ctx[key]}")
        line = " ".join(parts)
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger.

    LOG_LEVEL overrides the level (DEBUG outside production, INFO in it).
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter())

    root = logging.getLogger()
    # create_app runs once per test module
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in ("werkzeug", "sqlalchemy.engine", "smtplib"):
        logging.getLogger(name).setLevel(logging.WARNING)

    if not is_testing:
        logging.getLogger("sparks").info("Logging ready: level=%s json=%s", level_name, is_prod)
