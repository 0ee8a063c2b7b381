"""
Sparks Immersion Planner
E-mail notification rule models.

Models:
    - NotificationRule: one automated e-mail rule (cadence, lookback, options)
    - NotificationTemplate: subject / intro / footer text per rule
    - NotificationSettings: sender identity (latest row wins)
    - NotificationLogEntry: append-only audit trail, also the dedup index
"""

from datetime import datetime, timezone

from sparks.models import db


# ── Constants ────────────────────────────────────────────────────────────────

RULE_IMMERSION_CREATED = "immersion_created"
RULE_TASK_OVERDUE_DAILY = "task_overdue_daily"
RULE_TASK_DUE_SOON_WEEKLY = "task_due_soon_weekly"
RULE_IMMERSION_RISK_DAILY = "immersion_risk_daily"
RULE_KEYS = (
    RULE_IMMERSION_CREATED,
    RULE_TASK_OVERDUE_DAILY,
    RULE_TASK_DUE_SOON_WEEKLY,
    RULE_IMMERSION_RISK_DAILY,
)

CADENCE_EVENT = "event"
CADENCE_DAILY = "daily"
CADENCE_WEEKLY = "weekly"
CADENCES = {CADENCE_EVENT, CADENCE_DAILY, CADENCE_WEEKLY}

LOG_MODES = {"preview", "send"}
LOG_STATUSES = {"ok", "fail"}


def _utcnow_naive():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class NotificationRule(db.Model):
    __tablename__ = "email_notification_rules"

    id = db.Column(db.Integer, primary_key=True)
    rule_key = db.Column(db.String(50), unique=True, nullable=False)
    label = db.Column(db.String(200), default="")
    is_enabled = db.Column(db.Boolean, default=True)
    cadence = db.Column(db.String(20), default=CADENCE_DAILY, comment="event, daily, weekly")
    lookback_minutes = db.Column(db.Integer, default=60)
    config = db.Column(db.JSON, default=dict,
                       comment="max_items, min_overdue, min_overdue_exec, weekly_day, due_days")

    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "rule_key": self.rule_key,
            "label": self.label,
            "is_enabled": self.is_enabled,
            "cadence": self.cadence,
            "lookback_minutes": self.lookback_minutes,
            "config": self.config or {},
        }

    def __repr__(self):
        return f"<NotificationRule {self.rule_key} [{self.cadence}]>"


class NotificationTemplate(db.Model):
    __tablename__ = "email_notification_templates"

    id = db.Column(db.Integer, primary_key=True)
    rule_key = db.Column(db.String(50), unique=True, nullable=False)
    subject = db.Column(db.String(500), default="")
    intro = db.Column(db.Text, default="")
    footer = db.Column(db.Text, default="")

    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "rule_key": self.rule_key,
            "subject": self.subject,
            "intro": self.intro,
            "footer": self.footer,
        }

    def __repr__(self):
        return f"<NotificationTemplate {self.rule_key}>"


class NotificationSettings(db.Model):
    __tablename__ = "email_notification_settings"

    id = db.Column(db.Integer, primary_key=True)
    from_email = db.Column(db.String(255), nullable=True)
    from_name = db.Column(db.String(150), nullable=True)
    reply_to = db.Column(db.String(255), nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "from_email": self.from_email,
            "from_name": self.from_name,
            "reply_to": self.reply_to,
        }


class NotificationLogEntry(db.Model):
    """
    One delivery attempt (or preview) for a recipient under a rule.

    ``created_at`` is stored as naive UTC so that dedup comparisons behave
    the same on SQLite and PostgreSQL.
    """

    __tablename__ = "email_notification_log"
    __table_args__ = (
        db.Index("ix_email_log_rule_to_created", "rule_key", "to_email", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    rule_key = db.Column(db.String(50), nullable=False)
    to_email = db.Column(db.String(255), nullable=False)
    subject = db.Column(db.String(500), default="")
    item_count = db.Column(db.Integer, default=0)
    mode = db.Column(db.String(10), default="preview", comment="preview, send")
    status = db.Column(db.String(10), default="ok", comment="ok, fail")
    error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=_utcnow_naive, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "rule_key": self.rule_key,
            "to_email": self.to_email,
            "subject": self.subject,
            "item_count": self.item_count,
            "mode": self.mode,
            "status": self.status,
            "error": self.error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<NotificationLogEntry {self.rule_key}->{self.to_email} [{self.mode}/{self.status}]>"
