"""
Sparks Immersion Planner
Notification configuration — rule catalogue, default texts and admin updates.

The four rules always exist: stored rows override the defaults field by
field, and a missing row (or missing template) falls back to the catalogue
below. Rule options live in ``config`` (JSON) and are merged over the
per-rule defaults.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import select

from sparks.core.exceptions import NotFoundError, ValidationError
from sparks.models import db
from sparks.models.notification import (
    CADENCE_DAILY,
    CADENCE_EVENT,
    CADENCE_WEEKLY,
    CADENCES,
    RULE_IMMERSION_CREATED,
    RULE_IMMERSION_RISK_DAILY,
    RULE_KEYS,
    RULE_TASK_DUE_SOON_WEEKLY,
    RULE_TASK_OVERDUE_DAILY,
    NotificationRule,
    NotificationSettings,
    NotificationTemplate,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Defaults
# ═══════════════════════════════════════════════════════════════════════════

DEFAULT_RULES = {
    RULE_IMMERSION_CREATED: {
        "label": "Imersão criada",
        "description": "Envia para Consultor e Designer quando uma imersão é criada ou clonada.",
        "cadence": CADENCE_EVENT,
        "lookback_minutes": 60,
        "config": {"max_items": 50, "catchup_days": 7},
    },
    RULE_TASK_OVERDUE_DAILY: {
        "label": "Tarefas atrasadas (diário)",
        "description": "Envia para cada responsável com tarefas vencidas e não concluídas.",
        "cadence": CADENCE_DAILY,
        "lookback_minutes": 60,
        "config": {"max_items": 50},
    },
    RULE_TASK_DUE_SOON_WEEKLY: {
        "label": "Vencendo em até 7 dias (semanal)",
        "description": "Envia (padrão na segunda) as tarefas que vencem nos próximos 7 dias.",
        "cadence": CADENCE_WEEKLY,
        "lookback_minutes": 10080,
        "config": {"weekly_day": 1, "due_days": 7, "max_items": 50},
    },
    RULE_IMMERSION_RISK_DAILY: {
        "label": "Risco de imersão (diário)",
        "description": "Envia para o Consultor quando a imersão acumula atrasos acima do limiar.",
        "cadence": CADENCE_DAILY,
        "lookback_minutes": 60,
        "config": {"min_overdue": 5, "min_overdue_exec": 3, "max_items": 50},
    },
}

DEFAULT_TEMPLATES = {
    RULE_IMMERSION_CREATED: {
        "subject": "Sparks • Nova imersão criada: {{immersion}} — {{date}}",
        "intro": "Olá {{name}}, uma nova imersão foi criada e você foi definido(a) como responsável.",
        "footer": "Abra a imersão para seguir com o planejamento: {{app}}",
    },
    RULE_TASK_OVERDUE_DAILY: {
        "subject": "Sparks • {{count}} tarefa(s) atrasada(s) — {{date}}",
        "intro": "Olá {{name}}, identificamos {{count}} tarefa(s) atrasada(s). Priorize as entregas abaixo.",
        "footer": "Acesse o painel para atualizar o status e replanejar prazos: {{app}}",
    },
    RULE_TASK_DUE_SOON_WEEKLY: {
        "subject": "Sparks • {{count}} tarefa(s) vencendo em até 7 dias — {{date}}",
        "intro": "Olá {{name}}, estas tarefas vencem nos próximos 7 dias. Revise prazos e garanta as entregas.",
        "footer": "Abra suas tarefas e organize o Kanban: {{app}}",
    },
    RULE_IMMERSION_RISK_DAILY: {
        "subject": "Sparks • Atenção: risco na imersão \"{{immersion}}\" — {{count}} atrasadas",
        "intro": (
            "Olá {{name}}, a imersão \"{{immersion}}\" entrou em status de risco por acúmulo "
            "de atrasos ({{count}} tarefa(s))."
        ),
        "footer": "Acesse a imersão e trate as pendências: {{app}}",
    },
}

_INT_OPTIONS = ("max_items", "min_overdue", "min_overdue_exec", "weekly_day", "due_days", "catchup_days")


@dataclass
class RuleSettings:
    rule_key: str
    label: str = ""
    is_enabled: bool = True
    cadence: str = CADENCE_DAILY
    lookback_minutes: int = 60
    config: dict = field(default_factory=dict)

    def option(self, name: str, default: int | None = None) -> int | None:
        value = self.config.get(name)
        if value is None:
            value = DEFAULT_RULES.get(self.rule_key, {}).get("config", {}).get(name, default)
        return value

    def to_dict(self) -> dict:
        return {
            "rule_key": self.rule_key,
            "label": self.label,
            "is_enabled": self.is_enabled,
            "cadence": self.cadence,
            "lookback_minutes": self.lookback_minutes,
            "config": dict(self.config),
        }


@dataclass
class TemplateText:
    subject: str = ""
    intro: str = ""
    footer: str = ""


@dataclass
class SenderSettings:
    from_email: str = ""
    from_name: str = ""
    reply_to: str = ""


def default_rule(rule_key: str) -> RuleSettings:
    d = DEFAULT_RULES[rule_key]
    return RuleSettings(
        rule_key=rule_key,
        label=d["label"],
        cadence=d["cadence"],
        lookback_minutes=d["lookback_minutes"],
        config=dict(d["config"]),
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Loading
# ═══════════════════════════════════════════════════════════════════════════


def load_rules() -> list[RuleSettings]:
    """All four rules in catalogue order, stored values merged over the defaults."""
    rows = {r.rule_key: r for r in db.session.execute(select(NotificationRule)).scalars().all()}
    rules = []
    for key in RULE_KEYS:
        rule = default_rule(key)
        row = rows.get(key)
        if row is not None:
            rule.label = row.label or rule.label
            rule.is_enabled = row.is_enabled is not False
            rule.cadence = row.cadence if row.cadence in CADENCES else rule.cadence
            if row.lookback_minutes is not None:
                rule.lookback_minutes = int(row.lookback_minutes)
            rule.config.update(row.config or {})
        rules.append(rule)
    return rules


def load_templates() -> dict[str, TemplateText]:
    rows = {t.rule_key: t for t in db.session.execute(select(NotificationTemplate)).scalars().all()}
    templates = {}
    for key in RULE_KEYS:
        d = DEFAULT_TEMPLATES[key]
        row = rows.get(key)
        templates[key] = TemplateText(
            subject=(row.subject if row and row.subject else d["subject"]),
            intro=(row.intro if row and row.intro else d["intro"]),
            footer=(row.footer if row and row.footer else d["footer"]),
        )
    return templates


def load_settings(app_config) -> SenderSettings:
    """Latest settings row; the sender falls back to MAIL_DEFAULT_SENDER."""
    row = db.session.execute(
        select(NotificationSettings)
        .order_by(NotificationSettings.updated_at.desc(), NotificationSettings.id.desc())
        .limit(1)
    ).scalars().first()
    settings = SenderSettings()
    if row is not None:
        settings.from_email = row.from_email or ""
        settings.from_name = row.from_name or ""
        settings.reply_to = row.reply_to or ""
    if not settings.from_email:
        settings.from_email = app_config.get("MAIL_DEFAULT_SENDER") or ""
    return settings


def get_config_overview(app_config) -> dict:
    rules = []
    for rule in load_rules():
        d = rule.to_dict()
        d["description"] = DEFAULT_RULES[rule.rule_key]["description"]
        rules.append(d)
    return {
        "rules": rules,
        "templates": {k: vars(v) for k, v in load_templates().items()},
        "settings": vars(load_settings(app_config)),
    }


# ═══════════════════════════════════════════════════════════════════════════
#  Admin updates
# ═══════════════════════════════════════════════════════════════════════════


def _check_rule_key(rule_key: str) -> None:
    if rule_key not in RULE_KEYS:
        raise NotFoundError(resource="NotificationRule", resource_id=rule_key)


def update_rule(rule_key: str, data: dict) -> RuleSettings:
    _check_rule_key(rule_key)
    errors = {}

    cadence = data.get("cadence")
    if cadence is not None and cadence not in CADENCES:
        errors["cadence"] = f"must be one of {sorted(CADENCES)}"

    lookback = data.get("lookback_minutes")
    if lookback is not None:
        try:
            lookback = int(lookback)
            if lookback < 0:
                raise ValueError
        except (TypeError, ValueError):
            errors["lookback_minutes"] = "must be a non-negative integer"

    config = data.get("config")
    clean_config = {}
    if config is not None:
        if not isinstance(config, dict):
            errors["config"] = "must be an object"
        else:
            for name, value in config.items():
                if name not in _INT_OPTIONS:
                    errors[f"config.{name}"] = "unknown option"
                    continue
                try:
                    clean_config[name] = int(value)
                except (TypeError, ValueError):
                    errors[f"config.{name}"] = "must be an integer"
            weekly_day = clean_config.get("weekly_day")
            if weekly_day is not None and not 0 <= weekly_day <= 7:
                errors["config.weekly_day"] = "must be between 0 and 7"

    if errors:
        raise ValidationError("Invalid notification rule", details=errors)

    row = db.session.execute(
        select(NotificationRule).where(NotificationRule.rule_key == rule_key)
    ).scalars().first()
    if row is None:
        d = DEFAULT_RULES[rule_key]
        row = NotificationRule(
            rule_key=rule_key,
            label=d["label"],
            cadence=d["cadence"],
            lookback_minutes=d["lookback_minutes"],
            config=dict(d["config"]),
            is_enabled=True,
        )
        db.session.add(row)

    if "label" in data:
        row.label = str(data["label"] or "")
    if "is_enabled" in data:
        row.is_enabled = bool(data["is_enabled"])
    if cadence is not None:
        row.cadence = cadence
    if lookback is not None:
        row.lookback_minutes = lookback
    if clean_config:
        row.config = {**(row.config or {}), **clean_config}

    db.session.commit()
    logger.info("Notification rule updated: %s", rule_key, extra={"rule_key": rule_key})
    return next(r for r in load_rules() if r.rule_key == rule_key)


def update_template(rule_key: str, data: dict) -> TemplateText:
    _check_rule_key(rule_key)
    row = db.session.execute(
        select(NotificationTemplate).where(NotificationTemplate.rule_key == rule_key)
    ).scalars().first()
    if row is None:
        row = NotificationTemplate(rule_key=rule_key, **DEFAULT_TEMPLATES[rule_key])
        db.session.add(row)
    for name in ("subject", "intro", "footer"):
        if name in data:
            setattr(row, name, str(data[name] or ""))
    db.session.commit()
    logger.info("Notification template updated: %s", rule_key, extra={"rule_key": rule_key})
    return load_templates()[rule_key]


def update_settings(data: dict) -> SenderSettings:
    row = NotificationSettings(
        from_email=(data.get("from_email") or "").strip() or None,
        from_name=(data.get("from_name") or "").strip() or None,
        reply_to=(data.get("reply_to") or "").strip() or None,
    )
    db.session.add(row)
    db.session.commit()
    return SenderSettings(
        from_email=row.from_email or "",
        from_name=row.from_name or "",
        reply_to=row.reply_to or "",
    )
