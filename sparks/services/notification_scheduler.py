"""
Sparks Immersion Planner
Notification Rule Scheduler — periodic e-mail reminders for immersion tasks.

One cycle evaluates every enabled rule in order:

    1. Cadence gate      daily / event always run, weekly only on its weekday
                         (``force`` bypasses the gate)
    2. Candidates        tasks or immersions matching the rule
    3. Grouping          one message per recipient e-mail
    4. Dedup             a recipient already served by the rule (status ok)
                         within ``lookback_minutes`` is skipped
    5. Render            ``{{count}} {{date}} {{name}} {{app}} {{immersion}}``
    6. Dispatch          preview (log only) or send through the mail transport
    7. Audit log         one row per attempt; log write failures are swallowed

Failures are isolated per recipient group: a failed delivery or a failed
dedup lookup is counted and the cycle moves on. Only a missing mail
transport in send mode aborts, and it does so before any rule runs.

Usage:
    from sparks.services.notification_scheduler import run_notification_cycle
    result = run_notification_cycle(force=True, dry_run=True)
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from flask import current_app

from sparks.core.exceptions import ConfigurationError, TransientIOError
from sparks.models.immersion import IMMERSION_CANCELLED, IMMERSION_COMPLETED
from sparks.models.notification import (
    CADENCE_DAILY,
    CADENCE_EVENT,
    CADENCE_WEEKLY,
    RULE_IMMERSION_CREATED,
    RULE_IMMERSION_RISK_DAILY,
    RULE_TASK_DUE_SOON_WEEKLY,
    RULE_TASK_OVERDUE_DAILY,
)
from sparks.services.email_service import (
    MailMessage,
    SmtpMailTransport,
    format_sender,
    render_digest_html,
    render_placeholders,
)
from sparks.services.notification_config import (
    DEFAULT_TEMPLATES,
    RuleSettings,
    SenderSettings,
    TemplateText,
    load_rules,
    load_settings,
    load_templates,
)
from sparks.services.stores import Stores, SystemClock, naive_utc
from sparks.utils.dates import SOON_WINDOW_DAYS

logger = logging.getLogger(__name__)

MAX_ACTIONS = 50
DEFAULT_MAX_ITEMS = 50
CREATED_CATCHUP_DAYS = 7


@dataclass
class RecipientGroup:
    to_email: str
    name: str = ""
    items: list[dict] = field(default_factory=list)
    immersions: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.items)


@dataclass
class CycleResult:
    sent: int = 0
    failed: int = 0
    previewed: int = 0
    skipped: int = 0
    mode: str = "preview"
    actions: list[dict] = field(default_factory=list)

    def add_action(self, **action) -> None:
        if len(self.actions) < MAX_ACTIONS:
            self.actions.append(action)

    def to_dict(self) -> dict:
        return {
            "sent": self.sent,
            "failed": self.failed,
            "previewed": self.previewed,
            "skipped": self.skipped,
            "mode": self.mode,
            "actions": list(self.actions),
        }


def should_run(cadence: str, now: datetime, force: bool = False, weekly_day: int = 1) -> bool:
    """Cadence gate. ``weekly_day`` is an ISO weekday (1 = Monday); 0 means Sunday."""
    if force:
        return True
    if cadence in (CADENCE_DAILY, CADENCE_EVENT):
        return True
    if cadence == CADENCE_WEEKLY:
        target = 7 if int(weekly_day or 0) == 0 else int(weekly_day)
        return now.isoweekday() == target
    return False


def _norm_email(email: str | None) -> str:
    return (email or "").strip().lower()


class NotificationScheduler:
    """Evaluates notification rules against the stores and dispatches digests."""

    def __init__(
        self,
        stores: Stores,
        *,
        transport=None,
        clock=None,
        templates: dict[str, TemplateText] | None = None,
        sender: SenderSettings | None = None,
        app_url: str = "",
    ):
        self.stores = stores
        self.transport = transport
        self.clock = clock or SystemClock()
        self.templates = templates or {}
        self.sender = sender or SenderSettings()
        self.app_url = (app_url or "").rstrip("/")

    # ── Cycle ────────────────────────────────────────────────────────────

    def run_cycle(
        self,
        rules: list[RuleSettings],
        now: datetime | None = None,
        force: bool = False,
        dry_run: bool = False,
    ) -> CycleResult:
        if not dry_run:
            if self.transport is None or not self.transport.is_configured():
                raise ConfigurationError("MAIL_SERVER", "Mail transport is not configured; run in preview mode")
            if not self.sender.from_email:
                raise ConfigurationError("MAIL_DEFAULT_SENDER", "No sender address configured for notifications")

        now = now or self.clock.now()
        result = CycleResult(mode="preview" if dry_run else "send")

        for rule in rules:
            if not rule.is_enabled:
                result.add_action(rule_key=rule.rule_key, status="disabled")
                continue
            if not should_run(rule.cadence, now, force, rule.option("weekly_day", 1)):
                result.add_action(rule_key=rule.rule_key, status="not_due")
                continue
            try:
                groups = self.select_groups(rule, now)
            except TransientIOError as exc:
                logger.error("Candidate selection failed: %s", exc, extra={"rule_key": rule.rule_key})
                result.add_action(rule_key=rule.rule_key, status="error", error=str(exc))
                continue

            for group in groups:
                self._process_group(rule, group, now, dry_run, result)

        logger.info(
            "Notification cycle finished: mode=%s sent=%d previewed=%d skipped=%d failed=%d",
            result.mode, result.sent, result.previewed, result.skipped, result.failed,
        )
        return result

    def _process_group(self, rule: RuleSettings, group: RecipientGroup, now: datetime, dry_run: bool,
                       result: CycleResult) -> None:
        since = now - timedelta(minutes=int(rule.lookback_minutes or 0))
        try:
            recent = self.stores.log.query_recent(rule.rule_key, group.to_email, since)
        except TransientIOError as exc:
            result.failed += 1
            result.add_action(rule_key=rule.rule_key, to=group.to_email, status="error", error=str(exc))
            logger.warning("Dedup lookup failed for %s: %s", group.to_email, exc,
                           extra={"rule_key": rule.rule_key})
            return
        if recent:
            result.skipped += 1
            result.add_action(rule_key=rule.rule_key, to=group.to_email, status="skipped",
                              item_count=group.count)
            return

        subject, html = self.render(rule, group, now)
        entry = {
            "rule_key": rule.rule_key,
            "to_email": group.to_email,
            "subject": subject,
            "item_count": group.count,
            "mode": "preview" if dry_run else "send",
            "created_at": now,
        }

        if dry_run:
            result.previewed += 1
            result.add_action(rule_key=rule.rule_key, to=group.to_email, subject=subject,
                              item_count=group.count, status="preview")
            self._write_log({**entry, "status": "ok"})
            return

        message = MailMessage(
            from_addr=format_sender(self.sender.from_email, self.sender.from_name),
            to=group.to_email,
            subject=subject,
            html=html,
            reply_to=self.sender.reply_to or None,
        )
        try:
            self.transport.send(message)
        except Exception as exc:
            result.failed += 1
            result.add_action(rule_key=rule.rule_key, to=group.to_email, subject=subject,
                              item_count=group.count, status="fail", error=str(exc)[:300])
            logger.error("Email failed: to=%s error=%s", group.to_email, exc, extra={"rule_key": rule.rule_key})
            self._write_log({**entry, "status": "fail", "error": str(exc)[:1000]})
            return

        result.sent += 1
        result.add_action(rule_key=rule.rule_key, to=group.to_email, subject=subject,
                          item_count=group.count, status="sent")
        self._write_log({**entry, "status": "ok"})

    def _write_log(self, entry: dict) -> None:
        try:
            self.stores.log.insert_log_entry(entry)
        except TransientIOError as exc:
            logger.error("Notification log write failed: %s", exc, extra={"rule_key": entry.get("rule_key")})

    # ── Rendering ────────────────────────────────────────────────────────

    def render(self, rule: RuleSettings, group: RecipientGroup, now: datetime) -> tuple[str, str]:
        tpl = self.templates.get(rule.rule_key) or TemplateText(**DEFAULT_TEMPLATES[rule.rule_key])
        context = {
            "count": group.count,
            "date": now.date().isoformat(),
            "name": group.name,
            "app": self.app_url,
            "immersion": ", ".join(group.immersions),
        }
        subject = render_placeholders(tpl.subject, context)
        intro = render_placeholders(tpl.intro, context)
        footer = render_placeholders(tpl.footer, context)
        html = render_digest_html(
            title=subject,
            intro=intro,
            footer=footer,
            items=group.items,
            app_url=self.app_url,
            max_items=int(rule.option("max_items", DEFAULT_MAX_ITEMS) or DEFAULT_MAX_ITEMS),
        )
        return subject, html

    # ── Candidate selection ──────────────────────────────────────────────

    def select_groups(self, rule: RuleSettings, now: datetime) -> list[RecipientGroup]:
        today = now.date()
        if rule.rule_key == RULE_IMMERSION_CREATED:
            return self._immersion_created_groups(rule, now)
        if rule.rule_key == RULE_TASK_OVERDUE_DAILY:
            tasks = self.stores.tasks.list_open_tasks(due_before=today)
            return self._task_groups(tasks)
        if rule.rule_key == RULE_TASK_DUE_SOON_WEEKLY:
            due_days = int(rule.option("due_days", SOON_WINDOW_DAYS))
            tasks = self.stores.tasks.list_open_tasks(due_from=today, due_to=today + timedelta(days=due_days))
            return self._task_groups(tasks)
        if rule.rule_key == RULE_IMMERSION_RISK_DAILY:
            return self._risk_groups(rule, today)
        logger.warning("Unknown notification rule: %s", rule.rule_key)
        return []

    def _immersion_names(self, immersion_ids) -> dict:
        ids = {i for i in immersion_ids if i is not None}
        if not ids:
            return {}
        return {im.id: im.immersion_name for im in self.stores.immersions.list_immersions(ids=ids)}

    @staticmethod
    def _task_item(task, immersion_name: str | None) -> dict:
        return {
            "title": task.title,
            "immersion": immersion_name,
            "due_date": task.due_date.isoformat() if task.due_date else None,
            "immersion_id": task.immersion_id,
        }

    def _task_groups(self, tasks) -> list[RecipientGroup]:
        """Group tasks by responsible; tasks without an owner or e-mail are dropped."""
        by_owner: OrderedDict[int, list] = OrderedDict()
        for t in tasks:
            if t.responsible_id is None:
                continue
            by_owner.setdefault(t.responsible_id, []).append(t)
        if not by_owner:
            return []

        profiles = self.stores.profiles.get_profiles_by_ids(by_owner.keys())
        names = self._immersion_names(t.immersion_id for t in tasks)

        groups: OrderedDict[str, RecipientGroup] = OrderedDict()
        for owner_id, owner_tasks in by_owner.items():
            profile = profiles.get(owner_id)
            email = _norm_email(profile.email if profile else None)
            if not email:
                continue
            group = groups.setdefault(email, RecipientGroup(to_email=email, name=profile.name or ""))
            for t in sorted(owner_tasks, key=lambda x: (x.due_date, x.id)):
                group.items.append(self._task_item(t, names.get(t.immersion_id)))
                name = names.get(t.immersion_id)
                if name and name not in group.immersions:
                    group.immersions.append(name)
        return list(groups.values())

    def _immersion_created_groups(self, rule: RuleSettings, now: datetime) -> list[RecipientGroup]:
        """Immersions each recipient has not yet been told about.

        A recipient never served by the rule gets the immersions created within
        the lookback window. One already served gets every immersion created
        after that send, reaching back at most ``catchup_days``, so an immersion
        held back by the dedup window still goes out on a later cycle.
        """
        window = now - timedelta(minutes=int(rule.lookback_minutes or 0))
        catchup = now - timedelta(days=int(rule.option("catchup_days", CREATED_CATCHUP_DAYS)))
        horizon = min(window, catchup)
        immersions = self.stores.immersions.list_immersions(created_since=horizon)
        if not immersions:
            return []
        profile_ids = set()
        for im in immersions:
            profile_ids.update((im.consultant_id, im.designer_id))
        profiles = self.stores.profiles.get_profiles_by_ids(profile_ids)

        by_email: OrderedDict[str, tuple] = OrderedDict()
        for im in immersions:
            seen = set()
            for pid in (im.consultant_id, im.designer_id):
                profile = profiles.get(pid)
                email = _norm_email(profile.email if profile else None)
                if not email or email in seen:
                    continue
                seen.add(email)
                by_email.setdefault(email, (profile, []))[1].append(im)

        groups = []
        for email, (profile, candidates) in by_email.items():
            last_sent = self.stores.log.last_sent_at(rule.rule_key, email, horizon)
            if last_sent is None:
                fresh = [im for im in candidates if naive_utc(im.created_at) >= naive_utc(window)]
            else:
                fresh = [im for im in candidates if naive_utc(im.created_at) > last_sent]
            if not fresh:
                continue
            group = RecipientGroup(to_email=email, name=profile.name or "")
            for im in fresh:
                group.items.append({
                    "title": im.immersion_name,
                    "immersion": None,
                    "due_date": im.start_date.isoformat() if im.start_date else None,
                    "immersion_id": im.id,
                })
                group.immersions.append(im.immersion_name)
            groups.append(group)
        return groups

    def _risk_recipient(self, immersion, profiles: dict):
        if immersion.consultant_id is not None:
            profile = profiles.get(immersion.consultant_id)
            if profile is not None:
                return profile
        return self.stores.profiles.find_profile_by_name_ci(immersion.consultant_name)

    def _risk_groups(self, rule: RuleSettings, today) -> list[RecipientGroup]:
        min_overdue = int(rule.option("min_overdue", 5))
        min_overdue_exec = int(rule.option("min_overdue_exec", 3))

        immersions = self.stores.immersions.list_immersions(
            exclude_statuses=[IMMERSION_COMPLETED, IMMERSION_CANCELLED],
        )
        if not immersions:
            return []
        overdue = self.stores.tasks.list_open_tasks(due_before=today)
        by_immersion: dict[int, list] = {}
        for t in overdue:
            if t.immersion_id is not None:
                by_immersion.setdefault(t.immersion_id, []).append(t)

        risky = []
        for im in immersions:
            items = by_immersion.get(im.id, [])
            count = len(items)
            if count >= min_overdue or (count >= min_overdue_exec and im.is_in_progress):
                risky.append((im, items))
        if not risky:
            return []

        profiles = self.stores.profiles.get_profiles_by_ids(im.consultant_id for im, _ in risky)
        groups: OrderedDict[str, RecipientGroup] = OrderedDict()
        for im, items in risky:
            profile = self._risk_recipient(im, profiles)
            email = _norm_email(profile.email if profile else None)
            if not email:
                logger.info("Risky immersion %s has no consultant e-mail", im.id,
                            extra={"rule_key": rule.rule_key, "immersion_id": im.id})
                continue
            group = groups.setdefault(email, RecipientGroup(to_email=email, name=profile.name or ""))
            group.immersions.append(im.immersion_name)
            for t in sorted(items, key=lambda x: (x.due_date, x.id)):
                group.items.append(self._task_item(t, im.immersion_name))
        return list(groups.values())


# ═══════════════════════════════════════════════════════════════════════════
#  App entry point
# ═══════════════════════════════════════════════════════════════════════════


def build_scheduler(app_config=None, stores: Stores | None = None, transport=None, clock=None) -> NotificationScheduler:
    cfg = app_config if app_config is not None else current_app.config
    return NotificationScheduler(
        stores or Stores(),
        transport=transport if transport is not None else SmtpMailTransport.from_app_config(cfg),
        clock=clock or SystemClock(cfg.get("APP_TIMEZONE")),
        templates=load_templates(),
        sender=load_settings(cfg),
        app_url=cfg.get("APP_URL", ""),
    )


def run_notification_cycle(now: datetime | None = None, force: bool = False, dry_run: bool | None = None,
                           *, transport=None, clock=None) -> CycleResult:
    """Run one cycle with the app's configuration.

    ``dry_run`` defaults to preview unless ENABLE_EMAIL_NOTIFICATIONS is on.
    """
    cfg = current_app.config
    if dry_run is None:
        dry_run = not cfg.get("ENABLE_EMAIL_NOTIFICATIONS", False)
    scheduler = build_scheduler(cfg, transport=transport, clock=clock)
    return scheduler.run_cycle(load_rules(), now=now, force=force, dry_run=dry_run)
