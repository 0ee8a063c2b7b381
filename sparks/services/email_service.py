"""
Sparks Immersion Planner
Email Service — mail transport and message rendering for notification rules.

Provides:
    - MailMessage: one outbound message
    - SmtpMailTransport: SMTP delivery configured from the Flask app
    - render_placeholders: ``{{token}}`` substitution for rule templates
    - render_digest_html: the HTML body listing the tasks of a digest

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → transport not configured)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
"""

from __future__ import annotations

import logging
import re
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr

from flask import current_app
from markupsafe import Markup, escape

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


@dataclass
class MailMessage:
    from_addr: str
    to: str
    subject: str
    html: str
    reply_to: str | None = None


# ═══════════════════════════════════════════════════════════════════════════
#  Rendering
# ═══════════════════════════════════════════════════════════════════════════


def render_placeholders(text: str | None, context: dict) -> str:
    """Replace ``{{name}}`` tokens from ``context``; unknown tokens become empty."""

    def _sub(match):
        value = context.get(match.group(1))
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(_sub, text or "")


def render_digest_html(
    *,
    title: str,
    intro: str,
    footer: str,
    items: list[dict],
    app_url: str = "",
    max_items: int = 50,
) -> str:
    """
    Render the digest body.

    Each item is a dict with ``title``, ``immersion``, ``due_date`` and
    ``immersion_id``. Only the first ``max_items`` are listed.
    """
    base = (app_url or "").rstrip("/")
    rows = []
    for item in items[:max_items]:
        link = Markup("")
        if item.get("immersion_id") is not None and base:
            link = Markup(' — <a href="{}">abrir</a>').format(f"{base}/imersoes/{item['immersion_id']}")
        rows.append(Markup(
            '<li style="margin: 0 0 6px;"><b>{}</b> ({}) — prazo: {}{}</li>'
        ).format(
            item.get("title") or "",
            item.get("immersion") or "—",
            item.get("due_date") or "—",
            link,
        ))
    listing = Markup("<ul>{}</ul>").format(Markup("").join(rows)) if rows else Markup("<p>Nenhum item.</p>")

    return str(Markup(
        '<div style="font-family: Arial, sans-serif; max-width: 640px; margin: 0 auto;">'
        '<h2 style="color: #1e293b;">{}</h2>'
        '<p style="color: #475569; line-height: 1.6;">{}</p>'
        "{}"
        '<p style="color: #64748b; font-size: 13px;">{}</p>'
        "</div>"
    ).format(escape(title), escape(intro), listing, escape(footer)))


# ═══════════════════════════════════════════════════════════════════════════
#  Transport
# ═══════════════════════════════════════════════════════════════════════════


class SmtpMailTransport:
    """SMTP delivery. ``send`` raises on any delivery failure."""

    def __init__(self, *, server=None, port=587, use_tls=True, username=None, password=None, timeout=30):
        self.server = server
        self.port = port
        self.use_tls = use_tls
        self.username = username
        self.password = password
        self.timeout = timeout

    @classmethod
    def from_app_config(cls, config=None) -> SmtpMailTransport:
        cfg = config if config is not None else current_app.config
        return cls(
            server=cfg.get("MAIL_SERVER"),
            port=cfg.get("MAIL_PORT", 587),
            use_tls=cfg.get("MAIL_USE_TLS", True),
            username=cfg.get("MAIL_USERNAME"),
            password=cfg.get("MAIL_PASSWORD"),
        )

    def is_configured(self) -> bool:
        return bool(self.server)

    def send(self, message: MailMessage) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = message.from_addr
        msg["To"] = message.to
        if message.reply_to:
            msg["Reply-To"] = message.reply_to
        msg.attach(MIMEText(message.html, "html", "utf-8"))

        with smtplib.SMTP(self.server, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username and self.password:
                smtp.login(self.username, self.password)
            smtp.send_message(msg)
        logger.info("Email sent: to=%s subject='%s'", message.to, message.subject)


def format_sender(from_email: str | None, from_name: str | None) -> str:
    if not from_email:
        return ""
    return formataddr((from_name, from_email)) if from_name else from_email
