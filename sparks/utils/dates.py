"""Date-only helpers and urgency classification for immersion tasks.

Every due-date comparison in the planner goes through this module so the
bell counters, the task lists, the dashboards and the e-mail rules agree on
what "overdue" and "soon" mean.

    classify(date(2026, 1, 5), date(2026, 1, 10))   -> "overdue"
    days_between(date(2026, 1, 5), date(2026, 1, 10)) -> -5
"""

from __future__ import annotations

from datetime import date, datetime, timezone, tzinfo

from sparks.core.exceptions import ValidationError
from sparks.models.immersion import TASK_DONE

# Shared by the bell summary and the weekly due-soon e-mail
SOON_WINDOW_DAYS = 7

BUCKET_NO_DUE = "no_due"
BUCKET_OVERDUE = "overdue"
BUCKET_TODAY = "today"
BUCKET_SOON = "soon"
BUCKET_LATER = "later"
BUCKETS = (BUCKET_OVERDUE, BUCKET_TODAY, BUCKET_SOON, BUCKET_LATER, BUCKET_NO_DUE)


def to_date_only(value, tz: tzinfo | None = None) -> date | None:
    """Normalise a date, datetime or ISO string to a calendar date.

    Aware datetimes are first converted to ``tz`` (or the host's local zone)
    so that 23:30 UTC-3 is not read as the next day. Naive datetimes are
    taken as wall-clock time. ``DD/MM/YYYY`` strings are accepted as typed in
    the planning screens.

    Raises:
        ValidationError: for a non-empty value that cannot be parsed.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(tz) if tz is not None else value.astimezone()
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        try:
            return to_date_only(datetime.fromisoformat(text.replace("Z", "+00:00")), tz)
        except ValueError:
            pass
        try:
            return datetime.strptime(text, "%d/%m/%Y").date()
        except ValueError:
            pass
    raise ValidationError(f"Invalid date: {value!r}", details={"value": str(value)})


def days_between(a, b) -> int:
    """Whole days from ``b`` to ``a``; positive when ``a`` is later."""
    a_day = to_date_only(a)
    b_day = to_date_only(b)
    if a_day is None or b_day is None:
        raise ValidationError("days_between requires two dates")
    return (a_day - b_day).days


def classify(due_date, today) -> str:
    due = to_date_only(due_date)
    if due is None:
        return BUCKET_NO_DUE
    diff = days_between(due, today)
    if diff < 0:
        return BUCKET_OVERDUE
    if diff == 0:
        return BUCKET_TODAY
    if diff <= SOON_WINDOW_DAYS:
        return BUCKET_SOON
    return BUCKET_LATER


def is_task_open(task) -> bool:
    return task.status != TASK_DONE and not task.done_at


def summarize_buckets(tasks, today) -> dict:
    """Bell counters over open tasks: overdue, due today, due within the window."""
    counts = {"overdue": 0, "today": 0, "soon": 0}
    for t in tasks:
        if not is_task_open(t):
            continue
        bucket = classify(t.due_date, today)
        if bucket in counts:
            counts[bucket] += 1
    counts["total"] = counts["overdue"] + counts["today"] + counts["soon"]
    return counts


def _timestamp(value) -> float:
    if value is None:
        return 0.0
    # SQLite hands back naive values for UTC columns
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def sort_tasks_by_priority(tasks) -> list:
    """Open tasks first, then by due date (undated last), newest update, oldest creation."""

    def _key(t):
        due = to_date_only(t.due_date)
        return (
            0 if is_task_open(t) else 1,
            due is None,
            due or date.max,
            -_timestamp(getattr(t, "updated_at", None)),
            _timestamp(getattr(t, "created_at", None)),
        )

    return sorted(tasks, key=_key)
