"""
Sparks Immersion Planner
Tests — date normalisation, urgency buckets and task ordering.
"""

from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest

from sparks.core.exceptions import ValidationError
from sparks.utils.dates import (
    BUCKET_LATER,
    BUCKET_NO_DUE,
    BUCKET_OVERDUE,
    BUCKET_SOON,
    BUCKET_TODAY,
    SOON_WINDOW_DAYS,
    classify,
    days_between,
    sort_tasks_by_priority,
    summarize_buckets,
    to_date_only,
)

TODAY = date(2026, 1, 10)


def _task(due=None, status="Programada", done_at=None, updated_at=None, created_at=None, title=""):
    return SimpleNamespace(
        title=title, due_date=due, status=status, done_at=done_at,
        updated_at=updated_at, created_at=created_at,
    )


class TestToDateOnly:

    def test_iso_string(self):
        assert to_date_only("2026-01-05") == date(2026, 1, 5)

    def test_brazilian_format(self):
        assert to_date_only("05/01/2026") == date(2026, 1, 5)

    def test_date_passthrough(self):
        assert to_date_only(date(2026, 1, 5)) == date(2026, 1, 5)

    def test_naive_datetime_keeps_wall_clock(self):
        assert to_date_only(datetime(2026, 1, 5, 23, 59)) == date(2026, 1, 5)

    def test_aware_datetime_uses_local_calendar(self):
        # 01:30 UTC on the 6th is still the 5th in São Paulo
        value = datetime(2026, 1, 6, 1, 30, tzinfo=timezone.utc)
        assert to_date_only(value, ZoneInfo("America/Sao_Paulo")) == date(2026, 1, 5)

    def test_iso_datetime_string_with_z(self):
        assert to_date_only("2026-01-06T01:30:00Z", ZoneInfo("America/Sao_Paulo")) == date(2026, 1, 5)

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_empty_values(self, value):
        assert to_date_only(value) is None

    def test_garbage_raises(self):
        with pytest.raises(ValidationError):
            to_date_only("amanhã")


class TestDaysBetween:

    def test_past_due_is_negative(self):
        assert days_between(date(2026, 1, 5), TODAY) == -5

    def test_future_is_positive(self):
        assert days_between(date(2026, 1, 17), TODAY) == 7

    def test_same_day_ignores_time(self):
        assert days_between(datetime(2026, 1, 10, 23, 0), datetime(2026, 1, 10, 1, 0)) == 0

    def test_missing_operand_raises(self):
        with pytest.raises(ValidationError):
            days_between(None, TODAY)


class TestClassify:

    @pytest.mark.parametrize("offset,bucket", [
        (-1, BUCKET_OVERDUE),
        (0, BUCKET_TODAY),
        (1, BUCKET_SOON),
        (SOON_WINDOW_DAYS, BUCKET_SOON),
        (SOON_WINDOW_DAYS + 1, BUCKET_LATER),
    ])
    def test_boundaries(self, offset, bucket):
        assert classify(TODAY + timedelta(days=offset), TODAY) == bucket

    def test_no_due_date(self):
        assert classify(None, TODAY) == BUCKET_NO_DUE

    def test_overdue_example(self):
        assert classify("2026-01-05", "2026-01-10") == BUCKET_OVERDUE


class TestSummarizeBuckets:

    def test_counts_open_tasks_only(self):
        tasks = [
            _task(date(2026, 1, 9)),
            _task(date(2026, 1, 8), status="Concluída"),
            _task(date(2026, 1, 7), done_at=datetime(2026, 1, 7, tzinfo=timezone.utc)),
            _task(date(2026, 1, 10)),
            _task(date(2026, 1, 12)),
            _task(date(2026, 1, 30)),
            _task(None),
        ]
        assert summarize_buckets(tasks, TODAY) == {"overdue": 1, "today": 1, "soon": 1, "total": 3}

    def test_empty(self):
        assert summarize_buckets([], TODAY)["total"] == 0


class TestSortTasksByPriority:

    def test_open_before_done_then_due_date(self):
        done = _task(date(2026, 1, 1), status="Concluída", title="done")
        late = _task(date(2026, 1, 20), title="late")
        early = _task(date(2026, 1, 2), title="early")
        undated = _task(None, title="undated")
        ordered = sort_tasks_by_priority([done, undated, late, early])
        assert [t.title for t in ordered] == ["early", "late", "undated", "done"]

    def test_same_due_date_most_recently_updated_first(self):
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        old = _task(TODAY, updated_at=base, created_at=base, title="old")
        new = _task(TODAY, updated_at=base + timedelta(hours=3), created_at=base, title="new")
        assert [t.title for t in sort_tasks_by_priority([old, new])] == ["new", "old"]

    def test_ties_fall_back_to_creation_order(self):
        base = datetime(2026, 1, 1)
        second = _task(TODAY, updated_at=base, created_at=base + timedelta(minutes=5), title="second")
        first = _task(TODAY, updated_at=base, created_at=base, title="first")
        assert [t.title for t in sort_tasks_by_priority([second, first])] == ["first", "second"]
