"""
Sparks Immersion Planner
Tests — owner and due-date defaults for tasks.
"""

from datetime import date
from types import SimpleNamespace

from sparks.services.task_defaults import resolve_due_date, resolve_owner, resolve_task_defaults


def _immersion(start=date(2026, 2, 2), end=date(2026, 2, 4), owner=None, consultant=None):
    return SimpleNamespace(
        id=1, start_date=start, end_date=end,
        checklist_owner_id=owner, consultant_id=consultant,
    )


class TestResolveOwner:

    def test_checklist_owner_wins(self):
        assert resolve_owner(_immersion(owner=3, consultant=4)) == 3

    def test_falls_back_to_consultant(self):
        assert resolve_owner(_immersion(consultant=4)) == 4

    def test_none_when_nobody(self):
        assert resolve_owner(_immersion()) is None
        assert resolve_owner(None) is None


class TestResolveDueDate:

    def test_pre_is_a_week_before_start(self):
        assert resolve_due_date("PRE", _immersion()) == date(2026, 1, 26)

    def test_during_is_start(self):
        assert resolve_due_date("DURING", _immersion()) == date(2026, 2, 2)

    def test_post_is_a_week_after_end(self):
        assert resolve_due_date("POST", _immersion()) == date(2026, 2, 11)

    def test_post_without_end_uses_start(self):
        assert resolve_due_date("POST", _immersion(end=None)) == date(2026, 2, 2)

    def test_legacy_phase_labels(self):
        assert resolve_due_date("PA-PRE", _immersion()) == date(2026, 1, 26)
        assert resolve_due_date("durante", _immersion()) == date(2026, 2, 2)

    def test_custom_lead_days(self):
        assert resolve_due_date("PRE", _immersion(), pre_lead_days=14) == date(2026, 1, 19)

    def test_unknown_phase_or_missing_dates(self):
        assert resolve_due_date("OTHER", _immersion()) is None
        assert resolve_due_date("PRE", _immersion(start=None)) is None
        assert resolve_due_date(None, _immersion()) is None


class TestResolveTaskDefaults:

    def test_fills_missing_fields_only(self):
        task = {"title": "Enviar convite", "phase": "PRE", "responsible_id": None, "due_date": None}
        resolved = resolve_task_defaults(task, _immersion(owner=3))
        assert resolved["responsible_id"] == 3
        assert resolved["due_date"] == date(2026, 1, 26)
        assert task["responsible_id"] is None  # input untouched

    def test_explicit_values_win(self):
        task = {"phase": "POST", "responsible_id": 9, "due_date": date(2026, 3, 1)}
        resolved = resolve_task_defaults(task, _immersion(owner=3))
        assert resolved["responsible_id"] == 9
        assert resolved["due_date"] == date(2026, 3, 1)
