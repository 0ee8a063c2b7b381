"""
Sparks Immersion Planner
Risk & Workload Aggregator — dashboard scoring for immersions and owners.

Risk score per immersion (open tasks only):
    overdue * 5 + due_soon * 3 + orphan * 2 + 2 if it starts within 7 days
    and still has open tasks.

    ≥ 15 → Alto, ≥ 7 → Médio, otherwise Baixo. Zero scores are not listed.

"Due soon" here means due today or within the next 3 days, which is
narrower than the 7-day window of the bell and the weekly e-mail.
"""

from __future__ import annotations

import logging

from sparks.utils.dates import days_between, is_task_open, to_date_only

logger = logging.getLogger(__name__)

DUE_SOON_DAYS = 3
STARTS_SOON_DAYS = 7

WEIGHT_OVERDUE = 5
WEIGHT_DUE_SOON = 3
WEIGHT_ORPHAN = 2
WEIGHT_STARTS_SOON = 2

LEVEL_HIGH = "Alto"
LEVEL_MEDIUM = "Médio"
LEVEL_LOW = "Baixo"

UNASSIGNED_KEY = "unassigned"
UNASSIGNED_LABEL = "Sem dono"


def risk_level(score: int) -> str:
    if score >= 15:
        return LEVEL_HIGH
    if score >= 7:
        return LEVEL_MEDIUM
    return LEVEL_LOW


def _counters() -> dict:
    return {"open": 0, "overdue": 0, "due_soon": 0, "orphan": 0}


def _count_task(row: dict, task, today) -> None:
    row["open"] += 1
    due = to_date_only(task.due_date)
    if due is not None:
        diff = days_between(due, today)
        if diff < 0:
            row["overdue"] += 1
        elif diff <= DUE_SOON_DAYS:
            row["due_soon"] += 1
    if task.responsible_id is None:
        row["orphan"] += 1


def _reasons(row: dict, starts_soon: bool) -> list[str]:
    reasons = []
    if row["overdue"]:
        reasons.append(f"{row['overdue']} atrasada(s)")
    if row["due_soon"]:
        reasons.append(f"{row['due_soon']} vence(m) em até {DUE_SOON_DAYS} dias")
    if row["orphan"]:
        reasons.append(f"{row['orphan']} sem responsável")
    if starts_soon and row["open"]:
        reasons.append(f"começa em até {STARTS_SOON_DAYS} dias")
    return reasons


def score_immersions(tasks, immersions, today, limit: int | None = None) -> list[dict]:
    """Risk rows for the supplied immersions, highest score first.

    Tasks of immersions outside ``immersions`` are ignored.
    """
    today = to_date_only(today)
    by_id = {im.id: im for im in immersions}
    rows: dict[int, dict] = {}
    for t in tasks:
        if t.immersion_id not in by_id or not is_task_open(t):
            continue
        _count_task(rows.setdefault(t.immersion_id, _counters()), t, today)

    scored = []
    for immersion_id, row in rows.items():
        im = by_id[immersion_id]
        start = to_date_only(im.start_date)
        starts_soon = start is not None and 0 <= days_between(start, today) <= STARTS_SOON_DAYS
        score = (
            row["overdue"] * WEIGHT_OVERDUE
            + row["due_soon"] * WEIGHT_DUE_SOON
            + row["orphan"] * WEIGHT_ORPHAN
            + (WEIGHT_STARTS_SOON if starts_soon and row["open"] > 0 else 0)
        )
        if score <= 0:
            continue
        scored.append({
            "immersion_id": immersion_id,
            "immersion_name": im.immersion_name,
            "start_date": start.isoformat() if start else None,
            **row,
            "starts_soon": starts_soon,
            "score": score,
            "level": risk_level(score),
            "reasons": _reasons(row, starts_soon),
        })

    scored.sort(key=lambda r: (-r["score"], r["start_date"] or "9999-12-31", r["immersion_id"]))
    return scored[:limit] if limit else scored


def score_workload(tasks, profiles, today, limit: int | None = None) -> list[dict]:
    """Open-task load per responsible, most overdue first.

    Tasks without a responsible are grouped under the "Sem dono" row.
    """
    today = to_date_only(today)
    by_id = {p.id: p for p in profiles}
    rows: dict = {}
    for t in tasks:
        if not is_task_open(t):
            continue
        key = t.responsible_id if t.responsible_id is not None else UNASSIGNED_KEY
        if key not in rows:
            if key == UNASSIGNED_KEY:
                label = UNASSIGNED_LABEL
            else:
                p = by_id.get(key)
                label = (p.name or p.email) if p else str(key)
            rows[key] = {
                "responsible_id": None if key == UNASSIGNED_KEY else key,
                "responsible": label,
                **_counters(),
            }
        _count_task(rows[key], t, today)

    result = []
    for row in rows.values():
        row.pop("orphan")
        result.append(row)
    result.sort(key=lambda r: (-r["overdue"], -r["due_soon"], -r["open"], r["responsible"] or ""))
    return result[:limit] if limit else result


def dashboard_summary(tasks, immersions, today, user_id: int | None = None) -> dict:
    """KPI block. With ``user_id`` also counts the user's own open and overdue tasks.

    A task is the user's when they are its responsible, or when it has no
    responsible and they own the immersion's checklist.
    """
    today = to_date_only(today)
    tasks = list(tasks)
    overdue = 0
    done = 0
    for t in tasks:
        if not is_task_open(t):
            done += 1
            continue
        due = to_date_only(t.due_date)
        if due is not None and due < today:
            overdue += 1

    summary = {
        "total_immersions": len(immersions),
        "total_tasks": len(tasks),
        "done_tasks": done,
        "overdue_tasks": overdue,
    }

    if user_id is not None:
        owned = {im.id for im in immersions if im.checklist_owner_id == user_id}
        my_open = my_overdue = 0
        for t in tasks:
            mine = t.responsible_id == user_id or (t.responsible_id is None and t.immersion_id in owned)
            if not mine or not is_task_open(t):
                continue
            my_open += 1
            due = to_date_only(t.due_date)
            if due is not None and due < today:
                my_overdue += 1
        summary["my_open"] = my_open
        summary["my_overdue"] = my_overdue
    return summary
