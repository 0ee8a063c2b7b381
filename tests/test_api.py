"""
Sparks Immersion Planner
Tests — HTTP endpoints: tasks, clone, dashboards, bell, notification config, cron, health.
"""

from datetime import date
from unittest.mock import patch

from sparks.models import db
from sparks.models.immersion import IMMERSION_PLANNING, TASK_DONE, TASK_SCHEDULED, Immersion, Task
from sparks.models.notification import RULE_TASK_DUE_SOON_WEEKLY, RULE_TASK_OVERDUE_DAILY


# ═════════════════════════════════════════════════════════════════════════════
# TASKS
# ═════════════════════════════════════════════════════════════════════════════


class TestTaskEndpoints:

    def test_create_task_with_defaults(self, client, make_profile, make_immersion):
        owner = make_profile()
        im = make_immersion(start_date=date(2026, 2, 2), owner=owner)

        res = client.post(f"/api/v1/immersions/{im.id}/tasks", json={"title": "Briefing", "phase": "PRE"})

        assert res.status_code == 201
        data = res.get_json()
        assert data["responsible_id"] == owner.id
        assert data["due_date"] == "2026-01-26"
        assert data["status"] == TASK_SCHEDULED

    def test_create_task_keeps_explicit_values(self, client, make_profile, make_immersion):
        owner = make_profile()
        other = make_profile(name="Bruno", email="bruno@x.com")
        im = make_immersion(owner=owner)

        res = client.post(f"/api/v1/immersions/{im.id}/tasks", json={
            "title": "Relatório", "phase": "POST", "responsible_id": other.id, "due_date": "20/02/2026",
        })

        data = res.get_json()
        assert data["responsible_id"] == other.id
        assert data["due_date"] == "2026-02-20"

    def test_create_task_legacy_phase_label(self, client, make_immersion):
        im = make_immersion()
        res = client.post(f"/api/v1/immersions/{im.id}/tasks", json={"title": "Abertura", "phase": "Durante"})
        assert res.status_code == 201
        assert res.get_json()["phase"] == "DURING"

    def test_create_task_invalid_phase(self, client, make_immersion):
        im = make_immersion()
        res = client.post(f"/api/v1/immersions/{im.id}/tasks", json={"title": "X", "phase": "LATER"})
        assert res.status_code == 422

    def test_create_task_requires_title(self, client, make_immersion):
        im = make_immersion()
        res = client.post(f"/api/v1/immersions/{im.id}/tasks", json={"phase": "PRE"})
        assert res.status_code == 422
        assert res.get_json()["details"] == {"title": "missing"}

    def test_create_task_bad_date(self, client, make_immersion):
        im = make_immersion()
        res = client.post(f"/api/v1/immersions/{im.id}/tasks", json={"title": "X", "due_date": "soon"})
        assert res.status_code == 422

    def test_list_tasks_with_buckets(self, client, make_immersion, make_task):
        im = make_immersion()
        make_task(im, "Atrasada", due_date=date(2026, 1, 5))
        make_task(im, "Hoje", due_date=date(2026, 1, 10))
        make_task(im, "Feita", due_date=date(2026, 1, 1), status=TASK_DONE)
        make_task(im, "Sem prazo")

        res = client.get(f"/api/v1/immersions/{im.id}/tasks?as_of=2026-01-10")

        data = res.get_json()
        assert data["total"] == 4
        assert [(i["title"], i["bucket"]) for i in data["items"]] == [
            ("Atrasada", "overdue"), ("Hoje", "today"), ("Sem prazo", "no_due"), ("Feita", "overdue"),
        ]

    def test_list_tasks_unknown_immersion(self, client):
        assert client.get("/api/v1/immersions/999/tasks").status_code == 404

    def test_update_status(self, client, make_immersion, make_task):
        task = make_task(make_immersion(), "Convite")
        res = client.patch(f"/api/v1/tasks/{task.id}/status", json={"status": TASK_DONE})
        assert res.status_code == 200
        assert res.get_json()["status"] == TASK_DONE

    def test_update_status_rejects_unknown(self, client, make_immersion, make_task):
        task = make_task(make_immersion(), "Convite")
        res = client.patch(f"/api/v1/tasks/{task.id}/status", json={"status": "Talvez"})
        assert res.status_code == 422

    def test_update_status_unknown_task(self, client):
        assert client.patch("/api/v1/tasks/999/status", json={"status": TASK_DONE}).status_code == 404


class TestCloneEndpoint:

    def test_clone_shifts_dates(self, client, make_profile, make_immersion, make_task):
        owner = make_profile()
        im = make_immersion("Original", start_date=date(2026, 2, 2), end_date=date(2026, 2, 4), owner=owner)
        make_task(im, "Convite", due_date=date(2026, 1, 26), status=TASK_DONE, responsible=owner)
        make_task(im, "Sem prazo")

        res = client.post(f"/api/v1/immersions/{im.id}/clone", json={"start_date": "2026-03-02"})

        assert res.status_code == 201
        data = res.get_json()
        assert data["tasks_copied"] == 2
        clone = data["immersion"]
        assert clone["immersion_name"] == "Original (cópia)"
        assert clone["end_date"] == "2026-03-04"
        assert clone["status"] == IMMERSION_PLANNING

        db.session.expire_all()
        copies = db.session.query(Task).filter_by(immersion_id=clone["id"]).order_by(Task.id).all()
        assert [(t.title, t.due_date, t.status) for t in copies] == [
            ("Convite", date(2026, 2, 23), TASK_SCHEDULED),
            ("Sem prazo", None, TASK_SCHEDULED),
        ]

    def test_clone_requires_start_date(self, client, make_immersion):
        im = make_immersion()
        res = client.post(f"/api/v1/immersions/{im.id}/clone", json={})
        assert res.status_code == 422
        assert db.session.query(Immersion).count() == 1

    def test_failed_task_copy_leaves_no_clone(self, client, make_immersion, make_task):
        im = make_immersion("Original")
        make_task(im, "Convite", due_date=date(2026, 1, 26))

        def clashing_copies(tasks, source_start, new_start, new_immersion_id=None):
            return [
                Task(immersion_id=new_immersion_id, phase="PRE", title=title, template_key="pre::convite")
                for title in ("Convite", "convite")
            ]

        with patch("sparks.blueprints.immersion_bp.shift_tasks_for_clone", clashing_copies):
            res = client.post(f"/api/v1/immersions/{im.id}/clone", json={"start_date": "2026-03-02"})

        assert res.status_code == 503
        assert res.get_json()["code"] == "ERR_TRANSIENT_IO"
        db.session.expire_all()
        assert db.session.query(Immersion).count() == 1
        assert db.session.query(Task).count() == 1


# ═════════════════════════════════════════════════════════════════════════════
# DASHBOARDS & BELL
# ═════════════════════════════════════════════════════════════════════════════


class TestDashboardEndpoints:

    def test_risk(self, client, make_immersion, make_task):
        im = make_immersion("Arriscada")
        for i in range(3):
            make_task(im, f"T{i}", due_date=date(2026, 1, 1))
        make_immersion("Tranquila")

        res = client.get("/api/v1/dashboard/risk?as_of=2026-01-12")

        items = res.get_json()["items"]
        assert len(items) == 1
        assert items[0]["immersion_name"] == "Arriscada"
        assert items[0]["score"] == 21
        assert items[0]["level"] == "Alto"

    def test_workload(self, client, make_profile, make_immersion, make_task):
        ana = make_profile()
        im = make_immersion()
        make_task(im, "T1", due_date=date(2026, 1, 1), responsible=ana)
        make_task(im, "T2", due_date=date(2026, 1, 1))

        items = client.get("/api/v1/dashboard/workload?as_of=2026-01-12").get_json()["items"]

        assert [i["responsible"] for i in items] == ["Ana Souza", "Sem dono"]

    def test_summary_for_user(self, client, make_profile, make_immersion, make_task):
        ana = make_profile()
        im = make_immersion(owner=ana)
        make_task(im, "T1", due_date=date(2026, 1, 1), responsible=ana)
        make_task(im, "T2", due_date=date(2026, 1, 20))

        stats = client.get(f"/api/v1/dashboard/summary?as_of=2026-01-12&user_id={ana.id}").get_json()["stats"]

        assert stats["total_tasks"] == 2
        assert stats["overdue_tasks"] == 1
        assert (stats["my_open"], stats["my_overdue"]) == (2, 1)

    def test_invalid_as_of(self, client):
        assert client.get("/api/v1/dashboard/risk?as_of=ontem").status_code == 422


class TestBellEndpoint:

    def test_counts(self, client, make_profile, make_task):
        ana = make_profile()
        make_task(None, "A", due_date=date(2026, 1, 9), responsible=ana)
        make_task(None, "B", due_date=date(2026, 1, 10), responsible=ana)
        make_task(None, "C", due_date=date(2026, 1, 15))
        make_task(None, "D", due_date=date(2026, 1, 9), status=TASK_DONE)

        everyone = client.get("/api/v1/notifications/summary?as_of=2026-01-10").get_json()
        mine = client.get(f"/api/v1/notifications/summary?as_of=2026-01-10&user_id={ana.id}").get_json()

        assert (everyone["overdue"], everyone["today"], everyone["soon"], everyone["total"]) == (1, 1, 1, 3)
        assert mine["total"] == 2


# ═════════════════════════════════════════════════════════════════════════════
# NOTIFICATION CONFIGURATION & LOG
# ═════════════════════════════════════════════════════════════════════════════


class TestNotificationConfig:

    def test_defaults_listed(self, client):
        data = client.get("/api/v1/notifications/config").get_json()
        assert [r["rule_key"] for r in data["rules"]] == [
            "immersion_created", "task_overdue_daily", "task_due_soon_weekly", "immersion_risk_daily",
        ]
        assert data["settings"]["from_email"] == "noreply@sparks.test"

    def test_update_rule(self, client):
        res = client.put(f"/api/v1/notifications/rules/{RULE_TASK_DUE_SOON_WEEKLY}", json={
            "is_enabled": False, "lookback_minutes": 120, "config": {"weekly_day": 5},
        })
        assert res.status_code == 200
        data = res.get_json()
        assert data["is_enabled"] is False
        assert data["lookback_minutes"] == 120
        assert data["config"]["weekly_day"] == 5
        assert data["config"]["due_days"] == 7

    def test_update_rule_validation(self, client):
        res = client.put(f"/api/v1/notifications/rules/{RULE_TASK_OVERDUE_DAILY}", json={
            "cadence": "monthly", "lookback_minutes": -1, "config": {"weekly_day": 9},
        })
        assert res.status_code == 422
        details = res.get_json()["details"]
        assert set(details) == {"cadence", "lookback_minutes", "config.weekly_day"}

    def test_unknown_rule(self, client):
        assert client.put("/api/v1/notifications/rules/nope", json={}).status_code == 404

    def test_update_template(self, client):
        res = client.put(f"/api/v1/notifications/templates/{RULE_TASK_OVERDUE_DAILY}",
                         json={"subject": "{{count}} pendências"})
        assert res.get_json()["subject"] == "{{count}} pendências"
        assert res.get_json()["intro"].startswith("Olá {{name}}")

    def test_update_settings(self, client):
        res = client.put("/api/v1/notifications/settings",
                         json={"from_email": " avisos@sparks.test ", "from_name": "Sparks"})
        assert res.get_json()["from_email"] == "avisos@sparks.test"
        config = client.get("/api/v1/notifications/config").get_json()
        assert config["settings"]["from_name"] == "Sparks"


# ═════════════════════════════════════════════════════════════════════════════
# CRON
# ═════════════════════════════════════════════════════════════════════════════


class TestCronEndpoint:

    def test_token_required_when_configured(self, client, app, monkeypatch):
        monkeypatch.setitem(app.config, "CRON_TOKEN", "s3cret")

        assert client.post("/api/v1/cron/email-notifications?token=wrong").status_code == 401
        res = client.post("/api/v1/cron/email-notifications?dry_run=1",
                          headers={"X-Cron-Token": "s3cret"})
        assert res.status_code == 200

    def test_preview_cycle_logs(self, client, make_profile, make_task):
        ana = make_profile(email="ana@x.com")
        make_task(None, "Atrasada", due_date=date(2020, 1, 1), responsible=ana)

        res = client.post("/api/v1/cron/email-notifications?dry_run=1")

        data = res.get_json()
        assert data["ok"] is True
        assert data["mode"] == "preview"
        assert data["previewed"] >= 1
        log = client.get("/api/v1/notifications/log?rule_key=task_overdue_daily").get_json()
        assert log["items"][0]["to_email"] == "ana@x.com"

    def test_send_mode_without_mail_server(self, client):
        res = client.post("/api/v1/cron/email-notifications?dry_run=0")
        assert res.status_code == 500
        body = res.get_json()
        assert body["code"] == "ERR_CONFIGURATION"
        assert body["details"] == {"setting": "MAIL_SERVER"}


class TestHealth:

    def test_health(self, client):
        data = client.get("/api/v1/health").get_json()
        assert data["status"] == "ok"
        assert data["checks"]["mail"]["status"] == "preview_only"
