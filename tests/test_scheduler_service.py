"""
Sparks Immersion Planner
Tests — job registry, job runner and run history.
"""

from datetime import date
from unittest.mock import patch

from sparks.models import db
from sparks.models.immersion import TASK_DONE, TASK_OVERDUE, Task
from sparks.models.scheduling import ScheduledJob
from sparks.services.scheduler_service import SchedulerService, get_registered_jobs


class TestRegistry:

    def test_jobs_registered(self):
        jobs = get_registered_jobs()
        assert {"email_notifications", "overdue_marker"} <= set(jobs)

    def test_ensure_jobs_registered_is_idempotent(self):
        created = SchedulerService.ensure_jobs_registered()
        assert len(created) == len(get_registered_jobs())
        assert SchedulerService.ensure_jobs_registered() == []

        db.session.expire_all()
        job = db.session.query(ScheduledJob).filter_by(job_name="overdue_marker").one()
        assert job.schedule_config["description"] == "Daily at 03:00"


class TestRunJob:

    def test_unknown_job(self):
        result = SchedulerService.run_job("nope")
        assert result["status"] == "error"

    def test_overdue_marker(self, make_immersion, make_task):
        im = make_immersion()
        late = make_task(im, "Atrasada", due_date=date(2020, 1, 1))
        done = make_task(im, "Feita", due_date=date(2020, 1, 1), status=TASK_DONE)
        future = make_task(im, "Futura", due_date=date(2999, 1, 1))

        result = SchedulerService.run_job("overdue_marker")

        assert result["status"] == "success"
        assert result["result"]["updated"] == 1
        db.session.expire_all()
        assert db.session.get(Task, late.id).status == TASK_OVERDUE
        assert db.session.get(Task, done.id).status == TASK_DONE
        assert db.session.get(Task, future.id).status != TASK_OVERDUE

    def test_run_history_recorded(self):
        SchedulerService.ensure_jobs_registered()
        SchedulerService.run_job("overdue_marker")
        SchedulerService.run_job("overdue_marker")

        db.session.expire_all()
        job = db.session.query(ScheduledJob).filter_by(job_name="overdue_marker").one()
        assert job.run_count == 2
        assert job.last_run_status == "success"
        assert job.last_run_result["updated"] == 0

    def test_paused_job_skipped(self):
        SchedulerService.ensure_jobs_registered()
        SchedulerService.toggle_job("overdue_marker", False)

        result = SchedulerService.run_job("overdue_marker")

        assert result["status"] == "skipped"

    def test_failure_recorded(self):
        SchedulerService.ensure_jobs_registered()
        with patch("sparks.services.scheduled_jobs.TaskStore.mark_overdue", side_effect=RuntimeError("boom")):
            result = SchedulerService.run_job("overdue_marker")

        assert result["status"] == "failed"
        assert result["error"] == "boom"
        db.session.expire_all()
        job = db.session.query(ScheduledJob).filter_by(job_name="overdue_marker").one()
        assert (job.error_count, job.last_error) == (1, "boom")

    def test_notification_job_previews_by_default(self):
        result = SchedulerService.run_job("email_notifications", dry_run=True)
        assert result["status"] == "success"
        assert result["result"]["mode"] == "preview"

    def test_notification_job_send_mode_fails_cleanly(self):
        result = SchedulerService.run_job("email_notifications", dry_run=False)
        assert result["status"] == "failed"
        assert "Mail transport is not configured" in result["error"]


class TestJobEndpoints:

    def test_list_and_run(self, client):
        SchedulerService.ensure_jobs_registered()

        jobs = client.get("/api/v1/scheduler/jobs").get_json()["items"]
        assert {j["job_name"] for j in jobs} >= {"email_notifications", "overdue_marker"}

        res = client.post("/api/v1/scheduler/jobs/overdue_marker/run")
        assert res.status_code == 200
        assert res.get_json()["status"] == "success"

    def test_run_unknown(self, client):
        assert client.post("/api/v1/scheduler/jobs/nope/run").status_code == 404
