"""
Scheduler service, cron endpoint and health checks.

The sweep job runs against the real clock here, so assertions stick to
counts that do not depend on today's date.
"""

import pytest

from inspection_platform.models.auth import Roles
from inspection_platform.models.inspection import InspectionInstance
from inspection_platform.models.scheduling import ScheduledJob
from inspection_platform.services import scheduled_jobs  # noqa: F401  registers jobs
from inspection_platform.services import scheduler_service
from inspection_platform.services.scheduler_service import SchedulerService, get_registered_jobs

from conftest import auth_header

CRON_HEADERS = {"Authorization": "Bearer testing-cron-secret"}


@pytest.fixture()
def jobs():
    SchedulerService.ensure_jobs_registered()


@pytest.fixture()
def super_admin(org_tree):
    return auth_header(org_tree["super_admin"], Roles.SUPER_ADMIN)


# ═══════════════════════════════════════════════════════════════════════════════
# SchedulerService
# ═══════════════════════════════════════════════════════════════════════════════

class TestSchedulerService:

    def test_sweep_job_registered(self):
        assert "inspection_sweep" in get_registered_jobs()

    def test_ensure_jobs_registered_is_idempotent(self):
        created = SchedulerService.ensure_jobs_registered()
        assert [j.job_name for j in created] == ["inspection_sweep"]
        assert SchedulerService.ensure_jobs_registered() == []
        assert ScheduledJob.query.count() == 1

    def test_unknown_job(self):
        outcome = SchedulerService.run_job("does_not_exist")
        assert outcome["status"] == "error"

    def test_run_records_history(self, jobs, org_tree):
        outcome = SchedulerService.run_job("inspection_sweep")
        assert outcome["status"] == "success"
        assert outcome["result"]["counts"]["created"] == 3

        status = SchedulerService.get_job_status("inspection_sweep")
        assert status["run_count"] == 1
        assert status["last_run_status"] == "success"

    def test_paused_job_skipped_unless_forced(self, jobs, org_tree):
        SchedulerService.toggle_job("inspection_sweep", False)

        assert SchedulerService.run_job("inspection_sweep")["status"] == "skipped"
        assert InspectionInstance.query.count() == 0

        assert SchedulerService.run_job("inspection_sweep", force=True)["status"] == "success"
        assert InspectionInstance.query.count() == 3

    def test_failing_job_is_recorded(self, jobs, monkeypatch):
        def boom(app):
            raise RuntimeError("store offline")

        monkeypatch.setitem(scheduler_service._job_registry, "inspection_sweep", boom)
        outcome = SchedulerService.run_job("inspection_sweep")
        assert outcome["status"] == "failed"
        assert outcome["error"] == "store offline"

        status = SchedulerService.get_job_status("inspection_sweep")
        assert status["error_count"] == 1

    def test_toggle_unknown_job(self):
        assert SchedulerService.toggle_job("does_not_exist", True) is None


# ═══════════════════════════════════════════════════════════════════════════════
# Cron endpoint
# ═══════════════════════════════════════════════════════════════════════════════

class TestCronEndpoint:

    def test_missing_secret_is_401(self, client, org_tree):
        res = client.post("/api/v1/cron/inspection-sweep")
        assert res.status_code == 401
        assert InspectionInstance.query.count() == 0

    def test_wrong_secret_is_401(self, client, org_tree):
        res = client.post("/api/v1/cron/inspection-sweep",
                          headers={"Authorization": "Bearer guess"})
        assert res.status_code == 401

    def test_user_token_is_not_a_cron_secret(self, client, super_admin):
        res = client.post("/api/v1/cron/inspection-sweep", headers=super_admin)
        assert res.status_code == 401

    def test_sweep_runs(self, client, jobs, org_tree):
        res = client.post("/api/v1/cron/inspection-sweep", headers=CRON_HEADERS)
        assert res.status_code == 200
        body = res.get_json()
        assert body["job_name"] == "inspection_sweep"
        assert body["result"]["counts"]["created"] == 3
        assert body["result"]["failures"] == []
        assert InspectionInstance.query.count() == 3

    def test_get_also_accepted(self, client, jobs, org_tree):
        res = client.get("/api/v1/cron/inspection-sweep", headers=CRON_HEADERS)
        assert res.status_code == 200


# ═══════════════════════════════════════════════════════════════════════════════
# Scheduler admin endpoints
# ═══════════════════════════════════════════════════════════════════════════════

class TestSchedulerAdmin:

    def test_list_requires_super_admin(self, client, org_tree):
        assert client.get("/api/v1/scheduler/jobs").status_code == 401
        admin = auth_header(org_tree["admin_a"], Roles.ADMIN, org_tree["org_a"])
        assert client.get("/api/v1/scheduler/jobs", headers=admin).status_code == 403

    def test_list(self, client, jobs, super_admin):
        res = client.get("/api/v1/scheduler/jobs", headers=super_admin)
        assert res.status_code == 200
        names = [j["job_name"] for j in res.get_json()["jobs"]]
        assert "inspection_sweep" in names

    def test_trigger_runs_paused_job(self, client, jobs, super_admin):
        client.post("/api/v1/scheduler/jobs/inspection_sweep/toggle",
                    headers=super_admin, json={"enabled": False})
        res = client.post("/api/v1/scheduler/jobs/inspection_sweep/trigger", headers=super_admin)
        assert res.status_code == 200
        assert res.get_json()["status"] == "success"

    def test_trigger_unknown_job_is_404(self, client, super_admin):
        res = client.post("/api/v1/scheduler/jobs/nope/trigger", headers=super_admin)
        assert res.status_code == 404

    def test_toggle(self, client, jobs, super_admin):
        res = client.post("/api/v1/scheduler/jobs/inspection_sweep/toggle",
                          headers=super_admin, json={"enabled": False})
        assert res.status_code == 200
        assert res.get_json()["status"] == "paused"
        assert res.get_json()["is_enabled"] is False

    def test_toggle_requires_bool(self, client, jobs, super_admin):
        res = client.post("/api/v1/scheduler/jobs/inspection_sweep/toggle",
                          headers=super_admin, json={"enabled": "off"})
        assert res.status_code == 400


# ═══════════════════════════════════════════════════════════════════════════════
# Health
# ═══════════════════════════════════════════════════════════════════════════════

class TestHealth:

    def test_ready(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_live(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        body = res.get_json()
        assert body["checks"]["database"]["status"] == "ok"
        assert "inspection_sweep" in body["checks"]["scheduler"]["jobs"]
