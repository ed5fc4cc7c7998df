import unittest
from typing import Any
from unittest import mock

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from nollyai.api.deps import get_notifier, get_scheduler
from nollyai.core.database import Base, get_db
from nollyai.core.security import CurrentUser, get_current_user, require_worker
from nollyai.core.settings import settings
from nollyai.services.notifications import NotificationEmitter
from nollyai.services.plugins.base import LatencyClass, Plugin, PluginResult, ValidationResult
from nollyai.services.plugins.registry import PluginRegistry, get_registry
from nollyai.services.scheduler import JobScheduler


class EchoBreakdown(Plugin):
    job_type = "script-breakdown"
    name = "Script Breakdown"
    latency = LatencyClass.SHORT

    def validate(self, payload: dict[str, Any]) -> ValidationResult:
        if not payload.get("script_content"):
            return ValidationResult.from_errors(["script_content, content or file_url is required"])
        return ValidationResult.from_errors([])

    def cost(self, payload: dict[str, Any]) -> int:
        return 5

    async def run(self, job) -> PluginResult:
        return PluginResult.done({"scenes": [{"scene_number": 1, "description": job.payload["script_content"]}]})


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        patcher = mock.patch.multiple(
            settings,
            job_process_on_submit=False,
            credits_signup_grant=20,
            daily_free_tokens=10,
            free_claim_cooldown_hours=24,
        )
        patcher.start()
        self.addCleanup(patcher.stop)

        engine = create_engine(
            "sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
        Base.metadata.create_all(bind=engine)
        Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

        registry = PluginRegistry()
        registry.register("script-breakdown", EchoBreakdown(), aliases=("breakdown",))
        notifier = NotificationEmitter(Session)
        scheduler = JobScheduler(Session, registry, notifier, short_timeout_s=1, poll_interval_s=0.01)
        self.user = CurrentUser(id="u1", email="ada@example.com", role="user")

        def override_get_db():
            db = Session()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_current_user] = lambda: self.user
        app.dependency_overrides[get_registry] = lambda: registry
        app.dependency_overrides[get_notifier] = lambda: notifier
        app.dependency_overrides[get_scheduler] = lambda: scheduler
        app.dependency_overrides[require_worker] = lambda: "worker"
        self.addCleanup(app.dependency_overrides.clear)
        self.client = TestClient(app)

    def as_user(self, user_id: str, role: str = "user") -> None:
        self.user = CurrentUser(id=user_id, email=f"{user_id}@example.com", role=role)

    def submit(self, payload=None, job_type="script-breakdown"):
        body = {"type": job_type, "payload": payload if payload is not None else {"script_content": "INT. MARKET"}}
        return self.client.post("/api/jobs", json=body)


class TestJobsApi(ApiTestCase):
    def test_submit_process_and_read(self):
        created = self.submit()
        self.assertEqual(created.status_code, 201)
        body = created.json()
        self.assertEqual(body["status"], "pending")
        self.assertEqual(body["credits_charged"], 5)
        self.assertEqual(self.client.get("/api/credits").json()["current_balance"], 15)

        stats = self.client.post("/api/jobs/process").json()
        self.assertEqual(stats["claimed"], 1)

        job = self.client.get(f"/api/jobs/{body['job_id']}").json()
        self.assertEqual(job["status"], "done")
        self.assertEqual(job["result"]["scenes"][0]["description"], "INT. MARKET")
        self.assertEqual(job["attempts"], 1)

        batch = self.client.get("/api/jobs/status", params={"ids": f"{body['job_id']},missing"}).json()
        self.assertEqual([j["id"] for j in batch["jobs"]], [body["job_id"]])

        listed = self.client.get("/api/jobs").json()
        self.assertEqual(len(listed["items"]), 1)

    def test_insufficient_credits(self):
        self.submit()
        self.submit()
        self.submit()
        self.submit()
        rejected = self.submit()
        self.assertEqual(rejected.status_code, 402)
        self.assertEqual(rejected.json()["detail"]["error"], "InsufficientCredits")
        self.assertEqual(len(self.client.get("/api/jobs").json()["items"]), 4)

    def test_unsupported_type(self):
        resp = self.submit(job_type="teleport")
        self.assertEqual(resp.status_code, 400)
        detail = resp.json()["detail"]
        self.assertEqual(detail["error"], "UnsupportedJobType")
        self.assertEqual(detail["supported"], ["script-breakdown"])

    def test_invalid_payload(self):
        resp = self.submit(payload={})
        self.assertEqual(resp.status_code, 422)
        self.assertEqual(resp.json()["detail"]["errors"], ["script_content, content or file_url is required"])
        self.assertEqual(self.client.get("/api/credits").json()["current_balance"], 20)

    def test_alias_is_stored_as_canonical_type(self):
        job_id = self.submit(job_type="breakdown").json()["job_id"]
        self.assertEqual(self.client.get(f"/api/jobs/{job_id}").json()["type"], "script-breakdown")

    def test_other_users_job_is_hidden(self):
        job_id = self.submit().json()["job_id"]
        self.as_user("u2")
        self.assertEqual(self.client.get(f"/api/jobs/{job_id}").status_code, 404)
        self.assertEqual(self.client.get("/api/jobs/status", params={"ids": job_id}).json()["jobs"], [])

    def test_retry_requires_error_status(self):
        job_id = self.submit().json()["job_id"]
        resp = self.client.post(f"/api/jobs/{job_id}/retry")
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["detail"]["current_status"], "pending")

    def test_status_batch_limit(self):
        ids = ",".join(f"id{i}" for i in range(101))
        self.assertEqual(self.client.get("/api/jobs/status", params={"ids": ids}).status_code, 400)

    def test_job_types(self):
        types = self.client.get("/api/job-types").json()
        self.assertEqual(types, [{"type": "script-breakdown", "name": "Script Breakdown", "latency": "short", "cost": None}])


class TestCreditsApi(ApiTestCase):
    def test_daily_claim_once(self):
        first = self.client.post("/api/credits/claim")
        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json(), {"new_balance": 30, "tokens_added": 10})

        second = self.client.post("/api/credits/claim")
        self.assertEqual(second.status_code, 409)
        self.assertGreater(second.json()["detail"]["seconds_until_reset"], 86000)

        status = self.client.get("/api/credits").json()
        self.assertFalse(status["can_claim_free"])

    def test_admin_credits_requires_admin(self):
        body = {"action": "add", "user_id": "u9", "amount": 50}
        self.assertEqual(self.client.post("/api/admin/credits", json=body).status_code, 403)

        self.as_user("boss", role="admin")
        resp = self.client.post("/api/admin/credits", json=body)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["current_balance"], 70)

        bad = self.client.post("/api/admin/credits", json={"action": "burn", "user_id": "u9", "amount": 5})
        self.assertEqual(bad.status_code, 400)


class TestNotificationsApi(ApiTestCase):
    def test_lifecycle_notifications(self):
        self.submit()
        self.client.post("/api/jobs/process")

        items = self.client.get("/api/notifications").json()
        self.assertEqual([n["type"] for n in items], ["job_completed", "job_queued"])

        resp = self.client.post(f"/api/notifications/{items[0]['id']}/read")
        self.assertEqual(resp.status_code, 200)
        unread = self.client.get("/api/notifications", params={"unread_only": True}).json()
        self.assertEqual(len(unread), 1)

        self.as_user("u2")
        self.assertEqual(self.client.post(f"/api/notifications/{items[1]['id']}/read").status_code, 404)


class TestMisc(ApiTestCase):
    def test_health(self):
        self.assertEqual(self.client.get("/health").json(), {"status": "healthy"})

    def test_billing_packages(self):
        packages = {p["id"]: p for p in self.client.get("/api/billing/packages").json()}
        self.assertEqual(packages["starter"]["amount_kobo"], 50000)
        self.assertEqual(packages["pro"]["tokens"], 1500)


if __name__ == "__main__":
    unittest.main()
