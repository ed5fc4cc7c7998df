import asyncio

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from nollyai.core.database import Base
from nollyai.core.settings import settings
from nollyai.models.job import JobStatus
from nollyai.services import job_store
from nollyai.services.credits_engine import get_credit_status
from nollyai.services.plugins.base import LatencyClass, Plugin, PluginResult, ValidationResult
from nollyai.services.plugins.registry import PluginRegistry
from nollyai.services.scheduler import JobScheduler
from nollyai.services.submission import submit_job


class CountdownRoto(Plugin):
    job_type = "roto"
    name = "Roto"
    latency = LatencyClass.LONG

    def __init__(self) -> None:
        self.polls = 0

    def validate(self, payload):
        return ValidationResult.from_errors([] if payload.get("file_url") else ["file_url is required"])

    def cost(self, payload):
        return 10

    async def run(self, job):
        return PluginResult.running({"prediction_id": "pred-1"})

    async def poll(self, handle):
        self.polls += 1
        if self.polls < 3:
            return PluginResult.running(handle)
        return PluginResult.done({"mask_url": "https://cdn.example/mask.mp4", "prediction_id": handle["prediction_id"]})


async def main() -> None:
    settings.credits_signup_grant = 25
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    registry = PluginRegistry()
    registry.register("roto", CountdownRoto(), aliases=("roto-tracking",))
    scheduler = JobScheduler(TestingSessionLocal, registry, poll_interval_s=0.01, poll_deadline_s=5)

    db = TestingSessionLocal()
    try:
        job = submit_job(db, registry, "user-1", "roto-tracking", {"file_url": "https://cdn.example/clip.mp4"})
        job_id = job.id
        assert job.type == "roto", job.type
        assert get_credit_status(db, "user-1")["current_balance"] == 15

        stats = await scheduler.run_once()
        assert stats["claimed"] == 1, stats

        db.expire_all()
        done = job_store.get_job(db, job_id)
        assert done.status == JobStatus.DONE, done.status
        assert done.result["mask_url"].endswith("mask.mp4"), done.result
        assert done.completed_at is not None
        assert get_credit_status(db, "user-1")["current_balance"] == 15
    finally:
        db.close()


if __name__ == "__main__":
    asyncio.run(main())
    print("OK")
