import itertools
import unittest

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from nollyai.core.database import Base
from nollyai.core.errors import InvalidTransition, JobNotFound
from nollyai.models import credit_account, credit_ledger, notification  # noqa: F401
from nollyai.models.job import Job, JobStatus
from nollyai.services import job_store
from nollyai.services.credits_engine import as_utc


def _memory_sessionmaker():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


class TestJobStore(unittest.TestCase):
    def setUp(self):
        self.Session = _memory_sessionmaker()
        self.db = self.Session()

    def tearDown(self):
        self.db.close()

    def _job_in(self, status: JobStatus) -> str:
        job = job_store.create_job(self.db, "owner-1", "script-breakdown", {"script_content": "INT. HOUSE"})
        self.db.query(Job).filter(Job.id == job.id).update({Job.status: status}, synchronize_session=False)
        self.db.commit()
        return job.id

    def _status(self, job_id: str) -> JobStatus:
        self.db.expire_all()
        return JobStatus(self.db.query(Job.status).filter(Job.id == job_id).scalar())

    def test_create_starts_pending(self):
        job = job_store.create_job(self.db, "owner-1", "roto", {"file_url": "https://x/y.mp4"}, credits_charged=10)
        self.assertEqual(job.status, JobStatus.PENDING)
        self.assertEqual(job.credits_charged, 10)
        self.assertEqual(job.attempts, 0)
        self.assertIsNone(job.result)
        self.assertIsNone(job.error_message)

    def test_transition_table(self):
        legal = {
            (JobStatus.PENDING, JobStatus.RUNNING),
            (JobStatus.RUNNING, JobStatus.DONE),
            (JobStatus.RUNNING, JobStatus.ERROR),
            (JobStatus.ERROR, JobStatus.PENDING),
        }
        for current, target in itertools.product(JobStatus, JobStatus):
            with self.subTest(current=current.value, target=target.value):
                job_id = self._job_in(current)
                kwargs = {"result": {"ok": True}} if target == JobStatus.DONE else {}
                if (current, target) in legal:
                    job = job_store.transition(self.db, job_id, current, target, **kwargs)
                    self.assertEqual(job.status, target)
                else:
                    with self.assertRaises(InvalidTransition):
                        job_store.transition(self.db, job_id, current, target, **kwargs)
                    self.assertEqual(self._status(job_id), current)

    def test_stale_prior_status_is_rejected(self):
        job_id = self._job_in(JobStatus.PENDING)
        self.assertTrue(job_store.claim_job(self.db, job_id))
        with self.assertRaises(InvalidTransition) as ctx:
            job_store.transition(self.db, job_id, JobStatus.PENDING, JobStatus.RUNNING)
        self.assertEqual(ctx.exception.current, "running")

    def test_claim_has_single_winner(self):
        job_id = self._job_in(JobStatus.PENDING)
        other = self.Session()
        try:
            self.assertTrue(job_store.claim_job(self.db, job_id))
            self.assertFalse(job_store.claim_job(other, job_id))
        finally:
            other.close()
        job = job_store.get_job(self.db, job_id)
        self.assertEqual(job.attempts, 1)
        self.assertIsNotNone(job.started_at)

    def test_terminal_records_are_exclusive(self):
        done_id = self._job_in(JobStatus.RUNNING)
        err_id = self._job_in(JobStatus.RUNNING)
        done = job_store.job_to_dict(job_store.mark_done(self.db, done_id, {"scenes": []}))
        err = job_store.job_to_dict(job_store.mark_error(self.db, err_id, "boom"))

        self.assertEqual(done["result"], {"scenes": []})
        self.assertIsNone(done["error_message"])
        self.assertIsNone(err["result"])
        self.assertEqual(err["error_message"], "boom")
        self.assertIsNotNone(done["completed_at"])

    def test_error_without_message_gets_placeholder(self):
        job_id = self._job_in(JobStatus.RUNNING)
        job = job_store.mark_error(self.db, job_id, "   ")
        self.assertEqual(job.error_message, "Unknown error")

    def test_done_requires_result(self):
        job_id = self._job_in(JobStatus.RUNNING)
        with self.assertRaises(ValueError):
            job_store.transition(self.db, job_id, JobStatus.RUNNING, JobStatus.DONE)

    def test_retry_clears_error_and_keeps_completed_at(self):
        job_id = self._job_in(JobStatus.PENDING)
        job_store.claim_job(self.db, job_id)
        first = job_store.mark_error(self.db, job_id, "provider down")
        first_completed = as_utc(first.completed_at)

        retried = job_store.retry_job(self.db, job_id, owner="owner-1")
        self.assertEqual(retried.status, JobStatus.PENDING)
        self.assertIsNone(retried.error_message)
        self.assertIsNone(retried.result)
        self.assertIsNone(retried.started_at)

        job_store.claim_job(self.db, job_id)
        done = job_store.mark_done(self.db, job_id, {"ok": 1})
        self.assertEqual(done.attempts, 2)
        self.assertEqual(as_utc(done.completed_at), first_completed)

    def test_retry_outside_error_is_rejected_without_changes(self):
        for status in (JobStatus.PENDING, JobStatus.RUNNING, JobStatus.DONE):
            with self.subTest(status=status.value):
                job_id = self._job_in(status)
                before = job_store.get_job(self.db, job_id).updated_at
                with self.assertRaises(InvalidTransition):
                    job_store.retry_job(self.db, job_id, owner="owner-1")
                self.db.expire_all()
                after = job_store.get_job(self.db, job_id)
                self.assertEqual(after.status, status)
                self.assertEqual(after.updated_at, before)

    def test_retry_is_owner_scoped(self):
        job_id = self._job_in(JobStatus.ERROR)
        with self.assertRaises(JobNotFound):
            job_store.retry_job(self.db, job_id, owner="someone-else")
        self.assertEqual(self._status(job_id), JobStatus.ERROR)

    def test_missing_job(self):
        with self.assertRaises(JobNotFound):
            job_store.get_job(self.db, "nope")
        with self.assertRaises(JobNotFound):
            job_store.transition(self.db, "nope", JobStatus.PENDING, JobStatus.RUNNING)

    def test_list_pending_oldest_first(self):
        ids = [job_store.create_job(self.db, "owner-1", "roto", {"n": i}).id for i in range(4)]
        job_store.claim_job(self.db, ids[1])
        pending = [j.id for j in job_store.list_pending(self.db, limit=10)]
        self.assertEqual(pending, [ids[0], ids[2], ids[3]])
        self.assertEqual([j.id for j in job_store.list_pending(self.db, limit=2)], [ids[0], ids[2]])

    def test_get_jobs_is_owner_scoped(self):
        mine = job_store.create_job(self.db, "owner-1", "roto", {})
        theirs = job_store.create_job(self.db, "owner-2", "roto", {})
        found = job_store.get_jobs(self.db, [mine.id, theirs.id, "missing"], owner="owner-1")
        self.assertEqual([j.id for j in found], [mine.id])

    def test_save_handle_only_while_running(self):
        job_id = self._job_in(JobStatus.PENDING)
        with self.assertRaises(InvalidTransition):
            job_store.save_handle(self.db, job_id, {"prediction_id": "p1"})
        job_store.claim_job(self.db, job_id)
        job_store.save_handle(self.db, job_id, {"prediction_id": "p1"})
        self.db.expire_all()
        self.assertEqual(job_store.get_job(self.db, job_id).handle, {"prediction_id": "p1"})


if __name__ == "__main__":
    unittest.main()
