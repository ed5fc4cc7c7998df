import asyncio
import unittest

import httpx
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from nollyai.client.poller import JobStatusPoller
from nollyai.client.sources import HttpJobStatusSource, StoreJobStatusSource
from nollyai.core.database import Base
from nollyai.core.errors import JobNotFound
from nollyai.services import job_store

INTERVAL = 0.01


class FakeSource:
    def __init__(self, records=None, failures=0):
        self.records = dict(records or {})
        self.failures = failures
        self.calls = []
        self.on_fetch = None

    async def fetch(self, job_ids):
        self.calls.append(list(job_ids))
        if self.on_fetch is not None:
            self.on_fetch(len(self.calls))
        if self.failures:
            self.failures -= 1
            raise ConnectionError("network down")
        return {i: dict(self.records[i]) for i in job_ids if i in self.records}


class TestJobStatusPoller(unittest.IsolatedAsyncioTestCase):
    async def test_watches_on_one_cadence_share_a_task_and_a_fetch(self):
        source = FakeSource({"a": {"id": "a", "status": "running"}, "b": {"id": "b", "status": "pending"}})
        poller = JobStatusPoller(source, interval_s=INTERVAL)
        poller.watch("a")
        poller.watch("b")
        self.assertEqual(poller.active_tasks(), 1)

        await asyncio.sleep(INTERVAL * 3)
        self.assertEqual(source.calls[0], ["a", "b"])
        self.assertTrue(all(call == ["a", "b"] for call in source.calls))

        poller.watch("a", interval_s=INTERVAL * 2)
        self.assertEqual(poller.active_tasks(), 2)
        await poller.close()
        self.assertEqual(poller.active_tasks(), 0)

    async def test_terminal_callback_fires_once(self):
        source = FakeSource({"a": {"id": "a", "status": "running"}})
        poller = JobStatusPoller(source, interval_s=INTERVAL)
        updates, terminals = [], []
        watch = poller.watch("a", on_update=updates.append, on_terminal=terminals.append)

        await asyncio.sleep(INTERVAL * 2)
        source.records["a"] = {"id": "a", "status": "done", "result": {"mask_url": "https://cdn.example/m.mp4"}}
        record = await asyncio.wait_for(watch.wait(), timeout=1)
        await asyncio.sleep(INTERVAL * 3)

        self.assertEqual(record["status"], "done")
        self.assertEqual(len(terminals), 1)
        self.assertEqual(updates[0]["status"], "running")
        self.assertEqual(updates[-1]["status"], "done")
        self.assertEqual(poller.active_tasks(), 0)

    async def test_async_callbacks_are_awaited(self):
        source = FakeSource({"a": {"id": "a", "status": "error", "error_message": "boom"}})
        poller = JobStatusPoller(source, interval_s=INTERVAL)
        seen = []

        async def on_terminal(record):
            await asyncio.sleep(0)
            seen.append(record["error_message"])

        watch = poller.watch("a", on_terminal=on_terminal)
        await asyncio.wait_for(watch.wait(), timeout=1)
        await asyncio.sleep(INTERVAL)
        self.assertEqual(seen, ["boom"])

    async def test_cancel_is_idempotent_and_stops_the_task(self):
        source = FakeSource({"a": {"id": "a", "status": "running"}})
        poller = JobStatusPoller(source, interval_s=INTERVAL)
        terminals = []
        watch = poller.watch("a", on_terminal=terminals.append)
        await asyncio.sleep(INTERVAL * 2)

        watch.cancel()
        watch.cancel()
        self.assertIsNone(await watch.wait())

        source.records["a"] = {"id": "a", "status": "done", "result": {}}
        await asyncio.sleep(INTERVAL * 3)
        self.assertEqual(terminals, [])
        self.assertEqual(poller.active_tasks(), 0)

    async def test_cancel_from_update_callback_suppresses_terminal(self):
        source = FakeSource({"a": {"id": "a", "status": "done", "result": {}}})
        poller = JobStatusPoller(source, interval_s=INTERVAL)
        updates, terminals = [], []
        watches = []

        def on_update(record):
            updates.append(record["status"])
            watches[0].cancel()

        watches.append(poller.watch("a", on_update=on_update, on_terminal=terminals.append))
        self.assertIsNone(await asyncio.wait_for(watches[0].wait(), timeout=1))
        await asyncio.sleep(INTERVAL * 3)

        self.assertEqual(updates, ["done"])
        self.assertEqual(terminals, [])
        self.assertEqual(poller.active_tasks(), 0)

    async def test_fetch_failures_back_off_then_recover(self):
        source = FakeSource({"a": {"id": "a", "status": "done", "result": {}}}, failures=3)
        poller = JobStatusPoller(source, interval_s=INTERVAL, max_interval_s=INTERVAL * 4)
        delays = []
        source.on_fetch = lambda n: delays.append(poller._cadences[INTERVAL].delay_s)

        watch = poller.watch("a")
        record = await asyncio.wait_for(watch.wait(), timeout=2)

        self.assertEqual(record["status"], "done")
        self.assertEqual(delays, [INTERVAL, INTERVAL * 2, INTERVAL * 4, INTERVAL * 4])

    async def test_missing_job_fails_after_limit(self):
        source = FakeSource({})
        poller = JobStatusPoller(source, interval_s=INTERVAL, missing_limit=2)
        watch = poller.watch("ghost")
        with self.assertRaises(JobNotFound):
            await asyncio.wait_for(watch.wait(), timeout=1)
        self.assertEqual(len(source.calls), 2)

    async def test_failing_callback_does_not_stop_polling(self):
        source = FakeSource({"a": {"id": "a", "status": "running"}})
        poller = JobStatusPoller(source, interval_s=INTERVAL)

        def explode(record):
            raise RuntimeError("ui crashed")

        watch = poller.watch("a", on_update=explode)
        await asyncio.sleep(INTERVAL * 2)
        source.records["a"] = {"id": "a", "status": "done", "result": {}}
        record = await asyncio.wait_for(watch.wait(), timeout=1)
        self.assertEqual(record["status"], "done")


class TestSources(unittest.IsolatedAsyncioTestCase):
    async def test_store_source_scopes_to_owner(self):
        engine = create_engine(
            "sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
        Base.metadata.create_all(bind=engine)
        Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        db = Session()
        mine = job_store.create_job(db, "u1", "roto", {"file_url": "https://cdn.example/a.mp4"})
        theirs = job_store.create_job(db, "u2", "roto", {"file_url": "https://cdn.example/b.mp4"})
        mine_id, theirs_id = mine.id, theirs.id
        db.close()

        records = await StoreJobStatusSource(Session, owner="u1").fetch([mine_id, theirs_id])
        self.assertEqual(list(records), [mine_id])
        self.assertEqual(records[mine_id]["status"], "pending")

    async def test_http_source(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"jobs": [{"id": "a", "status": "running"}, {"status": "orphan"}]})

        source = HttpJobStatusSource(
            "https://studio.example/", token="jwt", transport=httpx.MockTransport(handler)
        )
        try:
            records = await source.fetch(["a", "b"])
        finally:
            await source.aclose()

        self.assertEqual(records, {"a": {"id": "a", "status": "running"}})
        self.assertEqual(seen[0].url.path, "/api/jobs/status")
        self.assertEqual(seen[0].url.params["ids"], "a,b")
        self.assertEqual(seen[0].headers["authorization"], "Bearer jwt")

    async def test_http_source_raises_on_server_error(self):
        source = HttpJobStatusSource(
            "https://studio.example", transport=httpx.MockTransport(lambda request: httpx.Response(503))
        )
        try:
            with self.assertRaises(httpx.HTTPStatusError):
                await source.fetch(["a"])
        finally:
            await source.aclose()


if __name__ == "__main__":
    unittest.main()
