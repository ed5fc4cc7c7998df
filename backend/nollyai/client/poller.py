"""Client-side job status polling.

Watches that share a cadence share one asyncio task and one batched
``source.fetch(ids)`` per tick, so watching fifty jobs costs one request per
interval rather than fifty.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from nollyai.core.errors import JobNotFound

logger = logging.getLogger(__name__)

TERMINAL = {"done", "error"}

JobRecord = dict[str, Any]
Callback = Callable[[JobRecord], Union[None, Awaitable[None]]]


class JobStatusSource(Protocol):
    async def fetch(self, job_ids: list[str]) -> dict[str, JobRecord]:
        """Return the current record for each id that exists; omit missing ids."""
        ...


class Watch:
    def __init__(
        self,
        poller: "JobStatusPoller",
        job_id: str,
        cadence: float,
        on_update: Optional[Callback],
        on_terminal: Optional[Callback],
    ) -> None:
        self.job_id = job_id
        self.cadence = cadence
        self._poller = poller
        self._on_update = on_update
        self._on_terminal = on_terminal
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()
        self.missing = 0
        self.last: Optional[JobRecord] = None

    @property
    def done(self) -> bool:
        return self._future.done()

    def cancel(self) -> None:
        if self._future.done():
            return
        self._poller._detach(self)
        self._future.set_result(None)

    async def wait(self) -> Optional[JobRecord]:
        """Terminal record, or None if the watch was cancelled."""
        return await asyncio.shield(self._future)

    def _finish(self, record: JobRecord) -> None:
        if not self._future.done():
            self._poller._detach(self)
            self._future.set_result(record)

    def _fail(self, exc: BaseException) -> None:
        if not self._future.done():
            self._poller._detach(self)
            self._future.set_exception(exc)


class _Cadence:
    def __init__(self, interval_s: float) -> None:
        self.interval_s = interval_s
        self.delay_s = interval_s
        self.watches: list[Watch] = []
        self.task: Optional[asyncio.Task] = None


class JobStatusPoller:
    def __init__(
        self,
        source: JobStatusSource,
        interval_s: float = 3.0,
        max_interval_s: float = 30.0,
        missing_limit: int = 3,
    ) -> None:
        self.source = source
        self.interval_s = float(interval_s)
        self.max_interval_s = max(float(max_interval_s), self.interval_s)
        self.missing_limit = max(1, int(missing_limit))
        self._cadences: dict[float, _Cadence] = {}

    def watch(
        self,
        job_id: str,
        on_update: Optional[Callback] = None,
        on_terminal: Optional[Callback] = None,
        interval_s: Optional[float] = None,
    ) -> Watch:
        cadence_s = float(interval_s or self.interval_s)
        watch = Watch(self, str(job_id), cadence_s, on_update, on_terminal)
        cadence = self._cadences.get(cadence_s)
        if cadence is None:
            cadence = _Cadence(cadence_s)
            self._cadences[cadence_s] = cadence
        cadence.watches.append(watch)
        if cadence.task is None or cadence.task.done():
            cadence.task = asyncio.get_running_loop().create_task(self._run(cadence))
        return watch

    def active_tasks(self) -> int:
        return sum(1 for c in self._cadences.values() if c.task is not None and not c.task.done())

    async def close(self) -> None:
        for cadence in list(self._cadences.values()):
            for watch in list(cadence.watches):
                watch.cancel()
            if cadence.task is not None:
                cadence.task.cancel()
        tasks = [c.task for c in self._cadences.values() if c.task is not None]
        self._cadences.clear()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _detach(self, watch: Watch) -> None:
        cadence = self._cadences.get(watch.cadence)
        if cadence is not None and watch in cadence.watches:
            cadence.watches.remove(watch)

    async def _run(self, cadence: _Cadence) -> None:
        while True:
            if not cadence.watches:
                # No await between the check and the removal, so a concurrent
                # watch() either sees this task running or starts a new one
                if self._cadences.get(cadence.interval_s) is cadence:
                    del self._cadences[cadence.interval_s]
                return
            await self._tick(cadence)
            if not cadence.watches:
                continue
            await asyncio.sleep(cadence.delay_s)

    async def _tick(self, cadence: _Cadence) -> None:
        ids = sorted({w.job_id for w in cadence.watches})
        try:
            records = await self.source.fetch(ids)
        except Exception as exc:
            cadence.delay_s = min(cadence.delay_s * 2, self.max_interval_s)
            logger.warning("job status fetch failed (%s); next attempt in %ss", exc, cadence.delay_s)
            return
        cadence.delay_s = cadence.interval_s

        for watch in list(cadence.watches):
            if watch.done:
                continue
            record = records.get(watch.job_id)
            if record is None:
                watch.missing += 1
                if watch.missing >= self.missing_limit:
                    watch._fail(JobNotFound(f"Job {watch.job_id} not found"))
                continue
            watch.missing = 0
            watch.last = record
            await self._call(watch._on_update, record, "on_update")
            if watch.done:
                # Cancelled from inside on_update
                continue
            if str(record.get("status") or "").lower() in TERMINAL:
                # Detach before the callback so it fires exactly once
                watch._finish(record)
                await self._call(watch._on_terminal, record, "on_terminal")

    async def _call(self, callback: Optional[Callback], record: JobRecord, label: str) -> None:
        if callback is None:
            return
        try:
            result = callback(record)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("job watch %s callback failed job=%s", label, record.get("id"))
