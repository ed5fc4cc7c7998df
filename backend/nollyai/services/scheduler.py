"""Job scheduler: claims pending jobs and drives them to a terminal status.

One pass (``run_once``) reaps stale running jobs, claims up to ``batch_size``
pending jobs with a conditional UPDATE each, and then executes the claimed
jobs concurrently. Each job runs in its own session. Whatever happens inside a
plugin, the job ends in ``done`` or ``error``; exceptions never leave the
per-job step.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.orm import Session

from nollyai.core.errors import InvalidTransition, JobNotFound, StudioError
from nollyai.core.settings import settings as default_settings
from nollyai.models.job import Job, JobStatus
from nollyai.services import job_store
from nollyai.services.credits_engine import as_utc
from nollyai.services.notifications import NotificationEmitter
from nollyai.services.plugins.base import LatencyClass, Plugin, PluginResult, RunStatus
from nollyai.services.plugins.registry import PluginRegistry, get_registry

logger = logging.getLogger(__name__)


def _error_text(exc: BaseException) -> str:
    if isinstance(exc, StudioError):
        return f"{exc.code}: {exc.message}"
    return str(exc).strip() or type(exc).__name__


class JobScheduler:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        registry: PluginRegistry | None = None,
        notifier: NotificationEmitter | None = None,
        *,
        batch_size: int | None = None,
        short_timeout_s: float | None = None,
        long_timeout_s: float | None = None,
        poll_interval_s: float | None = None,
        poll_deadline_s: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        cfg = default_settings
        self._session_factory = session_factory
        self._registry = registry or get_registry()
        self._notifier = notifier
        self.batch_size = max(1, int(batch_size or cfg.job_batch_size))
        self.short_timeout_s = float(short_timeout_s or cfg.job_short_timeout_s)
        self.long_timeout_s = float(long_timeout_s or cfg.job_long_timeout_s)
        self.poll_interval_s = float(poll_interval_s or cfg.job_poll_interval_s)
        self.poll_deadline_s = float(poll_deadline_s or cfg.job_poll_deadline_s)
        self._sleep = sleep
        self._in_flight: set[str] = set()
        self._stop_event: Optional[asyncio.Event] = None
        self._stopping = False

    def run_timeout_for(self, plugin: Plugin) -> float:
        if plugin.run_timeout_s:
            return float(plugin.run_timeout_s)
        return self.long_timeout_s if plugin.latency == LatencyClass.LONG else self.short_timeout_s

    def poll_deadline_for(self, plugin: Plugin) -> float:
        return float(plugin.poll_deadline_s or self.poll_deadline_s)

    def stale_after_s(self) -> float:
        """Age past which a running job cannot still be owned by a live worker."""
        ceilings = [self.run_timeout_for(p) + self.poll_deadline_for(p) for p in self._registry.plugins()]
        longest = max(ceilings, default=self.long_timeout_s + self.poll_deadline_s)
        return longest + 2 * self.poll_interval_s

    async def run_once(self, limit: int | None = None) -> dict[str, int]:
        limit = max(1, int(limit or self.batch_size))
        reaped = self.reap_stale()

        db = self._session_factory()
        claimed: list[str] = []
        skipped = 0
        try:
            pending_ids = [job.id for job in job_store.list_pending(db, limit)]
            for job_id in pending_ids:
                if job_store.claim_job(db, job_id):
                    claimed.append(job_id)
                else:
                    skipped += 1
        finally:
            db.close()

        if claimed:
            self._in_flight.update(claimed)
            try:
                await asyncio.gather(*(self._process_job(job_id) for job_id in claimed))
            finally:
                self._in_flight.difference_update(claimed)

        stats = {"processed": len(claimed), "claimed": len(claimed), "skipped": skipped, "reaped": reaped}
        if claimed or skipped or reaped:
            logger.info("scheduler pass %s", stats)
        return stats

    async def _process_job(self, job_id: str) -> None:
        db = self._session_factory()
        try:
            job = job_store.get_job(db, job_id)
            try:
                outcome = await self._execute(db, job)
            except Exception as exc:
                logger.exception("job %s (%s) failed", job_id, job.type)
                outcome = PluginResult.failed(_error_text(exc))
            finished = self._finish(db, job_id, outcome)
            if finished is not None and self._notifier is not None:
                self._notifier.job_finished(finished)
        except Exception:
            # Store failures; the job stays running until reaped
            logger.exception("job %s: could not record outcome", job_id)
        finally:
            db.close()

    async def _execute(self, db: Session, job: Job) -> PluginResult:
        plugin = self._registry.resolve(job.type)
        run_timeout = self.run_timeout_for(plugin)
        try:
            result = await asyncio.wait_for(plugin.run(job), timeout=run_timeout)
        except asyncio.TimeoutError:
            return PluginResult.failed(f"Timeout: {job.type} did not finish within {run_timeout:g}s")
        if result.is_terminal:
            return result

        handle = result.handle
        job_store.save_handle(db, job.id, handle)
        loop = asyncio.get_running_loop()
        poll_deadline = self.poll_deadline_for(plugin)
        deadline = loop.time() + poll_deadline

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return PluginResult.failed(f"Timeout: {job.type} still running after {poll_deadline:g}s")
            await self._sleep(min(self.poll_interval_s, remaining))
            remaining = deadline - loop.time()
            if remaining <= 0:
                continue
            try:
                result = await asyncio.wait_for(plugin.poll(handle), timeout=min(run_timeout, remaining))
            except asyncio.TimeoutError:
                logger.warning("job %s: poll timed out", job.id)
                continue
            if result.is_terminal:
                return result
            if result.handle != handle:
                handle = result.handle
                job_store.save_handle(db, job.id, handle)

    def _finish(self, db: Session, job_id: str, outcome: PluginResult) -> Job | None:
        try:
            if outcome.status == RunStatus.DONE:
                job = job_store.mark_done(db, job_id, outcome.result or {})
            else:
                job = job_store.mark_error(db, job_id, outcome.error or "Unknown error")
        except (InvalidTransition, JobNotFound) as exc:
            logger.warning("job %s: outcome discarded (%s)", job_id, exc)
            return None
        if job.status == JobStatus.ERROR:
            logger.warning("job %s (%s) error: %s", job_id, job.type, job.error_message)
        else:
            logger.info("job %s (%s) done", job_id, job.type)
        return job

    def reap_stale(self, max_age_s: float | None = None) -> int:
        """Move running jobs older than ``max_age_s`` to error.

        Covers jobs orphaned by a crashed worker. Jobs this scheduler is
        executing right now are left alone. The default age covers the slowest
        registered plugin, so another worker's live job is never reaped.
        """
        if max_age_s is None:
            max_age_s = self.stale_after_s()
        cutoff = job_store.utcnow() - timedelta(seconds=float(max_age_s))

        db = self._session_factory()
        reaped = 0
        try:
            for job in job_store.list_running(db):
                if job.id in self._in_flight:
                    continue
                started = as_utc(job.started_at)
                if started is None or started > cutoff:
                    continue
                job_id = job.id
                try:
                    failed = job_store.mark_error(db, job_id, f"Timeout: no progress for more than {max_age_s:g}s")
                except (InvalidTransition, JobNotFound):
                    continue
                reaped += 1
                logger.warning("job %s (%s) reaped as stale", job_id, failed.type)
                if self._notifier is not None:
                    self._notifier.job_finished(failed)
        finally:
            db.close()
        return reaped

    async def run_forever(self, idle_sleep_s: float | None = None) -> None:
        idle = float(idle_sleep_s if idle_sleep_s is not None else default_settings.job_worker_idle_sleep_s)
        self._stopping = False
        self._stop_event = asyncio.Event()
        logger.info("job worker started batch=%s idle_sleep=%ss", self.batch_size, idle)
        while not self._stopping:
            try:
                stats = await self.run_once()
            except Exception:
                logger.exception("scheduler pass failed")
                stats = {"claimed": 0}
            if self._stopping:
                break
            if stats.get("claimed"):
                continue
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=idle)
            except asyncio.TimeoutError:
                pass
        logger.info("job worker stopped")

    def stop(self) -> None:
        self._stopping = True
        if self._stop_event is not None:
            self._stop_event.set()
