from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from sqlalchemy.orm import Session

from nollyai.core.errors import InvalidPayload
from nollyai.models.job import Job
from nollyai.services import credits_engine, job_store
from nollyai.services.notifications import NotificationEmitter
from nollyai.services.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)


def submit_job(
    db: Session,
    registry: PluginRegistry,
    owner: str,
    job_type: str,
    payload: dict[str, Any] | None,
    notifier: NotificationEmitter | None = None,
) -> Job:
    """Validate, charge and persist a new job.

    Unsupported types and invalid payloads are rejected before anything is
    written. The debit and the job insert share one transaction, so a job never
    exists without its charge and a charge never exists without its job.
    """
    canonical = registry.canonical_type(job_type)
    plugin = registry.resolve(canonical)

    if not isinstance(payload, dict):
        raise InvalidPayload(["payload must be an object"])
    validation = plugin.validate(payload)
    if not validation.valid:
        raise InvalidPayload(validation.errors)

    credits_engine.get_or_create_credit_account(db, owner)
    amount = max(0, int(plugin.cost(payload)))

    job_id = str(uuid4())
    credits_engine.debit_credits(db, owner, amount, job_id=job_id, source=f"job:{canonical}", commit=False)
    job = job_store.create_job(db, owner, canonical, payload, credits_charged=amount, commit=False, job_id=job_id)
    db.commit()
    db.refresh(job)
    logger.info("job submitted id=%s type=%s owner=%s credits=%s", job.id, canonical, owner, amount)

    if notifier is not None:
        notifier.job_queued(job)
    return job
