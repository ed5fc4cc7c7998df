"""Durable job records and the legal status transitions between them.

Every status change is a single conditional UPDATE keyed on the job id and
the expected prior status, so two writers racing on the same job cannot both
succeed. The loser gets ``InvalidTransition`` and nothing is written.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable
from uuid import uuid4

from sqlalchemy.orm import Session

from nollyai.core.errors import InvalidTransition, JobNotFound
from nollyai.models.job import Job, JobStatus

logger = logging.getLogger(__name__)


LEGAL_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: frozenset({JobStatus.DONE, JobStatus.ERROR}),
    JobStatus.ERROR: frozenset({JobStatus.PENDING}),
    JobStatus.DONE: frozenset(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_legal_transition(current: JobStatus, target: JobStatus) -> bool:
    return JobStatus(target) in LEGAL_TRANSITIONS.get(JobStatus(current), frozenset())


def create_job(
    db: Session,
    owner: str,
    job_type: str,
    payload: dict[str, Any],
    credits_charged: int = 0,
    commit: bool = True,
    job_id: str | None = None,
) -> Job:
    job = Job(
        id=job_id or str(uuid4()),
        user_id=owner,
        type=job_type,
        payload=payload,
        status=JobStatus.PENDING,
        credits_charged=int(credits_charged or 0),
        attempts=0,
    )
    db.add(job)
    if commit:
        db.commit()
        db.refresh(job)
    else:
        db.flush()
    return job


def get_job(db: Session, job_id: str, owner: str | None = None) -> Job:
    query = db.query(Job).filter(Job.id == job_id)
    if owner is not None:
        query = query.filter(Job.user_id == owner)
    job = query.first()
    if job is None:
        raise JobNotFound(f"Job {job_id} not found")
    return job


def get_jobs(db: Session, job_ids: Iterable[str], owner: str | None = None) -> list[Job]:
    ids = [str(j) for j in job_ids if j]
    if not ids:
        return []
    query = db.query(Job).filter(Job.id.in_(ids))
    if owner is not None:
        query = query.filter(Job.user_id == owner)
    return query.all()


def list_pending(db: Session, limit: int) -> list[Job]:
    return (
        db.query(Job)
        .filter(Job.status == JobStatus.PENDING)
        .order_by(Job.created_at.asc(), Job.id.asc())
        .limit(max(1, int(limit)))
        .all()
    )


def list_running(db: Session) -> list[Job]:
    return db.query(Job).filter(Job.status == JobStatus.RUNNING).order_by(Job.started_at.asc()).all()


def list_jobs_for_owner(db: Session, owner: str, limit: int = 25, offset: int = 0) -> list[Job]:
    return (
        db.query(Job)
        .filter(Job.user_id == owner)
        .order_by(Job.created_at.desc(), Job.id.desc())
        .offset(max(0, int(offset)))
        .limit(max(1, int(limit)))
        .all()
    )


def _current_status(db: Session, job_id: str) -> JobStatus | None:
    value = db.query(Job.status).filter(Job.id == job_id).scalar()
    return JobStatus(value) if value is not None else None


def transition(
    db: Session,
    job_id: str,
    current: JobStatus,
    target: JobStatus,
    *,
    result: dict[str, Any] | None = None,
    error_message: str | None = None,
    now: datetime | None = None,
) -> Job:
    """Move a job from ``current`` to ``target``.

    Raises ``InvalidTransition`` for an edge outside ``LEGAL_TRANSITIONS`` and
    when the job is no longer in ``current`` (someone else moved it first).
    """
    current = JobStatus(current)
    target = JobStatus(target)
    if not is_legal_transition(current, target):
        raise InvalidTransition(job_id, current.value, target.value)

    now = now or utcnow()
    values: dict[Any, Any] = {Job.status: target, Job.updated_at: now}

    if target == JobStatus.RUNNING:
        values[Job.started_at] = now
        values[Job.attempts] = Job.attempts + 1
    elif target == JobStatus.DONE:
        if result is None:
            raise ValueError("a done job requires a result")
        values[Job.result] = result
        values[Job.error_message] = None
        values[Job.handle] = None
    elif target == JobStatus.ERROR:
        values[Job.result] = None
        values[Job.error_message] = (error_message or "").strip() or "Unknown error"
        values[Job.handle] = None
    elif target == JobStatus.PENDING:
        values[Job.result] = None
        values[Job.error_message] = None
        values[Job.handle] = None
        values[Job.started_at] = None

    updated = (
        db.query(Job)
        .filter(Job.id == job_id, Job.status == current)
        .update(values, synchronize_session=False)
    )
    if updated != 1:
        db.rollback()
        actual = _current_status(db, job_id)
        if actual is None:
            raise JobNotFound(f"Job {job_id} not found")
        raise InvalidTransition(job_id, actual.value, target.value)

    if target in (JobStatus.DONE, JobStatus.ERROR):
        # completed_at is stamped on the first terminal transition only
        db.query(Job).filter(Job.id == job_id, Job.completed_at.is_(None)).update(
            {Job.completed_at: now}, synchronize_session=False
        )

    db.commit()
    job = db.query(Job).filter(Job.id == job_id).one()
    db.refresh(job)
    logger.info("job %s: %s -> %s", job_id, current.value, target.value)
    return job


def claim_job(db: Session, job_id: str) -> bool:
    """Take ownership of a pending job. False means another worker got it."""
    try:
        transition(db, job_id, JobStatus.PENDING, JobStatus.RUNNING)
    except (InvalidTransition, JobNotFound):
        return False
    return True


def mark_done(db: Session, job_id: str, result: dict[str, Any]) -> Job:
    return transition(db, job_id, JobStatus.RUNNING, JobStatus.DONE, result=result)


def mark_error(db: Session, job_id: str, error_message: str) -> Job:
    return transition(db, job_id, JobStatus.RUNNING, JobStatus.ERROR, error_message=error_message)


def retry_job(db: Session, job_id: str, owner: str) -> Job:
    get_job(db, job_id, owner=owner)
    return transition(db, job_id, JobStatus.ERROR, JobStatus.PENDING)


def save_handle(db: Session, job_id: str, handle: dict[str, Any]) -> None:
    updated = (
        db.query(Job)
        .filter(Job.id == job_id, Job.status == JobStatus.RUNNING)
        .update({Job.handle: handle, Job.updated_at: utcnow()}, synchronize_session=False)
    )
    if updated != 1:
        db.rollback()
        raise InvalidTransition(job_id, None, JobStatus.RUNNING.value)
    db.commit()


def job_to_dict(job: Job) -> dict[str, Any]:
    status = JobStatus(job.status)
    out: dict[str, Any] = {
        "id": job.id,
        "owner": job.user_id,
        "type": job.type,
        "status": status.value,
        "payload": job.payload,
        "result": job.result if status == JobStatus.DONE else None,
        "error_message": job.error_message if status == JobStatus.ERROR else None,
        "credits_charged": int(job.credits_charged or 0),
        "attempts": int(job.attempts or 0),
        "created_at": _iso(job.created_at),
        "updated_at": _iso(job.updated_at),
        "started_at": _iso(job.started_at),
        "completed_at": _iso(job.completed_at),
    }
    return out


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()
