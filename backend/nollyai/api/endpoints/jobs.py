from fastapi import APIRouter, Depends, HTTPException, BackgroundTasks
from sqlalchemy.orm import Session
from typing import List

from nollyai.api.deps import get_notifier, get_scheduler
from nollyai.core.database import get_db
from nollyai.core.errors import StudioError, http_error
from nollyai.core.security import CurrentUser, get_current_user, require_worker
from nollyai.core.settings import settings
from nollyai.schemas.job import (
    JobCreate,
    JobCreated,
    JobListResponse,
    JobResponse,
    JobStatusBatch,
    JobTypeResponse,
    ProcessResponse,
)
from nollyai.services import job_store
from nollyai.services.notifications import NotificationEmitter
from nollyai.services.plugins.registry import PluginRegistry, get_registry
from nollyai.services.scheduler import JobScheduler
from nollyai.services.submission import submit_job

router = APIRouter()

MAX_STATUS_IDS = 100


@router.post("/jobs", response_model=JobCreated, status_code=201)
async def create_job(
    job_in: JobCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    registry: PluginRegistry = Depends(get_registry),
    notifier: NotificationEmitter = Depends(get_notifier),
    scheduler: JobScheduler = Depends(get_scheduler),
):
    try:
        job = submit_job(db, registry, current_user.id, job_in.type, job_in.payload, notifier=notifier)
    except StudioError as exc:
        raise http_error(exc)

    if settings.job_process_on_submit:
        background_tasks.add_task(scheduler.run_once)

    return {"job_id": job.id, "status": job.status.value, "credits_charged": int(job.credits_charged or 0)}


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(
    limit: int = 25,
    offset: int = 0,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    limit = max(1, min(int(limit), 100))
    offset = max(0, int(offset))
    jobs = job_store.list_jobs_for_owner(db, current_user.id, limit=limit, offset=offset)
    return {"items": [job_store.job_to_dict(j) for j in jobs], "limit": limit, "offset": offset}


@router.get("/jobs/status", response_model=JobStatusBatch)
async def job_status_batch(
    ids: str = "",
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    job_ids = [i.strip() for i in ids.split(",") if i.strip()]
    if len(job_ids) > MAX_STATUS_IDS:
        raise HTTPException(status_code=400, detail=f"At most {MAX_STATUS_IDS} ids per request")
    jobs = job_store.get_jobs(db, job_ids, owner=current_user.id)
    return {"jobs": [job_store.job_to_dict(j) for j in jobs]}


@router.post("/jobs/process", response_model=ProcessResponse)
async def process_jobs(
    limit: int | None = None,
    _caller: str = Depends(require_worker),
    scheduler: JobScheduler = Depends(get_scheduler),
):
    return await scheduler.run_once(limit)


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        job = job_store.get_job(db, job_id, owner=current_user.id)
    except StudioError as exc:
        raise http_error(exc)
    return job_store.job_to_dict(job)


@router.post("/jobs/{job_id}/retry", response_model=JobResponse)
async def retry_job(
    job_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    scheduler: JobScheduler = Depends(get_scheduler),
):
    try:
        job = job_store.retry_job(db, job_id, owner=current_user.id)
    except StudioError as exc:
        raise http_error(exc)

    if settings.job_process_on_submit:
        background_tasks.add_task(scheduler.run_once)
    return job_store.job_to_dict(job)


@router.get("/job-types", response_model=List[JobTypeResponse])
async def list_job_types(registry: PluginRegistry = Depends(get_registry)):
    return [plugin.describe() for plugin in registry.plugins()]
