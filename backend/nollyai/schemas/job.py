from pydantic import BaseModel, Field
from typing import Dict, List, Any, Optional
from datetime import datetime


class JobCreate(BaseModel):
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class JobCreated(BaseModel):
    job_id: str
    status: str
    credits_charged: int


class JobResponse(BaseModel):
    id: str
    owner: str
    type: str
    status: str
    payload: Dict[str, Any]
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    credits_charged: int = 0
    attempts: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class JobListResponse(BaseModel):
    items: List[JobResponse]
    limit: int
    offset: int


class JobStatusBatch(BaseModel):
    jobs: List[JobResponse]


class JobTypeResponse(BaseModel):
    type: str
    name: str
    latency: str
    cost: Any = None


class ProcessResponse(BaseModel):
    processed: int
    claimed: int
    skipped: int
    reaped: int
