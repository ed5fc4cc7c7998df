from sqlalchemy import Column, Integer, String, DateTime, Enum, JSON, Text
from sqlalchemy.sql import func
from nollyai.core.database import Base
import enum
from datetime import datetime, timezone
from uuid import uuid4


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({JobStatus.DONE, JobStatus.ERROR})


class Job(Base):
    __tablename__ = "jobs"

    id = Column(String, primary_key=True, index=True, default=lambda: str(uuid4()))
    user_id = Column(String, index=True, nullable=False)
    type = Column(String, index=True, nullable=False)
    status = Column(
        Enum(JobStatus, name="job_status", values_callable=lambda e: [m.value for m in e]),
        index=True,
        default=JobStatus.PENDING,
        nullable=False,
    )

    payload = Column(JSON, nullable=False)
    result = Column(JSON)
    error_message = Column(Text)

    # Opaque handle returned by long-running plugins; polled until terminal
    handle = Column(JSON)

    credits_charged = Column(Integer, default=0)
    attempts = Column(Integer, default=0)

    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))

    @property
    def owner(self) -> str:
        return self.user_id

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
