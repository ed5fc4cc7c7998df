from __future__ import annotations

import logging
from typing import Any, Callable

from sqlalchemy.orm import Session

from nollyai.models.job import Job, JobStatus
from nollyai.models.notification import Notification

logger = logging.getLogger(__name__)

Listener = Callable[[str, dict[str, Any]], None]

_JOB_TITLES = {
    "script-breakdown": "Script Breakdown",
    "roto": "Roto",
    "color-grade": "Color Grade",
    "audio-cleanup": "Audio Cleanup",
    "mesh-generation": "3D Mesh",
    "chat-assistant": "Assistant Reply",
}


def _title_for(job_type: str) -> str:
    return _JOB_TITLES.get(job_type, job_type.replace("-", " ").title())


class NotificationEmitter:
    """Writes user notifications for job lifecycle events.

    Each event is stored in its own session and then handed to any registered
    listeners. Failures are logged and never propagate to the caller: a job's
    outcome does not depend on whether its notification was delivered.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory
        self._listeners: list[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def job_queued(self, job: Job) -> None:
        self._emit(
            "job_queued",
            {
                "user_id": job.user_id,
                "job_id": job.id,
                "job_type": job.type,
                "title": f"{_title_for(job.type)} queued",
                "message": "Your job is queued and will start shortly.",
            },
        )

    def job_finished(self, job: Job) -> None:
        status = JobStatus(job.status)
        if status == JobStatus.DONE:
            event = "job_completed"
            title = f"{_title_for(job.type)} complete"
            message = "Your job finished successfully."
        else:
            event = "job_failed"
            title = f"{_title_for(job.type)} failed"
            message = job.error_message or "Your job failed."
        self._emit(
            event,
            {"user_id": job.user_id, "job_id": job.id, "job_type": job.type, "title": title, "message": message},
        )

    def _emit(self, event: str, data: dict[str, Any]) -> None:
        try:
            db = self._session_factory()
            try:
                db.add(
                    Notification(
                        user_id=data["user_id"],
                        type=event,
                        title=data["title"],
                        message=data["message"],
                        job_id=data["job_id"],
                    )
                )
                db.commit()
            finally:
                db.close()
        except Exception:
            logger.exception("notification write failed event=%s job=%s", event, data.get("job_id"))

        for listener in list(self._listeners):
            try:
                listener(event, data)
            except Exception:
                logger.exception("notification listener failed event=%s job=%s", event, data.get("job_id"))


def list_notifications(db: Session, user_id: str, limit: int = 50, unread_only: bool = False) -> list[Notification]:
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.read.is_(False))
    return query.order_by(Notification.id.desc()).limit(max(1, int(limit))).all()


def mark_read(db: Session, user_id: str, notification_id: int) -> bool:
    updated = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .update({Notification.read: True}, synchronize_session=False)
    )
    db.commit()
    return updated == 1
