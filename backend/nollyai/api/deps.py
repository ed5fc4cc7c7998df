from nollyai.core.database import SessionLocal
from nollyai.services.notifications import NotificationEmitter
from nollyai.services.plugins.registry import get_registry
from nollyai.services.scheduler import JobScheduler

_notifier: NotificationEmitter | None = None
_scheduler: JobScheduler | None = None


def get_notifier() -> NotificationEmitter:
    global _notifier
    if _notifier is None:
        _notifier = NotificationEmitter(SessionLocal)
    return _notifier


def get_scheduler() -> JobScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = JobScheduler(SessionLocal, get_registry(), get_notifier())
    return _scheduler
