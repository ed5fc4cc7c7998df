from __future__ import annotations

from typing import Any

from fastapi import HTTPException


class StudioError(Exception):
    """Base for errors that map to a client-visible error code."""

    code = "StudioError"
    status_code = 400

    def __init__(self, message: str | None = None, **extra: Any) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.extra = extra

    def to_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {"error": self.code, "message": self.message}
        detail.update(self.extra)
        return detail


class InsufficientCredits(StudioError):
    code = "InsufficientCredits"
    status_code = 402


class UnsupportedJobType(StudioError):
    code = "UnsupportedJobType"
    status_code = 400


class InvalidPayload(StudioError):
    code = "InvalidPayload"
    status_code = 422

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors) or "Invalid payload", errors=list(errors))
        self.errors = list(errors)


class AlreadyClaimed(StudioError):
    code = "AlreadyClaimed"
    status_code = 409

    def __init__(self, seconds_until_reset: int) -> None:
        super().__init__("Free tokens already claimed", seconds_until_reset=int(seconds_until_reset))
        self.seconds_until_reset = int(seconds_until_reset)


class InvalidTransition(StudioError):
    code = "InvalidTransition"
    status_code = 409

    def __init__(self, job_id: str, current: str | None, target: str) -> None:
        super().__init__(
            f"Cannot move job {job_id} from {current} to {target}",
            current_status=current,
            target_status=target,
        )
        self.job_id = job_id
        self.current = current
        self.target = target


class JobNotFound(StudioError):
    code = "JobNotFound"
    status_code = 404


class PluginError(RuntimeError):
    """Raised by plugins for execution-time failures; recorded on the job."""


def http_error(exc: StudioError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())
