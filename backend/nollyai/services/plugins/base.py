"""Plugin interface for job processing backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from nollyai.models.job import Job


class LatencyClass(str, Enum):
    SHORT = "short"
    LONG = "long"


class RunStatus(str, Enum):
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)

    @classmethod
    def from_errors(cls, errors: list[str]) -> "ValidationResult":
        return cls(valid=not errors, errors=list(errors))


@dataclass
class PluginResult:
    """Outcome of ``run``/``poll``.

    ``done`` carries a result, ``error`` carries an error message and
    ``running`` carries the handle to poll with. Use the constructors below;
    they refuse the mixed shapes.
    """

    status: RunStatus
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    handle: Optional[dict[str, Any]] = None

    def __post_init__(self) -> None:
        self.status = RunStatus(self.status)
        if self.status == RunStatus.DONE:
            if self.result is None or self.error is not None:
                raise ValueError("done results carry a result and no error")
        elif self.status == RunStatus.ERROR:
            if not self.error or self.result is not None:
                raise ValueError("error results carry an error message and no result")
        elif self.handle is None:
            raise ValueError("running results carry a handle")

    @classmethod
    def done(cls, result: dict[str, Any]) -> "PluginResult":
        return cls(status=RunStatus.DONE, result=result)

    @classmethod
    def failed(cls, error: str) -> "PluginResult":
        return cls(status=RunStatus.ERROR, error=error)

    @classmethod
    def running(cls, handle: dict[str, Any]) -> "PluginResult":
        return cls(status=RunStatus.RUNNING, handle=handle)

    @property
    def is_terminal(self) -> bool:
        return self.status != RunStatus.RUNNING


class Plugin(ABC):
    """Base class for a job type handler.

    To add a job type:
    1. Subclass Plugin and set ``job_type``, ``name``, ``latency``
    2. Implement validate(), run(), cost() (and poll() for long-running work)
    3. Register an instance in ``build_default_registry``
    """

    job_type: str = ""
    name: str = ""
    latency: LatencyClass = LatencyClass.SHORT
    # Per-plugin ceilings; None falls back to the latency class defaults
    run_timeout_s: Optional[float] = None
    poll_deadline_s: Optional[float] = None

    @abstractmethod
    def validate(self, payload: dict[str, Any]) -> ValidationResult:
        """Cheap precondition check. Must not touch the network."""
        ...

    @abstractmethod
    def cost(self, payload: dict[str, Any]) -> int:
        """Credits required to run this payload."""
        ...

    @abstractmethod
    async def run(self, job: "Job") -> PluginResult:
        ...

    async def poll(self, handle: dict[str, Any]) -> PluginResult:
        raise NotImplementedError(f"{self.job_type} does not support polling")

    def describe(self) -> dict[str, Any]:
        return {
            "type": self.job_type,
            "name": self.name,
            "latency": self.latency.value,
        }
