"""Domain models shared by the work cache, reconciler and update loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class FailureClass(str, Enum):
    """Normalized failure classes used by the cycle retry policy."""

    TRANSIENT_NETWORK = "transient_network"
    TRANSIENT_LOCK = "transient_lock"
    PERSISTENT_PROTOCOL = "persistent_protocol"
    LOCAL_STATE_CORRUPTION = "local_state_corruption"
    NO_WORK = "no_work"


class CycleState(str, Enum):
    """States of one polling cycle across all devices."""

    LOGGING_IN = "logging_in"
    UPDATING_DEVICE = "updating_device"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(slots=True)
class StepResult:
    """Outcome of one component operation (top-off, reconcile, submit)."""

    ok: bool
    failure_class: FailureClass | None = None
    error_summary: str | None = None

    @classmethod
    def success(cls) -> StepResult:
        return cls(ok=True)

    @classmethod
    def failure(cls, failure_class: FailureClass, error_summary: str) -> StepResult:
        return cls(ok=False, failure_class=failure_class, error_summary=error_summary)


@dataclass(slots=True)
class Classification:
    """Result lines split by whether their assignment is still queued locally."""

    retain: list[str] = field(default_factory=list)
    submit: list[str] = field(default_factory=list)


@dataclass(slots=True)
class CycleReport:
    """What happened in one polling cycle."""

    state: CycleState
    devices_updated: int = 0
    failed_device: int | None = None
    failure: StepResult | None = None


@dataclass(slots=True)
class UpdateRunSummary:
    """Aggregate loop counters for CLI reporting."""

    cycles: int = 0
    completed: int = 0
    failed: int = 0
    stopped_by_signal: bool = False
