"""Interfaces the sync core expects from remote services."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from primenet_manager.config import DeviceSettings
from primenet_manager.http.fetcher import FetchResult


@dataclass(slots=True)
class RemoteReply:
    """Outcome of one remote call.

    ``error`` is None when the service answered as expected. ``transient`` marks
    failures where no usable HTTP answer arrived (timeout, refused connection,
    5xx), which are worth retrying on the next cycle.
    """

    records: list[str] = field(default_factory=list)
    error: str | None = None
    transient: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def accepted(cls, records: list[str] | None = None) -> RemoteReply:
        return cls(records=list(records or []))

    @classmethod
    def rejected(cls, error: str) -> RemoteReply:
        return cls(error=error)

    @classmethod
    def from_failed_fetch(cls, result: FetchResult) -> RemoteReply:
        transient = result.status_code == 0 or result.status_code >= 500
        return cls(error=result.error or f"HTTP {result.status_code}", transient=transient)


class AssignmentProvider(Protocol):
    """Issues new assignment lines for a device."""

    name: str

    def fetch_assignments(self, count: int, device: DeviceSettings) -> RemoteReply:
        """Return up to ``count`` assignment lines in ``records``."""
        raise NotImplementedError


class SessionClient(Protocol):
    """Authenticates the shared HTTP session."""

    def login(self) -> bool:
        raise NotImplementedError


class ResultSink(Protocol):
    """Accepts a batch of result lines."""

    def submit(self, batch: str) -> RemoteReply:
        """Return an ok reply only when the service acknowledged the batch."""
        raise NotImplementedError
