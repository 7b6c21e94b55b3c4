"""Polling loop that updates every device profile once per cycle."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from typing import Protocol

from primenet_manager.config import DeviceSettings
from primenet_manager.remote.base import SessionClient
from primenet_manager.sync.models import (
    CycleReport,
    CycleState,
    StepResult,
    UpdateRunSummary,
)

logger = logging.getLogger(__name__)

SLEEP_SLICE_SECONDS = 1.0


class DeviceStep(Protocol):
    def __call__(self, device: DeviceSettings) -> StepResult: ...


class UpdateAbortedError(RuntimeError):
    """Too many consecutive cycles failed in bounded-retry mode."""

    def __init__(self, failed_cycles: int) -> None:
        super().__init__(f"Failed {failed_cycles} update attempts, exiting.")
        self.failed_cycles = failed_cycles


class UpdateOrchestrator:
    """Runs login, top-off and reconcile for each device, restarting the cycle on failure.

    A failure on any device abandons the rest of the cycle and, after the
    retry delay, starts again from login with the first device.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        devices: Sequence[DeviceSettings],
        top_off: DeviceStep,
        reconcile: DeviceStep,
        session: SessionClient | None = None,
        login_required: bool = True,
        poll_interval_seconds: float = 0.0,
        retry_delay_seconds: float = 120.0,
        max_failed_cycles: int = 0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.devices = tuple(devices)
        self.top_off = top_off
        self.reconcile = reconcile
        self.session = session
        self.login_required = login_required
        self.poll_interval_seconds = poll_interval_seconds
        self.retry_delay_seconds = retry_delay_seconds
        self.max_failed_cycles = max_failed_cycles
        self._sleep = sleep
        self._stop_requested = False

    def run_cycle(self) -> CycleReport:
        """Run one LOGGING_IN -> UPDATING_DEVICE(i) -> COMPLETE pass."""

        report = CycleReport(state=CycleState.LOGGING_IN)
        if self.session is not None and not self.session.login():
            if self.login_required:
                logger.warning("Login failed, retry in %s seconds", self.retry_delay_seconds)
                report.state = CycleState.FAILED
                return report
            logger.warning("PrimeNet login failed, continuing with GPU72 only")

        report.state = CycleState.UPDATING_DEVICE
        for index, device in enumerate(self.devices):
            logger.info("Updating device: %d", index)
            outcome = self.top_off(device)
            if outcome.ok:
                outcome = self.reconcile(device)
            if not outcome.ok:
                logger.warning(
                    "Update of device %d failed (%s): %s",
                    index,
                    outcome.failure_class.value if outcome.failure_class else "unknown",
                    outcome.error_summary,
                )
                report.state = CycleState.FAILED
                report.failed_device = index
                report.failure = outcome
                return report
            report.devices_updated += 1

        logger.info("Update complete")
        report.state = CycleState.COMPLETE
        return report

    def run_loop(self) -> UpdateRunSummary:
        """Repeat cycles until single-shot completion, a stop signal, or too many failures."""

        summary = UpdateRunSummary()
        consecutive_failures = 0
        with self._signal_handlers():
            while not self._stop_requested:
                report = self.run_cycle()
                summary.cycles += 1

                if report.state is CycleState.COMPLETE:
                    summary.completed += 1
                    consecutive_failures = 0
                    if self.poll_interval_seconds <= 0:
                        return summary
                    self._sleep_with_stop(self.poll_interval_seconds)
                    continue

                summary.failed += 1
                consecutive_failures += 1
                if self.max_failed_cycles and consecutive_failures >= self.max_failed_cycles:
                    raise UpdateAbortedError(consecutive_failures)
                logger.info("Retrying update in %s seconds", self.retry_delay_seconds)
                self._sleep_with_stop(self.retry_delay_seconds)

        summary.stopped_by_signal = True
        return summary

    def _sleep_with_stop(self, seconds: float) -> None:
        remaining = seconds
        while not self._stop_requested and remaining > 0:
            step = min(SLEEP_SLICE_SECONDS, remaining)
            self._sleep(step)
            remaining -= step

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.info("Received %s, stopping after the current step", name)
            self._stop_requested = True

        installed = False
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            pass
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)
