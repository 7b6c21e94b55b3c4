from __future__ import annotations

from pathlib import Path

import allure
import pytest
from fakes import FakeSession

from primenet_manager.config import DeviceSettings
from primenet_manager.sync.models import CycleState, FailureClass, StepResult
from primenet_manager.sync.worker import UpdateAbortedError, UpdateOrchestrator

pytestmark = [
    allure.epic("Update Loop"),
    allure.feature("Cycle Retry Policy"),
]


class _ScriptedStep:
    """Device step that returns scripted outcomes per device and records calls."""

    def __init__(self, name: str, calls: list[tuple[str, int]], failures: set[tuple[int, int]]):
        self.name = name
        self.calls = calls
        self.failures = failures
        self._counts: dict[int, int] = {}

    def __call__(self, device: DeviceSettings) -> StepResult:
        attempt = self._counts.get(device.device, 0) + 1
        self._counts[device.device] = attempt
        self.calls.append((self.name, device.device))
        if (device.device, attempt) in self.failures:
            return StepResult.failure(FailureClass.TRANSIENT_NETWORK, f"{self.name} failed")
        return StepResult.success()


def _devices(tmp_path: Path, count: int = 2) -> list[DeviceSettings]:
    return [DeviceSettings(device=index, directory=tmp_path / str(index)) for index in range(count)]


def _orchestrator(  # noqa: PLR0913
    tmp_path: Path,
    *,
    calls: list[tuple[str, int]],
    sleeps: list[float],
    top_off_failures: set[tuple[int, int]] | None = None,
    reconcile_failures: set[tuple[int, int]] | None = None,
    session: FakeSession | None = None,
    login_required: bool = True,
    poll_interval_seconds: float = 0.0,
    max_failed_cycles: int = 0,
) -> UpdateOrchestrator:
    return UpdateOrchestrator(
        devices=_devices(tmp_path),
        top_off=_ScriptedStep("top_off", calls, top_off_failures or set()),
        reconcile=_ScriptedStep("reconcile", calls, reconcile_failures or set()),
        session=session,
        login_required=login_required,
        poll_interval_seconds=poll_interval_seconds,
        retry_delay_seconds=3.0,
        max_failed_cycles=max_failed_cycles,
        sleep=sleeps.append,
    )


def test_single_shot_cycle_updates_every_device_in_order(tmp_path: Path) -> None:
    calls: list[tuple[str, int]] = []
    sleeps: list[float] = []
    session = FakeSession()

    summary = _orchestrator(tmp_path, calls=calls, sleeps=sleeps, session=session).run_loop()

    assert summary.cycles == 1
    assert summary.completed == 1
    assert calls == [("top_off", 0), ("reconcile", 0), ("top_off", 1), ("reconcile", 1)]
    assert session.calls == 1
    assert sleeps == []


def test_failure_on_second_device_restarts_from_login_and_first_device(tmp_path: Path) -> None:
    calls: list[tuple[str, int]] = []
    sleeps: list[float] = []
    session = FakeSession()

    summary = _orchestrator(
        tmp_path,
        calls=calls,
        sleeps=sleeps,
        session=session,
        reconcile_failures={(1, 1)},
    ).run_loop()

    assert summary.cycles == 2
    assert summary.failed == 1
    assert session.calls == 2
    assert calls == [
        ("top_off", 0),
        ("reconcile", 0),
        ("top_off", 1),
        ("reconcile", 1),
        ("top_off", 0),
        ("reconcile", 0),
        ("top_off", 1),
        ("reconcile", 1),
    ]
    assert sum(sleeps) == pytest.approx(3.0)


def test_reconcile_is_skipped_when_top_off_fails(tmp_path: Path) -> None:
    calls: list[tuple[str, int]] = []
    orchestrator = _orchestrator(tmp_path, calls=calls, sleeps=[], top_off_failures={(0, 1)})

    report = orchestrator.run_cycle()

    assert report.state is CycleState.FAILED
    assert report.failed_device == 0
    assert report.failure is not None
    assert report.failure.failure_class is FailureClass.TRANSIENT_NETWORK
    assert calls == [("top_off", 0)]


def test_failed_login_aborts_cycle_when_required(tmp_path: Path) -> None:
    calls: list[tuple[str, int]] = []
    orchestrator = _orchestrator(
        tmp_path,
        calls=calls,
        sleeps=[],
        session=FakeSession([False]),
    )

    report = orchestrator.run_cycle()

    assert report.state is CycleState.FAILED
    assert report.failed_device is None
    assert calls == []


def test_failed_login_is_tolerated_when_gpu72_can_supply_work(tmp_path: Path) -> None:
    calls: list[tuple[str, int]] = []
    orchestrator = _orchestrator(
        tmp_path,
        calls=calls,
        sleeps=[],
        session=FakeSession([False]),
        login_required=False,
    )

    assert orchestrator.run_cycle().state is CycleState.COMPLETE
    assert len(calls) == 4


def test_bounded_variant_aborts_after_consecutive_failures(tmp_path: Path) -> None:
    sleeps: list[float] = []
    orchestrator = _orchestrator(
        tmp_path,
        calls=[],
        sleeps=sleeps,
        session=FakeSession([False] * 10),
        max_failed_cycles=3,
    )

    with pytest.raises(UpdateAbortedError, match="Failed 3 update attempts"):
        orchestrator.run_loop()

    assert sum(sleeps) == pytest.approx(6.0)


def test_unbounded_variant_keeps_retrying(tmp_path: Path) -> None:
    session = FakeSession([False] * 25)
    orchestrator = _orchestrator(tmp_path, calls=[], sleeps=[], session=session)

    summary = orchestrator.run_loop()

    assert summary.failed == 25
    assert summary.completed == 1


def test_success_resets_failure_counter_and_polls(tmp_path: Path) -> None:
    sleeps: list[float] = []
    session = FakeSession([False, False, True, False, False])
    orchestrator = _orchestrator(
        tmp_path,
        calls=[],
        sleeps=sleeps,
        session=session,
        poll_interval_seconds=10.0,
        max_failed_cycles=3,
    )

    def _stop_after_second_success(seconds: float) -> None:
        sleeps.append(seconds)
        if session.calls >= 6:
            orchestrator._stop_requested = True

    orchestrator._sleep = _stop_after_second_success

    summary = orchestrator.run_loop()

    assert summary.completed == 2
    assert summary.failed == 4
    assert summary.stopped_by_signal
