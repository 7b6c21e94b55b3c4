"""Controllers for manager CLI commands."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path
from typing import TypeVar

from primenet_manager.config import DeviceSettings, Settings
from primenet_manager.http.fetcher import HttpFetcher
from primenet_manager.remote.base import AssignmentProvider
from primenet_manager.remote.gpu72 import Gpu72Client
from primenet_manager.remote.primenet import PrimeNetClient
from primenet_manager.sync.files import DeviceFiles, read_text
from primenet_manager.sync.locks import LockManager, LockUnavailableError
from primenet_manager.sync.reconciler import ResultReconciler, preview_results
from primenet_manager.sync.records import grammar_for
from primenet_manager.sync.submitter import BatchSubmitter
from primenet_manager.sync.work_cache import WorkCache
from primenet_manager.sync.worker import UpdateOrchestrator

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

_T = TypeVar("_T")


@dataclass(slots=True)
class SettingsOverrides:
    """CLI values that override the settings file; None keeps the file value."""

    settings_path: Path | None = None
    username: str | None = None
    password: str | None = None
    gpu72_username: str | None = None
    gpu72_password: str | None = None
    poll_hours: int | None = None
    max_failed_cycles: int | None = None
    log_file: Path | None = None
    device: int | None = None
    directory: Path | None = None
    kind: str | None = None
    work_type: str | None = None
    work_option: str | None = None
    target_exponent: int | None = None
    assignments: int | None = None


@dataclass(slots=True)
class RunCommand:
    """CLI input for the polling loop."""

    overrides: SettingsOverrides
    log_level: str = "INFO"


@dataclass(slots=True)
class WriteSettingsCommand:
    """CLI input for persisting effective settings."""

    overrides: SettingsOverrides
    output_path: Path


@dataclass(slots=True)
class StatusCommand:
    """CLI input for the offline queue/results report."""

    overrides: SettingsOverrides


class ManagerCliController:
    """Builds the sync components from settings and drives them for the CLI."""

    def run(self, command: RunCommand) -> list[str]:
        settings = _load_settings(command.overrides)
        settings.validate()
        configure_logging(log_file=settings.log_file, level=command.log_level)

        with HttpFetcher(timeout_seconds=settings.primenet.request_timeout_seconds) as fetcher:
            orchestrator = build_orchestrator(settings=settings, fetcher=fetcher)
            summary = orchestrator.run_loop()

        lines = [
            f"Update cycles: {summary.cycles} "
            f"(completed={summary.completed} failed={summary.failed})",
        ]
        if summary.stopped_by_signal:
            lines.append("Stopped by signal.")
        return lines

    def write_settings(self, command: WriteSettingsCommand) -> list[str]:
        settings = _load_settings(command.overrides)
        settings.write_yaml(command.output_path)
        return [f"Settings written to {command.output_path}"]

    def status(self, command: StatusCommand) -> list[str]:
        settings = _load_settings(command.overrides)
        locks = LockManager(retries=1)
        lines: list[str] = []
        for device in settings.devices:
            files = DeviceFiles.in_directory(device.directory, device.kind)
            try:
                with locks.hold(files.queue):
                    depth = len(grammar_for(device.kind).find_assignments(read_text(files.queue)))
                pending = preview_results(locks=locks, device=device)
            except (LockUnavailableError, OSError) as exc:
                lines.append(f"device={device.device} dir={device.directory} busy: {exc}")
                continue
            lines.append(
                f"device={device.device} kind={device.kind} dir={device.directory} "
                f"queue={depth}/{device.assignments} "
                f"results_retained={len(pending.retain)} results_ready={len(pending.submit)}",
            )
        return lines


def build_orchestrator(
    *,
    settings: Settings,
    fetcher: HttpFetcher,
    locks: LockManager | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> UpdateOrchestrator:
    """Wire clients, cache, reconciler and loop for normalized, validated settings."""

    locks = locks or LockManager(sleep=sleep)
    primenet = PrimeNetClient(
        fetcher=fetcher,
        username=settings.primenet.username,
        password=settings.primenet.password,
        base_url=settings.primenet.base_url,
    )
    providers: list[AssignmentProvider] = []
    if settings.gpu72.enabled:
        providers.append(
            Gpu72Client(
                fetcher=fetcher,
                username=settings.gpu72.username,
                password=settings.gpu72.password,
                base_url=settings.gpu72.base_url,
            ),
        )
    if settings.primenet.enabled:
        providers.append(primenet)

    work_cache = WorkCache(locks=locks, providers=providers)
    reconciler = ResultReconciler(locks=locks, submitter=BatchSubmitter(sink=primenet))
    return UpdateOrchestrator(
        devices=settings.devices,
        top_off=work_cache.top_off,
        reconcile=reconciler.reconcile,
        session=primenet if settings.primenet.enabled else None,
        login_required=not settings.gpu72.enabled,
        poll_interval_seconds=settings.polling.poll_interval_seconds,
        retry_delay_seconds=settings.polling.retry_delay_seconds,
        max_failed_cycles=settings.polling.max_failed_cycles,
        sleep=sleep,
    )


def configure_logging(*, log_file: Path | None, level: str = "INFO") -> None:
    handler: logging.Handler = logging.StreamHandler()
    if log_file is not None:
        handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    formatter = logging.Formatter(LOG_FORMAT)
    formatter.converter = time.gmtime
    handler.setFormatter(formatter)
    logging.basicConfig(level=level.upper(), handlers=[handler], force=True)


def _load_settings(overrides: SettingsOverrides) -> Settings:
    settings = Settings.load(overrides.settings_path)
    settings = replace(
        settings,
        primenet=replace(
            settings.primenet,
            username=_pick(overrides.username, settings.primenet.username),
            password=_pick(overrides.password, settings.primenet.password),
        ),
        gpu72=replace(
            settings.gpu72,
            username=_pick(overrides.gpu72_username, settings.gpu72.username),
            password=_pick(overrides.gpu72_password, settings.gpu72.password),
        ),
        polling=replace(
            settings.polling,
            poll_hours=_pick(overrides.poll_hours, settings.polling.poll_hours),
            max_failed_cycles=_pick(
                overrides.max_failed_cycles,
                settings.polling.max_failed_cycles,
            ),
        ),
        log_file=_pick(overrides.log_file, settings.log_file),
        devices=_override_first_device(settings.devices, overrides),
    )
    return settings.normalized()


def _override_first_device(
    devices: tuple[DeviceSettings, ...],
    overrides: SettingsOverrides,
) -> tuple[DeviceSettings, ...]:
    if not devices:
        return devices
    first = devices[0]
    first = replace(
        first,
        device=_pick(overrides.device, first.device),
        directory=_pick(overrides.directory, first.directory),
        kind=_pick(overrides.kind, first.kind),
        work_type=_pick(overrides.work_type, first.work_type),
        work_option=_pick(overrides.work_option, first.work_option),
        target_exponent=_pick(overrides.target_exponent, first.target_exponent),
        assignments=_pick(overrides.assignments, first.assignments),
    )
    return (first, *devices[1:])


def _pick(value: _T | None, default: _T) -> _T:
    return default if value is None else value
