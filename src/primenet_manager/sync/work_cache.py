"""Keeps a device's worktodo.txt filled to its configured depth."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from primenet_manager.config import DeviceSettings
from primenet_manager.remote.base import AssignmentProvider
from primenet_manager.sync.files import DeviceFiles, ShortWriteError, read_text, rewrite_text
from primenet_manager.sync.locks import LockManager, LockUnavailableError
from primenet_manager.sync.models import FailureClass, StepResult
from primenet_manager.sync.records import dedupe_lines, grammar_for, raise_target

logger = logging.getLogger(__name__)


class WorkCache:
    """Refills the queue file from the first provider that returns new work."""

    def __init__(self, *, locks: LockManager, providers: Sequence[AssignmentProvider]) -> None:
        self.locks = locks
        self.providers = tuple(providers)

    def top_off(self, device: DeviceSettings) -> StepResult:
        files = DeviceFiles.in_directory(device.directory, device.kind)
        try:
            with self.locks.hold(files.queue):
                return self._top_off_locked(device=device, files=files)
        except LockUnavailableError as exc:
            logger.warning("Device %d: %s", device.device, exc)
            return StepResult.failure(FailureClass.TRANSIENT_LOCK, str(exc))
        except OSError as exc:
            logger.error("Device %d: cannot lock %s: %s", device.device, files.queue, exc)
            return StepResult.failure(FailureClass.LOCAL_STATE_CORRUPTION, str(exc))

    def _top_off_locked(self, *, device: DeviceSettings, files: DeviceFiles) -> StepResult:
        grammar = grammar_for(device.kind)
        try:
            current = grammar.find_assignments(read_text(files.queue))
        except OSError as exc:
            logger.error("Error reading %s: %s", files.queue, exc)
            return StepResult.failure(FailureClass.LOCAL_STATE_CORRUPTION, str(exc))

        missing = device.assignments - len(current)
        if missing <= 0:
            logger.debug(
                "Device %d: queue holds %d of %d assignments",
                device.device,
                len(current),
                device.assignments,
            )
            return StepResult.success()

        logger.info("Device %d: requesting %d assignments", device.device, missing)
        new_records, failure = self._fetch(missing, device, current)
        if not new_records:
            logger.warning("Device %d: no new work fetched", device.device)
            return failure
        if len(new_records) > missing:
            logger.warning(
                "Device %d: provider returned %d assignments for %d slots, ignoring the rest",
                device.device,
                len(new_records),
                missing,
            )
            new_records = new_records[:missing]
        if grammar.adjusts_target:
            new_records = raise_target(new_records, device.target_exponent)

        content = "\n".join([*current, *new_records]) + "\n"
        try:
            rewrite_text(files.queue, content)
        except ShortWriteError as exc:
            logger.error("%s; intended content:\n%s", exc, content)
            return StepResult.failure(FailureClass.LOCAL_STATE_CORRUPTION, str(exc))
        except OSError as exc:
            logger.error("Error writing %s: %s", files.queue, exc)
            return StepResult.failure(FailureClass.LOCAL_STATE_CORRUPTION, str(exc))

        logger.info(
            "Device %d: added %d assignments, queue depth %d",
            device.device,
            len(new_records),
            len(current) + len(new_records),
        )
        return StepResult.success()

    def _fetch(
        self,
        count: int,
        device: DeviceSettings,
        current: list[str],
    ) -> tuple[list[str], StepResult]:
        """Return records not yet queued, and the failure to report when there are none.

        A transport failure from any provider outranks a protocol error, which
        outranks an empty answer.
        """

        failure = StepResult.failure(FailureClass.NO_WORK, "no assignments returned by providers")
        for provider in self.providers:
            reply = provider.fetch_assignments(count, device)
            if not reply.ok:
                logger.info("Assignment request to %s failed: %s", provider.name, reply.error)
                if reply.transient:
                    failure = StepResult.failure(
                        FailureClass.TRANSIENT_NETWORK,
                        f"{provider.name}: {reply.error}",
                    )
                elif failure.failure_class is FailureClass.NO_WORK:
                    failure = StepResult.failure(
                        FailureClass.PERSISTENT_PROTOCOL,
                        f"{provider.name}: {reply.error}",
                    )
                continue
            records = dedupe_lines(reply.records, existing=current)
            if records:
                logger.info("Got %d new assignment lines from %s", len(records), provider.name)
                return records, StepResult.success()
            logger.info(
                "No new assignments from %s (%d lines, all already queued)",
                provider.name,
                len(reply.records),
            )
        return [], failure
