"""Decides which result lines may be sent, sends them, and prunes results.txt."""

from __future__ import annotations

import logging

from primenet_manager.config import DeviceSettings
from primenet_manager.sync.files import (
    DeviceFiles,
    ShortWriteError,
    append_text,
    read_snapshot,
    read_tail,
    read_text,
    rewrite_text,
)
from primenet_manager.sync.locks import LockManager, LockUnavailableError
from primenet_manager.sync.models import Classification, FailureClass, StepResult
from primenet_manager.sync.records import RecordGrammar, grammar_for
from primenet_manager.sync.submitter import BatchSubmitter

logger = logging.getLogger(__name__)

_RETAIN = "retain"
_SUBMIT = "submit"


def classify_results(
    lines: list[str],
    queue_text: str,
    grammar: RecordGrammar,
) -> Classification:
    """Split result lines into those to keep and those safe to submit.

    A line is kept while its exponent still appears anywhere in the queue
    text. The first line seen for an exponent decides for every later line
    with the same exponent, so repeated results for one assignment always
    travel together. Lines without a key are submitted.
    """

    decisions: dict[str | None, str] = {}
    classification = Classification()
    for line in lines:
        key = grammar.result_key(line)
        decision = decisions.get(key)
        if decision is None:
            decision = _RETAIN if key and key in queue_text else _SUBMIT
            decisions[key] = decision
        if decision == _RETAIN:
            classification.retain.append(line)
        else:
            classification.submit.append(line)
    return classification


class ResultReconciler:
    """Owns results.txt and the sent-results ledger of each device."""

    def __init__(self, *, locks: LockManager, submitter: BatchSubmitter) -> None:
        self.locks = locks
        self.submitter = submitter

    def reconcile(self, device: DeviceSettings) -> StepResult:
        files = DeviceFiles.in_directory(device.directory, device.kind)
        try:
            with self.locks.hold(files.results, files.ledger, files.queue):
                return self._reconcile_locked(device=device, files=files)
        except LockUnavailableError as exc:
            logger.warning("Device %d: %s", device.device, exc)
            return StepResult.failure(FailureClass.TRANSIENT_LOCK, str(exc))
        except OSError as exc:
            logger.error("Device %d: cannot lock work files: %s", device.device, exc)
            return StepResult.failure(FailureClass.LOCAL_STATE_CORRUPTION, str(exc))

    def _reconcile_locked(self, *, device: DeviceSettings, files: DeviceFiles) -> StepResult:
        grammar = grammar_for(device.kind)
        try:
            queue_text = read_text(files.queue)
            snapshot = read_snapshot(files.results)
        except OSError as exc:
            logger.error("Device %d: error reading work files: %s", device.device, exc)
            return StepResult.failure(FailureClass.LOCAL_STATE_CORRUPTION, str(exc))

        lines = grammar.find_results(snapshot.text)
        if not lines:
            return StepResult.success()

        classification = classify_results(lines, queue_text, grammar)
        logger.info(
            "Device %d: results %d, sending completed %d",
            device.device,
            len(lines),
            len(classification.submit),
        )
        if not classification.submit:
            return StepResult.success()

        blob = "\n".join(classification.submit).rstrip(" \n")
        try:
            outcome = self.submitter.submit(
                blob,
                on_accepted=lambda batch: append_text(files.ledger, batch + "\n"),
            )
        except OSError as exc:
            logger.error(
                "Device %d: ledger write to %s failed: %s",
                device.device,
                files.ledger,
                exc,
            )
            return StepResult.failure(FailureClass.LOCAL_STATE_CORRUPTION, str(exc))
        if not outcome.ok:
            logger.error(
                "Device %d: submission incomplete, %s left untouched",
                device.device,
                files.results,
            )
            return outcome

        kept = "".join(f"{line}\n" for line in classification.retain)
        try:
            # The worker program appends without taking the marker.
            appended = read_tail(files.results, snapshot.size)
            if appended:
                logger.info(
                    "Device %d: keeping %d bytes appended to %s during submission",
                    device.device,
                    len(appended),
                    files.results,
                )
            rewrite_text(files.results, kept + appended)
        except ShortWriteError as exc:
            logger.error("Device %d: %s", device.device, exc)
            return StepResult.failure(FailureClass.LOCAL_STATE_CORRUPTION, str(exc))
        except OSError as exc:
            logger.error("Device %d: error writing %s: %s", device.device, files.results, exc)
            return StepResult.failure(FailureClass.LOCAL_STATE_CORRUPTION, str(exc))
        return StepResult.success()


def preview_results(*, locks: LockManager, device: DeviceSettings) -> Classification:
    """Classify pending results under lock without sending anything."""

    files = DeviceFiles.in_directory(device.directory, device.kind)
    grammar = grammar_for(device.kind)
    with locks.hold(files.results, files.ledger, files.queue):
        queue_text = read_text(files.queue)
        lines = grammar.find_results(read_text(files.results))
    return classify_results(lines, queue_text, grammar)
