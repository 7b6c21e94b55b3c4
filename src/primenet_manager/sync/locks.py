"""Cross-process mutual exclusion through exclusive-create marker files."""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".lck"
DEFAULT_LOCK_RETRIES = 5
DEFAULT_LOCK_RETRY_DELAY_SECONDS = 5.0


class LockUnavailableError(Exception):
    """A marker file could not be created within the retry budget."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"Lock is held by another process: {lock_path(path)}")
        self.path = path


def lock_path(path: Path) -> Path:
    return path.with_name(path.name + LOCK_SUFFIX)


class LockManager:
    """Creates and removes ``<file>.lck`` markers next to shared files.

    Markers are visible to every process on the host, so separate manager
    instances (or a person editing worktodo.txt by hand) coordinate through
    the filesystem only. Paths passed in one call are taken in sorted order,
    which gives every caller the same global lock order.
    """

    def __init__(
        self,
        *,
        retries: int = DEFAULT_LOCK_RETRIES,
        retry_delay_seconds: float = DEFAULT_LOCK_RETRY_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.retries = max(retries, 1)
        self.retry_delay_seconds = retry_delay_seconds
        self._sleep = sleep

    def acquire(self, *paths: Path) -> bool:
        """Take every marker or none of them.

        Only an existing marker is retried; any other OSError (a missing
        directory, no permission) is raised at once after releasing the
        markers this call already took.
        """

        return self._acquire_all(paths) is None

    def release(self, *paths: Path) -> None:
        """Remove markers; failures are logged, never raised."""

        for path in _ordered(paths):
            marker = lock_path(path)
            for attempt in range(1, self.retries + 1):
                try:
                    marker.unlink()
                    break
                except FileNotFoundError:
                    logger.warning("Lock marker %s was already gone", marker)
                    break
                except OSError as exc:
                    logger.warning(
                        "Removing %s failed (attempt %d/%d): %s",
                        marker,
                        attempt,
                        self.retries,
                        exc,
                    )
                    if attempt < self.retries:
                        self._sleep(self.retry_delay_seconds)
            else:
                logger.error("Giving up on removing lock marker %s", marker)

    @contextmanager
    def hold(self, *paths: Path) -> Iterator[None]:
        """Hold all markers for the duration of the block."""

        blocked = self._acquire_all(paths)
        if blocked is not None:
            raise LockUnavailableError(blocked)
        try:
            yield
        finally:
            self.release(*paths)

    def _acquire_all(self, paths: tuple[Path, ...]) -> Path | None:
        acquired: list[Path] = []
        for path in _ordered(paths):
            try:
                created = self._create_marker(path)
            except OSError as exc:
                logger.error("Cannot create lock marker for %s: %s", path, exc)
                self.release(*acquired)
                raise
            if not created:
                logger.warning("Could not lock %s after %d attempts", path, self.retries)
                self.release(*acquired)
                return path
            acquired.append(path)
        return None

    def _create_marker(self, path: Path) -> bool:
        marker = lock_path(path)
        for attempt in range(1, self.retries + 1):
            try:
                fd = os.open(marker, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o660)
            except FileExistsError:
                logger.debug("%s exists (attempt %d/%d)", marker, attempt, self.retries)
            else:
                os.close(fd)
                return True
            if attempt < self.retries:
                self._sleep(self.retry_delay_seconds)
        return False


def _ordered(paths: tuple[Path, ...] | list[Path]) -> list[Path]:
    return sorted({Path(path) for path in paths}, key=str)
