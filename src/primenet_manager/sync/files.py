"""Per-device file layout and the raw read / rewrite / append primitives."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from primenet_manager.sync.records import normalize_newlines

QUEUE_FILE_NAME = "worktodo.txt"
RESULTS_FILE_NAME = "results.txt"
# clLucas directories use the singular ledger name.
LEDGER_FILE_NAMES: dict[str, str] = {"tf": "results_sent.txt", "ll": "result_sent.txt"}
FILE_MODE = 0o664
ENCODING = "utf-8"
ENCODING_ERRORS = "surrogateescape"


class ShortWriteError(OSError):
    """Fewer bytes reached the file than were handed to the OS."""

    def __init__(self, path: Path, written: int, expected: int) -> None:
        super().__init__(f"Short write to {path}: {written} of {expected} bytes")
        self.path = path
        self.written = written
        self.expected = expected


@dataclass(frozen=True, slots=True)
class DeviceFiles:
    """Queue, results and ledger files of one device directory."""

    queue: Path
    results: Path
    ledger: Path

    @classmethod
    def in_directory(cls, directory: Path, kind: str = "tf") -> DeviceFiles:
        return cls(
            queue=directory / QUEUE_FILE_NAME,
            results=directory / RESULTS_FILE_NAME,
            ledger=directory / LEDGER_FILE_NAMES.get(kind, LEDGER_FILE_NAMES["tf"]),
        )


@dataclass(frozen=True, slots=True)
class FileSnapshot:
    """Normalized text of a file plus the number of raw bytes it was read from."""

    text: str
    size: int


def read_snapshot(path: Path) -> FileSnapshot:
    """Read the whole file, creating it when missing."""

    fd = os.open(path, os.O_RDONLY | os.O_CREAT, FILE_MODE)
    with os.fdopen(fd, "rb") as stream:
        raw = stream.read()
    text = normalize_newlines(raw.decode(ENCODING, ENCODING_ERRORS))
    return FileSnapshot(text=text, size=len(raw))


def read_text(path: Path) -> str:
    """Return the file's text with line endings normalized, creating it when missing."""

    return read_snapshot(path).text


def read_tail(path: Path, offset: int) -> str:
    """Return whatever was written to ``path`` beyond ``offset`` bytes."""

    with path.open("rb") as stream:
        stream.seek(offset)
        raw = stream.read()
    return normalize_newlines(raw.decode(ENCODING, ENCODING_ERRORS))


def rewrite_text(path: Path, text: str) -> int:
    """Truncate ``path`` and write ``text`` in place; raise ShortWriteError on a partial write."""

    data = text.encode(ENCODING, ENCODING_ERRORS)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT, FILE_MODE)
    try:
        os.ftruncate(fd, 0)
        written = os.write(fd, data) if data else 0
        if written != len(data):
            raise ShortWriteError(path, written, len(data))
        os.fsync(fd)
    finally:
        os.close(fd)
    return written


def append_text(path: Path, text: str) -> int:
    data = text.encode(ENCODING, ENCODING_ERRORS)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, FILE_MODE)
    try:
        written = os.write(fd, data) if data else 0
        if written != len(data):
            raise ShortWriteError(path, written, len(data))
        os.fsync(fd)
    finally:
        os.close(fd)
    return written
