"""Line-aligned, size-bounded submission of result batches."""

from __future__ import annotations

import logging
from collections.abc import Callable

from primenet_manager.remote.base import ResultSink
from primenet_manager.sync.files import ENCODING, ENCODING_ERRORS
from primenet_manager.sync.models import FailureClass, StepResult

logger = logging.getLogger(__name__)

# mersenne.org/manual_result accepts at most 2 MiB; keep 1 KiB for the form fields.
SEND_LIMIT_BYTES = 2 * 1024 * 1024 - 1024


class BatchSplitError(ValueError):
    """No line break within the byte limit, so the blob cannot be split on a record boundary."""

    def __init__(self, offset: int, remaining: int, limit: int) -> None:
        super().__init__(
            f"No line break within {limit} bytes at offset {offset} "
            f"({remaining} bytes remaining)",
        )
        self.offset = offset
        self.remaining = remaining
        self.limit = limit


def split_batches(blob: bytes, limit: int = SEND_LIMIT_BYTES) -> list[bytes]:
    """Split ``blob`` on newlines into chunks of at most ``limit`` bytes.

    The separating newline belongs to no chunk, so ``b"\\n".join(chunks) == blob``.
    """

    if limit <= 0:
        raise ValueError("limit must be positive")
    chunks: list[bytes] = []
    offset = 0
    while offset < len(blob):
        remaining = len(blob) - offset
        if remaining <= limit:
            chunks.append(blob[offset:])
            break
        cut = blob.rfind(b"\n", offset, offset + limit + 1)
        if cut <= offset:
            raise BatchSplitError(offset, remaining, limit)
        chunks.append(blob[offset:cut])
        offset = cut + 1
    return chunks


class BatchSubmitter:
    """Sends chunks strictly in order, stopping at the first unacknowledged one."""

    def __init__(self, *, sink: ResultSink, limit: int = SEND_LIMIT_BYTES) -> None:
        self.sink = sink
        self.limit = limit

    def submit(self, blob: str, on_accepted: Callable[[str], None]) -> StepResult:
        """Submit ``blob``; ``on_accepted`` runs for every chunk before the next is sent.

        Chunks accepted before a failure stay accepted; nothing is rolled back.
        """

        try:
            chunks = split_batches(blob.encode(ENCODING, ENCODING_ERRORS), self.limit)
        except BatchSplitError as exc:
            logger.error("Refusing to submit results: %s", exc)
            return StepResult.failure(FailureClass.LOCAL_STATE_CORRUPTION, str(exc))

        offset = 0
        for index, chunk in enumerate(chunks, start=1):
            batch = chunk.decode(ENCODING, ENCODING_ERRORS)
            reply = self.sink.submit(batch)
            if not reply.ok:
                logger.error(
                    "Result batch %d/%d rejected (offset %d, %d bytes): %s",
                    index,
                    len(chunks),
                    offset,
                    len(chunk),
                    reply.error,
                )
                failure_class = (
                    FailureClass.TRANSIENT_NETWORK
                    if reply.transient
                    else FailureClass.PERSISTENT_PROTOCOL
                )
                return StepResult.failure(
                    failure_class,
                    f"batch {index}/{len(chunks)} at offset {offset} was not acknowledged: "
                    f"{reply.error}",
                )
            logger.info("Result batch %d/%d accepted (%d bytes)", index, len(chunks), len(chunk))
            on_accepted(batch)
            offset += len(chunk) + 1
        return StepResult.success()
