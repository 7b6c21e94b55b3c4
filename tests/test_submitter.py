from __future__ import annotations

import allure
import pytest
from fakes import FakeSink

from primenet_manager.sync.models import FailureClass
from primenet_manager.sync.submitter import (
    SEND_LIMIT_BYTES,
    BatchSplitError,
    BatchSubmitter,
    split_batches,
)

pytestmark = [
    allure.epic("Result Submission"),
    allure.feature("Chunking"),
]


def _blob(lines: list[str]) -> bytes:
    return "\n".join(lines).encode()


def test_send_limit_leaves_a_kilobyte_under_two_megabytes() -> None:
    assert SEND_LIMIT_BYTES == 2 * 1024 * 1024 - 1024


def test_small_blob_is_one_chunk() -> None:
    blob = _blob(["M1 no factor", "M2 no factor"])
    assert split_batches(blob, limit=1024) == [blob]


@pytest.mark.parametrize("limit", [12, 13, 20, 25, 26, 40])
def test_chunks_respect_limit_and_rebuild_the_blob(limit: int) -> None:
    lines = ["M11 no factor", "M2 x", "M333 factor 7", "M4 y", "M55555 nothing"]
    blob = _blob([line[: limit] for line in lines])

    chunks = split_batches(blob, limit=limit)

    assert all(len(chunk) <= limit for chunk in chunks)
    assert b"\n".join(chunks) == blob
    assert all(not chunk.startswith(b"\n") and not chunk.endswith(b"\n") for chunk in chunks)


def test_chunk_boundaries_fall_between_records() -> None:
    lines = ["M100 aaaa", "M200 bbbb", "M300 cccc"]

    chunks = split_batches(_blob(lines), limit=20)

    assert chunks == [b"M100 aaaa\nM200 bbbb", b"M300 cccc"]


def test_record_exactly_at_limit_is_not_split() -> None:
    chunks = split_batches(b"abcde\nfg", limit=5)
    assert chunks == [b"abcde", b"fg"]


def test_record_larger_than_limit_fails_with_offset() -> None:
    with pytest.raises(BatchSplitError) as error:
        split_batches(b"short\n" + b"x" * 50 + b"\nend", limit=10)

    assert error.value.offset == 6
    assert error.value.limit == 10


def test_blob_without_newlines_fails() -> None:
    with pytest.raises(BatchSplitError):
        split_batches(b"y" * 100, limit=10)


def test_submitter_sends_chunks_in_order_and_reports_each() -> None:
    sink = FakeSink()
    accepted: list[str] = []

    result = BatchSubmitter(sink=sink, limit=20).submit(
        "M100 aaaa\nM200 bbbb\nM300 cccc",
        accepted.append,
    )

    assert result.ok
    assert sink.batches == ["M100 aaaa\nM200 bbbb", "M300 cccc"]
    assert accepted == sink.batches


def test_submitter_stops_at_first_unacknowledged_chunk() -> None:
    sink = FakeSink(accept=1)
    accepted: list[str] = []

    result = BatchSubmitter(sink=sink, limit=10).submit(
        "M100 aaaa\nM200 bbbb\nM300 cccc",
        accepted.append,
    )

    assert not result.ok
    assert result.failure_class is FailureClass.PERSISTENT_PROTOCOL
    assert sink.batches == ["M100 aaaa", "M200 bbbb"]
    assert accepted == ["M100 aaaa"]


def test_submitter_refuses_unsplittable_blob_without_sending() -> None:
    sink = FakeSink()

    result = BatchSubmitter(sink=sink, limit=4).submit("M12345 too long", lambda _: None)

    assert not result.ok
    assert result.failure_class is FailureClass.LOCAL_STATE_CORRUPTION
    assert sink.batches == []
