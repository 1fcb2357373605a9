from __future__ import annotations

from datetime import UTC, datetime

import pytest

from snapshot_console.progress import VolumeProgress, human_bytes, parse_timestamp, volume_progress


@pytest.mark.parametrize(
    ("count", "expected"),
    [
        (0, "0 B"),
        (999, "999 B"),
        (1000, "1 kB"),
        (1500, "1.5 kB"),
        (123456789, "123 MB"),
        (5_000_000_000, "5 GB"),
    ],
)
def test_human_bytes_uses_si_units(count: int, expected: str) -> None:
    assert human_bytes(count) == expected


def test_volume_progress_computes_percent_and_remaining_time() -> None:
    now = datetime(2026, 1, 1, 0, 1, 40, tzinfo=UTC)

    progress = volume_progress(
        {"totalBytes": 4000, "bytesDone": 1000},
        "2026-01-01T00:00:00Z",
        now=now,
    )

    # 1000 bytes in 100s leaves 3000 bytes at 10 B/s.
    assert progress == VolumeProgress(
        size_bytes_human="4 kB",
        done_bytes_human="1 kB",
        completion_percent=25,
        time_remaining_seconds=300,
    )


def test_volume_progress_with_empty_block_defaults_to_zero() -> None:
    progress = volume_progress({}, "2026-01-01T00:00:00Z")

    assert progress is not None
    assert progress.size_bytes_human == "0 B"
    assert progress.done_bytes_human == "0 B"
    assert progress.completion_percent is None
    assert progress.time_remaining_seconds is None


def test_volume_progress_without_progress_block_returns_none() -> None:
    assert volume_progress(None, "2026-01-01T00:00:00Z") is None


def test_volume_progress_without_start_time_skips_remaining_time() -> None:
    progress = volume_progress({"totalBytes": 10, "bytesDone": 5}, None)

    assert progress is not None
    assert progress.completion_percent == 50
    assert progress.time_remaining_seconds is None


def test_parse_timestamp_accepts_zulu_and_rejects_garbage() -> None:
    assert parse_timestamp("2026-01-01T00:00:00Z") == datetime(2026, 1, 1, tzinfo=UTC)
    assert parse_timestamp("yesterday") is None
    assert parse_timestamp(None) is None
