from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
import math

_SIZE_UNITS = ("B", "kB", "MB", "GB", "TB", "PB", "EB")


@dataclass(frozen=True)
class VolumeProgress:
    size_bytes_human: str
    done_bytes_human: str
    completion_percent: int | None
    time_remaining_seconds: int | None


def human_bytes(count: int | float) -> str:
    if count < 1000:
        return f"{int(count)} B"
    exponent = min(int(math.log10(count) // 3), len(_SIZE_UNITS) - 1)
    value = count / 1000**exponent
    return f"{float(f'{value:.3g}'):g} {_SIZE_UNITS[exponent]}"


def volume_progress(
    progress: dict[str, Any] | None,
    started: str | None,
    *,
    now: datetime | None = None,
) -> VolumeProgress | None:
    """Summarize a pod volume backup/restore ``status.progress`` block.

    The progress block is empty when the volume had no data; totals default to zero.
    Time remaining extrapolates the average rate since ``started``.
    """
    if progress is None:
        return None

    total_bytes = progress.get("totalBytes") or 0
    bytes_done = progress.get("bytesDone") or 0

    completion_percent = None
    if total_bytes > 0:
        completion_percent = _round_half_up(bytes_done / total_bytes * 100)

    time_remaining_seconds = None
    started_at = parse_timestamp(started)
    if started_at is not None and total_bytes > 0 and bytes_done > 0:
        elapsed_seconds = ((now or datetime.now(tz=UTC)) - started_at).total_seconds()
        if elapsed_seconds > 0:
            average_rate = bytes_done / elapsed_seconds
            time_remaining_seconds = _round_half_up((total_bytes - bytes_done) / average_rate)

    return VolumeProgress(
        size_bytes_human=human_bytes(total_bytes),
        done_bytes_human=human_bytes(bytes_done),
        completion_percent=completion_percent,
        time_remaining_seconds=time_remaining_seconds,
    )


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))
