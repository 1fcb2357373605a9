from __future__ import annotations

from typing import Protocol
import re

import structlog
from croniter import croniter

from .errors import ValidationError
from .models import SnapshotScheduleConfig, SnapshotTTL

DEFAULT_SCHEDULE = "0 0 * * MON"
DEFAULT_TTL = SnapshotTTL(input_value="1", input_time_unit="month", converted="720h")

# Largest first so parse_ttl picks the coarsest unit that divides evenly.
_TTL_UNITS: tuple[tuple[str, int, str], ...] = (
    ("year", 8766, "h"),
    ("month", 720, "h"),
    ("week", 168, "h"),
    ("day", 24, "h"),
    ("hour", 1, "h"),
    ("minute", 1, "m"),
    ("second", 1, "s"),
)
_DURATION_PATTERN = re.compile(r"^(\d+)([hms])$")

logger = structlog.get_logger()


def format_ttl(quantity: int | str, unit: str) -> str:
    """Convert a user retention such as ``(1, "month")`` into a duration string like ``720h``."""
    try:
        amount = int(str(quantity).strip(), 10)
    except ValueError as error:
        raise ValidationError(f"Invalid snapshot retention: {quantity} {unit}") from error
    if amount <= 0:
        raise ValidationError(f"Invalid snapshot retention: {quantity} {unit}")

    name = _singular_unit(unit)
    for unit_name, multiplier, suffix in _TTL_UNITS:
        if unit_name == name:
            return f"{amount * multiplier}{suffix}"
    raise ValidationError(f"Invalid snapshot retention: {quantity} {unit}")


def parse_ttl(ttl: str) -> tuple[int, str]:
    match = _DURATION_PATTERN.match(ttl.strip())
    if match is None:
        raise ValidationError(f"Unsupported snapshot retention duration: {ttl}")
    amount = int(match.group(1))
    suffix = match.group(2)

    for unit_name, multiplier, unit_suffix in _TTL_UNITS:
        if unit_suffix == suffix and amount % multiplier == 0:
            quantity = amount // multiplier
            return quantity, unit_name if quantity == 1 else f"{unit_name}s"
    raise ValidationError(f"Unsupported snapshot retention duration: {ttl}")


def validate_schedule(schedule: str) -> str:
    expression = schedule.strip()
    # Five fields or a descriptor such as @daily; croniter would also accept a seconds field.
    if not expression or (not expression.startswith("@") and len(expression.split()) != 5):
        raise ValidationError(f"Invalid cron schedule expression: {schedule}")
    if not croniter.is_valid(expression):
        raise ValidationError(f"Invalid cron schedule expression: {schedule}")
    return expression


def _singular_unit(unit: str) -> str:
    name = unit.strip().lower()
    if name.endswith("s"):
        name = name[:-1]
    return name


class ScheduleStore(Protocol):
    def read_schedule(self, app_id: str) -> str | None: ...

    def write_schedule(self, app_id: str, schedule: str) -> None: ...

    def delete_schedule(self, app_id: str) -> None: ...

    def read_ttl(self, app_id: str) -> str | None: ...

    def write_ttl(self, app_id: str, ttl: str) -> None: ...


class SnapshotConfigService:
    def __init__(self, store: ScheduleStore) -> None:
        self.store = store

    def get_config(self, app_id: str) -> SnapshotScheduleConfig:
        ttl = DEFAULT_TTL
        stored_ttl = self.store.read_ttl(app_id)
        if stored_ttl:
            quantity, unit = parse_ttl(stored_ttl)
            ttl = SnapshotTTL(input_value=str(quantity), input_time_unit=unit, converted=stored_ttl)

        schedule = self.store.read_schedule(app_id)
        return SnapshotScheduleConfig(
            auto_enabled=bool(schedule),
            schedule=schedule or DEFAULT_SCHEDULE,
            ttl=ttl,
        )

    def save_config(
        self,
        app_id: str,
        *,
        input_value: int | str,
        input_time_unit: str,
        schedule: str,
        auto_enabled: bool,
    ) -> SnapshotScheduleConfig:
        retention = format_ttl(input_value, input_time_unit)
        expression = validate_schedule(schedule) if auto_enabled else None

        if self.store.read_ttl(app_id) != retention:
            self.store.write_ttl(app_id, retention)
            logger.info("snapshot_retention_updated", app_id=app_id, ttl=retention)

        if expression is None:
            self.store.delete_schedule(app_id)
            logger.info("snapshot_schedule_disabled", app_id=app_id)
        elif self.store.read_schedule(app_id) != expression:
            self.store.write_schedule(app_id, expression)
            logger.info("snapshot_schedule_updated", app_id=app_id, schedule=expression)

        return self.get_config(app_id)
