from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping
import hashlib

from .models import SnapshotTrigger

APP_SLUG_KEY = "kots.io/app-slug"
APP_ID_KEY = "kots.io/app-id"
CLUSTER_ID_KEY = "kots.io/cluster-id"
APP_SEQUENCE_KEY = "kots.io/app-sequence"
SNAPSHOT_TRIGGER_KEY = "kots.io/snapshot-trigger"
SNAPSHOT_REQUESTED_KEY = "kots.io/snapshot-requested"
VOLUME_COUNT_KEY = "kots.io/snapshot-volume-count"
VOLUME_SUCCESS_COUNT_KEY = "kots.io/snapshot-volume-success-count"
VOLUME_BYTES_KEY = "kots.io/snapshot-volume-bytes"

BACKUP_NAME_LABEL = "velero.io/backup-name"
RESTORE_NAME_LABEL = "velero.io/restore-name"

DNS_LABEL_MAX_LENGTH = 63
_HASH_SUFFIX_LENGTH = 6


def get_valid_name(label: str) -> str:
    """Fit ``label`` into a DNS-1035 label length the way the backup controller does.

    Labels over 63 characters keep their first 57 characters followed by the first
    six hex characters of the SHA-256 of the full label. Shorter labels are returned
    unchanged, so the function is idempotent.
    """
    if len(label) <= DNS_LABEL_MAX_LENGTH:
        return label
    digest = hashlib.sha256(label.encode("utf-8")).hexdigest()
    return label[: DNS_LABEL_MAX_LENGTH - _HASH_SUFFIX_LENGTH] + digest[:_HASH_SUFFIX_LENGTH]


@dataclass(frozen=True)
class VolumeSummary:
    count: int
    success: int
    bytes: int

    def as_annotations(self) -> dict[str, str]:
        return {
            VOLUME_COUNT_KEY: str(self.count),
            VOLUME_SUCCESS_COUNT_KEY: str(self.success),
            VOLUME_BYTES_KEY: str(self.bytes),
        }


@dataclass(frozen=True)
class BackupAnnotations:
    app_slug: str | None
    app_id: str | None
    cluster_id: str | None
    app_version: str | None
    sequence: int | None
    trigger: SnapshotTrigger | None
    requested: str | None
    volume_summary: VolumeSummary | None

    @classmethod
    def from_resource(cls, resource: Mapping[str, Any]) -> BackupAnnotations:
        metadata = resource.get("metadata") or {}
        return cls.from_mapping(metadata.get("annotations") or {})

    @classmethod
    def from_mapping(cls, annotations: Mapping[str, str]) -> BackupAnnotations:
        app_version = annotations.get(APP_SEQUENCE_KEY) or None
        count = _maybe_parse_int(annotations.get(VOLUME_COUNT_KEY))
        success = _maybe_parse_int(annotations.get(VOLUME_SUCCESS_COUNT_KEY))
        total_bytes = _maybe_parse_int(annotations.get(VOLUME_BYTES_KEY))

        summary = None
        if count is not None and success is not None and total_bytes is not None:
            summary = VolumeSummary(count=count, success=success, bytes=total_bytes)

        return cls(
            app_slug=annotations.get(APP_SLUG_KEY) or None,
            app_id=annotations.get(APP_ID_KEY) or None,
            cluster_id=annotations.get(CLUSTER_ID_KEY) or None,
            app_version=app_version,
            sequence=_maybe_parse_int(app_version),
            trigger=_parse_trigger(annotations.get(SNAPSHOT_TRIGGER_KEY)),
            requested=annotations.get(SNAPSHOT_REQUESTED_KEY) or None,
            volume_summary=summary,
        )


def _maybe_parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value.strip(), 10)
    except ValueError:
        return None


def _parse_trigger(value: str | None) -> SnapshotTrigger | None:
    if not value:
        return None
    try:
        return SnapshotTrigger(value)
    except ValueError:
        return None
