from __future__ import annotations

from copy import deepcopy
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlencode

import structlog

from .downloads import DownloadProtocol
from .errors import ConflictError
from .labels import (
    APP_ID_KEY,
    APP_SEQUENCE_KEY,
    APP_SLUG_KEY,
    BACKUP_NAME_LABEL,
    CLUSTER_ID_KEY,
    SNAPSHOT_REQUESTED_KEY,
    SNAPSHOT_TRIGGER_KEY,
    BackupAnnotations,
    VolumeSummary,
    get_valid_name,
)
from .models import App, ParsedBackupLogs, Phase, Snapshot, SnapshotDetail, SnapshotError, SnapshotTrigger, SnapshotVolume
from .progress import human_bytes, volume_progress
from .resources import ResourceClient

_BACKUPS_PATH = "backups"
_VOLUME_COMPLETED_PHASE = "Completed"

logger = structlog.get_logger()


class BackupSummarizer:
    """Summarizes Velero backups into snapshots and caches volume totals once a backup is finished."""

    def __init__(self, resources: ResourceClient, downloads: DownloadProtocol) -> None:
        self.resources = resources
        self.downloads = downloads

    def list_snapshots(self, slug: str) -> list[Snapshot]:
        query = urlencode({"labelSelector": f"{APP_SLUG_KEY}={slug}"})
        body = self.resources.request("GET", f"{_BACKUPS_PATH}?{query}") or {}
        return [self.summarize(backup) for backup in body.get("items") or []]

    def summarize(self, backup: dict[str, Any]) -> Snapshot:
        return self._summarize(backup)

    def volume_summary(self, backup_name: str) -> VolumeSummary:
        return _fold_volume_summary(self._list_pod_volume_backups(backup_name))

    def read_backup(self, name: str) -> dict[str, Any]:
        return self.resources.request("GET", f"{_BACKUPS_PATH}/{name}")

    def snapshot_detail(self, name: str) -> SnapshotDetail:
        backup = self.read_backup(name)
        volume_items = self._list_pod_volume_backups(name)
        summary = self._summarize(backup, volume_items=volume_items)

        logs: ParsedBackupLogs | None = None
        if summary.status.is_terminal:
            try:
                logs = self.downloads.get_backup_logs(name)
            except Exception as error:  # pylint: disable=broad-except
                logger.error("backup_logs_unavailable", backup=name, error=str(error) or error.__class__.__name__)

        errors = list(logs.errors) if logs else []
        status = backup.get("status") or {}
        for message in status.get("validationErrors") or []:
            errors.append(SnapshotError(title="Validation Error", message=message))

        spec = backup.get("spec") or {}
        return SnapshotDetail(
            summary=summary,
            namespaces=tuple(spec.get("includedNamespaces") or ()),
            volumes=[_snapshot_volume(item) for item in volume_items],
            errors=errors,
            warnings=logs.warnings if logs else None,
            hooks=logs.hooks if logs else None,
        )

    def create_backup(
        self,
        app: App,
        *,
        sequence: int,
        cluster_id: str,
        trigger: SnapshotTrigger = SnapshotTrigger.MANUAL,
        spec: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        requested = datetime.now(tz=UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")
        backup_spec = deepcopy(spec or {})
        backup_spec["storageLocation"] = app.slug
        backup = {
            "apiVersion": "velero.io/v1",
            "kind": "Backup",
            "metadata": {
                "generateName": f"{app.slug}-",
                "namespace": self.resources.namespace,
                "labels": {APP_SLUG_KEY: app.slug},
                "annotations": {
                    SNAPSHOT_TRIGGER_KEY: trigger.value,
                    APP_SLUG_KEY: app.slug,
                    APP_ID_KEY: app.id,
                    CLUSTER_ID_KEY: cluster_id,
                    APP_SEQUENCE_KEY: str(sequence),
                    SNAPSHOT_REQUESTED_KEY: requested,
                },
            },
            "spec": backup_spec,
        }
        created = self.resources.request("POST", _BACKUPS_PATH, backup)
        logger.info("backup_created", app=app.slug, sequence=sequence, trigger=trigger.value)
        return created

    def has_unfinished_backup(self, app_id: str) -> bool:
        if not app_id:
            return False
        body = self.resources.request("GET", _BACKUPS_PATH) or {}
        for backup in body.get("items") or []:
            if BackupAnnotations.from_resource(backup).app_id != app_id:
                continue
            if not Phase.parse((backup.get("status") or {}).get("phase")).is_terminal:
                return True
        return False

    def delete_snapshot(self, backup_name: str) -> None:
        millis = int(datetime.now(tz=UTC).timestamp() * 1000)
        self.resources.request(
            "POST",
            "deletebackuprequests",
            {
                "apiVersion": "velero.io/v1",
                "kind": "DeleteBackupRequest",
                "metadata": {
                    "name": get_valid_name(f"{backup_name}-{millis}"),
                    "namespace": self.resources.namespace,
                },
                "spec": {"backupName": backup_name},
            },
        )
        logger.info("backup_delete_requested", backup=backup_name)

    def _summarize(
        self,
        backup: dict[str, Any],
        *,
        volume_items: list[dict[str, Any]] | None = None,
    ) -> Snapshot:
        metadata = backup.get("metadata") or {}
        name = metadata.get("name", "")
        status = backup.get("status") or {}
        phase = Phase.parse(status.get("phase"))
        annotations = BackupAnnotations.from_resource(backup)

        summary = annotations.volume_summary
        if summary is None:
            if volume_items is None:
                volume_items = self._list_pod_volume_backups(name)
            summary = _fold_volume_summary(volume_items)
            if phase.is_terminal:
                self._cache_volume_summary(backup, summary)

        return Snapshot(
            name=name,
            status=phase,
            trigger=annotations.trigger,
            app_slug=annotations.app_slug,
            app_version=annotations.app_version,
            started=status.get("startTimestamp"),
            finished=status.get("completionTimestamp"),
            expires=status.get("expiration"),
            volume_count=summary.count,
            volume_success_count=summary.success,
            volume_bytes=summary.bytes,
            volume_size_human=human_bytes(summary.bytes),
        )

    def _cache_volume_summary(self, backup: dict[str, Any], summary: VolumeSummary) -> None:
        updated = deepcopy(backup)
        metadata = updated.setdefault("metadata", {})
        annotations = metadata.get("annotations") or {}
        annotations.update(summary.as_annotations())
        metadata["annotations"] = annotations

        name = metadata.get("name", "")
        try:
            self.resources.request("PUT", f"{_BACKUPS_PATH}/{name}", updated)
        except ConflictError:
            # The controller updated the backup first; the next read recomputes and retries the cache.
            logger.warning("backup_summary_cache_conflict", backup=name)
            return
        logger.info(
            "backup_summary_cached",
            backup=name,
            volume_count=summary.count,
            volume_success_count=summary.success,
            volume_bytes=summary.bytes,
        )

    def _list_pod_volume_backups(self, backup_name: str) -> list[dict[str, Any]]:
        query = urlencode({"labelSelector": f"{BACKUP_NAME_LABEL}={get_valid_name(backup_name)}"})
        body = self.resources.request("GET", f"podvolumebackups?{query}") or {}
        return list(body.get("items") or [])


def _fold_volume_summary(volume_items: list[dict[str, Any]]) -> VolumeSummary:
    count = 0
    success = 0
    total_bytes = 0
    for item in volume_items:
        status = item.get("status") or {}
        count += 1
        if status.get("phase") == _VOLUME_COMPLETED_PHASE:
            success += 1
        bytes_done = (status.get("progress") or {}).get("bytesDone")
        if isinstance(bytes_done, (int, float)) and not isinstance(bytes_done, bool):
            total_bytes += int(bytes_done)
    return VolumeSummary(count=count, success=success, bytes=total_bytes)


def _snapshot_volume(item: dict[str, Any]) -> SnapshotVolume:
    name = (item.get("metadata") or {}).get("name", "")
    status = item.get("status")
    if not status:
        return SnapshotVolume(name=name)

    progress = volume_progress(status.get("progress"), status.get("startTimestamp"))
    return SnapshotVolume(
        name=name,
        phase=status.get("phase"),
        started=status.get("startTimestamp"),
        finished=status.get("completionTimestamp"),
        size_bytes_human=progress.size_bytes_human if progress else None,
        done_bytes_human=progress.done_bytes_human if progress else None,
        completion_percent=progress.completion_percent if progress else None,
        time_remaining_seconds=progress.time_remaining_seconds if progress else None,
    )
