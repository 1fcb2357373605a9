from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Protocol
from urllib.parse import urlencode

import structlog

from .downloads import DownloadProtocol
from .errors import PreconditionFailedError, ValidationError
from .labels import RESTORE_NAME_LABEL, BackupAnnotations, get_valid_name
from .models import App, PastVersion, Phase, RestoreDetail, RestoreVolume, SnapshotError
from .progress import volume_progress
from .resources import ResourceClient

_RESTORES_PATH = "restores"

logger = structlog.get_logger()


class AppStore(Protocol):
    def get_app(self, app_id: str) -> App: ...

    def list_past_versions(self, app_id: str, cluster_id: str) -> list[PastVersion]: ...

    def update_restore_in_progress_marker(self, app_id: str, restore_name: str) -> None: ...

    def reset_restore(self, app_id: str) -> None: ...

    def mark_version_deployed(self, app_id: str, sequence: int, cluster_id: str) -> None: ...


def restore_source_backup_name(restore_name: str) -> str:
    """Drop the trailing ``-<timestamp>`` segment a restore name is generated with."""
    head, separator, _ = restore_name.rpartition("-")
    return head if separator else restore_name


class RestoreOrchestrator:
    def __init__(self, resources: ResourceClient, downloads: DownloadProtocol, app_store: AppStore) -> None:
        self.resources = resources
        self.downloads = downloads
        self.app_store = app_store

    def restore_snapshot(self, app_id: str, backup_name: str) -> RestoreDetail:
        backup = self.resources.request("GET", f"backups/{backup_name}")
        annotations = BackupAnnotations.from_resource(backup)

        if not annotations.app_id:
            raise PreconditionFailedError(f"Backup {backup_name} is missing the application id annotation")
        cluster_id, sequence = _restored_version(backup_name, annotations)
        if annotations.app_id != app_id:
            raise PreconditionFailedError(f"Backup {backup_name} does not belong to application {app_id}")

        app = self.app_store.get_app(app_id)
        if not self._was_installed(app, cluster_id, sequence):
            raise PreconditionFailedError(
                f"Cannot restore backup {backup_name}: sequence {sequence} was never installed in this cluster"
            )

        if app.restore_in_progress_name:
            raise PreconditionFailedError(
                f"Restore {app.restore_in_progress_name} is already in progress for {app.slug}"
            )

        millis = int(datetime.now(tz=UTC).timestamp() * 1000)
        restore_name = f"{backup_name}-{millis}"
        self.app_store.update_restore_in_progress_marker(app_id, restore_name)
        logger.info("restore_committed", app=app.slug, backup=backup_name, restore=restore_name)
        return RestoreDetail(name=restore_name, phase=Phase.NEW)

    def restore_detail(self, app_id: str) -> RestoreDetail | None:
        app = self.app_store.get_app(app_id)
        restore_name = app.restore_in_progress_name
        if not restore_name:
            return None

        restore = self.read_restore(restore_name)
        if restore is None:
            return RestoreDetail(name=restore_name, phase=Phase.NEW)

        phase = Phase.parse((restore.get("status") or {}).get("phase"))
        errors: list[SnapshotError] = []
        warnings: list[SnapshotError] = []
        if phase.is_terminal:
            results = self.downloads.get_restore_results(restore_name)
            errors = _result_entries(results.get("errors"))
            warnings = _result_entries(results.get("warnings"))

        return RestoreDetail(
            name=restore_name,
            phase=phase,
            volumes=self.list_restore_volumes(restore_name),
            errors=errors,
            warnings=warnings,
        )

    def read_restore(self, name: str) -> dict[str, Any] | None:
        path = f"{_RESTORES_PATH}/{name}"
        response = self.resources.unhandled_request("GET", path)
        if response.status == 404:
            return None
        return self.resources.handle_response("GET", path, response)

    def list_restore_volumes(self, restore_name: str) -> list[RestoreVolume]:
        query = urlencode({"labelSelector": f"{RESTORE_NAME_LABEL}={get_valid_name(restore_name)}"})
        body = self.resources.request("GET", f"podvolumerestores?{query}") or {}
        return [_restore_volume(item) for item in body.get("items") or []]

    def start_restore(self, app: App) -> None:
        restore_name = app.restore_in_progress_name
        if not restore_name:
            return

        backup_name = restore_source_backup_name(restore_name)
        self.resources.request(
            "POST",
            _RESTORES_PATH,
            {
                "apiVersion": "velero.io/v1",
                "kind": "Restore",
                "metadata": {"name": restore_name, "namespace": self.resources.namespace},
                "spec": {"backupName": backup_name},
            },
        )
        logger.info("restore_created", app=app.slug, backup=backup_name, restore=restore_name)

    def check_restore_complete(self, app: App) -> Phase | None:
        """Advance the application once its in-flight restore reaches a terminal phase.

        Creates the Restore resource when the controller has not seen it yet. Returns
        the observed phase, or ``None`` when no restore is in progress.
        """
        restore_name = app.restore_in_progress_name
        if not restore_name:
            return None

        restore = self.read_restore(restore_name)
        if restore is None:
            self.start_restore(app)
            return Phase.NEW

        phase = Phase.parse((restore.get("status") or {}).get("phase"))
        if phase is Phase.COMPLETED:
            backup_name = (restore.get("spec") or {}).get("backupName") or restore_source_backup_name(restore_name)
            backup = self.resources.request("GET", f"backups/{backup_name}")
            if not (backup.get("metadata") or {}).get("annotations"):
                raise PreconditionFailedError(f"Backup {backup_name} is missing required annotations")
            cluster_id, sequence = _restored_version(backup_name, BackupAnnotations.from_resource(backup))

            self.app_store.mark_version_deployed(app.id, sequence, cluster_id)
            self.app_store.reset_restore(app.id)
            logger.info("restore_finished", app=app.slug, restore=restore_name, sequence=sequence)
        elif phase in {Phase.FAILED, Phase.PARTIALLY_FAILED}:
            self.app_store.reset_restore(app.id)
            logger.info("restore_failed", app=app.slug, restore=restore_name, phase=phase.value)
        return phase

    def _was_installed(self, app: App, cluster_id: str, sequence: int) -> bool:
        if app.current_sequence == sequence:
            return True
        return any(version.sequence == sequence for version in self.app_store.list_past_versions(app.id, cluster_id))


def _restored_version(backup_name: str, annotations: BackupAnnotations) -> tuple[str, int]:
    if not annotations.cluster_id:
        raise PreconditionFailedError(f"Backup {backup_name} is missing the cluster id annotation")
    if annotations.app_version is None:
        raise PreconditionFailedError(f"Backup {backup_name} is missing the application sequence annotation")
    if annotations.sequence is None:
        raise ValidationError(f"Failed to parse sequence from backup {backup_name}: {annotations.app_version}")
    return annotations.cluster_id, annotations.sequence


def _result_entries(section: dict[str, Any] | None) -> list[SnapshotError]:
    if not section:
        return []

    entries: list[SnapshotError] = []
    for scope in ("velero", "cluster"):
        for message in section.get(scope) or []:
            entries.append(SnapshotError(title=message, message=message))
    for namespace, messages in (section.get("namespaces") or {}).items():
        for message in messages or []:
            entries.append(SnapshotError(title=message, message=message, namespace=namespace))
    return entries


def _restore_volume(item: dict[str, Any]) -> RestoreVolume:
    spec = item.get("spec") or {}
    pod = spec.get("pod") or {}
    status = item.get("status") or {}
    progress = volume_progress(status.get("progress"), status.get("startTimestamp")) if status else None

    return RestoreVolume(
        name=(item.get("metadata") or {}).get("name", ""),
        phase=status.get("phase") or Phase.NEW.value,
        pod_name=pod.get("name"),
        pod_namespace=pod.get("namespace"),
        pod_volume_name=spec.get("volume"),
        started=status.get("startTimestamp"),
        finished=status.get("completionTimestamp"),
        size_bytes_human=progress.size_bytes_human if progress else None,
        done_bytes_human=progress.done_bytes_human if progress else None,
        completion_percent=progress.completion_percent if progress else None,
        time_remaining_seconds=progress.time_remaining_seconds if progress else None,
    )
