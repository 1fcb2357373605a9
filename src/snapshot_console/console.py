from __future__ import annotations

from dataclasses import dataclass

import structlog

from .backups import BackupSummarizer
from .config import AppConfig, configure_logging, ensure_directories
from .downloads import DownloadPolicy, DownloadProtocol
from .k8s import KubernetesClients, load_kubernetes_clients_from_config
from .metadata import AppMetadataStore
from .resources import ResourceClient
from .restore import RestoreOrchestrator
from .schedule import SnapshotConfigService
from .storage import StorageLocationManager

logger = structlog.get_logger()


@dataclass(frozen=True)
class SnapshotConsole:
    config: AppConfig
    resources: ResourceClient
    downloads: DownloadProtocol
    storage: StorageLocationManager
    backups: BackupSummarizer
    restores: RestoreOrchestrator
    schedules: SnapshotConfigService
    metadata: AppMetadataStore


def build_snapshot_console(
    config: AppConfig | None = None,
    *,
    clients: KubernetesClients | None = None,
) -> SnapshotConsole:
    """Wire every component from one ``AppConfig``.

    Clients are loaded from the config unless supplied. The metadata store is
    initialized before it is handed out.
    """
    config = config or AppConfig()
    configure_logging(config.log_level, json_output=config.log_json)
    ensure_directories(config)

    clients = clients or load_kubernetes_clients_from_config(config)
    resources = ResourceClient(clients.api_client, config.velero_namespace)
    downloads = DownloadProtocol(resources, policy=DownloadPolicy.from_config(config))

    metadata = AppMetadataStore(config.metadata_db_path)
    metadata.initialize()

    logger.info(
        "snapshot_console_ready",
        namespace=config.velero_namespace,
        download_poll_attempts=config.download_poll_attempts,
    )
    return SnapshotConsole(
        config=config,
        resources=resources,
        downloads=downloads,
        storage=StorageLocationManager(resources, clients.core_api),
        backups=BackupSummarizer(resources, downloads),
        restores=RestoreOrchestrator(resources, downloads, metadata),
        schedules=SnapshotConfigService(metadata),
        metadata=metadata,
    )
