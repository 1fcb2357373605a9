from __future__ import annotations

from copy import deepcopy
from typing import Any, assert_never
import posixpath

import structlog
from kubernetes import client

from .credentials import (
    AWSCredentialReconciler,
    AWSCredentials,
    AzureCredentialReconciler,
    AzureCredentials,
    GoogleCredentialReconciler,
    GoogleCredentials,
)
from .errors import PermissionDeniedError, SnapshotConsoleError, ValidationError
from .models import (
    AzureStore,
    GoogleStore,
    ProviderConfig,
    S3AWSStore,
    S3CompatibleStore,
    SnapshotProvider,
    SnapshotStoreConfig,
)
from .resources import ResourceClient

GLOBAL_LOCATION_NAME = "kotsadm-velero-backend"
_LOCATIONS_PATH = "backupstoragelocations"

logger = structlog.get_logger()


class StorageLocationManager:
    """Keeps the global storage location and one location per application slug in sync."""

    def __init__(self, resources: ResourceClient, core_api: client.CoreV1Api) -> None:
        self.resources = resources
        self.aws_credentials = AWSCredentialReconciler(core_api, resources.namespace)
        self.azure_credentials = AzureCredentialReconciler(core_api, resources.namespace)
        self.google_credentials = GoogleCredentialReconciler(core_api, resources.namespace)

    def read_snapshot_store(self) -> SnapshotStoreConfig | None:
        body = self.resources.request("GET", _LOCATIONS_PATH) or {}
        location = next(
            (item for item in body.get("items") or [] if _name_of(item) == GLOBAL_LOCATION_NAME),
            None,
        )
        if location is None:
            return None

        spec = location.get("spec") or {}
        object_storage = spec.get("objectStorage") or {}
        config = spec.get("config") or {}
        provider = spec.get("provider")

        provider_config: ProviderConfig
        if provider == SnapshotProvider.S3AWS.value:
            aws = self.aws_credentials.read().redacted()
            if config.get("s3Url"):
                provider_config = S3CompatibleStore(
                    region=config.get("region", ""),
                    endpoint=config["s3Url"],
                    access_key_id=aws.access_key_id,
                    access_key_secret=aws.access_key_secret,
                )
            else:
                provider_config = S3AWSStore(
                    region=config.get("region", ""),
                    access_key_id=aws.access_key_id,
                    access_key_secret=aws.access_key_secret,
                )
        elif provider == SnapshotProvider.AZURE.value:
            azure = self.azure_credentials.read().redacted()
            provider_config = AzureStore(
                resource_group=config.get("resourceGroup", ""),
                storage_account=config.get("storageAccount", ""),
                subscription_id=config.get("subscriptionId", ""),
                tenant_id=azure.tenant_id,
                client_id=azure.client_id,
                client_secret=azure.client_secret,
                cloud_name=azure.cloud_name,
            )
        elif provider == SnapshotProvider.GOOGLE.value:
            google = self.google_credentials.read().redacted()
            provider_config = GoogleStore(service_account=google.service_account)
        else:
            raise ValidationError(f"unknown snapshot provider: {provider}")

        return SnapshotStoreConfig(
            bucket=object_storage.get("bucket", ""),
            path=object_storage.get("prefix", ""),
            provider_config=provider_config,
        )

    def save_snapshot_store(self, store: SnapshotStoreConfig, slugs: list[str]) -> None:
        current = self._get_location(GLOBAL_LOCATION_NAME)
        current_config = ((current or {}).get("spec") or {}).get("config") or {}
        spec = _location_spec(store, current_config)

        if current is not None:
            current["spec"] = spec
            self.resources.request("PUT", f"{_LOCATIONS_PATH}/{GLOBAL_LOCATION_NAME}", current)
            global_location = current
            logger.info("storage_location_updated", name=GLOBAL_LOCATION_NAME, provider=spec["provider"])
        else:
            global_location = _new_location(GLOBAL_LOCATION_NAME, self.resources.namespace, spec)
            self.resources.request("POST", _LOCATIONS_PATH, global_location)
            logger.info("storage_location_created", name=GLOBAL_LOCATION_NAME, provider=spec["provider"])

        self._write_credentials(store.provider_config)

        for slug in slugs:
            self._sync_app_location(slug, global_location, store.path)

    def ensure_app_location(self, slug: str) -> None:
        response = self.resources.unhandled_request("GET", f"{_LOCATIONS_PATH}/{GLOBAL_LOCATION_NAME}")
        if response.status != 200:
            return

        spec = deepcopy(response.body.get("spec") or {})
        prefix = (spec.get("objectStorage") or {}).get("prefix", "")
        location = _new_location(slug, self.resources.namespace, spec)
        location["spec"].setdefault("objectStorage", {})["prefix"] = _app_prefix(prefix, slug)

        created = self.resources.unhandled_request("POST", _LOCATIONS_PATH, location)
        if created.status not in {200, 201, 409}:
            logger.error("storage_location_create_failed", name=slug, status=created.status, body=created.body)
            raise SnapshotConsoleError(f"Failed to create new BackupStorageLocation for app {slug}")

    def list_backends(self) -> list[str]:
        body = self.resources.request("GET", _LOCATIONS_PATH) or {}
        return [_name_of(item) for item in body.get("items") or []]

    def _sync_app_location(self, slug: str, global_location: dict[str, Any], store_path: str) -> None:
        resource_path = f"{_LOCATIONS_PATH}/{slug}"
        response = self.resources.unhandled_request("GET", resource_path)

        if response.status == 200:
            app_location = response.body
            app_location["spec"] = deepcopy(global_location["spec"])
            app_location["spec"]["objectStorage"]["prefix"] = _app_prefix(store_path, slug)
            self.resources.request("PUT", resource_path, app_location)
            logger.info("storage_location_updated", name=slug)
            return

        if response.status == 404:
            app_location = _new_location(slug, self.resources.namespace, deepcopy(global_location["spec"]))
            app_location["spec"]["objectStorage"]["prefix"] = _app_prefix(store_path, slug)
            self.resources.request("POST", _LOCATIONS_PATH, app_location)
            logger.info("storage_location_created", name=slug)
            return

        logger.error("storage_location_read_failed", name=slug, status=response.status, body=response.body)
        if response.status == 403:
            raise PermissionDeniedError(method="GET", path=resource_path, namespace=self.resources.namespace)
        raise SnapshotConsoleError(f"Failed to GET BackupStorageLocation {slug}: {response.status}")

    def _get_location(self, name: str) -> dict[str, Any] | None:
        response = self.resources.unhandled_request("GET", f"{_LOCATIONS_PATH}/{name}")
        if response.status == 200:
            return response.body
        if response.status == 404:
            return None
        return self.resources.handle_response("GET", f"{_LOCATIONS_PATH}/{name}", response)

    def _write_credentials(self, provider_config: ProviderConfig) -> None:
        if isinstance(provider_config, (S3AWSStore, S3CompatibleStore)):
            self.aws_credentials.write(
                AWSCredentials(
                    access_key_id=provider_config.access_key_id,
                    access_key_secret=provider_config.access_key_secret,
                )
            )
        elif isinstance(provider_config, AzureStore):
            self.azure_credentials.write(
                AzureCredentials(
                    subscription_id=provider_config.subscription_id,
                    tenant_id=provider_config.tenant_id,
                    client_id=provider_config.client_id,
                    client_secret=provider_config.client_secret,
                    resource_group=provider_config.resource_group,
                    cloud_name=provider_config.cloud_name,
                )
            )
        elif isinstance(provider_config, GoogleStore):
            self.google_credentials.write(GoogleCredentials(service_account=provider_config.service_account))
        else:
            assert_never(provider_config)


def _location_spec(store: SnapshotStoreConfig, current_config: dict[str, Any]) -> dict[str, Any]:
    provider_config = store.provider_config
    config: dict[str, Any]
    if isinstance(provider_config, S3AWSStore):
        provider = SnapshotProvider.S3AWS
        config = {"region": provider_config.region}
    elif isinstance(provider_config, S3CompatibleStore):
        # S3-compatible stores run on the aws plugin with a custom endpoint.
        provider = SnapshotProvider.S3AWS
        config = dict(current_config)
        config["region"] = provider_config.region
        config["s3Url"] = provider_config.endpoint
        config["s3ForcePathStyle"] = "true"
    elif isinstance(provider_config, AzureStore):
        provider = SnapshotProvider.AZURE
        config = {
            "resourceGroup": provider_config.resource_group,
            "storageAccount": provider_config.storage_account,
            "subscriptionId": provider_config.subscription_id,
        }
    elif isinstance(provider_config, GoogleStore):
        provider = SnapshotProvider.GOOGLE
        config = {}
    else:
        assert_never(provider_config)

    return {
        "provider": provider.value,
        "objectStorage": {
            "bucket": store.bucket,
            "prefix": store.path,
        },
        "config": config,
    }


def _new_location(name: str, namespace: str, spec: dict[str, Any]) -> dict[str, Any]:
    return {
        "apiVersion": "velero.io/v1",
        "kind": "BackupStorageLocation",
        "metadata": {
            "name": name,
            "namespace": namespace,
        },
        "spec": spec,
    }


def _app_prefix(global_prefix: str, slug: str) -> str:
    return posixpath.join(global_prefix, slug) if global_prefix else slug


def _name_of(resource: dict[str, Any]) -> str:
    return (resource.get("metadata") or {}).get("name", "")
