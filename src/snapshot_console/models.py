from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from .errors import ValidationError


class SnapshotProvider(str, Enum):
    S3AWS = "aws"
    S3_COMPATIBLE = "s3compatible"
    AZURE = "azure"
    GOOGLE = "gcp"


class Phase(str, Enum):
    NEW = "New"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    PARTIALLY_FAILED = "PartiallyFailed"
    FAILED = "Failed"
    FAILED_VALIDATION = "FailedValidation"

    @property
    def is_terminal(self) -> bool:
        return self not in {Phase.NEW, Phase.IN_PROGRESS}

    @classmethod
    def parse(cls, value: str | None) -> Phase:
        if not value:
            return cls.NEW
        try:
            return cls(value)
        except ValueError:
            # Unknown controller phases are treated as still running.
            return cls.IN_PROGRESS


class SnapshotTrigger(str, Enum):
    MANUAL = "manual"
    PRE_UPGRADE = "pre-upgrade"
    SCHEDULE = "schedule"


class AzureCloudName(str, Enum):
    PUBLIC = "AzurePublicCloud"
    US_GOVERNMENT = "AzureUSGovernmentCloud"
    CHINA = "AzureChinaCloud"
    GERMAN = "AzureGermanCloud"


@dataclass(frozen=True)
class S3AWSStore:
    region: str
    access_key_id: str = ""
    access_key_secret: str = ""


@dataclass(frozen=True)
class S3CompatibleStore:
    region: str
    endpoint: str
    access_key_id: str = ""
    access_key_secret: str = ""


@dataclass(frozen=True)
class AzureStore:
    resource_group: str
    storage_account: str
    subscription_id: str
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    cloud_name: AzureCloudName = AzureCloudName.PUBLIC


@dataclass(frozen=True)
class GoogleStore:
    service_account: str = ""


ProviderConfig = Union[S3AWSStore, S3CompatibleStore, AzureStore, GoogleStore]

_PROVIDER_BY_TYPE: dict[type, SnapshotProvider] = {
    S3AWSStore: SnapshotProvider.S3AWS,
    S3CompatibleStore: SnapshotProvider.S3_COMPATIBLE,
    AzureStore: SnapshotProvider.AZURE,
    GoogleStore: SnapshotProvider.GOOGLE,
}


@dataclass(frozen=True)
class SnapshotStoreConfig:
    """One logical snapshot destination; exactly one provider payload by construction."""

    bucket: str
    path: str
    provider_config: ProviderConfig

    @property
    def provider(self) -> SnapshotProvider:
        return _PROVIDER_BY_TYPE[type(self.provider_config)]

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> SnapshotStoreConfig:
        """Build a store from the API payload shape ``{provider, bucket, path, <provider key>: {...}}``."""
        raw_provider = payload.get("provider")
        try:
            provider = SnapshotProvider(raw_provider)
        except ValueError as error:
            raise ValidationError(f"unknown snapshot provider: {raw_provider}") from error

        bucket = payload.get("bucket") or ""
        if not bucket:
            raise ValidationError("bucket is required")
        path = payload.get("path") or ""

        provider_config: ProviderConfig
        if provider is SnapshotProvider.S3AWS:
            section = _require_section(payload, "s3AWS")
            provider_config = S3AWSStore(
                region=section.get("region", ""),
                access_key_id=section.get("accessKeyID", ""),
                access_key_secret=section.get("accessKeySecret", ""),
            )
        elif provider is SnapshotProvider.S3_COMPATIBLE:
            section = _require_section(payload, "s3Compatible")
            provider_config = S3CompatibleStore(
                region=section.get("region", ""),
                endpoint=section.get("endpoint", ""),
                access_key_id=section.get("accessKeyID", ""),
                access_key_secret=section.get("accessKeySecret", ""),
            )
        elif provider is SnapshotProvider.AZURE:
            section = _require_section(payload, "azure")
            provider_config = AzureStore(
                resource_group=section.get("resourceGroup", ""),
                storage_account=section.get("storageAccount", ""),
                subscription_id=section.get("subscriptionID", ""),
                tenant_id=section.get("tenantID", ""),
                client_id=section.get("clientID", ""),
                client_secret=section.get("clientSecret", ""),
                cloud_name=_parse_cloud_name(section.get("cloudName")),
            )
        else:
            section = _require_section(payload, "google")
            provider_config = GoogleStore(service_account=section.get("serviceAccount", ""))

        return cls(bucket=bucket, path=path, provider_config=provider_config)


def _require_section(payload: dict[str, Any], key: str) -> dict[str, Any]:
    section = payload.get(key)
    if not isinstance(section, dict):
        raise ValidationError(f"{key} store configuration is required")
    return section


def _parse_cloud_name(value: str | None) -> AzureCloudName:
    if not value:
        return AzureCloudName.PUBLIC
    try:
        return AzureCloudName(value)
    except ValueError as error:
        raise ValidationError(f"unknown Azure cloud name: {value}") from error


@dataclass(frozen=True)
class Snapshot:
    name: str
    status: Phase
    trigger: SnapshotTrigger | None
    app_slug: str | None
    app_version: str | None
    started: str | None
    finished: str | None
    expires: str | None
    volume_count: int
    volume_success_count: int
    volume_bytes: int
    volume_size_human: str


@dataclass(frozen=True)
class SnapshotVolume:
    name: str
    phase: str | None = None
    started: str | None = None
    finished: str | None = None
    size_bytes_human: str | None = None
    done_bytes_human: str | None = None
    completion_percent: int | None = None
    time_remaining_seconds: int | None = None


@dataclass(frozen=True)
class RestoreVolume:
    name: str
    phase: str
    pod_name: str | None = None
    pod_namespace: str | None = None
    pod_volume_name: str | None = None
    started: str | None = None
    finished: str | None = None
    size_bytes_human: str | None = None
    done_bytes_human: str | None = None
    completion_percent: int | None = None
    time_remaining_seconds: int | None = None


@dataclass(frozen=True)
class SnapshotError:
    title: str
    message: str
    namespace: str | None = None


@dataclass
class SnapshotHook:
    name: str
    namespace: str
    phase: str
    pod_name: str
    container_name: str
    command: str
    stdout: str = ""
    stderr: str = ""
    started_at: str | None = None
    finished_at: str | None = None
    errors: list[SnapshotError] = field(default_factory=list)
    warnings: list[SnapshotError] = field(default_factory=list)


@dataclass(frozen=True)
class ParsedBackupLogs:
    errors: list[SnapshotError] = field(default_factory=list)
    warnings: list[SnapshotError] = field(default_factory=list)
    hooks: list[SnapshotHook] = field(default_factory=list)


@dataclass(frozen=True)
class SnapshotDetail:
    summary: Snapshot
    namespaces: tuple[str, ...]
    volumes: list[SnapshotVolume]
    errors: list[SnapshotError]
    warnings: list[SnapshotError] | None
    hooks: list[SnapshotHook] | None


@dataclass(frozen=True)
class RestoreDetail:
    name: str
    phase: Phase
    volumes: list[RestoreVolume] = field(default_factory=list)
    errors: list[SnapshotError] = field(default_factory=list)
    warnings: list[SnapshotError] = field(default_factory=list)


@dataclass(frozen=True)
class App:
    id: str
    slug: str
    name: str
    current_sequence: int | None
    restore_in_progress_name: str | None = None


@dataclass(frozen=True)
class PastVersion:
    cluster_id: str
    sequence: int
    status: str


@dataclass(frozen=True)
class SnapshotTTL:
    input_value: str
    input_time_unit: str
    converted: str


@dataclass(frozen=True)
class SnapshotScheduleConfig:
    auto_enabled: bool
    schedule: str
    ttl: SnapshotTTL
