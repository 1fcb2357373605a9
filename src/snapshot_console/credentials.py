from __future__ import annotations

from dataclasses import dataclass, replace
import base64
import binascii
import re

import structlog
from kubernetes import client
from kubernetes.client import ApiException

from .errors import ConflictError, PermissionDeniedError, SnapshotConsoleError, UnexpectedStatusError
from .models import AzureCloudName

REDACTED = "--- REDACTED ---"
AWS_SECRET_NAME = "aws-credentials"
AZURE_SECRET_NAME = "azure-credentials"
GOOGLE_SECRET_NAME = "google-credentials"
SECRET_DATA_KEY = "cloud"

logger = structlog.get_logger()


@dataclass(frozen=True)
class AWSCredentials:
    access_key_id: str = ""
    access_key_secret: str = ""

    def redacted(self) -> AWSCredentials:
        return replace(self, access_key_secret=REDACTED if self.access_key_secret else "")


@dataclass(frozen=True)
class AzureCredentials:
    subscription_id: str = ""
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    resource_group: str = ""
    cloud_name: AzureCloudName = AzureCloudName.PUBLIC

    def redacted(self) -> AzureCredentials:
        return replace(self, client_secret=REDACTED if self.client_secret else "")


@dataclass(frozen=True)
class GoogleCredentials:
    service_account: str = ""

    def redacted(self) -> GoogleCredentials:
        return replace(self, service_account=REDACTED if self.service_account else "")


@dataclass(frozen=True)
class _StoredSecret:
    blob: str
    resource_version: str | None


class _SecretReconciler:
    """Reads and writes the single ``cloud`` blob of one provider credential secret."""

    secret_name: str

    def __init__(self, core_api: client.CoreV1Api, namespace: str) -> None:
        self.core_api = core_api
        self.namespace = namespace

    def _read_stored(self) -> _StoredSecret | None:
        try:
            secret = self.core_api.read_namespaced_secret(name=self.secret_name, namespace=self.namespace)
        except ApiException as error:
            if error.status == 404:
                return None
            raise self._api_error("GET", error) from error

        data = secret.data or {}
        encoded = data.get(SECRET_DATA_KEY)
        resource_version = secret.metadata.resource_version if secret.metadata else None
        if not encoded:
            return _StoredSecret(blob="", resource_version=resource_version)
        try:
            blob = base64.b64decode(encoded, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as error:
            logger.error("credentials_secret_unreadable", secret=self.secret_name, namespace=self.namespace)
            raise SnapshotConsoleError(
                f"Credential secret {self.namespace}/{self.secret_name} does not hold valid "
                f"base64-encoded UTF-8 data under '{SECRET_DATA_KEY}'."
            ) from error
        return _StoredSecret(blob=blob, resource_version=resource_version)

    def _upsert(self, blob: str, stored: _StoredSecret | None) -> client.V1Secret:
        body = client.V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=client.V1ObjectMeta(name=self.secret_name, namespace=self.namespace),
            string_data={SECRET_DATA_KEY: blob},
        )
        if stored is None:
            try:
                created = self.core_api.create_namespaced_secret(namespace=self.namespace, body=body)
            except ApiException as error:
                raise self._api_error("POST", error) from error
            logger.info("credentials_secret_created", secret=self.secret_name, namespace=self.namespace)
            return created

        body.metadata.resource_version = stored.resource_version
        try:
            replaced = self.core_api.replace_namespaced_secret(
                name=self.secret_name,
                namespace=self.namespace,
                body=body,
            )
        except ApiException as error:
            raise self._api_error("PUT", error) from error
        logger.info("credentials_secret_replaced", secret=self.secret_name, namespace=self.namespace)
        return replaced

    def _delete(self) -> None:
        try:
            self.core_api.delete_namespaced_secret(name=self.secret_name, namespace=self.namespace)
        except ApiException as error:
            if error.status == 404:
                return
            raise SnapshotConsoleError(
                f"Failed to delete secret {self.secret_name} from namespace {self.namespace}. "
                "Velero will continue using the credentials in the secret if it exists."
            ) from error
        logger.info("credentials_secret_deleted", secret=self.secret_name, namespace=self.namespace)

    def _api_error(self, method: str, error: ApiException) -> SnapshotConsoleError:
        path = f"secrets/{self.secret_name}"
        if error.status == 403:
            return PermissionDeniedError(method=method, path=path, namespace=self.namespace, api_version="v1")
        if error.status == 409 and method == "PUT":
            return ConflictError(method=method, path=path)
        return UnexpectedStatusError(method=method, path=path, status=error.status or 0, body=error.body)


class AWSCredentialReconciler(_SecretReconciler):
    secret_name = AWS_SECRET_NAME

    def read(self) -> AWSCredentials:
        stored = self._read_stored()
        return _parse_aws(stored.blob) if stored else AWSCredentials()

    def write(self, credentials: AWSCredentials) -> client.V1Secret | None:
        stored = self._read_stored()
        access_key_secret = credentials.access_key_secret
        if access_key_secret == REDACTED:
            access_key_secret = _parse_aws(stored.blob).access_key_secret if stored else ""

        if not access_key_secret and not credentials.access_key_id:
            # Without a secret Velero falls back to instance profiles.
            if stored is not None:
                self._delete()
            return None

        blob = (
            "[default]\n"
            f"aws_access_key_id={credentials.access_key_id}\n"
            f"aws_secret_access_key={access_key_secret}"
        )
        return self._upsert(blob, stored)


class AzureCredentialReconciler(_SecretReconciler):
    secret_name = AZURE_SECRET_NAME

    def read(self) -> AzureCredentials:
        stored = self._read_stored()
        return _parse_azure(stored.blob) if stored else AzureCredentials()

    def write(self, credentials: AzureCredentials) -> client.V1Secret | None:
        stored = self._read_stored()
        client_secret = credentials.client_secret
        if client_secret == REDACTED:
            client_secret = _parse_azure(stored.blob).client_secret if stored else ""

        if not client_secret and not credentials.client_id:
            if stored is not None:
                self._delete()
            return None

        blob = "\n".join(
            [
                f"AZURE_SUBSCRIPTION_ID={credentials.subscription_id}",
                f"AZURE_TENANT_ID={credentials.tenant_id}",
                f"AZURE_CLIENT_ID={credentials.client_id}",
                f"AZURE_CLIENT_SECRET={client_secret}",
                f"AZURE_RESOURCE_GROUP={credentials.resource_group}",
                f"AZURE_CLOUD_NAME={credentials.cloud_name.value}",
            ]
        )
        return self._upsert(blob, stored)


class GoogleCredentialReconciler(_SecretReconciler):
    secret_name = GOOGLE_SECRET_NAME

    def read(self) -> GoogleCredentials:
        stored = self._read_stored()
        return GoogleCredentials(service_account=stored.blob) if stored else GoogleCredentials()

    def write(self, credentials: GoogleCredentials) -> client.V1Secret | None:
        stored = self._read_stored()
        service_account = credentials.service_account
        if service_account == REDACTED:
            service_account = stored.blob if stored else ""

        if not service_account:
            if stored is not None:
                self._delete()
            return None

        return self._upsert(service_account, stored)


def _parse_aws(blob: str) -> AWSCredentials:
    return AWSCredentials(
        access_key_id=_match(r"aws_access_key_id=([^\n]+)", blob),
        access_key_secret=_match(r"aws_secret_access_key=([^\n]+)", blob),
    )


def _parse_azure(blob: str) -> AzureCredentials:
    cloud_name = _match(r"AZURE_CLOUD_NAME=([^\n]+)", blob)
    try:
        parsed_cloud_name = AzureCloudName(cloud_name) if cloud_name else AzureCloudName.PUBLIC
    except ValueError:
        parsed_cloud_name = AzureCloudName.PUBLIC
    return AzureCredentials(
        subscription_id=_match(r"AZURE_SUBSCRIPTION_ID=([^\n]+)", blob),
        tenant_id=_match(r"AZURE_TENANT_ID=([^\n]+)", blob),
        client_id=_match(r"AZURE_CLIENT_ID=([^\n]+)", blob),
        client_secret=_match(r"AZURE_CLIENT_SECRET=([^\n]+)", blob),
        resource_group=_match(r"AZURE_RESOURCE_GROUP=([^\n]+)", blob),
        cloud_name=parsed_cloud_name,
    )


def _match(pattern: str, blob: str) -> str:
    found = re.search(pattern, blob)
    return found.group(1).strip() if found else ""
