from __future__ import annotations

import base64

import pytest
from structlog.testing import capture_logs

from snapshot_console.credentials import (
    AWS_SECRET_NAME,
    AZURE_SECRET_NAME,
    GOOGLE_SECRET_NAME,
    REDACTED,
    AWSCredentialReconciler,
    AWSCredentials,
    AzureCredentialReconciler,
    AzureCredentials,
    GoogleCredentialReconciler,
    GoogleCredentials,
)
from snapshot_console.errors import ConflictError, PermissionDeniedError, SnapshotConsoleError, UnexpectedStatusError
from snapshot_console.models import AzureCloudName

_AWS_BLOB = "[default]\naws_access_key_id=AKIAOLD\naws_secret_access_key=old-secret"


def test_aws_write_with_no_stored_secret_creates_it(core_api) -> None:
    reconciler = AWSCredentialReconciler(core_api, "velero")

    with capture_logs() as logs:
        reconciler.write(AWSCredentials(access_key_id="AKIA1", access_key_secret="s3cret"))

    assert core_api.operations(AWS_SECRET_NAME) == ["read", "create"]
    assert core_api.blob(AWS_SECRET_NAME) == "[default]\naws_access_key_id=AKIA1\naws_secret_access_key=s3cret"
    assert logs == [
        {
            "event": "credentials_secret_created",
            "log_level": "info",
            "secret": AWS_SECRET_NAME,
            "namespace": "velero",
        }
    ]


def test_aws_write_with_redacted_secret_keeps_stored_value(core_api) -> None:
    core_api.add_secret(AWS_SECRET_NAME, _AWS_BLOB, resource_version="7")
    reconciler = AWSCredentialReconciler(core_api, "velero")

    reconciler.write(AWSCredentials(access_key_id="AKIANEW", access_key_secret=REDACTED))

    assert core_api.operations(AWS_SECRET_NAME) == ["read", "replace"]
    assert core_api.blob(AWS_SECRET_NAME) == "[default]\naws_access_key_id=AKIANEW\naws_secret_access_key=old-secret"
    assert core_api.replaced_bodies[0].metadata.resource_version == "7"


def test_aws_write_with_empty_credentials_deletes_existing_secret(core_api) -> None:
    core_api.add_secret(AWS_SECRET_NAME, _AWS_BLOB)
    reconciler = AWSCredentialReconciler(core_api, "velero")

    result = reconciler.write(AWSCredentials())

    assert result is None
    assert AWS_SECRET_NAME not in core_api.secrets
    assert core_api.operations(AWS_SECRET_NAME) == ["read", "delete"]


def test_aws_write_with_empty_credentials_and_no_secret_is_noop(core_api) -> None:
    reconciler = AWSCredentialReconciler(core_api, "velero")

    assert reconciler.write(AWSCredentials()) is None
    assert core_api.operations(AWS_SECRET_NAME) == ["read"]


def test_aws_read_parses_blob_and_redacts_secret(core_api) -> None:
    core_api.add_secret(AWS_SECRET_NAME, _AWS_BLOB)

    credentials = AWSCredentialReconciler(core_api, "velero").read()

    assert credentials == AWSCredentials(access_key_id="AKIAOLD", access_key_secret="old-secret")
    assert credentials.redacted().access_key_secret == REDACTED
    assert AWSCredentials(access_key_id="AKIA").redacted().access_key_secret == ""


def test_aws_read_with_missing_secret_returns_empty_credentials(core_api) -> None:
    assert AWSCredentialReconciler(core_api, "velero").read() == AWSCredentials()


def test_azure_write_then_read_roundtrip_keeps_cloud_name(core_api) -> None:
    reconciler = AzureCredentialReconciler(core_api, "velero")
    credentials = AzureCredentials(
        subscription_id="sub",
        tenant_id="tenant",
        client_id="client",
        client_secret="hunter2",
        resource_group="rg",
        cloud_name=AzureCloudName.US_GOVERNMENT,
    )

    reconciler.write(credentials)

    assert "AZURE_CLOUD_NAME=AzureUSGovernmentCloud" in core_api.blob(AZURE_SECRET_NAME)
    assert reconciler.read() == credentials


def test_azure_write_with_redacted_secret_reuses_stored_client_secret(core_api) -> None:
    core_api.add_secret(
        AZURE_SECRET_NAME,
        "AZURE_SUBSCRIPTION_ID=sub\nAZURE_CLIENT_ID=old\nAZURE_CLIENT_SECRET=kept\nAZURE_CLOUD_NAME=AzurePublicCloud",
    )
    reconciler = AzureCredentialReconciler(core_api, "velero")

    reconciler.write(AzureCredentials(subscription_id="sub", client_id="new", client_secret=REDACTED))

    stored = reconciler.read()
    assert stored.client_id == "new"
    assert stored.client_secret == "kept"


def test_google_write_with_redacted_service_account_keeps_stored_json(core_api) -> None:
    core_api.add_secret(GOOGLE_SECRET_NAME, '{"type": "service_account"}', resource_version="2")
    reconciler = GoogleCredentialReconciler(core_api, "velero")

    reconciler.write(GoogleCredentials(service_account=REDACTED))

    assert core_api.blob(GOOGLE_SECRET_NAME) == '{"type": "service_account"}'
    assert core_api.replaced_bodies[0].metadata.resource_version == "2"
    assert reconciler.read().redacted() == GoogleCredentials(service_account=REDACTED)


def test_replace_with_stale_version_raises_conflict(core_api) -> None:
    core_api.add_secret(AWS_SECRET_NAME, _AWS_BLOB)
    core_api.fail("replace", AWS_SECRET_NAME, 409)

    with pytest.raises(ConflictError):
        AWSCredentialReconciler(core_api, "velero").write(AWSCredentials(access_key_id="A", access_key_secret="B"))


def test_read_with_forbidden_secret_names_core_api(core_api) -> None:
    core_api.fail("read", GOOGLE_SECRET_NAME, 403)

    with pytest.raises(PermissionDeniedError, match="v1 secrets/google-credentials"):
        GoogleCredentialReconciler(core_api, "velero").read()


def test_create_with_server_error_raises_unexpected_status(core_api) -> None:
    core_api.fail("create", AWS_SECRET_NAME, 500)

    with pytest.raises(UnexpectedStatusError):
        AWSCredentialReconciler(core_api, "velero").write(AWSCredentials(access_key_id="A", access_key_secret="B"))


@pytest.mark.parametrize(
    "encoded",
    ["not base64 at all!", base64.b64encode(b"\xff\xfe\xfd").decode("ascii")],
)
def test_read_with_corrupted_secret_data_names_the_secret(core_api, encoded: str) -> None:
    core_api.add_secret(AWS_SECRET_NAME, _AWS_BLOB)
    core_api.secrets[AWS_SECRET_NAME].data["cloud"] = encoded

    with capture_logs() as logs:
        with pytest.raises(SnapshotConsoleError, match="velero/aws-credentials"):
            AWSCredentialReconciler(core_api, "velero").read()

    assert logs[0]["event"] == "credentials_secret_unreadable"
