from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import Mock
import gzip
import json
import threading

import pytest
import requests
from structlog.testing import capture_logs

from snapshot_console.downloads import (
    BACKUP_LOG_KIND,
    RESTORE_RESULTS_KIND,
    DownloadPolicy,
    DownloadProtocol,
    _download_request_name,
)
from snapshot_console.errors import DownloadCancelledError, TransportTimeoutError
from snapshot_console.models import ParsedBackupLogs

_REQUEST = "downloadrequests/backuplog-nightly-1"
_SIGNED_URL = "https://bucket.example/logs.gz?sig=abc"


@pytest.fixture
def sleep(monkeypatch: pytest.MonkeyPatch) -> Mock:
    sleep_mock = Mock()
    monkeypatch.setattr("snapshot_console.downloads.time.sleep", sleep_mock)
    monkeypatch.setattr(
        "snapshot_console.downloads._download_request_name",
        lambda kind, target: f"{kind.lower()}-{target}-1",
    )
    return sleep_mock


def _http_session(payload: bytes) -> Mock:
    session = Mock()
    session.get.return_value = SimpleNamespace(content=gzip.compress(payload), raise_for_status=Mock())
    return session


def test_get_download_url_polls_until_url_then_deletes_request(velero, sleep: Mock) -> None:
    velero.route("POST", "downloadrequests", status=201, body={})
    velero.route("GET", _REQUEST, body={"status": {}})
    velero.route("GET", _REQUEST, body={})
    velero.route("GET", _REQUEST, body={"status": {"downloadURL": _SIGNED_URL}})
    velero.route("DELETE", _REQUEST, body={})

    url = DownloadProtocol(velero).get_download_url(BACKUP_LOG_KIND, "nightly")

    assert url == _SIGNED_URL
    assert velero.paths("GET") == [_REQUEST] * 3
    assert velero.paths("DELETE") == [_REQUEST]
    assert sleep.call_count == 2
    (created,) = velero.bodies("POST", "downloadrequests")
    assert created["metadata"]["name"] == "backuplog-nightly-1"
    assert created["spec"]["target"] == {"kind": "BackupLog", "name": "nightly"}


def test_get_download_url_without_url_times_out_after_max_attempts(velero, sleep: Mock) -> None:
    velero.route("POST", "downloadrequests", status=201, body={})
    velero.route("GET", _REQUEST, body={"status": {}})
    velero.route("DELETE", _REQUEST, body={})

    with capture_logs() as logs:
        with pytest.raises(TransportTimeoutError, match="BackupLog/nightly after 30 attempts"):
            DownloadProtocol(velero).get_download_url(BACKUP_LOG_KIND, "nightly")

    assert len(velero.paths("GET")) == 30
    assert sleep.call_count == 29
    assert velero.paths("DELETE") == [_REQUEST]
    assert [entry["event"] for entry in logs] == ["download_request_created", "download_request_timed_out"]


def test_get_download_url_uses_injected_policy(velero, sleep: Mock) -> None:
    velero.route("POST", "downloadrequests", status=201, body={})
    velero.route("GET", _REQUEST, body={})
    protocol = DownloadProtocol(velero, policy=DownloadPolicy(max_attempts=3, interval_seconds=0.25))

    with pytest.raises(TransportTimeoutError) as error:
        protocol.get_download_url(BACKUP_LOG_KIND, "nightly")

    assert error.value.attempts == 3
    sleep.assert_called_with(0.25)


def test_get_download_url_with_cancel_event_stops_polling(velero, sleep: Mock) -> None:
    velero.route("POST", "downloadrequests", status=201, body={})
    velero.route("GET", _REQUEST, body={})
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(DownloadCancelledError):
        DownloadProtocol(velero).get_download_url(BACKUP_LOG_KIND, "nightly", cancel=cancel)

    assert velero.paths("GET") == [_REQUEST]
    assert velero.paths("DELETE") == [_REQUEST]
    sleep.assert_not_called()


def test_get_download_url_timeout_survives_failed_cleanup(velero, sleep: Mock) -> None:
    velero.route("POST", "downloadrequests", status=201, body={})
    velero.route("GET", _REQUEST, body={})
    velero.route("DELETE", _REQUEST, status=403, body={"message": "forbidden"})
    protocol = DownloadProtocol(velero, policy=DownloadPolicy(max_attempts=1))

    with pytest.raises(TransportTimeoutError):
        protocol.get_download_url(BACKUP_LOG_KIND, "nightly")


def test_get_restore_results_fetches_gunzips_and_parses_json(velero, sleep: Mock) -> None:
    request = "downloadrequests/restoreresults-restore-1-1"
    results = {"errors": {"namespaces": {"apps": ["boom"]}}, "warnings": {}}
    velero.route("POST", "downloadrequests", status=201, body={})
    velero.route("GET", request, body={"status": {"downloadURL": _SIGNED_URL}})
    velero.route("DELETE", request, body={})
    session = _http_session(json.dumps(results).encode("utf-8"))
    protocol = DownloadProtocol(velero, http_session=session, policy=DownloadPolicy(http_timeout_seconds=5))

    assert protocol.get_restore_results("restore-1") == results
    session.get.assert_called_once_with(_SIGNED_URL, timeout=5)
    assert velero.bodies("POST", "downloadrequests")[0]["spec"]["target"]["kind"] == RESTORE_RESULTS_KIND


def test_get_backup_logs_hands_decompressed_bytes_to_parser(velero, sleep: Mock) -> None:
    velero.route("POST", "downloadrequests", status=201, body={})
    velero.route("GET", _REQUEST, body={"status": {"downloadURL": _SIGNED_URL}})
    velero.route("DELETE", _REQUEST, body={})
    parser = Mock(return_value=ParsedBackupLogs())
    protocol = DownloadProtocol(velero, http_session=_http_session(b"level=info msg=done"), log_parser=parser)

    assert protocol.get_backup_logs("nightly") == ParsedBackupLogs()
    parser.assert_called_once_with(b"level=info msg=done")


def test_fetch_artifact_with_http_error_propagates() -> None:
    session = Mock()
    session.get.return_value = SimpleNamespace(
        content=b"",
        raise_for_status=Mock(side_effect=requests.HTTPError("403 Forbidden")),
    )
    protocol = DownloadProtocol(Mock(), http_session=session)

    with pytest.raises(requests.HTTPError):
        protocol.fetch_artifact(_SIGNED_URL)


def test_download_policy_rejects_non_positive_attempts() -> None:
    with pytest.raises(ValueError, match="max_attempts"):
        DownloadProtocol(Mock(), policy=DownloadPolicy(max_attempts=0))


def test_download_request_name_is_lowercase_and_length_safe() -> None:
    name = _download_request_name("BackupLog", "a" * 80)

    assert name.startswith("backuplog-aaaa")
    assert len(name) == 63
