from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable
import gzip
import json
import threading
import time

import requests
import structlog

from .config import AppConfig
from .errors import DownloadCancelledError, SnapshotConsoleError, TransportTimeoutError
from .labels import get_valid_name
from .logparse import parse_backup_logs
from .models import ParsedBackupLogs
from .resources import ResourceClient

BACKUP_LOG_KIND = "BackupLog"
RESTORE_RESULTS_KIND = "RestoreResults"
_REQUESTS_PATH = "downloadrequests"

logger = structlog.get_logger()


@dataclass(frozen=True)
class DownloadPolicy:
    max_attempts: int = 30
    interval_seconds: float = 1.0
    http_timeout_seconds: float = 60

    @classmethod
    def from_config(cls, config: AppConfig) -> DownloadPolicy:
        return cls(
            max_attempts=config.download_poll_attempts,
            interval_seconds=config.download_poll_interval_seconds,
            http_timeout_seconds=config.http_timeout_seconds,
        )


class DownloadProtocol:
    """Fetches controller artifacts through short-lived DownloadRequest resources."""

    def __init__(
        self,
        resources: ResourceClient,
        *,
        policy: DownloadPolicy | None = None,
        http_session: requests.Session | None = None,
        log_parser: Callable[[bytes], ParsedBackupLogs] = parse_backup_logs,
    ) -> None:
        self.resources = resources
        self.policy = policy or DownloadPolicy()
        if self.policy.max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        if self.policy.interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")
        self.http_session = http_session or requests.Session()
        self.log_parser = log_parser

    def get_download_url(
        self,
        kind: str,
        target_name: str,
        *,
        cancel: threading.Event | None = None,
    ) -> str:
        request_name = _download_request_name(kind, target_name)
        self.resources.request(
            "POST",
            _REQUESTS_PATH,
            {
                "apiVersion": "velero.io/v1",
                "kind": "DownloadRequest",
                "metadata": {"name": request_name},
                "spec": {"target": {"kind": kind, "name": target_name}},
            },
        )
        logger.debug("download_request_created", name=request_name, kind=kind, target=target_name)

        for attempt in range(1, self.policy.max_attempts + 1):
            body = self.resources.request("GET", f"{_REQUESTS_PATH}/{request_name}") or {}
            download_url = (body.get("status") or {}).get("downloadURL")
            if download_url:
                self.resources.request("DELETE", f"{_REQUESTS_PATH}/{request_name}")
                logger.debug("download_url_resolved", name=request_name, attempts=attempt)
                return download_url

            if attempt < self.policy.max_attempts and self._wait(cancel):
                self._best_effort_delete(request_name)
                raise DownloadCancelledError(kind=kind, target_name=target_name)

        logger.warning(
            "download_request_timed_out",
            name=request_name,
            kind=kind,
            target=target_name,
            attempts=self.policy.max_attempts,
        )
        self._best_effort_delete(request_name)
        raise TransportTimeoutError(kind=kind, target_name=target_name, attempts=self.policy.max_attempts)

    def fetch_artifact(self, url: str) -> bytes:
        response = self.http_session.get(url, timeout=self.policy.http_timeout_seconds)
        response.raise_for_status()
        return gzip.decompress(response.content)

    def get_backup_logs(self, backup_name: str) -> ParsedBackupLogs:
        url = self.get_download_url(BACKUP_LOG_KIND, backup_name)
        return self.log_parser(self.fetch_artifact(url))

    def get_restore_results(self, restore_name: str) -> dict[str, Any]:
        url = self.get_download_url(RESTORE_RESULTS_KIND, restore_name)
        return json.loads(self.fetch_artifact(url).decode("utf-8"))

    def _wait(self, cancel: threading.Event | None) -> bool:
        if cancel is None:
            time.sleep(self.policy.interval_seconds)
            return False
        return cancel.wait(self.policy.interval_seconds)

    def _best_effort_delete(self, request_name: str) -> None:
        try:
            self.resources.request("DELETE", f"{_REQUESTS_PATH}/{request_name}")
        except SnapshotConsoleError as error:
            logger.warning("download_request_cleanup_failed", name=request_name, error=str(error))


def _download_request_name(kind: str, target_name: str) -> str:
    millis = int(datetime.now(tz=UTC).timestamp() * 1000)
    return get_valid_name(f"{kind.lower()}-{target_name}-{millis}")
