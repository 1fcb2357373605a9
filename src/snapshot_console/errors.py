from __future__ import annotations

from typing import Any


class SnapshotConsoleError(RuntimeError):
    """Base class for errors raised by the snapshot subsystem."""

    user_visible = True
    retryable = False


class ValidationError(SnapshotConsoleError):
    """Raised when user supplied configuration or input is invalid."""


class PermissionDeniedError(SnapshotConsoleError):
    def __init__(self, *, method: str, path: str, namespace: str, api_version: str = "velero.io/v1") -> None:
        super().__init__(
            f"Permission denied: RBAC may be misconfigured for {method} {api_version} {path} "
            f"in namespace {namespace}"
        )
        self.method = method
        self.path = path
        self.namespace = namespace


class NotFoundError(SnapshotConsoleError):
    def __init__(self, message: str | None = None, *, path: str | None = None) -> None:
        super().__init__(
            message
            or "Not found: a requested resource may not exist or Velero may not be installed in this cluster"
        )
        self.path = path


class ConflictError(SnapshotConsoleError):
    """Raised when a versioned update lost a race with another writer."""

    retryable = True

    def __init__(self, *, method: str, path: str) -> None:
        super().__init__(
            f"Conflict: {path} was modified by another writer during {method}. Re-read the resource and retry."
        )
        self.method = method
        self.path = path


class PreconditionFailedError(SnapshotConsoleError):
    """Raised when a restore cannot be started in the current application state."""


class TransportTimeoutError(SnapshotConsoleError):
    def __init__(self, *, kind: str, target_name: str, attempts: int) -> None:
        super().__init__(
            f"Timed out waiting for DownloadRequest for {kind}/{target_name} after {attempts} attempts"
        )
        self.kind = kind
        self.target_name = target_name
        self.attempts = attempts


class ApiMessageError(SnapshotConsoleError):
    """Raised when the API server rejects a request with an explanatory message."""

    def __init__(self, message: str, *, status: int) -> None:
        super().__init__(message)
        self.status = status


class UnexpectedStatusError(SnapshotConsoleError):
    user_visible = False

    def __init__(self, *, method: str, path: str, status: int, body: Any = None) -> None:
        super().__init__(f"{method} {path}: unexpected status {status}")
        self.method = method
        self.path = path
        self.status = status
        self.body = body


class DownloadCancelledError(SnapshotConsoleError):
    def __init__(self, *, kind: str, target_name: str) -> None:
        super().__init__(f"Download of {kind}/{target_name} was cancelled")
        self.kind = kind
        self.target_name = target_name
