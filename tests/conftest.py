from __future__ import annotations

from copy import deepcopy
from types import SimpleNamespace
from typing import Any, Callable
from unittest.mock import Mock
import base64

import pytest
from kubernetes.client import ApiException

from snapshot_console.resources import ApiResponse, ResourceClient

Handler = Callable[[Any], ApiResponse]


class FakeVeleroApi(ResourceClient):
    """In-memory velero.io/v1 API routed by method and namespace-relative path.

    Routes hold a queue of responses; the last one keeps being served once the
    queue drains. Unrouted requests answer 404.
    """

    def __init__(self, namespace: str = "velero") -> None:
        super().__init__(api_client=Mock(), namespace=namespace)
        self.routes: dict[tuple[str, str], list[ApiResponse | Handler]] = {}
        self.calls: list[tuple[str, str, Any]] = []

    def route(self, method: str, path: str, status: int = 200, body: Any = None) -> FakeVeleroApi:
        self.routes.setdefault((method, path), []).append(ApiResponse(status=status, body=body))
        return self

    def route_handler(self, method: str, path: str, handler: Handler) -> FakeVeleroApi:
        self.routes.setdefault((method, path), []).append(handler)
        return self

    def unhandled_request(self, method: str, path: str, body: Any = None) -> ApiResponse:
        self.calls.append((method, path, deepcopy(body)))
        queue = self.routes.get((method, path))
        if not queue:
            return ApiResponse(status=404, body=None)
        entry = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(entry, ApiResponse):
            return ApiResponse(status=entry.status, body=deepcopy(entry.body))
        return entry(body)

    def paths(self, method: str) -> list[str]:
        return [path for called_method, path, _ in self.calls if called_method == method]

    def bodies(self, method: str, path: str) -> list[Any]:
        return [body for called_method, called_path, body in self.calls if (called_method, called_path) == (method, path)]


class FakeCoreApi:
    """Subset of ``CoreV1Api`` secret calls backed by a dict."""

    def __init__(self) -> None:
        self.secrets: dict[str, SimpleNamespace] = {}
        self.calls: list[tuple[str, str]] = []
        self.replaced_bodies: list[Any] = []
        self.errors: dict[tuple[str, str], ApiException] = {}

    def add_secret(self, name: str, blob: str, *, resource_version: str = "1") -> None:
        self.secrets[name] = SimpleNamespace(
            data={"cloud": base64.b64encode(blob.encode("utf-8")).decode("ascii")},
            metadata=SimpleNamespace(name=name, resource_version=resource_version),
        )

    def blob(self, name: str) -> str:
        return base64.b64decode(self.secrets[name].data["cloud"]).decode("utf-8")

    def fail(self, operation: str, name: str, status: int) -> None:
        self.errors[(operation, name)] = ApiException(status=status, reason="injected")

    def read_namespaced_secret(self, name: str, namespace: str) -> SimpleNamespace:
        self._record("read", name)
        if name not in self.secrets:
            raise ApiException(status=404, reason="Not Found")
        return self.secrets[name]

    def create_namespaced_secret(self, namespace: str, body: Any) -> Any:
        self._record("create", body.metadata.name)
        self._store(body, resource_version="1")
        return body

    def replace_namespaced_secret(self, name: str, namespace: str, body: Any) -> Any:
        self._record("replace", name)
        self.replaced_bodies.append(body)
        current = self.secrets[name].metadata.resource_version
        self._store(body, resource_version=str(int(current) + 1))
        return body

    def delete_namespaced_secret(self, name: str, namespace: str) -> None:
        self._record("delete", name)
        if name not in self.secrets:
            raise ApiException(status=404, reason="Not Found")
        del self.secrets[name]

    def operations(self, name: str) -> list[str]:
        return [operation for operation, secret in self.calls if secret == name]

    def _record(self, operation: str, name: str) -> None:
        self.calls.append((operation, name))
        error = self.errors.get((operation, name))
        if error is not None:
            raise error

    def _store(self, body: Any, *, resource_version: str) -> None:
        self.add_secret(body.metadata.name, body.string_data["cloud"], resource_version=resource_version)


@pytest.fixture
def velero() -> FakeVeleroApi:
    return FakeVeleroApi()


@pytest.fixture
def core_api() -> FakeCoreApi:
    return FakeCoreApi()
