from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qs
import json

import structlog
from kubernetes import client
from kubernetes.client import ApiException

from .errors import (
    ApiMessageError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    UnexpectedStatusError,
)

VELERO_GROUP = "velero.io"
VELERO_VERSION = "v1"

logger = structlog.get_logger()


@dataclass(frozen=True)
class ApiResponse:
    status: int
    body: Any


class ResourceClient:
    """Namespaced client for the velero.io/v1 custom resource group.

    ``path`` arguments are relative to the namespace, e.g. ``backups/<name>`` or
    ``podvolumebackups?labelSelector=...``. Calls go through the public
    ``CustomObjectsApi`` methods; only ``labelSelector`` is understood in the
    query string.
    """

    def __init__(
        self,
        api_client: client.ApiClient,
        namespace: str,
        *,
        group: str = VELERO_GROUP,
        version: str = VELERO_VERSION,
    ) -> None:
        self.api_client = api_client
        self.namespace = namespace
        self.group = group
        self.version = version
        self.custom_objects = client.CustomObjectsApi(api_client)
        self.apis = client.ApisApi(api_client)

    def request(self, method: str, path: str, body: Any = None) -> Any:
        return self.handle_response(method, path, self.unhandled_request(method, path, body))

    def handle_response(self, method: str, path: str, response: ApiResponse) -> Any:
        status = response.status

        if status in {200, 201, 204}:
            return response.body
        if status in {400, 422}:
            logger.warning(
                "velero_request_rejected",
                method=method,
                path=path,
                namespace=self.namespace,
                status=status,
                body=response.body,
            )
            return response.body
        if status == 403:
            raise PermissionDeniedError(method=method, path=path, namespace=self.namespace)
        if status == 404:
            raise NotFoundError(path=path)
        if status == 409 and method in {"PUT", "PATCH"}:
            raise ConflictError(method=method, path=path)

        message = response.body.get("message") if isinstance(response.body, dict) else None
        if message:
            raise ApiMessageError(message, status=status)

        logger.error(
            "velero_request_failed",
            method=method,
            path=path,
            namespace=self.namespace,
            status=status,
            body=response.body,
        )
        raise UnexpectedStatusError(method=method, path=path, status=status, body=response.body)

    def unhandled_request(self, method: str, path: str, body: Any = None) -> ApiResponse:
        resource_path, _, query = path.partition("?")
        plural, _, name = resource_path.partition("/")
        target = (self.group, self.version, self.namespace, plural)
        api = self.custom_objects

        try:
            if method == "GET" and name:
                return ApiResponse(status=200, body=api.get_namespaced_custom_object(*target, name))
            if method == "GET":
                selector = parse_qs(query).get("labelSelector")
                kwargs = {"label_selector": selector[0]} if selector else {}
                return ApiResponse(status=200, body=api.list_namespaced_custom_object(*target, **kwargs))
            if method == "POST":
                return ApiResponse(status=201, body=api.create_namespaced_custom_object(*target, body))
            if method == "PUT":
                return ApiResponse(status=200, body=api.replace_namespaced_custom_object(*target, name, body))
            if method == "DELETE":
                return ApiResponse(status=200, body=api.delete_namespaced_custom_object(*target, name))
        except ApiException as error:
            return ApiResponse(status=error.status or 0, body=_decode_body(error.body))

        raise ValueError(f"Unsupported velero request: {method} {path}")

    def is_installed(self) -> bool:
        path = f"/apis/{self.group}/"
        try:
            groups = self.apis.get_api_versions().groups or []
        except ApiException as error:
            if error.status == 404:
                return False
            raise UnexpectedStatusError(
                method="GET",
                path=path,
                status=error.status or 0,
                body=_decode_body(error.body),
            ) from error
        return any(group.name == self.group for group in groups)


def _decode_body(data: bytes | str | None) -> Any:
    if data is None:
        return None
    text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text
