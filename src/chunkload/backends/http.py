"""httpx backends for a multipart upload (MPU) endpoint.

Every call is ``POST {base_url}/mpu`` and the operation is chosen with the
``x-mpu-action`` header:

- ``create``: query ``bucket`` and ``key``; responds ``{"uploadId": ...}``
- ``upload``: ``x-mpu-upload-id``, ``x-mpu-part-number``, raw part body;
  responds ``{"etag": ...}``
- ``complete``: ``x-mpu-upload-id``, JSON list of ``{"partNumber", "etag"}``
- ``abort``: ``x-mpu-upload-id``

Errors come back as ``{"error": {"code": ..., "message": ...}}``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from typing import Any
from urllib.parse import quote

import httpx

from ..config import HTTPConfig, require_token
from ..errors import BackendError
from ..types import CompletionToken

MPU_PATH = "/mpu"


def _build_headers(
    config: HTTPConfig,
    *,
    action: str,
    upload_id: str | None = None,
    part_number: int | None = None,
    key: str | None = None,
) -> dict[str, str]:
    request_headers = config.get_headers(require_token(config.token))
    request_headers["x-mpu-action"] = action
    if upload_id is not None:
        request_headers["x-mpu-upload-id"] = upload_id
    if part_number is not None:
        request_headers["x-mpu-part-number"] = str(part_number)
    if key is not None:
        request_headers["x-mpu-key"] = quote(key, safe="")
    return request_headers


def serialize_parts(tokens: Sequence[CompletionToken]) -> list[dict[str, Any]]:
    return [{"partNumber": token.part_index, "etag": token.etag} for token in tokens]


def map_backend_error(response: httpx.Response) -> BackendError:
    try:
        data = response.json()
    except ValueError:
        data = {}
    if not isinstance(data, dict):
        data = {}

    error = data.get("error") or {}
    code = error.get("code") or "unknown_error"
    message = error.get("message") or response.reason_phrase or "request failed"
    return BackendError(
        f"{message} (HTTP {response.status_code}, {code})",
        status_code=response.status_code,
        code=code,
    )


def _decode(response: httpx.Response) -> Any:
    if not response.is_success:
        raise map_backend_error(response)
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _require_field(payload: Any, name: str, action: str) -> str:
    if not isinstance(payload, dict) or not payload.get(name):
        raise BackendError(f"{action} response is missing {name!r}")
    return str(payload[name])


class _MPURequests:
    def __init__(self, config: HTTPConfig | None = None, *, token: str | None = None) -> None:
        if config is None:
            config = HTTPConfig.from_env(token=token)
        elif token is not None:
            config = replace(config, token=token)
        self.config = config
        self.url = self.config.base_url.rstrip("/") + MPU_PATH

    def _create_request(self, bucket: str, key: str) -> dict[str, Any]:
        return {
            "headers": _build_headers(self.config, action="create", key=key),
            "params": {"bucket": bucket, "key": key},
        }

    def _upload_request(self, upload_id: str, index: int, data: bytes | memoryview) -> dict[str, Any]:
        headers = _build_headers(self.config, action="upload", upload_id=upload_id, part_number=index)
        headers["content-type"] = "application/octet-stream"
        return {"headers": headers, "content": bytes(data)}

    def _complete_request(self, upload_id: str, tokens: Sequence[CompletionToken]) -> dict[str, Any]:
        return {
            "headers": _build_headers(self.config, action="complete", upload_id=upload_id),
            "json": serialize_parts(tokens),
        }

    def _abort_request(self, upload_id: str) -> dict[str, Any]:
        return {"headers": _build_headers(self.config, action="abort", upload_id=upload_id)}


class HTTPStorageBackend(_MPURequests):
    """Blocking MPU client. One ``httpx.Client`` is shared by all worker threads."""

    def __init__(
        self,
        config: HTTPConfig | None = None,
        *,
        token: str | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        super().__init__(config, token=token)
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=httpx.Timeout(self.config.timeout))

    def _post(self, **kwargs: Any) -> Any:
        try:
            response = self._client.post(self.url, **kwargs)
        except httpx.TransportError as e:
            raise BackendError(f"request to {self.url} failed: {e}") from e
        return _decode(response)

    def initiate_upload(self, bucket: str, key: str) -> str:
        payload = self._post(**self._create_request(bucket, key))
        return _require_field(payload, "uploadId", "create")

    def upload_part(self, upload_id: str, index: int, data: bytes | memoryview) -> str:
        payload = self._post(**self._upload_request(upload_id, index, data))
        return _require_field(payload, "etag", "upload")

    def complete_upload(self, upload_id: str, tokens: Sequence[CompletionToken]) -> Any:
        return self._post(**self._complete_request(upload_id, tokens))

    def abort_upload(self, upload_id: str) -> None:
        self._post(**self._abort_request(upload_id))

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> HTTPStorageBackend:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class AsyncHTTPStorageBackend(_MPURequests):
    def __init__(
        self,
        config: HTTPConfig | None = None,
        *,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(config, token=token)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(self.config.timeout))

    async def _post(self, **kwargs: Any) -> Any:
        try:
            response = await self._client.post(self.url, **kwargs)
        except httpx.TransportError as e:
            raise BackendError(f"request to {self.url} failed: {e}") from e
        return _decode(response)

    async def initiate_upload(self, bucket: str, key: str) -> str:
        payload = await self._post(**self._create_request(bucket, key))
        return _require_field(payload, "uploadId", "create")

    async def upload_part(self, upload_id: str, index: int, data: bytes | memoryview) -> str:
        payload = await self._post(**self._upload_request(upload_id, index, data))
        return _require_field(payload, "etag", "upload")

    async def complete_upload(self, upload_id: str, tokens: Sequence[CompletionToken]) -> Any:
        return await self._post(**self._complete_request(upload_id, tokens))

    async def abort_upload(self, upload_id: str) -> None:
        await self._post(**self._abort_request(upload_id))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> AsyncHTTPStorageBackend:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()


__all__ = [
    "HTTPStorageBackend",
    "AsyncHTTPStorageBackend",
    "map_backend_error",
    "serialize_parts",
]
