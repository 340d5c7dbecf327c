"""Async client for the remote admin API: record CRUD and file uploads."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional

import httpx

from ..config import DEFAULT_REQUEST_TIMEOUT, DEFAULT_UPLOAD_CHUNK_SIZE, AppConfig
from ..editing.errors import UploadFailed
from ..editing.uploads import LocalFile

LOGGER = logging.getLogger(__name__)

_LIST_KEYS = ("items", "results", "records")


class ApiError(RuntimeError):
    """Raised when the remote API answers with an error status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message

    def __str__(self) -> str:
        return f"{self.message} (HTTP {self.status_code})"


@dataclass(frozen=True)
class ListPage:
    items: List[Dict[str, Any]]
    total: int
    page: int = 1
    limit: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)


def extract_data(payload: Any) -> Any:
    """Unwrap ``data``, ``data.data`` or ``data.data.data`` response envelopes."""

    current = payload
    for _ in range(3):
        if isinstance(current, Mapping) and "data" in current and current["data"] is not None:
            current = current["data"]
        else:
            break
    return current


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, Mapping):
        for key in ("message", "detail", "error"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    text = response.text.strip()
    return text[:200] if text else response.reason_phrase or "Request failed"


class AdminApiClient:
    """Thin wrapper around :class:`httpx.AsyncClient` shared by all resources."""

    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/",
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(
        cls, config: AppConfig, *, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "AdminApiClient":
        return cls(
            config.api_base_url,
            token=config.api_token,
            timeout=config.request_timeout,
            transport=transport,
        )

    @property
    def http(self) -> httpx.AsyncClient:
        return self._client

    async def __aenter__(self) -> "AdminApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def resource(self, name: str) -> "RecordResource":
        return RecordResource(self, name)

    def uploads(self, *, chunk_size: int = DEFAULT_UPLOAD_CHUNK_SIZE) -> "UploadResource":
        return UploadResource(self, chunk_size=chunk_size)

    async def request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._client.request(method, path.lstrip("/"), **kwargs)
        if response.status_code >= 400:
            message = _error_message(response)
            LOGGER.warning("%s %s failed with %s: %s", method, path, response.status_code, message)
            raise ApiError(response.status_code, message)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()


class RecordResource:
    """CRUD access to one record collection, e.g. ``users`` or ``ai-agents``."""

    def __init__(self, client: AdminApiClient, name: str) -> None:
        self._client = client
        self._name = name.strip("/")

    @property
    def name(self) -> str:
        return self._name

    async def list(
        self,
        *,
        page: int = 1,
        limit: Optional[int] = None,
        search: Optional[str] = None,
        **filters: Any,
    ) -> ListPage:
        params: Dict[str, Any] = {"page": page}
        if limit is not None:
            params["limit"] = limit
        if search:
            params["search"] = search
        for key, value in filters.items():
            if value is None:
                continue
            params[key] = str(value).lower() if isinstance(value, bool) else value
        payload = await self._client.request("GET", self._name, params=params)
        return self._parse_list(payload, page=page, limit=limit)

    def _parse_list(self, payload: Any, *, page: int, limit: Optional[int]) -> ListPage:
        data = extract_data(payload)
        if isinstance(data, list):
            return ListPage(items=list(data), total=len(data), page=page, limit=limit)
        if not isinstance(data, Mapping):
            return ListPage(items=[], total=0, page=page, limit=limit)

        collection_key = self._name.rsplit("/", 1)[-1].replace("-", "_")
        items: List[Dict[str, Any]] = []
        for key in (*_LIST_KEYS, self._name.rsplit("/", 1)[-1], collection_key):
            value = data.get(key)
            if isinstance(value, list):
                items = list(value)
                break
        total = data.get("total")
        if total is None and isinstance(data.get("pagination"), Mapping):
            total = data["pagination"].get("total")
        extra = {
            key: value
            for key, value in data.items()
            if key not in {"total", "pagination"} and not isinstance(value, list)
        }
        return ListPage(
            items=items,
            total=int(total) if total is not None else len(items),
            page=int(data.get("page", page) or page),
            limit=limit,
            extra=extra,
        )

    async def get(self, record_id: str) -> Dict[str, Any]:
        return extract_data(await self._client.request("GET", f"{self._name}/{record_id}"))

    async def create(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        return extract_data(await self._client.request("POST", self._name, json=dict(record)))

    async def update(self, record_id: str, partial: Mapping[str, Any]) -> Dict[str, Any]:
        return extract_data(
            await self._client.request("PUT", f"{self._name}/{record_id}", json=dict(partial))
        )

    async def delete(self, record_id: str) -> None:
        await self._client.request("DELETE", f"{self._name}/{record_id}")


class UploadResource:
    """Multipart uploads to ``/uploads/upload`` with per-chunk progress."""

    path = "uploads/upload"

    def __init__(self, client: AdminApiClient, *, chunk_size: int = DEFAULT_UPLOAD_CHUNK_SIZE) -> None:
        self._client = client
        self._chunk_size = max(1, chunk_size)

    async def upload(
        self,
        file: LocalFile,
        *,
        kind: str,
        on_progress: Callable[[int, int], None],
    ) -> str:
        http = self._client.http
        prepared = http.build_request(
            "POST",
            self.path,
            data={"type": kind},
            files={"file": (file.name, file.data, file.content_type)},
        )
        body = prepared.read()
        total = len(body)
        chunk_size = self._chunk_size

        async def _stream() -> AsyncIterator[bytes]:
            sent = 0
            for start in range(0, total, chunk_size):
                chunk = body[start : start + chunk_size]
                yield chunk
                sent += len(chunk)
                on_progress(sent, total)

        try:
            payload = await self._client.request(
                "POST",
                self.path,
                content=_stream(),
                headers={
                    "Content-Type": prepared.headers["Content-Type"],
                    "Content-Length": str(total),
                },
            )
        except ApiError as error:
            raise UploadFailed(str(error)) from error
        except httpx.HTTPError as error:
            raise UploadFailed(f"Upload failed: {error}") from error

        data = extract_data(payload)
        url = data.get("url") if isinstance(data, Mapping) else None
        if not url and isinstance(data, Mapping) and isinstance(data.get("file"), Mapping):
            url = data["file"].get("url")
        if not url:
            raise UploadFailed("Upload response did not include a file URL")
        return str(url)


__all__ = [
    "AdminApiClient",
    "ApiError",
    "ListPage",
    "RecordResource",
    "UploadResource",
    "extract_data",
]
