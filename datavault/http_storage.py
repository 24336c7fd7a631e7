"""
HTTP storage backend over aiohttp.

Wire layout:

    GET    {base_url}/{space}/kv/{path}          read (404 → absent)
    PUT    {base_url}/{space}/kv/{path}          write; metadata as x-vault-* headers
    DELETE {base_url}/{space}/kv/{path}          delete
    GET    {base_url}/{space}/kv?prefix={p}      list → JSON array of paths
    GET    {base_url}/public/{space}/kv/{path}   anyone-can-read

Authorization is opaque to this module: an optional ``authorize``
callable returns the Authorization header value for (action, space, path).
Capabilities (UCAN, session keys) are built elsewhere.
"""
import inspect
import logging
from typing import Awaitable, Callable, Optional, Union
from urllib.parse import quote

import orjson
from aiohttp import ClientSession, ClientTimeout

from .storage import StorableValue, StorageBackend, StoredValue

logger = logging.getLogger("datavault")

AuthorizeFunction = Callable[[str, str, str], Union[Optional[str], Awaitable[Optional[str]]]]

_METADATA_PREFIX = "x-vault-"


class HTTPStorage(StorageBackend):
    """Key-value storage reached over HTTP.

    Args:
        base_url: Root URL of the storage service.
        space_id: Default space for this session.
        authorize: Optional provider of the Authorization header.
        session: Optional shared aiohttp ClientSession.
        timeout: Total request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        space_id: str,
        authorize: Optional[AuthorizeFunction] = None,
        session: Optional[ClientSession] = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.space_id = space_id
        self._authorize = authorize
        self._session = session
        self._owns_session = session is None
        self._timeout = ClientTimeout(total=timeout)

    async def __aenter__(self) -> "HTTPStorage":
        self._client()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def _client(self) -> ClientSession:
        if self._session is None or self._session.closed:
            self._session = ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    @staticmethod
    def _quote(segment: str) -> str:
        if any(part in (".", "..") for part in segment.split("/")):
            raise ValueError(f"Storage path cannot contain dot segments: {segment!r}")
        return quote(segment, safe="/:@")

    def _url(self, space: Optional[str], path: str = "", public: bool = False) -> str:
        space = self._quote(space or self.space_id)
        url = f"{self.base_url}/public/{space}/kv" if public else f"{self.base_url}/{space}/kv"
        return f"{url}/{self._quote(path)}" if path else url

    async def _headers(self, action: str, space: Optional[str], path: str) -> dict[str, str]:
        if self._authorize is None:
            return {}
        token = self._authorize(action, space or self.space_id, path)
        if inspect.isawaitable(token):
            token = await token
        return {"Authorization": token} if token else {}

    @staticmethod
    def _metadata(headers) -> dict[str, str]:
        return {
            k.lower(): v for k, v in headers.items()
            if k.lower().startswith(_METADATA_PREFIX)
        }

    async def _read(self, url: str, headers: dict[str, str]) -> Optional[StoredValue]:
        async with self._client().get(url, headers=headers) as response:
            if response.status == 404:
                return None
            response.raise_for_status()
            data = await response.read()
            return StoredValue(data=data, metadata=self._metadata(response.headers))

    async def get(self, path: str, *, space: Optional[str] = None) -> Optional[StoredValue]:
        headers = await self._headers("kv/get", space, path)
        return await self._read(self._url(space, path), headers)

    async def put(
        self,
        path: str,
        value: StorableValue,
        *,
        space: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        headers = await self._headers("kv/put", space, path)
        headers["Content-Type"] = (
            "application/octet-stream" if isinstance(value, bytes) else "application/json"
        )
        for key, val in (metadata or {}).items():
            if key.lower().startswith(_METADATA_PREFIX):
                headers[key] = val
        body = value.encode("utf-8") if isinstance(value, str) else value
        async with self._client().put(
            self._url(space, path), data=body, headers=headers,
        ) as response:
            response.raise_for_status()
        logger.debug("HTTP storage put: %s", path)

    async def delete(self, path: str, *, space: Optional[str] = None) -> None:
        headers = await self._headers("kv/del", space, path)
        async with self._client().delete(self._url(space, path), headers=headers) as response:
            if response.status != 404:
                response.raise_for_status()

    async def list(
        self,
        prefix: str,
        *,
        space: Optional[str] = None,
        remove_prefix: bool = False,
    ) -> list[str]:
        headers = await self._headers("kv/list", space, prefix)
        async with self._client().get(
            self._url(space), params={"prefix": prefix}, headers=headers,
        ) as response:
            response.raise_for_status()
            paths = orjson.loads(await response.read())
        if not isinstance(paths, list):
            raise ValueError("Storage list response is not a JSON array")
        paths = sorted(str(p) for p in paths if str(p).startswith(prefix))
        if remove_prefix:
            return [p[len(prefix):] for p in paths]
        return paths

    async def get_public(self, space: str, path: str) -> Optional[StoredValue]:
        return await self._read(self._url(space, path, public=True), {})

    def __repr__(self) -> str:
        return f"<HTTPStorage {self.base_url} space={self.space_id}>"
