"""
Storage backends for the vault.

The vault only needs prefix-addressable key-value semantics from the
remote store. Every call may target an explicit ``space``; ``None``
means the session's default space. Backends raise whatever their
transport raises; the vault wraps those failures as ``StorageError``.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Optional, TypeVar, Union

from .exceptions import StorageError, VaultError

logger = logging.getLogger("datavault")

StorableValue = Union[str, bytes]

T = TypeVar("T")


async def call_storage(
    awaitable: Awaitable[T],
    operation: str,
    path: str = "",
    timeout: Optional[float] = None,
) -> T:
    """Await a backend call, enforcing ``timeout``.

    Backend failures (including timeouts) are raised as StorageError.
    Task cancellation propagates unchanged.

    Raises:
        StorageError: If the backend call fails or times out.
    """
    try:
        if timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.CancelledError:
        raise
    except VaultError:
        raise
    except Exception as err:
        logger.warning("Storage %s failed for %s: %r", operation, path, err)
        raise StorageError(err, operation=operation, path=path) from err


@dataclass
class StoredValue:
    """Value returned by a storage read."""

    data: StorableValue
    metadata: dict[str, str] = field(default_factory=dict)

    def text(self) -> str:
        if isinstance(self.data, (bytes, bytearray)):
            return bytes(self.data).decode("utf-8")
        return self.data


class StorageBackend(ABC):
    """Abstract key-value storage used by the vault."""

    @abstractmethod
    async def get(self, path: str, *, space: Optional[str] = None) -> Optional[StoredValue]:
        """Read ``path``; None when absent."""

    @abstractmethod
    async def put(
        self,
        path: str,
        value: StorableValue,
        *,
        space: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        """Write ``value`` at ``path``."""

    @abstractmethod
    async def delete(self, path: str, *, space: Optional[str] = None) -> None:
        """Remove ``path``. Deleting an absent path is not an error."""

    @abstractmethod
    async def list(
        self,
        prefix: str,
        *,
        space: Optional[str] = None,
        remove_prefix: bool = False,
    ) -> list[str]:
        """List paths starting with ``prefix``."""

    @abstractmethod
    async def get_public(self, space: str, path: str) -> Optional[StoredValue]:
        """Anyone-can-read variant of get() against a public space."""


class MemoryStorage(StorageBackend):
    """In-process storage.

    Several principals can share one backing ``store`` by calling
    ``session(space)``, which returns a view bound to another default space.

    Args:
        space_id: Default space of this view.
        store: Shared mapping of space id -> {path: StoredValue}.
    """

    def __init__(
        self,
        space_id: str,
        store: Optional[dict[str, dict[str, StoredValue]]] = None,
    ) -> None:
        self.space_id = space_id
        self._store = store if store is not None else {}

    def session(self, space_id: str) -> "MemoryStorage":
        return MemoryStorage(space_id, store=self._store)

    def _space(self, space: Optional[str]) -> dict[str, StoredValue]:
        return self._store.setdefault(space or self.space_id, {})

    async def get(self, path: str, *, space: Optional[str] = None) -> Optional[StoredValue]:
        return self._space(space).get(path)

    async def put(
        self,
        path: str,
        value: StorableValue,
        *,
        space: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        if not isinstance(value, (str, bytes)):
            raise TypeError(f"Storage values must be str or bytes, got {type(value).__name__}")
        self._space(space)[path] = StoredValue(data=value, metadata=dict(metadata or {}))

    async def delete(self, path: str, *, space: Optional[str] = None) -> None:
        self._space(space).pop(path, None)

    async def list(
        self,
        prefix: str,
        *,
        space: Optional[str] = None,
        remove_prefix: bool = False,
    ) -> list[str]:
        paths = sorted(p for p in self._space(space) if p.startswith(prefix))
        if remove_prefix:
            return [p[len(prefix):] for p in paths]
        return paths

    async def get_public(self, space: str, path: str) -> Optional[StoredValue]:
        return self._store.get(space, {}).get(path)

    def __repr__(self) -> str:
        return f"<MemoryStorage space={self.space_id} spaces={len(self._store)}>"
