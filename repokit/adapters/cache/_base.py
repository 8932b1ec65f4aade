"""Tagged cache contract and shared read-through logic.

Backends implement a handful of primitives (get/set/delete plus a tag
index); :class:`CacheBase` turns them into ``remember_tagged``,
``put_tagged`` and ``flush_tag``. Any backend failure surfaces as
:class:`CacheUnavailable`, except a failed write of a freshly produced
value inside ``remember_tagged``, which is logged and absorbed so the
producer never has to run twice.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

import asyncio
import typing as t
from pydantic import Field

from repokit.cleanup import CleanupMixin
from repokit.config import Settings
from repokit.logger import Logger, get_logger

Producer = Callable[[], Awaitable[t.Any]]


class CacheUnavailable(Exception):
    """The cache backend could not be reached or failed an operation."""

    def __init__(self, operation: str, key: str | None = None) -> None:
        target = f" for '{key}'" if key else ""
        super().__init__(f"Cache {operation} failed{target}")
        self.operation = operation
        self.key = key


class CacheBaseSettings(Settings):
    default_ttl: int = Field(default=86400, ge=1, description="TTL in seconds")
    namespace: str = "repokit:"


@t.runtime_checkable
class TaggedCacheProtocol(t.Protocol):
    async def get(self, key: str) -> t.Any: ...

    async def remember_tagged(
        self,
        tag: str,
        key: str,
        ttl: int | None,
        producer: Producer,
    ) -> t.Any: ...

    async def put_tagged(self, tag: str, key: str, value: t.Any, ttl: int | None) -> None: ...

    async def flush_tag(self, tag: str) -> int: ...

    async def clear(self) -> None: ...


class CacheBase(CleanupMixin, ABC):
    def __init__(
        self,
        settings: CacheBaseSettings | None = None,
        logger: Logger | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings or CacheBaseSettings()
        self.logger = logger or get_logger(type(self).__module__)
        self._client: t.Any = None
        self._client_lock: asyncio.Lock | None = None

    async def _ensure_client(self) -> t.Any:
        if self._client is None:
            if self._client_lock is None:
                self._client_lock = asyncio.Lock()
            async with self._client_lock:
                if self._client is None:
                    self._client = await self._create_client()
                    self.register_resource(self._client)
        return self._client

    @abstractmethod
    async def _create_client(self) -> t.Any: ...

    @abstractmethod
    async def _get(self, key: str) -> t.Any: ...

    @abstractmethod
    async def _set(self, key: str, value: t.Any, ttl: int | None) -> None: ...

    @abstractmethod
    async def _delete(self, key: str) -> None: ...

    @abstractmethod
    async def _tag(self, tag: str, key: str) -> None:
        """Record ``key`` as a member of ``tag``."""

    @abstractmethod
    async def _pop_tag(self, tag: str) -> set[str]:
        """Forget ``tag`` and return the keys it held."""

    @abstractmethod
    async def _clear(self) -> None: ...

    def _ttl(self, ttl: int | None) -> int:
        return self.settings.default_ttl if ttl is None else ttl

    async def get(self, key: str) -> t.Any:
        try:
            return await self._get(key)
        except Exception as e:
            raise CacheUnavailable("get", key) from e

    async def remember_tagged(
        self,
        tag: str,
        key: str,
        ttl: int | None,
        producer: Producer,
    ) -> t.Any:
        """Return the cached value for ``key`` or produce, store and tag it.

        ``None`` values are returned but never stored.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached

        value = await producer()
        if value is None:
            return value
        try:
            await self._set(key, value, self._ttl(ttl))
            await self._tag(tag, key)
        except Exception as e:
            self.logger.warning(f"Cache write for '{key}' failed, value not cached: {e}")
        return value

    async def put_tagged(self, tag: str, key: str, value: t.Any, ttl: int | None) -> None:
        try:
            await self._set(key, value, self._ttl(ttl))
            await self._tag(tag, key)
        except Exception as e:
            raise CacheUnavailable("put", key) from e

    async def flush_tag(self, tag: str) -> int:
        """Delete every key stored under ``tag``; returns how many were held."""
        try:
            keys = await self._pop_tag(tag)
            for key in keys:
                await self._delete(key)
        except Exception as e:
            raise CacheUnavailable("flush", tag) from e
        return len(keys)

    async def delete(self, key: str) -> None:
        try:
            await self._delete(key)
        except Exception as e:
            raise CacheUnavailable("delete", key) from e

    async def clear(self) -> None:
        try:
            await self._clear()
        except Exception as e:
            raise CacheUnavailable("clear") from e
