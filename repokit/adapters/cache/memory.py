from collections import defaultdict

import typing as t
from aiocache.backends.memory import SimpleMemoryCache
from aiocache.serializers import PickleSerializer
from pydantic import Field

from repokit.depends import depends
from repokit.logger import Logger

from ._base import CacheBase, CacheBaseSettings, TaggedCacheProtocol


class CacheSettings(CacheBaseSettings):
    tag_sweep_interval: int = Field(
        default=1000,
        ge=1,
        description="Taggings between sweeps of expired keys from the tag index",
    )


class MemoryCache(CacheBase):
    """Process-local tagged cache.

    Values live in an aiocache ``SimpleMemoryCache`` (pickled, so hits hand
    out copies); the tag index is a plain dict on the instance. Keys that
    expired in the backend leave the index when a read misses them, and a
    sweep every ``tag_sweep_interval`` taggings drops the ones never read
    again.
    """

    settings: CacheSettings

    def __init__(
        self,
        settings: CacheSettings | None = None,
        logger: Logger | None = None,
        **kwargs: t.Any,
    ) -> None:
        super().__init__(settings or CacheSettings(), logger)
        self._init_kwargs = kwargs
        self._tags: defaultdict[str, set[str]] = defaultdict(set)
        self._key_tags: defaultdict[str, set[str]] = defaultdict(set)
        self._taggings = 0

    async def _create_client(self) -> SimpleMemoryCache:
        cache = SimpleMemoryCache(
            serializer=PickleSerializer(),
            namespace=self.settings.namespace,
            **self._init_kwargs,
        )
        cache.timeout = 0.0
        return cache

    async def get_client(self) -> SimpleMemoryCache:
        return await self._ensure_client()

    def _forget(self, key: str) -> None:
        for tag in self._key_tags.pop(key, ()):
            keys = self._tags.get(tag)
            if keys is None:
                continue
            keys.discard(key)
            if not keys:
                del self._tags[tag]

    async def _get(self, key: str) -> t.Any:
        client = await self._ensure_client()
        value = await client.get(key)
        if value is None:
            self._forget(key)
        return value

    async def _set(self, key: str, value: t.Any, ttl: int | None) -> None:
        client = await self._ensure_client()
        await client.set(key, value, ttl=ttl)

    async def _delete(self, key: str) -> None:
        client = await self._ensure_client()
        await client.delete(key)
        self._forget(key)

    async def _tag(self, tag: str, key: str) -> None:
        self._tags[tag].add(key)
        self._key_tags[key].add(tag)
        self._taggings += 1
        if self._taggings >= self.settings.tag_sweep_interval:
            await self.prune_tags()

    async def _pop_tag(self, tag: str) -> set[str]:
        keys = self._tags.pop(tag, set())
        for key in keys:
            tags = self._key_tags.get(key)
            if tags is not None:
                tags.discard(tag)
                if not tags:
                    del self._key_tags[key]
        return keys

    async def prune_tags(self) -> int:
        """Drop keys the backend no longer holds from the tag index."""
        self._taggings = 0
        client = await self._ensure_client()
        expired = [key for key in list(self._key_tags) if not await client.exists(key)]
        for key in expired:
            self._forget(key)
        if expired:
            self.logger.debug(f"Pruned {len(expired)} expired keys from the tag index")
        return len(expired)

    async def _clear(self) -> None:
        client = await self._ensure_client()
        await client.clear(namespace=self.settings.namespace)
        self._tags.clear()
        self._key_tags.clear()

    def tagged_keys(self, tag: str) -> frozenset[str]:
        return frozenset(self._tags.get(tag, ()))

    @property
    def indexed_keys(self) -> int:
        return len(self._key_tags)

    async def _cleanup_resources(self) -> None:
        if self._client is not None:
            await self._client.clear(namespace=self.settings.namespace)
        self._tags.clear()
        self._key_tags.clear()
        self._client = None


depends.set(CacheSettings)
depends.set(TaggedCacheProtocol, MemoryCache(depends.get_sync(CacheSettings)))
