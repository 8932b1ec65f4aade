"""Repository Caching Implementation.

Wraps a repository with read-through caching:

- keys and tags carry the entity, the active locale and the connection
- reads whose chain narrows or reorders the result bypass the cache
- every write flushes the list tags (and the item tag) for every locale
- updates write the fresh entity back under its ``find`` key
- an unavailable cache degrades to calling the wrapped repository
"""

from collections.abc import Awaitable, Callable, Mapping

import typing as t
from dataclasses import dataclass
from pydantic import Field

from repokit.adapters.cache import CacheUnavailable, TaggedCacheProtocol
from repokit.cleanup import CleanupMixin
from repokit.config import Settings
from repokit.depends import depends
from repokit.locales import LocaleProvider, get_locale
from repokit.logger import Logger, get_logger

from ._base import Page, SortDirection
from .keys import CacheKey, CacheTag, ListTag
from .query import EMPTY_STATE, Queryable, QueryState
from .repository import RepositoryProtocol


@dataclass
class CacheMetrics:
    """Cache performance metrics."""

    hits: int = 0
    misses: int = 0
    writes: int = 0
    invalidations: int = 0
    errors: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    @property
    def total_operations(self) -> int:
        return self.hits + self.misses + self.writes


class RepositoryCacheSettings(Settings):
    """Repository cache configuration settings."""

    enabled: bool = True
    ttl_minutes: int = Field(default=1440, ge=1, description="Entry TTL in minutes")
    key_prefix: str = Field(default="repo", min_length=1)

    @property
    def ttl_seconds(self) -> int:
        return self.ttl_minutes * 60


def _shape(state: QueryState) -> dict[str, t.Any]:
    shape: dict[str, t.Any] = {}
    if state.columns:
        shape["columns"] = list(state.columns)
    if state.relations:
        shape["relations"] = list(state.relations)
    return shape


def _changes_result(state: QueryState) -> bool:
    return state.has_filters or state.has_orders


class CachedRepository[EntityType](Queryable, CleanupMixin):
    """Repository wrapper that adds locale-aware caching.

    Exposes the wrapped repository's operations; builders opened from a
    cached repository run their terminal calls through it.
    """

    def __init__(
        self,
        repository: RepositoryProtocol[EntityType],
        cache: TaggedCacheProtocol | None = None,
        locales: LocaleProvider | None = None,
        settings: RepositoryCacheSettings | None = None,
        logger: Logger | None = None,
    ) -> None:
        super().__init__()
        self.wrapped = repository
        self.cache = cache or depends.get_sync(TaggedCacheProtocol)
        self.locales = locales or depends.get_sync(LocaleProvider)
        self.cache_settings = settings or depends.get_sync(RepositoryCacheSettings)
        self.logger = logger or get_logger(
            f"repository.cache.{repository.entity_name.lower()}",
        )
        self._metrics = CacheMetrics()

    @property
    def entity_name(self) -> str:
        return self.wrapped.entity_name

    @property
    def connection_name(self) -> str:
        return self.wrapped.connection_name

    @property
    def primary_key(self) -> str:
        return self.wrapped.primary_key

    def _key(
        self,
        operation: str,
        params: Mapping[str, t.Any] | None = None,
        locale: str | None = None,
    ) -> CacheKey:
        return CacheKey(
            self.cache_settings.key_prefix,
            self.entity_name,
            locale or get_locale(),
            self.connection_name,
            operation,
            dict(params or {}),
        )

    def _tag(self, name: str, locale: str | None = None) -> CacheTag:
        return CacheTag(
            self.cache_settings.key_prefix,
            self.entity_name,
            locale or get_locale(),
            self.connection_name,
            name,
        )

    def _item_tag(self, entity_id: t.Any, locale: str | None = None) -> CacheTag:
        return self._tag(f"item:{entity_id}", locale)

    async def _remember(
        self,
        tag: CacheTag,
        key: CacheKey,
        producer: Callable[[], Awaitable[t.Any]],
    ) -> t.Any:
        if not self.cache_settings.enabled:
            return await producer()

        produced = False
        result: t.Any = None

        async def tracked() -> t.Any:
            nonlocal produced, result
            produced = True
            result = await producer()
            return result

        try:
            value = await self.cache.remember_tagged(
                tag.render(),
                key.render(),
                self.cache_settings.ttl_seconds,
                tracked,
            )
        except CacheUnavailable as e:
            self._metrics.errors += 1
            if produced:
                self._metrics.misses += 1
                self.logger.warning(f"Cache unavailable, {key.render()} not stored: {e}")
                return result
            self.logger.warning(f"Cache unavailable, reading {key.render()} directly: {e}")
            return await producer()

        if produced:
            self._metrics.misses += 1
            if value is not None:
                self._metrics.writes += 1
            self.logger.debug(f"Cache miss {key.render()}")
        else:
            self._metrics.hits += 1
            self.logger.debug(f"Cache hit {key.render()}")
        return value

    async def _flush(self, tags: list[CacheTag]) -> int:
        """Flush every tag, returning how many failed."""
        failed = 0
        for tag in tags:
            try:
                await self.cache.flush_tag(tag.render())
            except CacheUnavailable as e:
                failed += 1
                self._metrics.errors += 1
                self.logger.warning(f"Cache invalidation failed at {tag.render()}: {e}")
                continue
            self._metrics.invalidations += 1
        return failed

    async def _invalidate(self, entity_id: t.Any = None) -> None:
        """Flush list tags, plus the item tag when known, for every locale."""
        if not self.cache_settings.enabled:
            return
        for locale in await self.locales.all_locales():
            tags = [self._tag(name.value, locale) for name in ListTag]
            if entity_id is not None:
                tags.append(self._item_tag(entity_id, locale))
            await self._flush(tags)

    async def _write_through(self, entity: t.Any) -> None:
        entity_id = getattr(entity, self.primary_key, None)
        if not self.cache_settings.enabled or entity is None or entity_id is None:
            return
        key = self._key("find", {"id": entity_id})
        try:
            await self.cache.put_tagged(
                self._item_tag(entity_id).render(),
                key.render(),
                entity,
                self.cache_settings.ttl_seconds,
            )
        except CacheUnavailable as e:
            self._metrics.errors += 1
            self.logger.warning(f"Cache write-through failed for {key.render()}: {e}")
            return
        self._metrics.writes += 1

    async def invalidate_all(self) -> None:
        """Flush every list tag of this entity type in every locale."""
        await self._invalidate()

    async def all(self, state: QueryState | None = None) -> list[EntityType]:
        state = state or EMPTY_STATE
        return await self._remember(
            self._tag(ListTag.ALL.value),
            self._key("all", _shape(state)),
            lambda: self.wrapped.all(state=state),
        )

    async def get(self, state: QueryState | None = None) -> list[EntityType]:
        return await self.wrapped.get(state=state)

    async def first(self, state: QueryState | None = None) -> EntityType | None:
        return await self.wrapped.first(state=state)

    async def sum(self, column: str, state: QueryState | None = None) -> int | float:
        return await self.wrapped.sum(column, state=state)

    async def count(self, state: QueryState | None = None) -> int:
        state = state or EMPTY_STATE
        if _changes_result(state):
            return await self.wrapped.count(state=state)
        return await self._remember(
            self._tag(ListTag.COUNT.value),
            self._key("count"),
            lambda: self.wrapped.count(state=state),
        )

    async def find(
        self,
        entity_id: t.Any,
        state: QueryState | None = None,
    ) -> EntityType | None:
        state = state or EMPTY_STATE
        return await self._remember(
            self._item_tag(entity_id),
            self._key("find", {"id": entity_id} | _shape(state)),
            lambda: self.wrapped.find(entity_id, state=state),
        )

    async def find_by_id(
        self,
        entity_id: t.Any,
        state: QueryState | None = None,
    ) -> EntityType:
        state = state or EMPTY_STATE
        return await self._remember(
            self._item_tag(entity_id),
            self._key("find", {"id": entity_id} | _shape(state)),
            lambda: self.wrapped.find_by_id(entity_id, state=state),
        )

    async def find_by_column(
        self,
        value: t.Any,
        column: str,
        state: QueryState | None = None,
    ) -> EntityType | None:
        state = state or EMPTY_STATE
        return await self._remember(
            self._tag(ListTag.COLUMN.value),
            self._key("find_by_column", {"column": column, "value": value} | _shape(state)),
            lambda: self.wrapped.find_by_column(value, column, state=state),
        )

    async def advanced_paginate(
        self,
        filters: Mapping[str, t.Any] | None = None,
        sorts: Mapping[str, SortDirection | str] | None = None,
        page: int | None = None,
        limit: int | None = None,
        page_name: str | None = None,
        state: QueryState | None = None,
    ) -> Page[EntityType]:
        state = state or EMPTY_STATE

        async def producer() -> Page[EntityType]:
            return await self.wrapped.advanced_paginate(
                filters,
                sorts,
                page,
                limit,
                page_name,
                state=state,
            )

        if filters or sorts or _changes_result(state):
            return await producer()
        params = {
            "page": page or state.page or 1,
            "limit": limit,
            "page_name": page_name or state.page_name,
        } | _shape(state)
        return await self._remember(
            self._tag(ListTag.PAGINATE.value),
            self._key("paginate", params),
            producer,
        )

    async def to_array(
        self,
        key: str,
        column: str,
        scope: str | None = None,
        state: QueryState | None = None,
    ) -> dict[t.Any, t.Any]:
        state = state or EMPTY_STATE
        if _changes_result(state):
            return await self.wrapped.to_array(key, column, scope, state=state)
        return await self._remember(
            self._tag(ListTag.TO_ARRAY.value),
            self._key("to_array", {"key": key, "column": column, "scope": scope}),
            lambda: self.wrapped.to_array(key, column, scope, state=state),
        )

    async def to_array_with_none(
        self,
        key: str,
        column: str,
        scope: str | None = None,
        state: QueryState | None = None,
    ) -> dict[t.Any, t.Any]:
        state = state or EMPTY_STATE
        if _changes_result(state):
            return await self.wrapped.to_array_with_none(key, column, scope, state=state)
        return await self._remember(
            self._tag(ListTag.TO_ARRAY_WITH_NONE.value),
            self._key("to_array_with_none", {"key": key, "column": column, "scope": scope}),
            lambda: self.wrapped.to_array_with_none(key, column, scope, state=state),
        )

    async def create(self, attributes: Mapping[str, t.Any]) -> EntityType:
        await self._invalidate()
        return await self.wrapped.create(attributes)

    async def update(
        self,
        entity: EntityType,
        attributes: Mapping[str, t.Any],
    ) -> EntityType:
        await self._invalidate(getattr(entity, self.primary_key, None))
        updated = await self.wrapped.update(entity, attributes)
        await self._write_through(updated)
        return updated

    async def update_by_id(
        self,
        entity_id: t.Any,
        attributes: Mapping[str, t.Any],
    ) -> EntityType:
        await self._invalidate(entity_id)
        updated = await self.wrapped.update_by_id(entity_id, attributes)
        await self._write_through(updated)
        return updated

    async def delete(self, entity: EntityType) -> None:
        await self._invalidate(getattr(entity, self.primary_key, None))
        await self.wrapped.delete(entity)

    async def delete_by_id(self, entity_id: t.Any) -> None:
        await self._invalidate(entity_id)
        await self.wrapped.delete_by_id(entity_id)

    async def get_cache_metrics(self) -> dict[str, t.Any]:
        """Get cache performance metrics.

        Returns:
            Dictionary of cache metrics
        """
        return {
            "entity_type": self.entity_name,
            "enabled": self.cache_settings.enabled,
            "metrics": {
                "hits": self._metrics.hits,
                "misses": self._metrics.misses,
                "writes": self._metrics.writes,
                "invalidations": self._metrics.invalidations,
                "errors": self._metrics.errors,
                "hit_rate": self._metrics.hit_rate,
                "total_operations": self._metrics.total_operations,
            },
            "settings": {
                "ttl_minutes": self.cache_settings.ttl_minutes,
                "key_prefix": self.cache_settings.key_prefix,
            },
        }

    async def _cleanup_resources(self) -> None:
        self._metrics = CacheMetrics()
        if isinstance(self.wrapped, CleanupMixin):
            await self.wrapped.cleanup()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} wrapping {self.wrapped!r}>"


depends.set(RepositoryCacheSettings)
