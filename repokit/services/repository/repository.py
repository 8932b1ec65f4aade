"""Repository façade over a store.

Reads take the :class:`QueryState` a builder hands over (or the zero state
when called directly), expand its scopes into clauses and run it against the
store. The repository itself keeps no per-call state; only metrics live on
the instance.
"""

from collections.abc import Mapping

import typing as t

from repokit.cleanup import CleanupMixin
from repokit.depends import depends
from repokit.logger import Logger, get_logger

from ._base import EntityNotFoundError, Page, RepositorySettings, SortDirection
from .query import EMPTY_STATE, QueryBuilder, Queryable, QueryState
from .scopes import SCOPE_ATTRIBUTE, ScopeRegistry

if t.TYPE_CHECKING:
    from repokit.adapters.store import StoreProtocol

NONE_LABEL = "None"


@t.runtime_checkable
class RepositoryProtocol[EntityType](t.Protocol):
    """Operations shared by :class:`Repository` and cached wrappers."""

    @property
    def entity_name(self) -> str: ...

    @property
    def connection_name(self) -> str: ...

    @property
    def primary_key(self) -> str: ...

    def query(self) -> QueryBuilder: ...

    async def all(self, state: QueryState | None = None) -> list[EntityType]: ...

    async def get(self, state: QueryState | None = None) -> list[EntityType]: ...

    async def first(self, state: QueryState | None = None) -> EntityType | None: ...

    async def count(self, state: QueryState | None = None) -> int: ...

    async def sum(self, column: str, state: QueryState | None = None) -> int | float: ...

    async def find(
        self,
        entity_id: t.Any,
        state: QueryState | None = None,
    ) -> EntityType | None: ...

    async def find_by_id(
        self,
        entity_id: t.Any,
        state: QueryState | None = None,
    ) -> EntityType: ...

    async def find_by_column(
        self,
        value: t.Any,
        column: str,
        state: QueryState | None = None,
    ) -> EntityType | None: ...

    async def create(self, attributes: Mapping[str, t.Any]) -> EntityType: ...

    async def update(
        self,
        entity: EntityType,
        attributes: Mapping[str, t.Any],
    ) -> EntityType: ...

    async def update_by_id(
        self,
        entity_id: t.Any,
        attributes: Mapping[str, t.Any],
    ) -> EntityType: ...

    async def delete(self, entity: EntityType) -> None: ...

    async def delete_by_id(self, entity_id: t.Any) -> None: ...

    async def advanced_paginate(
        self,
        filters: Mapping[str, t.Any] | None = None,
        sorts: Mapping[str, SortDirection | str] | None = None,
        page: int | None = None,
        limit: int | None = None,
        page_name: str | None = None,
        state: QueryState | None = None,
    ) -> Page[EntityType]: ...

    async def to_array(
        self,
        key: str,
        column: str,
        scope: str | None = None,
        state: QueryState | None = None,
    ) -> dict[t.Any, t.Any]: ...

    async def to_array_with_none(
        self,
        key: str,
        column: str,
        scope: str | None = None,
        state: QueryState | None = None,
    ) -> dict[t.Any, t.Any]: ...


class Repository[EntityType](Queryable, CleanupMixin):
    """Store-backed repository with named scopes and operation metrics.

    Subclasses declare scopes as methods::

        class UserRepository(Repository[User]):
            @scope("active")
            def active(self, builder: QueryBuilder, args: t.Any) -> None:
                builder.where("active", True)

    and use them with ``repo.with_scopes({"active": None}).get()``.
    """

    def __init__(
        self,
        store: "StoreProtocol",
        settings: RepositorySettings | None = None,
        scopes: ScopeRegistry | None = None,
        logger: Logger | None = None,
    ) -> None:
        super().__init__()
        self._store = store
        self.settings = settings or depends.get_sync(RepositorySettings)
        self.scopes = scopes.copy() if scopes is not None else ScopeRegistry()
        self.logger = logger or get_logger(f"repository.{store.entity_name.lower()}")
        self._metrics: dict[str, int] = {}
        self._register_declared_scopes()

    def _register_declared_scopes(self) -> None:
        for attr in dir(type(self)):
            name = getattr(getattr(type(self), attr, None), SCOPE_ATTRIBUTE, None)
            if name is not None:
                self.scopes.register(name, getattr(self, attr), replace=True)

    @property
    def store(self) -> "StoreProtocol":
        return self._store

    @property
    def entity_name(self) -> str:
        return self._store.entity_name

    @property
    def connection_name(self) -> str:
        return self._store.connection_name

    @property
    def primary_key(self) -> str:
        return self._store.primary_key

    async def _increment_metric(self, operation: str, success: bool = True) -> None:
        metric_key = f"{operation}_{'success' if success else 'error'}"
        self._metrics[metric_key] = self._metrics.get(metric_key, 0) + 1

    async def _handle_error(self, error: Exception, operation: str) -> t.NoReturn:
        await self._increment_metric(operation, success=False)
        self.logger.debug(f"{self.entity_name}.{operation} failed: {error!r}")
        raise error

    def resolve_scopes(self, state: QueryState) -> QueryState:
        """Apply the state's scopes to a scratch builder and drop them."""
        if not state.scopes:
            return state
        builder = QueryBuilder(self, state.without_scopes())
        for name, args in state.scopes:
            self.scopes.apply(builder, name, args, self.entity_name)
        return builder.snapshot().without_scopes()

    async def all(self, state: QueryState | None = None) -> list[EntityType]:
        state = state or EMPTY_STATE
        try:
            rows = await self._store.fetch(
                QueryState(relations=state.relations, columns=state.columns),
            )
        except Exception as e:
            await self._handle_error(e, "all")
        await self._increment_metric("all")
        self.logger.debug(f"{self.entity_name}.all -> {len(rows)} rows")
        return rows

    async def get(self, state: QueryState | None = None) -> list[EntityType]:
        try:
            resolved = self.resolve_scopes(state or EMPTY_STATE)
            rows = await self._store.fetch(resolved)
        except Exception as e:
            await self._handle_error(e, "get")
        await self._increment_metric("get")
        self.logger.debug(f"{self.entity_name}.get {resolved.describe()} -> {len(rows)} rows")
        return rows

    async def first(self, state: QueryState | None = None) -> EntityType | None:
        try:
            resolved = self.resolve_scopes(state or EMPTY_STATE)
            limit = 1 if resolved.limit is None else min(resolved.limit, 1)
            rows = await self._store.fetch(resolved.replace(limit=limit))
        except Exception as e:
            await self._handle_error(e, "first")
        await self._increment_metric("first")
        return rows[0] if rows else None

    async def count(self, state: QueryState | None = None) -> int:
        try:
            resolved = self.resolve_scopes(state or EMPTY_STATE)
            rows = await self._store.fetch(resolved.replace(relations=()))
        except Exception as e:
            await self._handle_error(e, "count")
        await self._increment_metric("count")
        return len(rows)

    async def sum(self, column: str, state: QueryState | None = None) -> int | float:
        try:
            resolved = self.resolve_scopes(state or EMPTY_STATE)
            total = await self._store.sum(resolved, column)
        except Exception as e:
            await self._handle_error(e, "sum")
        await self._increment_metric("sum")
        return total

    async def find(
        self,
        entity_id: t.Any,
        state: QueryState | None = None,
    ) -> EntityType | None:
        """Primary-key lookup; only relations and projection of ``state`` apply."""
        state = state or EMPTY_STATE
        try:
            entity = await self._store.find(entity_id, state.relations, state.columns)
        except Exception as e:
            await self._handle_error(e, "find")
        await self._increment_metric("find")
        return entity

    async def find_by_id(
        self,
        entity_id: t.Any,
        state: QueryState | None = None,
    ) -> EntityType:
        state = state or EMPTY_STATE
        try:
            entity = await self._store.find(entity_id, state.relations, state.columns)
        except Exception as e:
            await self._handle_error(e, "find_by_id")
        if entity is None:
            await self._increment_metric("find_by_id", success=False)
            raise EntityNotFoundError(self.entity_name, entity_id)
        await self._increment_metric("find_by_id")
        return entity

    async def find_by_column(
        self,
        value: t.Any,
        column: str,
        state: QueryState | None = None,
    ) -> EntityType | None:
        state = state or EMPTY_STATE
        try:
            entity = await self._store.find_by_column(
                column,
                value,
                state.relations,
                state.columns,
            )
        except Exception as e:
            await self._handle_error(e, "find_by_column")
        await self._increment_metric("find_by_column")
        return entity

    async def create(self, attributes: Mapping[str, t.Any]) -> EntityType:
        try:
            entity = await self._store.create(attributes)
        except Exception as e:
            await self._handle_error(e, "create")
        await self._increment_metric("create")
        self.logger.debug(
            f"Created {self.entity_name} {self._store.identity_of(entity)}",
        )
        return entity

    async def update(
        self,
        entity: EntityType,
        attributes: Mapping[str, t.Any],
    ) -> EntityType:
        """Write ``attributes`` and return the entity as the store now holds it."""
        try:
            updated = await self._store.update(entity, attributes)
        except Exception as e:
            await self._handle_error(e, "update")
        await self._increment_metric("update")
        return updated

    async def update_by_id(
        self,
        entity_id: t.Any,
        attributes: Mapping[str, t.Any],
    ) -> EntityType:
        entity = await self.find_by_id(entity_id)
        return await self.update(entity, attributes)

    async def delete(self, entity: EntityType) -> None:
        try:
            await self._store.delete(entity)
        except Exception as e:
            await self._handle_error(e, "delete")
        await self._increment_metric("delete")
        self.logger.debug(
            f"Deleted {self.entity_name} {self._store.identity_of(entity)}",
        )

    async def delete_by_id(self, entity_id: t.Any) -> None:
        await self.delete(await self.find_by_id(entity_id))

    async def advanced_paginate(
        self,
        filters: Mapping[str, t.Any] | None = None,
        sorts: Mapping[str, SortDirection | str] | None = None,
        page: int | None = None,
        limit: int | None = None,
        page_name: str | None = None,
        state: QueryState | None = None,
    ) -> Page[EntityType]:
        """Paginate the chain's query plus equality ``filters``.

        Without ``sorts`` and without orders on the chain, rows come newest
        first (primary key descending). ``limit`` and ``page_name`` fall back
        to :class:`RepositorySettings`; the page falls back to the chain's
        ``for_page`` cursor, then to 1.
        """
        state = state or EMPTY_STATE
        try:
            builder = QueryBuilder(self, state)
            for column, value in (filters or {}).items():
                builder.where(column, value)
            if sorts:
                builder.order_by_many(sorts)
            elif not state.has_orders:
                builder.order_by(self.primary_key, SortDirection.DESC)
            page_size = min(limit or self.settings.per_page, self.settings.max_per_page)
            resolved = self.resolve_scopes(
                builder.snapshot().replace(
                    page=page or state.page or 1,
                    page_name=page_name or state.page_name or self.settings.page_name,
                ),
            )
            result = await self._store.paginate(resolved, page_size)
        except Exception as e:
            await self._handle_error(e, "advanced_paginate")
        await self._increment_metric("advanced_paginate")
        self.logger.debug(
            f"{self.entity_name}.advanced_paginate page {result.page}"
            f" ({len(result)}/{result.total})",
        )
        return result

    async def to_array(
        self,
        key: str,
        column: str,
        scope: str | None = None,
        state: QueryState | None = None,
    ) -> dict[t.Any, t.Any]:
        """Map ``key`` to ``column`` over the chain's rows, in query order."""
        state = state or EMPTY_STATE
        if scope:
            state = state.replace(scopes=tuple((dict(state.scopes) | {scope: None}).items()))
        rows = await self.get(state=state)
        return {getattr(row, key): getattr(row, column) for row in rows}

    async def to_array_with_none(
        self,
        key: str,
        column: str,
        scope: str | None = None,
        state: QueryState | None = None,
    ) -> dict[t.Any, t.Any]:
        """As :meth:`to_array`, led by a ``0 -> "None"`` entry that rows cannot replace.

        Rows whose key equals ``0`` are dropped. That includes ``False`` and
        ``0.0``, which hash like ``0`` and would otherwise overwrite the label.
        """
        pairs = await self.to_array(key, column, scope, state=state)
        return {0: NONE_LABEL} | {k: v for k, v in pairs.items() if k != 0}

    async def get_metrics(self) -> dict[str, t.Any]:
        return {
            "entity_type": self.entity_name,
            "connection": self.connection_name,
            "scopes": sorted(self.scopes),
            "operations": self._metrics.copy(),
            "settings": {
                "per_page": self.settings.per_page,
                "max_per_page": self.settings.max_per_page,
                "page_name": self.settings.page_name,
            },
        }

    async def _cleanup_resources(self) -> None:
        self._metrics.clear()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self._store!r}>"
