"""Store contract: the persistence engine repositories run queries against."""

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence

import typing as t

from repokit.cleanup import CleanupMixin
from repokit.services.repository._base import Page
from repokit.services.repository.query import Clause, QueryState


@t.runtime_checkable
class StoreProtocol(t.Protocol):
    entity_name: str
    connection_name: str
    primary_key: str

    def identity_of(self, entity: t.Any) -> t.Any: ...

    async def fetch(self, state: QueryState) -> list[t.Any]: ...

    async def paginate(self, state: QueryState, page_size: int) -> Page[t.Any]: ...

    async def sum(self, state: QueryState, column: str) -> int | float: ...

    async def find(
        self,
        entity_id: t.Any,
        relations: Sequence[str] = (),
        columns: Sequence[str] | None = None,
    ) -> t.Any | None: ...

    async def find_by_column(
        self,
        column: str,
        value: t.Any,
        relations: Sequence[str] = (),
        columns: Sequence[str] | None = None,
    ) -> t.Any | None: ...

    async def create(self, attributes: Mapping[str, t.Any]) -> t.Any: ...

    async def update(self, entity: t.Any, attributes: Mapping[str, t.Any]) -> t.Any: ...

    async def delete(self, entity: t.Any) -> None: ...


class StoreBase(CleanupMixin, ABC):
    """Shared plumbing for stores keyed by a single primary-key attribute.

    ``state`` arguments arrive with scopes already expanded into clauses;
    the pagination cursor (``state.page``/``state.page_name``) is resolved by
    the repository before :meth:`paginate` is called.
    """

    def __init__(
        self,
        model: type[t.Any],
        primary_key: str = "id",
        connection_name: str = "default",
    ) -> None:
        super().__init__()
        self.model = model
        self.entity_name = getattr(model, "__name__", str(model))
        self.primary_key = primary_key
        self.connection_name = connection_name

    def identity_of(self, entity: t.Any) -> t.Any:
        return getattr(entity, self.primary_key, None)

    @abstractmethod
    async def fetch(self, state: QueryState) -> list[t.Any]:
        """Return every entity matching the clauses, ordered and limited."""

    @abstractmethod
    async def paginate(self, state: QueryState, page_size: int) -> Page[t.Any]:
        """Return the ``state.page`` window of ``page_size`` matching entities."""

    @abstractmethod
    async def sum(self, state: QueryState, column: str) -> int | float:
        """Sum ``column`` over the matching entities, 0 when nothing matches."""

    @abstractmethod
    async def find(
        self,
        entity_id: t.Any,
        relations: Sequence[str] = (),
        columns: Sequence[str] | None = None,
    ) -> t.Any | None:
        """Primary-key lookup, ``None`` when absent."""

    async def find_by_column(
        self,
        column: str,
        value: t.Any,
        relations: Sequence[str] = (),
        columns: Sequence[str] | None = None,
    ) -> t.Any | None:
        state = QueryState(
            wheres=(Clause(column, "=", value),),
            relations=tuple(relations),
            columns=tuple(columns) if columns else None,
            limit=1,
        )
        rows = await self.fetch(state)
        return rows[0] if rows else None

    @abstractmethod
    async def create(self, attributes: Mapping[str, t.Any]) -> t.Any:
        """Persist a new entity and return it with its identity set."""

    @abstractmethod
    async def update(self, entity: t.Any, attributes: Mapping[str, t.Any]) -> t.Any:
        """Write ``attributes`` and return the entity re-read from the store."""

    @abstractmethod
    async def delete(self, entity: t.Any) -> None:
        """Remove the entity; removing an absent entity is not an error."""

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__} {self.entity_name}"
            f" on {self.connection_name!r}>"
        )
