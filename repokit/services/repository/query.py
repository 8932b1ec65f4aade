"""Query state and the fluent builder that accumulates it.

A :class:`QueryBuilder` belongs to exactly one call chain. Chain methods only
record clauses; the terminal methods take an immutable :class:`QueryState`
snapshot, reset the builder to the zero state and hand the snapshot to the
repository the builder is bound to. Nothing here performs I/O.
"""

from collections.abc import Iterable, Iterator, Mapping, Sequence

import typing as t
from dataclasses import dataclass, fields, replace

from ._base import Page, SortDirection

if t.TYPE_CHECKING:
    from .repository import RepositoryProtocol

OPERATORS = frozenset({"=", "!=", "<>", "<", "<=", ">", ">=", "like", "not like"})


@dataclass(frozen=True)
class Clause:
    column: str
    operator: str
    value: t.Any


@dataclass(frozen=True)
class InClause:
    column: str
    values: tuple[t.Any, ...]
    negated: bool = False


@dataclass(frozen=True)
class RangeClause:
    column: str
    low: t.Any
    high: t.Any
    negated: bool = False


@dataclass(frozen=True)
class OrderSpec:
    column: str
    direction: SortDirection = SortDirection.ASC


@dataclass(frozen=True)
class QueryState:
    """Everything one call chain asked for, frozen at the terminal call."""

    wheres: tuple[Clause, ...] = ()
    where_ins: tuple[InClause, ...] = ()
    where_not_ins: tuple[InClause, ...] = ()
    where_betweens: tuple[RangeClause, ...] = ()
    where_not_betweens: tuple[RangeClause, ...] = ()
    orders: tuple[OrderSpec, ...] = ()
    relations: tuple[str, ...] = ()
    scopes: tuple[tuple[str, t.Any], ...] = ()
    columns: tuple[str, ...] | None = None
    limit: int | None = None
    page_name: str | None = None
    page: int | None = None

    @property
    def is_empty(self) -> bool:
        return self == EMPTY_STATE

    @property
    def has_filters(self) -> bool:
        """True when the state narrows the result set."""
        return bool(
            self.wheres
            or self.where_ins
            or self.where_not_ins
            or self.where_betweens
            or self.where_not_betweens
            or self.scopes
            or self.limit is not None,
        )

    @property
    def has_orders(self) -> bool:
        return bool(self.orders)

    def in_clauses(self) -> Iterator[InClause]:
        yield from self.where_ins
        yield from self.where_not_ins

    def range_clauses(self) -> Iterator[RangeClause]:
        yield from self.where_betweens
        yield from self.where_not_betweens

    def without_scopes(self) -> "QueryState":
        return replace(self, scopes=())

    def replace(self, **changes: t.Any) -> "QueryState":
        return replace(self, **changes)

    def describe(self) -> dict[str, t.Any]:
        """Non-empty parts of the state, for log lines."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) not in ((), None)
        }


EMPTY_STATE = QueryState()


def _as_tuple(values: t.Any) -> tuple[t.Any, ...]:
    if isinstance(values, str | bytes) or not isinstance(values, Iterable):
        return (values,)
    return tuple(values)


def _names(names: tuple[t.Any, ...]) -> tuple[str, ...]:
    if len(names) == 1 and not isinstance(names[0], str):
        names = tuple(names[0])
    return tuple(str(name) for name in names)


class QueryBuilder:
    """Fluent clause accumulator bound to one repository.

    Obtain one from a repository (``repo.where(...)``, ``repo.query()``);
    never share an instance between concurrent callers.
    """

    def __init__(
        self,
        repository: "RepositoryProtocol[t.Any]",
        state: QueryState | None = None,
    ) -> None:
        self.repository = repository
        self._load(state or EMPTY_STATE)

    def _load(self, state: QueryState) -> None:
        self._wheres: list[Clause] = list(state.wheres)
        self._where_ins: list[InClause] = list(state.where_ins)
        self._where_not_ins: list[InClause] = list(state.where_not_ins)
        self._where_betweens: list[RangeClause] = list(state.where_betweens)
        self._where_not_betweens: list[RangeClause] = list(state.where_not_betweens)
        self._orders: list[OrderSpec] = list(state.orders)
        self._relations: dict[str, None] = dict.fromkeys(state.relations)
        self._scopes: dict[str, t.Any] = dict(state.scopes)
        self._columns: tuple[str, ...] | None = state.columns
        self._limit: int | None = state.limit
        self._page_name: str | None = state.page_name
        self._page: int | None = state.page

    def snapshot(self) -> QueryState:
        """Return the accumulated state without resetting."""
        return QueryState(
            wheres=tuple(self._wheres),
            where_ins=tuple(self._where_ins),
            where_not_ins=tuple(self._where_not_ins),
            where_betweens=tuple(self._where_betweens),
            where_not_betweens=tuple(self._where_not_betweens),
            orders=tuple(self._orders),
            relations=tuple(self._relations),
            scopes=tuple(self._scopes.items()),
            columns=self._columns,
            limit=self._limit,
            page_name=self._page_name,
            page=self._page,
        )

    def reset(self) -> "QueryBuilder":
        self._load(EMPTY_STATE)
        return self

    def _consume(self) -> QueryState:
        state = self.snapshot()
        self.reset()
        return state

    def where(
        self,
        column: str,
        value: t.Any,
        operator: str = "=",
    ) -> "QueryBuilder":
        op = operator.strip().lower()
        if op not in OPERATORS:
            msg = f"Unsupported operator {operator!r} for column '{column}'"
            raise ValueError(msg)
        self._wheres.append(Clause(column, op, value))
        return self

    def where_in(self, column: str, values: t.Any) -> "QueryBuilder":
        self._where_ins.append(self._in_clause(column, values, negated=False))
        return self

    def where_not_in(self, column: str, values: t.Any) -> "QueryBuilder":
        self._where_not_ins.append(self._in_clause(column, values, negated=True))
        return self

    def where_between(self, column: str, values: Sequence[t.Any]) -> "QueryBuilder":
        self._where_betweens.append(self._range_clause(column, values, negated=False))
        return self

    def where_not_between(
        self,
        column: str,
        values: Sequence[t.Any],
    ) -> "QueryBuilder":
        self._where_not_betweens.append(
            self._range_clause(column, values, negated=True),
        )
        return self

    @staticmethod
    def _in_clause(column: str, values: t.Any, negated: bool) -> InClause:
        normalized = _as_tuple(values)
        if not normalized:
            msg = f"IN clause on '{column}' needs at least one value"
            raise ValueError(msg)
        return InClause(column, normalized, negated)

    @staticmethod
    def _range_clause(column: str, values: t.Any, negated: bool) -> RangeClause:
        normalized = _as_tuple(values)
        if len(normalized) != 2:
            msg = f"BETWEEN on '{column}' needs [low, high], got {len(normalized)} values"
            raise ValueError(msg)
        return RangeClause(column, normalized[0], normalized[1], negated)

    def order_by(
        self,
        column: str,
        direction: SortDirection | str = SortDirection.ASC,
    ) -> "QueryBuilder":
        self._orders.append(OrderSpec(column, SortDirection.parse(direction)))
        return self

    def order_by_many(
        self,
        orders: Mapping[str, SortDirection | str],
    ) -> "QueryBuilder":
        for column, direction in orders.items():
            self.order_by(column, direction)
        return self

    def select(self, *columns: t.Any) -> "QueryBuilder":
        names = _names(columns)
        self._columns = None if not names or "*" in names else names
        return self

    def limit(self, limit: int) -> "QueryBuilder":
        if limit < 0:
            msg = f"Limit must not be negative, got {limit}"
            raise ValueError(msg)
        self._limit = limit
        return self

    def with_relations(self, *relations: t.Any) -> "QueryBuilder":
        self._relations.update(dict.fromkeys(_names(relations)))
        return self

    def with_scopes(self, scopes: Mapping[str, t.Any]) -> "QueryBuilder":
        self._scopes.update(scopes)
        return self

    def set_scopes(self, scopes: Mapping[str, t.Any]) -> "QueryBuilder":
        self._scopes = dict(scopes)
        return self

    def for_page(self, page: int, page_name: str | None = None) -> "QueryBuilder":
        if page < 1:
            msg = f"Page numbers start at 1, got {page}"
            raise ValueError(msg)
        self._page = page
        if page_name is not None:
            self._page_name = page_name
        return self

    async def all(self) -> list[t.Any]:
        return await self.repository.all(state=self._consume())

    async def get(self) -> list[t.Any]:
        return await self.repository.get(state=self._consume())

    async def first(self) -> t.Any | None:
        return await self.repository.first(state=self._consume())

    async def count(self) -> int:
        return await self.repository.count(state=self._consume())

    async def sum(self, column: str) -> int | float:
        return await self.repository.sum(column, state=self._consume())

    async def find(self, entity_id: t.Any) -> t.Any | None:
        return await self.repository.find(entity_id, state=self._consume())

    async def find_by_id(self, entity_id: t.Any) -> t.Any:
        return await self.repository.find_by_id(entity_id, state=self._consume())

    async def find_by_column(self, value: t.Any, column: str) -> t.Any | None:
        return await self.repository.find_by_column(
            value,
            column,
            state=self._consume(),
        )

    async def paginate(
        self,
        filters: Mapping[str, t.Any] | None = None,
        sorts: Mapping[str, SortDirection | str] | None = None,
        page: int | None = None,
        limit: int | None = None,
        page_name: str | None = None,
    ) -> Page[t.Any]:
        return await self.repository.advanced_paginate(
            filters,
            sorts,
            page,
            limit,
            page_name,
            state=self._consume(),
        )

    async def to_array(
        self,
        key: str,
        column: str,
        scope: str | None = None,
    ) -> dict[t.Any, t.Any]:
        return await self.repository.to_array(key, column, scope, state=self._consume())

    async def to_array_with_none(
        self,
        key: str,
        column: str,
        scope: str | None = None,
    ) -> dict[t.Any, t.Any]:
        return await self.repository.to_array_with_none(
            key,
            column,
            scope,
            state=self._consume(),
        )

    def __repr__(self) -> str:
        return f"<QueryBuilder {self.snapshot().describe()!r}>"


class Queryable:
    """Chain starters shared by repositories and their cached wrappers.

    Every starter opens a fresh :class:`QueryBuilder` bound to ``self``, so
    two call chains never share accumulated state.
    """

    def query(self) -> QueryBuilder:
        return QueryBuilder(t.cast("RepositoryProtocol[t.Any]", self))

    def where(self, column: str, value: t.Any, operator: str = "=") -> QueryBuilder:
        return self.query().where(column, value, operator)

    def where_in(self, column: str, values: t.Any) -> QueryBuilder:
        return self.query().where_in(column, values)

    def where_not_in(self, column: str, values: t.Any) -> QueryBuilder:
        return self.query().where_not_in(column, values)

    def where_between(self, column: str, values: Sequence[t.Any]) -> QueryBuilder:
        return self.query().where_between(column, values)

    def where_not_between(self, column: str, values: Sequence[t.Any]) -> QueryBuilder:
        return self.query().where_not_between(column, values)

    def order_by(
        self,
        column: str,
        direction: SortDirection | str = SortDirection.ASC,
    ) -> QueryBuilder:
        return self.query().order_by(column, direction)

    def order_by_many(self, orders: Mapping[str, SortDirection | str]) -> QueryBuilder:
        return self.query().order_by_many(orders)

    def select(self, *columns: t.Any) -> QueryBuilder:
        return self.query().select(*columns)

    def limit(self, limit: int) -> QueryBuilder:
        return self.query().limit(limit)

    def with_relations(self, *relations: t.Any) -> QueryBuilder:
        return self.query().with_relations(*relations)

    def with_scopes(self, scopes: Mapping[str, t.Any]) -> QueryBuilder:
        return self.query().with_scopes(scopes)

    def set_scopes(self, scopes: Mapping[str, t.Any]) -> QueryBuilder:
        return self.query().set_scopes(scopes)

    def for_page(self, page: int, page_name: str | None = None) -> QueryBuilder:
        return self.query().for_page(page, page_name)
