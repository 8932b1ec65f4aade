"""SQL store over SQLModel table models and an async SQLAlchemy engine.

Each operation opens its own short-lived session (``expire_on_commit`` off),
so returned entities are detached: columns outside a projection and relations
that were not eager-loaded are not available on them.
"""

from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager

import typing as t
from sqlalchemy import func, not_
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.orm import load_only, selectinload
from sqlmodel import SQLModel, select
from sqlmodel.ext.asyncio.session import AsyncSession

from repokit.services.repository._base import (
    EntityNotFoundError,
    Page,
    RepositoryError,
    SortDirection,
    ValidationFailure,
)
from repokit.services.repository.query import Clause, QueryState

from ._base import StoreBase


class SqlStore(StoreBase):
    def __init__(
        self,
        model: type[SQLModel],
        engine: AsyncEngine,
        primary_key: str = "id",
        connection_name: str | None = None,
        owns_engine: bool = False,
    ) -> None:
        super().__init__(
            model,
            primary_key,
            connection_name or engine.url.database or engine.url.drivername,
        )
        self.engine = engine
        mapper = sa_inspect(model)
        self._columns = set(mapper.columns.keys())
        self._relationships = set(mapper.relationships.keys())
        if primary_key not in self._columns:
            msg = f"{self.entity_name} has no primary key column '{primary_key}'"
            raise ValueError(msg)
        if owns_engine:
            self.register_resource(engine)

    async def create_schema(self) -> None:
        """Create the model's table if it does not exist."""
        table = self.model.__table__  # type: ignore[attr-defined]
        async with self.engine.begin() as conn:
            await conn.run_sync(
                lambda sync_conn: SQLModel.metadata.create_all(sync_conn, tables=[table]),
            )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with AsyncSession(self.engine, expire_on_commit=False) as session:
            yield session

    def _column(self, name: str, operation: str) -> t.Any:
        if name not in self._columns:
            msg = f"Unknown {self.entity_name} column: {name}"
            raise RepositoryError(msg, entity_type=self.entity_name, operation=operation)
        return getattr(self.model, name)

    def _compare(self, clause: Clause) -> t.Any:
        column = self._column(clause.column, "fetch")
        value = clause.value
        match clause.operator:
            case "=":
                return column == value
            case "!=" | "<>":
                return column != value
            case "<":
                return column < value
            case "<=":
                return column <= value
            case ">":
                return column > value
            case ">=":
                return column >= value
            case "like":
                return column.ilike(value)
            case _:
                return column.not_ilike(value)

    def _filtered(self, stmt: t.Any, state: QueryState) -> t.Any:
        for clause in state.wheres:
            stmt = stmt.where(self._compare(clause))
        for in_clause in state.in_clauses():
            column = self._column(in_clause.column, "fetch")
            condition = (
                column.not_in(in_clause.values)
                if in_clause.negated
                else column.in_(in_clause.values)
            )
            stmt = stmt.where(condition)
        for range_clause in state.range_clauses():
            column = self._column(range_clause.column, "fetch")
            condition = column.between(range_clause.low, range_clause.high)
            stmt = stmt.where(not_(condition) if range_clause.negated else condition)
        return stmt

    def _options(
        self,
        relations: Sequence[str],
        columns: Sequence[str] | None,
    ) -> list[t.Any]:
        options = []
        if columns:
            options.append(load_only(*(self._column(c, "select") for c in columns)))
        for name in relations:
            if name not in self._relationships:
                msg = f"{self.entity_name} has no relation '{name}'"
                raise RepositoryError(msg, entity_type=self.entity_name, operation="with")
            options.append(selectinload(getattr(self.model, name)))
        return options

    def _ordered(self, stmt: t.Any, state: QueryState) -> t.Any:
        for order in state.orders:
            column = self._column(order.column, "order_by")
            stmt = stmt.order_by(
                column.desc() if order.direction == SortDirection.DESC else column.asc(),
            )
        return stmt

    def _select(self, state: QueryState) -> t.Any:
        stmt = select(self.model).options(*self._options(state.relations, state.columns))
        return self._ordered(self._filtered(stmt, state), state)

    async def fetch(self, state: QueryState) -> list[t.Any]:
        stmt = self._select(state)
        if state.limit is not None:
            stmt = stmt.limit(state.limit)
        async with self.session() as session:
            result = await session.exec(stmt)
            return list(result.all())

    async def paginate(self, state: QueryState, page_size: int) -> Page[t.Any]:
        page = state.page or 1
        counted = self._filtered(select(self.model), state).subquery()
        async with self.session() as session:
            total = (await session.exec(select(func.count()).select_from(counted))).one()
            stmt = self._select(state).offset((page - 1) * page_size).limit(page_size)
            items = list((await session.exec(stmt)).all())
        return Page(
            items=items,
            total=int(total),
            page=page,
            page_size=page_size,
            page_name=state.page_name or "page",
        )

    async def sum(self, state: QueryState, column: str) -> int | float:
        target = self._column(column, "sum")
        stmt = self._filtered(select(func.coalesce(func.sum(target), 0)), state)
        async with self.session() as session:
            return (await session.exec(stmt)).one()

    async def find(
        self,
        entity_id: t.Any,
        relations: Sequence[str] = (),
        columns: Sequence[str] | None = None,
    ) -> t.Any | None:
        async with self.session() as session:
            return await session.get(
                self.model,
                entity_id,
                options=self._options(relations, columns),
            )

    def _check_attributes(self, attributes: Mapping[str, t.Any], operation: str) -> None:
        unknown = [key for key in attributes if key not in self._columns]
        if unknown:
            raise ValidationFailure(
                self.entity_name,
                operation,
                [f"{key}: unknown column" for key in unknown],
            )

    async def create(self, attributes: Mapping[str, t.Any]) -> t.Any:
        self._check_attributes(attributes, "create")
        entity = self.model(**attributes)
        async with self.session() as session:
            session.add(entity)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ValidationFailure(self.entity_name, "create", [str(e.orig)]) from e
            await session.refresh(entity)
        return entity

    async def update(self, entity: t.Any, attributes: Mapping[str, t.Any]) -> t.Any:
        self._check_attributes(attributes, "update")
        entity_id = self.identity_of(entity)
        async with self.session() as session:
            current = await session.get(self.model, entity_id)
            if current is None:
                raise EntityNotFoundError(self.entity_name, entity_id)
            for key, value in attributes.items():
                setattr(current, key, value)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ValidationFailure(self.entity_name, "update", [str(e.orig)]) from e
            await session.refresh(current)
        return current

    async def delete(self, entity: t.Any) -> None:
        async with self.session() as session:
            current = await session.get(self.model, self.identity_of(entity))
            if current is None:
                return
            await session.delete(current)
            await session.commit()
