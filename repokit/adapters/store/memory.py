"""In-process store over pydantic models.

Rows are validated through the model on every write and handed out as deep
copies, so callers never alias stored state. Identities are allocated from
an integer sequence unless the caller supplies one.
"""

import re
from collections.abc import Awaitable, Callable, Mapping, Sequence
from functools import lru_cache

import inspect
import operator
import typing as t
from pydantic import BaseModel, ValidationError

from repokit.services.repository._base import (
    EntityNotFoundError,
    Page,
    RepositoryError,
    SortDirection,
    ValidationFailure,
)
from repokit.services.repository.query import Clause, QueryState

from ._base import StoreBase

RelationLoader = Callable[[t.Any], t.Any | Awaitable[t.Any]]

_ORDERING: dict[str, Callable[[t.Any, t.Any], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


@lru_cache(maxsize=256)
def _like_pattern(pattern: str) -> re.Pattern[str]:
    parts = []
    for char in pattern:
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)


def _clause_matches(clause: Clause, value: t.Any) -> bool:
    op = clause.operator
    if op == "=":
        return value == clause.value
    if op in ("!=", "<>"):
        return value != clause.value
    if value is None or clause.value is None:
        return False
    if op in _ORDERING:
        return _ORDERING[op](value, clause.value)
    matched = _like_pattern(str(clause.value)).fullmatch(str(value)) is not None
    return matched if op == "like" else not matched


def _sort_key(value: t.Any) -> tuple[bool, t.Any]:
    return (value is not None, value)


class MemoryStore(StoreBase):
    def __init__(
        self,
        model: type[BaseModel],
        primary_key: str = "id",
        connection_name: str = "memory",
        relations: Mapping[str, RelationLoader] | None = None,
    ) -> None:
        super().__init__(model, primary_key, connection_name)
        if primary_key not in model.model_fields:
            msg = f"{self.entity_name} has no primary key field '{primary_key}'"
            raise ValueError(msg)
        unknown = set(relations or ()) - set(model.model_fields)
        if unknown:
            msg = (
                f"Relations must be declared fields of {self.entity_name}: "
                f"{', '.join(sorted(unknown))}"
            )
            raise ValueError(msg)
        self.relations: dict[str, RelationLoader] = dict(relations or {})
        self._rows: dict[t.Any, BaseModel] = {}
        self._sequence = 0

    def __len__(self) -> int:
        return len(self._rows)

    def _check_columns(self, columns: t.Iterable[str], operation: str) -> None:
        unknown = [c for c in columns if c not in self.model.model_fields]
        if unknown:
            msg = f"Unknown {self.entity_name} column(s): {', '.join(unknown)}"
            raise RepositoryError(msg, entity_type=self.entity_name, operation=operation)

    def _referenced_columns(self, state: QueryState) -> list[str]:
        columns = [c.column for c in state.wheres]
        columns += [c.column for c in state.in_clauses()]
        columns += [c.column for c in state.range_clauses()]
        columns += [o.column for o in state.orders]
        columns += list(state.columns or ())
        return columns

    def _matches(self, entity: BaseModel, state: QueryState) -> bool:
        for clause in state.wheres:
            if not _clause_matches(clause, getattr(entity, clause.column)):
                return False
        for in_clause in state.in_clauses():
            value = getattr(entity, in_clause.column)
            if in_clause.negated:
                if value is None or value in in_clause.values:
                    return False
            elif value not in in_clause.values:
                return False
        for range_clause in state.range_clauses():
            value = getattr(entity, range_clause.column)
            if value is None:
                return False
            inside = range_clause.low <= value <= range_clause.high
            if inside == range_clause.negated:
                return False
        return True

    def _select(self, state: QueryState) -> list[BaseModel]:
        self._check_columns(self._referenced_columns(state), "fetch")
        rows = [row for row in self._rows.values() if self._matches(row, state)]
        for order in reversed(state.orders):
            rows.sort(
                key=lambda row, column=order.column: _sort_key(getattr(row, column)),
                reverse=order.direction == SortDirection.DESC,
            )
        return rows

    async def _present(
        self,
        row: BaseModel,
        relations: Sequence[str],
        columns: Sequence[str] | None,
    ) -> BaseModel:
        entity = row.model_copy(deep=True)
        for name in relations:
            loader = self.relations.get(name)
            if loader is None:
                msg = f"{self.entity_name} has no relation '{name}'"
                raise RepositoryError(msg, entity_type=self.entity_name, operation="with")
            loaded = loader(entity)
            if inspect.isawaitable(loaded):
                loaded = await loaded
            entity = entity.model_copy(update={name: loaded})
        if columns:
            picked = {c: getattr(entity, c) for c in columns}
            picked.update({name: getattr(entity, name) for name in relations})
            entity = self.model.model_construct(**picked)
        return entity

    async def fetch(self, state: QueryState) -> list[BaseModel]:
        rows = self._select(state)
        if state.limit is not None:
            rows = rows[: state.limit]
        return [await self._present(row, state.relations, state.columns) for row in rows]

    async def paginate(self, state: QueryState, page_size: int) -> Page[BaseModel]:
        page = state.page or 1
        rows = self._select(state)
        start = (page - 1) * page_size
        items = [
            await self._present(row, state.relations, state.columns)
            for row in rows[start : start + page_size]
        ]
        return Page(
            items=items,
            total=len(rows),
            page=page,
            page_size=page_size,
            page_name=state.page_name or "page",
        )

    async def sum(self, state: QueryState, column: str) -> int | float:
        self._check_columns([column], "sum")
        rows = self._select(state.replace(columns=None, relations=(), limit=None))
        return sum(v for row in rows if (v := getattr(row, column)) is not None)

    async def find(
        self,
        entity_id: t.Any,
        relations: Sequence[str] = (),
        columns: Sequence[str] | None = None,
    ) -> BaseModel | None:
        if columns:
            self._check_columns(columns, "find")
        row = self._rows.get(entity_id)
        if row is None:
            return None
        return await self._present(row, relations, columns)

    def _validate(self, data: Mapping[str, t.Any], operation: str) -> BaseModel:
        unknown = [key for key in data if key not in self.model.model_fields]
        if unknown:
            raise ValidationFailure(
                self.entity_name,
                operation,
                [f"{key}: unknown column" for key in unknown],
            )
        try:
            return self.model.model_validate(dict(data))
        except ValidationError as e:
            errors = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            ]
            raise ValidationFailure(self.entity_name, operation, errors) from e

    async def create(self, attributes: Mapping[str, t.Any]) -> BaseModel:
        data = dict(attributes)
        if data.get(self.primary_key) is None:
            self._sequence += 1
            while self._sequence in self._rows:
                self._sequence += 1
            data[self.primary_key] = self._sequence
        elif data[self.primary_key] in self._rows:
            raise ValidationFailure(
                self.entity_name,
                "create",
                [f"{self.primary_key}: {data[self.primary_key]} already exists"],
            )
        row = self._validate(data, "create")
        self._rows[self.identity_of(row)] = row
        return row.model_copy(deep=True)

    async def update(
        self,
        entity: t.Any,
        attributes: Mapping[str, t.Any],
    ) -> BaseModel:
        entity_id = self.identity_of(entity)
        current = self._rows.get(entity_id)
        if current is None:
            raise EntityNotFoundError(self.entity_name, entity_id)
        if attributes.get(self.primary_key, entity_id) != entity_id:
            raise ValidationFailure(
                self.entity_name,
                "update",
                [f"{self.primary_key}: primary key cannot change"],
            )
        row = self._validate(current.model_dump() | dict(attributes), "update")
        self._rows[entity_id] = row
        return row.model_copy(deep=True)

    async def delete(self, entity: t.Any) -> None:
        self._rows.pop(self.identity_of(entity), None)

    async def _cleanup_resources(self) -> None:
        self._rows.clear()
