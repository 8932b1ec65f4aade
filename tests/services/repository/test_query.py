"""Tests for the query builder and query state."""

import pytest

from repokit.services.repository import (
    EMPTY_STATE,
    Clause,
    InClause,
    OrderSpec,
    QueryBuilder,
    QueryState,
    RangeClause,
    SortDirection,
)


class RecordingRepository:
    """Repository stand-in that records the state each terminal call receives."""

    def __init__(self) -> None:
        self.states: list[tuple[str, QueryState]] = []

    async def get(self, state=None):
        self.states.append(("get", state))
        return []

    async def count(self, state=None):
        self.states.append(("count", state))
        return 0

    async def first(self, state=None):
        self.states.append(("first", state))
        raise RuntimeError("store down")

    async def advanced_paginate(
        self,
        filters=None,
        sorts=None,
        page=None,
        limit=None,
        page_name=None,
        state=None,
    ):
        self.states.append(("advanced_paginate", state))
        return (filters, sorts, page, limit, page_name)


@pytest.fixture
def recorder() -> RecordingRepository:
    return RecordingRepository()


@pytest.fixture
def builder(recorder: RecordingRepository) -> QueryBuilder:
    return QueryBuilder(recorder)


@pytest.mark.unit
class TestQueryState:
    def test_zero_state(self) -> None:
        state = QueryState()
        assert state == EMPTY_STATE
        assert state.is_empty
        assert not state.has_filters
        assert not state.has_orders

    def test_has_filters(self) -> None:
        assert QueryState(wheres=(Clause("a", "=", 1),)).has_filters
        assert QueryState(scopes=(("active", None),)).has_filters
        assert QueryState(limit=0).has_filters
        assert not QueryState(columns=("a",), relations=("posts",)).has_filters
        assert not QueryState(page=3).has_filters

    def test_without_scopes(self) -> None:
        state = QueryState(scopes=(("active", None),), limit=2)
        assert state.without_scopes() == QueryState(limit=2)

    def test_describe_skips_empty_parts(self) -> None:
        state = QueryState(limit=5, orders=(OrderSpec("id", SortDirection.DESC),))
        assert set(state.describe()) == {"limit", "orders"}


@pytest.mark.unit
class TestQueryBuilder:
    def test_chain_methods_return_same_builder(self, builder: QueryBuilder) -> None:
        assert builder.where("email", "a@x.com") is builder
        assert builder.where_in("id", [1, 2]) is builder
        assert builder.order_by("id") is builder
        assert builder.limit(3) is builder
        assert builder.select("id", "email") is builder
        assert builder.with_relations("posts") is builder

    def test_accumulates_state(self, builder: QueryBuilder) -> None:
        builder.where("score", 10, ">=").where("name", "a%", "LIKE")
        builder.where_in("id", [1, 2]).where_not_in("id", 3)
        builder.where_between("score", [1, 5]).where_not_between("score", (7, 9))
        builder.order_by("name").order_by("id", "DESC")

        state = builder.snapshot()
        assert state.wheres == (
            Clause("score", ">=", 10),
            Clause("name", "like", "a%"),
        )
        assert state.where_ins == (InClause("id", (1, 2)),)
        assert state.where_not_ins == (InClause("id", (3,), negated=True),)
        assert state.where_betweens == (RangeClause("score", 1, 5),)
        assert state.where_not_betweens == (RangeClause("score", 7, 9, negated=True),)
        assert state.orders == (
            OrderSpec("name", SortDirection.ASC),
            OrderSpec("id", SortDirection.DESC),
        )

    def test_scalar_in_values_are_normalised(self, builder: QueryBuilder) -> None:
        builder.where_in("email", "a@x.com")
        assert builder.snapshot().where_ins[0].values == ("a@x.com",)

    def test_rejects_bad_clauses(self, builder: QueryBuilder) -> None:
        with pytest.raises(ValueError, match="Unsupported operator"):
            builder.where("id", 1, "~=")
        with pytest.raises(ValueError, match="at least one value"):
            builder.where_in("id", [])
        with pytest.raises(ValueError, match="BETWEEN"):
            builder.where_between("id", [1, 2, 3])
        with pytest.raises(ValueError, match="negative"):
            builder.limit(-1)
        with pytest.raises(ValueError, match="asc"):
            builder.order_by("id", "sideways")
        with pytest.raises(ValueError, match="start at 1"):
            builder.for_page(0)

    def test_order_by_many_keeps_mapping_order(self, builder: QueryBuilder) -> None:
        builder.order_by_many({"name": "desc", "id": SortDirection.ASC})
        assert builder.snapshot().orders == (
            OrderSpec("name", SortDirection.DESC),
            OrderSpec("id", SortDirection.ASC),
        )

    def test_select_accepts_list_and_star(self, builder: QueryBuilder) -> None:
        assert builder.select(["id", "email"]).snapshot().columns == ("id", "email")
        assert builder.select("*").snapshot().columns is None
        assert builder.select().snapshot().columns is None

    def test_relations_are_deduplicated(self, builder: QueryBuilder) -> None:
        builder.with_relations("posts", "team").with_relations(["posts"])
        assert builder.snapshot().relations == ("posts", "team")

    def test_with_scopes_merges_and_set_scopes_replaces(
        self,
        builder: QueryBuilder,
    ) -> None:
        builder.with_scopes({"active": None, "min_score": 1})
        builder.with_scopes({"min_score": 5})
        assert builder.snapshot().scopes == (("active", None), ("min_score", 5))

        builder.set_scopes({"recent": 7})
        assert builder.snapshot().scopes == (("recent", 7),)

    @pytest.mark.asyncio
    async def test_terminal_call_resets_state(
        self,
        builder: QueryBuilder,
        recorder: RecordingRepository,
    ) -> None:
        await builder.where("email", "a@x.com").limit(1).get()
        await builder.count()

        (_, first), (_, second) = recorder.states
        assert first.wheres == (Clause("email", "=", "a@x.com"),)
        assert first.limit == 1
        assert second == EMPTY_STATE

    @pytest.mark.asyncio
    async def test_state_resets_even_when_terminal_fails(
        self,
        builder: QueryBuilder,
        recorder: RecordingRepository,
    ) -> None:
        builder.where("email", "a@x.com")
        with pytest.raises(RuntimeError):
            await builder.first()
        assert builder.snapshot() == EMPTY_STATE

    @pytest.mark.asyncio
    async def test_paginate_forwards_arguments(
        self,
        builder: QueryBuilder,
        recorder: RecordingRepository,
    ) -> None:
        result = await builder.for_page(2, "p").paginate(
            filters={"active": True},
            limit=10,
        )
        assert result == ({"active": True}, None, None, 10, None)
        name, state = recorder.states[-1]
        assert name == "advanced_paginate"
        assert (state.page, state.page_name) == (2, "p")
