"""Tests for the SQLModel store on an in-memory SQLite database."""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Relationship, SQLModel

from repokit.adapters.store import SqlStore, StoreProtocol
from repokit.services.repository import (
    Clause,
    EntityNotFoundError,
    InClause,
    OrderSpec,
    QueryState,
    RangeClause,
    Repository,
    RepositoryError,
    RepositorySettings,
    SortDirection,
    ValidationFailure,
)


class Team(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    name: str
    members: list["Member"] = Relationship(back_populates="team")


class Member(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True)
    score: int = 0
    team_id: int | None = Field(default=None, foreign_key="team.id")
    team: Team | None = Relationship(back_populates="members")


@pytest_asyncio.fixture
async def stores():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    teams = SqlStore(Team, engine, connection_name="main")
    members = SqlStore(Member, engine, connection_name="main", owns_engine=True)
    await teams.create_schema()
    await members.create_schema()
    yield teams, members
    await members.cleanup()


async def seed(stores) -> None:
    teams, members = stores
    red = await teams.create({"name": "red"})
    blue = await teams.create({"name": "blue"})
    for email, score, team in (
        ("a@x.com", 3, red),
        ("b@x.com", 1, red),
        ("c@y.org", 2, blue),
    ):
        await members.create({"email": email, "score": score, "team_id": team.id})


@pytest.mark.integration
class TestSqlStore:
    @pytest.mark.asyncio
    async def test_satisfies_protocol(self, stores) -> None:
        _, members = stores
        assert isinstance(members, StoreProtocol)
        assert members.entity_name == "Member"
        assert members.connection_name == "main"

    @pytest.mark.asyncio
    async def test_rejects_unknown_primary_key(self, stores) -> None:
        _, members = stores
        with pytest.raises(ValueError, match="primary key"):
            SqlStore(Member, members.engine, primary_key="uuid")

    @pytest.mark.asyncio
    async def test_fetch_translates_clauses(self, stores) -> None:
        await seed(stores)
        _, members = stores

        liked = await members.fetch(
            QueryState(
                wheres=(Clause("email", "like", "%@X.COM"),),
                orders=(OrderSpec("score", SortDirection.DESC),),
            ),
        )
        ranged = await members.fetch(
            QueryState(
                where_not_betweens=(RangeClause("score", 2, 3, negated=True),),
            ),
        )
        excluded = await members.fetch(
            QueryState(
                where_not_ins=(InClause("email", ("a@x.com",), negated=True),),
                wheres=(Clause("score", "<>", 1),),
            ),
        )
        limited = await members.fetch(QueryState(orders=(OrderSpec("id"),), limit=2))

        assert [m.email for m in liked] == ["a@x.com", "b@x.com"]
        assert [m.email for m in ranged] == ["b@x.com"]
        assert [m.email for m in excluded] == ["c@y.org"]
        assert [m.id for m in limited] == [1, 2]

    @pytest.mark.asyncio
    async def test_unknown_column_raises(self, stores) -> None:
        _, members = stores
        with pytest.raises(RepositoryError, match="Unknown Member column"):
            await members.fetch(QueryState(wheres=(Clause("rank", "=", 1),)))

    @pytest.mark.asyncio
    async def test_paginate_and_sum(self, stores) -> None:
        await seed(stores)
        _, members = stores

        page = await members.paginate(
            QueryState(orders=(OrderSpec("id", SortDirection.DESC),), page=1),
            page_size=2,
        )
        total = await members.sum(QueryState(wheres=(Clause("score", ">", 1),)), "score")
        empty = await members.sum(QueryState(wheres=(Clause("score", ">", 10),)), "score")

        assert [m.id for m in page.items] == [3, 2]
        assert (page.total, page.total_pages) == (3, 2)
        assert total == 5
        assert empty == 0

    @pytest.mark.asyncio
    async def test_relations_and_projection(self, stores) -> None:
        await seed(stores)
        teams, members = stores

        team = await teams.find(1, relations=("members",))
        (member,) = await members.fetch(
            QueryState(wheres=(Clause("email", "=", "c@y.org"),), columns=("id", "email")),
        )

        assert sorted(m.email for m in team.members) == ["a@x.com", "b@x.com"]
        assert (member.id, member.email) == (3, "c@y.org")
        with pytest.raises(RepositoryError, match="no relation"):
            await teams.find(1, relations=("owners",))

    @pytest.mark.asyncio
    async def test_find_and_find_by_column(self, stores) -> None:
        await seed(stores)
        _, members = stores

        assert (await members.find(2)).email == "b@x.com"
        assert await members.find(99) is None
        assert (await members.find_by_column("email", "c@y.org")).id == 3
        assert await members.find_by_column("email", "z@z.com") is None

    @pytest.mark.asyncio
    async def test_writes(self, stores) -> None:
        await seed(stores)
        _, members = stores

        member = await members.find(1)
        updated = await members.update(member, {"score": 30})
        assert updated.score == 30
        assert (await members.find(1)).score == 30

        with pytest.raises(ValidationFailure):
            await members.create({"email": "a@x.com"})
        with pytest.raises(ValidationFailure, match="unknown column"):
            await members.update(member, {"nickname": "ann"})
        with pytest.raises(EntityNotFoundError):
            await members.update(Member(id=99, email="q@q.com"), {"score": 1})

        await members.delete(updated)
        await members.delete(updated)
        assert await members.find(1) is None


@pytest.mark.integration
class TestRepositoryOverSql:
    @pytest.mark.asyncio
    async def test_repository_round_trip(self, stores) -> None:
        await seed(stores)
        _, members = stores
        repository = Repository(members, settings=RepositorySettings(per_page=2))

        page = await repository.advanced_paginate()
        ordered = await repository.where("score", 1, ">").order_by("email").get()
        pairs = await repository.to_array_with_none("id", "email")

        assert [m.id for m in page] == [3, 2]
        assert [m.email for m in ordered] == ["a@x.com", "c@y.org"]
        assert pairs == {0: "None", 1: "a@x.com", 2: "b@x.com", 3: "c@y.org"}
        assert await repository.where("email", "%@x.com", "like").count() == 2
