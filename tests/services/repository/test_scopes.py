"""Tests for the scope registry."""

import pytest

from repokit.services.repository import (
    QueryBuilder,
    ScopeRegistrationError,
    ScopeRegistry,
    UnknownScopeError,
)


def active(builder: QueryBuilder, args) -> None:
    builder.where("active", True)


@pytest.mark.unit
class TestScopeRegistry:
    def test_names_are_normalised(self) -> None:
        registry = ScopeRegistry({"isActive": active})

        assert "is_active" in registry
        assert "IsActive" in registry
        assert "is-active" in registry
        assert list(registry) == ["is_active"]

    def test_duplicate_registration_is_rejected(self) -> None:
        registry = ScopeRegistry({"active": active})

        with pytest.raises(ScopeRegistrationError, match="already registered"):
            registry.register("active", active)

        registry.register("active", lambda builder, args: None, replace=True)
        assert len(registry) == 1

    def test_registration_validates_name_and_callable(self) -> None:
        registry = ScopeRegistry()

        with pytest.raises(ScopeRegistrationError, match="callable"):
            registry.register("active", "not a function")
        with pytest.raises(ScopeRegistrationError, match="Invalid scope name"):
            registry.register("9lives", active)

    def test_decorator_registers(self) -> None:
        registry = ScopeRegistry()

        @registry("min_score")
        def min_score(builder: QueryBuilder, args) -> None:
            builder.where("score", args, ">=")

        assert registry.resolve("minScore") is min_score

    def test_unknown_scope_raises(self) -> None:
        registry = ScopeRegistry()

        with pytest.raises(UnknownScopeError) as exc_info:
            registry.resolve("missing", "User")
        assert exc_info.value.scope == "missing"
        assert exc_info.value.entity_type == "User"

    def test_apply_passes_arguments(self) -> None:
        registry = ScopeRegistry()
        registry.register("min_score", lambda b, args: b.where("score", args, ">="))
        builder = QueryBuilder(repository=None)

        registry.apply(builder, "min_score", 7)

        (clause,) = builder.snapshot().wheres
        assert (clause.column, clause.operator, clause.value) == ("score", ">=", 7)

    def test_unregister_and_copy(self) -> None:
        registry = ScopeRegistry({"active": active})
        clone = registry.copy()
        registry.unregister("active")

        assert "active" not in registry
        assert "active" in clone
