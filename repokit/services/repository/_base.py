"""Repository errors, settings and shared value types."""

import math
from enum import Enum

import typing as t
from dataclasses import dataclass, field
from pydantic import Field, model_validator

from repokit.config import Settings
from repokit.depends import depends


class RepositoryError(Exception):
    """Base exception for repository operations."""

    def __init__(
        self,
        message: str,
        entity_type: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.entity_type = entity_type
        self.operation = operation
        super().__init__(message)


class EntityNotFoundError(RepositoryError):
    """Raised by strict lookups when no entity has the given identity."""

    def __init__(self, entity_type: str, entity_id: t.Any) -> None:
        super().__init__(
            f"{entity_type} with ID {entity_id} not found",
            entity_type=entity_type,
            operation="find_by_id",
        )
        self.entity_id = entity_id


NotFound = EntityNotFoundError


class ValidationFailure(RepositoryError):
    """Raised by a store that rejects the attributes of a create or update."""

    def __init__(
        self,
        entity_type: str,
        operation: str,
        errors: t.Sequence[str] = (),
    ) -> None:
        detail = "; ".join(errors) if errors else "rejected by store"
        super().__init__(
            f"Invalid {entity_type} attributes on {operation}: {detail}",
            entity_type=entity_type,
            operation=operation,
        )
        self.errors = list(errors)


class UnknownScopeError(RepositoryError):
    """Raised when a query references a scope nobody registered."""

    def __init__(self, scope: str, entity_type: str | None = None) -> None:
        super().__init__(
            f"Unknown scope '{scope}'",
            entity_type=entity_type,
            operation="scope",
        )
        self.scope = scope


class ScopeRegistrationError(RepositoryError):
    """Raised when a scope cannot be registered."""


class SortDirection(Enum):
    ASC = "asc"
    DESC = "desc"

    @classmethod
    def parse(cls, value: "SortDirection | str") -> "SortDirection":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            msg = f"Sort direction must be 'asc' or 'desc', got {value!r}"
            raise ValueError(msg) from None


@dataclass
class Page[EntityType]:
    """One window of a paginated result."""

    items: list[EntityType] = field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 25
    page_name: str = "page"

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return math.ceil(self.total / self.page_size)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> t.Iterator[EntityType]:
        return iter(self.items)


class RepositorySettings(Settings):
    """Repository configuration settings."""

    per_page: int = Field(default=25, ge=1, le=1000)
    max_per_page: int = Field(default=1000, ge=1)
    page_name: str = Field(default="page", min_length=1)

    @model_validator(mode="after")
    def per_page_within_max(self) -> "RepositorySettings":
        if self.per_page > self.max_per_page:
            msg = "per_page cannot exceed max_per_page"
            raise ValueError(msg)
        return self


depends.set(RepositorySettings)
