"""Repository layer.

- ``QueryBuilder`` accumulates one call chain into an immutable ``QueryState``
- ``Repository`` runs states against a store (CRUD, lookups, aggregation,
  pagination, key/value projection)
- ``CachedRepository`` adds locale-aware read-through caching with
  tag-based invalidation on writes
- ``ScopeRegistry`` and ``@scope`` name reusable query modifiers
"""

from repokit.adapters.cache import CacheUnavailable

from ._base import (
    EntityNotFoundError,
    NotFound,
    Page,
    RepositoryError,
    RepositorySettings,
    ScopeRegistrationError,
    SortDirection,
    UnknownScopeError,
    ValidationFailure,
)
from .cache import CachedRepository, CacheMetrics, RepositoryCacheSettings
from .keys import CacheKey, CacheTag, ListTag
from .query import (
    EMPTY_STATE,
    Clause,
    InClause,
    OrderSpec,
    QueryBuilder,
    Queryable,
    QueryState,
    RangeClause,
)
from .repository import Repository, RepositoryProtocol
from .scopes import ScopeRegistry, scope

__all__ = [
    "EMPTY_STATE",
    "CacheKey",
    "CacheMetrics",
    "CacheTag",
    "CacheUnavailable",
    "CachedRepository",
    "Clause",
    "EntityNotFoundError",
    "InClause",
    "ListTag",
    "NotFound",
    "OrderSpec",
    "Page",
    "QueryBuilder",
    "QueryState",
    "Queryable",
    "RangeClause",
    "Repository",
    "RepositoryCacheSettings",
    "RepositoryError",
    "RepositoryProtocol",
    "RepositorySettings",
    "ScopeRegistrationError",
    "ScopeRegistry",
    "SortDirection",
    "UnknownScopeError",
    "ValidationFailure",
    "scope",
]
