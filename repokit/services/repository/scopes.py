"""Named query scopes.

A scope is a reusable query modifier: a callable receiving a
:class:`~repokit.services.repository.query.QueryBuilder` and the arguments
the caller attached to the scope name. Repositories resolve the scopes of a
state into plain clauses before the store sees the query, so stores never
deal with scopes.

Names are normalised with :func:`inflection.underscore`, so ``"isActive"``,
``"IsActive"`` and ``"is_active"`` all address the same scope.
"""

import re
from collections.abc import Callable, Iterator

import typing as t
from inflection import underscore

from ._base import ScopeRegistrationError, UnknownScopeError

if t.TYPE_CHECKING:
    from .query import QueryBuilder

ScopeFunction = Callable[["QueryBuilder", t.Any], None]

_NAME = re.compile(r"^[a-z_][a-z0-9_]*$")

SCOPE_ATTRIBUTE = "__repokit_scope__"


def normalize_scope_name(name: str) -> str:
    normalized = underscore(str(name).strip().replace("-", "_"))
    if not _NAME.match(normalized):
        msg = f"Invalid scope name {name!r}"
        raise ScopeRegistrationError(msg, operation="register_scope")
    return normalized


def scope(name: str | None = None) -> Callable[[t.Callable[..., None]], t.Callable[..., None]]:
    """Mark a repository method as a named scope.

    The method is called as ``method(builder, args)`` on the repository
    instance. Without ``name`` the method name is used.
    """

    def decorator(method: t.Callable[..., None]) -> t.Callable[..., None]:
        setattr(method, SCOPE_ATTRIBUTE, normalize_scope_name(name or method.__name__))
        return method

    return decorator


class ScopeRegistry:
    """Scope name -> modifier function, validated when registered."""

    def __init__(self, scopes: t.Mapping[str, ScopeFunction] | None = None) -> None:
        self._scopes: dict[str, ScopeFunction] = {}
        for name, function in (scopes or {}).items():
            self.register(name, function)

    def register(
        self,
        name: str,
        function: ScopeFunction,
        replace: bool = False,
    ) -> ScopeFunction:
        if not callable(function):
            msg = f"Scope '{name}' must be callable, got {type(function).__name__}"
            raise ScopeRegistrationError(msg, operation="register_scope")
        key = normalize_scope_name(name)
        if key in self._scopes and not replace:
            msg = f"Scope '{key}' is already registered"
            raise ScopeRegistrationError(msg, operation="register_scope")
        self._scopes[key] = function
        return function

    def __call__(self, name: str) -> Callable[[ScopeFunction], ScopeFunction]:
        """Decorator form of :meth:`register`."""

        def decorator(function: ScopeFunction) -> ScopeFunction:
            return self.register(name, function)

        return decorator

    def unregister(self, name: str) -> None:
        self._scopes.pop(normalize_scope_name(name), None)

    def resolve(self, name: str, entity_type: str | None = None) -> ScopeFunction:
        try:
            key = normalize_scope_name(name)
        except ScopeRegistrationError:
            raise UnknownScopeError(name, entity_type) from None
        try:
            return self._scopes[key]
        except KeyError:
            raise UnknownScopeError(name, entity_type) from None

    def apply(
        self,
        builder: "QueryBuilder",
        name: str,
        args: t.Any = None,
        entity_type: str | None = None,
    ) -> None:
        self.resolve(name, entity_type)(builder, args)

    def copy(self) -> "ScopeRegistry":
        return ScopeRegistry(self._scopes)

    def __contains__(self, name: object) -> bool:
        try:
            return normalize_scope_name(str(name)) in self._scopes
        except ScopeRegistrationError:
            return False

    def __iter__(self) -> Iterator[str]:
        return iter(self._scopes)

    def __len__(self) -> int:
        return len(self._scopes)
