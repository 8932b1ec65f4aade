"""Cache keys and tags for repository reads.

Both are scoped by entity, locale and connection, so two locales or two
databases never share an entry. Keys carry an 8 character digest of the
operation parameters; tags name a whole class of entries (every ``count``
result, every entry for one identity) so writes can drop them together.
"""

import hashlib
import json
from enum import Enum

import typing as t
from dataclasses import dataclass, field


class ListTag(str, Enum):
    """Tags covering results that any write can change."""

    ALL = "all"
    COUNT = "count"
    PAGINATE = "paginate"
    TO_ARRAY = "toArray"
    TO_ARRAY_WITH_NONE = "toArrayWithNone"
    COLUMN = "column-lookup"


def params_digest(params: t.Mapping[str, t.Any]) -> str:
    data = json.dumps(params, sort_keys=True, default=str)
    return hashlib.md5(data.encode(), usedforsecurity=False).hexdigest()[:8]


@dataclass(frozen=True)
class _Scoped:
    prefix: str
    entity: str
    locale: str
    connection: str

    @property
    def scope_prefix(self) -> str:
        return f"{self.prefix}:{self.entity.lower()}:{self.locale}:{self.connection}"


@dataclass(frozen=True)
class CacheKey(_Scoped):
    operation: str
    params: t.Mapping[str, t.Any] = field(default_factory=dict, hash=False)

    def render(self) -> str:
        key = f"{self.scope_prefix}:{self.operation}"
        if self.params:
            key = f"{key}:{params_digest(self.params)}"
        return key

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True)
class CacheTag(_Scoped):
    name: str

    @classmethod
    def for_item(
        cls,
        prefix: str,
        entity: str,
        locale: str,
        connection: str,
        entity_id: t.Any,
    ) -> "CacheTag":
        return cls(prefix, entity, locale, connection, f"item:{entity_id}")

    def render(self) -> str:
        return f"{self.scope_prefix}:tag:{self.name}"

    def __str__(self) -> str:
        return self.render()
