from ._base import (
    CacheBase,
    CacheBaseSettings,
    CacheUnavailable,
    Producer,
    TaggedCacheProtocol,
)
from .memory import CacheSettings, MemoryCache

__all__ = [
    "CacheBase",
    "CacheBaseSettings",
    "CacheSettings",
    "CacheUnavailable",
    "MemoryCache",
    "Producer",
    "TaggedCacheProtocol",
]
