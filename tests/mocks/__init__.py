"""Test doubles for stores and caches."""

from tests.mocks.cache import (
    FailingCache,
    FlakyFlushCache,
    FlushFailsOnceCache,
    WriteDroppingCache,
)
from tests.mocks.models import Post, User, load_posts
from tests.mocks.store import CountingStore

__all__ = [
    "CountingStore",
    "FailingCache",
    "FlakyFlushCache",
    "FlushFailsOnceCache",
    "Post",
    "User",
    "WriteDroppingCache",
    "load_posts",
]
