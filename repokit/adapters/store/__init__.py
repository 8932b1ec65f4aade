from ._base import StoreBase, StoreProtocol
from .memory import MemoryStore
from .sql import SqlStore

__all__ = ["MemoryStore", "SqlStore", "StoreBase", "StoreProtocol"]
