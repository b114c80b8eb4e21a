"""Remote data store backends."""

from .base import DataStore, StoreError
from .postgrest import PostgrestStore

__all__ = ["DataStore", "PostgrestStore", "StoreError"]
