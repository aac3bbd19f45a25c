"""Adapters layer - storage implementations behind the key/value interface."""

from .key_value_store import AbstractKeyValueStore, InMemoryKeyValueStore, JsonFileKeyValueStore


__all__ = [
    "AbstractKeyValueStore",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
]
