"""Baseline persistence backends."""

from .stores import KeyValueStore, MemoryStore, FileStore

__all__ = ["KeyValueStore", "MemoryStore", "FileStore"]
