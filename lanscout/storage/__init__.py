"""Persistence of host and service inventories between scan cycles."""

from .snapshots import MemorySnapshotStore, SnapshotStore, SqliteSnapshotStore

__all__ = [
    "MemorySnapshotStore",
    "SnapshotStore",
    "SqliteSnapshotStore",
]
