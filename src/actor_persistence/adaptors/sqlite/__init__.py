from .provider import SQLiteProvider
from .schema import SQLiteSchemaManager
from .events import SQLiteEventLog
from .snapshots import SQLiteSnapshotStore

__all__ = ["SQLiteProvider", "SQLiteSchemaManager", "SQLiteEventLog", "SQLiteSnapshotStore"]
