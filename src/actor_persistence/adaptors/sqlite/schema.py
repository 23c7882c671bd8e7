"""
Provisioning of the Events and Snapshots tables.

Both tables and their `(ActorName, <Stream>Index)` indexes are created with
`IF NOT EXISTS` statements inside a single `BEGIN IMMEDIATE` transaction.
Running it against an already provisioned schema changes nothing, and two
processes provisioning at once serialize on SQLite's write lock.
"""
import logging
from typing import List

import aiosqlite

from ...errors import WriteError, ReadError
from .connection import SQLiteConnector, quote_identifier
from .queries import StreamTable


class SQLiteSchemaManager:
    def __init__(self, connector: SQLiteConnector, tables: List[StreamTable]):
        self.connector = connector
        self.tables = tables

    async def ensure_schema(self):
        """Creates any missing table or index."""
        try:
            async with self.connector.transaction() as conn:
                for table in self.tables:
                    await conn.execute(table.create_table_sql())
                    await conn.execute(table.create_index_sql())
        except aiosqlite.Error as e:
            logging.error(f"Failed to provision schema {self.connector.schema}: {e}")
            raise WriteError(
                "Could not create persistence tables", operation="ensure_schema", cause=e
            ) from e
        logging.info(
            f"Schema {self.connector.schema} provisioned with tables "
            f"{', '.join(t.name for t in self.tables)}"
        )

    async def schema_exists(self) -> bool:
        """Returns True when every table is present."""
        master = f"{quote_identifier(self.connector.schema)}.sqlite_master"
        names = [t.name for t in self.tables]
        placeholders = ",".join("?" for _ in names)
        try:
            async with self.connector.connect() as conn:
                async with conn.execute(
                    f"SELECT name FROM {master} WHERE type = 'table' AND name IN ({placeholders})",
                    names,
                ) as cursor:
                    found = {row[0] async for row in cursor}
        except aiosqlite.Error as e:
            raise ReadError("Could not inspect schema", operation="schema_exists", cause=e) from e
        return found == set(names)
