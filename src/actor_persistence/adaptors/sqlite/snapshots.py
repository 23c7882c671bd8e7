"""
Point-in-time captures of actor state.

Snapshots share the event index space. Several may coexist per actor; the
latest is the one with the highest index. Older snapshots are only removed by
an explicit `delete_up_to`.
"""
import logging
from typing import Any

import aiosqlite
import pydantic_core

from ...errors import (
    DecodeError,
    DuplicateIndexError,
    EncodeError,
    ReadError,
    SchemaMissing,
    WriteError,
)
from ...models import Snapshot, validate_index
from ...protocols import PayloadCodec
from .connection import SQLiteConnector, is_missing_table
from .queries import StreamTable


class SQLiteSnapshotStore:
    def __init__(self, connector: SQLiteConnector, codec: PayloadCodec, table: StreamTable):
        self.connector = connector
        self.codec = codec
        self.table = table

    def _schema_missing(self, operation: str, actor_name: str, index: int | None, cause: Exception):
        return SchemaMissing(
            f"Table {self.table.name} does not exist",
            operation=operation, actor_name=actor_name, index=index, cause=cause,
        )

    async def save(self, actor_name: str, index: int, payload: Any) -> Snapshot:
        """Persists a snapshot at `index` in its own transaction."""
        try:
            snapshot = Snapshot(actor_name=actor_name, snapshot_index=index, snapshot_data=payload)
        except pydantic_core.ValidationError as e:
            raise WriteError(
                f"Invalid snapshot row: {e}", operation="save_snapshot", actor_name=actor_name, index=index, cause=e
            ) from e
        try:
            data = self.codec.encode(payload)
        except EncodeError as e:
            raise e.with_context(operation="save_snapshot", actor_name=actor_name, index=index)

        try:
            async with self.connector.transaction() as conn:
                await conn.execute(
                    self.table.insert_sql(),
                    (snapshot.id, snapshot.actor_name, snapshot.snapshot_index, data),
                )
                async with conn.execute(self.table.select_created_sql(), (snapshot.id,)) as cursor:
                    row = await cursor.fetchone()
        except aiosqlite.IntegrityError as e:
            logging.error(f"Duplicate snapshot for actor {actor_name} at index {index}: {e}")
            raise DuplicateIndexError(
                "A snapshot already exists at this index",
                operation="save_snapshot", actor_name=actor_name, index=index, cause=e,
            ) from e
        except aiosqlite.Error as e:
            logging.error(f"Failed to save snapshot for actor {actor_name} at index {index}: {e}")
            if is_missing_table(e):
                raise self._schema_missing("save_snapshot", actor_name, index, e) from e
            raise WriteError(
                "Failed to save snapshot", operation="save_snapshot", actor_name=actor_name, index=index, cause=e
            ) from e

        return Snapshot(
            id=snapshot.id,
            actor_name=snapshot.actor_name,
            snapshot_index=snapshot.snapshot_index,
            snapshot_data=payload,
            created=row[0] if row else None,
        )

    async def load_latest(self, actor_name: str) -> Snapshot | None:
        """Returns the snapshot with the highest index, or None if the actor has none."""
        try:
            async with self.connector.connect() as conn:
                async with conn.execute(self.table.select_latest_sql(), (actor_name,)) as cursor:
                    row = await cursor.fetchone()
        except aiosqlite.Error as e:
            logging.error(f"Failed to load snapshot for actor {actor_name}: {e}")
            if is_missing_table(e):
                raise self._schema_missing("load_snapshot", actor_name, None, e) from e
            raise ReadError(
                "Failed to load snapshot", operation="load_snapshot", actor_name=actor_name, cause=e
            ) from e

        if row is None:
            return None
        row_id, index, data, created = row
        try:
            payload = self.codec.decode(data)
        except DecodeError as e:
            logging.error(f"Snapshot {index} of actor {actor_name} cannot be decoded: {e}")
            raise ReadError(
                "Stored snapshot cannot be decoded",
                operation="load_snapshot", actor_name=actor_name, index=index, cause=e,
            ) from e
        return Snapshot(
            id=row_id,
            actor_name=actor_name,
            snapshot_index=index,
            snapshot_data=payload,
            created=created,
        )

    async def delete_up_to(self, actor_name: str, inclusive_index: int) -> int:
        """Deletes the actor's snapshots with index <= `inclusive_index`; returns the count."""
        try:
            inclusive_index = validate_index(inclusive_index)
        except pydantic_core.ValidationError as e:
            raise WriteError(
                f"Invalid delete bound: {e}",
                operation="delete_snapshots", actor_name=actor_name, index=inclusive_index, cause=e,
            ) from e
        try:
            async with self.connector.transaction() as conn:
                cursor = await conn.execute(
                    self.table.delete_up_to_sql(), (actor_name, inclusive_index)
                )
                deleted = cursor.rowcount
                await cursor.close()
        except aiosqlite.Error as e:
            logging.error(f"Failed to delete snapshots for actor {actor_name} up to {inclusive_index}: {e}")
            if is_missing_table(e):
                raise self._schema_missing("delete_snapshots", actor_name, inclusive_index, e) from e
            raise WriteError(
                "Failed to delete snapshots",
                operation="delete_snapshots", actor_name=actor_name, index=inclusive_index, cause=e,
            ) from e
        logging.debug(f"Deleted {deleted} snapshots for actor {actor_name} up to index {inclusive_index}")
        return deleted
