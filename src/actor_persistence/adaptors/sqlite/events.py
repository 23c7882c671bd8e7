"""
The append-only event log.

Each actor owns one stream of events ordered by a caller-supplied index. The
`(ActorName, EventIndex)` pair is unique, so a second append at the same index
fails instead of overwriting history. Reads are lazy, forward-only scans in
ascending index order and abort on the first row that cannot be decoded.
"""
import inspect
import logging
from contextlib import aclosing
from typing import Any, AsyncIterator

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
from ...models import Event, validate_index
from ...protocols import PayloadCodec, Visit
from .connection import SQLiteConnector, is_missing_table
from .queries import StreamTable


class SQLiteEventLog:
    def __init__(self, connector: SQLiteConnector, codec: PayloadCodec, table: StreamTable):
        self.connector = connector
        self.codec = codec
        self.table = table

    async def append(self, actor_name: str, index: int, payload: Any) -> Event:
        """Persists one event in its own transaction and returns the stored row."""
        try:
            event = Event(actor_name=actor_name, event_index=index, event_data=payload)
        except pydantic_core.ValidationError as e:
            raise WriteError(
                f"Invalid event row: {e}", operation="append", actor_name=actor_name, index=index, cause=e
            ) from e
        try:
            data = self.codec.encode(payload)
        except EncodeError as e:
            raise e.with_context(operation="append", actor_name=actor_name, index=index)

        try:
            async with self.connector.transaction() as conn:
                await conn.execute(
                    self.table.insert_sql(),
                    (event.id, event.actor_name, event.event_index, data),
                )
                async with conn.execute(self.table.select_created_sql(), (event.id,)) as cursor:
                    row = await cursor.fetchone()
        except aiosqlite.IntegrityError as e:
            logging.error(f"Duplicate event for actor {actor_name} at index {index}: {e}")
            raise DuplicateIndexError(
                "An event already exists at this index",
                operation="append", actor_name=actor_name, index=index, cause=e,
            ) from e
        except aiosqlite.Error as e:
            logging.error(f"Failed to append event for actor {actor_name} at index {index}: {e}")
            if is_missing_table(e):
                raise SchemaMissing(
                    f"Table {self.table.name} does not exist",
                    operation="append", actor_name=actor_name, index=index, cause=e,
                ) from e
            raise WriteError(
                "Failed to append event", operation="append", actor_name=actor_name, index=index, cause=e
            ) from e

        return Event(
            id=event.id,
            actor_name=event.actor_name,
            event_index=event.event_index,
            event_data=payload,
            created=row[0] if row else None,
        )

    async def iter_from(self, actor_name: str, index_start: int = 0) -> AsyncIterator[Event]:
        """
        An async generator over the events of one actor with index >= `index_start`,
        in ascending order. The connection is held until the generator is exhausted
        or closed; wrap early exits in `contextlib.aclosing`.
        """
        try:
            index_start = validate_index(index_start)
        except pydantic_core.ValidationError as e:
            raise ReadError(
                f"Invalid start index: {e}",
                operation="read_events", actor_name=actor_name, index=index_start, cause=e,
            ) from e
        index = None
        try:
            async with self.connector.connect() as conn:
                async with conn.execute(
                    self.table.select_from_sql(), (actor_name, index_start)
                ) as cursor:
                    async for row_id, index, data, created in cursor:
                        try:
                            payload = self.codec.decode(data)
                        except DecodeError as e:
                            logging.error(
                                f"Aborting replay of actor {actor_name}: event {index} cannot be decoded: {e}"
                            )
                            raise ReadError(
                                "Stored event cannot be decoded",
                                operation="read_events", actor_name=actor_name, index=index, cause=e,
                            ) from e
                        yield Event(
                            id=row_id,
                            actor_name=actor_name,
                            event_index=index,
                            event_data=payload,
                            created=created,
                        )
        except aiosqlite.Error as e:
            logging.error(f"Failed to read events for actor {actor_name}: {e}")
            if is_missing_table(e):
                raise SchemaMissing(
                    f"Table {self.table.name} does not exist",
                    operation="read_events", actor_name=actor_name, index=index_start, cause=e,
                ) from e
            raise ReadError(
                "Failed to read events",
                operation="read_events", actor_name=actor_name,
                index=index if index is not None else index_start, cause=e,
            ) from e

    async def read_from(self, actor_name: str, index_start: int, visit: Visit) -> int:
        """
        Calls `visit(payload)` for every event from `index_start` on, in order.
        `visit` may be a plain or an async callable. Returns the number of events
        visited once the stream is exhausted.
        """
        visited = 0
        async with aclosing(self.iter_from(actor_name, index_start)) as events:
            async for event in events:
                result = visit(event.event_data)
                if inspect.isawaitable(result):
                    await result
                visited += 1
        logging.debug(f"Replayed {visited} events for actor {actor_name} from index {index_start}")
        return visited

    async def delete_up_to(self, actor_name: str, inclusive_index: int) -> int:
        """Deletes the actor's events with index <= `inclusive_index`; returns the count."""
        try:
            inclusive_index = validate_index(inclusive_index)
        except pydantic_core.ValidationError as e:
            raise WriteError(
                f"Invalid delete bound: {e}",
                operation="delete_events", actor_name=actor_name, index=inclusive_index, cause=e,
            ) from e
        try:
            async with self.connector.transaction() as conn:
                cursor = await conn.execute(
                    self.table.delete_up_to_sql(), (actor_name, inclusive_index)
                )
                deleted = cursor.rowcount
                await cursor.close()
        except aiosqlite.Error as e:
            logging.error(f"Failed to delete events for actor {actor_name} up to {inclusive_index}: {e}")
            if is_missing_table(e):
                raise SchemaMissing(
                    f"Table {self.table.name} does not exist",
                    operation="delete_events", actor_name=actor_name, index=inclusive_index, cause=e,
                ) from e
            raise WriteError(
                "Failed to delete events",
                operation="delete_events", actor_name=actor_name, index=inclusive_index, cause=e,
            ) from e
        logging.debug(f"Deleted {deleted} events for actor {actor_name} up to index {inclusive_index}")
        return deleted
