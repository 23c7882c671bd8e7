"""
The SQLite persistence provider.

`SQLiteProvider` is the one object the actor runtime talks to. It validates
the configuration, wires the connector, codec and the two stores together,
provisions the schema once on `start()` when asked to, and otherwise forwards
each call to the store that owns it. It keeps no cache and buffers nothing.
"""
import logging
from typing import Any, AsyncIterator, Dict, Tuple

from ...codec import FernetCipher, JsonPayloadCodec
from ...config import DEFAULT_SCHEMA, ProviderConfig, load_config
from ...errors import ConfigError
from ...models import Event
from ...protocols import P, PayloadCodec, ProviderState, Visit
from .connection import SQLiteConnector
from .events import SQLiteEventLog
from .queries import event_table, snapshot_table
from .schema import SQLiteSchemaManager
from .snapshots import SQLiteSnapshotStore


class SQLiteProvider(ProviderState[P]):
    """
    Generic over the payload type, so `SQLiteProvider[OrderEvent]` types the
    payloads passed to `persist_event` and handed to `visit`.

    Usage:

        async with SQLiteProvider("sqlite:///var/lib/app/actors.db", auto_create_tables=True) as provider:
            await provider.persist_event("order-42", 1, OrderPlaced(...))
            snapshot, index = await provider.load_latest_snapshot("order-42")
            await provider.read_events("order-42", index + 1, state.apply)
    """

    def __init__(
        self,
        connection_target: str,
        auto_create_tables: bool = False,
        table_prefix: str = "",
        schema_name: str = DEFAULT_SCHEMA,
        *,
        codec: PayloadCodec | None = None,
        **options: Any,
    ):
        self.config = load_config(
            dict(
                connection_target=connection_target,
                auto_create_tables=auto_create_tables,
                table_prefix=table_prefix,
                schema_name=schema_name,
                **options,
            )
        )
        self.codec = codec if codec is not None else self._default_codec(self.config)
        self.connector = SQLiteConnector(self.config)

        events = event_table(self.config.schema_name, self.config.events_table)
        snapshots = snapshot_table(self.config.schema_name, self.config.snapshots_table)
        self.schema = SQLiteSchemaManager(self.connector, [snapshots, events])
        self.events = SQLiteEventLog(self.connector, self.codec, events)
        self.snapshots = SQLiteSnapshotStore(self.connector, self.codec, snapshots)

    @classmethod
    def from_config(
        cls, config: Dict[str, Any] | ProviderConfig, *, codec: PayloadCodec | None = None
    ) -> "SQLiteProvider[Any]":
        values = load_config(config).model_dump()
        return cls(values.pop("connection_target"), codec=codec, **values)

    @staticmethod
    def _default_codec(config: ProviderConfig) -> PayloadCodec:
        if config.encryption_key is None:
            return JsonPayloadCodec()
        try:
            cipher = FernetCipher(config.encryption_key)
        except (ValueError, TypeError) as e:
            raise ConfigError("encryption_key is not a valid Fernet key", cause=e) from e
        return JsonPayloadCodec(cipher=cipher)

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Prepares the database and provisions tables if `auto_create_tables` is set."""
        await self.connector.open_anchor()
        if self.config.auto_create_tables:
            await self.schema.ensure_schema()
        logging.info(
            f"Persistence provider ready on schema {self.config.schema_name} "
            f"(events={self.config.events_table}, snapshots={self.config.snapshots_table})"
        )

    async def close(self):
        await self.connector.close_anchor()

    async def persist_event(self, actor_name: str, index: int, payload: P) -> None:
        await self.events.append(actor_name, index, payload)

    async def persist_snapshot(self, actor_name: str, index: int, payload: P) -> None:
        await self.snapshots.save(actor_name, index, payload)

    async def read_events(self, actor_name: str, from_index: int, visit: Visit[P]) -> int:
        return await self.events.read_from(actor_name, from_index, visit)

    def iter_events(self, actor_name: str, from_index: int = 0) -> AsyncIterator[Event]:
        return self.events.iter_from(actor_name, from_index)

    async def load_latest_snapshot(self, actor_name: str) -> Tuple[P | None, int]:
        """Returns `(payload, index)` of the latest snapshot, or `(None, 0)` when there is none."""
        snapshot = await self.snapshots.load_latest(actor_name)
        if snapshot is None:
            return None, 0
        return snapshot.snapshot_data, snapshot.snapshot_index

    async def delete_events(self, actor_name: str, to_index_inclusive: int) -> int:
        return await self.events.delete_up_to(actor_name, to_index_inclusive)

    async def delete_snapshots(self, actor_name: str, to_index_inclusive: int) -> int:
        return await self.snapshots.delete_up_to(actor_name, to_index_inclusive)
