"""
Connection handling for the SQLite backend.

Connections are opened per call and always closed on the way out, including
when the caller is cancelled. Write operations run inside an explicit
`BEGIN IMMEDIATE` transaction so each one commits completely or not at all.
"""
import logging
import os
import urllib.parse
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from ...config import DEFAULT_SCHEMA, ProviderConfig
from ...errors import ConfigError

MEMORY_DB = ":memory:"


def resolve_db_path(connection_target: str) -> str:
    """Turns a connection target into a SQLite path, or `:memory:`."""
    if "://" not in connection_target:
        return connection_target

    scheme = connection_target.split("://", 1)[0]
    if scheme != "sqlite":
        raise ConfigError(f"Unsupported scheme: {scheme}. Only 'sqlite' is supported.")

    parsed = urllib.parse.urlparse(connection_target)
    db_path = urllib.parse.unquote(parsed.path)
    if os.name == "nt" and db_path.startswith("/") and not db_path.startswith("//"):
        db_path = db_path[1:]
    elif db_path.startswith("//"):
        db_path = "/" + db_path.lstrip("/")
    if not db_path or db_path == "/" or db_path == f"/{MEMORY_DB}":
        db_path = MEMORY_DB
    return db_path


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class SQLiteConnector:
    """
    Opens connections to the configured database with the configured schema
    attached. An in-memory target is mapped to a private shared-cache database
    that lives as long as the anchor connection held between `open_anchor()`
    and `close_anchor()`.
    """

    def __init__(self, config: ProviderConfig):
        self.config = config
        self.schema = config.schema_name
        db_path = resolve_db_path(config.connection_target)
        self.is_memory_db = db_path == MEMORY_DB

        if self.is_memory_db:
            memdb_name = f"actor_persistence_{uuid.uuid4().hex}"
            self.database = f"file:{memdb_name}?mode=memory&cache=shared"
            self.schema_database = f"file:{memdb_name}_{self.schema}?mode=memory&cache=shared"
        else:
            self.database = db_path
            path = Path(db_path)
            self.schema_database = str(path.with_name(f"{path.stem}.{self.schema}{path.suffix}"))
        self._anchor: aiosqlite.Connection | None = None

    @property
    def attaches_schema(self) -> bool:
        return self.schema != DEFAULT_SCHEMA

    async def _open(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(
            self.database, uri=self.is_memory_db, isolation_level=None
        )
        try:
            await conn.execute(f"PRAGMA busy_timeout = {self.config.busy_timeout_ms};")
            if self.attaches_schema:
                await conn.execute(
                    f"ATTACH DATABASE ? AS {quote_identifier(self.schema)}",
                    (self.schema_database,),
                )
        except Exception:
            await conn.close()
            raise
        return conn

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        """Provides a fresh connection that is closed on every exit path."""
        conn = await self._open()
        try:
            yield conn
        finally:
            await conn.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Provides a connection inside a write transaction.
        It commits on successful exit and rolls back on any error.
        """
        async with self.connect() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise

    async def open_anchor(self):
        """Prepares the database for use by this provider."""
        if self.is_memory_db:
            if self._anchor is None:
                self._anchor = await self._open()
                logging.debug(f"Opened anchor connection for {self.database}")
            return
        async with self.connect() as conn:
            await conn.execute("PRAGMA journal_mode=WAL;")
            if self.attaches_schema:
                await conn.execute(f"PRAGMA {quote_identifier(self.schema)}.journal_mode=WAL;")

    async def close_anchor(self):
        if self._anchor is not None:
            await self._anchor.close()
            self._anchor = None


def is_missing_table(error: BaseException) -> bool:
    return isinstance(error, aiosqlite.OperationalError) and "no such table" in str(error)
