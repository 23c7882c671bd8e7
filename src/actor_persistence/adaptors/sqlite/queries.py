"""
SQL for the Events and Snapshots tables.

Both tables share one layout and differ only in their stream name, which
prefixes the index and data columns (`EventIndex`/`EventData`,
`SnapshotIndex`/`SnapshotData`). Names are validated by `ProviderConfig`
and quoted here; values are always bound as parameters.
"""
from .connection import quote_identifier

EVENT_STREAM = "Event"
SNAPSHOT_STREAM = "Snapshot"


class StreamTable:
    def __init__(self, schema: str, table: str, stream: str):
        self.schema = schema
        self.name = table
        self.stream = stream
        self.qualified_name = f"{quote_identifier(schema)}.{quote_identifier(table)}"
        self.index_column = f"{stream}Index"
        self.data_column = f"{stream}Data"
        self.index_name = f"IX_{table}_ActorNameAnd{stream}Index"

    def create_table_sql(self) -> str:
        return f"""
            CREATE TABLE IF NOT EXISTS {self.qualified_name} (
                Id TEXT NOT NULL CONSTRAINT {quote_identifier("PK_" + self.name)} PRIMARY KEY,
                ActorName TEXT NOT NULL CHECK (length(ActorName) > 0),
                {self.index_column} INTEGER NOT NULL,
                {self.data_column} TEXT NOT NULL,
                Created TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
            )
        """

    def create_index_sql(self) -> str:
        # SQLite takes the schema on the index name, not on the table.
        return f"""
            CREATE UNIQUE INDEX IF NOT EXISTS
                {quote_identifier(self.schema)}.{quote_identifier(self.index_name)}
            ON {quote_identifier(self.name)} (ActorName ASC, {self.index_column} ASC)
        """

    def insert_sql(self) -> str:
        return (
            f"INSERT INTO {self.qualified_name} (Id, ActorName, {self.index_column}, {self.data_column}) "
            "VALUES (?, ?, ?, ?)"
        )

    def select_created_sql(self) -> str:
        return f"SELECT Created FROM {self.qualified_name} WHERE Id = ?"

    def select_from_sql(self) -> str:
        return (
            f"SELECT Id, {self.index_column}, {self.data_column}, Created FROM {self.qualified_name} "
            f"WHERE ActorName = ? AND {self.index_column} >= ? ORDER BY {self.index_column} ASC"
        )

    def select_latest_sql(self) -> str:
        return (
            f"SELECT Id, {self.index_column}, {self.data_column}, Created FROM {self.qualified_name} "
            f"WHERE ActorName = ? ORDER BY {self.index_column} DESC LIMIT 1"
        )

    def delete_up_to_sql(self) -> str:
        return (
            f"DELETE FROM {self.qualified_name} "
            f"WHERE ActorName = ? AND {self.index_column} <= ?"
        )


def event_table(schema: str, table: str) -> StreamTable:
    return StreamTable(schema, table, EVENT_STREAM)


def snapshot_table(schema: str, table: str) -> StreamTable:
    return StreamTable(schema, table, SNAPSHOT_STREAM)
