# actor_persistence package

from .models import Event, Snapshot
from .codec import JsonPayloadCodec, PayloadRegistry, default_registry, register_payload
from .config import ProviderConfig, load_config
from .errors import (
    PersistenceError,
    ConfigError,
    SchemaMissing,
    EncodeError,
    DecodeError,
    WriteError,
    DuplicateIndexError,
    ReadError,
)
from .adaptors.sqlite import SQLiteProvider

__all__ = [
    "Event",
    "Snapshot",
    "JsonPayloadCodec",
    "PayloadRegistry",
    "default_registry",
    "register_payload",
    "ProviderConfig",
    "load_config",
    "PersistenceError",
    "ConfigError",
    "SchemaMissing",
    "EncodeError",
    "DecodeError",
    "WriteError",
    "DuplicateIndexError",
    "ReadError",
    "SQLiteProvider",
]
