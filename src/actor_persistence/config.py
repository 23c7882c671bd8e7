"""
Provider configuration.

`ProviderConfig` is the single validated description of where a provider
stores its data and how its tables are named. Table and schema names end up
interpolated into SQL, so they are restricted to identifier characters here,
before any statement is built.
"""
import re
from typing import Any, Dict

import pydantic_core
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import ConfigError

DEFAULT_SCHEMA = "main"
DEFAULT_BUSY_TIMEOUT_MS = 5000

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ProviderConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    connection_target: str
    auto_create_tables: bool = False
    table_prefix: str = ""
    schema_name: str = DEFAULT_SCHEMA
    busy_timeout_ms: int = Field(DEFAULT_BUSY_TIMEOUT_MS, ge=0)
    encryption_key: str | None = None

    @field_validator("connection_target")
    @classmethod
    def _check_target(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("connection_target must not be empty")
        return value

    @field_validator("table_prefix")
    @classmethod
    def _check_prefix(cls, value: str) -> str:
        if value and not _IDENTIFIER.match(value):
            raise ValueError(f"table_prefix {value!r} is not a valid identifier")
        return value

    @field_validator("schema_name")
    @classmethod
    def _check_schema(cls, value: str) -> str:
        if not _IDENTIFIER.match(value):
            raise ValueError(f"schema_name {value!r} is not a valid identifier")
        # temp is private to each connection, and connections are per call.
        if value.lower() == "temp":
            raise ValueError("schema_name 'temp' cannot hold durable tables")
        return value

    @property
    def events_table(self) -> str:
        return f"{self.table_prefix}_Events" if self.table_prefix else "Events"

    @property
    def snapshots_table(self) -> str:
        return f"{self.table_prefix}_Snapshots" if self.table_prefix else "Snapshots"


def load_config(config: Dict[str, Any] | ProviderConfig) -> ProviderConfig:
    """
    Builds a `ProviderConfig` from a plain mapping.

    `url` is accepted as an alias of `connection_target`; giving both is an
    error. Validation failures are raised as `ConfigError`.
    """
    if isinstance(config, ProviderConfig):
        return config
    values = dict(config)
    if "url" in values:
        if "connection_target" in values:
            raise ConfigError("Provide either `url` or `connection_target`, not both.")
        values["connection_target"] = values.pop("url")
    if not values.get("connection_target"):
        raise ConfigError("`connection_target` must be provided in the configuration.")
    try:
        return ProviderConfig(**values)
    except pydantic_core.ValidationError as e:
        raise ConfigError(f"Invalid provider configuration: {e}", cause=e) from e
