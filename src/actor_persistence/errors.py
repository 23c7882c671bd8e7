"""
This module defines the exception hierarchy raised by the persistence layer.

Every error carries the operation, actor name and stream index it happened
under, so a failure surfaced to the actor runtime can be traced back to the
exact call without re-running it. Driver exceptions are never returned as-is;
they are chained (`raise ... from exc`) under one of these types.
"""
from typing import Any


class PersistenceError(Exception):
    """Base class for every error raised by this package."""

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        actor_name: str | None = None,
        index: int | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.actor_name = actor_name
        self.index = index
        self.cause = cause

    def with_context(
        self,
        *,
        operation: str | None = None,
        actor_name: str | None = None,
        index: int | None = None,
    ) -> "PersistenceError":
        """Fills in context fields that are still unset and returns the error."""
        if self.operation is None:
            self.operation = operation
        if self.actor_name is None:
            self.actor_name = actor_name
        if self.index is None:
            self.index = index
        return self

    def context(self) -> dict[str, Any]:
        return {
            key: value
            for key, value in (
                ("operation", self.operation),
                ("actor", self.actor_name),
                ("index", self.index),
            )
            if value is not None
        }

    def __str__(self) -> str:
        parts = [self.message]
        ctx = self.context()
        if ctx:
            parts.append("[" + ", ".join(f"{k}={v!r}" for k, v in ctx.items()) + "]")
        if self.cause is not None:
            parts.append(f"caused by: {self.cause}")
        return " ".join(parts)


class ConfigError(PersistenceError):
    """Missing or invalid provider configuration."""


class SchemaMissing(PersistenceError):  # noqa: N818
    """The Events/Snapshots tables do not exist and were not auto-created."""


class EncodeError(PersistenceError):
    """A payload could not be turned into its stored form."""


class DecodeError(PersistenceError):
    """A stored payload could not be reconstructed."""


class WriteError(PersistenceError):
    """A persist or delete did not commit."""


class DuplicateIndexError(WriteError):
    """A row already exists for this (actor, index) pair."""


class ReadError(PersistenceError):
    """A query failed or a scan was aborted before the stream was exhausted."""
