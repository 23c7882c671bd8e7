"""
This module defines the row models for the two streams kept per actor.
Both are Pydantic models so that an actor name or an index that could never be
stored is rejected before a connection is opened.
"""
import uuid
from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, Field, TypeAdapter

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

StreamIndex = Annotated[int, Field(ge=INT64_MIN, le=INT64_MAX)]

_stream_index = TypeAdapter(StreamIndex)


def validate_index(value: int) -> int:
    """Checks a read or delete bound against the stored index range."""
    return _stream_index.validate_python(value)


def new_row_id() -> str:
    return str(uuid.uuid4())


class Event(BaseModel):
    id: str = Field(default_factory=new_row_id)
    actor_name: str = Field(min_length=1)
    event_index: StreamIndex
    event_data: Any = None  # Decoded payload
    created: datetime | None = None  # Assigned by the database


class Snapshot(BaseModel):
    id: str = Field(default_factory=new_row_id)
    actor_name: str = Field(min_length=1)
    snapshot_index: StreamIndex
    snapshot_data: Any = None
    created: datetime | None = None
