"""
This module defines the protocols the persistence layer is built around.

`PayloadCodec` is what the stores use to turn payloads into text and back, and
`ProviderState` is the contract the actor runtime depends on. Concrete
backends implement `ProviderState`; the runtime never imports them directly.
"""
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Protocol,
    Tuple,
    TypeVar,
)

from .models import Event

P = TypeVar("P")

Visit = Callable[[P], Awaitable[None] | None]


class PayloadCodec(Protocol):
    def encode(self, payload: Any) -> str:
        ...

    def decode(self, text: str) -> Any:
        ...


class ProviderState(Protocol[P]):
    """
    The storage protocol exposed to the actor runtime.
    Each call is independent; a persist returns only once it has committed.
    """

    async def persist_event(self, actor_name: str, index: int, payload: P) -> None:
        ...

    async def persist_snapshot(self, actor_name: str, index: int, payload: P) -> None:
        ...

    async def read_events(
        self, actor_name: str, from_index: int, visit: Visit[P]
    ) -> int:
        ...

    def iter_events(self, actor_name: str, from_index: int = 0) -> AsyncIterator[Event]:
        ...

    async def load_latest_snapshot(self, actor_name: str) -> Tuple[P | None, int]:
        ...

    async def delete_events(self, actor_name: str, to_index_inclusive: int) -> int:
        ...

    async def delete_snapshots(self, actor_name: str, to_index_inclusive: int) -> int:
        ...
