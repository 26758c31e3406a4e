"""
Realtime row-change channels

A channel is scoped to one table, one entity id and a set of change
actions. Consumers await `subscribe()` for the acknowledgment and then
iterate `changes()` until the channel is unsubscribed.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class ChangeAction(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """A row-level change notification"""
    action: ChangeAction = Field(..., alias="type")
    table: str
    record: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        populate_by_name = True

    @property
    def entity_id(self) -> Optional[str]:
        value = self.record.get("id")
        return str(value) if value is not None else None


DEFAULT_ACTIONS = (ChangeAction.INSERT, ChangeAction.UPDATE)


class RealtimeChannel(ABC):
    """Delivers matching change events in arrival order"""

    def __init__(
        self,
        name: str,
        table: str,
        entity_id: str,
        actions: Sequence[ChangeAction] = DEFAULT_ACTIONS,
    ):
        self.name = name
        self.table = table
        self.entity_id = str(entity_id)
        self.actions = tuple(actions)
        self.is_subscribed = False
        self._queue: "asyncio.Queue[Optional[ChangeEvent]]" = asyncio.Queue()

    def matches(self, event: ChangeEvent) -> bool:
        return (
            event.table == self.table
            and event.action in self.actions
            and event.entity_id == self.entity_id
        )

    def deliver(self, event: ChangeEvent) -> bool:
        """Queue `event` if this channel wants it"""
        if not self.is_subscribed or not self.matches(event):
            return False
        self._queue.put_nowait(event)
        return True

    @abstractmethod
    async def subscribe(self) -> None:
        """Open the channel; returns once the subscription is acknowledged"""

    async def unsubscribe(self) -> None:
        if not self.is_subscribed:
            return
        self.is_subscribed = False
        self._queue.put_nowait(None)
        logger.info(f"Unsubscribed from channel {self.name}")

    async def changes(self) -> AsyncIterator[ChangeEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


class RealtimeClient(ABC):
    """Factory for channels on one realtime backend"""

    @abstractmethod
    def channel(
        self,
        name: str,
        table: str,
        entity_id: str,
        actions: Sequence[ChangeAction] = DEFAULT_ACTIONS,
    ) -> RealtimeChannel:
        ...

    async def health_check(self) -> bool:
        return True


class InMemoryChannel(RealtimeChannel):
    def __init__(self, client: "InMemoryRealtimeClient", *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._client = client

    async def subscribe(self) -> None:
        self.is_subscribed = True
        self._client._channels.append(self)
        logger.info(f"Subscribed to channel {self.name}")

    async def unsubscribe(self) -> None:
        if self in self._client._channels:
            self._client._channels.remove(self)
        await super().unsubscribe()


class InMemoryRealtimeClient(RealtimeClient):
    """In-process broadcast, for local runs and tests"""

    def __init__(self):
        self._channels: List[InMemoryChannel] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._channels)

    def channel(self, name, table, entity_id, actions=DEFAULT_ACTIONS) -> InMemoryChannel:
        return InMemoryChannel(self, name, table, entity_id, actions)

    def publish(self, event: ChangeEvent) -> int:
        """Fan `event` out to every matching channel. Returns the delivery count."""
        return sum(1 for channel in list(self._channels) if channel.deliver(event))
