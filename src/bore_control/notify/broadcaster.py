"""Status broadcaster for dashboard subscribers.

Transport agnostic: the HTTP/WebSocket layer subscribes on connect, forwards
``Subscription`` messages to its socket, passes inbound text frames to
``handle_incoming`` and unsubscribes on disconnect.
"""

import asyncio
import json
import threading
import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

from ..common.logging import get_logger
from ..tunnel.models import (
    ClientStatusInfo,
    LifecycleEvent,
    ServerStatusInfo,
)

logger = get_logger(__name__)

DEFAULT_QUEUE_SIZE = 256


class MessageType(str, Enum):
    """Kinds of messages sent to subscribers."""

    SERVER_STATUS = "server_status"
    CLIENT_STATUS = "client_status"
    CONNECTION_EVENT = "connection_event"
    ERROR = "error"
    PONG = "pong"


class WsMessage(BaseModel):
    """A message pushed to dashboard subscribers."""

    model_config = ConfigDict(frozen=True)

    type: MessageType
    data: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.type == MessageType.PONG:
            return {"type": self.type.value}
        return {"type": self.type.value, "data": self.data}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def server_status(cls, server_id: int, status: str, **fields: Any) -> "WsMessage":
        return cls(
            type=MessageType.SERVER_STATUS,
            data={"server_id": server_id, "status": status, **fields},
        )

    @classmethod
    def client_status(cls, client_id: int, status: str, **fields: Any) -> "WsMessage":
        return cls(
            type=MessageType.CLIENT_STATUS,
            data={"client_id": client_id, "status": status, **fields},
        )

    @classmethod
    def from_snapshot(cls, snapshot: ServerStatusInfo | ClientStatusInfo) -> "WsMessage":
        """Status message built from a live (or stopped) snapshot."""
        fields = snapshot.model_dump(exclude={"id", "status"}, exclude_none=True)
        if isinstance(snapshot, ServerStatusInfo):
            return cls.server_status(snapshot.id, snapshot.status, **fields)
        return cls.client_status(snapshot.id, snapshot.status, **fields)

    @classmethod
    def connection_event(cls, event: LifecycleEvent) -> "WsMessage":
        return cls(type=MessageType.CONNECTION_EVENT, data=event.model_dump(mode="json"))

    @classmethod
    def error(cls, message: str, **fields: Any) -> "WsMessage":
        return cls(type=MessageType.ERROR, data={"message": message, **fields})

    @classmethod
    def pong(cls) -> "WsMessage":
        return cls(type=MessageType.PONG)


class SubscriberGone(Exception):
    """Raised when a message cannot be handed to a subscriber."""

    pass


class Subscription:
    """Outbound message queue of one dashboard connection."""

    def __init__(self, connection_id: str, maxsize: int = DEFAULT_QUEUE_SIZE):
        self.connection_id = connection_id
        self._queue: asyncio.Queue[WsMessage | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, message: WsMessage) -> None:
        """Queue ``message`` without blocking.

        Raises:
            SubscriberGone: If the subscription is closed or its queue is full
        """
        if self._closed:
            raise SubscriberGone(f"Subscriber {self.connection_id} is closed")
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull as e:
            raise SubscriberGone(f"Subscriber {self.connection_id} is not keeping up") from e

    async def get(self) -> WsMessage | None:
        """Next message, or None once the subscription is closed and drained."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Sentinel for a pending reader. A full queue drains first, then sees the flag.
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            pass

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> WsMessage:
        message = await self.get()
        if message is None:
            raise StopAsyncIteration
        return message


class StatusBroadcaster:
    """Fan out status messages to every live subscriber.

    Subscribers that cannot accept a message are dropped during the broadcast
    that discovered them.
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        self.queue_size = queue_size
        self._subscribers: dict[str, Subscription] = {}
        self._lock = threading.Lock()

    def subscribe(self, connection_id: str | None = None) -> Subscription:
        connection_id = connection_id or str(uuid.uuid4())
        subscription = Subscription(connection_id, maxsize=self.queue_size)
        with self._lock:
            previous = self._subscribers.pop(connection_id, None)
            self._subscribers[connection_id] = subscription
        if previous is not None:
            previous.close()
        logger.info("Dashboard subscriber connected", connection_id=connection_id)
        return subscription

    def unsubscribe(self, connection_id: str) -> bool:
        with self._lock:
            subscription = self._subscribers.pop(connection_id, None)
        if subscription is None:
            return False
        subscription.close()
        logger.info("Dashboard subscriber disconnected", connection_id=connection_id)
        return True

    def broadcast(self, message: WsMessage) -> int:
        """Deliver ``message`` to all subscribers, pruning the ones that fail.

        Returns:
            Number of subscribers that received the message
        """
        with self._lock:
            subscribers = list(self._subscribers.values())

        delivered = 0
        dead: list[Subscription] = []
        for subscription in subscribers:
            try:
                subscription.deliver(message)
            except SubscriberGone as e:
                logger.warning("Dropping dashboard subscriber", reason=str(e))
                dead.append(subscription)
            else:
                delivered += 1

        if dead:
            with self._lock:
                for subscription in dead:
                    # Only drop the exact subscription; the ID may have been re-used.
                    if self._subscribers.get(subscription.connection_id) is subscription:
                        del self._subscribers[subscription.connection_id]
            for subscription in dead:
                subscription.close()

        logger.debug("Broadcast message", type=message.type.value, delivered=delivered)
        return delivered

    def handle_incoming(self, text: str) -> bool:
        """Process an inbound text frame. Returns True if it was a ping."""
        if "ping" in text:
            self.broadcast(WsMessage.pong())
            return True
        return False

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def close(self) -> None:
        """Close every subscription."""
        with self._lock:
            subscribers = list(self._subscribers.values())
            self._subscribers.clear()
        for subscription in subscribers:
            subscription.close()
