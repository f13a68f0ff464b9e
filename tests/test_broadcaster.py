"""Tests for the dashboard status broadcaster."""

import json

import pytest
from conftest import drain

from bore_control.notify.broadcaster import (
    MessageType,
    StatusBroadcaster,
    SubscriberGone,
    Subscription,
    WsMessage,
)
from bore_control.tunnel.models import (
    ClientStatusInfo,
    EntityKind,
    EventKind,
    LifecycleEvent,
    ServerStatusInfo,
)


class TestWsMessage:
    """Test message shapes."""

    def test_pong_has_no_data(self):
        assert json.loads(WsMessage.pong().to_json()) == {"type": "pong"}

    def test_server_snapshot(self):
        message = WsMessage.from_snapshot(ServerStatusInfo(id=1, uptime_seconds=5))

        assert json.loads(message.to_json()) == {
            "type": "server_status",
            "data": {"server_id": 1, "status": "running", "uptime_seconds": 5},
        }

    def test_client_snapshot(self):
        message = WsMessage.from_snapshot(ClientStatusInfo(id=2, assigned_port=4000))

        assert message.type == MessageType.CLIENT_STATUS
        assert message.data == {
            "client_id": 2,
            "status": "connected",
            "assigned_port": 4000,
            "uptime_seconds": 0,
        }

    def test_connection_event(self):
        event = LifecycleEvent(entity_id=3, entity_kind=EntityKind.CLIENT, kind=EventKind.DISCONNECTED)

        payload = json.loads(WsMessage.connection_event(event).to_json())

        assert payload["type"] == "connection_event"
        assert payload["data"]["entity_id"] == 3
        assert payload["data"]["entity_kind"] == "client"
        assert payload["data"]["kind"] == "disconnected"
        assert isinstance(payload["data"]["timestamp"], str)

    def test_error(self):
        message = WsMessage.error("boom", client_id=4)
        assert message.data == {"message": "boom", "client_id": 4}


class TestSubscription:
    """Test per-connection queues."""

    def test_deliver_after_close(self):
        subscription = Subscription("a")
        subscription.close()

        with pytest.raises(SubscriberGone):
            subscription.deliver(WsMessage.pong())

    def test_deliver_when_full(self):
        subscription = Subscription("a", maxsize=1)
        subscription.deliver(WsMessage.pong())

        with pytest.raises(SubscriberGone, match="not keeping up"):
            subscription.deliver(WsMessage.pong())

    @pytest.mark.asyncio
    async def test_iteration_ends_on_close(self):
        """Test queued messages are yielded before the iterator stops"""
        subscription = Subscription("a")
        subscription.deliver(WsMessage.pong())
        subscription.deliver(WsMessage.error("x"))
        subscription.close()

        received = [message async for message in subscription]

        assert [m.type for m in received] == [MessageType.PONG, MessageType.ERROR]


class TestStatusBroadcaster:
    """Test fan-out and pruning."""

    def test_subscribe_generates_id(self):
        broadcaster = StatusBroadcaster()
        subscription = broadcaster.subscribe()

        assert subscription.connection_id
        assert broadcaster.subscriber_count == 1

    def test_broadcast_reaches_all(self):
        broadcaster = StatusBroadcaster()
        first = broadcaster.subscribe("a")
        second = broadcaster.subscribe("b")

        delivered = broadcaster.broadcast(WsMessage.error("hello"))

        assert delivered == 2
        assert len(drain(first)) == 1
        assert len(drain(second)) == 1

    def test_closed_subscriber_pruned(self):
        """Test a subscriber that went away is removed during broadcast"""
        broadcaster = StatusBroadcaster()
        gone = broadcaster.subscribe("gone")
        live = broadcaster.subscribe("live")
        gone.close()

        delivered = broadcaster.broadcast(WsMessage.error("hello"))

        assert delivered == 1
        assert broadcaster.subscriber_count == 1
        assert len(drain(live)) == 1

    def test_slow_subscriber_pruned(self):
        """Test a subscriber whose queue is full is dropped"""
        broadcaster = StatusBroadcaster(queue_size=1)
        slow = broadcaster.subscribe("slow")

        assert broadcaster.broadcast(WsMessage.pong()) == 1
        assert broadcaster.broadcast(WsMessage.pong()) == 0

        assert broadcaster.subscriber_count == 0
        assert slow.closed

    def test_unsubscribe(self):
        broadcaster = StatusBroadcaster()
        subscription = broadcaster.subscribe("a")

        assert broadcaster.unsubscribe("a") is True
        assert broadcaster.unsubscribe("a") is False
        assert subscription.closed
        assert broadcaster.broadcast(WsMessage.pong()) == 0

    def test_resubscribe_replaces_previous(self):
        broadcaster = StatusBroadcaster()
        old = broadcaster.subscribe("a")
        new = broadcaster.subscribe("a")

        assert old.closed
        assert not new.closed
        assert broadcaster.subscriber_count == 1

    def test_ping_broadcasts_pong_to_everyone(self):
        """Test a ping from one connection is answered on all of them"""
        broadcaster = StatusBroadcaster()
        first = broadcaster.subscribe("a")
        second = broadcaster.subscribe("b")

        assert broadcaster.handle_incoming('{"type": "ping"}') is True

        assert [m.type for m in drain(first)] == [MessageType.PONG]
        assert [m.type for m in drain(second)] == [MessageType.PONG]

    def test_other_text_ignored(self):
        broadcaster = StatusBroadcaster()
        subscription = broadcaster.subscribe("a")

        assert broadcaster.handle_incoming("hello") is False
        assert drain(subscription) == []

    def test_close(self):
        broadcaster = StatusBroadcaster()
        subscription = broadcaster.subscribe("a")

        broadcaster.close()

        assert subscription.closed
        assert broadcaster.subscriber_count == 0
