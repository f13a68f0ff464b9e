"""Shared pytest fixtures for bore-control tests."""

import asyncio
from typing import Any
from unittest.mock import Mock

import pytest
import pytest_asyncio

from bore_control.notify.broadcaster import StatusBroadcaster, Subscription, WsMessage
from bore_control.notify.webhook import WebhookNotifier
from bore_control.service import TunnelService
from bore_control.tunnel.manager import ClientManager, LifecycleManager, ServerManager
from bore_control.tunnel.models import (
    ClientConfig,
    ClientState,
    RuntimeHandle,
    ServerConfig,
    ServerState,
)

ASSIGNED_PORT = 41234


class FakeSession:
    """Tunnel session whose lifetime is driven by the test."""

    def __init__(self, remote_port: int | None = None):
        self._remote_port = remote_port
        self._finished = asyncio.Event()
        self._error: BaseException | None = None
        self.serving = asyncio.Event()
        self.close_calls = 0

    @property
    def remote_port(self) -> int | None:
        return self._remote_port

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    async def serve(self) -> None:
        self.serving.set()
        await self._finished.wait()
        if self._error is not None:
            raise self._error

    def finish(self, error: BaseException | None = None) -> None:
        """End ``serve`` normally, or with ``error``."""
        self._error = error
        self._finished.set()

    async def close(self) -> None:
        self.close_calls += 1


class FakeBackend:
    """In-memory tunnel capability that records every call."""

    def __init__(self, assigned_port: int | None = ASSIGNED_PORT, delay: float = 0.0):
        self.assigned_port = assigned_port
        self.delay = delay
        self.fail_with: Exception | None = None
        self.server_calls: list[dict[str, Any]] = []
        self.client_calls: list[dict[str, Any]] = []
        self.calls: list[str] = []
        self.sessions: list[FakeSession] = []

    async def open_server(self, **params: Any) -> FakeSession:
        self.server_calls.append(params)
        self.calls.append("server")
        return await self._open(None)

    async def open_client(self, **params: Any) -> FakeSession:
        self.client_calls.append(params)
        self.calls.append("client")
        port = params["remote_port"] or self.assigned_port
        return await self._open(port)

    async def _open(self, remote_port: int | None) -> FakeSession:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        session = FakeSession(remote_port)
        self.sessions.append(session)
        return session


class InMemoryStore:
    """Entity store backed by dicts, recording every status write."""

    def __init__(
        self,
        servers: list[ServerConfig] | None = None,
        clients: list[ClientConfig] | None = None,
    ):
        self.servers = {s.id: s for s in servers or []}
        self.clients = {c.id: c for c in clients or []}
        self.server_updates: list[tuple[int, ServerState, str | None]] = []
        self.client_updates: list[tuple[int, ClientState, int | None, str | None]] = []

    async def get_server(self, server_id: int) -> ServerConfig | None:
        return self.servers.get(server_id)

    async def get_client(self, client_id: int) -> ClientConfig | None:
        return self.clients.get(client_id)

    async def list_servers(self) -> list[ServerConfig]:
        return list(self.servers.values())

    async def list_clients(self) -> list[ClientConfig]:
        return list(self.clients.values())

    async def update_server_status(
        self,
        server_id: int,
        state: ServerState,
        error_message: str | None = None,
    ) -> None:
        self.server_updates.append((server_id, state, error_message))
        if server_id in self.servers:
            self.servers[server_id] = self.servers[server_id].model_copy(
                update={"status": state, "error_message": error_message}
            )

    async def update_client_status(
        self,
        client_id: int,
        state: ClientState,
        assigned_port: int | None = None,
        error_message: str | None = None,
    ) -> None:
        self.client_updates.append((client_id, state, assigned_port, error_message))
        if client_id in self.clients:
            update: dict[str, Any] = {"status": state, "error_message": error_message}
            if assigned_port is not None:
                update["assigned_port"] = assigned_port
            self.clients[client_id] = self.clients[client_id].model_copy(update=update)


async def wait_for_exit(manager: LifecycleManager, entity_id: int) -> RuntimeHandle:
    """Wait until the entity's task has terminated and return its handle."""
    handle = manager.registry.get(entity_id)
    assert handle is not None
    await asyncio.wait([handle.task], timeout=2.0)
    assert handle.is_finished
    return handle


def drain(subscription: Subscription) -> list[WsMessage]:
    """Messages currently queued for ``subscription``."""
    messages = []
    while not subscription._queue.empty():
        message = subscription._queue.get_nowait()
        if message is not None:
            messages.append(message)
    return messages


@pytest.fixture
def server_config() -> ServerConfig:
    return ServerConfig(
        id=1,
        name="edge",
        bind_addr="127.0.0.1",
        bind_tunnels="127.0.0.1",
        port_range_start=20000,
        port_range_end=20100,
        secret="server-secret-1234",
        auto_start=True,
    )


@pytest.fixture
def client_config() -> ClientConfig:
    return ClientConfig(
        id=7,
        name="web",
        description="Local web app",
        local_host="localhost",
        local_port=8080,
        remote_server="bore.example.com",
        secret="client-secret-5678",
        auto_start=True,
        webhook_url="https://hooks.example.com/notify",
    )


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest_asyncio.fixture
async def server_manager(fake_backend):
    manager = ServerManager(fake_backend, stop_grace=0)
    yield manager
    await manager.shutdown()


@pytest_asyncio.fixture
async def client_manager(fake_backend):
    manager = ClientManager(fake_backend, stop_grace=0)
    yield manager
    await manager.shutdown()


@pytest.fixture
def store(server_config, client_config) -> InMemoryStore:
    return InMemoryStore(servers=[server_config], clients=[client_config])


@pytest.fixture
def broadcaster() -> StatusBroadcaster:
    return StatusBroadcaster(queue_size=64)


@pytest.fixture
def notifier() -> Mock:
    return Mock(spec=WebhookNotifier)


@pytest.fixture
def service(store, server_manager, client_manager, broadcaster, notifier) -> TunnelService:
    return TunnelService(store, server_manager, client_manager, broadcaster, notifier)
