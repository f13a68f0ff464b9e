"""Tunnel service: the caller side of the lifecycle managers.

The managers only track runtime state. This layer loads entity records,
persists status transitions, publishes them to dashboard subscribers, and
fires client webhooks.
"""

import asyncio
from typing import Protocol

from .common.exceptions import AlreadyRunningError, EntityNotFoundError, NotRunningError
from .common.logging import get_logger
from .notify.broadcaster import StatusBroadcaster, WsMessage
from .notify.webhook import WebhookNotifier
from .tunnel.manager import ClientManager, ServerManager
from .tunnel.models import (
    ClientConfig,
    ClientState,
    ClientStatusInfo,
    EntityKind,
    EventKind,
    LifecycleEvent,
    RuntimeHandle,
    ServerConfig,
    ServerState,
    ServerStatusInfo,
)

logger = get_logger(__name__)


class EntityStore(Protocol):
    """Persistent record store for tunnel entities."""

    async def get_server(self, server_id: int) -> ServerConfig | None: ...

    async def get_client(self, client_id: int) -> ClientConfig | None: ...

    async def list_servers(self) -> list[ServerConfig]: ...

    async def list_clients(self) -> list[ClientConfig]: ...

    async def update_server_status(
        self,
        server_id: int,
        state: ServerState,
        error_message: str | None = None,
    ) -> None: ...

    async def update_client_status(
        self,
        client_id: int,
        state: ClientState,
        assigned_port: int | None = None,
        error_message: str | None = None,
    ) -> None: ...


class TunnelService:
    """Start, stop, inspect, and reconcile tunnel entities."""

    def __init__(
        self,
        store: EntityStore,
        servers: ServerManager,
        clients: ClientManager,
        broadcaster: StatusBroadcaster | None = None,
        notifier: WebhookNotifier | None = None,
    ):
        self.store = store
        self.servers = servers
        self.clients = clients
        self.broadcaster = broadcaster or StatusBroadcaster()
        self.notifier = notifier or WebhookNotifier()

    async def _load_server(self, server_id: int) -> ServerConfig:
        config = await self.store.get_server(server_id)
        if config is None:
            raise EntityNotFoundError(f"Server {server_id} not found")
        return config

    async def _load_client(self, client_id: int) -> ClientConfig:
        config = await self.store.get_client(client_id)
        if config is None:
            raise EntityNotFoundError(f"Client {client_id} not found")
        return config

    async def start_server(self, server_id: int) -> ServerStatusInfo:
        """Start a server and persist the outcome.

        Raises:
            EntityNotFoundError: If the store has no such server
            AlreadyRunningError: If the server already has a runtime handle
            ConfigurationError: If its network parameters are invalid
            TunnelError: If the tunnel could not be started
        """
        config = await self._load_server(server_id)
        if server_id in self.servers.registry:
            raise AlreadyRunningError(f"Server {server_id} is already running")

        await self.store.update_server_status(server_id, ServerState.STARTING)
        try:
            await self.servers.start(config)
        except AlreadyRunningError:
            raise
        except asyncio.CancelledError:
            logger.warning("Server start cancelled", server_id=server_id)
            await self._server_start_failed(server_id, "Start cancelled")
            raise
        except Exception as e:
            logger.error("Failed to start server", server_id=server_id, error=str(e))
            await self._server_start_failed(server_id, str(e))
            raise

        await self.store.update_server_status(server_id, ServerState.RUNNING)
        snapshot = self.server_status(server_id)
        self.broadcaster.broadcast(WsMessage.from_snapshot(snapshot))
        return snapshot

    async def start_client(self, client_id: int) -> int:
        """Connect a client and persist the outcome.

        Returns:
            Remote port assigned by the tunnel server

        Raises:
            EntityNotFoundError: If the store has no such client
            AlreadyRunningError: If the client already has a runtime handle
            ConfigurationError: If its network parameters are invalid
            TunnelError: If the tunnel could not be established
        """
        config = await self._load_client(client_id)
        if client_id in self.clients.registry:
            raise AlreadyRunningError(f"Client {client_id} is already running")

        await self.store.update_client_status(client_id, ClientState.STARTING)
        try:
            assigned_port = await self.clients.start(config)
        except AlreadyRunningError:
            raise
        except asyncio.CancelledError:
            logger.warning("Client start cancelled", client_id=client_id)
            await self._client_start_failed(client_id, "Start cancelled")
            raise
        except Exception as e:
            logger.error("Failed to start client", client_id=client_id, error=str(e))
            await self._client_start_failed(client_id, str(e))
            raise

        await self.store.update_client_status(
            client_id, ClientState.CONNECTED, assigned_port=assigned_port
        )
        self.broadcaster.broadcast(WsMessage.from_snapshot(self.client_status(client_id)))
        self.notifier.notify(config, EventKind.CONNECTED, {"assigned_port": assigned_port})
        logger.info("Client connected", client_id=client_id, assigned_port=assigned_port)
        return assigned_port

    async def _server_start_failed(self, server_id: int, message: str) -> None:
        await self.store.update_server_status(server_id, ServerState.ERROR, error_message=message)
        self.broadcaster.broadcast(
            WsMessage.error(f"Failed to start server {server_id}: {message}", server_id=server_id)
        )

    async def _client_start_failed(self, client_id: int, message: str) -> None:
        await self.store.update_client_status(client_id, ClientState.ERROR, error_message=message)
        self.broadcaster.broadcast(
            WsMessage.error(f"Failed to start client {client_id}: {message}", client_id=client_id)
        )

    async def stop_server(self, server_id: int) -> None:
        """Stop a server. A server that is not running is only marked stopped."""
        await self._load_server(server_id)
        try:
            await self.servers.stop(server_id)
        except NotRunningError:
            logger.warning("Server was not running, syncing status", server_id=server_id)

        await self.store.update_server_status(server_id, ServerState.STOPPED)
        self.broadcaster.broadcast(WsMessage.from_snapshot(ServerStatusInfo.stopped(server_id)))

    async def stop_client(self, client_id: int) -> None:
        """Stop a client. A client that is not running is only marked stopped."""
        config = await self._load_client(client_id)
        handle: RuntimeHandle | None = None
        try:
            handle = await self.clients.stop(client_id)
        except NotRunningError:
            logger.warning("Client was not running, syncing status", client_id=client_id)

        await self.store.update_client_status(client_id, ClientState.STOPPED)
        self.broadcaster.broadcast(WsMessage.from_snapshot(ClientStatusInfo.stopped(client_id)))
        if handle is not None:
            self.notifier.notify(
                config,
                EventKind.DISCONNECTED,
                {"uptime_seconds": handle.uptime_seconds},
            )

    def server_status(self, server_id: int) -> ServerStatusInfo:
        return self.servers.status(server_id) or ServerStatusInfo.stopped(server_id)

    def client_status(self, client_id: int) -> ClientStatusInfo:
        return self.clients.status(client_id) or ClientStatusInfo.stopped(client_id)

    async def reconcile(self) -> list[LifecycleEvent]:
        """Reap tasks that ended on their own and persist what happened to them.

        Returns:
            One event per reaped entity
        """
        events: list[LifecycleEvent] = []

        for server_id in self.servers.list_finished():
            handle = self.servers.reap(server_id)
            if handle is None:
                continue
            try:
                events.append(await self._settle_server(handle))
            except Exception:
                logger.exception("Failed to record server exit", server_id=server_id)

        for client_id in self.clients.list_finished():
            handle = self.clients.reap(client_id)
            if handle is None:
                continue
            try:
                events.append(await self._settle_client(handle))
            except Exception:
                logger.exception("Failed to record client exit", client_id=client_id)

        return events

    async def _settle_server(self, handle: RuntimeHandle) -> LifecycleEvent:
        outcome = handle.outcome
        if outcome is not None:
            await self.store.update_server_status(
                handle.entity_id, ServerState.ERROR, error_message=str(outcome)
            )
        else:
            await self.store.update_server_status(handle.entity_id, ServerState.STOPPED)

        event = LifecycleEvent(
            entity_id=handle.entity_id,
            entity_kind=EntityKind.SERVER,
            kind=EventKind.ERROR if outcome is not None else EventKind.DISCONNECTED,
            detail=str(outcome) if outcome is not None else None,
        )
        self.broadcaster.broadcast(WsMessage.connection_event(event))
        self.broadcaster.broadcast(
            WsMessage.from_snapshot(ServerStatusInfo.stopped(handle.entity_id))
        )
        return event

    async def _settle_client(self, handle: RuntimeHandle) -> LifecycleEvent:
        outcome = handle.outcome
        if outcome is not None:
            await self.store.update_client_status(
                handle.entity_id, ClientState.ERROR, error_message=str(outcome)
            )
        else:
            await self.store.update_client_status(handle.entity_id, ClientState.STOPPED)

        event = LifecycleEvent(
            entity_id=handle.entity_id,
            entity_kind=EntityKind.CLIENT,
            kind=EventKind.ERROR if outcome is not None else EventKind.DISCONNECTED,
            detail=str(outcome) if outcome is not None else None,
        )
        self.broadcaster.broadcast(WsMessage.connection_event(event))
        self.broadcaster.broadcast(
            WsMessage.from_snapshot(ClientStatusInfo.stopped(handle.entity_id))
        )

        config = await self.store.get_client(handle.entity_id)
        if config is not None:
            self.notifier.notify(
                config,
                EventKind.DISCONNECTED,
                {"uptime_seconds": handle.uptime_seconds},
            )
        return event
