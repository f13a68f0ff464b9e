"""Start auto-start entities once at process boot."""

from .common.logging import get_logger
from .service import EntityStore, TunnelService

logger = get_logger(__name__)


class AutoStartOrchestrator:
    """Start every auto-start server, then every auto-start client.

    Entities are started one at a time. A failing entity is logged (its error
    state is persisted by the service) and never stops the rest.
    """

    def __init__(self, service: TunnelService, store: EntityStore):
        self.service = service
        self.store = store

    async def run(self) -> int:
        """Returns the number of entities a start was attempted for."""
        processed = 0

        servers = [s for s in await self.store.list_servers() if s.auto_start]
        logger.info("Auto-starting servers", count=len(servers))
        for server in servers:
            if self.service.servers.status(server.id) is not None:
                logger.debug("Server already running, skipping", server_id=server.id)
                continue
            processed += 1
            try:
                await self.service.start_server(server.id)
                logger.info("Auto-started server", server_id=server.id, name=server.name)
            except Exception as e:
                logger.error(
                    "Failed to auto-start server",
                    server_id=server.id,
                    name=server.name,
                    error=str(e),
                )

        clients = [c for c in await self.store.list_clients() if c.auto_start]
        logger.info("Auto-starting clients", count=len(clients))
        for client in clients:
            if self.service.clients.status(client.id) is not None:
                logger.debug("Client already running, skipping", client_id=client.id)
                continue
            processed += 1
            try:
                port = await self.service.start_client(client.id)
                logger.info(
                    "Auto-started client",
                    client_id=client.id,
                    name=client.name,
                    assigned_port=port,
                )
            except Exception as e:
                logger.error(
                    "Failed to auto-start client",
                    client_id=client.id,
                    name=client.name,
                    error=str(e),
                )

        logger.info("Auto-start complete", processed=processed)
        return processed
