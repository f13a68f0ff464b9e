"""Process-wide control plane container."""

import asyncio
from types import TracebackType

from .common.logging import configure_from_settings, get_logger
from .common.settings import ControlSettings
from .notify.broadcaster import StatusBroadcaster
from .notify.webhook import WebhookNotifier, WebhookSender
from .orchestrator import AutoStartOrchestrator
from .service import EntityStore, TunnelService
from .tunnel.backend import BoreBackend, TunnelBackend
from .tunnel.manager import ClientManager, ServerManager

logger = get_logger(__name__)


class ControlPlane:
    """Builds the managers, broadcaster and notifier once and runs them.

    Example:
        >>> async with ControlPlane(store) as control:
        ...     port = await control.service.start_client(1)
    """

    def __init__(
        self,
        store: EntityStore,
        settings: ControlSettings | None = None,
        backend: TunnelBackend | None = None,
    ):
        self.settings = settings or ControlSettings()
        configure_from_settings(self.settings)
        self.store = store
        self.backend = backend or BoreBackend(
            binary_path=self.settings.bore_binary,
            handshake_timeout=self.settings.handshake_timeout,
            server_startup_delay=self.settings.server_startup_delay,
        )

        self.servers = ServerManager(self.backend, stop_grace=self.settings.stop_grace)
        self.clients = ClientManager(self.backend, stop_grace=self.settings.stop_grace)
        self.broadcaster = StatusBroadcaster(queue_size=self.settings.subscriber_queue_size)
        self.notifier = WebhookNotifier(
            WebhookSender(
                timeout=self.settings.webhook_timeout,
                max_attempts=self.settings.webhook_max_attempts,
                backoff_base=self.settings.webhook_backoff_base,
            )
        )
        self.service = TunnelService(
            store, self.servers, self.clients, self.broadcaster, self.notifier
        )
        self.orchestrator = AutoStartOrchestrator(self.service, store)
        self._maintenance_task: asyncio.Task[None] | None = None

    @property
    def is_started(self) -> bool:
        return self._maintenance_task is not None

    async def startup(self) -> int:
        """Auto-start entities and begin periodic reaping.

        Returns:
            Number of entities the auto-start pass processed
        """
        if self._maintenance_task is not None:
            logger.warning("Control plane already started")
            return 0

        logger.info("Starting control plane")
        processed = await self.orchestrator.run()
        self._maintenance_task = asyncio.create_task(
            self._maintenance_loop(), name="bore-control-maintenance"
        )
        return processed

    async def _maintenance_loop(self) -> None:
        interval = self.settings.maintenance_interval
        while True:
            await asyncio.sleep(interval)
            try:
                events = await self.service.reconcile()
                if events:
                    logger.info("Reaped finished tunnels", count=len(events))
            except Exception:
                logger.exception("Maintenance pass failed")

    async def shutdown(self) -> None:
        """Stop reaping, abort every tunnel, flush pending webhooks."""
        logger.info("Shutting down control plane")
        if self._maintenance_task is not None:
            self._maintenance_task.cancel()
            try:
                await self._maintenance_task
            except asyncio.CancelledError:
                pass
            self._maintenance_task = None

        await self.servers.shutdown()
        await self.clients.shutdown()
        self.broadcaster.close()
        await self.notifier.aclose()
        logger.info("Control plane stopped")

    async def __aenter__(self) -> "ControlPlane":
        await self.startup()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.shutdown()
