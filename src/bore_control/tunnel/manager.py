"""Lifecycle managers for tunnel servers and clients.

A manager owns a ``RuntimeRegistry`` and the background task of every running
entity of its kind. It never touches persisted state: every outcome is either
returned or raised, and the caller decides what to store.
"""

import asyncio
import functools
from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

from ..common.exceptions import ConfigurationError, TunnelError
from ..common.logging import get_logger
from ..common.utils import (
    mask_sensitive_data,
    parse_ip_address,
    validate_non_empty_string,
    validate_port,
)
from .backend import TunnelBackend, TunnelSession
from .models import (
    ClientConfig,
    ClientStatusInfo,
    EntityKind,
    RuntimeHandle,
    ServerConfig,
    ServerStatusInfo,
)
from .registry import RuntimeRegistry

logger = get_logger(__name__)

ConfigT = TypeVar("ConfigT", ServerConfig, ClientConfig)
SnapshotT = TypeVar("SnapshotT", ServerStatusInfo, ClientStatusInfo)

DEFAULT_STOP_GRACE = 0.1
DEFAULT_SHUTDOWN_TIMEOUT = 5.0


class LifecycleManager(ABC, Generic[ConfigT, SnapshotT]):
    """Start, stop, and supervise tunnel tasks of one entity kind."""

    kind: EntityKind
    label: str

    def __init__(
        self,
        backend: TunnelBackend,
        registry: RuntimeRegistry | None = None,
        stop_grace: float = DEFAULT_STOP_GRACE,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
    ):
        """Initialize the manager.

        Args:
            backend: Tunnel capability used to open sessions
            registry: Runtime registry (a fresh one is created if None)
            stop_grace: Seconds ``stop`` waits after aborting a task
            shutdown_timeout: Seconds ``shutdown`` waits for aborted tasks
        """
        self.backend = backend
        self.registry = registry or RuntimeRegistry(label=self.label)
        self.stop_grace = stop_grace
        self.shutdown_timeout = shutdown_timeout
        self._releasing: set[asyncio.Task[None]] = set()

    @abstractmethod
    def _validate(self, config: ConfigT) -> dict[str, Any]:
        """Check network parameters and return the backend arguments."""

    @abstractmethod
    async def _open(self, params: dict[str, Any]) -> TunnelSession:
        """Open a tunnel session through the backend."""

    @abstractmethod
    def _snapshot(self, handle: RuntimeHandle) -> SnapshotT:
        """Status snapshot of a live handle."""

    def _assigned_port(self, session: TunnelSession) -> int | None:
        return None

    async def _start(self, config: ConfigT) -> RuntimeHandle:
        """Reserve, validate, connect, spawn, register.

        Raises:
            AlreadyRunningError: If the entity already has a handle
            ConfigurationError: If network parameters are invalid
            TunnelError: If the tunnel capability fails
        """
        entity_id = config.id
        log = logger.bind(entity_kind=self.kind.value, entity_id=entity_id, name=config.name)
        log.info(f"Starting bore {self.kind.value}")

        self.registry.reserve(entity_id)
        try:
            params = self._validate(config)
            try:
                session = await self._open(params)
            except (ConfigurationError, TunnelError):
                raise
            except Exception as e:
                raise TunnelError(f"Failed to create bore {self.kind.value}: {e}") from e

            try:
                assigned_port = self._assigned_port(session)
            except TunnelError:
                await session.close()
                raise

            task = asyncio.create_task(
                self._supervise(config, session),
                name=f"bore-{self.kind.value}-{entity_id}",
            )
            task.add_done_callback(functools.partial(self._on_task_done, session))
            handle = RuntimeHandle(
                entity_id=entity_id,
                task=task,
                session=session,
                assigned_port=assigned_port,
            )
            try:
                self.registry.insert(entity_id, handle)
            except BaseException:
                task.cancel()
                await session.close()
                raise
        except BaseException:
            self.registry.release(entity_id)
            raise

        log.info(f"Bore {self.kind.value} started successfully", assigned_port=assigned_port)
        return handle

    async def _supervise(self, config: ConfigT, session: TunnelSession) -> None:
        """Body of the background task: run the tunnel until it ends."""
        log = logger.bind(entity_kind=self.kind.value, entity_id=config.id, name=config.name)
        try:
            await session.serve()
            log.info(f"Bore {self.kind.value} stopped normally")
        except asyncio.CancelledError:
            log.info(f"Bore {self.kind.value} task aborted")
            raise
        except Exception as e:
            log.error(f"Bore {self.kind.value} error", error=str(e))
            raise
        finally:
            try:
                await session.close()
            except Exception as e:
                log.error("Error releasing tunnel session", error=str(e))

    def _on_task_done(self, session: TunnelSession, task: "asyncio.Task[None]") -> None:
        # A cancel can land before _supervise reaches its finally block.
        if task.cancelled():
            closer = asyncio.ensure_future(session.close())
            self._releasing.add(closer)
            closer.add_done_callback(self._releasing.discard)

    async def stop(self, entity_id: int) -> RuntimeHandle:
        """Abort the entity's task and wait the grace interval.

        Returns:
            The removed handle

        Raises:
            NotRunningError: If the entity has no handle
        """
        logger.info(f"Stopping bore {self.kind.value}", entity_id=entity_id)
        handle = self.registry.remove(entity_id)
        handle.task.cancel()
        await asyncio.sleep(self.stop_grace)
        logger.info(f"Bore {self.kind.value} stopped", entity_id=entity_id)
        return handle

    def status(self, entity_id: int) -> SnapshotT | None:
        """Fresh status snapshot, or None if absent or its task already finished."""
        handle = self.registry.get(entity_id)
        if handle is None or handle.is_finished:
            return None
        return self._snapshot(handle)

    def list_finished(self) -> list[int]:
        """IDs whose task terminated without an explicit stop."""
        return self.registry.list_finished()

    def reap(self, entity_id: int) -> RuntimeHandle | None:
        """Remove a finished handle.

        Returns:
            The removed handle (inspect ``outcome``), or None if the entity is
            absent or still running
        """
        handle = self.registry.pop_finished(entity_id)
        if handle is not None:
            logger.info(
                f"Reaped bore {self.kind.value}",
                entity_id=entity_id,
                failed=handle.outcome is not None,
            )
        return handle

    def running_ids(self) -> list[int]:
        return [eid for eid in self.registry.ids() if self.status(eid) is not None]

    async def shutdown(self) -> int:
        """Abort every task and refuse further starts. Used when the process exits.

        Returns:
            Number of handles that were dropped
        """
        handles = self.registry.close()
        tasks = [handle.task for handle in handles]
        for task in tasks:
            task.cancel()
        pending: set[asyncio.Task[None]] = set()
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=self.shutdown_timeout)
            # Done callbacks run on the next loop iteration.
            await asyncio.sleep(0)
        if self._releasing:
            _, still_closing = await asyncio.wait(
                list(self._releasing), timeout=self.shutdown_timeout
            )
            pending |= still_closing
        if pending:
            logger.warning(
                f"Bore {self.kind.value} tasks still releasing after shutdown",
                count=len(pending),
            )
        logger.info(f"Shut down bore {self.kind.value}s", count=len(handles))
        return len(handles)

    def __len__(self) -> int:
        return len(self.registry)


class ServerManager(LifecycleManager[ServerConfig, ServerStatusInfo]):
    """Lifecycle manager for tunnel servers."""

    kind = EntityKind.SERVER
    label = "Server"

    async def start(self, config: ServerConfig) -> None:
        """Start a tunnel server for ``config``."""
        await self._start(config)

    def _validate(self, config: ServerConfig) -> dict[str, Any]:
        bind_addr = parse_ip_address(config.bind_addr, "bind_addr")
        bind_tunnels = parse_ip_address(config.bind_tunnels, "bind_tunnels")
        min_port = validate_port(config.port_range_start, "port_range_start")
        max_port = validate_port(config.port_range_end, "port_range_end")
        if min_port > max_port:
            raise ConfigurationError(
                f"Invalid port range: {min_port}-{max_port} (start must not exceed end)"
            )
        logger.debug(
            "Validated server configuration",
            entity_id=config.id,
            bind_addr=str(bind_addr),
            port_range=f"{min_port}-{max_port}",
            secret=mask_sensitive_data(config.secret),
        )
        return {
            "bind_addr": bind_addr,
            "bind_tunnels": bind_tunnels,
            "min_port": min_port,
            "max_port": max_port,
            "secret": config.secret,
        }

    async def _open(self, params: dict[str, Any]) -> TunnelSession:
        return await self.backend.open_server(**params)

    def _snapshot(self, handle: RuntimeHandle) -> ServerStatusInfo:
        return ServerStatusInfo(id=handle.entity_id, uptime_seconds=handle.uptime_seconds)


class ClientManager(LifecycleManager[ClientConfig, ClientStatusInfo]):
    """Lifecycle manager for tunnel clients."""

    kind = EntityKind.CLIENT
    label = "Client"

    async def start(self, config: ClientConfig) -> int:
        """Connect a tunnel client for ``config``.

        Returns:
            Remote port assigned by the tunnel server
        """
        handle = await self._start(config)
        if handle.assigned_port is None:
            raise TunnelError("Tunnel server did not assign a remote port")
        return handle.assigned_port

    def _validate(self, config: ClientConfig) -> dict[str, Any]:
        return {
            "local_host": validate_non_empty_string(config.local_host, "local_host"),
            "local_port": validate_port(config.local_port, "local_port"),
            "remote_server": validate_non_empty_string(config.remote_server, "remote_server"),
            "remote_port": validate_port(config.remote_port, "remote_port", allow_zero=True),
            "secret": config.secret,
        }

    async def _open(self, params: dict[str, Any]) -> TunnelSession:
        return await self.backend.open_client(**params)

    def _assigned_port(self, session: TunnelSession) -> int:
        port = session.remote_port
        if not port:
            raise TunnelError("Tunnel server did not assign a remote port")
        return port

    def _snapshot(self, handle: RuntimeHandle) -> ClientStatusInfo:
        return ClientStatusInfo(
            id=handle.entity_id,
            assigned_port=handle.assigned_port,
            uptime_seconds=handle.uptime_seconds,
        )
