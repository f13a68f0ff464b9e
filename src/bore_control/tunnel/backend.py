"""Tunnel capability boundary.

The lifecycle managers only depend on the two protocols below. ``BoreBackend``
implements them by running the ``bore`` binary; tests and embedders can inject
any other implementation.
"""

import ipaddress
import re
from typing import Protocol

from ..common.logging import get_logger
from .process import BoreProcess, find_bore_binary

logger = get_logger(__name__)

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address

LISTENING_PATTERN = re.compile(r"listening at (?P<host>\S+):(?P<port>\d+)")


class TunnelSession(Protocol):
    """An established tunnel listener or connection."""

    @property
    def remote_port(self) -> int | None:
        """Port assigned by the remote server, for client sessions."""
        ...

    async def serve(self) -> None:
        """Run until the tunnel stops. Raises on failure; returns when cancelled."""
        ...

    async def close(self) -> None:
        """Release the session's resources. Safe to call more than once."""
        ...


class TunnelBackend(Protocol):
    """Factory for tunnel sessions. Both calls may block for a handshake."""

    async def open_server(
        self,
        *,
        bind_addr: IPAddress,
        bind_tunnels: IPAddress,
        min_port: int,
        max_port: int,
        secret: str | None,
    ) -> TunnelSession: ...

    async def open_client(
        self,
        *,
        local_host: str,
        local_port: int,
        remote_server: str,
        remote_port: int,
        secret: str | None,
    ) -> TunnelSession: ...


class BoreSession:
    """Tunnel session backed by a running bore process."""

    def __init__(self, process: BoreProcess, remote_port: int | None = None):
        self.process = process
        self._remote_port = remote_port

    @property
    def remote_port(self) -> int | None:
        return self._remote_port

    async def serve(self) -> None:
        await self.process.serve()

    async def close(self) -> None:
        await self.process.stop()


class BoreBackend:
    """Runs ``bore server`` and ``bore local`` as subprocesses.

    The binary is resolved on first use, so a missing installation surfaces as
    a start failure for the entity rather than at construction time.
    """

    def __init__(
        self,
        binary_path: str | None = None,
        handshake_timeout: float = 10.0,
        server_startup_delay: float = 0.5,
    ):
        self._binary_path = binary_path
        self._resolved: str | None = None
        self.handshake_timeout = handshake_timeout
        self.server_startup_delay = server_startup_delay

    @property
    def binary_path(self) -> str:
        if self._resolved is None:
            self._resolved = find_bore_binary(self._binary_path)
            logger.info("Using bore binary", path=self._resolved)
        return self._resolved

    async def open_server(
        self,
        *,
        bind_addr: IPAddress,
        bind_tunnels: IPAddress,
        min_port: int,
        max_port: int,
        secret: str | None,
    ) -> BoreSession:
        args = [
            "server",
            "--min-port",
            str(min_port),
            "--max-port",
            str(max_port),
            "--bind-addr",
            str(bind_addr),
            "--bind-tunnels",
            str(bind_tunnels),
        ]
        process = BoreProcess(self.binary_path, args, secret=secret, name="bore server")
        await process.start()
        try:
            await process.wait_for_startup(self.server_startup_delay)
        except BaseException:
            await process.stop()
            raise
        return BoreSession(process)

    async def open_client(
        self,
        *,
        local_host: str,
        local_port: int,
        remote_server: str,
        remote_port: int,
        secret: str | None,
    ) -> BoreSession:
        args = [
            "local",
            str(local_port),
            "--local-host",
            local_host,
            "--to",
            remote_server,
            "--port",
            str(remote_port),
        ]
        process = BoreProcess(self.binary_path, args, secret=secret, name="bore local")
        await process.start()
        try:
            match = await process.wait_for_line(LISTENING_PATTERN, self.handshake_timeout)
        except BaseException:
            await process.stop()
            raise
        assigned_port = int(match.group("port"))
        logger.info(
            "bore client connected",
            remote_server=remote_server,
            assigned_port=assigned_port,
        )
        return BoreSession(process, remote_port=assigned_port)
