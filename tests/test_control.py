"""Tests for the control plane container."""

import asyncio
import logging

import pytest
from conftest import ASSIGNED_PORT, FakeBackend, InMemoryStore

from bore_control.common.settings import ControlSettings
from bore_control.control import ControlPlane
from bore_control.tunnel.backend import BoreBackend
from bore_control.tunnel.models import ClientConfig, ClientState, ServerConfig, ServerState


@pytest.fixture
def settings(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return ControlSettings(maintenance_interval=0.05, stop_grace=0)


@pytest.fixture
def boot_store():
    return InMemoryStore(
        servers=[ServerConfig(id=1, auto_start=True)],
        clients=[
            ClientConfig(id=2, local_port=3000, remote_server="bore.example.com", auto_start=True)
        ],
    )


class TestControlPlane:
    """Test boot, maintenance and shutdown."""

    def test_default_backend_uses_settings(self, settings):
        settings = settings.model_copy(update={"bore_binary": "/opt/bore/bore", "handshake_timeout": 3.0})
        control = ControlPlane(InMemoryStore(), settings=settings)

        assert isinstance(control.backend, BoreBackend)
        assert control.backend.handshake_timeout == 3.0
        assert control.servers.backend is control.backend
        assert control.service.broadcaster is control.broadcaster

    @pytest.mark.asyncio
    async def test_startup_runs_auto_start(self, settings, boot_store):
        backend = FakeBackend()

        async with ControlPlane(boot_store, settings=settings, backend=backend) as control:
            assert control.is_started
            assert boot_store.servers[1].status == ServerState.RUNNING
            assert boot_store.clients[2].status == ClientState.CONNECTED
            assert boot_store.clients[2].assigned_port == ASSIGNED_PORT

        assert not control.is_started
        assert len(control.servers) == 0
        assert len(control.clients) == 0
        assert all(session.closed for session in backend.sessions)

    @pytest.mark.asyncio
    async def test_maintenance_reaps_exited_tunnels(self, settings, boot_store):
        """Test the periodic pass persists tunnels that stopped on their own"""
        backend = FakeBackend()

        async with ControlPlane(boot_store, settings=settings, backend=backend) as control:
            backend.sessions[1].finish()
            for _ in range(40):
                await asyncio.sleep(0.05)
                if boot_store.clients[2].status == ClientState.STOPPED:
                    break

            assert boot_store.clients[2].status == ClientState.STOPPED
            assert len(control.clients) == 0
            assert boot_store.servers[1].status == ServerState.RUNNING

    @pytest.mark.asyncio
    async def test_startup_twice(self, settings, boot_store):
        control = ControlPlane(boot_store, settings=settings, backend=FakeBackend())
        try:
            assert await control.startup() == 2
            assert await control.startup() == 0
        finally:
            await control.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_without_startup(self, settings):
        control = ControlPlane(InMemoryStore(), settings=settings, backend=FakeBackend())
        await control.shutdown()
        assert not control.is_started

    def test_applies_logging_settings(self, settings):
        root_logger = logging.getLogger()
        previous_level = root_logger.level
        try:
            ControlPlane(
                InMemoryStore(),
                settings=ControlSettings(log_level="WARNING", stop_grace=0),
                backend=FakeBackend(),
            )
            assert root_logger.level == logging.WARNING
        finally:
            root_logger.setLevel(previous_level)
