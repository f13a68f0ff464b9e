"""Tunnel lifecycle management: models, registry, capability, managers."""

from .backend import BoreBackend, BoreSession, TunnelBackend, TunnelSession
from .manager import ClientManager, LifecycleManager, ServerManager
from .models import (
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
    StatusSnapshot,
    WebhookFormat,
)
from .process import BoreProcess, find_bore_binary
from .registry import RuntimeRegistry

__all__ = [
    # Models
    "EntityKind",
    "ServerState",
    "ClientState",
    "WebhookFormat",
    "EventKind",
    "ServerConfig",
    "ClientConfig",
    "ServerStatusInfo",
    "ClientStatusInfo",
    "StatusSnapshot",
    "LifecycleEvent",
    "RuntimeHandle",
    # Registry
    "RuntimeRegistry",
    # Managers
    "LifecycleManager",
    "ServerManager",
    "ClientManager",
    # Capability
    "TunnelBackend",
    "TunnelSession",
    "BoreBackend",
    "BoreSession",
    "BoreProcess",
    "find_bore_binary",
]
