"""bore-control - lifecycle control plane for bore tunnel servers and clients."""

from . import notify, tunnel
from .common.exceptions import (
    AlreadyRunningError,
    BinaryNotFoundError,
    BoreControlError,
    ConfigurationError,
    EntityNotFoundError,
    NotRunningError,
    TunnelError,
    WebhookDeliveryError,
    WebhookError,
    WebhookValidationError,
)
from .common.logging import get_logger, setup_logging
from .common.settings import ControlSettings
from .control import ControlPlane
from .notify import StatusBroadcaster, Subscription, WebhookNotifier, WebhookSender, WsMessage
from .orchestrator import AutoStartOrchestrator
from .service import EntityStore, TunnelService
from .tunnel import (
    BoreBackend,
    ClientConfig,
    ClientManager,
    ClientState,
    ClientStatusInfo,
    EventKind,
    LifecycleEvent,
    RuntimeHandle,
    RuntimeRegistry,
    ServerConfig,
    ServerManager,
    ServerState,
    ServerStatusInfo,
    TunnelBackend,
    TunnelSession,
    WebhookFormat,
)

# Setup logging on package initialization
setup_logging(level="INFO")

logger = get_logger(__name__)

__version__ = "0.1.0"


__all__ = [
    # Control plane
    "ControlPlane",
    "ControlSettings",
    "TunnelService",
    "EntityStore",
    "AutoStartOrchestrator",
    # Tunnel lifecycle
    "ServerManager",
    "ClientManager",
    "RuntimeRegistry",
    "RuntimeHandle",
    "TunnelBackend",
    "TunnelSession",
    "BoreBackend",
    # Models
    "ServerConfig",
    "ClientConfig",
    "ServerState",
    "ClientState",
    "ServerStatusInfo",
    "ClientStatusInfo",
    "LifecycleEvent",
    "EventKind",
    "WebhookFormat",
    # Notifications
    "StatusBroadcaster",
    "Subscription",
    "WsMessage",
    "WebhookSender",
    "WebhookNotifier",
    # Exceptions
    "BoreControlError",
    "ConfigurationError",
    "AlreadyRunningError",
    "NotRunningError",
    "EntityNotFoundError",
    "TunnelError",
    "BinaryNotFoundError",
    "WebhookError",
    "WebhookValidationError",
    "WebhookDeliveryError",
    # Logging
    "get_logger",
    "setup_logging",
    "notify",
    "tunnel",
]
