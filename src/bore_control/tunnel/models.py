"""Tunnel entity models.

Entity configurations mirror the records kept by the external store. They are
validated loosely on purpose: network parameters stay plain strings and ints
so that a bad bind address reaches the lifecycle manager and becomes a
configuration error there, instead of failing while the record is loaded.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from .backend import TunnelSession


class EntityKind(str, Enum):
    """Kind of tunnel entity."""

    SERVER = "server"
    CLIENT = "client"


class ServerState(str, Enum):
    """Persisted server status."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    ERROR = "error"


class ClientState(str, Enum):
    """Persisted client status."""

    STOPPED = "stopped"
    STARTING = "starting"
    CONNECTED = "connected"
    ERROR = "error"


class WebhookFormat(str, Enum):
    """Webhook payload format."""

    JSON = "json"
    CUSTOM = "custom"


class EventKind(str, Enum):
    """Lifecycle event kind."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class ServerConfig(BaseModel):
    """Configuration of a tunnel server entity."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    id: int = Field(description="Entity identifier")
    name: str = Field(default="", description="Display name")
    description: str | None = Field(default=None, description="Free-form description")
    bind_addr: str = Field(default="0.0.0.0", description="Control connection bind address")
    bind_tunnels: str = Field(default="0.0.0.0", description="Forwarded ports bind address")
    port_range_start: int = Field(default=1024, description="First port handed to clients")
    port_range_end: int = Field(default=65535, description="Last port handed to clients")
    secret: str | None = Field(default=None, description="Shared secret")
    auto_start: bool = Field(default=False, description="Start at process boot")
    status: ServerState = Field(default=ServerState.STOPPED)
    error_message: str | None = Field(default=None)

    @property
    def kind(self) -> EntityKind:
        return EntityKind.SERVER


class ClientConfig(BaseModel):
    """Configuration of a tunnel client entity."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    id: int = Field(description="Entity identifier")
    name: str = Field(default="", description="Display name")
    description: str | None = Field(default=None, description="Free-form description")
    local_host: str = Field(default="localhost", description="Host of the local service")
    local_port: int = Field(description="Port of the local service")
    remote_server: str = Field(description="Tunnel server host")
    remote_port: int = Field(default=0, description="Requested remote port (0 = auto)")
    assigned_port: int | None = Field(default=None, description="Last assigned remote port")
    secret: str | None = Field(default=None, description="Shared secret")
    auto_start: bool = Field(default=False, description="Start at process boot")
    webhook_url: str | None = Field(default=None, description="Lifecycle webhook endpoint")
    webhook_format: WebhookFormat = Field(default=WebhookFormat.JSON)
    webhook_template: str | None = Field(
        default=None, description="Mustache template used by the custom format"
    )
    status: ClientState = Field(default=ClientState.STOPPED)
    error_message: str | None = Field(default=None)

    @property
    def kind(self) -> EntityKind:
        return EntityKind.CLIENT


class ServerStatusInfo(BaseModel):
    """Live status snapshot of a running server."""

    model_config = ConfigDict(frozen=True)

    id: int
    status: Literal["running", "stopped"] = "running"
    # Connection counting is not exposed by the tunnel capability.
    active_connections: int | None = None
    uptime_seconds: int = Field(default=0, ge=0)

    @classmethod
    def stopped(cls, entity_id: int) -> "ServerStatusInfo":
        """Shape reported for a server without a live task."""
        return cls(id=entity_id, status="stopped")


class ClientStatusInfo(BaseModel):
    """Live status snapshot of a connected client."""

    model_config = ConfigDict(frozen=True)

    id: int
    status: Literal["connected", "stopped"] = "connected"
    assigned_port: int | None = None
    uptime_seconds: int = Field(default=0, ge=0)

    @classmethod
    def stopped(cls, entity_id: int) -> "ClientStatusInfo":
        """Shape reported for a client without a live task."""
        return cls(id=entity_id, status="stopped")


StatusSnapshot = ServerStatusInfo | ClientStatusInfo


class LifecycleEvent(BaseModel):
    """Transient notification about an entity's lifecycle."""

    model_config = ConfigDict(frozen=True)

    entity_id: int
    entity_kind: EntityKind
    kind: EventKind
    detail: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class RuntimeHandle:
    """In-memory record of one running tunnel task. Never persisted."""

    entity_id: int
    task: "asyncio.Task[None]"
    session: "TunnelSession"
    assigned_port: int | None = None
    started_monotonic: float = field(default_factory=time.monotonic)

    @property
    def is_finished(self) -> bool:
        return self.task.done()

    @property
    def uptime_seconds(self) -> int:
        return max(0, int(time.monotonic() - self.started_monotonic))

    @property
    def outcome(self) -> BaseException | None:
        """Exception the task ended with, or None for a clean or cancelled exit.

        Only meaningful once the task has finished.
        """
        if not self.task.done() or self.task.cancelled():
            return None
        return self.task.exception()
