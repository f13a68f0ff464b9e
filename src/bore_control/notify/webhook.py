"""Webhook delivery for client lifecycle events.

Deliveries are best effort. ``WebhookSender`` raises on failure so it can be
tested directly; ``WebhookNotifier`` wraps it in background tasks that only
log, so tunnel start/stop never waits on or is reverted by a webhook.
"""

import asyncio
import ipaddress
import json
from datetime import datetime, timezone
from typing import Any

import chevron
import httpx

from ..common.exceptions import (
    ConfigurationError,
    WebhookDeliveryError,
    WebhookValidationError,
)
from ..common.logging import get_logger
from ..tunnel.models import ClientConfig, EventKind, WebhookFormat

logger = get_logger(__name__)

ALLOWED_SCHEMES = ("http", "https")
INTERNAL_HOSTNAMES = ("localhost",)
INTERNAL_HOST_SUFFIXES = (".localhost", ".local", ".internal")

DOCUMENTATION_NETWORKS = (
    ipaddress.ip_network("192.0.2.0/24"),
    ipaddress.ip_network("198.51.100.0/24"),
    ipaddress.ip_network("203.0.113.0/24"),
    ipaddress.ip_network("2001:db8::/32"),
)
BROADCAST_ADDRESS = ipaddress.IPv4Address("255.255.255.255")

DEFAULT_TIMEOUT = 10.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE = 0.1


def is_forbidden_ip(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    """True for addresses a webhook must never be sent to."""
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_unspecified
        or ip.is_multicast
        or ip.is_reserved
        or ip == BROADCAST_ADDRESS
        or any(ip in network for network in DOCUMENTATION_NETWORKS)
    )


def validate_webhook_url(url: str) -> httpx.URL:
    """Reject webhook URLs that could reach internal infrastructure.

    Returns:
        The parsed URL

    Raises:
        WebhookValidationError: If the scheme or host is not allowed
    """
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError) as e:
        raise WebhookValidationError(f"Invalid webhook URL: {e}") from e

    if parsed.scheme not in ALLOWED_SCHEMES:
        raise WebhookValidationError(
            f"Invalid webhook URL scheme: {parsed.scheme or '<none>'}. "
            "Only http and https are allowed."
        )

    host = parsed.host.lower().rstrip(".")
    if not host:
        raise WebhookValidationError("Webhook URL has no host")

    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        if host in INTERNAL_HOSTNAMES or host.endswith(INTERNAL_HOST_SUFFIXES):
            raise WebhookValidationError(
                f"Webhook hostname '{host}' appears to be internal. "
                "This is not allowed for security reasons."
            ) from None
        return parsed

    if is_forbidden_ip(ip):
        raise WebhookValidationError(
            "Webhook URL points to a private or reserved IP address. "
            "This is not allowed for security reasons."
        )
    return parsed


def build_event_fields(
    event: EventKind, client: ClientConfig, extra: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Field set shared by the JSON envelope and custom templates."""
    extra = extra or {}
    fields: dict[str, Any] = {
        "event": event.value,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "client_id": client.id,
        "client_name": client.name,
    }
    if client.description:
        fields["description"] = client.description

    if event == EventKind.CONNECTED:
        fields["local_host"] = client.local_host
        fields["local_port"] = client.local_port
        fields["remote_server"] = client.remote_server
        assigned_port = extra.get("assigned_port", client.assigned_port)
        if assigned_port is not None:
            fields["assigned_port"] = assigned_port
    elif event == EventKind.DISCONNECTED:
        if "uptime_seconds" in extra:
            fields["uptime_seconds"] = extra["uptime_seconds"]
    elif event == EventKind.ERROR:
        if "error" in extra:
            fields["error"] = extra["error"]

    return fields


def render_payload(
    event: EventKind, client: ClientConfig, extra: dict[str, Any] | None = None
) -> tuple[str, str]:
    """Build the request body and content type for ``client``'s webhook format.

    Raises:
        ConfigurationError: If the custom format has no template
    """
    fields = build_event_fields(event, client, extra)

    if client.webhook_format == WebhookFormat.CUSTOM:
        if not client.webhook_template:
            raise ConfigurationError("No webhook template configured")
        return chevron.render(client.webhook_template, fields), "text/plain"

    fields["event"] = f"client.{event.value}"
    return json.dumps(fields), "application/json"


async def _backoff(delay: float) -> None:
    await asyncio.sleep(delay)


class WebhookSender:
    """Validate, render, and POST one webhook with retries."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def send(
        self,
        client: ClientConfig,
        event: EventKind,
        extra: dict[str, Any] | None = None,
    ) -> int:
        """Deliver ``event`` for ``client``.

        Returns:
            The attempt number that succeeded

        Raises:
            ConfigurationError: If the client has no URL or template
            WebhookValidationError: If the URL is not allowed
            WebhookDeliveryError: If every attempt failed
        """
        if not client.webhook_url:
            raise ConfigurationError(f"Client {client.id} has no webhook URL")
        url = validate_webhook_url(client.webhook_url)
        body, content_type = render_payload(event, client, extra)
        return await self._send_with_retry(url, body, content_type)

    async def _send_with_retry(self, url: httpx.URL, body: str, content_type: str) -> int:
        last_error = "Unknown error"

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self._client.post(
                    url, content=body, headers={"Content-Type": content_type}
                )
            except httpx.HTTPError as e:
                last_error = str(e) or type(e).__name__
                logger.warning("Webhook failed", url=str(url), attempt=attempt, error=last_error)
            else:
                if response.is_success:
                    logger.info("Webhook sent successfully", url=str(url), attempt=attempt)
                    return attempt
                if response.status_code < 500:
                    # Redirects are not followed; 3xx and 4xx are final.
                    error_msg = f"HTTP {response.status_code} (not retrying)"
                    logger.error("Webhook failed", url=str(url), error=error_msg)
                    raise WebhookDeliveryError(error_msg)
                last_error = f"HTTP {response.status_code}"
                logger.warning(
                    "Webhook returned server error",
                    url=str(url),
                    status=response.status_code,
                    attempt=attempt,
                )

            if attempt < self.max_attempts:
                await _backoff(self.backoff_base * 2 ** (attempt - 1))

        logger.error(
            "Webhook delivery failed",
            url=str(url),
            attempts=self.max_attempts,
            error=last_error,
        )
        raise WebhookDeliveryError(
            f"Webhook failed after {self.max_attempts} attempts: {last_error}"
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class WebhookNotifier:
    """Fire-and-forget webhook delivery in background tasks."""

    def __init__(self, sender: WebhookSender | None = None, close_timeout: float = 15.0):
        self.sender = sender or WebhookSender()
        self.close_timeout = close_timeout
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def notify(
        self,
        client: ClientConfig,
        event: EventKind,
        extra: dict[str, Any] | None = None,
    ) -> "asyncio.Task[None] | None":
        """Schedule delivery of ``event``. Clients without a webhook URL are skipped."""
        if not client.webhook_url:
            return None
        task = asyncio.create_task(
            self._deliver(client.model_copy(), event, dict(extra or {})),
            name=f"webhook-client-{client.id}-{event.value}",
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _deliver(
        self, client: ClientConfig, event: EventKind, extra: dict[str, Any]
    ) -> None:
        try:
            await self.sender.send(client, event, extra)
        except (ConfigurationError, WebhookValidationError, WebhookDeliveryError) as e:
            logger.error("Webhook error", client_id=client.id, event=event.value, error=str(e))
        except Exception:
            logger.exception("Unexpected webhook error", client_id=client.id, event=event.value)

    async def aclose(self) -> None:
        """Wait for in-flight deliveries, cancel stragglers, close the HTTP client."""
        if self._pending:
            _, pending = await asyncio.wait(list(self._pending), timeout=self.close_timeout)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.wait(pending)
        await self.sender.aclose()
