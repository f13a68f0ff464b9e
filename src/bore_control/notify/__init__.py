"""Outbound notifications: webhooks and dashboard broadcasts."""

from .broadcaster import (
    MessageType,
    StatusBroadcaster,
    SubscriberGone,
    Subscription,
    WsMessage,
)
from .webhook import (
    WebhookNotifier,
    WebhookSender,
    is_forbidden_ip,
    render_payload,
    validate_webhook_url,
)

__all__ = [
    "MessageType",
    "WsMessage",
    "Subscription",
    "SubscriberGone",
    "StatusBroadcaster",
    "WebhookSender",
    "WebhookNotifier",
    "validate_webhook_url",
    "is_forbidden_ip",
    "render_payload",
]
