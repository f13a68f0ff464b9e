"""Common utilities and shared functionality."""

from .exceptions import (
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
from .logging import configure_from_settings, get_logger, setup_logging
from .settings import ControlSettings
from .utils import (
    MAX_PORT,
    MIN_PORT,
    mask_sensitive_data,
    parse_ip_address,
    sanitize_log_data,
    validate_non_empty_string,
    validate_port,
)

__all__ = [
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
    "configure_from_settings",
    # Settings
    "ControlSettings",
    # Utils
    "validate_port",
    "validate_non_empty_string",
    "parse_ip_address",
    "mask_sensitive_data",
    "sanitize_log_data",
    "MIN_PORT",
    "MAX_PORT",
]
