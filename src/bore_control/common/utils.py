"""Utility functions for bore-control."""

import ipaddress
import re
from typing import Any

from .exceptions import ConfigurationError

# Port range constants
MIN_PORT = 1
MAX_PORT = 65535

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")

SENSITIVE_FIELDS = frozenset(
    {
        "secret",
        "token",
        "password",
        "api_key",
        "authorization",
    }
)


def validate_port(port: int, port_name: str = "Port", allow_zero: bool = False) -> int:
    """Validate port number range.

    Args:
        port: Port number to validate
        port_name: Name of the port for error messages
        allow_zero: Accept 0 as "let the remote side choose"

    Returns:
        The validated port

    Raises:
        ConfigurationError: If port is not in the valid range
    """
    lower = 0 if allow_zero else MIN_PORT
    if isinstance(port, bool) or not isinstance(port, int) or not (lower <= port <= MAX_PORT):
        raise ConfigurationError(f"{port_name} must be between {lower} and {MAX_PORT}")
    return port


def validate_non_empty_string(value: str | None, field_name: str) -> str:
    """Validate that a string is not empty or only whitespace.

    Raises:
        ConfigurationError: If string is empty or only whitespace
    """
    if not value or not value.strip():
        raise ConfigurationError(f"{field_name} cannot be empty")
    return value.strip()


def parse_ip_address(
    value: str, field_name: str
) -> ipaddress.IPv4Address | ipaddress.IPv6Address:
    """Parse an IP literal used as a bind address.

    Raises:
        ConfigurationError: If value is not an IPv4 or IPv6 literal
    """
    try:
        return ipaddress.ip_address(value.strip())
    except (ValueError, AttributeError) as e:
        raise ConfigurationError(f"Invalid {field_name}: {e}") from e


def strip_ansi(text: str) -> str:
    """Remove terminal color escapes from a line of subprocess output."""
    return _ANSI_ESCAPE.sub("", text)


def mask_sensitive_data(
    value: str | None, mask_char: str = "*", show_chars: int = 4
) -> str:
    """Mask sensitive data for logging while preserving some characters for debugging.

    Args:
        value: Sensitive string to mask (e.g., tunnel secret)
        mask_char: Character to use for masking
        show_chars: Number of characters to show at the end

    Returns:
        Masked string safe for logging
    """
    if not value:
        return "<None>"

    if len(value) <= show_chars:
        return mask_char * len(value)

    masked_length = len(value) - show_chars
    return mask_char * masked_length + value[-show_chars:]


def sanitize_log_data(data: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``data`` with secret-looking fields masked."""
    sanitized = {}
    for key, value in data.items():
        if any(field in key.lower() for field in SENSITIVE_FIELDS):
            sanitized[key] = mask_sensitive_data(str(value) if value else None)
        else:
            sanitized[key] = value

    return sanitized
