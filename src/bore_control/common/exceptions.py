"""Custom exceptions for bore-control."""


class BoreControlError(Exception):
    """Base exception for all bore-control errors."""
    pass


class ConfigurationError(BoreControlError):
    """Raised when an entity configuration is invalid."""
    pass


class AlreadyRunningError(BoreControlError):
    """Raised when starting an entity that already has a runtime handle."""
    pass


class NotRunningError(BoreControlError):
    """Raised when stopping or reaping an entity that is not registered."""
    pass


class EntityNotFoundError(BoreControlError):
    """Raised when the record store has no entity with the requested ID."""
    pass


class TunnelError(BoreControlError):
    """Raised when the tunnel capability fails to connect or listen."""
    pass


class BinaryNotFoundError(TunnelError):
    """Raised when the bore binary is not found or not executable."""
    pass


class WebhookError(BoreControlError):
    """Base exception for webhook delivery errors."""
    pass


class WebhookValidationError(WebhookError):
    """Raised when a webhook URL points somewhere it must not."""
    pass


class WebhookDeliveryError(WebhookError):
    """Raised when a webhook could not be delivered."""
    pass
