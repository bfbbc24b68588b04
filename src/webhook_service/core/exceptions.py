"""Common exceptions for domain and repository layers."""
from __future__ import annotations


class WebhookServiceError(Exception):
    """Base error for service layer."""


class RepositoryError(WebhookServiceError):
    """Raised when repository operations fail."""


class NotFoundError(RepositoryError):
    """Raised when requested entity is missing."""


class UnknownEventError(WebhookServiceError):
    """Raised when a subscription names an event outside the catalog."""


class AlreadyDeliveredError(WebhookServiceError):
    """Raised when retrying a delivery that already succeeded."""


class InactiveSubscriptionError(WebhookServiceError):
    """Raised when retrying against a disabled subscription."""
