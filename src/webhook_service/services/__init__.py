"""Service layer exports."""

from webhook_service.services.delivery import DeliveryExecutor
from webhook_service.services.rate_limit import InMemoryRateLimitStore, RateLimiter
from webhook_service.services.search import SearchService
from webhook_service.services.webhooks import WebhookService

__all__ = [
    "DeliveryExecutor",
    "InMemoryRateLimitStore",
    "RateLimiter",
    "SearchService",
    "WebhookService",
]
