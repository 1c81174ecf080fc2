"""
Notification Service Factory

Returns Mock or LINE notification service based on ENV_MODE.

Author: Khalil Bannouri
Version: 3.0.0
"""

import logging
from functools import lru_cache

from storefront.core.config import get_settings
from storefront.services.notifications.base import (
    BaseNotificationService,
    NotificationError,
    NotificationResult,
    build_customer_status_message,
)
from storefront.services.notifications.mock import MockNotificationService
from storefront.services.notifications.line import LineApiError, LineNotificationService

logger = logging.getLogger(__name__)


@lru_cache()
def get_notification_service() -> BaseNotificationService:
    """Get the configured notification service."""
    settings = get_settings()

    if settings.is_development:
        logger.info("Notification Service: Using MockNotificationService (development mode)")
        return MockNotificationService(restaurant_name=settings.restaurant_name)
    else:
        logger.info(f"Notification Service: Using LineNotificationService ({settings.env_mode.value} mode)")
        return LineNotificationService(
            token=settings.line_channel_access_token,
            api_base=settings.line_api_base,
            timeout=settings.line_timeout_seconds,
            restaurant_name=settings.restaurant_name,
        )


def reset_notification_service() -> None:
    """Clear the cached service instance."""
    get_notification_service.cache_clear()


__all__ = [
    "get_notification_service",
    "reset_notification_service",
    "BaseNotificationService",
    "NotificationError",
    "NotificationResult",
    "LineApiError",
    "LineNotificationService",
    "MockNotificationService",
    "build_customer_status_message",
]
