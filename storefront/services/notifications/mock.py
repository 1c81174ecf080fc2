"""
Mock Notification Service

Simulates LINE pushes for development.
No actual messages are sent - just logged and kept in memory.

Author: Khalil Bannouri
Version: 3.0.0
"""

import asyncio
import random
import logging

from storefront.services.notifications.base import (
    BaseNotificationService,
    NotificationError,
    NotificationResult,
)

logger = logging.getLogger(__name__)


class MockNotificationService(BaseNotificationService):
    """Mock notification service for development."""

    def __init__(
        self,
        failure_rate: float = 0.0,
        max_latency: float = 0.0,
        restaurant_name: str = "TENZAI",
    ):
        self.failure_rate = failure_rate
        self.max_latency = max_latency
        self.restaurant_name = restaurant_name
        self.sent: list[tuple[str, str]] = []
        logger.info(f"MockNotificationService initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "mock"

    async def push_text(self, to: str, text: str) -> NotificationResult:
        """Record the message instead of sending it."""
        if self.max_latency:
            await asyncio.sleep(random.uniform(0, self.max_latency))

        if random.random() < self.failure_rate:
            logger.warning(f"Mock LINE push failed (simulated) to {to}")
            raise NotificationError("Simulated LINE push failure")

        self.sent.append((to, text))
        logger.info(f"Mock LINE push to {to}: {text.splitlines()[0][:50]}")
        return NotificationResult(success=True, recipient=to, provider="mock")

    async def health_check(self) -> bool:
        """Mock always returns healthy."""
        return True
