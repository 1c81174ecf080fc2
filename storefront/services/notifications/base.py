"""
Notification Service Abstract Base Class

Defines the interface for pushing LINE messages to customers and staff.
Supports both Mock (development) and LINE (staging/production) implementations.

Author: Khalil Bannouri
Version: 3.0.0
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from storefront.models import OrderStatus

logger = logging.getLogger(__name__)


class NotificationError(RuntimeError):
    """A notification could not be sent."""


@dataclass
class NotificationResult:
    """Result from pushing a message."""
    success: bool
    recipient: Optional[str] = None
    error_message: Optional[str] = None
    provider: str = "unknown"


def build_customer_status_message(
    order_number: str,
    status: OrderStatus,
    restaurant_name: str = "TENZAI",
) -> str:
    """Customer-facing text for a staff status change."""
    if status == OrderStatus.READY:
        return (
            "🍱 อาหารของคุณพร้อมแล้ว\n"
            "\n"
            f"📋 เลขที่: {order_number}\n"
            "✅ สถานะ: พร้อมรับได้เลย\n"
            "\n"
            f"ขอบคุณที่ใช้บริการ {restaurant_name}"
        )
    if status == OrderStatus.PICKED_UP:
        return (
            "✅ ได้รับอาหารเรียบร้อยแล้ว\n"
            "\n"
            f"📋 เลขที่: {order_number}\n"
            "🙏 ขอบคุณที่ใช้บริการ\n"
            "\n"
            "หวังว่าจะได้เจอกันใหม่!"
        )
    raise ValueError(f"No customer message for status {status.value}")


class BaseNotificationService(ABC):
    """Abstract base class for notification services."""

    restaurant_name: str = "TENZAI"

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def push_text(self, to: str, text: str) -> NotificationResult:
        """
        Push a plain text message.

        Raises:
            NotificationError: If the message could not be delivered
        """
        pass

    async def send_customer_status(
        self,
        order_number: str,
        customer_line_user_id: Optional[str],
        status: OrderStatus,
    ) -> NotificationResult:
        """
        Tell the customer their order is ready or has been picked up.

        Orders placed without LINE (walk-ins) are skipped and reported as
        not sent.
        """
        if not customer_line_user_id:
            logger.info(f"Order {order_number}: no customer LINE user ID, skipping notification")
            return NotificationResult(
                success=False,
                error_message="No customer LINE user ID",
                provider=self.provider_name,
            )

        message = build_customer_status_message(order_number, status, self.restaurant_name)
        return await self.push_text(customer_line_user_id, message)

    @abstractmethod
    async def health_check(self) -> bool:
        """Check service connectivity."""
        pass
