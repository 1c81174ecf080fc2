"""
LINE Notification Service

Production implementation using the LINE Messaging API push endpoint.

API Documentation:
    https://developers.line.biz/en/reference/messaging-api/#send-push-message

Author: Khalil Bannouri
Version: 3.0.0
"""

import logging
from typing import Optional

import httpx

from storefront.services.notifications.base import (
    BaseNotificationService,
    NotificationError,
    NotificationResult,
)

logger = logging.getLogger(__name__)

PUSH_PATH = "/v2/bot/message/push"
BOT_INFO_PATH = "/v2/bot/info"


def line_headers(token: Optional[str]) -> dict[str, str]:
    """Bearer auth headers for the Messaging API."""
    if not token:
        raise NotificationError("Missing LINE_CHANNEL_ACCESS_TOKEN")
    return {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json",
    }


def build_push_request(api_base: str, token: Optional[str], to: str, text: str) -> dict:
    """
    Keyword arguments for an httpx ``post`` pushing one text message.

    Shared by the async service and the Celery task.

    Raises:
        NotificationError: If the token or recipient is missing
    """
    headers = line_headers(token)
    if not to:
        raise NotificationError("LINE recipient is empty")
    return {
        "url": f"{api_base.rstrip('/')}{PUSH_PATH}",
        "json": {"to": to, "messages": [{"type": "text", "text": text}]},
        "headers": headers,
    }


class LineApiError(NotificationError):
    """LINE answered with a non-success status."""

    def __init__(self, status_code: int, body: str):
        super().__init__(f"LINE API error {status_code}: {body}")
        self.status_code = status_code
        self.body = body


class LineNotificationService(BaseNotificationService):
    """
    Pushes text messages through the LINE Messaging API.

    Example:
        >>> service = LineNotificationService(token="...")
        >>> await service.push_text("Uxxxxxxxx", "Order ready")
    """

    def __init__(
        self,
        token: Optional[str],
        api_base: str = "https://api.line.me",
        timeout: float = 10.0,
        restaurant_name: str = "TENZAI",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._token = token
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._client = client
        self.restaurant_name = restaurant_name

        if not token:
            logger.warning("LINE channel access token not configured")
        logger.info("LineNotificationService initialized")

    @property
    def provider_name(self) -> str:
        return "line"

    async def _post(self, client: httpx.AsyncClient, request: dict) -> httpx.Response:
        return await client.post(**request, timeout=self._timeout)

    async def push_text(self, to: str, text: str) -> NotificationResult:
        """Push one text message to a user, group or room id."""
        request = build_push_request(self._api_base, self._token, to, text)

        try:
            if self._client is not None:
                response = await self._post(self._client, request)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._post(client, request)
        except httpx.HTTPError as e:
            raise NotificationError(f"LINE request failed: {e}") from e

        if response.status_code >= 300:
            raise LineApiError(response.status_code, response.text)

        logger.info(f"LINE push sent to {to}")
        return NotificationResult(success=True, recipient=to, provider="line")

    async def health_check(self) -> bool:
        """Check the channel token against the bot info endpoint."""
        try:
            headers = line_headers(self._token)
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    f"{self._api_base}{BOT_INFO_PATH}",
                    headers=headers,
                    timeout=self._timeout,
                )
            return response.status_code == 200
        except (NotificationError, httpx.HTTPError) as e:
            logger.error(f"LINE health check failed: {e}")
            return False
