"""
Celery Tasks
Background LINE pushes that can be retried outside the request cycle.
"""

import logging
import time

import httpx

from storefront.celery_worker import celery_app
from storefront.core.config import get_settings
from storefront.services.notifications.base import NotificationError
from storefront.services.notifications.line import build_push_request

logger = logging.getLogger(__name__)


class RetryableLineError(RuntimeError):
    """LINE rejected the push with a status worth retrying (429/5xx)."""


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(httpx.HTTPError, RetryableLineError),
    retry_backoff=True
)
def push_line_message(self, to: str, text: str) -> dict:
    """
    Push a text message through the LINE Messaging API.

    Args:
        to: LINE user, group or room id
        text: Message body

    Returns:
        dict: Result of the push
    """
    settings = get_settings()
    task_id = self.request.id
    start_time = time.time()

    try:
        request = build_push_request(
            settings.line_api_base, settings.line_channel_access_token, to, text
        )
    except NotificationError as e:
        logger.error(f"Task {task_id}: {e}")
        return {'success': False, 'task_id': task_id, 'error': str(e)}

    with httpx.Client(timeout=settings.line_timeout_seconds) as client:
        response = client.post(**request)

    elapsed = round(time.time() - start_time, 3)

    if response.status_code == 429 or response.status_code >= 500:
        logger.warning(f"Task {task_id}: LINE {response.status_code}, will retry")
        raise RetryableLineError(f"LINE API error {response.status_code}")

    if response.status_code >= 300:
        logger.error(f"Task {task_id}: LINE rejected push to {to}: {response.status_code} {response.text}")
        return {
            'success': False,
            'task_id': task_id,
            'error': f"LINE API error {response.status_code}",
            'processing_time_seconds': elapsed,
        }

    logger.info(f"Task {task_id}: LINE push to {to} completed in {elapsed}s")
    return {'success': True, 'task_id': task_id, 'processing_time_seconds': elapsed}
