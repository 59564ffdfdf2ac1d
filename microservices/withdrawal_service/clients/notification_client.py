"""
Notification Service Client for Withdrawal Service

HTTP client for user-facing notifications sent through notification_service
"""

import httpx
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class NotificationClient:
    """Client for notification_service"""

    def __init__(self, base_url: Optional[str] = None, config=None, timeout: Optional[float] = None):
        """
        Initialize Notification Service client

        Args:
            base_url: Notification service base URL
            config: ConfigManager instance for endpoint resolution
            timeout: Request timeout in seconds
        """
        if base_url:
            self.base_url = base_url.rstrip('/')
        elif config is not None:
            self.base_url = config.peers.notification_service_url.rstrip('/')
        else:
            self.base_url = "http://localhost:8206"

        if timeout is None:
            timeout = config.peers.http_timeout if config is not None else 5.0

        self.client = httpx.AsyncClient(
            timeout=timeout,
            headers={"X-Internal-Call": "true"},
        )
        logger.info(f"NotificationClient initialized with base_url: {self.base_url}")

    async def close(self):
        """Close HTTP client"""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def send_notification(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Send a notification to one user

        Returns:
            True if accepted by notification_service, False otherwise
        """
        try:
            payload = {
                "user_ids": [user_id],
                "notification_type": notification_type,
                "title": title,
                "message": message,
                "data": data or {},
                "channels": ["push", "sms"],
                "priority": "normal",
            }

            response = await self.client.post(
                f"{self.base_url}/api/v1/notifications/send",
                json=payload
            )
            response.raise_for_status()
            return True

        except httpx.HTTPStatusError as e:
            logger.error(f"Notification {notification_type} for {user_id} rejected: {e.response.status_code}")
            return False
        except httpx.HTTPError as e:
            logger.error(f"Failed to send notification {notification_type} to {user_id}: {e}")
            return False


__all__ = ["NotificationClient"]
