"""
Account Service Client for Withdrawal Service

Resolves user display names shown to agents during token verification.
"""

import httpx
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class AccountClient:
    """Client for account_service"""

    def __init__(self, base_url: Optional[str] = None, config=None, timeout: Optional[float] = None):
        if base_url:
            self.base_url = base_url.rstrip('/')
        elif config is not None:
            self.base_url = config.peers.account_service_url.rstrip('/')
        else:
            self.base_url = "http://localhost:8202"

        if timeout is None:
            timeout = config.peers.http_timeout if config is not None else 5.0

        self.client = httpx.AsyncClient(
            timeout=timeout,
            headers={"X-Internal-Call": "true"},
        )
        logger.info(f"AccountClient initialized with base_url: {self.base_url}")

    async def close(self):
        """Close HTTP client"""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def get_account_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Get account profile

        Returns:
            Profile dict, or None if the user is unknown or the call failed
        """
        try:
            response = await self.client.get(
                f"{self.base_url}/api/v1/accounts/profile/{user_id}"
            )
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.warning(f"Failed to get account profile for {user_id}: {e}")
            return None

    async def get_user_display_name(self, user_id: str) -> Optional[str]:
        profile = await self.get_account_profile(user_id)
        if not profile:
            return None
        return profile.get("name") or profile.get("email")


__all__ = ["AccountClient"]
