#!/usr/bin/env python3
"""Service configuration for peer services

External service dependencies the withdrawal service calls over HTTP.
"""
import os
from dataclasses import dataclass

def _float(val: str, default: float) -> float:
    try:
        return float(val) if val else default
    except ValueError:
        return default


@dataclass
class PeerServiceConfig:
    """Peer service endpoints"""

    # Account service - user profile / display name lookups
    account_service_url: str = "http://localhost:8202"

    # Notification service - user-facing notifications
    notification_service_url: str = "http://localhost:8206"

    # Timeout for peer HTTP calls (seconds)
    http_timeout: float = 5.0

    @classmethod
    def from_env(cls) -> 'PeerServiceConfig':
        """Load service configuration from environment variables"""
        return cls(
            account_service_url=os.getenv("ACCOUNT_SERVICE_URL", "http://localhost:8202"),
            notification_service_url=os.getenv("NOTIFICATION_SERVICE_URL", "http://localhost:8206"),
            http_timeout=_float(os.getenv("PEER_HTTP_TIMEOUT", "5.0"), 5.0),
        )
