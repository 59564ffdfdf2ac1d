"""
Withdrawal Service Clients

HTTP clients for the account and notification collaborators.
"""

from .account_client import AccountClient
from .notification_client import NotificationClient

__all__ = ["AccountClient", "NotificationClient"]
