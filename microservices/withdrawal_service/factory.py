"""
Withdrawal Service Factory

Factory for creating WithdrawalService with real dependencies.
This is the ONLY module that imports concrete implementations.
"""

import logging
from typing import Optional

from core.config_manager import ConfigManager

from .token_service import TokenService
from .withdrawal_repository import WithdrawalRepository
from .withdrawal_service import WithdrawalService

logger = logging.getLogger(__name__)


def create_withdrawal_service(
    config: Optional[ConfigManager] = None,
    event_bus=None,
    notification_client=None,
    account_client=None,
) -> WithdrawalService:
    """
    Create WithdrawalService with all real dependencies

    Args:
        config: Optional config manager (creates default if not provided)
        event_bus: Optional event bus for event publishing
        notification_client: Optional notification client (creates default if not provided)
        account_client: Optional account client (creates default if not provided)

    Returns:
        WithdrawalService sharing one TokenService and repository
    """
    if config is None:
        config = ConfigManager("withdrawal_service")

    repository = WithdrawalRepository(config=config)

    if notification_client is None:
        from .clients.notification_client import NotificationClient

        notification_client = NotificationClient(config=config)
        logger.info("✅ NotificationClient initialized for withdrawal service")

    if account_client is None:
        from .clients.account_client import AccountClient

        account_client = AccountClient(config=config)
        logger.info("✅ AccountClient initialized for withdrawal service")

    token_service = TokenService(
        repository=repository,
        event_bus=event_bus,
        notification_client=notification_client,
        account_client=account_client,
    )

    return WithdrawalService(
        repository=repository,
        token_service=token_service,
        event_bus=event_bus,
    )


__all__ = ["create_withdrawal_service"]
