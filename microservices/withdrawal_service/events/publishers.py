"""
Withdrawal Service Event Publishers

Publish events for the withdrawal and token lifecycle.
Publishing happens after the store commit and never fails the caller.
"""

import logging

from core.nats_client import Event, EventType, ServiceSource

from ..models import Agent, WithdrawalToken, WithdrawalTransaction
from .models import (
    TokenCancelledEventData,
    TokenExpiredEventData,
    TokenIssuedEventData,
    TokenRedeemedEventData,
    WithdrawalInitiatedEventData,
)

logger = logging.getLogger(__name__)


async def _publish(event_bus, event_type: EventType, data, subject: str) -> bool:
    if event_bus is None:
        return False
    try:
        event = Event(
            event_type=event_type,
            source=ServiceSource.WITHDRAWAL_SERVICE,
            data=data.model_dump(mode="json"),
            subject=subject,
        )
        published = await event_bus.publish_event(event)
        if published:
            logger.info(f"Published {event_type.value} for {subject}")
        return bool(published)
    except Exception as e:
        # The bus is best-effort; the state change is already committed
        logger.error(f"Failed to publish {event_type.value}: {e}")
        return False


async def publish_withdrawal_initiated(
    event_bus,
    transaction: WithdrawalTransaction,
    token: WithdrawalToken,
    is_fee_free: bool,
) -> bool:
    """
    Publish withdrawal.initiated event

    Args:
        event_bus: NATS event bus instance
        transaction: Committed PENDING transaction
        token: Token minted for it
        is_fee_free: Whether a quota slot was consumed
    """
    data = WithdrawalInitiatedEventData(
        transaction_id=transaction.transaction_id,
        user_id=transaction.user_id,
        amount=transaction.amount,
        fee_amount=transaction.fee,
        is_fee_free=is_fee_free,
        reference=transaction.reference,
        token_id=token.token_id,
        agent_id=transaction.agent_id,
    )
    return await _publish(event_bus, EventType.WITHDRAWAL_INITIATED, data, transaction.transaction_id)


async def publish_token_issued(event_bus, token: WithdrawalToken) -> bool:
    data = TokenIssuedEventData(
        token_id=token.token_id,
        user_id=token.user_id,
        transaction_id=token.transaction_id,
        amount=token.amount,
        expires_at=token.expires_at,
    )
    return await _publish(event_bus, EventType.WITHDRAWAL_TOKEN_ISSUED, data, token.token_id)


async def publish_token_redeemed(
    event_bus,
    token: WithdrawalToken,
    agent: Agent,
    commission: int,
) -> bool:
    data = TokenRedeemedEventData(
        token_id=token.token_id,
        user_id=token.user_id,
        transaction_id=token.transaction_id,
        agent_id=agent.agent_id,
        amount=token.amount,
        commission=commission,
        location=token.redeemed_location,
        redeemed_at=token.redeemed_at,
    )
    return await _publish(event_bus, EventType.WITHDRAWAL_TOKEN_REDEEMED, data, token.token_id)


async def publish_token_cancelled(event_bus, token: WithdrawalToken) -> bool:
    data = TokenCancelledEventData(
        token_id=token.token_id,
        user_id=token.user_id,
        transaction_id=token.transaction_id,
        amount=token.amount,
    )
    return await _publish(event_bus, EventType.WITHDRAWAL_TOKEN_CANCELLED, data, token.token_id)


async def publish_token_expired(event_bus, token: WithdrawalToken) -> bool:
    data = TokenExpiredEventData(
        token_id=token.token_id,
        user_id=token.user_id,
        transaction_id=token.transaction_id,
        amount=token.amount,
        expires_at=token.expires_at,
    )
    return await _publish(event_bus, EventType.WITHDRAWAL_TOKEN_EXPIRED, data, token.token_id)


__all__ = [
    "publish_withdrawal_initiated",
    "publish_token_issued",
    "publish_token_redeemed",
    "publish_token_cancelled",
    "publish_token_expired",
]
