"""
Withdrawal Service Protocols

Defines interfaces for dependency injection and testing.
Following the protocol-based architecture pattern.

Custom exceptions live here as well so that the business layer never has to
import the I/O-bound repository module.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from .models import (
    Agent,
    Subscription,
    WithdrawalToken,
    WithdrawalTransaction,
)


# ====================
# Repository Protocol
# ====================


@runtime_checkable
class WithdrawalRepositoryProtocol(Protocol):
    """Persistence interface for subscriptions, transactions, tokens and agents"""

    async def get_subscription_by_user(self, user_id: str) -> Optional[Subscription]:
        """Current subscription of a user, or None"""
        ...

    async def create_withdrawal(
        self,
        transaction: WithdrawalTransaction,
        token: WithdrawalToken,
        consume_free_withdrawal: bool,
        audit_details: Dict[str, Any],
    ) -> Tuple[WithdrawalTransaction, WithdrawalToken]:
        """
        Persist a withdrawal as one atomic unit.

        Inserts the transaction, consumes one fee-free slot when requested,
        writes the `withdrawal_initiated` audit entry and inserts the token.

        Raises:
            QuotaConflictError: no fee-free slot was left at commit time
            DuplicateTokenCodeError: token code or reference already taken
            DependencyError: store unavailable
        """
        ...

    async def create_token(self, token: WithdrawalToken) -> WithdrawalToken:
        """
        Insert a PENDING token.

        Raises:
            DuplicateTokenCodeError: token code already taken
            TokenAlreadyIssuedError: the linked transaction already has a
                PENDING or REDEEMED token
        """
        ...

    async def get_transaction(self, transaction_id: str) -> Optional[WithdrawalTransaction]:
        ...

    async def get_live_token_for_transaction(self, transaction_id: str) -> Optional[WithdrawalToken]:
        """The PENDING or REDEEMED token of a transaction, if any"""
        ...

    async def list_user_transactions(self, user_id: str, limit: int) -> List[WithdrawalTransaction]:
        """User withdrawal transactions, newest first"""
        ...

    async def get_token_by_code(self, code: str) -> Optional[WithdrawalToken]:
        ...

    async def get_token_by_id(self, token_id: str) -> Optional[WithdrawalToken]:
        ...

    async def mark_token_expired(self, token_id: str, expired_at: datetime) -> Optional[WithdrawalToken]:
        """
        Compare-and-swap PENDING -> EXPIRED.

        Returns:
            Updated token, or None if the token was no longer PENDING
        """
        ...

    async def redeem_token(
        self,
        token_id: str,
        agent_id: str,
        location: Optional[str],
        redeemed_at: datetime,
        commission: int,
    ) -> Optional[Tuple[WithdrawalToken, Optional[WithdrawalTransaction], Agent]]:
        """
        Atomically redeem a token and credit the agent.

        Token PENDING -> REDEEMED (guarded on status and expiry), linked
        transaction -> COMPLETED, agent totals incremented.

        Returns:
            (token, transaction, agent), or None if the guarded token update
            matched no row (another caller won, or the token expired)

        Raises:
            AgentNotFoundError / AgentInactiveError: nothing is committed
        """
        ...

    async def cancel_token(
        self, token_id: str, user_id: str, cancelled_at: datetime
    ) -> Optional[Tuple[WithdrawalToken, Optional[WithdrawalTransaction]]]:
        """
        Atomically cancel an owned, PENDING, unexpired token and its transaction.

        Returns:
            (token, transaction), or None if the guard matched no row
        """
        ...

    async def list_tokens_for_user(self, user_id: str, limit: int) -> List[WithdrawalToken]:
        """User tokens, newest first"""
        ...

    async def list_redeemed_tokens_for_agent(self, agent_id: str, limit: int) -> List[WithdrawalToken]:
        """Tokens redeemed by an agent, most recent redemption first"""
        ...

    async def get_agent(self, agent_id: str) -> Optional[Agent]:
        ...

    async def get_user_withdrawals_since(self, user_id: str, since: datetime) -> List[WithdrawalTransaction]:
        """Withdrawal transactions created at or after `since`"""
        ...


# ====================
# Event Bus Protocol
# ====================


@runtime_checkable
class EventBusProtocol(Protocol):
    """Event bus interface for publishing events"""

    async def publish_event(self, event: Any) -> bool:
        ...


# ====================
# Client Protocols
# ====================


@runtime_checkable
class AccountClientProtocol(Protocol):
    """Account service client interface"""

    async def get_user_display_name(self, user_id: str) -> Optional[str]:
        """Display name of a user, or None if unknown"""
        ...


@runtime_checkable
class NotificationClientProtocol(Protocol):
    """Notification service client interface"""

    async def send_notification(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Send a user notification; returns False instead of raising"""
        ...


# ====================
# Custom Exceptions
# ====================


class WithdrawalServiceError(Exception):
    """Base exception for withdrawal service errors"""

    error_code = "withdrawal_error"

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code


class WithdrawalValidationError(WithdrawalServiceError):
    """Malformed or missing input, rejected before touching the store"""

    error_code = "validation_error"


class InvalidTierError(WithdrawalValidationError):
    """Subscription carries a tier outside the fixed tier table"""

    error_code = "invalid_tier"


class WithdrawalNotFoundError(WithdrawalServiceError):
    """Referenced record is absent"""

    error_code = "not_found"


class SubscriptionNotFoundError(WithdrawalNotFoundError):
    """User has no active subscription"""

    error_code = "no_active_subscription"


class TokenNotFoundError(WithdrawalNotFoundError):
    """No token with the given code or id"""

    error_code = "token_not_found"


class TransactionNotFoundError(WithdrawalNotFoundError):
    """Referenced withdrawal transaction is absent"""

    error_code = "transaction_not_found"


class AgentNotFoundError(WithdrawalNotFoundError):
    """Redeeming agent is absent"""

    error_code = "agent_not_found"


class StateConflictError(WithdrawalServiceError):
    """Record is not in the state required for the transition"""

    error_code = "state_conflict"


class TokenExpiredError(StateConflictError):
    error_code = "token_expired"


class TokenAlreadyRedeemedError(StateConflictError):
    error_code = "token_already_redeemed"


class TokenCancelledError(StateConflictError):
    error_code = "token_cancelled"


class TokenNotCancellableError(StateConflictError):
    """Cancel on a token that is not owned by the caller or not PENDING"""

    error_code = "token_not_cancellable"

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.reason = reason


class AgentInactiveError(StateConflictError):
    error_code = "agent_inactive"


class QuotaConflictError(StateConflictError):
    """Fee-free slot was consumed concurrently"""

    error_code = "quota_conflict"


class TransactionNotPendingError(StateConflictError):
    """Token requested for a transaction that is no longer PENDING"""

    error_code = "transaction_not_pending"


class TokenAlreadyIssuedError(StateConflictError):
    """Transaction already has a PENDING or REDEEMED token"""

    error_code = "token_already_issued"


class LimitExceededError(WithdrawalServiceError):
    """Amount above the tier cap or below the system minimum"""

    error_code = "limit_exceeded"

    def __init__(self, message: str, reason: Optional[str] = None, max_amount: Optional[int] = None):
        super().__init__(message, error_code=reason)
        self.reason = reason
        self.max_amount = max_amount


class DependencyError(WithdrawalServiceError):
    """Persistence store or a collaborator is unavailable"""

    error_code = "dependency_unavailable"


class DuplicateTokenCodeError(WithdrawalServiceError):
    """Generated token code or reference collided with an existing one"""

    error_code = "duplicate_token_code"


__all__ = [
    # Protocols
    "WithdrawalRepositoryProtocol",
    "EventBusProtocol",
    "AccountClientProtocol",
    "NotificationClientProtocol",
    # Exceptions
    "WithdrawalServiceError",
    "WithdrawalValidationError",
    "InvalidTierError",
    "WithdrawalNotFoundError",
    "SubscriptionNotFoundError",
    "TokenNotFoundError",
    "TransactionNotFoundError",
    "AgentNotFoundError",
    "StateConflictError",
    "TokenExpiredError",
    "TokenAlreadyRedeemedError",
    "TokenCancelledError",
    "TokenNotCancellableError",
    "AgentInactiveError",
    "QuotaConflictError",
    "TransactionNotPendingError",
    "TokenAlreadyIssuedError",
    "LimitExceededError",
    "DependencyError",
    "DuplicateTokenCodeError",
]
