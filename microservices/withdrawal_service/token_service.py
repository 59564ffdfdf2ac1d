"""
Withdrawal Token Lifecycle

Issues single-use cash-out tokens and drives their state machine:

    PENDING -> REDEEMED | CANCELLED | EXPIRED

Every state other than PENDING is terminal. Expiry is derived from the clock
(`effective_status`) and only written back when verify, redeem or cancel
touches an overdue token. Redemption credits the agent in the same store
transaction that flips the token.

Notifications and events go out after the store commit and never fail the
operation that triggered them.
"""

import logging
import secrets
import string
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from .events.publishers import (
    publish_token_cancelled,
    publish_token_expired,
    publish_token_issued,
    publish_token_redeemed,
)
from .fee_calculator import calculate_commission, format_amount
from .models import (
    CancellationResponse,
    NotificationType,
    RedemptionResponse,
    TokenStatus,
    TokenVerificationResponse,
    TransactionStatus,
    WithdrawalToken,
)
from .protocols import (
    AccountClientProtocol,
    DuplicateTokenCodeError,
    EventBusProtocol,
    NotificationClientProtocol,
    TokenAlreadyIssuedError,
    TokenAlreadyRedeemedError,
    TokenCancelledError,
    TokenExpiredError,
    TokenNotCancellableError,
    TokenNotFoundError,
    TransactionNotFoundError,
    TransactionNotPendingError,
    WithdrawalRepositoryProtocol,
    WithdrawalValidationError,
)

logger = logging.getLogger(__name__)

TOKEN_ALPHABET = string.digits + string.ascii_uppercase
TOKEN_LENGTH = 12
REFERENCE_LENGTH = 8
TOKEN_VALIDITY = timedelta(hours=24)
QR_PAYLOAD_TYPE = "withdrawal_token"
QR_PAYLOAD_VERSION = "1.0"
MAX_CODE_ATTEMPTS = 3

DEFAULT_USER_TOKEN_LIMIT = 10
DEFAULT_AGENT_TOKEN_LIMIT = 20
MAX_LIST_LIMIT = 100

CANCEL_REFUSED_MESSAGE = "Token not found or cannot be cancelled"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def generate_code(length: int = TOKEN_LENGTH) -> str:
    """Random code over 0-9A-Z from the OS CSPRNG"""
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def generate_reference() -> str:
    """Human-shareable transaction reference"""
    return generate_code(REFERENCE_LENGTH)


def build_qr_payload(code: str, amount: int, user_id: str, expires_at: datetime) -> Dict[str, Any]:
    return {
        "token": code,
        "amount": amount,
        "userId": user_id,
        "expiresAt": _as_utc(expires_at).isoformat(),
        "type": QR_PAYLOAD_TYPE,
        "version": QR_PAYLOAD_VERSION,
    }


def new_withdrawal_token(
    user_id: str,
    transaction_id: Optional[str],
    amount: int,
    now: Optional[datetime] = None,
) -> WithdrawalToken:
    """Build (not persist) a fresh PENDING token"""
    now = now or utcnow()
    code = generate_code()
    expires_at = now + TOKEN_VALIDITY
    return WithdrawalToken(
        token_id=f"wtok_{uuid.uuid4().hex[:16]}",
        token=code,
        user_id=user_id,
        transaction_id=transaction_id,
        amount=amount,
        status=TokenStatus.PENDING,
        qr_payload=build_qr_payload(code, amount, user_id, expires_at),
        expires_at=expires_at,
        created_at=now,
    )


def effective_status(token: WithdrawalToken, now: Optional[datetime] = None) -> TokenStatus:
    """Status as of `now`: a PENDING token past its deadline reads as EXPIRED"""
    now = now or utcnow()
    if token.status == TokenStatus.PENDING and _as_utc(now) >= _as_utc(token.expires_at):
        return TokenStatus.EXPIRED
    return token.status


def _clamp_limit(limit: int, default: int) -> int:
    if limit is None or limit <= 0:
        return default
    return min(limit, MAX_LIST_LIMIT)


class TokenService:
    """
    Token lifecycle manager

    Handles issuance, agent verification and redemption (with payout
    accounting), owner cancellation and listing.
    """

    def __init__(
        self,
        repository: WithdrawalRepositoryProtocol,
        event_bus: Optional[EventBusProtocol] = None,
        notification_client: Optional[NotificationClientProtocol] = None,
        account_client: Optional[AccountClientProtocol] = None,
    ):
        self.repository = repository
        self.event_bus = event_bus
        self.notification_client = notification_client
        self.account_client = account_client

    # =========================================================================
    # Issuance
    # =========================================================================

    async def issue(self, user_id: str, transaction_id: str, amount: Optional[int] = None) -> WithdrawalToken:
        """
        Persist a new PENDING token for a user's PENDING withdrawal.

        Used to replace a token that expired before pickup; the amount is
        always the recorded transaction amount. Regenerates the code when the
        store reports a collision.

        Raises:
            WithdrawalValidationError: missing ids, or amount differs from the transaction
            TransactionNotFoundError: linked transaction absent or not owned
            TransactionNotPendingError: transaction already completed or cancelled
            TokenAlreadyIssuedError: transaction already has a PENDING or REDEEMED token
            DuplicateTokenCodeError: no unique code after MAX_CODE_ATTEMPTS
        """
        if not user_id or not user_id.strip():
            raise WithdrawalValidationError("user_id is required")
        if not transaction_id or not transaction_id.strip():
            raise WithdrawalValidationError("transaction_id is required")

        transaction = await self.repository.get_transaction(transaction_id)
        if transaction is None or transaction.user_id != user_id:
            raise TransactionNotFoundError(f"Transaction not found: {transaction_id}")
        if transaction.status != TransactionStatus.PENDING:
            raise TransactionNotPendingError(
                f"Transaction {transaction_id} is {transaction.status.value}"
            )
        if amount is not None and amount != transaction.amount:
            raise WithdrawalValidationError(
                f"Amount must match the withdrawal amount of {format_amount(transaction.amount)}"
            )

        live = await self.repository.get_live_token_for_transaction(transaction_id)
        if live is not None and await self._settle_expiry(live, utcnow()) != TokenStatus.EXPIRED:
            raise TokenAlreadyIssuedError(f"Transaction {transaction_id} already has an active token")

        for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
            token = new_withdrawal_token(user_id, transaction_id, transaction.amount)
            try:
                created = await self.repository.create_token(token)
                break
            except DuplicateTokenCodeError:
                logger.warning(f"Token code collision for user {user_id} (attempt {attempt})")
        else:
            raise DuplicateTokenCodeError("Could not allocate a unique token code")

        logger.info(f"Issued token {created.token_id} for transaction {transaction_id}, amount {created.amount}")
        await self.on_token_issued(created)
        return created

    async def on_token_issued(self, token: WithdrawalToken):
        """Post-commit side effects of a new token"""
        await publish_token_issued(self.event_bus, token)
        await self._notify(
            token.user_id,
            NotificationType.TOKEN_GENERATED,
            "Withdrawal Token Generated",
            f"Your withdrawal token {token.token} has been generated. "
            f"Please present it to an agent within 24 hours.",
            {
                "token_id": token.token_id,
                "token": token.token,
                "amount": token.amount,
                "expires_at": _as_utc(token.expires_at).isoformat(),
            },
        )

    # =========================================================================
    # Verification / Redemption
    # =========================================================================

    async def verify(self, token_code: str) -> TokenVerificationResponse:
        """
        Check a token presented by an agent. Read-only for valid tokens.

        Raises:
            WithdrawalValidationError, TokenNotFoundError, TokenExpiredError,
            TokenAlreadyRedeemedError, TokenCancelledError
        """
        token = await self._load_redeemable(token_code, utcnow())
        user_name = await self._display_name(token.user_id)
        return TokenVerificationResponse(
            message="Token verified successfully",
            token=token,
            user_name=user_name,
        )

    async def redeem(
        self,
        token_code: str,
        agent_id: str,
        location: Optional[str] = None,
    ) -> RedemptionResponse:
        """
        Complete a cash payout.

        Token -> REDEEMED, linked transaction -> COMPLETED and agent totals
        incremented in one store transaction. Of two concurrent redeemers
        exactly one succeeds; the other gets TokenAlreadyRedeemedError.
        """
        if not agent_id or not agent_id.strip():
            raise WithdrawalValidationError("agent_id is required")

        now = utcnow()
        token = await self._load_redeemable(token_code, now)
        commission = calculate_commission(token.amount)

        result = await self.repository.redeem_token(
            token.token_id, agent_id, location, now, commission
        )
        if result is None:
            await self._raise_for_lost_transition(token.token_id, now)

        redeemed, transaction, agent = result
        logger.info(
            f"Token {redeemed.token_id} redeemed by agent {agent_id}: "
            f"amount {redeemed.amount}, commission {commission}"
        )

        await publish_token_redeemed(self.event_bus, redeemed, agent, commission)
        await self._notify(
            redeemed.user_id,
            NotificationType.WITHDRAWAL_COMPLETED,
            "Cash Collected Successfully",
            f"Your withdrawal of {format_amount(redeemed.amount)} has been completed successfully.",
            {
                "token_id": redeemed.token_id,
                "transaction_id": redeemed.transaction_id,
                "amount": redeemed.amount,
                "agent_id": agent_id,
            },
        )

        return RedemptionResponse(
            message="Token redeemed successfully. Cash payout completed.",
            token=redeemed,
            transaction=transaction,
            agent=agent,
            commission=commission,
        )

    async def _load_redeemable(self, token_code: str, now: datetime) -> WithdrawalToken:
        code = (token_code or "").strip().upper()
        if not code:
            raise WithdrawalValidationError("Token code is required")

        token = await self.repository.get_token_by_code(code)
        if token is None:
            raise TokenNotFoundError("Invalid token")

        self._raise_for_status(await self._settle_expiry(token, now))
        return token

    async def _raise_for_lost_transition(self, token_id: str, now: datetime):
        """The guarded update matched nothing; report why"""
        current = await self.repository.get_token_by_id(token_id)
        if current is None:
            raise TokenNotFoundError("Invalid token")
        status = await self._settle_expiry(current, now)
        self._raise_for_status(status)
        # Still PENDING but the guard failed: treat as lost race
        raise TokenAlreadyRedeemedError("Token has already been redeemed")

    @staticmethod
    def _raise_for_status(status: TokenStatus):
        if status == TokenStatus.EXPIRED:
            raise TokenExpiredError("Token has expired")
        if status == TokenStatus.REDEEMED:
            raise TokenAlreadyRedeemedError("Token has already been redeemed")
        if status == TokenStatus.CANCELLED:
            raise TokenCancelledError("Token has been cancelled")

    async def _settle_expiry(self, token: WithdrawalToken, now: datetime) -> TokenStatus:
        """Effective status, persisting PENDING -> EXPIRED when overdue"""
        status = effective_status(token, now)
        if status == TokenStatus.EXPIRED and token.status == TokenStatus.PENDING:
            expired = await self.repository.mark_token_expired(token.token_id, now)
            if expired is not None:
                logger.info(f"Token {token.token_id} expired at {token.expires_at}")
                await publish_token_expired(self.event_bus, expired)
            else:
                # Someone else moved it first; report what they left
                latest = await self.repository.get_token_by_id(token.token_id)
                if latest is not None and latest.status != TokenStatus.PENDING:
                    return latest.status
        return status

    # =========================================================================
    # Cancellation
    # =========================================================================

    async def cancel(self, token_id: str, user_id: str) -> CancellationResponse:
        """
        Owner cancels a PENDING, unexpired token (and its transaction).

        Raises:
            TokenNotFoundError: no such token
            TokenNotCancellableError: not the owner, or token not PENDING
        """
        if not token_id or not user_id:
            raise WithdrawalValidationError("token_id and user_id are required")

        now = utcnow()
        token = await self.repository.get_token_by_id(token_id)
        if token is None:
            raise TokenNotFoundError(CANCEL_REFUSED_MESSAGE)
        if token.user_id != user_id:
            raise TokenNotCancellableError(CANCEL_REFUSED_MESSAGE, reason="not_owner")

        status = await self._settle_expiry(token, now)
        if status != TokenStatus.PENDING:
            raise TokenNotCancellableError(CANCEL_REFUSED_MESSAGE, reason=status.value)

        result = await self.repository.cancel_token(token_id, user_id, now)
        if result is None:
            current = await self.repository.get_token_by_id(token_id)
            reason = effective_status(current, now).value if current else "not_found"
            raise TokenNotCancellableError(CANCEL_REFUSED_MESSAGE, reason=reason)

        cancelled, transaction = result
        logger.info(f"Token {token_id} cancelled by user {user_id}")
        await publish_token_cancelled(self.event_bus, cancelled)

        return CancellationResponse(
            message="Token cancelled successfully",
            token=cancelled,
            transaction=transaction,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_token(self, token_id: str) -> WithdrawalToken:
        token = await self.repository.get_token_by_id(token_id)
        if token is None:
            raise TokenNotFoundError(f"Token not found: {token_id}")
        return self._as_of(token, utcnow())

    async def list_for_user(self, user_id: str, limit: int = DEFAULT_USER_TOKEN_LIMIT) -> List[WithdrawalToken]:
        """Newest first; empty list if the lookup fails"""
        try:
            tokens = await self.repository.list_tokens_for_user(
                user_id, _clamp_limit(limit, DEFAULT_USER_TOKEN_LIMIT)
            )
        except Exception as e:
            logger.error(f"Failed to list tokens for user {user_id}: {e}")
            return []
        now = utcnow()
        return [self._as_of(token, now) for token in tokens]

    async def list_for_agent(self, agent_id: str, limit: int = DEFAULT_AGENT_TOKEN_LIMIT) -> List[WithdrawalToken]:
        """Tokens this agent redeemed, latest redemption first; empty list if the lookup fails"""
        try:
            return await self.repository.list_redeemed_tokens_for_agent(
                agent_id, _clamp_limit(limit, DEFAULT_AGENT_TOKEN_LIMIT)
            )
        except Exception as e:
            logger.error(f"Failed to list tokens for agent {agent_id}: {e}")
            return []

    @staticmethod
    def _as_of(token: WithdrawalToken, now: datetime) -> WithdrawalToken:
        status = effective_status(token, now)
        if status == token.status:
            return token
        return token.model_copy(update={"status": status})

    # =========================================================================
    # Collaborators
    # =========================================================================

    async def _display_name(self, user_id: str) -> Optional[str]:
        if self.account_client is None:
            return None
        try:
            return await self.account_client.get_user_display_name(user_id)
        except Exception as e:
            logger.warning(f"Could not resolve display name for {user_id}: {e}")
            return None

    async def _notify(
        self,
        user_id: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        data: Dict[str, Any],
    ):
        if self.notification_client is None:
            return
        try:
            sent = await self.notification_client.send_notification(
                user_id=user_id,
                notification_type=notification_type.value,
                title=title,
                message=message,
                data=data,
            )
            if not sent:
                logger.warning(f"Notification {notification_type.value} to {user_id} was not delivered")
        except Exception as e:
            logger.error(f"Notification {notification_type.value} to {user_id} failed: {e}")
