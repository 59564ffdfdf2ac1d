"""
Withdrawal Service Business Logic

Composes the fee calculator and the token lifecycle behind the withdrawal
use cases: preview, commit and usage statistics.

A committed withdrawal is one store transaction: the PENDING transaction,
the fee-free quota increment, the audit entry and the token. If any part
fails nothing is written, so a transaction never exists without its token.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from . import fee_calculator
from .events.publishers import publish_withdrawal_initiated
from .fee_calculator import format_amount
from .models import (
    MonthlyWithdrawalStats,
    ProcessWithdrawalResponse,
    RejectionReason,
    SubscriptionUsage,
    TransactionStatus,
    WithdrawalCalculation,
    WithdrawalStatsResponse,
    WithdrawalToken,
    WithdrawalTransaction,
)
from .protocols import (
    AccountClientProtocol,
    DuplicateTokenCodeError,
    EventBusProtocol,
    InvalidTierError,
    LimitExceededError,
    NotificationClientProtocol,
    SubscriptionNotFoundError,
    WithdrawalRepositoryProtocol,
    WithdrawalServiceError,
    WithdrawalValidationError,
)
from .token_service import (
    MAX_CODE_ATTEMPTS,
    TokenService,
    generate_reference,
    new_withdrawal_token,
    utcnow,
)

logger = logging.getLogger(__name__)

AUDIT_ACTION_WITHDRAWAL_INITIATED = "withdrawal_initiated"
DEFAULT_TRANSACTION_LIMIT = 5
MAX_TRANSACTION_LIMIT = 50


class WithdrawalService:
    """
    Withdrawal orchestrator

    Uses dependency injection: the repository, event bus and clients are
    passed in (see factory.py), the token lifecycle is shared with the
    agent-facing endpoints.
    """

    def __init__(
        self,
        repository: WithdrawalRepositoryProtocol,
        token_service: Optional[TokenService] = None,
        event_bus: Optional[EventBusProtocol] = None,
        notification_client: Optional[NotificationClientProtocol] = None,
        account_client: Optional[AccountClientProtocol] = None,
    ):
        self.repository = repository
        self.event_bus = event_bus
        self.token_service = token_service or TokenService(
            repository=repository,
            event_bus=event_bus,
            notification_client=notification_client,
            account_client=account_client,
        )

    # =========================================================================
    # Preview
    # =========================================================================

    async def calculate_withdrawal(self, user_id: str, amount: int) -> WithdrawalCalculation:
        """Fee decision for a requested amount against the stored subscription"""
        self._validate_request(user_id, amount)
        subscription = await self.repository.get_subscription_by_user(user_id)
        return fee_calculator.calculate(subscription, amount)

    # =========================================================================
    # Commit
    # =========================================================================

    async def process_withdrawal(
        self,
        user_id: str,
        amount: int,
        agent_id: Optional[str] = None,
        agent_location: Optional[str] = None,
    ) -> ProcessWithdrawalResponse:
        """
        Commit a withdrawal and mint its token.

        Raises:
            WithdrawalValidationError: non-positive amount or empty user
            SubscriptionNotFoundError / InvalidTierError / LimitExceededError:
                refused by the fee calculator, nothing written
            QuotaConflictError: the last fee-free slot was taken concurrently
            DuplicateTokenCodeError: no unique token code after retries
        """
        calculation = await self.calculate_withdrawal(user_id, amount)
        if not calculation.can_withdraw:
            logger.info(
                f"Withdrawal refused for user {user_id}: {calculation.rejection_reason.value}"
            )
            raise self._rejection_error(calculation)

        for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
            transaction, token = self._build_withdrawal(user_id, calculation, agent_id, agent_location)
            audit_details = self._audit_details(calculation, transaction)
            try:
                transaction, token = await self.repository.create_withdrawal(
                    transaction,
                    token,
                    consume_free_withdrawal=calculation.is_fee_free,
                    audit_details=audit_details,
                )
                break
            except DuplicateTokenCodeError:
                logger.warning(f"Code collision while committing withdrawal for {user_id} (attempt {attempt})")
        else:
            raise DuplicateTokenCodeError("Could not allocate a unique token code")

        logger.info(
            f"Withdrawal {transaction.transaction_id} committed for user {user_id}: "
            f"amount {amount}, fee {calculation.fee_amount}, token {token.token_id}"
        )

        await publish_withdrawal_initiated(self.event_bus, transaction, token, calculation.is_fee_free)
        await self.token_service.on_token_issued(token)

        fee_note = "No fees applied." if calculation.is_fee_free else f"Fee: {format_amount(calculation.fee_amount)}"
        return ProcessWithdrawalResponse(
            message=(
                f"Withdrawal of {format_amount(amount)} initiated successfully. "
                f"Withdrawal token generated. {fee_note}"
            ),
            calculation=calculation,
            transaction=transaction,
            token=token,
        )

    async def issue_token(self, user_id: str, transaction_id: str, amount: Optional[int] = None) -> WithdrawalToken:
        """Replace the token of a PENDING withdrawal whose earlier token expired"""
        return await self.token_service.issue(user_id, transaction_id, amount)

    @staticmethod
    def _build_withdrawal(
        user_id: str,
        calculation: WithdrawalCalculation,
        agent_id: Optional[str],
        agent_location: Optional[str],
    ):
        now = utcnow()
        transaction = WithdrawalTransaction(
            transaction_id=f"wtx_{uuid.uuid4().hex[:16]}",
            user_id=user_id,
            amount=calculation.amount,
            fee=calculation.fee_amount,
            total_amount=calculation.amount + calculation.fee_amount,
            status=TransactionStatus.PENDING,
            reference=generate_reference(),
            agent_id=agent_id,
            agent_location=agent_location,
            created_at=now,
        )
        token = new_withdrawal_token(user_id, transaction.transaction_id, calculation.amount, now)
        return transaction, token

    @staticmethod
    def _audit_details(calculation: WithdrawalCalculation, transaction: WithdrawalTransaction) -> Dict[str, Any]:
        return {
            "action": AUDIT_ACTION_WITHDRAWAL_INITIATED,
            "amount": calculation.amount,
            "fee_amount": calculation.fee_amount,
            "is_fee_free": calculation.is_fee_free,
            "transaction_id": transaction.transaction_id,
            "agent_id": transaction.agent_id,
            "agent_location": transaction.agent_location,
        }

    @staticmethod
    def _rejection_error(calculation: WithdrawalCalculation) -> WithdrawalServiceError:
        reason = calculation.rejection_reason
        if reason == RejectionReason.NO_ACTIVE_SUBSCRIPTION:
            return SubscriptionNotFoundError(calculation.message)
        if reason == RejectionReason.INVALID_TIER:
            return InvalidTierError(calculation.message)
        return LimitExceededError(
            calculation.message,
            reason=reason.value if reason else None,
            max_amount=calculation.max_amount_per_withdrawal,
        )

    @staticmethod
    def _validate_request(user_id: str, amount: int):
        if not user_id or not user_id.strip():
            raise WithdrawalValidationError("user_id is required")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise WithdrawalValidationError("Amount must be a positive integer")

    # =========================================================================
    # Statistics
    # =========================================================================

    async def get_withdrawal_stats(self, user_id: str) -> WithdrawalStatsResponse:
        """Quota usage plus this calendar month's withdrawal figures"""
        if not user_id or not user_id.strip():
            raise WithdrawalValidationError("user_id is required")

        subscription = await self.repository.get_subscription_by_user(user_id)
        usage = None
        if subscription is not None:
            limits = fee_calculator.get_tier_limits(subscription.tier)
            included = subscription.transaction_limit
            used = subscription.transactions_used
            usage = SubscriptionUsage(
                tier=subscription.tier,
                used=used,
                included=included,
                remaining=max(0, included - used),
                usage_percentage=round(used / included * 100) if included else 0,
                max_amount_per_withdrawal=limits.max_amount_per_withdrawal if limits else 0,
                next_billing_date=subscription.next_billing_date,
            )

        since = self._start_of_month(utcnow())
        transactions = await self.repository.get_user_withdrawals_since(user_id, since)
        counted = [
            t for t in transactions
            if t.status not in (TransactionStatus.CANCELLED, TransactionStatus.FAILED)
        ]
        total_withdrawn = sum(t.amount for t in counted)
        monthly = MonthlyWithdrawalStats(
            total_transactions=len(counted),
            total_withdrawn=total_withdrawn,
            total_fees=sum(t.fee for t in counted),
            average_withdrawal=round(total_withdrawn / len(counted)) if counted else 0,
        )

        return WithdrawalStatsResponse(user_id=user_id, subscription=usage, monthly_stats=monthly)

    @staticmethod
    def _start_of_month(now: datetime) -> datetime:
        return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    # =========================================================================
    # History
    # =========================================================================

    async def list_transactions(
        self, user_id: str, limit: int = DEFAULT_TRANSACTION_LIMIT
    ) -> List[WithdrawalTransaction]:
        """Recent withdrawals, newest first; empty list if the lookup fails"""
        if limit is None or limit <= 0:
            limit = DEFAULT_TRANSACTION_LIMIT
        try:
            return await self.repository.list_user_transactions(user_id, min(limit, MAX_TRANSACTION_LIMIT))
        except Exception as e:
            logger.error(f"Failed to list withdrawals for user {user_id}: {e}")
            return []
