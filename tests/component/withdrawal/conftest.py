"""
Withdrawal Service Component Test Fixtures

Provides mocks for withdrawal service component testing:
- MockWithdrawalRepository: in-memory WithdrawalRepositoryProtocol with
  all-or-nothing units and guarded state transitions
- MockEventBus: Mock event publishing
- MockNotificationClient / MockAccountClient: collaborator doubles
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import pytest

from microservices.withdrawal_service.models import (
    Agent,
    AgentStatus,
    Subscription,
    SubscriptionStatus,
    TokenStatus,
    TransactionStatus,
    WithdrawalToken,
    WithdrawalTransaction,
)
from microservices.withdrawal_service.protocols import (
    AgentInactiveError,
    AgentNotFoundError,
    DependencyError,
    DuplicateTokenCodeError,
    QuotaConflictError,
    TokenAlreadyIssuedError,
)
from microservices.withdrawal_service.token_service import TokenService
from microservices.withdrawal_service.withdrawal_service import WithdrawalService
from tests.contracts.withdrawal.data_contract import WithdrawalTestDataFactory


# =============================================================================
# Mock Repository Implementation
# =============================================================================


class MockWithdrawalRepository:
    """
    Mock implementation of WithdrawalRepositoryProtocol for testing.

    Each multi-record method validates everything first and only then applies
    its writes, mirroring a database transaction that either commits or rolls
    back. There is no await between a guard check and its write.
    """

    def __init__(self):
        self.subscriptions: Dict[str, Subscription] = {}
        self.transactions: Dict[str, WithdrawalTransaction] = {}
        self.tokens: Dict[str, WithdrawalToken] = {}
        self.agents: Dict[str, Agent] = {}
        self.audit_logs: List[Dict[str, Any]] = []

        # Failure injection
        self.fail_with: Dict[str, Exception] = {}
        self.duplicate_code_failures = 0

        # Track method calls for verification
        self.method_calls = []

    def _maybe_fail(self, method: str):
        error = self.fail_with.get(method)
        if error is not None:
            raise error

    # ---- seeding helpers ----

    def add_subscription(self, subscription: Subscription) -> Subscription:
        self.subscriptions[subscription.user_id] = subscription
        return subscription

    def add_transaction(self, transaction: WithdrawalTransaction) -> WithdrawalTransaction:
        self.transactions[transaction.transaction_id] = transaction
        return transaction

    def add_token(self, token: WithdrawalToken) -> WithdrawalToken:
        self.tokens[token.token_id] = token
        return token

    def add_agent(self, agent: Agent) -> Agent:
        self.agents[agent.agent_id] = agent
        return agent

    def called(self, method: str) -> int:
        return sum(1 for call in self.method_calls if call[0] == method)

    # ---- protocol ----

    async def get_subscription_by_user(self, user_id: str) -> Optional[Subscription]:
        self.method_calls.append(("get_subscription_by_user", user_id))
        self._maybe_fail("get_subscription_by_user")
        return self.subscriptions.get(user_id)

    def _code_taken(self, token: WithdrawalToken) -> bool:
        if self.duplicate_code_failures > 0:
            self.duplicate_code_failures -= 1
            return True
        return any(t.token == token.token for t in self.tokens.values())

    async def create_withdrawal(
        self,
        transaction: WithdrawalTransaction,
        token: WithdrawalToken,
        consume_free_withdrawal: bool,
        audit_details: Dict[str, Any],
    ) -> Tuple[WithdrawalTransaction, WithdrawalToken]:
        self.method_calls.append(("create_withdrawal", transaction.transaction_id, consume_free_withdrawal))
        self._maybe_fail("create_withdrawal")

        if any(t.reference == transaction.reference for t in self.transactions.values()):
            raise DuplicateTokenCodeError("reference taken")

        subscription = self.subscriptions.get(transaction.user_id)
        if consume_free_withdrawal:
            if (
                subscription is None
                or subscription.status != SubscriptionStatus.ACTIVE
                or subscription.transactions_used >= subscription.transaction_limit
            ):
                raise QuotaConflictError("Fee-free withdrawal quota changed, please retry")

        self._maybe_fail("insert_token")
        if self._code_taken(token):
            raise DuplicateTokenCodeError("token code taken")

        # Commit
        self.transactions[transaction.transaction_id] = transaction
        if consume_free_withdrawal:
            self.subscriptions[transaction.user_id] = subscription.model_copy(
                update={"transactions_used": subscription.transactions_used + 1}
            )
        self.audit_logs.append({
            "user_id": transaction.user_id,
            "action": audit_details.get("action"),
            "details": {k: v for k, v in audit_details.items() if k != "action"},
        })
        self.tokens[token.token_id] = token
        return transaction, token

    async def create_token(self, token: WithdrawalToken) -> WithdrawalToken:
        self.method_calls.append(("create_token", token.token_id))
        self._maybe_fail("create_token")
        if token.transaction_id and self._live_token(token.transaction_id) is not None:
            raise TokenAlreadyIssuedError("Transaction already has an active token")
        if self._code_taken(token):
            raise DuplicateTokenCodeError("token code taken")
        self.tokens[token.token_id] = token
        return token

    async def get_transaction(self, transaction_id: str) -> Optional[WithdrawalTransaction]:
        self.method_calls.append(("get_transaction", transaction_id))
        return self.transactions.get(transaction_id)

    def _live_token(self, transaction_id: str) -> Optional[WithdrawalToken]:
        for token in self.tokens.values():
            if token.transaction_id == transaction_id and token.status in (TokenStatus.PENDING, TokenStatus.REDEEMED):
                return token
        return None

    async def get_live_token_for_transaction(self, transaction_id: str) -> Optional[WithdrawalToken]:
        self.method_calls.append(("get_live_token_for_transaction", transaction_id))
        return self._live_token(transaction_id)

    async def list_user_transactions(self, user_id: str, limit: int) -> List[WithdrawalTransaction]:
        self.method_calls.append(("list_user_transactions", user_id, limit))
        self._maybe_fail("list_user_transactions")
        owned = [t for t in self.transactions.values() if t.user_id == user_id]
        return sorted(owned, key=lambda t: t.created_at, reverse=True)[:limit]

    async def get_token_by_code(self, code: str) -> Optional[WithdrawalToken]:
        self.method_calls.append(("get_token_by_code", code))
        self._maybe_fail("get_token_by_code")
        for token in self.tokens.values():
            if token.token == code:
                return token
        return None

    async def get_token_by_id(self, token_id: str) -> Optional[WithdrawalToken]:
        self.method_calls.append(("get_token_by_id", token_id))
        return self.tokens.get(token_id)

    async def mark_token_expired(self, token_id: str, expired_at: datetime) -> Optional[WithdrawalToken]:
        self.method_calls.append(("mark_token_expired", token_id))
        token = self.tokens.get(token_id)
        if token is None or token.status != TokenStatus.PENDING or token.expires_at > expired_at:
            return None
        updated = token.model_copy(update={"status": TokenStatus.EXPIRED, "updated_at": expired_at})
        self.tokens[token_id] = updated
        return updated

    async def redeem_token(
        self,
        token_id: str,
        agent_id: str,
        location: Optional[str],
        redeemed_at: datetime,
        commission: int,
    ):
        self.method_calls.append(("redeem_token", token_id, agent_id))
        self._maybe_fail("redeem_token")

        token = self.tokens.get(token_id)
        if token is None or token.status != TokenStatus.PENDING or token.expires_at <= redeemed_at:
            return None

        agent = self.agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(f"Agent not found: {agent_id}")
        if agent.status != AgentStatus.ACTIVE:
            raise AgentInactiveError(f"Agent {agent_id} is {agent.status.value}")

        # Commit
        redeemed = token.model_copy(update={
            "status": TokenStatus.REDEEMED,
            "agent_id": agent_id,
            "redeemed_at": redeemed_at,
            "redeemed_location": location,
            "updated_at": redeemed_at,
        })
        self.tokens[token_id] = redeemed

        transaction = None
        if token.transaction_id and token.transaction_id in self.transactions:
            current = self.transactions[token.transaction_id]
            if current.status == TransactionStatus.PENDING:
                transaction = current.model_copy(update={
                    "status": TransactionStatus.COMPLETED,
                    "completed_at": redeemed_at,
                    "agent_id": agent_id,
                })
                self.transactions[token.transaction_id] = transaction

        credited = agent.model_copy(update={
            "total_transactions": agent.total_transactions + 1,
            "total_amount": agent.total_amount + token.amount,
            "commission_earned": agent.commission_earned + commission,
        })
        self.agents[agent_id] = credited
        return redeemed, transaction, credited

    async def cancel_token(self, token_id: str, user_id: str, cancelled_at: datetime):
        self.method_calls.append(("cancel_token", token_id, user_id))
        token = self.tokens.get(token_id)
        if (
            token is None
            or token.user_id != user_id
            or token.status != TokenStatus.PENDING
            or token.expires_at <= cancelled_at
        ):
            return None

        cancelled = token.model_copy(update={"status": TokenStatus.CANCELLED, "updated_at": cancelled_at})
        self.tokens[token_id] = cancelled

        transaction = None
        if token.transaction_id and token.transaction_id in self.transactions:
            current = self.transactions[token.transaction_id]
            if current.status == TransactionStatus.PENDING:
                transaction = current.model_copy(update={"status": TransactionStatus.CANCELLED})
                self.transactions[token.transaction_id] = transaction
        return cancelled, transaction

    async def list_tokens_for_user(self, user_id: str, limit: int) -> List[WithdrawalToken]:
        self.method_calls.append(("list_tokens_for_user", user_id, limit))
        self._maybe_fail("list_tokens_for_user")
        tokens = [t for t in self.tokens.values() if t.user_id == user_id]
        tokens.sort(key=lambda t: t.created_at, reverse=True)
        return tokens[:limit]

    async def list_redeemed_tokens_for_agent(self, agent_id: str, limit: int) -> List[WithdrawalToken]:
        self.method_calls.append(("list_redeemed_tokens_for_agent", agent_id, limit))
        self._maybe_fail("list_redeemed_tokens_for_agent")
        tokens = [
            t for t in self.tokens.values()
            if t.agent_id == agent_id and t.status == TokenStatus.REDEEMED
        ]
        tokens.sort(key=lambda t: t.redeemed_at, reverse=True)
        return tokens[:limit]

    async def get_agent(self, agent_id: str) -> Optional[Agent]:
        self.method_calls.append(("get_agent", agent_id))
        return self.agents.get(agent_id)

    async def get_user_withdrawals_since(self, user_id: str, since: datetime) -> List[WithdrawalTransaction]:
        self.method_calls.append(("get_user_withdrawals_since", user_id))
        return [
            t for t in self.transactions.values()
            if t.user_id == user_id and t.created_at >= since
        ]


# =============================================================================
# Mock Event Bus / Clients
# =============================================================================


class MockEventBus:
    """Records published events"""

    def __init__(self):
        self.published_events = []

    async def publish_event(self, event) -> bool:
        self.published_events.append(event)
        return True

    def event_types(self) -> List[str]:
        return [event.type for event in self.published_events]


class MockNotificationClient:
    """Records notifications; can be told to blow up"""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.raise_error: Optional[Exception] = None

    async def send_notification(self, user_id, notification_type, title, message, data=None) -> bool:
        if self.raise_error is not None:
            raise self.raise_error
        self.sent.append({
            "user_id": user_id,
            "notification_type": notification_type,
            "title": title,
            "message": message,
            "data": data or {},
        })
        return True


class MockAccountClient:
    """Display names by user id"""

    def __init__(self):
        self.names: Dict[str, str] = {}

    async def get_user_display_name(self, user_id: str) -> Optional[str]:
        return self.names.get(user_id)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def factory():
    return WithdrawalTestDataFactory


@pytest.fixture
def mock_repository():
    return MockWithdrawalRepository()


@pytest.fixture
def mock_event_bus():
    return MockEventBus()


@pytest.fixture
def mock_notification_client():
    return MockNotificationClient()


@pytest.fixture
def mock_account_client():
    return MockAccountClient()


@pytest.fixture
def token_service(mock_repository, mock_event_bus, mock_notification_client, mock_account_client):
    return TokenService(
        repository=mock_repository,
        event_bus=mock_event_bus,
        notification_client=mock_notification_client,
        account_client=mock_account_client,
    )


@pytest.fixture
def withdrawal_service(mock_repository, mock_event_bus, token_service):
    return WithdrawalService(
        repository=mock_repository,
        token_service=token_service,
        event_bus=mock_event_bus,
    )


@pytest.fixture
def client(monkeypatch, withdrawal_service, token_service):
    """TestClient with the service globals swapped for mock-backed instances"""
    from fastapi.testclient import TestClient

    from microservices.withdrawal_service import main

    monkeypatch.setattr(main, "withdrawal_service", withdrawal_service)
    monkeypatch.setattr(main, "token_service", token_service)
    monkeypatch.setattr(main, "repository", None)
    monkeypatch.setattr(main, "event_bus", None)
    # Not entered as a context manager, so the lifespan never connects anything
    return TestClient(main.app)


@pytest.fixture
def store_down():
    """Error the repository raises when the store is unreachable"""
    return DependencyError("Withdrawal store unavailable")
