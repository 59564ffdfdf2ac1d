"""
Withdrawal Service Data Repository

Data access layer - PostgreSQL (asyncpg)
Implements WithdrawalRepositoryProtocol from protocols.py

State transitions are conditional updates (`WHERE status = 'pending' ...`)
so concurrent callers cannot both move the same token out of PENDING.
Multi-record units run inside a single database transaction.
"""

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from core.config_manager import ConfigManager
from core.postgres_client import PostgresClient

from .models import (
    Agent,
    Subscription,
    WithdrawalToken,
    WithdrawalTransaction,
)
from .protocols import (
    AgentInactiveError,
    AgentNotFoundError,
    DependencyError,
    DuplicateTokenCodeError,
    QuotaConflictError,
    TokenAlreadyIssuedError,
)

logger = logging.getLogger(__name__)

LIVE_TOKEN_INDEX = "uq_withdrawal_tokens_live_transaction"


class WithdrawalRepository:
    """Withdrawal service data repository - PostgreSQL (Async)"""

    def __init__(self, config: Optional[ConfigManager] = None, db: Optional[PostgresClient] = None):
        if config is None:
            config = ConfigManager("withdrawal_service")

        self.db = db or PostgresClient("withdrawal_service", config=config)
        self.schema = "withdrawal"
        self.subscriptions_table = f"{self.schema}.subscriptions"
        self.transactions_table = f"{self.schema}.transactions"
        self.tokens_table = f"{self.schema}.tokens"
        self.agents_table = f"{self.schema}.agents"
        self.audit_table = f"{self.schema}.audit_logs"

    async def initialize(self):
        """Initialize database connection"""
        await self.db.connect()
        logger.info("Withdrawal repository initialized with PostgreSQL")

    async def close(self):
        """Close database connection"""
        await self.db.close()
        logger.info("Withdrawal repository database connection closed")

    @asynccontextmanager
    async def _store_errors(self, operation: str):
        """Translate driver failures into service exceptions"""
        try:
            yield
        except asyncpg.UniqueViolationError as e:
            if e.constraint_name == LIVE_TOKEN_INDEX:
                raise TokenAlreadyIssuedError("Transaction already has an active token") from e
            logger.warning(f"Unique violation during {operation}: {e.constraint_name}")
            raise DuplicateTokenCodeError(f"Duplicate code during {operation}") from e
        except (asyncpg.PostgresConnectionError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Database unavailable during {operation}: {e}")
            raise DependencyError("Withdrawal store unavailable") from e

    # ====================
    # Subscriptions
    # ====================

    async def get_subscription_by_user(self, user_id: str) -> Optional[Subscription]:
        query = f'''
            SELECT * FROM {self.subscriptions_table}
            WHERE user_id = $1
        '''
        async with self._store_errors("get subscription"):
            row = await self.db.query_row(query, [user_id])
        return Subscription(**self._row_to_dict(row)) if row else None

    # ====================
    # Withdrawals
    # ====================

    async def create_withdrawal(
        self,
        transaction: WithdrawalTransaction,
        token: WithdrawalToken,
        consume_free_withdrawal: bool,
        audit_details: Dict[str, Any],
    ) -> Tuple[WithdrawalTransaction, WithdrawalToken]:
        """Transaction row, quota slot, audit entry and token in one commit"""
        async with self._store_errors("create withdrawal"), self.db.transaction() as conn:
            txn_row = await conn.fetchrow(
                f'''
                INSERT INTO {self.transactions_table} (
                    transaction_id, user_id, transaction_type, amount, fee, total_amount,
                    status, reference, agent_id, agent_location, created_at, updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $11)
                RETURNING *
                ''',
                transaction.transaction_id,
                transaction.user_id,
                transaction.transaction_type.value,
                transaction.amount,
                transaction.fee,
                transaction.total_amount,
                transaction.status.value,
                transaction.reference,
                transaction.agent_id,
                transaction.agent_location,
                transaction.created_at,
            )

            if consume_free_withdrawal:
                status = await conn.execute(
                    f'''
                    UPDATE {self.subscriptions_table}
                    SET transactions_used = transactions_used + 1, updated_at = $2
                    WHERE user_id = $1
                      AND status = 'active'
                      AND transactions_used < transaction_limit
                    ''',
                    transaction.user_id,
                    transaction.created_at,
                )
                if status != "UPDATE 1":
                    raise QuotaConflictError("Fee-free withdrawal quota changed, please retry")

            await conn.execute(
                f'''
                INSERT INTO {self.audit_table} (log_id, user_id, action, details, created_at)
                VALUES ($1, $2, $3, $4::jsonb, $5)
                ''',
                f"audit_{uuid.uuid4().hex[:16]}",
                transaction.user_id,
                audit_details.get("action", "withdrawal_initiated"),
                json.dumps({k: v for k, v in audit_details.items() if k != "action"}),
                transaction.created_at,
            )

            token_row = await self._insert_token(conn, token)

        return self._row_to_transaction(txn_row), self._row_to_token(token_row)

    async def get_transaction(self, transaction_id: str) -> Optional[WithdrawalTransaction]:
        query = f'''
            SELECT * FROM {self.transactions_table}
            WHERE transaction_id = $1
        '''
        async with self._store_errors("get transaction"):
            row = await self.db.query_row(query, [transaction_id])
        return self._row_to_transaction(row) if row else None

    async def list_user_transactions(self, user_id: str, limit: int) -> List[WithdrawalTransaction]:
        query = f'''
            SELECT * FROM {self.transactions_table}
            WHERE user_id = $1 AND transaction_type = 'withdrawal'
            ORDER BY created_at DESC
            LIMIT $2
        '''
        async with self._store_errors("list user transactions"):
            rows = await self.db.query(query, [user_id, limit])
        return [self._row_to_transaction(row) for row in rows]

    async def get_user_withdrawals_since(self, user_id: str, since: datetime) -> List[WithdrawalTransaction]:
        query = f'''
            SELECT * FROM {self.transactions_table}
            WHERE user_id = $1 AND transaction_type = 'withdrawal' AND created_at >= $2
            ORDER BY created_at DESC
        '''
        async with self._store_errors("list withdrawals"):
            rows = await self.db.query(query, [user_id, since])
        return [self._row_to_transaction(row) for row in rows]

    # ====================
    # Tokens
    # ====================

    async def _insert_token(self, conn: asyncpg.Connection, token: WithdrawalToken):
        return await conn.fetchrow(
            f'''
            INSERT INTO {self.tokens_table} (
                token_id, token, user_id, transaction_id, amount, status,
                qr_payload, expires_at, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, $9, $9)
            RETURNING *
            ''',
            token.token_id,
            token.token,
            token.user_id,
            token.transaction_id,
            token.amount,
            token.status.value,
            json.dumps(token.qr_payload),
            token.expires_at,
            token.created_at,
        )

    async def create_token(self, token: WithdrawalToken) -> WithdrawalToken:
        async with self._store_errors("create token"), self.db.transaction() as conn:
            row = await self._insert_token(conn, token)
        return self._row_to_token(row)

    async def get_token_by_code(self, code: str) -> Optional[WithdrawalToken]:
        query = f'''
            SELECT * FROM {self.tokens_table}
            WHERE token = $1
        '''
        async with self._store_errors("get token"):
            row = await self.db.query_row(query, [code])
        return self._row_to_token(row) if row else None

    async def get_token_by_id(self, token_id: str) -> Optional[WithdrawalToken]:
        query = f'''
            SELECT * FROM {self.tokens_table}
            WHERE token_id = $1
        '''
        async with self._store_errors("get token"):
            row = await self.db.query_row(query, [token_id])
        return self._row_to_token(row) if row else None

    async def get_live_token_for_transaction(self, transaction_id: str) -> Optional[WithdrawalToken]:
        query = f'''
            SELECT * FROM {self.tokens_table}
            WHERE transaction_id = $1 AND status IN ('pending', 'redeemed')
        '''
        async with self._store_errors("get transaction token"):
            row = await self.db.query_row(query, [transaction_id])
        return self._row_to_token(row) if row else None

    async def mark_token_expired(self, token_id: str, expired_at: datetime) -> Optional[WithdrawalToken]:
        query = f'''
            UPDATE {self.tokens_table}
            SET status = 'expired', updated_at = $2
            WHERE token_id = $1 AND status = 'pending' AND expires_at <= $2
            RETURNING *
        '''
        async with self._store_errors("expire token"):
            row = await self.db.query_row(query, [token_id, expired_at])
        return self._row_to_token(row) if row else None

    async def redeem_token(
        self,
        token_id: str,
        agent_id: str,
        location: Optional[str],
        redeemed_at: datetime,
        commission: int,
    ) -> Optional[Tuple[WithdrawalToken, Optional[WithdrawalTransaction], Agent]]:
        """Token first, then transaction and agent totals, one commit"""
        async with self._store_errors("redeem token"), self.db.transaction() as conn:
            token_row = await conn.fetchrow(
                f'''
                UPDATE {self.tokens_table}
                SET status = 'redeemed', agent_id = $2, redeemed_at = $3,
                    redeemed_location = $4, updated_at = $3
                WHERE token_id = $1 AND status = 'pending' AND expires_at > $3
                RETURNING *
                ''',
                token_id, agent_id, redeemed_at, location,
            )
            if token_row is None:
                return None

            agent_row = await conn.fetchrow(
                f'''
                UPDATE {self.agents_table}
                SET total_transactions = total_transactions + 1,
                    total_amount = total_amount + $2,
                    commission_earned = commission_earned + $3,
                    updated_at = $4
                WHERE agent_id = $1 AND status = 'active'
                RETURNING *
                ''',
                agent_id, token_row["amount"], commission, redeemed_at,
            )
            if agent_row is None:
                agent_status = await conn.fetchval(
                    f"SELECT status FROM {self.agents_table} WHERE agent_id = $1", agent_id
                )
                # Raising here rolls the token update back
                if agent_status is None:
                    raise AgentNotFoundError(f"Agent not found: {agent_id}")
                raise AgentInactiveError(f"Agent {agent_id} is {agent_status}")

            txn_row = None
            if token_row["transaction_id"]:
                txn_row = await conn.fetchrow(
                    f'''
                    UPDATE {self.transactions_table}
                    SET status = 'completed', completed_at = $2, agent_id = $3,
                        agent_location = COALESCE($4, agent_location), updated_at = $2
                    WHERE transaction_id = $1 AND status = 'pending'
                    RETURNING *
                    ''',
                    token_row["transaction_id"], redeemed_at, agent_id, location,
                )

        return (
            self._row_to_token(token_row),
            self._row_to_transaction(txn_row) if txn_row else None,
            self._row_to_agent(agent_row),
        )

    async def cancel_token(
        self, token_id: str, user_id: str, cancelled_at: datetime
    ) -> Optional[Tuple[WithdrawalToken, Optional[WithdrawalTransaction]]]:
        async with self._store_errors("cancel token"), self.db.transaction() as conn:
            token_row = await conn.fetchrow(
                f'''
                UPDATE {self.tokens_table}
                SET status = 'cancelled', updated_at = $3
                WHERE token_id = $1 AND user_id = $2
                  AND status = 'pending' AND expires_at > $3
                RETURNING *
                ''',
                token_id, user_id, cancelled_at,
            )
            if token_row is None:
                return None

            txn_row = None
            if token_row["transaction_id"]:
                txn_row = await conn.fetchrow(
                    f'''
                    UPDATE {self.transactions_table}
                    SET status = 'cancelled', updated_at = $2
                    WHERE transaction_id = $1 AND status = 'pending'
                    RETURNING *
                    ''',
                    token_row["transaction_id"], cancelled_at,
                )

        return (
            self._row_to_token(token_row),
            self._row_to_transaction(txn_row) if txn_row else None,
        )

    async def list_tokens_for_user(self, user_id: str, limit: int) -> List[WithdrawalToken]:
        query = f'''
            SELECT * FROM {self.tokens_table}
            WHERE user_id = $1
            ORDER BY created_at DESC
            LIMIT $2
        '''
        async with self._store_errors("list user tokens"):
            rows = await self.db.query(query, [user_id, limit])
        return [self._row_to_token(row) for row in rows]

    async def list_redeemed_tokens_for_agent(self, agent_id: str, limit: int) -> List[WithdrawalToken]:
        query = f'''
            SELECT * FROM {self.tokens_table}
            WHERE agent_id = $1 AND status = 'redeemed'
            ORDER BY redeemed_at DESC
            LIMIT $2
        '''
        async with self._store_errors("list agent tokens"):
            rows = await self.db.query(query, [agent_id, limit])
        return [self._row_to_token(row) for row in rows]

    # ====================
    # Agents
    # ====================

    async def get_agent(self, agent_id: str) -> Optional[Agent]:
        query = f'''
            SELECT * FROM {self.agents_table}
            WHERE agent_id = $1
        '''
        async with self._store_errors("get agent"):
            row = await self.db.query_row(query, [agent_id])
        return self._row_to_agent(row) if row else None

    # ====================
    # Row mapping
    # ====================

    @staticmethod
    def _row_to_dict(row) -> Dict[str, Any]:
        data = dict(row)
        data.pop("id", None)
        return data

    def _row_to_transaction(self, row) -> WithdrawalTransaction:
        return WithdrawalTransaction(**self._row_to_dict(row))

    def _row_to_token(self, row) -> WithdrawalToken:
        data = self._row_to_dict(row)
        payload = data.get("qr_payload")
        if isinstance(payload, str):
            data["qr_payload"] = json.loads(payload)
        elif payload is None:
            data["qr_payload"] = {}
        return WithdrawalToken(**data)

    def _row_to_agent(self, row) -> Agent:
        return Agent(**self._row_to_dict(row))
