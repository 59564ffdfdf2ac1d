"""
Withdrawal Service Integration Test Fixtures

Runs the repository against a real PostgreSQL. The schema is created from
the service migration; every test starts from empty tables. Tests are
skipped when no database is reachable.
"""

import os
from pathlib import Path
from typing import AsyncGenerator

import asyncpg
import pytest
import pytest_asyncio

from core.config_manager import ConfigManager
from core.postgres_client import PostgresClient
from microservices.withdrawal_service.withdrawal_repository import WithdrawalRepository
from tests.contracts.withdrawal.data_contract import WithdrawalTestDataFactory

MIGRATION = (
    Path(__file__).resolve().parents[3]
    / "microservices" / "withdrawal_service" / "migrations" / "001_create_withdrawal_schema.sql"
)

WITHDRAWAL_TABLES = ["audit_logs", "tokens", "transactions", "agents", "subscriptions"]


@pytest_asyncio.fixture(scope="function")
async def withdrawal_db() -> AsyncGenerator[PostgresClient, None]:
    """
    PostgresClient on the test database with the withdrawal schema applied
    """
    config = ConfigManager("withdrawal_service")
    db = PostgresClient(
        "withdrawal_service",
        config=config,
        database=os.getenv("WITHDRAWAL_TEST_DB", config.infra.postgres_db),
    )
    try:
        await db.connect()
    except (OSError, asyncpg.PostgresError) as e:
        pytest.skip(f"PostgreSQL not available: {e}")

    await db.execute(MIGRATION.read_text())
    await _truncate(db)
    try:
        yield db
    finally:
        await _truncate(db)
        await db.close()


async def _truncate(db: PostgresClient):
    tables = ", ".join(f"withdrawal.{name}" for name in WITHDRAWAL_TABLES)
    await db.execute(f"TRUNCATE TABLE {tables} RESTART IDENTITY CASCADE")


@pytest.fixture
def repository(withdrawal_db) -> WithdrawalRepository:
    return WithdrawalRepository(db=withdrawal_db)


@pytest.fixture(scope="session")
def factory():
    return WithdrawalTestDataFactory
