"""
PostgreSQL Client Wrapper

Centralized asyncpg pool wrapper with service discovery integration and a
consistent database access pattern.

Usage:
    from core.postgres_client import PostgresClient

    db = PostgresClient("withdrawal_service")
    await db.connect()

    rows = await db.query("SELECT * FROM withdrawal.tokens WHERE user_id = $1", [user_id])

    async with db.transaction() as conn:
        await conn.execute("UPDATE ...", ...)
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, TYPE_CHECKING

import asyncpg

if TYPE_CHECKING:
    from core.config_manager import ConfigManager

logger = logging.getLogger(__name__)


class PostgresClient:
    """
    asyncpg pool wrapper.

    Provides:
    - Host/port resolution through ConfigManager
    - Lazy pool creation
    - Row-as-dict helpers and a transaction context manager
    """

    def __init__(
        self,
        service_name: str,
        config: Optional["ConfigManager"] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        database: Optional[str] = None,
    ):
        from core.config_manager import ConfigManager

        self.service_name = service_name
        if config is None:
            config = ConfigManager(service_name)

        discovered_host, discovered_port = config.discover_service(
            service_name="postgres_service",
            default_host=config.infra.postgres_host,
            default_port=config.infra.postgres_port,
            env_host_key="POSTGRES_HOST",
            env_port_key="POSTGRES_PORT",
        )

        self.host = host or discovered_host
        self.port = port or discovered_port
        self.database = database or config.infra.postgres_db
        self.username = config.infra.postgres_user
        self.password = config.infra.postgres_password
        self.min_size = config.infra.postgres_min_pool
        self.max_size = config.infra.postgres_max_pool

        self._pool: Optional[asyncpg.Pool] = None

        logger.info(f"PostgreSQL client configured for {service_name}: {self.host}:{self.port}/{self.database}")

    async def connect(self) -> asyncpg.Pool:
        """Create the connection pool (idempotent)"""
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                host=self.host,
                port=self.port,
                user=self.username,
                password=self.password,
                database=self.database,
                min_size=self.min_size,
                max_size=self.max_size,
                timeout=30,
            )
            logger.info(f"PostgreSQL pool ready for {self.service_name}")
        return self._pool

    @property
    def pool(self) -> Optional[asyncpg.Pool]:
        return self._pool

    async def query(self, sql: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        """Execute query and return results"""
        pool = await self.connect()
        async with pool.acquire() as conn:
            rows = await conn.fetch(sql, *(params or []))
        return [dict(row) for row in rows]

    async def query_row(self, sql: str, params: Optional[List[Any]] = None) -> Optional[Dict[str, Any]]:
        """Execute query and return single row"""
        pool = await self.connect()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(sql, *(params or []))
        return dict(row) if row else None

    async def execute(self, sql: str, params: Optional[List[Any]] = None) -> str:
        """Execute SQL statement, returns the command status (e.g. 'UPDATE 1')"""
        pool = await self.connect()
        async with pool.acquire() as conn:
            return await conn.execute(sql, *(params or []))

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Yield a connection inside a transaction; commit on exit, roll back on error"""
        pool = await self.connect()
        async with pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def health_check(self) -> Dict[str, Any]:
        """Check database health"""
        try:
            pool = await self.connect()
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return {"healthy": True, "database": self.database}
        except (asyncpg.PostgresError, OSError) as e:
            logger.warning(f"PostgreSQL health check failed: {e}")
            return {"healthy": False, "error": str(e)}

    async def close(self):
        """Close connection pool"""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info(f"PostgreSQL pool closed for {self.service_name}")
