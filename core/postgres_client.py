"""
PostgreSQL Client Wrapper

Centralized asyncpg pool wrapper with consistent database access pattern.
Rows come back as plain dicts; statements use $1-style parameters.

Usage:
    from core.postgres_client import get_postgres_client

    db = await get_postgres_client("shipment_service")
    rows = await db.query("SELECT * FROM shipments WHERE status = $1", ["draft"])

    async with db.transaction() as conn:
        await db.execute("UPDATE ...", [...], conn=conn)
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

_CONNECT_ERRORS = (OSError, asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError)


class PostgresClientWrapper:
    """
    PostgreSQL client wrapper around an asyncpg connection pool.

    Provides:
    - Environment-driven host/port configuration through ConfigManager
    - Connection retry on startup
    - query/query_row/execute helpers that run on the pool or on a given
      transaction connection
    """

    def __init__(
        self,
        service_name: str,
        host: Optional[str] = None,
        port: Optional[int] = None,
        database: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        min_size: Optional[int] = None,
        max_size: Optional[int] = None,
        config=None,
    ):
        from core.config_manager import ConfigManager

        self.service_name = service_name

        if config is None:
            config = ConfigManager(service_name)
        infra = config.get_infra_config()
        discovered_host, discovered_port = config.discover_service(
            service_name="postgres",
            default_host=infra.postgres_host,
            default_port=infra.postgres_port,
            env_host_key="POSTGRES_HOST",
            env_port_key="POSTGRES_PORT",
        )

        self.host = host or discovered_host
        self.port = port or discovered_port
        self.database = database or infra.postgres_db
        self.username = username or infra.postgres_user
        self.password = password or infra.postgres_password
        self.min_size = min_size or infra.postgres_pool_min
        self.max_size = max_size or infra.postgres_pool_max

        self._pool: Optional[asyncpg.Pool] = None

        logger.info(f"PostgreSQL client initialized for {service_name}: {self.host}:{self.port}/{self.database}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(_CONNECT_ERRORS),
        reraise=True,
    )
    async def connect(self):
        """Create the connection pool (idempotent)"""
        if self._pool is not None:
            return
        self._pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.username,
            password=self.password,
            min_size=self.min_size,
            max_size=self.max_size,
        )
        logger.info(f"PostgreSQL pool ready for {self.service_name}")

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("PostgreSQL client is not connected; call connect() first")
        return self._pool

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def health_check(self) -> Optional[Dict]:
        """Check database health"""
        try:
            value = await self.pool.fetchval("SELECT 1")
            return {"healthy": value == 1}
        except Exception as e:
            logger.error(f"PostgreSQL health check failed: {e}")
            return None

    async def query(
        self, sql: str, params: Optional[List[Any]] = None, conn: Optional[asyncpg.Connection] = None
    ) -> List[Dict[str, Any]]:
        """Execute query and return results"""
        executor = conn or self.pool
        records = await executor.fetch(sql, *(params or []))
        return [dict(r) for r in records]

    async def query_row(
        self, sql: str, params: Optional[List[Any]] = None, conn: Optional[asyncpg.Connection] = None
    ) -> Optional[Dict[str, Any]]:
        """Execute query and return single row"""
        executor = conn or self.pool
        record = await executor.fetchrow(sql, *(params or []))
        return dict(record) if record is not None else None

    async def execute(
        self, sql: str, params: Optional[List[Any]] = None, conn: Optional[asyncpg.Connection] = None
    ) -> int:
        """Execute SQL statement, returning the number of affected rows"""
        executor = conn or self.pool
        status = await executor.execute(sql, *(params or []))
        return _rows_affected(status)

    async def execute_script(self, sql: str):
        """Execute a multi-statement script (DDL)"""
        async with self.pool.acquire() as conn:
            await conn.execute(sql)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Yield a connection inside a transaction; commits on exit, rolls back on error"""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def close(self):
        """Close pool"""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None


def _rows_affected(status: str) -> int:
    # asyncpg returns the command tag, e.g. "UPDATE 3" or "INSERT 0 1"
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


# Singleton instances per service
_postgres_clients: Dict[str, PostgresClientWrapper] = {}


async def get_postgres_client(
    service_name: str,
    host: Optional[str] = None,
    port: Optional[int] = None,
    database: Optional[str] = None,
    **kwargs,
) -> PostgresClientWrapper:
    """
    Get or create a connected PostgreSQL client for a service.

    Args:
        service_name: Service name
        host: Optional host override
        port: Optional port override
        database: Optional database override
        **kwargs: Additional client options

    Returns:
        PostgresClientWrapper instance
    """
    if service_name not in _postgres_clients:
        client = PostgresClientWrapper(
            service_name=service_name,
            host=host,
            port=port,
            database=database,
            **kwargs,
        )
        await client.connect()
        _postgres_clients[service_name] = client

    return _postgres_clients[service_name]
