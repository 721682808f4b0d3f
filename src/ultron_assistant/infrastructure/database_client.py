"""
Database client for the CRM PostgreSQL database using asyncpg.

This module provides the async client used by the direct execution path.
Errors are split in two families so callers can choose a recovery:

- DataSourceUnavailableError: the database cannot be reached at all
  (pool missing, connection refused or lost). The structured fallback
  may be used.
- DatabaseQueryError: the database ran the statement and rejected it
  (syntax, unknown column, statement timeout, write attempt). Retrying the
  same query elsewhere would not help.
"""

import asyncio
from typing import Any, Dict, List, Optional
from contextlib import asynccontextmanager
import asyncpg

from ..config import DatabaseConfig
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id
from ..utils.token_utils import truncate_text
from ..domain.errors import DataSourceUnavailableError, DatabaseQueryError


logger = get_module_logger()

# Raised by asyncpg when the server cannot be used, as opposed to a rejected statement
_UNAVAILABLE_ERRORS = (
    asyncpg.PostgresConnectionError,
    asyncpg.CannotConnectNowError,
    asyncpg.TooManyConnectionsError,
    asyncpg.InterfaceError,
    ConnectionError,
    OSError,
    asyncio.TimeoutError,
)


class DatabaseClient:
    """
    Low-level async PostgreSQL client using asyncpg.

    Features:
    - Connection pooling with asyncpg
    - Parameterized queries ($1 bound server-side)
    - Read-only transactions with a per-query statement timeout
    - Structured logging with trace IDs

    Usage:
        client = DatabaseClient(config)
        await client.connect()

        rows = await client.execute_query(
            "SELECT first_name FROM crm_prospects WHERE organization_id = $1 LIMIT 10",
            params=[organization_id],
            read_only=True,
            timeout=15,
        )

        await client.close()
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._pool: Optional[asyncpg.Pool] = None
        self._is_connected = False

        logger.info(
            "DatabaseClient initialized",
            default_schema=config.default_schema,
            connection_pool_size=config.connection_pool_max_size,
            query_timeout_seconds=config.query_timeout_seconds,
            application_name=config.application_name
        )

    async def connect(self) -> None:
        """
        Establish connection pool to the database.

        Raises:
            DataSourceUnavailableError: If the pool cannot be created or tested
        """
        if self._is_connected:
            logger.warning("Database client already connected")
            return

        trace_id = current_trace_id()
        logger.info("Establishing database connection", trace_id=trace_id)

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.config.database_url,
                min_size=self.config.connection_pool_min_size,
                max_size=self.config.connection_pool_max_size,
                command_timeout=self.config.query_timeout_seconds,
                timeout=self.config.connection_timeout_seconds,
                max_queries=self.config.connection_pool_max_queries,
                max_cached_statement_lifetime=self.config.max_cached_statement_lifetime,
                max_cacheable_statement_size=self.config.max_cacheable_statement_size,
                server_settings={
                    'application_name': self.config.application_name,
                    'search_path': self.config.default_schema,
                    'jit': 'on' if self.config.jit_enabled else 'off'
                }
            )

            async with self._pool.acquire() as conn:
                if await conn.fetchval("SELECT 1") != 1:
                    raise DataSourceUnavailableError("Connection test query failed")

            self._is_connected = True
            logger.info(
                "Database connection established successfully",
                pool_size=self.config.connection_pool_max_size,
                default_schema=self.config.default_schema,
                trace_id=trace_id
            )

        except DataSourceUnavailableError:
            await self._discard_pool()
            raise

        except Exception as e:
            await self._discard_pool()
            error_msg = f"Failed to connect to database: {e}"
            logger.error(error_msg, error_type=type(e).__name__, trace_id=trace_id)
            raise DataSourceUnavailableError(error_msg) from e

    async def _discard_pool(self) -> None:
        if self._pool is not None:
            self._pool.terminate()
            self._pool = None

    async def close(self) -> None:
        """Close database connection pool."""
        trace_id = current_trace_id()
        logger.info("Closing database connection", trace_id=trace_id)

        if self._pool:
            await self._pool.close()

        self._is_connected = False
        self._pool = None

        logger.info("Database connection closed", trace_id=trace_id)

    def is_connected(self) -> bool:
        """Check if database client is connected."""
        return self._is_connected and self._pool is not None

    async def health_check(self) -> Dict[str, Any]:
        """
        Perform health check on database connection.

        Returns:
            Dictionary with status and connection details
        """
        trace_id = current_trace_id()

        if not self.is_connected():
            return {
                "status": "unhealthy",
                "connected": False,
                "error": "Database client not connected"
            }

        try:
            async with self.acquire_connection() as conn:
                current_schema = await conn.fetchval("SELECT current_schema()")

            logger.info("Database health check passed", trace_id=trace_id)
            return {
                "status": "healthy",
                "connected": True,
                "pool_size": self.config.connection_pool_max_size,
                "current_schema": current_schema
            }

        except Exception as e:
            logger.error(
                "Database health check failed",
                error=str(e),
                error_type=type(e).__name__,
                trace_id=trace_id
            )
            return {
                "status": "unhealthy",
                "connected": True,
                "error": str(e)
            }

    @asynccontextmanager
    async def acquire_connection(self):
        """
        Context manager to acquire a database connection from the pool.

        Raises:
            DataSourceUnavailableError: If the pool is not available
        """
        if not self.is_connected() or self._pool is None:
            raise DataSourceUnavailableError("Database client is not connected")

        async with self._pool.acquire(timeout=self.config.connection_timeout_seconds) as connection:
            yield connection

    async def execute_query(
        self,
        query: str,
        params: Optional[List[Any]] = None,
        timeout: Optional[int] = None,
        read_only: Optional[bool] = None
    ) -> List[Dict[str, Any]]:
        """
        Execute a SQL query and return results as list of dictionaries.

        Args:
            query: SQL query string, placeholders as $1, $2...
            params: Optional query parameters, bound server-side
            timeout: Optional statement timeout in seconds
            read_only: Run inside a READ ONLY transaction
                (defaults to config.enforce_read_only_default)

        Raises:
            DataSourceUnavailableError: If the database cannot be reached
            DatabaseQueryError: If the database rejects or cancels the statement
        """
        trace_id = current_trace_id()
        read_only = self.config.enforce_read_only_default if read_only is None else read_only

        logger.info(
            "Executing database query",
            query=truncate_text(query, 200),
            param_count=len(params) if params else 0,
            read_only=read_only,
            trace_id=trace_id
        )

        try:
            async with self.acquire_connection() as conn:
                async with conn.transaction(readonly=read_only):
                    if timeout:
                        # SET LOCAL does not accept bind parameters
                        await conn.execute(f"SET LOCAL statement_timeout = {int(timeout * 1000)}")

                    rows = await conn.fetch(query, *(params or []))

            results = [dict(row) for row in rows]

            logger.info(
                "Query executed successfully",
                row_count=len(results),
                trace_id=trace_id
            )

            return results

        except DataSourceUnavailableError:
            raise

        except asyncpg.QueryCanceledError as e:
            error_msg = f"Query timeout exceeded: {e}"
            logger.error(error_msg, query=truncate_text(query, 200), trace_id=trace_id)
            raise DatabaseQueryError(error_msg) from e

        except asyncpg.ReadOnlySQLTransactionError as e:
            error_msg = f"Write attempted in read-only transaction: {e}"
            logger.error(error_msg, query=truncate_text(query, 200), trace_id=trace_id)
            raise DatabaseQueryError(error_msg) from e

        except asyncpg.PostgresSyntaxError as e:
            error_msg = f"SQL syntax error: {e}"
            logger.error(error_msg, query=truncate_text(query, 200), trace_id=trace_id)
            raise DatabaseQueryError(error_msg) from e

        except (asyncpg.UndefinedTableError, asyncpg.UndefinedColumnError) as e:
            error_msg = f"Unknown relation or column: {e}"
            logger.error(error_msg, query=truncate_text(query, 200), trace_id=trace_id)
            raise DatabaseQueryError(error_msg) from e

        except _UNAVAILABLE_ERRORS as e:
            error_msg = f"Database unavailable: {e}"
            logger.error(error_msg, error_type=type(e).__name__, trace_id=trace_id)
            raise DataSourceUnavailableError(error_msg) from e

        except Exception as e:
            error_msg = f"Query execution failed: {e}"
            logger.error(
                error_msg,
                error_type=type(e).__name__,
                query=truncate_text(query, 200),
                trace_id=trace_id
            )
            raise DatabaseQueryError(error_msg) from e
