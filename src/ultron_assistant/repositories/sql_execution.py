"""
SQL Execution Repository.

This repository runs validated queries for the caller's organization, with a
structured fallback when direct execution is unavailable.

Safety Features:
- Read-only enforcement: direct queries run in a READ ONLY transaction
- Tenant binding: the organization id is bound server-side as $1
- Timeout protection: statement timeout plus the request's remaining budget
- Fallback always filters on organization_id and only reads catalog tables

Execution Flow:
1. Direct path: DatabaseClient.execute_query(sql, [organization_id])
2. DataSourceUnavailableError (pool down, connection refused/lost)
   -> structured fallback through Supabase PostgREST:
   a. QueryIntentParser.parse(sql) -> QueryIntent
   b. strict mode refuses intents with unrecognized predicates,
      lenient mode logs them and returns the wider result
   c. SupabaseClient.select_rows(table, organization_id=eq.<id>, ...)
3. Any other failure -> QueryExecutionError

Query errors (syntax, unknown column, statement timeout) never trigger the
fallback: the same query would fail there too, or worse, run with fewer
predicates.

Error Handling:
- Raises QueryExecutionError with the generic French message
- Raw database / PostgREST error text is logged, never returned
"""

import asyncio
import time
from typing import Any, Dict, List, Optional

from ultron_assistant.config import AssistantConfig
from ultron_assistant.domain.base_enums import ExecutionPath, FilterOperator
from ultron_assistant.domain.errors import (
    DatabaseQueryError,
    DataSourceUnavailableError,
    FallbackUnsupportedError,
    QueryExecutionError,
    SupabaseError,
)
from ultron_assistant.domain.query_intent import IntentFilter, IntentOrder, QueryIntent
from ultron_assistant.domain.responses import QueryExecutionResult
from ultron_assistant.infrastructure.database_client import DatabaseClient
from ultron_assistant.infrastructure.supabase_client import SupabaseClient
from ultron_assistant.repositories.query_intent import QueryIntentParser
from ultron_assistant.utils.logging import get_module_logger
from ultron_assistant.utils.tracing import RequestBudget, current_trace_id

logger = get_module_logger()


def postgrest_filter(intent_filter: IntentFilter) -> str:
    """Render one intent filter as a PostgREST operator value."""
    if intent_filter.operator == FilterOperator.EQ:
        return f"eq.{intent_filter.value}"
    if intent_filter.operator == FilterOperator.IS_NULL:
        return "is.null"
    return "not.is.null"


def postgrest_order(order_by: List[IntentOrder]) -> Optional[str]:
    """Render sort keys as a PostgREST order value, e.g. "created_at.desc.nullslast"."""
    if not order_by:
        return None

    keys = []
    for order in order_by:
        key = f"{order.column}.{order.direction.value}"
        if order.nulls_first is not None:
            key += ".nullsfirst" if order.nulls_first else ".nullslast"
        keys.append(key)
    return ",".join(keys)


class SQLExecutionRepository:
    """
    Repository for SQL execution.

    Executes validated SQL with read-only enforcement, falling back to a
    structured single-table read when the database is unavailable.
    """

    def __init__(
        self,
        db_client: DatabaseClient,
        supabase_client: SupabaseClient,
        intent_parser: QueryIntentParser,
        allowed_tables: List[str],
        config: AssistantConfig,
    ):
        self.db_client = db_client
        self.supabase_client = supabase_client
        self.intent_parser = intent_parser
        self.allowed_tables = set(allowed_tables)
        self.config = config

    async def execute(
        self,
        sql: str,
        organization_id: str,
        budget: Optional[RequestBudget] = None,
    ) -> QueryExecutionResult:
        """
        Execute a validated query for one organization.

        Args:
            sql: Rewritten and validated SQL, tenant placeholder $1
            organization_id: Caller's organization, bound as $1
            budget: Request time budget; each path gets at most what remains

        Returns:
            QueryExecutionResult with rows and the path that produced them

        Raises:
            QueryExecutionError: If neither path produced rows
        """
        trace_id = current_trace_id()

        try:
            return await self._execute_direct(sql, organization_id, budget)

        except DataSourceUnavailableError as e:
            logger.warning(
                "Direct execution unavailable, using structured fallback",
                error=e.message,
                trace_id=trace_id,
            )

        except DatabaseQueryError as e:
            logger.error("Direct execution failed", error=e.message, trace_id=trace_id)
            raise QueryExecutionError(f"Query failed: {e.message}", query=sql) from e

        except asyncio.TimeoutError as e:
            logger.error("Direct execution exceeded the request budget", trace_id=trace_id)
            raise QueryExecutionError("Query timed out", query=sql) from e

        try:
            return await self._execute_fallback(sql, organization_id, budget)

        except FallbackUnsupportedError as e:
            logger.error(
                "Query cannot be run through the fallback",
                error=e.message,
                details=e.details,
                trace_id=trace_id,
            )
            raise QueryExecutionError(f"Fallback refused: {e.message}", query=sql) from e

        except SupabaseError as e:
            logger.error("Fallback execution failed", error=e.message, trace_id=trace_id)
            raise QueryExecutionError(f"Fallback failed: {e.message}", query=sql) from e

        except asyncio.TimeoutError as e:
            logger.error("Fallback execution exceeded the request budget", trace_id=trace_id)
            raise QueryExecutionError("Fallback timed out", query=sql) from e

    async def _execute_direct(
        self,
        sql: str,
        organization_id: str,
        budget: Optional[RequestBudget],
    ) -> QueryExecutionResult:
        timeout = self._timeout(budget)
        logger.info("Executing SQL query", sql_length=len(sql), timeout=timeout, trace_id=current_trace_id())

        start_time = time.perf_counter()
        rows = await asyncio.wait_for(
            self.db_client.execute_query(
                query=sql,
                params=[organization_id],
                timeout=timeout,
                read_only=True,  # assistant queries must be read-only
            ),
            timeout=timeout,
        )
        return self._result(rows, start_time, ExecutionPath.DIRECT)

    async def _execute_fallback(
        self,
        sql: str,
        organization_id: str,
        budget: Optional[RequestBudget],
    ) -> QueryExecutionResult:
        intent = self.intent_parser.parse(sql)
        self._check_fallback_intent(intent)

        filters: Dict[str, str] = {self.config.tenant_column: f"eq.{organization_id}"}
        for intent_filter in intent.filters:
            filters[intent_filter.column] = postgrest_filter(intent_filter)

        timeout = self._timeout(budget)
        start_time = time.perf_counter()
        rows = await asyncio.wait_for(
            self.supabase_client.select_rows(
                table=intent.table,
                filters=filters,
                columns=",".join(intent.columns) or "*",
                order=postgrest_order(intent.order_by),
                limit=min(intent.limit, self.config.max_limit),
                timeout=timeout,
            ),
            timeout=timeout,
        )
        return self._result(rows, start_time, ExecutionPath.FALLBACK)

    def _check_fallback_intent(self, intent: QueryIntent) -> None:
        """Refuse intents the fallback cannot run faithfully (strict) or log them (lenient)."""
        if intent.table not in self.allowed_tables:
            raise FallbackUnsupportedError(
                f"Table not allowed in fallback: {intent.table}",
                details={"table": intent.table}
            )

        if intent.is_exact:
            return

        if self.config.fallback_strict:
            raise FallbackUnsupportedError(
                "Query uses predicates the fallback cannot express",
                details={"unrecognized": intent.unrecognized_predicates}
            )

        logger.warning(
            "Fallback ignores predicates, result may include extra rows",
            table=intent.table,
            unrecognized=intent.unrecognized_predicates,
            trace_id=current_trace_id(),
        )

    def _timeout(self, budget: Optional[RequestBudget]) -> float:
        timeout = float(self.config.query_timeout_seconds)
        if budget is not None:
            timeout = min(timeout, budget.remaining())
        return timeout

    @staticmethod
    def _result(rows: List[Dict[str, Any]], start_time: float, path: ExecutionPath) -> QueryExecutionResult:
        execution_time_ms = (time.perf_counter() - start_time) * 1000
        result = QueryExecutionResult(
            rows=rows,
            column_names=list(rows[0].keys()) if rows else [],
            row_count=len(rows),
            execution_time_ms=execution_time_ms,
            execution_path=path,
        )

        logger.info(
            "SQL execution successful",
            row_count=result.row_count,
            execution_time_ms=round(execution_time_ms, 2),
            execution_path=path.value,
            trace_id=current_trace_id(),
        )
        return result
