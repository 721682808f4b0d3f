"""
Query Intent Parser.

Derives a QueryIntent from a rewritten, validated SELECT statement. The
intent is what the structured fallback executes, so anything the parser
cannot represent is recorded in unrecognized_predicates instead of being
dropped silently.

Recognized:
- main table (top-level FROM)
- select list of plain columns, "t.col", "col AS alias" and "*", carried as
  PostgREST select items ("alias:col")
- LIMIT n (default when absent)
- ORDER BY keys, direction defaulting to DESC, NULLS FIRST/LAST; select-list aliases
  are mapped back to their column ("ORDER BY patrimoine" with
  "patrimoine_estime AS patrimoine" sorts on patrimoine_estime)
- qualification = 'chaud' | 'tiede' | 'froid' | 'non_qualifie'
- assigned_to IS NULL / IS NOT NULL
  (one predicate per column: a second one on the same column is unrecognized)
- the tenant filter itself (the fallback always adds its own)

Everything else at the top level (other predicates, joins, grouping,
aggregates, computed select items, DISTINCT, OFFSET, computed sort keys) is unrecognized.
"""

import re
from typing import Dict, List, Optional

from ultron_assistant.domain.base_enums import FilterOperator, SortDirection
from ultron_assistant.domain.errors import FallbackUnsupportedError
from ultron_assistant.domain.query_intent import IntentFilter, IntentOrder, QueryIntent
from ultron_assistant.utils.logging import get_module_logger
from ultron_assistant.utils.sql_text import (
    find_top_level,
    first_top_level_clause,
    main_from_table,
    referenced_tables,
    split_conjuncts,
    split_top_level_commas,
    top_level_limit,
    where_clause_span,
)

logger = get_module_logger()

QUALIFICATION_VALUES = ("chaud", "tiede", "froid", "non_qualifie")

_QUALIFICATION_PATTERN = re.compile(
    r"(?:LOWER\s*\(\s*)?(?:\w+\.)?qualification(?:\s*\))?\s*=\s*'(\w+)'",
    re.IGNORECASE
)
_ASSIGNED_NULL_PATTERN = re.compile(r'(?:\w+\.)?assigned_to\s+IS\s+(NOT\s+)?NULL', re.IGNORECASE)
_AGGREGATE_PATTERN = re.compile(r'\b(?:COUNT|SUM|AVG|MIN|MAX)\s*\(', re.IGNORECASE)
_SELECT_ALIAS_PATTERN = re.compile(r'^(?:\w+\.)?(\w+)\s+AS\s+"?(\w+)"?$', re.IGNORECASE)
_SELECT_COLUMN_PATTERN = re.compile(r'^(?:\w+\.)?(\*|\w+)(?:\s+(?:AS\s+)?"?(\w+)"?)?$', re.IGNORECASE)
_ORDER_KEY_PATTERN = re.compile(
    r'^(?:\w+\.)?(\w+)(?:\s+(ASC|DESC))?(?:\s+NULLS\s+(FIRST|LAST))?$',
    re.IGNORECASE
)

_CLAUSES_AFTER_ORDER = ("LIMIT", "OFFSET", "FETCH", "FOR")


class QueryIntentParser:
    """Builds the single-table QueryIntent used by the structured fallback."""

    def __init__(
        self,
        default_limit: int = 50,
        tenant_column: str = "organization_id",
        tenant_placeholder: str = "$1",
    ):
        self.default_limit = default_limit
        self._tenant_pattern = re.compile(
            rf'(?:\w+\.)?{re.escape(tenant_column)}\s*=\s*{re.escape(tenant_placeholder)}(?:::\w+)?',
            re.IGNORECASE
        )

    def parse(self, sql: str) -> QueryIntent:
        """
        Parse a validated SELECT into a QueryIntent.

        Raises:
            FallbackUnsupportedError: If the query has no top-level FROM
        """
        source = main_from_table(sql)
        if source is None:
            raise FallbackUnsupportedError(
                "Could not determine table from query",
                details={"reason": "no_from_clause"}
            )

        table, _, _ = source
        unrecognized: List[str] = []

        select_list = self._select_list(sql)
        if re.match(r'^DISTINCT\b', select_list, re.IGNORECASE):
            unrecognized.append("DISTINCT")
        if _AGGREGATE_PATTERN.search(select_list):
            unrecognized.append(f"aggregate: {select_list}")

        other_tables = [name for name in referenced_tables(sql) if name != table]
        if other_tables or find_top_level(sql, "JOIN"):
            unrecognized.append(f"joined tables: {', '.join(other_tables) or 'self'}")

        for clause in ("GROUP BY", "HAVING", "OFFSET"):
            if find_top_level(sql, clause):
                unrecognized.append(clause)

        columns = self._select_columns(select_list, unrecognized)
        filters = self._parse_filters(sql, unrecognized)
        order_by = self._parse_order(sql, self._select_aliases(select_list), unrecognized)
        limit = top_level_limit(sql) or self.default_limit

        intent = QueryIntent(
            table=table,
            columns=columns,
            filters=filters,
            order_by=order_by,
            limit=limit,
            unrecognized_predicates=unrecognized,
        )

        logger.debug(
            "Query intent parsed",
            table=intent.table,
            columns=intent.columns,
            filter_count=len(intent.filters),
            order_by=[order.column for order in intent.order_by],
            limit=intent.limit,
            unrecognized_count=len(intent.unrecognized_predicates),
        )
        return intent

    # -------------------------
    # Clauses
    # -------------------------

    @staticmethod
    def _select_list(sql: str) -> str:
        """Text between the leading SELECT and the top-level FROM."""
        from_match = find_top_level(sql, "FROM")
        end = from_match.start() if from_match else len(sql)
        return re.sub(r'^\s*SELECT\b', "", sql[:end], flags=re.IGNORECASE).strip()

    @staticmethod
    def _select_aliases(select_list: str) -> Dict[str, str]:
        """Map "alias" -> "column" for plain "column AS alias" items."""
        aliases: Dict[str, str] = {}
        for item in split_top_level_commas(select_list):
            match = _SELECT_ALIAS_PATTERN.match(item)
            if match:
                aliases[match.group(2).lower()] = match.group(1).lower()
        return aliases

    @staticmethod
    def _select_columns(select_list: str, unrecognized: List[str]) -> List[str]:
        """PostgREST select items for the select list; "*" keeps every column."""
        select_list = re.sub(r'^DISTINCT\b', "", select_list, flags=re.IGNORECASE).strip()
        columns: List[str] = []
        for item in split_top_level_commas(select_list):
            match = _SELECT_COLUMN_PATTERN.match(item)
            if match is None:
                # Aggregates are already reported as a whole
                if not _AGGREGATE_PATTERN.search(item):
                    unrecognized.append(f"select: {item}")
                continue

            column, alias = match.group(1).lower(), match.group(2)
            if column == "*" or alias is None or alias.lower() == column:
                columns.append(column)
            else:
                columns.append(f"{alias.lower()}:{column}")
        return columns

    def _parse_filters(self, sql: str, unrecognized: List[str]) -> List[IntentFilter]:
        span = where_clause_span(sql)
        if span is None:
            return []

        filters: List[IntentFilter] = []
        for conjunct in split_conjuncts(sql[span[1]:span[2]]):
            conjunct = conjunct.strip()

            if self._tenant_pattern.fullmatch(conjunct):
                continue

            recognized = self._recognize_predicate(conjunct)
            # The structured query holds a single filter per column
            if recognized is None or recognized.column in {f.column for f in filters}:
                unrecognized.append(conjunct)
            else:
                filters.append(recognized)
        return filters

    @staticmethod
    def _recognize_predicate(predicate: str) -> Optional[IntentFilter]:
        match = _QUALIFICATION_PATTERN.fullmatch(predicate)
        if match and match.group(1).lower() in QUALIFICATION_VALUES:
            return IntentFilter(
                column="qualification",
                operator=FilterOperator.EQ,
                value=match.group(1).lower(),
            )

        match = _ASSIGNED_NULL_PATTERN.fullmatch(predicate)
        if match:
            return IntentFilter(
                column="assigned_to",
                operator=FilterOperator.NOT_NULL if match.group(1) else FilterOperator.IS_NULL,
            )

        return None

    @staticmethod
    def _parse_order(
        sql: str,
        aliases: Dict[str, str],
        unrecognized: List[str],
    ) -> List[IntentOrder]:
        order_match = find_top_level(sql, "ORDER BY")
        if order_match is None:
            return []

        end = first_top_level_clause(sql, _CLAUSES_AFTER_ORDER, order_match.end())
        order_by: List[IntentOrder] = []

        for key in split_top_level_commas(sql[order_match.end():end]):
            match = _ORDER_KEY_PATTERN.match(key)
            if match is None:
                # Later keys are meaningless without this one
                unrecognized.append(f"ORDER BY {key}")
                break

            column = match.group(1).lower()
            nulls = match.group(3)
            order_by.append(IntentOrder(
                column=aliases.get(column, column),
                direction=SortDirection.ASC if (match.group(2) or "").upper() == "ASC" else SortDirection.DESC,
                nulls_first=None if nulls is None else nulls.upper() == "FIRST",
            ))

        return order_by
