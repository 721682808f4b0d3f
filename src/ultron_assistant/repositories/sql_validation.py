"""
SQL Rewriting and Validation Repository.

Every candidate query goes through two steps before execution:

1. QueryRewriter (unconditional, never trusts the model):
   - strips a trailing semicolon
   - injects the tenant filter (organization_id = $1) for every table of
     every SELECT (subqueries, comma lists and joins) that does not already
     carry it as a top-level conjunct of its WHERE or ON condition
   - appends LIMIT <default> when there is no top-level LIMIT

2. QueryValidator: evaluates an ordered list of PolicyRule values and stops
   at the first enforced failure. The policy is data, so the rule set can
   be inspected, reordered or tested without touching the evaluation code.

Validation Checks (default order):
1. require_prefix: query starts with SELECT
2. deny_statement_chaining: no ';' left in the statement
3. deny_set_operations: no UNION, INTERSECT or EXCEPT
4. deny_keywords: no write/DDL/session keyword as a whole word
5. require_tenant_filter: every table read, subqueries included, is
   filtered on organization_id = $1
6. allowed_tables: FROM/JOIN targets are catalog tables, FROM required
7. max_limit: LIMIT present and within bounds
8. deny_patterns: no injection-looking fragments (comments, hex, ...)

Reasons are French, user-facing: the caller shows
"Je ne peux pas executer cette requete: {reason}".

Error Handling:
- An invalid query is a ValidationOutcome(valid=False), not an exception
- No I/O: every check is a pure function of the SQL text
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set, Tuple

from ultron_assistant.config import AssistantConfig
from ultron_assistant.config_constants import TableAllowlistMode
from ultron_assistant.domain.base_enums import PolicyRuleKind
from ultron_assistant.domain.responses import ValidationOutcome, ValidationStep
from ultron_assistant.utils.logging import get_module_logger
from ultron_assistant.utils.sql_text import (
    CLAUSES_AFTER_WHERE,
    ON_FILTERED_JOINS,
    TableSource,
    find_top_level,
    first_top_level_clause,
    from_sources,
    nested_select_spans,
    referenced_tables,
    select_blocks,
    set_operations,
    split_conjuncts,
    top_level_limit,
    where_clause_span,
)
from ultron_assistant.utils.tracing import current_trace_id

logger = get_module_logger()

# Keywords that modify data, structure or session state
FORBIDDEN_KEYWORDS: Tuple[str, ...] = (
    "INSERT", "UPDATE", "DELETE", "DROP", "ALTER", "CREATE",
    "TRUNCATE", "GRANT", "REVOKE", "EXECUTE", "EXEC", "MERGE",
    "UPSERT", "REPLACE", "CALL", "SET", "COPY", "VACUUM",
    "ANALYZE", "REINDEX", "CLUSTER", "COMMENT", "LOCK", "UNLOCK",
)

# Fragments typical of injection attempts or of text hidden from review
SUSPICIOUS_PATTERNS: Tuple[str, ...] = (
    r";\s*--",                      # terminator followed by comment
    r"'\s*OR\s+'1'\s*=\s*'1",       # classic OR injection
    r"UNION\s+(?:ALL\s+)?SELECT",   # second result set
    r"/\*",                         # block comment
    r"--",                          # line comment (would swallow injected clauses)
    r"xp_",                         # SQL Server extended procedures
    r"0x[0-9a-f]+",                 # hexadecimal literal
)


# =============================================================================
# Tenant scope
# =============================================================================


class TenantScope:
    """
    Tells which tables of a query are restricted to the caller's organization.

    A table is scoped when "<alias or table>.organization_id = $1" is a
    top-level conjunct of the WHERE of the SELECT that reads it, or of its
    ON condition for joins that can only drop its rows. The unqualified form
    counts only when that SELECT reads a single table. A derived table
    "(SELECT ...)" is scoped through its own SELECT, which is checked as a
    block of its own.
    """

    def __init__(self, tenant_column: str = "organization_id", tenant_placeholder: str = "$1"):
        self._conjunct = re.compile(
            rf'(?:(\w+)\.)?{re.escape(tenant_column)}\s*=\s*{re.escape(tenant_placeholder)}(?:::\w+)?',
            re.IGNORECASE
        )

    def qualifiers(self, predicate: str) -> Set[Optional[str]]:
        """Qualifiers of the tenant conjuncts of a predicate (None when unqualified)."""
        found: Set[Optional[str]] = set()
        for conjunct in split_conjuncts(predicate):
            match = self._conjunct.fullmatch(conjunct.strip())
            if match is not None:
                found.add(match.group(1).lower() if match.group(1) else None)
        return found

    def is_scoped(self, block: str, source: TableSource, sources: List[TableSource]) -> bool:
        if source.derived:
            return True
        if source.table is None:
            return False

        accepted: Set[Optional[str]] = {source.alias or source.table}
        if len(sources) == 1:
            accepted.add(None)

        span = where_clause_span(block)
        if span is not None and accepted & self.qualifiers(block[span[1]:span[2]]):
            return True

        if source.join in ON_FILTERED_JOINS and source.condition_span is not None:
            start, end = source.condition_span
            return bool(accepted & self.qualifiers(block[start:end]))
        return False

    def unscoped_tables(self, sql: str) -> List[str]:
        """Tables read by sql, at any depth, that are not provably tenant-scoped."""
        # Branches of a set operation are not parsed; none of their tables is trusted
        if set_operations(sql):
            return referenced_tables(sql)

        unscoped: List[str] = []
        seen: Set[str] = set()
        for block in select_blocks(sql):
            sources = from_sources(block)
            for source in sources:
                if source.table:
                    seen.add(source.table)
                if not self.is_scoped(block, source, sources) and source.name not in unscoped:
                    unscoped.append(source.name)

        for table in referenced_tables(sql):
            if table not in seen and table not in unscoped:
                unscoped.append(table)
        return unscoped


# =============================================================================
# Rewriter
# =============================================================================


class QueryRewriter:
    """
    Makes a candidate query tenant-scoped and bounded.

    Rewriting is idempotent: a rewritten query is returned unchanged.
    """

    def __init__(
        self,
        tenant_column: str = "organization_id",
        tenant_placeholder: str = "$1",
        default_limit: int = 50,
    ):
        self.tenant_column = tenant_column
        self.tenant_placeholder = tenant_placeholder
        self.default_limit = default_limit
        self.scope = TenantScope(tenant_column, tenant_placeholder)

    def rewrite(self, sql: str) -> str:
        """Apply terminator stripping, tenant filter and result bound, in that order."""
        rewritten = self.strip_terminator(sql)
        rewritten = self.ensure_tenant_filter(rewritten)
        rewritten = self.ensure_limit(rewritten)

        if rewritten != sql.strip():
            logger.info(
                "Query rewritten",
                tenant_filter_added=not self.has_tenant_filter(sql),
                limit_added=top_level_limit(sql) is None,
                trace_id=current_trace_id(),
            )
        return rewritten

    @staticmethod
    def strip_terminator(sql: str) -> str:
        stripped = sql.strip()
        if stripped.endswith(";"):
            stripped = stripped[:-1].rstrip()
        return stripped

    def has_tenant_filter(self, sql: str) -> bool:
        """True when every table read by the query, subqueries included, is tenant-scoped."""
        return not self.scope.unscoped_tables(sql)

    def ensure_tenant_filter(self, sql: str) -> str:
        """
        Scope every table of the query to the tenant.

        Subqueries are handled first, then each FROM item of the outer SELECT:
        - inner or left join with an ON condition: "ON <filter> AND (<existing>)"
        - otherwise the WHERE clause: "WHERE <filter> AND (<existing predicate>)",
          or a new WHERE before GROUP BY/HAVING/ORDER BY/LIMIT/OFFSET, or at the end
        Set operations and queries without FROM are left unchanged (the
        validator rejects what still needs it).
        """
        if set_operations(sql):
            return sql
        return self._scope_block(sql)

    def _scope_block(self, sql: str) -> str:
        # Back to front so earlier offsets stay valid
        for start, end in reversed(nested_select_spans(sql)):
            sql = sql[:start] + self._scope_block(sql[start:end]) + sql[end:]

        for _ in range(len(from_sources(sql))):
            sources = from_sources(sql)
            pending = next(
                (source for source in sources if not self.scope.is_scoped(sql, source, sources)),
                None,
            )
            if pending is None or pending.table is None:
                break
            sql = self._add_condition(sql, pending, sources)
        return sql

    def _add_condition(self, sql: str, source: TableSource, sources: List[TableSource]) -> str:
        qualifier = source.alias or (source.table if len(sources) > 1 else None)
        condition = f"{qualifier + '.' if qualifier else ''}{self.tenant_column} = {self.tenant_placeholder}"

        if source.join in ON_FILTERED_JOINS and source.condition_span is not None:
            start, end = source.condition_span
            return f"{sql[:start]}{condition} AND ({sql[start:end].strip()}){sql[end:]}"

        span = where_clause_span(sql)
        if span is not None:
            _, predicate_start, predicate_end = span
            raw_predicate = sql[predicate_start:predicate_end]
            existing = raw_predicate.strip()
            trailing = raw_predicate[len(raw_predicate.rstrip()):]
            if predicate_end < len(sql) and not trailing:
                trailing = " "
            injected = f" {condition} AND ({existing})" if existing else f" {condition}"
            return sql[:predicate_start] + injected + trailing + sql[predicate_end:]

        from_keyword = find_top_level(sql, "FROM")
        insert_at = first_top_level_clause(sql, CLAUSES_AFTER_WHERE, from_keyword.end())
        if insert_at is None:
            return f"{sql.rstrip()} WHERE {condition}"

        before = sql[:insert_at]
        separator = before[len(before.rstrip()):] or " "
        return f"{before.rstrip()} WHERE {condition}{separator}{sql[insert_at:]}"

    def ensure_limit(self, sql: str) -> str:
        if top_level_limit(sql) is not None:
            return sql
        return f"{sql.rstrip()} LIMIT {self.default_limit}"


# =============================================================================
# Policy
# =============================================================================


@dataclass(frozen=True)
class PolicyRule:
    """
    One read-only policy rule.

    Only the fields relevant to the rule kind are used:
    - REQUIRE_PREFIX: prefix
    - DENY_KEYWORDS: keywords
    - DENY_PATTERNS: patterns
    - REQUIRE_TENANT_FILTER: tenant_column, tenant_placeholder
    - ALLOWED_TABLES: tables, mode
    - MAX_LIMIT: max_limit
    """

    kind: PolicyRuleKind
    prefix: str = "SELECT"
    keywords: Tuple[str, ...] = ()
    patterns: Tuple[str, ...] = ()
    tables: Tuple[str, ...] = ()
    mode: TableAllowlistMode = TableAllowlistMode.ENFORCE
    max_limit: int = 50
    tenant_column: str = "organization_id"
    tenant_placeholder: str = "$1"


def default_policy(allowed_tables: List[str], config: AssistantConfig) -> List[PolicyRule]:
    """Build the standard read-only policy for the given table allowlist."""
    return [
        PolicyRule(kind=PolicyRuleKind.REQUIRE_PREFIX, prefix="SELECT"),
        PolicyRule(kind=PolicyRuleKind.DENY_STATEMENT_CHAINING),
        PolicyRule(kind=PolicyRuleKind.DENY_SET_OPERATIONS),
        PolicyRule(kind=PolicyRuleKind.DENY_KEYWORDS, keywords=FORBIDDEN_KEYWORDS),
        PolicyRule(
            kind=PolicyRuleKind.REQUIRE_TENANT_FILTER,
            tenant_column=config.tenant_column,
            tenant_placeholder=config.tenant_placeholder,
        ),
        PolicyRule(
            kind=PolicyRuleKind.ALLOWED_TABLES,
            tables=tuple(table.lower() for table in allowed_tables),
            mode=config.table_allowlist_mode,
        ),
        PolicyRule(kind=PolicyRuleKind.MAX_LIMIT, max_limit=config.max_limit),
        PolicyRule(kind=PolicyRuleKind.DENY_PATTERNS, patterns=SUSPICIOUS_PATTERNS),
    ]


# (passed, message) for one rule
RuleResult = Tuple[bool, Optional[str]]


class QueryValidator:
    """
    Evaluates a policy (list of PolicyRule) against a rewritten query.

    Fail-fast: evaluation stops at the first failing rule.
    """

    def __init__(self, policy: List[PolicyRule]):
        self.policy = policy
        self._checks: Dict[PolicyRuleKind, Callable[[PolicyRule, str], RuleResult]] = {
            PolicyRuleKind.REQUIRE_PREFIX: self._check_prefix,
            PolicyRuleKind.DENY_STATEMENT_CHAINING: self._check_statement_chaining,
            PolicyRuleKind.DENY_SET_OPERATIONS: self._check_set_operations,
            PolicyRuleKind.DENY_KEYWORDS: self._check_keywords,
            PolicyRuleKind.REQUIRE_TENANT_FILTER: self._check_tenant_filter,
            PolicyRuleKind.ALLOWED_TABLES: self._check_tables,
            PolicyRuleKind.MAX_LIMIT: self._check_limit,
            PolicyRuleKind.DENY_PATTERNS: self._check_patterns,
        }

    def validate(self, sql: str) -> ValidationOutcome:
        """
        Validate SQL against the policy.

        Returns:
            ValidationOutcome with valid flag, first failure reason and evaluated steps
        """
        trace_id = current_trace_id()
        statement = sql.strip()
        steps: List[ValidationStep] = []

        for rule in self.policy:
            passed, message = self._checks[rule.kind](rule, statement)
            steps.append(ValidationStep(rule=rule.kind, passed=passed, message=message))

            if not passed:
                logger.warning(
                    "SQL validation failed",
                    rule=rule.kind.value,
                    reason=message,
                    trace_id=trace_id,
                )
                return ValidationOutcome(valid=False, reason=message, steps=steps)

        logger.info("SQL validation passed", rules_checked=len(steps), trace_id=trace_id)
        return ValidationOutcome(valid=True, steps=steps)

    # -------------------------
    # Rule checks
    # -------------------------

    @staticmethod
    def _check_prefix(rule: PolicyRule, sql: str) -> RuleResult:
        if not sql.upper().startswith(rule.prefix.upper()):
            return False, "Seules les requetes SELECT sont autorisees"
        return True, None

    @staticmethod
    def _check_statement_chaining(rule: PolicyRule, sql: str) -> RuleResult:
        if ";" in sql:
            return False, "Une seule instruction SQL est autorisee"
        return True, None

    @staticmethod
    def _check_set_operations(rule: PolicyRule, sql: str) -> RuleResult:
        found = set_operations(sql)
        if found:
            return False, f"Operation ensembliste non autorisee: {found[0]}"
        return True, None

    @staticmethod
    def _check_keywords(
rule: PolicyRule, sql: str) -> RuleResult:
        for keyword in rule.keywords:
            # Whole word only: updated_at must not match UPDATE
            if re.search(rf'\b{re.escape(keyword)}\b', sql, re.IGNORECASE):
                return False, f"Operation non autorisee: {keyword}"
        return True, None

    @staticmethod
    def _check_tenant_filter(rule: PolicyRule, sql: str) -> RuleResult:
        unscoped = TenantScope(rule.tenant_column, rule.tenant_placeholder).unscoped_tables(sql)
        if unscoped:
            return False, f"Le filtre {rule.tenant_column} est requis pour la table {unscoped[0]}"
        return True, None

    @staticmethod
    def _check_tables(rule: PolicyRule, sql: str) -> RuleResult:
        used = referenced_tables(sql)
        disallowed = [table for table in used if table not in rule.tables]

        if disallowed:
            if rule.mode == TableAllowlistMode.ENFORCE:
                return False, f"Table non autorisee: {disallowed[0]}"
            logger.warning(
                "Query uses tables outside the schema catalog",
                tables=disallowed,
                trace_id=current_trace_id(),
            )

        if not from_sources(sql):
            return False, "La requete doit contenir une clause FROM"

        if disallowed:
            return True, f"Tables hors catalogue: {', '.join(disallowed)}"
        return True, None

    @staticmethod
    def _check_limit(rule: PolicyRule, sql: str) -> RuleResult:
        limit = top_level_limit(sql)
        if limit is None:
            return False, f"Une clause LIMIT est requise (maximum {rule.max_limit})"
        if limit > rule.max_limit:
            return False, f"LIMIT trop eleve: {limit} (maximum {rule.max_limit})"
        return True, None

    @staticmethod
    def _check_patterns(rule: PolicyRule, sql: str) -> RuleResult:
        for pattern in rule.patterns:
            if re.search(pattern, sql, re.IGNORECASE):
                return False, "Pattern SQL suspect detecte"
        return True, None
