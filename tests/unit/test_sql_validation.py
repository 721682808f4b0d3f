"""
Unit tests for QueryRewriter and QueryValidator.

Covers:
- Tenant filter injection (WHERE present / absent, aliases, joins,
  comma-separated FROM lists, subqueries)
- Idempotence of rewriting
- LIMIT injection
- Each policy rule and its French reason
- Allowlist warn mode
"""

import pytest

from ultron_assistant.config import AssistantConfig
from ultron_assistant.config_constants import TableAllowlistMode
from ultron_assistant.domain.base_enums import PolicyRuleKind
from ultron_assistant.repositories.sql_validation import (
    PolicyRule,
    QueryRewriter,
    QueryValidator,
    default_policy,
)

ALLOWED_TABLES = ["crm_prospects", "pipeline_stages", "users", "crm_events", "crm_activities"]


@pytest.fixture
def rewriter():
    return QueryRewriter(tenant_column="organization_id", tenant_placeholder="$1", default_limit=50)


@pytest.fixture
def validator():
    return QueryValidator(default_policy(ALLOWED_TABLES, AssistantConfig()))


class TestQueryRewriter:
    """Test cases for the rewriting step."""

    def test_filter_prepended_to_existing_where(self, rewriter):
        sql = "SELECT * FROM crm_prospects WHERE qualification = 'chaud'"

        assert rewriter.rewrite(sql) == (
            "SELECT * FROM crm_prospects WHERE organization_id = $1 AND (qualification = 'chaud') LIMIT 50"
        )

    def test_where_inserted_before_order_by(self, rewriter):
        sql = "SELECT first_name FROM crm_prospects ORDER BY created_at DESC LIMIT 10"

        assert rewriter.rewrite(sql) == (
            "SELECT first_name FROM crm_prospects WHERE organization_id = $1 ORDER BY created_at DESC LIMIT 10"
        )

    def test_where_inserted_before_group_by(self, rewriter):
        sql = "SELECT qualification, COUNT(*) FROM crm_prospects GROUP BY qualification"

        assert rewriter.rewrite(sql) == (
            "SELECT qualification, COUNT(*) FROM crm_prospects WHERE organization_id = $1 "
            "GROUP BY qualification LIMIT 50"
        )

    def test_where_appended_and_terminator_stripped(self, rewriter):
        assert rewriter.rewrite("SELECT * FROM users;") == "SELECT * FROM users WHERE organization_id = $1 LIMIT 50"

    def test_alias_qualifies_filter(self, rewriter):
        sql = "SELECT p.first_name FROM crm_prospects p WHERE p.age > 30"

        assert rewriter.rewrite(sql) == (
            "SELECT p.first_name FROM crm_prospects p WHERE p.organization_id = $1 AND (p.age > 30) LIMIT 50"
        )

    def test_join_without_alias_uses_table_name(self, rewriter):
        sql = (
            "SELECT crm_prospects.first_name, users.full_name FROM crm_prospects "
            "JOIN users ON users.id = crm_prospects.assigned_to"
        )
        rewritten = rewriter.rewrite(sql)

        assert rewritten.endswith("WHERE crm_prospects.organization_id = $1 LIMIT 50")

    def test_existing_filter_kept(self, rewriter):
        sql = "SELECT * FROM crm_prospects WHERE organization_id = $1 AND age > 30 LIMIT 5"
        assert rewriter.rewrite(sql) == sql

    def test_existing_filter_with_cast_kept(self, rewriter):
        sql = "SELECT * FROM crm_prospects WHERE organization_id = $1::uuid LIMIT 5"
        assert rewriter.rewrite(sql) == sql

    def test_filter_under_or_is_not_trusted(self, rewriter):
        sql = "SELECT * FROM crm_prospects WHERE organization_id = $1 OR 1=1 LIMIT 10"
        rewritten = rewriter.rewrite(sql)

        assert "WHERE organization_id = $1 AND (organization_id = $1 OR 1=1) LIMIT 10" in rewritten

    def test_filter_on_other_table_is_not_trusted(self, rewriter):
        sql = "SELECT * FROM crm_prospects p WHERE u.organization_id = $1"
        rewritten = rewriter.rewrite(sql)

        assert rewritten.startswith("SELECT * FROM crm_prospects p WHERE p.organization_id = $1 AND (")

    def test_filter_in_subquery_only_is_not_trusted(self, rewriter):
        sql = (
            "SELECT * FROM crm_prospects WHERE id IN "
            "(SELECT prospect_id FROM crm_events WHERE organization_id = $1)"
        )
        rewritten = rewriter.rewrite(sql)

        assert rewritten.startswith("SELECT * FROM crm_prospects WHERE organization_id = $1 AND (id IN")

    @pytest.mark.parametrize("sql", [
        "SELECT * FROM crm_prospects WHERE qualification = 'chaud'",
        "SELECT first_name FROM crm_prospects ORDER BY created_at DESC",
        "SELECT p.first_name FROM crm_prospects p WHERE p.age > 30 OR p.age IS NULL",
        "SELECT COUNT(*) AS total FROM crm_events WHERE type = 'meeting';",
    ])
    def test_rewrite_is_idempotent(self, rewriter, sql):
        once = rewriter.rewrite(sql)

        assert rewriter.rewrite(once) == once
        assert once.count("organization_id = $1") == 1

    def test_join_condition_scopes_joined_table(self, rewriter):
        sql = (
            "SELECT p.first_name, u.full_name FROM crm_prospects p JOIN users u ON u.id = p.assigned_to "
            "WHERE p.qualification = 'chaud'"
        )

        assert rewriter.rewrite(sql) == (
            "SELECT p.first_name, u.full_name FROM crm_prospects p "
            "JOIN users u ON u.organization_id = $1 AND (u.id = p.assigned_to) "
            "WHERE p.organization_id = $1 AND (p.qualification = 'chaud') LIMIT 50"
        )

    def test_right_join_scoped_in_where(self, rewriter):
        sql = "SELECT p.first_name, u.full_name FROM crm_prospects p RIGHT JOIN users u ON u.id = p.assigned_to"

        assert rewriter.rewrite(sql).endswith(
            "ON u.id = p.assigned_to WHERE u.organization_id = $1 AND (p.organization_id = $1) LIMIT 50"
        )

    def test_every_table_of_comma_list_scoped(self, rewriter):
        sql = "SELECT p.first_name, u.full_name FROM crm_prospects p, users u WHERE p.organization_id = $1 LIMIT 10"

        assert rewriter.rewrite(sql) == (
            "SELECT p.first_name, u.full_name FROM crm_prospects p, users u "
            "WHERE u.organization_id = $1 AND (p.organization_id = $1) LIMIT 10"
        )

    def test_comma_list_without_where(self, rewriter):
        sql = "SELECT p.first_name, o.name FROM crm_prospects p, organizations o LIMIT 10"

        assert rewriter.rewrite(sql) == (
            "SELECT p.first_name, o.name FROM crm_prospects p, organizations o "
            "WHERE o.organization_id = $1 AND (p.organization_id = $1) LIMIT 10"
        )

    def test_scalar_subquery_scoped(self, rewriter):
        sql = "SELECT (SELECT COUNT(*) FROM crm_prospects) AS total FROM users LIMIT 1"

        assert rewriter.rewrite(sql) == (
            "SELECT (SELECT COUNT(*) FROM crm_prospects WHERE organization_id = $1) AS total "
            "FROM users WHERE organization_id = $1 LIMIT 1"
        )

    def test_in_subquery_scoped(self, rewriter):
        sql = "SELECT * FROM crm_prospects WHERE id IN (SELECT prospect_id FROM crm_events)"

        assert rewriter.rewrite(sql) == (
            "SELECT * FROM crm_prospects WHERE organization_id = $1 AND "
            "(id IN (SELECT prospect_id FROM crm_events WHERE organization_id = $1)) LIMIT 50"
        )

    def test_derived_table_scoped_inside(self, rewriter):
        sql = "SELECT t.first_name FROM (SELECT first_name FROM crm_prospects) t"

        assert rewriter.rewrite(sql) == (
            "SELECT t.first_name FROM (SELECT first_name FROM crm_prospects WHERE organization_id = $1) t LIMIT 50"
        )

    @pytest.mark.parametrize("sql", [
        "SELECT p.first_name FROM crm_prospects p JOIN users u ON u.id = p.assigned_to",
        "SELECT p.first_name FROM crm_prospects p, users u WHERE u.id = p.assigned_to",
        "SELECT (SELECT COUNT(*) FROM crm_events) AS total FROM users",
        "SELECT * FROM crm_prospects WHERE id IN (SELECT prospect_id FROM crm_events WHERE type = 'meeting')",
    ])
    def test_multi_table_rewrite_is_idempotent(self, rewriter, sql):
        once = rewriter.rewrite(sql)

        assert rewriter.rewrite(once) == once
        assert rewriter.has_tenant_filter(once)

    def test_set_operation_left_for_validator(self, rewriter):
        sql = "SELECT email FROM users UNION ALL SELECT email FROM users WHERE organization_id = $1"

        assert rewriter.rewrite(sql) == f"{sql} LIMIT 50"
        assert not rewriter.has_tenant_filter(sql)

    def test_query_without_from_unchanged_but_bounded(self, rewriter):

        assert rewriter.rewrite("SELECT 1") == "SELECT 1 LIMIT 50"

    def test_existing_limit_kept(self, rewriter):
        assert rewriter.ensure_limit("SELECT * FROM t LIMIT 500") == "SELECT * FROM t LIMIT 500"


class TestQueryValidator:
    """Test cases for the default read-only policy."""

    def test_valid_query(self, validator):
        outcome = validator.validate(
            "SELECT * FROM crm_prospects WHERE organization_id = $1 AND (qualification = 'chaud') LIMIT 50"
        )

        assert outcome.valid
        assert outcome.reason is None
        assert [step.rule for step in outcome.steps] == [rule.kind for rule in validator.policy]
        assert all(step.passed for step in outcome.steps)

    def test_non_select_rejected_first(self, validator):
        outcome = validator.validate("DELETE FROM crm_prospects WHERE organization_id = $1")

        assert not outcome.valid
        assert outcome.reason == "Seules les requetes SELECT sont autorisees"
        assert len(outcome.steps) == 1

    def test_statement_chaining_rejected(self, validator):
        outcome = validator.validate(
            "SELECT * FROM crm_prospects WHERE organization_id = $1 LIMIT 5; DROP TABLE users"
        )

        assert outcome.reason == "Une seule instruction SQL est autorisee"
        assert outcome.steps[-1].rule == PolicyRuleKind.DENY_STATEMENT_CHAINING

    @pytest.mark.parametrize("sql, keyword", [
        ("SELECT * FROM crm_prospects WHERE organization_id = $1 FOR UPDATE LIMIT 5", "UPDATE"),
        ("SELECT * FROM crm_prospects WHERE organization_id = $1 AND notes = 'delete me' LIMIT 5", "DELETE"),
    ])
    def test_forbidden_keywords(self, validator, sql, keyword):
        outcome = validator.validate(sql)

        assert not outcome.valid
        assert outcome.reason == f"Operation non autorisee: {keyword}"

    def test_keyword_inside_identifier_allowed(self, validator):
        outcome = validator.validate(
            "SELECT created_at, updated_at FROM crm_prospects WHERE organization_id = $1 "
            "ORDER BY updated_at DESC LIMIT 5"
        )
        assert outcome.valid

    def test_tenant_filter_required(self, validator):
        outcome = validator.validate("SELECT * FROM crm_prospects LIMIT 5")
        assert outcome.reason == "Le filtre organization_id est requis pour la table crm_prospects"

    def test_unknown_table_rejected(self, validator):
        outcome = validator.validate("SELECT * FROM secrets WHERE organization_id = $1 LIMIT 5")
        assert outcome.reason == "Table non autorisee: secrets"

    @pytest.mark.parametrize("sql, keyword", [
        (
            "SELECT email FROM users UNION ALL SELECT email FROM users WHERE organization_id = $1 LIMIT 10",
            "UNION",
        ),
        (
            "SELECT id FROM crm_prospects WHERE organization_id = $1 UNION SELECT id FROM users LIMIT 5",
            "UNION",
        ),
        (
            "SELECT id FROM crm_prospects WHERE organization_id = $1 "
            "AND id IN (SELECT prospect_id FROM crm_events INTERSECT SELECT prospect_id FROM crm_activities) "
            "LIMIT 5",
            "INTERSECT",
        ),
        ("SELECT id FROM users EXCEPT SELECT id FROM users WHERE organization_id = $1 LIMIT 5", "EXCEPT"),
    ])
    def test_set_operations_rejected(self, validator, sql, keyword):
        outcome = validator.validate(sql)

        assert not outcome.valid
        assert outcome.reason == f"Operation ensembliste non autorisee: {keyword}"
        assert outcome.steps[-1].rule == PolicyRuleKind.DENY_SET_OPERATIONS

    def test_set_operation_word_in_literal_allowed(self, validator):
        outcome = validator.validate(
            "SELECT * FROM crm_prospects WHERE organization_id = $1 AND notes = 'union des familles' LIMIT 5"
        )
        assert outcome.valid

    def test_unscoped_table_in_comma_list_rejected(self, validator):
        outcome = validator.validate(
            "SELECT p.first_name, u.full_name FROM crm_prospects p, users u WHERE p.organization_id = $1 LIMIT 10"
        )
        assert outcome.reason == "Le filtre organization_id est requis pour la table users"

    def test_unscoped_scalar_subquery_rejected(self, validator):
        outcome = validator.validate(
            "SELECT (SELECT COUNT(*) FROM crm_prospects) AS total FROM users WHERE organization_id = $1 LIMIT 1"
        )
        assert outcome.reason == "Le filtre organization_id est requis pour la table crm_prospects"

    def test_unqualified_filter_does_not_scope_joined_tables(self, validator):
        outcome = validator.validate(
            "SELECT p.first_name FROM crm_prospects p JOIN users u ON u.id = p.assigned_to "
            "WHERE organization_id = $1 LIMIT 5"
        )
        assert outcome.reason == "Le filtre organization_id est requis pour la table crm_prospects"

    def test_full_join_condition_does_not_scope(self, validator):
        outcome = validator.validate(
            "SELECT p.first_name FROM crm_prospects p FULL JOIN users u "
            "ON u.organization_id = $1 AND u.id = p.assigned_to WHERE p.organization_id = $1 LIMIT 5"
        )
        assert outcome.reason == "Le filtre organization_id est requis pour la table users"

    def test_table_after_comma_checked_against_allowlist(self, rewriter, validator):
        sql = rewriter.rewrite("SELECT p.first_name, o.name FROM crm_prospects p, organizations o LIMIT 10")

        assert validator.validate(sql).reason == "Table non autorisee: organizations"


    def test_unknown_table_in_subquery_rejected(self, validator):
        outcome = validator.validate(
            "SELECT * FROM crm_prospects WHERE organization_id = $1 "
            "AND id IN (SELECT prospect_id FROM auth_sessions WHERE organization_id = $1) LIMIT 5"
        )
        assert outcome.reason == "Table non autorisee: auth_sessions"

    def test_from_required(self, validator):
        outcome = validator.validate("SELECT $1 AS org LIMIT 1")
        assert outcome.reason == "La requete doit contenir une clause FROM"

    def test_limit_required(self, validator):
        outcome = validator.validate("SELECT * FROM crm_prospects WHERE organization_id = $1")
        assert outcome.reason == "Une clause LIMIT est requise (maximum 50)"

    def test_limit_too_high(self, validator):
        outcome = validator.validate("SELECT * FROM crm_prospects WHERE organization_id = $1 LIMIT 500")
        assert outcome.reason == "LIMIT trop eleve: 500 (maximum 50)"

    @pytest.mark.parametrize("sql", [
        "SELECT * FROM crm_prospects WHERE organization_id = $1 LIMIT 5 -- AND qualification = 'chaud'",
        "SELECT * /* hidden */ FROM crm_prospects WHERE organization_id = $1 LIMIT 5",
        "SELECT * FROM crm_prospects WHERE organization_id = $1 AND id = 0x1f LIMIT 5",
        "SELECT * FROM crm_prospects WHERE organization_id = $1 AND (email = '' OR '1'='1') LIMIT 5",
    ])
    def test_suspicious_patterns(self, validator, sql):
        outcome = validator.validate(sql)

        assert not outcome.valid
        assert outcome.reason == "Pattern SQL suspect detecte"

    def test_warn_mode_lets_unknown_tables_through(self):
        config = AssistantConfig(table_allowlist_mode=TableAllowlistMode.WARN)
        validator = QueryValidator(default_policy(ALLOWED_TABLES, config))

        outcome = validator.validate("SELECT * FROM secrets WHERE organization_id = $1 LIMIT 5")

        assert outcome.valid
        tables_step = next(step for step in outcome.steps if step.rule == PolicyRuleKind.ALLOWED_TABLES)
        assert tables_step.passed
        assert tables_step.message == "Tables hors catalogue: secrets"

    def test_custom_policy(self):
        validator = QueryValidator([PolicyRule(kind=PolicyRuleKind.MAX_LIMIT, max_limit=10)])

        assert validator.validate("SELECT * FROM t LIMIT 10").valid
        assert validator.validate("SELECT * FROM t LIMIT 20").reason == "LIMIT trop eleve: 20 (maximum 10)"


class TestRewriteThenValidate:
    """The validator always sees rewritten SQL."""

    @pytest.mark.parametrize("sql", [
        "SELECT first_name AS prenom, last_name AS nom FROM crm_prospects WHERE LOWER(qualification) = 'chaud'",
        "SELECT * FROM crm_prospects WHERE assigned_to IS NULL ORDER BY patrimoine_estime DESC",
        "SELECT COUNT(*) AS total_rdv FROM crm_events WHERE type = 'meeting'",
        "select title, due_date from crm_events where status = 'pending' order by due_date asc limit 20;",
        "SELECT p.first_name, u.full_name FROM crm_prospects p LEFT JOIN users u ON u.id = p.assigned_to",
        "SELECT p.first_name FROM crm_prospects p, crm_events e WHERE e.prospect_id = p.id",
        "SELECT (SELECT COUNT(*) FROM crm_events) AS total_rdv FROM users",
        "SELECT * FROM crm_prospects WHERE id IN (SELECT prospect_id FROM crm_activities)",
        "SELECT t.first_name FROM (SELECT first_name FROM crm_prospects) t",
    ])
    def test_unscoped_generator_output_becomes_valid(self, rewriter, validator, sql):
        assert validator.validate(rewriter.rewrite(sql)).valid
