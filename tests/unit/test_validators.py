"""
Unit Tests for Validators
=========================

Tests for the security, semantic, schema compliance and business logic
validation stages.
"""

import pytest

from sql_validation.models import SecurityLevel, Severity, StageName, ValidationLevel
from sql_validation.validators import (
    BusinessLogicValidator,
    PIIDetector,
    PIIType,
    SchemaComplianceValidator,
    SecurityValidator,
    SemanticValidator,
)


def categories(result) -> set[str]:
    return {issue.category for issue in result.issues}


class TestSecurityValidator:
    """Tests for SecurityValidator."""

    def test_name(self, security_validator: SecurityValidator) -> None:
        assert security_validator.name is StageName.SECURITY

    def test_safe_select(self, security_validator: SecurityValidator, make_context) -> None:
        sql = "SELECT name, tier FROM customers WHERE tier = 'premium'"
        result = security_validator.validate(sql, make_context(sql))
        assert result.is_valid is True
        assert result.security_score == 1.0
        assert result.security_level is SecurityLevel.SAFE
        assert result.issues == []

    @pytest.mark.parametrize(
        "sql",
        [
            "DROP TABLE Users;",
            "DELETE FROM customers",
            "TRUNCATE TABLE orders",
            "GRANT SELECT ON customers TO public",
            "EXEC xp_cmdshell 'dir'",
        ],
    )
    def test_unfixable_critical(
        self, security_validator: SecurityValidator, make_context, sql: str
    ) -> None:
        result = security_validator.validate(sql, make_context(sql))
        assert result.is_valid is False
        assert result.security_score == 0.0
        assert result.security_level is SecurityLevel.BLOCKED
        assert any(i.is_critical and not i.fixable for i in result.issues)

    @pytest.mark.parametrize(
        "sql, category",
        [
            ("SELECT * FROM customers; SELECT * FROM orders", "security.stacked_statements"),
            ("SELECT * FROM customers -- hidden", "security.comment_sequence"),
            ("SELECT * FROM customers WHERE name = 'x' OR 1=1", "security.tautology"),
            ("SELECT * INTO backup FROM customers", "security.select_into"),
            ("SELECT * FROM INFORMATION_SCHEMA.TABLES", "security.system_catalog"),
        ],
    )
    def test_fixable_critical(
        self, security_validator: SecurityValidator, make_context, sql: str, category: str
    ) -> None:
        result = security_validator.validate(sql, make_context(sql))
        assert result.is_valid is False
        assert category in categories(result)
        assert not any(i.is_critical and not i.fixable for i in result.issues)

    @pytest.mark.parametrize(
        "sql",
        [
            "WITH c AS (SELECT id FROM customers) "
            "DELETE FROM customers WHERE id IN (SELECT id FROM c)",
            "WITH c AS (SELECT 1 AS x) UPDATE customers SET name = 'x'",
            "WITH c AS (SELECT id, name FROM customers) INSERT INTO archive SELECT * FROM c",
        ],
    )
    def test_write_behind_cte_is_blocked(
        self, security_validator: SecurityValidator, make_context, sql: str
    ) -> None:
        result = security_validator.validate(sql, make_context(sql))
        assert result.is_valid is False
        assert result.security_level is SecurityLevel.BLOCKED
        assert "security.destructive_statement" in categories(result)
        assert any(i.is_critical and not i.fixable for i in result.issues)

    @pytest.mark.parametrize(
        "sql",
        [
            "SELECT sp_region FROM customers",
            "SELECT name FROM customers WHERE xp_level > 2",
        ],
    )
    def test_procedure_prefixed_columns_pass(
        self, security_validator: SecurityValidator, make_context, sql: str
    ) -> None:
        result = security_validator.validate(sql, make_context(sql))
        assert result.is_valid is True
        assert "security.system_procedure" not in categories(result)

    @pytest.mark.parametrize(
        "sql",
        ["sp_configure 'show advanced options', 1", "SELECT xp_dirtree('tmp')"],
    )
    def test_procedure_calls_are_blocked(
        self, security_validator: SecurityValidator, make_context, sql: str
    ) -> None:
        result = security_validator.validate(sql, make_context(sql))
        assert "security.system_procedure" in categories(result)

    def test_keywords_inside_literals_are_ignored(
        self, security_validator: SecurityValidator, make_context
    ) -> None:
        sql = "SELECT name FROM customers WHERE name = 'DROP TABLE users'"
        result = security_validator.validate(sql, make_context(sql))
        assert result.is_valid is True

    def test_warning_lowers_score(
        self, security_validator: SecurityValidator, make_context
    ) -> None:
        sql = "SELECT name FROM customers UNION SELECT name FROM products"
        result = security_validator.validate(sql, make_context(sql))
        assert result.is_valid is True
        assert result.security_level is SecurityLevel.WARNING
        assert result.risk_score == 3
        assert result.security_score == pytest.approx(1 - 3 / 20)

    def test_recommendations(self, security_validator: SecurityValidator, make_context) -> None:
        sql = "SELECT * FROM sys.objects"
        result = security_validator.validate(sql, make_context(sql))
        assert "Avoid querying system tables" in result.recommendations


class TestSemanticValidator:
    """Tests for SemanticValidator."""

    def test_aligned_query(self, semantic_validator: SemanticValidator, make_context) -> None:
        sql = "SELECT * FROM tbl_Daily_actions WHERE Date = GETDATE()"
        context = make_context(sql, "Show me today's daily actions", ValidationLevel.STANDARD)
        result = semantic_validator.validate(sql, context)
        assert result.is_valid is True
        assert result.alignment_score == 1.0
        assert set(result.business_term_validation.matched_terms) == {"today", "daily action"}

    def test_missing_term(self, semantic_validator: SemanticValidator, make_context) -> None:
        sql = "SELECT name FROM customers"
        result = semantic_validator.validate(sql, make_context(sql, "Show customer revenue"))
        assert "revenue" in result.business_term_validation.missing_terms
        assert result.alignment_score < 1.0
        assert all(i.severity is Severity.WARNING for i in result.issues)

    def test_irrelevant_table(self, semantic_validator: SemanticValidator, make_context) -> None:
        sql = "SELECT name FROM products"
        result = semantic_validator.validate(sql, make_context(sql, "List every customer"))
        assert any("products" in message for message in result.inconsistencies)
        assert result.alignment_score == 0.0
        assert result.is_valid is False

    def test_aggregation_intent(self, semantic_validator: SemanticValidator, make_context) -> None:
        question = "What is the total order amount?"
        without = "SELECT amount FROM orders"
        with_sum = "SELECT SUM(amount) FROM orders"
        low = semantic_validator.validate(without, make_context(without, question))
        high = semantic_validator.validate(with_sum, make_context(with_sum, question))
        assert high.alignment_score == 1.0
        assert low.alignment_score < high.alignment_score
        assert any("aggregation" in message for message in low.inconsistencies)

    def test_no_signals_is_neutral(
        self, semantic_validator: SemanticValidator, make_context
    ) -> None:
        sql = "SELECT 1"
        result = semantic_validator.validate(sql, make_context(sql, "hello there"))
        assert result.alignment_score == 0.5
        assert result.confidence_score == 0.5


class TestSchemaComplianceValidator:
    """Tests for SchemaComplianceValidator."""

    def test_valid_join(self, schema_validator: SchemaComplianceValidator, make_context) -> None:
        sql = "SELECT c.name, o.amount FROM customers c JOIN orders o ON o.customer_id = c.id"
        result = schema_validator.validate(sql, make_context(sql))
        assert result.is_valid is True
        assert result.compliance_score == 1.0
        assert result.join_validation.valid_joins == ["JOIN orders"]

    def test_unknown_table(self, schema_validator: SchemaComplianceValidator, make_context) -> None:
        sql = "SELECT id FROM invoices"
        result = schema_validator.validate(sql, make_context(sql))
        assert result.is_valid is False
        assert result.table_validation.invalid_tables == ["invoices"]
        assert any(i.is_critical and i.fixable for i in result.issues)

    def test_unknown_column(self, schema_validator: SchemaComplianceValidator, make_context) -> None:
        sql = "SELECT nickname FROM customers"
        result = schema_validator.validate(sql, make_context(sql))
        assert result.is_valid is False
        assert result.column_validation.invalid_columns == ["nickname"]

    def test_missing_join_condition(
        self, schema_validator: SchemaComplianceValidator, make_context, missing_join_sql: str
    ) -> None:
        result = schema_validator.validate(missing_join_sql, make_context(missing_join_sql))
        assert result.is_valid is False
        assert result.join_validation.invalid_joins == ["IMPLICIT orders"]
        assert result.join_validation.score == 0.0
        assert result.compliance_score == pytest.approx(0.75)
        assert any("missing join condition" in i.message for i in result.issues)

    def test_implicit_join_linked_in_where(
        self, schema_validator: SchemaComplianceValidator, make_context
    ) -> None:
        sql = "SELECT c.name FROM customers c, orders o WHERE o.customer_id = c.id"
        result = schema_validator.validate(sql, make_context(sql))
        assert result.is_valid is True

    def test_unbacked_join_is_warning(
        self, schema_validator: SchemaComplianceValidator, make_context
    ) -> None:
        sql = "SELECT c.name FROM customers c JOIN products p ON p.id = c.id"
        result = schema_validator.validate(sql, make_context(sql))
        assert result.join_validation.score == 0.5
        assert any(i.severity is Severity.WARNING for i in result.issues)

    def test_type_mismatch(self, schema_validator: SchemaComplianceValidator, make_context) -> None:
        sql = "SELECT id FROM orders WHERE amount = 'lots'"
        result = schema_validator.validate(sql, make_context(sql))
        assert result.column_validation.type_mismatches
        assert any(i.category == "schema.type" for i in result.issues)
        assert result.is_valid is False

    def test_required_filter_and_large_table(
        self, schema_validator: SchemaComplianceValidator, make_context
    ) -> None:
        sql = "SELECT PlayerID FROM tbl_Daily_actions"
        result = schema_validator.validate(sql, make_context(sql))
        assert result.context_validation.missing_filters == ["tbl_Daily_actions.date"]
        assert result.context_validation.score == 0.5

    def test_subquery_columns_checked_against_own_scope(
        self, schema_validator: SchemaComplianceValidator, make_context
    ) -> None:
        sql = "SELECT name FROM customers WHERE id IN (SELECT customer_id FROM orders)"
        result = schema_validator.validate(sql, make_context(sql))
        assert result.column_validation.invalid_columns == []


class TestBusinessLogicValidator:
    """Tests for BusinessLogicValidator."""

    def test_clean_query(
        self, business_logic_validator: BusinessLogicValidator, make_context
    ) -> None:
        sql = "SELECT name, tier FROM customers"
        result = business_logic_validator.validate(sql, make_context(sql))
        assert result.is_valid is True
        assert result.business_logic_score == 1.0
        assert result.rule_violations == []

    def test_access_denied(
        self, business_logic_validator: BusinessLogicValidator, make_context
    ) -> None:
        sql = "SELECT name, department FROM employees"
        result = business_logic_validator.validate(sql, make_context(sql))
        assert result.is_valid is False
        assert result.access_validation.denied_tables == ["employees"]
        assert result.has_critical

    def test_access_granted_by_role(
        self, business_logic_validator: BusinessLogicValidator, make_context
    ) -> None:
        sql = "SELECT name, department FROM employees"
        result = business_logic_validator.validate(sql, make_context(sql, user_id="hr-manager"))
        assert result.access_validation.is_valid is True

    def test_sensitive_column_exposed(
        self, business_logic_validator: BusinessLogicValidator, make_context
    ) -> None:
        sql = "SELECT name, email FROM customers"
        result = business_logic_validator.validate(sql, make_context(sql))
        assert result.sensitivity_validation.exposed_columns == ["customers.email"]
        assert result.is_valid is False

    def test_select_star_exposes_sensitive_columns(
        self, business_logic_validator: BusinessLogicValidator, make_context
    ) -> None:
        sql = "SELECT * FROM customers"
        result = business_logic_validator.validate(sql, make_context(sql))
        assert any("via SELECT *" in v for v in result.rule_violations)

    def test_masked_or_aggregated_sensitive_column_is_allowed(
        self, business_logic_validator: BusinessLogicValidator, make_context
    ) -> None:
        sql = "SELECT COUNT(email), MD5(email) FROM customers"
        result = business_logic_validator.validate(sql, make_context(sql))
        assert result.sensitivity_validation.exposed_columns == []

    def test_privileged_user_may_read_sensitive_columns(
        self, business_logic_validator: BusinessLogicValidator, make_context
    ) -> None:
        sql = "SELECT name, email FROM customers"
        result = business_logic_validator.validate(sql, make_context(sql, user_id="admin"))
        assert result.sensitivity_validation.exposed_columns == []

    def test_pii_literal(
        self, business_logic_validator: BusinessLogicValidator, make_context
    ) -> None:
        sql = "SELECT id FROM customers WHERE email = 'jane.doe@example.com'"
        result = business_logic_validator.validate(sql, make_context(sql))
        assert result.sensitivity_validation.pii_values == ["j***@example.com"]

    def test_missing_group_by(
        self, business_logic_validator: BusinessLogicValidator, make_context
    ) -> None:
        sql = "SELECT customer_id, SUM(amount) FROM orders"
        result = business_logic_validator.validate(sql, make_context(sql))
        assert result.aggregation_validation.is_valid is False
        assert any("GROUP BY" in p for p in result.aggregation_validation.problems)

    def test_correct_group_by(
        self, business_logic_validator: BusinessLogicValidator, make_context
    ) -> None:
        sql = "SELECT customer_id, SUM(amount) FROM orders GROUP BY customer_id"
        result = business_logic_validator.validate(sql, make_context(sql))
        assert result.aggregation_validation.is_valid is True

    def test_sum_over_text_column(
        self, business_logic_validator: BusinessLogicValidator, make_context
    ) -> None:
        sql = "SELECT SUM(status) FROM orders"
        result = business_logic_validator.validate(sql, make_context(sql))
        assert any("non-numeric" in p for p in result.aggregation_validation.problems)

    def test_aggregate_in_where(
        self, business_logic_validator: BusinessLogicValidator, make_context
    ) -> None:
        sql = "SELECT customer_id FROM orders WHERE SUM(amount) > 10"
        result = business_logic_validator.validate(sql, make_context(sql))
        assert any("use HAVING" in p for p in result.aggregation_validation.problems)


class TestPIIDetector:
    """Tests for PII detection in literals."""

    def test_detects_email_and_ssn(self) -> None:
        matches = PIIDetector().detect("SELECT 1 WHERE a = 'x@y.com' AND b = '123-45-6789'")
        assert {m.pii_type for m in matches} == {PIIType.EMAIL, PIIType.SSN}

    def test_ignores_identifiers_and_numbers(self) -> None:
        assert PIIDetector().detect("SELECT * FROM orders WHERE id = 4111111111111111") == []

    def test_redact(self) -> None:
        assert PIIDetector.redact("123-45-6789", PIIType.SSN) == "[SSN_REDACTED]"
