"""
Business Logic Validator
========================

Validates access rights, sensitive data exposure and aggregation correctness.
"""

import re
from typing import Mapping

from sql_validation.models import (
    AccessValidationResult,
    AggregationValidationResult,
    BusinessLogicValidationResult,
    SensitivityValidationResult,
    Severity,
    StageName,
    ValidationIssue,
)
from sql_validation.schema import TableInfo
from sql_validation.sql_elements import AGGREGATE_FUNCTIONS, ColumnRef, SelectItem
from sql_validation.validators.base import ValidationContext, Validator, clamp
from sql_validation.validators.resolution import (
    Resolution,
    ScopeView,
    iter_scopes,
    resolve_column,
)
from sql_validation.validators.sensitivity import PIIDetector

MASKING_FUNCTIONS = {
    "mask",
    "hash",
    "hashbytes",
    "sha1",
    "sha2",
    "sha256",
    "md5",
    "left",
    "right",
    "substring",
    "substr",
    "stuff",
}

# Aggregates that do not return an individual row's value
SAFE_AGGREGATES = {"count", "sum", "avg", "stdev", "stddev", "variance"}

_FUNCTION_CALL = re.compile(r"\b([A-Za-z_]\w*)\s*\(")
_BARE_COLUMN = re.compile(r"^(?:([A-Za-z_]\w*)\.)?([A-Za-z_]\w*)$")


def _is_masked(item: SelectItem) -> bool:
    functions = {name.lower() for name in _FUNCTION_CALL.findall(item.expression)}
    if functions & MASKING_FUNCTIONS:
        return True
    aggregates = functions & AGGREGATE_FUNCTIONS
    return item.is_aggregate and aggregates <= SAFE_AGGREGATES


class BusinessLogicValidator(Validator):
    """
    Validates the query against business policy.

    Access and sensitivity findings carry compliance and leakage risk and are
    weighted higher than aggregation findings (see ``BusinessLogicWeights``).
    """

    def __init__(self, pii_detector: PIIDetector | None = None):
        self.pii_detector = pii_detector or PIIDetector()

    @property
    def name(self) -> StageName:
        return StageName.BUSINESS_LOGIC

    def validate(self, sql: str, context: ValidationContext) -> BusinessLogicValidationResult:
        """
        Validate access, sensitivity and aggregation rules.

        Args:
            sql: SQL query to validate
            context: Validation context carrying the user and schema snapshot

        Returns:
            BusinessLogicValidationResult with the weighted business logic score
        """
        scopes = list(iter_scopes(context.elements))
        issues: list[ValidationIssue] = []

        access = self._validate_access(context, issues)
        sensitivity = self._validate_sensitivity(sql, context, scopes[0], issues)
        aggregation = self._validate_aggregation(scopes, context.schema_snapshot, issues)

        weights = context.config.business_logic_weights
        total_weight = weights.access + weights.sensitivity + weights.aggregation
        score = 1.0
        if total_weight:
            weighted = (
                weights.access * access.score
                + weights.sensitivity * sensitivity.score
                + weights.aggregation * aggregation.score
            )
            score = clamp(weighted / total_weight)

        return BusinessLogicValidationResult(
            is_valid=score >= context.threshold(self.name)
            and not any(issue.is_blocking for issue in issues),
            issues=issues,
            business_logic_score=score,
            rule_violations=[issue.message for issue in issues],
            access_validation=access,
            sensitivity_validation=sensitivity,
            aggregation_validation=aggregation,
        )

    def _validate_access(
        self, context: ValidationContext, issues: list[ValidationIssue]
    ) -> AccessValidationResult:
        roles = context.business_schema.access_policy.roles_for(context.user_id)
        result = AccessValidationResult(roles=sorted(roles))
        tables = [
            context.schema_snapshot[t.key]
            for t in context.elements.all_tables()
            if t.key in context.schema_snapshot
        ]
        for info in tables:
            if info.allowed_roles is not None and not (roles & info.allowed_roles):
                result.denied_tables.append(info.name)
                issues.append(
                    ValidationIssue(
                        category="business_logic.access",
                        message=(
                            f"Access denied to table '{info.name}' "
                            f"(requires one of: {', '.join(sorted(info.allowed_roles))})"
                        ),
                        severity=Severity.CRITICAL,
                    )
                )
        result.score = (len(tables) - len(result.denied_tables)) / len(tables) if tables else 1.0
        result.is_valid = not result.denied_tables
        return result

    def _validate_sensitivity(
        self,
        sql: str,
        context: ValidationContext,
        top: ScopeView,
        issues: list[ValidationIssue],
    ) -> SensitivityValidationResult:
        result = SensitivityValidationResult()
        snapshot = context.schema_snapshot
        policy = context.business_schema.access_policy

        if not policy.can_view_sensitive(context.user_id):
            for item in top.elements.select_items:
                if item.is_star:
                    for info in self._star_tables(item, top, snapshot):
                        for column in sorted(info.sensitive_columns):
                            self._expose(result, issues, f"{info.name}.{column}", "SELECT *")
                    continue
                if _is_masked(item):
                    continue
                for ref in item.columns:
                    status, info = resolve_column(top, ref, snapshot)
                    if status is Resolution.FOUND and ref.name in info.sensitive_columns:
                        self._expose(result, issues, f"{info.name}.{ref.name}", None)

        for match in self.pii_detector.detect(sql):
            shown = self.pii_detector.redact(match.value, match.pii_type)
            result.pii_values.append(shown)
            issues.append(
                ValidationIssue(
                    category="business_logic.pii",
                    message=f"Query contains a {match.pii_type.value} literal: {shown}",
                    severity=Severity.WARNING,
                )
            )

        result.score = clamp(1.0 - 0.5 * len(result.exposed_columns) - 0.1 * len(result.pii_values))
        result.is_valid = not result.exposed_columns
        return result

    @staticmethod
    def _star_tables(item: SelectItem, view: ScopeView, snapshot: Mapping[str, TableInfo]):
        if item.expression.strip() == "*":
            keys = [t.key for t in view.elements.tables]
        else:
            qualifier = item.expression.strip()[:-2].lower()
            keys = [view.aliases.get(qualifier, "")]
        return [snapshot[k] for k in dict.fromkeys(keys) if k in snapshot]

    @staticmethod
    def _expose(
        result: SensitivityValidationResult,
        issues: list[ValidationIssue],
        column: str,
        via: str | None,
    ) -> None:
        if column in result.exposed_columns:
            return
        result.exposed_columns.append(column)
        suffix = f" via {via}" if via else ""
        issues.append(
            ValidationIssue(
                category="business_logic.sensitivity",
                message=f"Sensitive column '{column}' exposed without masking{suffix}",
                severity=Severity.ERROR,
            )
        )

    def _validate_aggregation(
        self,
        scopes: list[ScopeView],
        snapshot: Mapping[str, TableInfo],
        issues: list[ValidationIssue],
    ) -> AggregationValidationResult:
        result = AggregationValidationResult()
        errors = 0
        warnings = 0

        def report(message: str, severity: Severity) -> None:
            result.problems.append(message)
            issues.append(
                ValidationIssue(
                    category="business_logic.aggregation", message=message, severity=severity
                )
            )

        for view in scopes:
            scope = view.elements
            select_aggregates = [a for a in scope.ungrouped_aggregates if a.clause == "SELECT"]
            having_aggregates = [a for a in scope.ungrouped_aggregates if a.clause == "HAVING"]

            if select_aggregates and not scope.has_group_by:
                for item in scope.select_items:
                    if not item.is_aggregate and item.columns:
                        errors += 1
                        report(
                            f"Column '{item.expression}' must be aggregated or listed in GROUP BY",
                            Severity.ERROR,
                        )

            if scope.has_group_by:
                for item in scope.select_items:
                    if item.is_star:
                        errors += 1
                        report("SELECT * cannot be combined with GROUP BY", Severity.ERROR)
                    elif not item.is_aggregate and not self._grouped(item, scope.group_by):
                        errors += 1
                        report(
                            f"Column '{item.expression}' is not in the GROUP BY clause",
                            Severity.ERROR,
                        )
                if not select_aggregates and not having_aggregates:
                    warnings += 1
                    report("GROUP BY without aggregate functions", Severity.WARNING)

            if scope.having_clause is not None and not scope.has_group_by:
                errors += 1
                report("HAVING used without GROUP BY", Severity.ERROR)

            for aggregate in scope.aggregates:
                if aggregate.clause == "WHERE":
                    errors += 1
                    report(
                        f"Aggregate {aggregate.function} used in WHERE (use HAVING)",
                        Severity.ERROR,
                    )
                if aggregate.function in ("SUM", "AVG"):
                    match = _BARE_COLUMN.match(aggregate.argument)
                    if match is None:
                        continue
                    qualifier, column = match.groups()
                    ref = ColumnRef(
                        name=column.lower(),
                        qualifier=qualifier.lower() if qualifier else None,
                        clause=aggregate.clause,
                    )
                    status, info = resolve_column(view, ref, snapshot)
                    if status is Resolution.FOUND and not info.is_numeric(ref.name):
                        errors += 1
                        report(
                            f"{aggregate.function} applied to non-numeric column "
                            f"'{ref.label}' ({info.column_type(ref.name)})",
                            Severity.ERROR,
                        )

        result.score = clamp(1.0 - 0.3 * errors - 0.1 * warnings)
        result.is_valid = errors == 0
        return result

    @staticmethod
    def _grouped(item: SelectItem, group_by: list[str]) -> bool:
        if not item.columns:
            return True
        expression = " ".join(item.expression.lower().split())
        if expression in group_by or (item.alias and item.alias.lower() in group_by):
            return True
        for ref in item.columns:
            if ref.label not in group_by and ref.name not in group_by and not any(
                entry.endswith(f".{ref.name}") for entry in group_by
            ):
                return False
        return True
