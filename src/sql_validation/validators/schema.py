"""
Schema Compliance Validator
===========================

Validates that referenced tables, columns and joins exist in the schema and
that the query carries the filters its tables require.
"""

import re
from typing import Mapping, Optional

from sql_validation.models import (
    ColumnValidationResult,
    ContextValidationResult,
    JoinValidationResult,
    SchemaComplianceResult,
    Severity,
    StageName,
    TableValidationResult,
    ValidationIssue,
)
from sql_validation.schema import TableInfo
from sql_validation.sql_elements import JoinClause, strip_comments
from sql_validation.validators.base import ValidationContext, Validator, clamp
from sql_validation.validators.resolution import (
    Resolution,
    ScopeView,
    iter_scopes,
    resolve_column,
)

_EQUALITY = re.compile(r"\b([A-Za-z_]\w*)\.([A-Za-z_]\w*)\s*=\s*([A-Za-z_]\w*)\.([A-Za-z_]\w*)\b")
_LITERAL_COMPARISON = re.compile(
    r"(?<![\w.])(?:([A-Za-z_]\w*)\.)?([A-Za-z_]\w*)\s*(?:=|<>|!=|<=|>=|<|>)\s*N?'([^']*)'"
)
_NUMBER = re.compile(r"^\s*[-+]?\d+(?:\.\d+)?\s*$")

# (left table, left column, right table, right column)
JoinPair = tuple[Optional[str], str, Optional[str], str]


class SchemaComplianceValidator(Validator):
    """Validates tables, columns, joins and context against the schema snapshot."""

    @property
    def name(self) -> StageName:
        return StageName.SCHEMA

    def validate(self, sql: str, context: ValidationContext) -> SchemaComplianceResult:
        """
        Check the SQL against the resolved schema snapshot.

        Unknown tables and columns are Critical (fixable). The compliance
        score is the mean of the table, column, join and context sub-scores.
        """
        snapshot = context.schema_snapshot
        scopes = list(iter_scopes(context.elements))
        issues: list[ValidationIssue] = []

        tables = self._validate_tables(context, issues)
        columns = self._validate_columns(sql, scopes, snapshot, issues)
        joins = self._validate_joins(scopes, snapshot, issues)
        ctx = self._validate_context(scopes, snapshot, issues)

        compliance = clamp((tables.score + columns.score + joins.score + ctx.score) / 4)
        return SchemaComplianceResult(
            is_valid=compliance >= context.threshold(self.name)
            and not any(issue.is_blocking for issue in issues),
            issues=issues,
            compliance_score=compliance,
            table_validation=tables,
            column_validation=columns,
            join_validation=joins,
            context_validation=ctx,
        )

    def _validate_tables(
        self, context: ValidationContext, issues: list[ValidationIssue]
    ) -> TableValidationResult:
        result = TableValidationResult()
        for table in context.elements.all_tables():
            if table.key in context.schema_snapshot:
                result.valid_tables.append(table.name)
            else:
                result.invalid_tables.append(table.name)
                issues.append(
                    ValidationIssue(
                        category="schema.table",
                        message=f"Unknown table: '{table.name}'",
                        severity=Severity.CRITICAL,
                    )
                )
        total = len(result.valid_tables) + len(result.invalid_tables)
        result.score = len(result.valid_tables) / total if total else 1.0
        result.is_valid = not result.invalid_tables
        return result

    def _validate_columns(
        self,
        sql: str,
        scopes: list[ScopeView],
        snapshot: Mapping[str, TableInfo],
        issues: list[ValidationIssue],
    ) -> ColumnValidationResult:
        result = ColumnValidationResult()
        for view in scopes:
            for ref in view.elements.columns:
                status, info = resolve_column(view, ref, snapshot)
                if status is Resolution.FOUND:
                    if ref.label not in result.valid_columns:
                        result.valid_columns.append(ref.label)
                elif status is Resolution.MISSING and ref.label not in result.invalid_columns:
                    result.invalid_columns.append(ref.label)
                    where = f" in table '{info.name}'" if info is not None else ""
                    issues.append(
                        ValidationIssue(
                            category="schema.column",
                            message=f"Unknown column: '{ref.label}'{where}",
                            severity=Severity.CRITICAL,
                        )
                    )

        aliases = {}
        for view in scopes:
            aliases.update(view.aliases)
        table_keys = list(dict.fromkeys(key for view in scopes for key in view.table_keys))
        for qualifier, column, literal in _LITERAL_COMPARISON.findall(strip_comments(sql)):
            info = self._column_owner(qualifier, column, aliases, table_keys, snapshot)
            if info is None or not info.is_numeric(column) or _NUMBER.match(literal):
                continue
            label = f"{qualifier}.{column}" if qualifier else column
            mismatch = f"{label} ({info.column_type(column)}) compared with '{literal}'"
            result.type_mismatches.append(mismatch)
            issues.append(
                ValidationIssue(
                    category="schema.type",
                    message=f"Type mismatch: numeric column {mismatch}",
                    severity=Severity.ERROR,
                )
            )

        total = len(result.valid_columns) + len(result.invalid_columns)
        base = len(result.valid_columns) / total if total else 1.0
        result.score = clamp(base - 0.25 * len(result.type_mismatches))
        result.is_valid = not result.invalid_columns and not result.type_mismatches
        return result

    @staticmethod
    def _column_owner(
        qualifier: str,
        column: str,
        aliases: Mapping[str, str],
        table_keys: list[str],
        snapshot: Mapping[str, TableInfo],
    ) -> Optional[TableInfo]:
        if qualifier:
            return snapshot.get(aliases.get(qualifier.lower(), ""))
        for key in table_keys:
            info = snapshot.get(key)
            if info is not None and info.has_column(column):
                return info
        return None

    def _validate_joins(
        self,
        scopes: list[ScopeView],
        snapshot: Mapping[str, TableInfo],
        issues: list[ValidationIssue],
    ) -> JoinValidationResult:
        result = JoinValidationResult()
        scores = []
        for view in scopes:
            for join in view.elements.joins:
                score, problem, severity = self._score_join(view, join, snapshot)
                scores.append(score)
                if problem is None:
                    result.valid_joins.append(join.label)
                    continue
                if severity is Severity.CRITICAL:
                    result.invalid_joins.append(join.label)
                else:
                    result.valid_joins.append(join.label)
                issues.append(
                    ValidationIssue(
                        category="schema.join",
                        message=f"{join.label}: {problem}",
                        severity=severity,
                    )
                )
        result.score = sum(scores) / len(scores) if scores else 1.0
        result.is_valid = not result.invalid_joins
        return result

    def _score_join(
        self,
        view: ScopeView,
        join: JoinClause,
        snapshot: Mapping[str, TableInfo],
    ) -> tuple[float, Optional[str], Severity]:
        if join.join_type.startswith(("CROSS", "NATURAL")):
            return 0.5, "join without an explicit condition", Severity.WARNING
        if join.using:
            return 1.0, None, Severity.INFO

        if join.join_type == "IMPLICIT":
            where = view.elements.where_clause or ""
            pairs = [
                pair
                for pair in self._equalities(where, view)
                if join.table in (pair[0], pair[2]) and pair[0] != pair[2]
            ]
            if not pairs:
                return 0.0, "missing join condition", Severity.CRITICAL
        else:
            if not join.condition:
                return 0.0, "missing join condition", Severity.CRITICAL
            pairs = self._equalities(join.condition, view)
            if not pairs:
                return 0.0, "join condition compares no columns", Severity.CRITICAL

        resolvable = [p for p in pairs if p[0] in snapshot and p[2] in snapshot]
        if any(self._backed_by_relationship(p, snapshot) for p in resolvable):
            return 1.0, None, Severity.INFO
        if resolvable:
            return 0.5, "join columns are not backed by a known relationship", Severity.WARNING
        return 0.75, None, Severity.INFO

    @staticmethod
    def _equalities(text: str, view: ScopeView) -> list[JoinPair]:
        pairs = []
        for q1, c1, q2, c2 in _EQUALITY.findall(text):
            pairs.append(
                (view.aliases.get(q1.lower()), c1.lower(), view.aliases.get(q2.lower()), c2.lower())
            )
        return pairs

    @staticmethod
    def _backed_by_relationship(pair: JoinPair, snapshot: Mapping[str, TableInfo]) -> bool:
        left_table, left_col, right_table, right_col = pair
        for table, col, other, other_col in (
            (left_table, left_col, right_table, right_col),
            (right_table, right_col, left_table, left_col),
        ):
            for rel in snapshot[table].relationships:
                if rel.column == col and rel.ref_table == other and rel.ref_column == other_col:
                    return True
        return False

    def _validate_context(
        self,
        scopes: list[ScopeView],
        snapshot: Mapping[str, TableInfo],
        issues: list[ValidationIssue],
    ) -> ContextValidationResult:
        result = ContextValidationResult()
        problems = 0
        seen = set()
        for view in scopes:
            where = view.elements.where_clause or ""
            for table in view.elements.tables:
                info = snapshot.get(table.key)
                if info is None or table.key in seen:
                    continue
                seen.add(table.key)
                for column in info.required_filters:
                    if not re.search(rf"\b{re.escape(column)}\b", where, re.IGNORECASE):
                        problems += 1
                        result.missing_filters.append(f"{info.name}.{column}")
                        issues.append(
                            ValidationIssue(
                                category="schema.context",
                                message=f"Missing required filter on {info.name}.{column}",
                                severity=Severity.WARNING,
                            )
                        )
                if info.large and not view.elements.has_where:
                    problems += 1
                    issues.append(
                        ValidationIssue(
                            category="schema.context",
                            message=f"Large table '{info.name}' queried without a WHERE clause",
                            severity=Severity.WARNING,
                        )
                    )
        result.score = clamp(1.0 - 0.25 * problems)
        result.is_valid = problems == 0
        return result
