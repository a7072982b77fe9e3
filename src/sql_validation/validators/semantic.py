"""
Semantic Validator
==================

Validates that the SQL appears to match the user's intent.
"""

import re

from sql_validation.models import (
    BusinessTermValidationResult,
    SemanticValidationResult,
    Severity,
    StageName,
    ValidationIssue,
)
from sql_validation.validators.base import ValidationContext, Validator, clamp


def _mentions(text: str, phrase: str) -> bool:
    return re.search(rf"\b{re.escape(phrase)}(?:s|es)?\b", text) is not None


class SemanticValidator(Validator):
    """
    Validates that the SQL appears to match the user's intent.

    Intent is approximated with the business-term dictionary: every term the
    question mentions must show up as one of its SQL targets, every table the
    SQL reads must be implied by the question, and aggregation, ordering and
    limiting words must be reflected in the query.
    """

    AGGREGATION_KEYWORDS = ["total", "sum", "count", "average", "avg", "how many"]
    ORDER_KEYWORDS = [
        "highest",
        "lowest",
        "top",
        "bottom",
        "most",
        "least",
        "largest",
        "smallest",
    ]
    LIMIT_KEYWORDS = ["top", "first", "last", "only"]

    @property
    def name(self) -> StageName:
        return StageName.SEMANTIC

    def validate(self, sql: str, context: ValidationContext) -> SemanticValidationResult:
        """
        Verify SQL semantically matches the original query intent.

        Args:
            sql: SQL query to validate
            context: Validation context carrying the original question

        Returns:
            SemanticValidationResult with alignment and confidence scores
        """
        question = context.original_query.lower()
        sql_lower = " ".join(sql.lower().split())
        elements = context.elements
        schema = context.business_schema

        checks = 0
        satisfied = 0
        inconsistencies = []

        # Business terms mentioned in the question
        matched_terms = []
        missing_terms = []
        implied_targets = set()
        for term, targets in schema.business_terms.items():
            if not _mentions(question, term):
                continue
            checks += 1
            implied_targets.update(targets)
            if any(target in sql_lower for target in targets):
                satisfied += 1
                matched_terms.append(term)
            else:
                missing_terms.append(term)
                inconsistencies.append(
                    f"Question mentions '{term}' but the SQL references none of: "
                    f"{', '.join(targets)}"
                )

        # Tables the SQL reads must be implied by the question
        for table in elements.all_tables():
            checks += 1
            info = schema.table(table.key)
            implied = (
                table.key in implied_targets
                or _mentions(question, table.key.rstrip("s"))
                or (info is not None and any(info.has_column(t) for t in implied_targets))
            )
            if implied:
                satisfied += 1
            else:
                inconsistencies.append(
                    f"SQL reads table '{table.name}' which the question does not ask about"
                )

        # Intent signals
        scopes = list(elements.scopes())
        has_aggregate = any(scope.ungrouped_aggregates for scope in scopes)
        has_order = any(scope.has_order_by for scope in scopes)
        has_limit = any(scope.has_limit for scope in scopes)
        signals = [
            (self.AGGREGATION_KEYWORDS, has_aggregate, "aggregation", "no aggregate function"),
            (self.ORDER_KEYWORDS, has_order, "ordering", "no ORDER BY"),
            (self.LIMIT_KEYWORDS, has_limit, "limited results", "no LIMIT or TOP"),
        ]
        for keywords, present, intent, absence in signals:
            if not any(_mentions(question, kw) for kw in keywords):
                continue
            checks += 1
            if present:
                satisfied += 1
            else:
                inconsistencies.append(f"Question seems to request {intent} but SQL has {absence}")

        if checks:
            alignment = clamp(satisfied / checks)
            reason = f"{satisfied} of {checks} intent checks satisfied"
        else:
            alignment = 0.5
            reason = "No recognisable business terms or intent signals in the question"
            inconsistencies.append(reason)
        confidence = 0.5 + 0.5 * min(1.0, checks / 4)

        issues = [
            ValidationIssue(category="semantic", message=message, severity=Severity.WARNING)
            for message in inconsistencies
        ]
        return SemanticValidationResult(
            is_valid=alignment >= context.threshold(self.name),
            issues=issues,
            alignment_score=alignment,
            alignment_reason=reason,
            inconsistencies=inconsistencies,
            business_term_validation=BusinessTermValidationResult(
                is_valid=not missing_terms,
                matched_terms=matched_terms,
                missing_terms=missing_terms,
            ),
            confidence_score=confidence,
        )
