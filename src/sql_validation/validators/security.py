"""
Security Validator
==================

Static, lexical safety checks: forbidden statements, injection patterns and
privilege misuse. A pure function of the SQL text.
"""

import re
from dataclasses import dataclass
from typing import Optional

from sql_validation.models import (
    SecurityLevel,
    SecurityValidationResult,
    Severity,
    StageName,
    ValidationIssue,
)
from sql_validation.sql_elements import mask_sql
from sql_validation.validators.base import ValidationContext, Validator, clamp


@dataclass(frozen=True)
class SecurityPattern:
    name: str
    pattern: re.Pattern
    description: str
    severity: Severity
    risk: int
    fixable: bool
    recommendation: Optional[str] = None
    # Match against the raw text instead of the literal/comment-masked text
    raw: bool = False


def _p(regex: str) -> re.Pattern:
    return re.compile(regex, re.IGNORECASE)


class SecurityValidator(Validator):
    """Detects destructive statements, injection patterns and privilege misuse."""

    PATTERNS = [
        SecurityPattern(
            "destructive_statement",
            _p(
                r"\b(?:DROP|TRUNCATE|DELETE|ALTER|CREATE|INSERT|UPDATE|MERGE|UPSERT)\b"
                r"|\bREPLACE\s+INTO\b"
            ),
            "Destructive or data-modifying statement detected",
            Severity.CRITICAL,
            10,
            fixable=False,
            recommendation="Only read-only SELECT statements are allowed",
        ),
        SecurityPattern(
            "privilege_escalation",
            _p(r"\b(?:GRANT|REVOKE|DENY)\b|\b(?:ALTER|CREATE|DROP)\s+(?:LOGIN|USER|ROLE)\b"),
            "Privilege management statement detected",
            Severity.CRITICAL,
            10,
            fixable=False,
            recommendation="Never manage permissions from generated SQL",
        ),
        SecurityPattern(
            "system_procedure",
            _p(r"\bEXEC(?:UTE)?\b|(?:^|;)\s*(?:\w+\.)*(?:sp|xp)_\w+|\b(?:sp|xp)_\w+\s*\("),
            "System or dynamic procedure execution detected",
            Severity.CRITICAL,
            8,
            fixable=False,
            recommendation="Avoid dynamic SQL and stored procedure calls",
        ),
        SecurityPattern(
            "file_operation",
            _p(
                r"\b(?:OPENROWSET|OPENDATASOURCE|OPENQUERY)\b|\bBULK\s+INSERT\b"
                r"|\bINTO\s+(?:OUT|DUMP)FILE\b|\bLOAD_FILE\s*\("
            ),
            "File system or remote data source access detected",
            Severity.CRITICAL,
            9,
            fixable=False,
            recommendation="Query only tables of the application database",
        ),
        SecurityPattern(
            "time_delay",
            _p(r"\bWAITFOR\s+DELAY\b|\b(?:PG_)?SLEEP\s*\(|\bBENCHMARK\s*\("),
            "Time-delay construct detected (blind injection)",
            Severity.CRITICAL,
            8,
            fixable=False,
        ),
        SecurityPattern(
            "stacked_statements",
            _p(r";\s*\S"),
            "Multiple statements in a single query",
            Severity.CRITICAL,
            7,
            fixable=True,
            recommendation="Submit exactly one statement per query",
        ),
        SecurityPattern(
            "comment_sequence",
            _p(r"--|/\*"),
            "SQL comment sequence detected (potential injection)",
            Severity.CRITICAL,
            5,
            fixable=True,
            recommendation="Remove comments from generated SQL",
            raw=True,
        ),
        SecurityPattern(
            "tautology",
            _p(r"\bOR\s+(\d+)\s*=\s*\1\b|'\s*OR\s*'|\bOR\s+'([^']*)'\s*=\s*'\2'"),
            "Always-true condition detected (injection pattern)",
            Severity.CRITICAL,
            7,
            fixable=True,
            recommendation="Use parameterized queries instead of string concatenation",
            raw=True,
        ),
        SecurityPattern(
            "select_into",
            _p(r"\bSELECT\b[^;]*\bINTO\s+(?!(?:OUT|DUMP)FILE)\w"),
            "SELECT INTO creates a new table",
            Severity.CRITICAL,
            6,
            fixable=True,
            recommendation="Only read-only SELECT statements are allowed",
        ),
        SecurityPattern(
            "system_catalog",
            _p(
                r"\b(?:INFORMATION_SCHEMA|sysobjects|syscolumns|sysusers|sqlite_master"
                r"|sqlite_schema|pg_catalog|pg_shadow)\b|\bsys\.\w+|\bmysql\.user\b"
            ),
            "System catalog access detected",
            Severity.CRITICAL,
            6,
            fixable=True,
            recommendation="Avoid querying system tables",
        ),
        SecurityPattern(
            "union_select",
            _p(r"\bUNION\b(?:\s+ALL)?\s+SELECT\b"),
            "UNION query combines result sets",
            Severity.WARNING,
            3,
            fixable=True,
        ),
        SecurityPattern(
            "hex_literal",
            _p(r"\b0x[0-9a-f]+\b"),
            "Hexadecimal literal detected (possible encoded payload)",
            Severity.WARNING,
            2,
            fixable=True,
        ),
        SecurityPattern(
            "server_metadata",
            _p(
                r"@@\w+|\b(?:DB_NAME|USER_NAME|SUSER_SNAME|SYSTEM_USER|SESSION_USER)\b"
                r"|\bVERSION\s*\(\s*\)"
            ),
            "Server metadata function detected",
            Severity.WARNING,
            3,
            fixable=True,
            recommendation="Avoid querying server or session metadata",
        ),
        SecurityPattern(
            "always_false",
            _p(r"\b(?:AND|WHERE)\s+1\s*=\s*0\b"),
            "Always-false condition detected",
            Severity.WARNING,
            2,
            fixable=True,
        ),
    ]

    READ_STATEMENTS = {"SELECT", "WITH"}

    @property
    def name(self) -> StageName:
        return StageName.SECURITY

    def validate(self, sql: str, context: ValidationContext) -> SecurityValidationResult:
        """
        Scan the SQL for dangerous constructs.

        Critical findings make the result invalid with a zero score; warnings
        accumulate risk which lowers the score towards the configured ceiling.
        """
        masked = mask_sql(sql)
        issues = []
        recommendations = []
        risk = 0
        matched = set()

        for rule in self.PATTERNS:
            if rule.pattern.search(sql if rule.raw else masked):
                matched.add(rule.name)
                risk += rule.risk
                issues.append(
                    ValidationIssue(
                        category=f"security.{rule.name}",
                        message=rule.description,
                        severity=rule.severity,
                        fixable=rule.fixable,
                    )
                )
                if rule.recommendation and rule.recommendation not in recommendations:
                    recommendations.append(rule.recommendation)

        statement = context.elements.statement_type
        if statement not in self.READ_STATEMENTS and "destructive_statement" not in matched:
            risk += 8
            issues.append(
                ValidationIssue(
                    category="security.non_select_statement",
                    message=f"Statement type '{statement or 'unknown'}' is not a query",
                    severity=Severity.CRITICAL,
                    fixable=True,
                )
            )

        has_critical = any(issue.is_critical for issue in issues)
        if has_critical:
            score = 0.0
            level = SecurityLevel.BLOCKED
        else:
            score = clamp(1.0 - risk / context.config.risk_ceiling)
            level = SecurityLevel.WARNING if issues else SecurityLevel.SAFE

        return SecurityValidationResult(
            is_valid=not has_critical and score >= context.threshold(self.name),
            issues=issues,
            risk_score=risk,
            security_level=level,
            security_score=score,
            recommendations=recommendations,
        )
