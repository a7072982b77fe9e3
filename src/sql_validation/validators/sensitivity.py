"""
PII Detection
=============

Personally Identifiable Information detection for literal values in SQL.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Pattern

_STRING_VALUE = re.compile(r"N?'((?:[^']|'')*)'")


class PIIType(str, Enum):
    """Types of PII that can be detected."""

    EMAIL = "email"
    PHONE = "phone"
    SSN = "ssn"
    CREDIT_CARD = "credit_card"
    IP_ADDRESS = "ip_address"


@dataclass
class PIIMatch:
    """A detected PII match."""

    pii_type: PIIType
    value: str
    confidence: float


class PIIDetector:
    """
    Detects PII in the string literals of a query using pattern matching.

    Only literal values are scanned: identifiers and numbers used as filters
    (ids, amounts) would otherwise be mistaken for phone or card numbers.
    """

    PATTERNS: dict[PIIType, tuple[Pattern, float]] = {
        PIIType.EMAIL: (
            re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
            0.95,
        ),
        PIIType.PHONE: (
            re.compile(r"\b(?:\+?1[-.\s]?)?\(?[0-9]{3}\)?[-.\s][0-9]{3}[-.\s][0-9]{4}\b"),
            0.85,
        ),
        PIIType.SSN: (
            re.compile(r"\b[0-9]{3}-[0-9]{2}-[0-9]{4}\b"),
            0.90,
        ),
        PIIType.CREDIT_CARD: (
            re.compile(
                r"\b(?:4[0-9]{12}(?:[0-9]{3})?|5[1-5][0-9]{14}|3[47][0-9]{13}"
                r"|6(?:011|5[0-9]{2})[0-9]{12})\b"
            ),
            0.95,
        ),
        PIIType.IP_ADDRESS: (
            re.compile(
                r"\b(?:(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}"
                r"(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\b"
            ),
            0.80,
        ),
    }

    def __init__(self, min_confidence: float = 0.8):
        """
        Initialize PII detector.

        Args:
            min_confidence: Minimum confidence threshold for matches
        """
        self.min_confidence = min_confidence

    def detect(self, sql: str) -> list[PIIMatch]:
        """
        Detect PII in the string literals of ``sql``.

        Args:
            sql: SQL query to scan

        Returns:
            List of PII matches found
        """
        matches = []
        for literal in _STRING_VALUE.findall(sql):
            for pii_type, (pattern, confidence) in self.PATTERNS.items():
                if confidence < self.min_confidence:
                    continue
                for match in pattern.finditer(literal):
                    matches.append(
                        PIIMatch(pii_type=pii_type, value=match.group(), confidence=confidence)
                    )
        return matches

    @staticmethod
    def redact(value: str, pii_type: PIIType) -> str:
        """Render a detected value safely for messages and logs."""
        if pii_type == PIIType.EMAIL and "@" in value:
            local, domain = value.split("@", 1)
            return f"{local[:1]}***@{domain}"
        return f"[{pii_type.value.upper()}_REDACTED]"
