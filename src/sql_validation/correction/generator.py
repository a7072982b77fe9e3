"""
Correction Generators
=====================

Produce a corrected SQL candidate for a failing validation result.
"""

from abc import ABC, abstractmethod
from typing import Optional

from sql_validation.exceptions import ExternalServiceError
from sql_validation.llm.base import LLMInterface
from sql_validation.models import CorrectionStrategy, StageOutcome
from sql_validation.schema import BusinessSchema


class CorrectionGenerator(ABC):
    """External service that rewrites SQL to address validation failures."""

    @abstractmethod
    async def correct(
        self,
        original_sql: str,
        failing: Optional[StageOutcome],
        strategy: CorrectionStrategy,
        *,
        original_query: str,
    ) -> str:
        """
        Produce a corrected SQL candidate.

        Args:
            original_sql: The SQL that failed validation
            failing: Outcome of the stage the strategy addresses, if any
            strategy: Correction focus for this attempt
            original_query: The user's natural-language question

        Returns:
            Corrected SQL text

        Raises:
            ExternalServiceError: If the generator fails
        """
        pass


class LLMCorrectionGenerator(CorrectionGenerator):
    """Builds a strategy-specific correction prompt and asks an LLM to fix the SQL."""

    SYSTEM_PROMPT = """You are a SQL reviewer. You fix SQL queries so that they
answer the user's question, follow the schema and respect data access rules.

Rules:
- Generate only a single read-only SELECT query
- Use proper JOIN syntax with explicit ON conditions when relating tables
- Never select sensitive columns unless they are required and masked
- Use aggregation functions with a matching GROUP BY

Return ONLY the SQL query, no explanations."""

    CORRECTION_PROMPT_TEMPLATE = """The previous SQL query failed {stage} validation.

Original question: {original_query}
Previous SQL: {previous_sql}
Issues:
{issues}

Focus: {guidance}

Schema:
{schema}

Please generate a corrected SQL query that fixes these issues.
Return ONLY the SQL query, no explanations."""

    STRATEGY_GUIDANCE = {
        CorrectionStrategy.SEMANTIC: (
            "Make the query answer the question exactly: read the tables the question "
            "refers to and add the aggregation, ordering or limit it asks for."
        ),
        CorrectionStrategy.SCHEMA: (
            "Use only tables and columns that exist in the schema and give every join "
            "an explicit ON condition that follows the listed relationships."
        ),
        CorrectionStrategy.BUSINESS_LOGIC: (
            "Remove tables the user may not read, drop or mask sensitive columns and "
            "make GROUP BY match the selected columns."
        ),
        CorrectionStrategy.SECURITY: (
            "Produce one read-only SELECT statement without comments, stacked "
            "statements or system tables."
        ),
        CorrectionStrategy.GENERAL: "Fix every reported issue.",
    }

    def __init__(self, llm: LLMInterface, business_schema: BusinessSchema) -> None:
        """
        Initialize the generator.

        Args:
            llm: LLM interface used to rewrite the SQL
            business_schema: Schema described to the model
        """
        self.llm = llm
        self.business_schema = business_schema

    def _describe_schema(self) -> str:
        lines = []
        for table in self.business_schema.tables.values():
            lines.append(f"- {table.name} ({', '.join(table.columns)})")
            for rel in table.relationships:
                lines.append(
                    f"  {table.key}.{rel.column} -> {rel.ref_table}.{rel.ref_column}"
                )
        return "\n".join(lines)

    def build_prompt(
        self,
        original_sql: str,
        failing: Optional[StageOutcome],
        strategy: CorrectionStrategy,
        original_query: str,
    ) -> str:
        issues = failing.issues if failing is not None else []
        if issues:
            issue_lines = "\n".join(f"- [{i.severity.value}] {i.message}" for i in issues)
        elif failing is not None and failing.reason:
            issue_lines = f"- {failing.reason}"
        else:
            issue_lines = "- score below the required threshold"
        return self.CORRECTION_PROMPT_TEMPLATE.format(
            stage=failing.stage.value if failing is not None else "overall",
            original_query=original_query,
            previous_sql=original_sql,
            issues=issue_lines,
            guidance=self.STRATEGY_GUIDANCE[strategy],
            schema=self._describe_schema(),
        )

    @staticmethod
    def _extract_sql(llm_output: str) -> str:
        """Extract SQL from LLM output, handling markdown code blocks."""
        sql = llm_output.strip()
        if sql.startswith("```"):
            lines = sql.split("\n")
            # Remove first and last lines (code block markers)
            sql = "\n".join(lines[1:-1] if lines[-1] == "```" else lines[1:])
        return sql.strip()

    async def correct(
        self,
        original_sql: str,
        failing: Optional[StageOutcome],
        strategy: CorrectionStrategy,
        *,
        original_query: str,
    ) -> str:
        prompt = self.build_prompt(original_sql, failing, strategy, original_query)
        response = await self.llm.generate(prompt, system_prompt=self.SYSTEM_PROMPT)
        sql = self._extract_sql(response.content)
        if not sql:
            raise ExternalServiceError("llm", "empty correction returned", retryable=False)
        return sql
