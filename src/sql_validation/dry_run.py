"""
Dry Run Execution
=================

Bounded, read-only preview execution used to estimate row counts, timing and
plan shape before a query is handed to the user.
"""

import asyncio
import re
import sqlite3
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Mapping, Optional, Sequence

import structlog

from sql_validation.exceptions import ExternalServiceError
from sql_validation.models import DryRunExecutionResult, PerformanceMetrics
from sql_validation.retry import call_with_retry
from sql_validation.schema import BusinessSchema
from sql_validation.sql_elements import mask_sql

logger = structlog.get_logger(__name__)

_TOP = re.compile(r"^(\s*SELECT\s+(?:DISTINCT\s+)?)TOP\s*\(?\s*(\d+)\s*\)?\s+", re.IGNORECASE)
_TABLE_HINT = re.compile(r"\bWITH\s*\(\s*NOLOCK\s*\)", re.IGNORECASE)
_LIMIT = re.compile(r"\bLIMIT\s+\d+", re.IGNORECASE)


@dataclass
class PreviewResult:
    """What an execution engine reports for one preview."""

    rows: list[tuple] = field(default_factory=list)
    row_count: Optional[int] = None
    plan: Optional[str] = None
    elapsed_ms: float = 0.0
    errors: list[str] = field(default_factory=list)
    performance: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    plan_warnings: list[str] = field(default_factory=list)


class ExecutionEngine(ABC):
    """Read-only SQL execution engine used for previews."""

    @abstractmethod
    async def preview(self, sql: str, max_rows: int, timeout: float) -> PreviewResult:
        """
        Execute ``sql`` without side effects.

        Args:
            sql: Read-only query
            max_rows: Maximum rows to fetch
            timeout: Hard bound in seconds; the engine must cancel the
                statement when it elapses

        Returns:
            PreviewResult; SQL errors are reported in ``errors``

        Raises:
            ExternalServiceError: If the engine is unreachable
        """
        pass


def to_sqlite_dialect(sql: str) -> str:
    """Rewrite the T-SQL constructs generated queries commonly use."""
    sql = _TABLE_HINT.sub("", sql.strip().rstrip(";")).strip()
    match = _TOP.match(sql)
    if match:
        sql = match.group(1) + sql[match.end() :]
        if not _LIMIT.search(sql):
            sql = f"{sql} LIMIT {match.group(2)}"
    return sql


class SQLiteExecutionEngine(ExecutionEngine):
    """
    Preview engine backed by SQLite.

    Opens ``database`` read-only when given; otherwise builds an in-memory
    snapshot of ``schema`` (optionally seeded with ``seed_rows``) for every
    preview. Connections run with ``PRAGMA query_only`` so no statement can
    write.
    """

    def __init__(
        self,
        database: Optional[str] = None,
        schema: Optional[BusinessSchema] = None,
        seed_rows: Optional[Mapping[str, Sequence[Mapping[str, Any]]]] = None,
    ) -> None:
        if database is None and schema is None:
            raise ValueError("either database or schema is required")
        self.database = database
        self.schema = schema
        self.seed_rows = seed_rows or {}

    def _connect(self) -> sqlite3.Connection:
        if self.database is not None:
            try:
                conn = sqlite3.connect(
                    f"file:{self.database}?mode=ro", uri=True, check_same_thread=False
                )
            except sqlite3.Error as e:
                raise ExternalServiceError("execution_engine", str(e)) from e
        else:
            conn = sqlite3.connect(":memory:", check_same_thread=False)
            self._create_schema_tables(conn)
        conn.create_function("GETDATE", 0, lambda: date.today().isoformat())
        conn.create_function("GETUTCDATE", 0, lambda: datetime.now(timezone.utc).date().isoformat())
        conn.execute("PRAGMA query_only = ON")
        return conn

    def _create_schema_tables(self, conn: sqlite3.Connection) -> None:
        """Create tables matching the schema, then insert any seed rows."""
        cursor = conn.cursor()
        for table in self.schema.tables.values():
            columns = ", ".join(f'"{name}" {col_type}' for name, col_type in table.columns.items())
            cursor.execute(f'CREATE TABLE "{table.name}" ({columns})')
            for row in self.seed_rows.get(table.name, self.seed_rows.get(table.key, ())):
                names = list(row)
                placeholders = ", ".join("?" for _ in names)
                quoted = ", ".join(f'"{n}"' for n in names)
                cursor.execute(
                    f'INSERT INTO "{table.name}" ({quoted}) VALUES ({placeholders})',
                    [row[n] for n in names],
                )
        conn.commit()

    def _run(self, sql: str, max_rows: int, opened: list) -> PreviewResult:
        conn = self._connect()
        opened.append(conn)
        result = PreviewResult()
        try:
            query = to_sqlite_dialect(sql)
            start_cpu = time.thread_time()
            start = time.perf_counter()

            plan_rows = conn.execute(f"EXPLAIN QUERY PLAN {query}").fetchall()
            result.plan = "\n".join(str(row[-1]) for row in plan_rows)
            result.plan_warnings = [
                f"Full table scan: {row[-1]}"
                for row in plan_rows
                if str(row[-1]).startswith("SCAN") and "INDEX" not in str(row[-1])
            ]

            rows = conn.execute(query).fetchmany(max_rows + 1)
            result.rows = rows[:max_rows]
            result.row_count = len(rows)
            if len(rows) > max_rows:
                result.row_count = conn.execute(f"SELECT COUNT(*) FROM ({query})").fetchone()[0]

            result.elapsed_ms = (time.perf_counter() - start) * 1000
            result.performance = PerformanceMetrics(
                cpu_time_ms=(time.thread_time() - start_cpu) * 1000
            )
        except sqlite3.Error as e:
            result.errors.append(f"{type(e).__name__}: {e}")
        finally:
            conn.close()
        return result

    async def preview(self, sql: str, max_rows: int, timeout: float) -> PreviewResult:
        opened: list[sqlite3.Connection] = []
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._run, sql, max_rows, opened), timeout
            )
        except (asyncio.CancelledError, TimeoutError):
            for conn in opened:
                try:
                    conn.interrupt()
                except sqlite3.ProgrammingError:
                    # Statement already finished and closed its connection
                    continue
            raise


class DryRunExecutor:
    """Runs bounded previews through an ``ExecutionEngine``."""

    READ_STATEMENTS = ("SELECT", "WITH")

    def __init__(
        self,
        engine: ExecutionEngine,
        retry_attempts: int = 3,
        retry_backoff: float = 0.2,
    ) -> None:
        self.engine = engine
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    async def execute(
        self,
        sql: str,
        max_rows_to_analyze: int,
        max_execution_time: float,
    ) -> DryRunExecutionResult:
        """
        Preview ``sql`` within ``max_execution_time`` seconds.

        A timeout is reported as ``executed_successfully=False`` with a
        warning; it does not make the query unexecutable.

        Raises:
            ExternalServiceError: If the engine stays unreachable after retries
        """
        statement = mask_sql(sql).strip().split(None, 1)
        if not statement or statement[0].upper() not in self.READ_STATEMENTS:
            return DryRunExecutionResult(
                can_execute=False,
                errors=["Only read-only SELECT statements can be previewed"],
            )

        try:
            preview = await call_with_retry(
                lambda: self.engine.preview(sql, max_rows_to_analyze, max_execution_time),
                service="execution_engine",
                attempts=self.retry_attempts,
                base_delay=self.retry_backoff,
                timeout=max_execution_time,
            )
        except TimeoutError:
            logger.warning("dry_run_timeout", max_execution_time=max_execution_time)
            return DryRunExecutionResult(
                can_execute=True,
                executed_successfully=False,
                timed_out=True,
                warnings=[
                    f"Dry run exceeded {max_execution_time:g}s and was cancelled"
                ],
            )

        if preview.errors:
            return DryRunExecutionResult(
                can_execute=False,
                executed_successfully=False,
                errors=list(preview.errors),
                execution_plan=preview.plan,
            )

        warnings = list(preview.plan_warnings)
        if preview.row_count is not None and preview.row_count > max_rows_to_analyze:
            warnings.append(
                f"Query returns {preview.row_count} rows; only the first "
                f"{max_rows_to_analyze} were analyzed"
            )
        if preview.elapsed_ms > max_execution_time * 1000 * 0.8:
            warnings.append("Query execution time is close to the configured limit")

        return DryRunExecutionResult(
            can_execute=True,
            executed_successfully=True,
            estimated_execution_time_ms=round(preview.elapsed_ms, 3),
            estimated_row_count=preview.row_count,
            warnings=warnings,
            execution_plan=preview.plan,
            performance_metrics=preview.performance,
        )
