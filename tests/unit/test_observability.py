"""
Unit Tests for Observability Helpers
====================================

Log processors and the Prometheus validation sink.
"""

import pytest

from observability.logging_config import (
    MAX_SQL_LOG_LENGTH,
    SERVICE_NAME,
    mask_sql_fields,
    service_info,
)
from observability.metrics import REGISTRY, track_validation_metrics
from sql_validation.models import ValidationLevel, ValidationRequest
from sql_validation.orchestrator import ValidationOrchestrator


class TestLogProcessors:
    def test_literals_are_masked(self) -> None:
        event = mask_sql_fields(
            None,
            "info",
            {"event": "validation_started", "sql": "SELECT * FROM customers WHERE email = 'a@b.com'"},
        )

        assert "a@b.com" not in event["sql"]
        assert event["sql"].endswith("email = ''")
        assert event["event"] == "validation_started"

    def test_corrected_sql_is_masked(self) -> None:
        event = mask_sql_fields(
            None, "info", {"corrected_sql": "SELECT name FROM customers WHERE city = 'Oslo'"}
        )
        assert "Oslo" not in event["corrected_sql"]

    def test_long_statements_are_truncated(self) -> None:
        sql = "SELECT " + ", ".join(f"col_{i}" for i in range(200)) + " FROM customers"
        event = mask_sql_fields(None, "info", {"original_sql": sql})

        assert len(event["original_sql"]) == MAX_SQL_LOG_LENGTH + 3
        assert event["original_sql"].endswith("...")

    def test_non_string_fields_untouched(self) -> None:
        event = mask_sql_fields(None, "info", {"sql": None, "score": 0.5})
        assert event == {"sql": None, "score": 0.5}

    def test_service_info(self) -> None:
        processor = service_info("1.2.3")
        event = processor(None, "info", {"event": "startup"})

        assert event["service"] == SERVICE_NAME
        assert event["version"] == "1.2.3"

    def test_service_info_keeps_bound_values(self) -> None:
        event = service_info("1.2.3")(None, "info", {"service": "worker"})
        assert event["service"] == "worker"


class TestValidationSink:
    @pytest.mark.asyncio
    async def test_early_exit_is_counted(self, orchestrator: ValidationOrchestrator) -> None:
        result = await orchestrator.validate(
            ValidationRequest(
                sql="DROP TABLE Users;",
                original_query="Show me all users",
                validation_level=ValidationLevel.COMPREHENSIVE,
            )
        )
        labels = {"level": "comprehensive", "status": "invalid"}
        before_total = REGISTRY.get_sample_value("sql_validation_validations_total", labels) or 0.0
        before_exits = REGISTRY.get_sample_value("sql_validation_early_exits_total") or 0.0

        track_validation_metrics(result, 0.01)

        assert REGISTRY.get_sample_value("sql_validation_validations_total", labels) == before_total + 1
        assert REGISTRY.get_sample_value("sql_validation_early_exits_total") == before_exits + 1
        assert (
            REGISTRY.get_sample_value(
                "sql_validation_stage_outcomes_total", {"stage": "security", "status": "failed"}
            )
            >= 1
        )
