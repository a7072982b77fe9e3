"""
Self-Correction Engine
======================

Bounded retry loop that regenerates failing SQL and re-validates it.

Each attempt picks a strategy for the weakest failing stage, asks the
correction generator for a new candidate and runs the full orchestrator on
it. The loop stops on success, when the attempt budget is spent, when the
score plateaus or when the correction timeout elapses.
"""

import asyncio
import time
from dataclasses import dataclass, field, replace
from typing import Optional

import structlog
from opentelemetry import trace

from sql_validation.config import SelfCorrectionConfiguration
from sql_validation.correction.generator import CorrectionGenerator
from sql_validation.exceptions import ExternalServiceError, MalformedInputError
from sql_validation.models import (
    STATIC_STAGES,
    CorrectionStrategy,
    SelfCorrectionAttempt,
    StageOutcome,
    StageStatus,
    ValidationRequest,
    ValidationResult,
)
from sql_validation.orchestrator import ValidationOrchestrator
from sql_validation.retry import call_with_retry
from sql_validation.sql_elements import normalize_sql

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class _LoopState:
    initial: ValidationResult
    current: ValidationResult
    best: ValidationResult
    deadline: float
    history: list[SelfCorrectionAttempt] = field(default_factory=list)
    tried: set[CorrectionStrategy] = field(default_factory=set)
    plateau: int = 0
    warnings: list[str] = field(default_factory=list)


class SelfCorrectionEngine:
    """Drives bounded correction attempts for a failing validation result."""

    def __init__(
        self,
        orchestrator: ValidationOrchestrator,
        generator: CorrectionGenerator,
        config: SelfCorrectionConfiguration | None = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            orchestrator: Re-validates every candidate
            generator: Produces corrected SQL candidates
            config: Loop policy (defaults if omitted)
        """
        self.orchestrator = orchestrator
        self.generator = generator
        self.config = config or SelfCorrectionConfiguration()

    def select_strategy(
        self, result: ValidationResult, tried: set[CorrectionStrategy]
    ) -> tuple[CorrectionStrategy, Optional[StageOutcome]]:
        """
        Pick the strategy for the next attempt.

        Configured strategies whose stage is failing are ordered by that
        stage's score (lowest first, configuration order breaking ties) and
        used round-robin. GENERAL is the fallback when none applies.
        """
        failing = {
            o.stage: o
            for o in result.executed_stages
            if o.stage in STATIC_STAGES and o.status is not StageStatus.PASSED
        }
        order = list(self.config.correction_strategies)
        candidates = sorted(
            (s for s in order if s.stage in failing),
            key=lambda s: (failing[s.stage].score or 0.0, order.index(s)),
        )
        untried = [s for s in candidates if s not in tried]
        if candidates and not untried:
            tried.difference_update(candidates)
            untried = candidates
        if untried:
            strategy = untried[0]
            tried.add(strategy)
            return strategy, failing[strategy.stage]

        not_passed = [o for o in result.executed_stages if o.status is not StageStatus.PASSED]
        return CorrectionStrategy.GENERAL, not_passed[0] if not_passed else None

    async def correct(
        self, request: ValidationRequest, initial: ValidationResult
    ) -> ValidationResult:
        """
        Run the correction loop.

        Never raises past the loop: generator failures become unsuccessful
        attempts and unexpected errors end the loop with the best result so
        far.

        Args:
            request: The request that produced ``initial``
            initial: The failing validation result

        Returns:
            The successful candidate's result, otherwise the best-scoring
            result seen, carrying the full correction history
        """
        state = _LoopState(
            initial=initial,
            current=initial,
            best=initial,
            deadline=time.monotonic() + self.config.correction_timeout,
        )
        if not initial.can_self_correct or self.config.max_correction_attempts == 0:
            return self._finish(state)

        with tracer.start_as_current_span("validation.self_correction") as span:
            try:
                await self._loop(request, state)
            except Exception:
                logger.exception("self_correction_failed", attempts=len(state.history))
                state.warnings.append("Self-correction stopped after an internal error")
            span.set_attribute("correction.attempts", len(state.history))
            span.set_attribute(
                "correction.successful",
                bool(state.history) and state.history[-1].was_successful,
            )

        return self._finish(state)

    async def _loop(self, request: ValidationRequest, state: _LoopState) -> None:
        cfg = self.config
        while len(state.history) < cfg.max_correction_attempts:
            if time.monotonic() >= state.deadline:
                self._timed_out(state)
                return

            current = state.current
            strategy, failing = self.select_strategy(current, state.tried)
            attempt_number = len(state.history) + 1

            try:
                candidate = await call_with_retry(
                    lambda: self.generator.correct(
                        current.sql,
                        failing,
                        strategy,
                        original_query=request.original_query,
                    ),
                    service="correction_generator",
                    attempts=self.orchestrator.config.external_retry_attempts,
                    base_delay=self.orchestrator.config.retry_backoff,
                    timeout=state.deadline - time.monotonic(),
                )
            except TimeoutError:
                self._record_failure(
                    state, attempt_number, strategy, None, "correction generator timed out"
                )
                self._timed_out(state)
                return
            except Exception as e:
                if isinstance(e, ExternalServiceError):
                    detail = e.message
                else:
                    logger.warning(
                        "correction_generator_error",
                        attempt=attempt_number,
                        error_type=type(e).__name__,
                    )
                    detail = f"unexpected {type(e).__name__}"
                self._record_failure(
                    state,
                    attempt_number,
                    strategy,
                    None,
                    f"correction generator failed: {detail}",
                )
                if self._plateaued(state, 0.0):
                    return
                continue

            # Unchanged candidates are not re-validated
            if normalize_sql(candidate) == normalize_sql(current.sql):
                self._record_failure(
                    state,
                    attempt_number,
                    strategy,
                    candidate,
                    "correction generator returned unchanged SQL",
                )
                if self._plateaued(state, 0.0):
                    return
                continue

            try:
                new = await asyncio.wait_for(
                    self.orchestrator.validate(request.with_sql(candidate)),
                    timeout=max(0.0, state.deadline - time.monotonic()),
                )
            except TimeoutError:
                self._record_failure(
                    state, attempt_number, strategy, candidate, "re-validation timed out"
                )
                self._timed_out(state)
                return
            except MalformedInputError:
                self._record_failure(
                    state,
                    attempt_number,
                    strategy,
                    candidate,
                    "correction generator returned empty SQL",
                )
                if self._plateaued(state, 0.0):
                    return
                continue

            improvement = new.overall_score - current.overall_score
            # Issues present before but not after this attempt
            before = {issue.message for issue in current.issues}
            after = {issue.message for issue in new.issues}
            if new.is_valid:
                reason = f"{strategy.value} correction produced valid SQL"
            else:
                reason = f"{strategy.value} correction changed the score by {improvement:+.2f}"

            attempt = SelfCorrectionAttempt(
                attempt_number=attempt_number,
                original_sql=current.sql,
                corrected_sql=candidate,
                strategy=strategy,
                correction_reason=reason,
                improvement_score=improvement,
                was_successful=new.is_valid,
                issues_addressed=tuple(sorted(before - after)),
                score_before=current.overall_score,
                score_after=new.overall_score,
            )
            state.history.append(attempt)
            self._log_attempt(attempt)

            state.current = new
            if new.is_valid or new.overall_score > state.best.overall_score:
                state.best = new
            if new.is_valid:
                return
            if self._plateaued(state, improvement):
                return

    def _plateaued(self, state: _LoopState, improvement: float) -> bool:
        if improvement < self.config.min_improvement_threshold:
            state.plateau += 1
        else:
            state.plateau = 0
        if state.plateau >= self.config.plateau_patience:
            logger.info("self_correction_plateau", attempts=len(state.history))
            return True
        return False

    def _record_failure(
        self,
        state: _LoopState,
        attempt_number: int,
        strategy: CorrectionStrategy,
        candidate: Optional[str],
        reason: str,
    ) -> None:
        score = state.current.overall_score
        attempt = SelfCorrectionAttempt(
            attempt_number=attempt_number,
            original_sql=state.current.sql,
            corrected_sql=candidate,
            strategy=strategy,
            correction_reason=reason,
            improvement_score=0.0,
            was_successful=False,
            score_before=score,
            score_after=score,
        )
        state.history.append(attempt)
        self._log_attempt(attempt)

    def _timed_out(self, state: _LoopState) -> None:
        logger.warning(
            "self_correction_timeout",
            timeout=self.config.correction_timeout,
            attempts=len(state.history),
        )
        state.warnings.append(
            f"Self-correction stopped after exceeding {self.config.correction_timeout:g}s"
        )

    @staticmethod
    def _log_attempt(attempt: SelfCorrectionAttempt) -> None:
        logger.info(
            "self_correction_attempt",
            attempt=attempt.attempt_number,
            strategy=attempt.strategy.value,
            improvement=round(attempt.improvement_score, 4),
            successful=attempt.was_successful,
            reason=attempt.correction_reason,
            corrected_sql=attempt.corrected_sql,
        )

    def _finish(self, state: _LoopState) -> ValidationResult:
        history = tuple(state.history)
        # Successful candidate, otherwise the best result seen
        chosen = state.current if state.current.is_valid else state.best
        last = history[-1] if history else None
        return replace(
            chosen,
            original_sql=state.initial.sql,
            is_self_corrected=last is not None and last.was_successful,
            correction_reason=last.correction_reason if last is not None else None,
            correction_history=history,
            warnings=chosen.warnings + state.warnings,
        )
