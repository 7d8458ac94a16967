"""
pushgate — pipeline execution engine

File: src/pushgate/pipeline/engine.py
Last updated: 2026-10-19

Purpose
- Execute an ordered stage list with fail-fast semantics and reduce it to a ``PipelineRun``.

Normative behavior
- Stages run strictly in configured order, one at a time.
- A failing fatal stage halts the run with ``fail(stage)``; later stages never start.
- A failing non-fatal stage is recorded and execution continues.
- Per-stage deadlines (stage value, else engine default) kill the stage's process group;
  the stage is recorded as ``timeout`` with reason ``"timeout"``.
- Cancellation through the token finalizes ``aborted(reason)``. The interrupted stage
  is not recorded. Outer task cancellation without a cancelled token propagates.
- No retries.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping, Sequence
from typing import Any

import structlog

from pushgate.constants import ACTION_ERROR_EXIT_STATUS, TIMEOUT_EXIT_STATUS
from pushgate.pipeline.stages import (
    ActionOutcome,
    PipelineOutcome,
    PipelineRun,
    Stage,
    StageContext,
    StageResult,
    StageStatus,
)
from pushgate.utils.concurrency import CancellationToken, run_with_timeout

TIMEOUT_REASON = "timeout"


class PipelineEngine:
    """Sequential, fail-fast stage runner."""

    def __init__(
        self,
        *,
        default_timeout_seconds: float | None = None,
        logger: Any | None = None,
    ) -> None:
        if default_timeout_seconds is not None and default_timeout_seconds <= 0:
            raise ValueError("default_timeout_seconds must be > 0 when provided")
        self._default_timeout_seconds = default_timeout_seconds
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def default_timeout_seconds(self) -> float | None:
        return self._default_timeout_seconds

    async def run(
        self,
        stages: Sequence[Stage],
        env: Mapping[str, str] | None = None,
        *,
        pipeline: str = "pipeline",
        toolchain: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> PipelineRun:
        _assert_unique_names(stages)
        token = cancel_token or CancellationToken()
        forwarded_env = dict(env or {})
        results: list[StageResult] = []
        outcome = PipelineOutcome.passed()

        self._logger.info(
            "pipeline_started",
            pipeline=pipeline,
            toolchain=toolchain,
            stages=[stage.name for stage in stages],
        )

        for stage in stages:
            if token.is_cancelled:
                outcome = PipelineOutcome.aborted(_abort_reason(token), stage=stage.name)
                break

            self._logger.info("stage_started", pipeline=pipeline, stage=stage.name)
            try:
                result = await self._run_stage(stage, forwarded_env, token)
            except asyncio.CancelledError:
                if not token.is_cancelled:
                    raise
                outcome = PipelineOutcome.aborted(_abort_reason(token), stage=stage.name)
                self._logger.warning(
                    "stage_aborted",
                    pipeline=pipeline,
                    stage=stage.name,
                    reason=outcome.reason,
                )
                break

            results.append(result)
            self._log_stage_result(pipeline, result)

            if result.halts_pipeline:
                outcome = PipelineOutcome.failed(stage.name)
                break

        run = PipelineRun(
            pipeline=pipeline,
            stages_run=tuple(results),
            outcome=outcome,
            toolchain=toolchain,
        )
        self._logger.info(
            "pipeline_finished",
            pipeline=pipeline,
            toolchain=toolchain,
            outcome=outcome.describe(),
            stages_run=len(results),
        )
        return run

    async def _run_stage(
        self,
        stage: Stage,
        env: Mapping[str, str],
        token: CancellationToken,
    ) -> StageResult:
        context = StageContext(stage_name=stage.name, env=env, cancel_token=token)
        timeout = (
            stage.timeout_seconds
            if stage.timeout_seconds is not None
            else self._default_timeout_seconds
        )
        start = time.perf_counter()

        try:
            action_outcome = await run_with_timeout(stage.action.run(context), timeout, token)
        except TimeoutError:
            return _result(
                stage,
                exit_status=TIMEOUT_EXIT_STATUS,
                duration_ms=_duration_ms(start),
                output=context.captured(),
                status=StageStatus.TIMEOUT,
                reason=TIMEOUT_REASON,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - an action bug must not escape the gate.
            return _result(
                stage,
                exit_status=ACTION_ERROR_EXIT_STATUS,
                duration_ms=_duration_ms(start),
                output=context.captured(),
                status=StageStatus.ERROR,
                reason=f"{type(exc).__name__}: {exc}",
            )

        return _from_action_outcome(stage, action_outcome, _duration_ms(start), context)

    def _log_stage_result(self, pipeline: str, result: StageResult) -> None:
        if result.passed:
            self._logger.info(
                "stage_passed",
                pipeline=pipeline,
                stage=result.stage,
                duration_ms=result.duration_ms,
            )
            return
        self._logger.warning(
            "stage_failed",
            pipeline=pipeline,
            stage=result.stage,
            status=result.status.value,
            exit_status=result.exit_status,
            fatal=result.fatal,
            reason=result.reason,
            duration_ms=result.duration_ms,
        )


def _from_action_outcome(
    stage: Stage,
    outcome: ActionOutcome,
    duration_ms: int,
    context: StageContext,
) -> StageResult:
    status = outcome.resolved_status()
    exit_status = outcome.exit_status
    if status is StageStatus.PASS and exit_status != 0:
        status = StageStatus.FAIL
    if status is not StageStatus.PASS and exit_status == 0:
        exit_status = ACTION_ERROR_EXIT_STATUS
    return _result(
        stage,
        exit_status=exit_status,
        duration_ms=duration_ms,
        output=outcome.output or context.captured(),
        status=status,
        reason=outcome.reason,
    )


def _result(
    stage: Stage,
    *,
    exit_status: int,
    duration_ms: int,
    output: str,
    status: StageStatus,
    reason: str | None,
) -> StageResult:
    return StageResult(
        stage=stage.name,
        exit_status=exit_status,
        duration_ms=duration_ms,
        output=output,
        status=status,
        fatal=stage.fatal,
        hint=stage.hint,
        reason=reason,
    )


def _assert_unique_names(stages: Sequence[Stage]) -> None:
    seen: set[str] = set()
    for stage in stages:
        if stage.name in seen:
            raise ValueError(f"duplicate stage name {stage.name!r}")
        seen.add(stage.name)


def _abort_reason(token: CancellationToken) -> str:
    return token.reason or "cancelled"


def _duration_ms(start: float) -> int:
    elapsed_seconds = max(time.perf_counter() - start, 0.0)
    return int(round(elapsed_seconds * 1000))


__all__ = ["PipelineEngine", "TIMEOUT_REASON"]
