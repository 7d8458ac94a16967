"""
pushgate — stage and pipeline-run model

File: src/pushgate/pipeline/stages.py
Last updated: 2026-10-19

Purpose
- Immutable stage definitions, the ``StageAction`` capability, and the result types
  produced by the pipeline engine.

Invariants
- Stage names are unique within a pipeline (enforced by the engine and builder).
- ``PipelineRun.stages_run`` is a prefix of the configured stage list.
- A stage interrupted by an abort is not part of ``stages_run``; its name is carried
  on the ``aborted`` outcome instead.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from pushgate.utils.concurrency import CancellationToken


class StageKind(StrEnum):
    """What a configured stage does."""

    COMMAND = "command"
    COVERAGE = "coverage"
    PUBLISH = "publish"


class StageStatus(StrEnum):
    """Normalized stage status values."""

    PASS = "pass"
    FAIL = "fail"
    TIMEOUT = "timeout"
    ERROR = "error"


class OutcomeKind(StrEnum):
    PASS = "pass"
    FAIL = "fail"
    ABORTED = "aborted"


@dataclass(frozen=True, slots=True)
class ActionOutcome:
    """What a stage action reports back to the engine.

    ``status`` overrides the exit-status based classification; actions use it to
    report ``error`` for invocations that never started.
    """

    exit_status: int
    output: str = ""
    reason: str | None = None
    status: StageStatus | None = None

    def resolved_status(self) -> StageStatus:
        if self.status is not None:
            return self.status
        return StageStatus.PASS if self.exit_status == 0 else StageStatus.FAIL


@dataclass(slots=True)
class StageContext:
    """Per-invocation context handed to a ``StageAction``.

    Actions stream output through ``emit`` so the engine still has the partial
    transcript when a stage is interrupted by its deadline.
    """

    stage_name: str
    env: Mapping[str, str]
    cancel_token: CancellationToken
    _chunks: list[str] = field(default_factory=list, repr=False)

    def emit(self, text: str) -> None:
        if text:
            self._chunks.append(text)

    def captured(self) -> str:
        return "".join(self._chunks)


@runtime_checkable
class StageAction(Protocol):
    """Capability: spawn the stage's work, await it, yield exit status and output."""

    def describe(self) -> str: ...

    async def run(self, context: StageContext) -> ActionOutcome: ...


@dataclass(frozen=True, slots=True)
class Stage:
    """One named verification step wrapping exactly one action."""

    name: str
    action: StageAction
    fatal: bool = True
    hint: str | None = None
    timeout_seconds: float | None = None
    kind: StageKind = StageKind.COMMAND

    def __post_init__(self) -> None:
        name = self.name.strip() if isinstance(self.name, str) else ""
        if not name:
            raise ValueError("Stage.name must be non-empty")
        object.__setattr__(self, "name", name)
        if not isinstance(self.action, StageAction):
            raise TypeError(f"Stage {name!r}: action must implement StageAction")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError(f"Stage {name!r}: timeout_seconds must be > 0 when provided")
        object.__setattr__(self, "kind", StageKind(self.kind))
        if self.hint is not None and not self.hint.strip():
            object.__setattr__(self, "hint", None)

    def describe(self) -> str:
        return self.action.describe()


@dataclass(frozen=True, slots=True)
class StageResult:
    """Outcome of one executed stage. Produced exactly once, never mutated."""

    stage: str
    exit_status: int
    duration_ms: int
    output: str
    status: StageStatus
    fatal: bool = True
    hint: str | None = None
    reason: str | None = None

    def __post_init__(self) -> None:
        if not self.stage:
            raise ValueError("StageResult.stage must be non-empty")
        if self.duration_ms < 0:
            raise ValueError("StageResult.duration_ms must be >= 0")
        object.__setattr__(self, "status", StageStatus(self.status))
        if self.status is StageStatus.PASS and self.exit_status != 0:
            raise ValueError("StageResult.exit_status must be 0 for passing stages")

    @property
    def passed(self) -> bool:
        return self.status is StageStatus.PASS

    @property
    def halts_pipeline(self) -> bool:
        return self.fatal and not self.passed

    def to_dict(self) -> dict[str, object]:
        return {
            "stage": self.stage,
            "status": self.status.value,
            "exit_status": self.exit_status,
            "duration_ms": self.duration_ms,
            "fatal": self.fatal,
            "hint": self.hint,
            "reason": self.reason,
            "output": self.output,
        }


@dataclass(frozen=True, slots=True)
class PipelineOutcome:
    """``pass``, ``fail`` at a stage, or ``aborted`` with a reason."""

    kind: OutcomeKind
    stage: str | None = None
    reason: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", OutcomeKind(self.kind))
        if self.kind is OutcomeKind.FAIL and not self.stage:
            raise ValueError("failed outcome must name the failing stage")
        if self.kind is OutcomeKind.ABORTED and not self.reason:
            raise ValueError("aborted outcome must carry a reason")

    @classmethod
    def passed(cls) -> PipelineOutcome:
        return cls(kind=OutcomeKind.PASS)

    @classmethod
    def failed(cls, stage: str) -> PipelineOutcome:
        return cls(kind=OutcomeKind.FAIL, stage=stage)

    @classmethod
    def aborted(cls, reason: str, *, stage: str | None = None) -> PipelineOutcome:
        return cls(kind=OutcomeKind.ABORTED, stage=stage, reason=reason)

    def describe(self) -> str:
        if self.kind is OutcomeKind.PASS:
            return "pass"
        if self.kind is OutcomeKind.FAIL:
            return f"fail({self.stage})"
        where = f" during {self.stage}" if self.stage else ""
        return f"aborted({self.reason}){where}"


@dataclass(frozen=True, slots=True)
class PipelineRun:
    """Finalized record of one pipeline execution."""

    pipeline: str
    stages_run: tuple[StageResult, ...]
    outcome: PipelineOutcome
    toolchain: str | None = None

    @property
    def passed(self) -> bool:
        return self.outcome.kind is OutcomeKind.PASS

    @property
    def aborted(self) -> bool:
        return self.outcome.kind is OutcomeKind.ABORTED

    @property
    def failed_result(self) -> StageResult | None:
        if self.outcome.kind is not OutcomeKind.FAIL:
            return None
        for result in self.stages_run:
            if result.stage == self.outcome.stage:
                return result
        return None

    @property
    def advisory_failures(self) -> tuple[StageResult, ...]:
        return tuple(result for result in self.stages_run if not result.fatal and not result.passed)

    def exit_statuses(self) -> tuple[tuple[str, int], ...]:
        return tuple((result.stage, result.exit_status) for result in self.stages_run)

    def to_dict(self, *, include_output: bool = False) -> dict[str, object]:
        stages: list[dict[str, object]] = []
        for result in self.stages_run:
            payload = result.to_dict()
            if not include_output:
                payload.pop("output")
            stages.append(payload)
        return {
            "pipeline": self.pipeline,
            "toolchain": self.toolchain,
            "outcome": {
                "kind": self.outcome.kind.value,
                "stage": self.outcome.stage,
                "reason": self.outcome.reason,
            },
            "stages": stages,
        }


__all__ = [
    "ActionOutcome",
    "OutcomeKind",
    "PipelineOutcome",
    "PipelineRun",
    "Stage",
    "StageAction",
    "StageContext",
    "StageKind",
    "StageResult",
    "StageStatus",
]
