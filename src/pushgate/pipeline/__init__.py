"""Stage model, command executor, and the fail-fast pipeline engine."""

from pushgate.pipeline.engine import TIMEOUT_REASON, PipelineEngine
from pushgate.pipeline.executor import (
    CommandExecutor,
    CommandResult,
    CommandSpec,
    LocalSubprocessExecutor,
    OutputSink,
    terminate_process_group,
)
from pushgate.pipeline.stages import (
    ActionOutcome,
    OutcomeKind,
    PipelineOutcome,
    PipelineRun,
    Stage,
    StageAction,
    StageContext,
    StageKind,
    StageResult,
    StageStatus,
)

__all__ = [
    "ActionOutcome",
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "LocalSubprocessExecutor",
    "OutcomeKind",
    "OutputSink",
    "PipelineEngine",
    "PipelineOutcome",
    "PipelineRun",
    "Stage",
    "StageAction",
    "StageContext",
    "StageKind",
    "StageResult",
    "StageStatus",
    "TIMEOUT_REASON",
    "terminate_process_group",
]
