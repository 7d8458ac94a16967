"""Gate runner: configured pipelines, matrix expansion, cache keys, and the git hook."""

from pushgate.gate.actions import CommandAction, CoverageAction, PublishAction
from pushgate.gate.builder import (
    PipelineBuildError,
    PipelineBuilder,
    PipelineDefinition,
    RunSettings,
    StageDefinition,
    expand_command,
    get_pipeline,
    pipeline_definitions,
)
from pushgate.gate.cache import CacheDescriptor, cache_key, describe_cache, runner_os
from pushgate.gate.hooks import HookInstallError, install_hook
from pushgate.gate.matrix import MatrixEntry, expand_matrix, select_toolchains
from pushgate.gate.runner import EntryRun, GateReport, GateRunner, exit_code_for

__all__ = [
    "CacheDescriptor",
    "CommandAction",
    "CoverageAction",
    "EntryRun",
    "GateReport",
    "GateRunner",
    "HookInstallError",
    "MatrixEntry",
    "PipelineBuildError",
    "PipelineBuilder",
    "PipelineDefinition",
    "PublishAction",
    "RunSettings",
    "StageDefinition",
    "cache_key",
    "describe_cache",
    "exit_code_for",
    "expand_command",
    "expand_matrix",
    "get_pipeline",
    "install_hook",
    "pipeline_definitions",
    "runner_os",
    "select_toolchains",
]
