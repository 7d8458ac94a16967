"""
pushgate — gate runner

File: src/pushgate/gate/runner.py
Last updated: 2026-10-19

Purpose
- Entry point shared by the local pre-push hook and CI jobs: resolve a configured
  pipeline, expand its toolchain matrix, build and execute one ``PipelineRun`` per
  entry, and reduce the runs to a process exit status.

Behavior
- Every entry is built before anything runs, so a configuration mistake in any entry
  fails the invocation without side effects.
- Toolchain entries build into their own ``<run_dir>/target`` (exported as
  ``CARGO_TARGET_DIR``), so concurrent entries never share build output or raw dumps.
- Pipelines with a coverage stage delete stale raw coverage before their first stage.
- Entries run concurrently up to ``matrix.max_parallel``; results keep matrix order.
- SIGINT/SIGTERM cancel the shared token; every entry finalizes ``aborted``.
- Exit status: 130 if any entry aborted, else 1 if any entry failed, else 0.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from pushgate.constants import PRE_PUSH_PIPELINE, TARGET_DIR_NAME
from pushgate.gate.builder import (
    PipelineBuilder,
    PipelineDefinition,
    RunSettings,
    get_pipeline,
)
from pushgate.gate.cache import CacheDescriptor, describe_cache
from pushgate.gate.matrix import MatrixEntry, expand_matrix, select_toolchains
from pushgate.gate.summary import write_run_summary
from pushgate.observability.logging import correlation_scope, redact_text
from pushgate.pipeline.engine import PipelineEngine
from pushgate.pipeline.executor import CommandExecutor, LocalSubprocessExecutor
from pushgate.pipeline.stages import PipelineRun, Stage, StageKind
from pushgate.publish.codecov import ReportPublisher
from pushgate.utils.concurrency import CancellationToken, WorkerPool, install_signal_cancellation
from pushgate.utils.fs import ensure_directory

ABORTED_EXIT_CODE = 130
FAILED_EXIT_CODE = 1
PASSED_EXIT_CODE = 0


@dataclass(frozen=True, slots=True)
class PreparedEntry:
    entry: MatrixEntry
    settings: RunSettings
    cache: CacheDescriptor
    stages: tuple[Stage, ...]
    collects_coverage: bool


@dataclass(frozen=True, slots=True)
class EntryRun:
    """A finished matrix entry and where its artifacts live."""

    entry: MatrixEntry
    run: PipelineRun
    run_dir: Path
    cache_key: str
    summary_path: Path


@dataclass(frozen=True, slots=True)
class GateReport:
    """All matrix entries of one invocation, in matrix order."""

    pipeline: str
    entries: tuple[EntryRun, ...]

    @property
    def runs(self) -> tuple[PipelineRun, ...]:
        return tuple(item.run for item in self.entries)

    @property
    def exit_code(self) -> int:
        return exit_code_for(self.runs)

    def to_dict(self, *, include_output: bool = False) -> dict[str, object]:
        return {
            "pipeline": self.pipeline,
            "exit_code": self.exit_code,
            "entries": [
                {
                    **item.run.to_dict(include_output=include_output),
                    "run_dir": str(item.run_dir),
                    "cache_key": item.cache_key,
                    "summary_path": str(item.summary_path),
                }
                for item in self.entries
            ],
        }


def exit_code_for(runs: Sequence[PipelineRun]) -> int:
    if any(run.aborted for run in runs):
        return ABORTED_EXIT_CODE
    if any(not run.passed for run in runs):
        return FAILED_EXIT_CODE
    return PASSED_EXIT_CODE


class GateRunner:
    """Builds and executes configured pipelines for one repository."""

    def __init__(
        self,
        config: Mapping[str, Any],
        *,
        repo_root: Path,
        executor: CommandExecutor | None = None,
        publisher: ReportPublisher | None = None,
        engine: PipelineEngine | None = None,
        environ: Mapping[str, str] | None = None,
        logger: Any | None = None,
    ) -> None:
        self._config = config
        self._repo_root = Path(repo_root).resolve()
        self._environ = dict(os.environ if environ is None else environ)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

        engine_cfg = config.get("engine", {})
        redact = bool(config.get("observability", {}).get("redact_secrets", True))
        self._executor = executor or LocalSubprocessExecutor(
            kill_grace_seconds=float(engine_cfg.get("kill_grace_seconds", 5.0)),
            max_output_chars=int(engine_cfg.get("max_output_chars", 1_000_000)),
            redactor=redact_text if redact else None,
        )
        self._publisher = publisher or ReportPublisher(
            timeout_seconds=float(config.get("publish", {}).get("timeout_seconds", 60.0))
        )
        self._engine = engine or PipelineEngine(
            default_timeout_seconds=engine_cfg.get("default_timeout_seconds"),
        )
        self._builder = PipelineBuilder(
            config,
            executor=self._executor,
            publisher=self._publisher,
            environ=self._environ,
        )

    @property
    def repo_root(self) -> Path:
        return self._repo_root

    @property
    def state_dir(self) -> Path:
        raw = self._config.get("paths", {}).get("state_dir")
        if raw is None:
            return self._repo_root / ".pushgate"
        return Path(raw)

    def project_name(self) -> str:
        configured = self._config.get("project", {}).get("name")
        if isinstance(configured, str) and configured.strip():
            return configured.strip()
        return self._repo_root.name

    def prepare(
        self,
        pipeline: str,
        *,
        toolchains: Sequence[str | None] | None = None,
    ) -> tuple[PreparedEntry, ...]:
        """Resolve, expand and build every matrix entry of ``pipeline`` without running it."""

        definition = get_pipeline(self._config, pipeline)
        if toolchains is None:
            selected: Sequence[str | None] = select_toolchains(
                definition,
                matrix_default=self._config.get("matrix", {}).get("toolchain", ()),
            )
        else:
            selected = toolchains
        entries = expand_matrix(definition, selected)
        return tuple(self._prepare_entry(definition, entry) for entry in entries)

    async def run_pipeline(
        self,
        pipeline: str,
        *,
        toolchains: Sequence[str] = (),
        cancel_token: CancellationToken | None = None,
    ) -> GateReport:
        """CI entry: run ``pipeline`` once per toolchain (CLI-requested or configured)."""

        definition = get_pipeline(self._config, pipeline)
        selected = select_toolchains(
            definition,
            matrix_default=self._config.get("matrix", {}).get("toolchain", ()),
            requested=toolchains,
        )
        prepared = self.prepare(pipeline, toolchains=selected)
        return await self._execute(pipeline, prepared, cancel_token or CancellationToken())

    async def run_hook(self, *, cancel_token: CancellationToken | None = None) -> GateReport:
        """Local entry: run the ``pre-push`` pipeline once, without a toolchain matrix."""

        prepared = self.prepare(PRE_PUSH_PIPELINE, toolchains=(None,))
        return await self._execute(
            PRE_PUSH_PIPELINE, prepared, cancel_token or CancellationToken()
        )

    def run_sync(
        self,
        pipeline: str | None = None,
        *,
        toolchains: Sequence[str] = (),
    ) -> GateReport:
        """Blocking wrapper that routes SIGINT/SIGTERM to cancellation. ``None`` runs the hook."""

        async def _main() -> GateReport:
            token = CancellationToken()
            remove_handlers = install_signal_cancellation(token)
            try:
                if pipeline is None:
                    return await self.run_hook(cancel_token=token)
                return await self.run_pipeline(
                    pipeline, toolchains=toolchains, cancel_token=token
                )
            finally:
                remove_handlers()

        return asyncio.run(_main())

    def _prepare_entry(self, definition: PipelineDefinition, entry: MatrixEntry) -> PreparedEntry:
        run_dir = entry.run_dir(self.state_dir)
        cache = describe_cache(
            self._config.get("cache", {}),
            repo_root=self._repo_root,
            toolchain=entry.toolchain,
            environ=self._environ,
        )
        settings = RunSettings(
            project=self.project_name(),
            repo_root=self._repo_root,
            run_dir=run_dir,
            toolchain=entry.toolchain,
            cache_key=cache.key,
            target_dir=None if entry.toolchain is None else run_dir / TARGET_DIR_NAME,
            env=definition.env,
        )
        return PreparedEntry(
            entry=entry,
            settings=settings,
            cache=cache,
            stages=self._builder.build(definition, settings),
            collects_coverage=definition.has_kind(StageKind.COVERAGE),
        )

    async def _execute(
        self,
        pipeline: str,
        prepared: Sequence[PreparedEntry],
        token: CancellationToken,
    ) -> GateReport:
        max_parallel = int(self._config.get("matrix", {}).get("max_parallel", 1))
        # Entries observe the token themselves; the pool never skips one.
        pool: WorkerPool[EntryRun] = WorkerPool(max_concurrency=max_parallel)
        finished: list[EntryRun] = []
        async for item in pool.run(self._run_entry(entry, token) for entry in prepared):
            finished.append(item)
        finished.sort(key=lambda item: item.entry.index)

        report = GateReport(pipeline=pipeline, entries=tuple(finished))
        self._logger.info(
            "gate_finished",
            pipeline=pipeline,
            entries=len(finished),
            exit_code=report.exit_code,
        )
        return report

    async def _run_entry(self, prepared: PreparedEntry, token: CancellationToken) -> EntryRun:
        entry = prepared.entry
        settings = prepared.settings
        ensure_directory(settings.run_dir)

        with correlation_scope(pipeline=entry.pipeline, toolchain=entry.toolchain):
            if prepared.collects_coverage:
                self._builder.collector_for(settings).remove_stale()
            run = await self._engine.run(
                prepared.stages,
                settings.stage_env(),
                pipeline=entry.pipeline,
                toolchain=entry.toolchain,
                cancel_token=token,
            )

        summary_path = write_run_summary(run, settings.run_dir)
        return EntryRun(
            entry=entry,
            run=run,
            run_dir=settings.run_dir,
            cache_key=prepared.cache.key,
            summary_path=summary_path,
        )


__all__ = [
    "ABORTED_EXIT_CODE",
    "EntryRun",
    "GateReport",
    "GateRunner",
    "PreparedEntry",
    "exit_code_for",
]
