"""
pushgate — stage action implementations

File: src/pushgate/gate/actions.py
Last updated: 2026-10-19

Purpose
- The three ``StageAction`` variants a pipeline is built from: run an external command,
  collect coverage, and publish the collected report.

Behavior
- Every action streams output through ``StageContext.emit`` and reports an
  ``ActionOutcome``; domain failures (non-zero exit, ``CollectionFailure``, failed upload)
  become failing outcomes with a reason rather than exceptions.
- A command that cannot be started is reported with status ``error`` and exit 127.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from pushgate.constants import ACTION_ERROR_EXIT_STATUS, SPAWN_ERROR_EXIT_STATUS
from pushgate.coverage.collector import CollectionFailure, CoverageCollector
from pushgate.coverage.report import CoverageFormatError, CoverageReport
from pushgate.pipeline.executor import CommandExecutor, CommandSpec
from pushgate.pipeline.stages import ActionOutcome, StageContext, StageStatus
from pushgate.publish.codecov import PublishDestination, ReportPublisher


class CommandAction:
    """Run one argv through a ``CommandExecutor`` with the stage's env."""

    def __init__(
        self,
        argv: Sequence[str],
        *,
        executor: CommandExecutor,
        cwd: Path | str | None = None,
    ) -> None:
        if not argv:
            raise ValueError("CommandAction.argv must name a program")
        self._argv = tuple(argv)
        self._executor = executor
        self._cwd = None if cwd is None else str(cwd)

    @property
    def argv(self) -> tuple[str, ...]:
        return self._argv

    def describe(self) -> str:
        return " ".join(self._argv)

    async def run(self, context: StageContext) -> ActionOutcome:
        spec = CommandSpec(argv=self._argv, cwd=self._cwd, env=dict(context.env))
        result = await self._executor.run(spec, on_output=context.emit)
        if result.error is not None:
            return ActionOutcome(
                exit_status=SPAWN_ERROR_EXIT_STATUS,
                output=result.output,
                reason=f"could not start command: {result.error}",
                status=StageStatus.ERROR,
            )
        exit_code = result.exit_code if result.exit_code is not None else ACTION_ERROR_EXIT_STATUS
        reason = None if exit_code == 0 else f"{self._argv[0]} exited with status {exit_code}"
        return ActionOutcome(exit_status=exit_code, output=result.output, reason=reason)


class CoverageAction:
    """Package raw coverage dumps and merge them into an lcov report."""

    def __init__(
        self,
        collector: CoverageCollector,
        *,
        raw_data_locations: Sequence[Path] = (),
    ) -> None:
        self._collector = collector
        self._locations = tuple(Path(item) for item in raw_data_locations)

    @property
    def collector(self) -> CoverageCollector:
        return self._collector

    def describe(self) -> str:
        pattern = self._collector.settings.raw_glob()
        return f"collect coverage ({pattern}) -> {self._collector.output_path}"

    async def run(self, context: StageContext) -> ActionOutcome:
        try:
            report = await self._collector.collect(
                self._locations,
                env=context.env,
                on_output=context.emit,
            )
        except CollectionFailure as exc:
            return ActionOutcome(exit_status=ACTION_ERROR_EXIT_STATUS, reason=str(exc))
        context.emit(f"coverage: {report.summary()}\n")
        return ActionOutcome(exit_status=0)


class PublishAction:
    """Upload the lcov report written by the coverage stage."""

    def __init__(
        self,
        publisher: ReportPublisher,
        destination: PublishDestination,
        *,
        report_path: Path,
    ) -> None:
        self._publisher = publisher
        self._destination = destination
        self._report_path = Path(report_path)

    @property
    def destination(self) -> PublishDestination:
        return self._destination

    def describe(self) -> str:
        destination = self._destination
        return f"upload {self._report_path.name} to {destination.service_url} ({destination.slug})"

    async def run(self, context: StageContext) -> ActionOutcome:
        if not self._report_path.is_file():
            return ActionOutcome(
                exit_status=ACTION_ERROR_EXIT_STATUS,
                reason=f"coverage report {self._report_path} does not exist",
            )
        try:
            report = CoverageReport.load(self._report_path)
        except CoverageFormatError as exc:
            return ActionOutcome(
                exit_status=ACTION_ERROR_EXIT_STATUS,
                reason=f"coverage report {self._report_path} is not valid lcov: {exc}",
            )

        result = await self._publisher.publish(report, self._destination)
        if not result.success:
            return ActionOutcome(exit_status=ACTION_ERROR_EXIT_STATUS, reason=result.error)
        context.emit(f"uploaded coverage for {result.slug}: {result.report_url}\n")
        return ActionOutcome(exit_status=0)


__all__ = ["CommandAction", "CoverageAction", "PublishAction"]
