"""
pushgate — unit tests for stage actions

File: tests/unit/gate/test_actions.py
Last updated: 2026-10-19

Purpose
- Validate that command, coverage and publish actions turn their domain failures into
  failing ``ActionOutcome`` values with a reason.
"""

from __future__ import annotations

from pathlib import Path

from pushgate.coverage.collector import CoverageCollector, CoverageSettings
from pushgate.coverage.report import CoverageReport
from pushgate.gate.actions import CommandAction, CoverageAction, PublishAction
from pushgate.pipeline.executor import CommandResult, CommandSpec, OutputSink
from pushgate.pipeline.stages import StageContext, StageStatus
from pushgate.publish.codecov import PublishDestination, PublishResult, ReportPublisher
from pushgate.utils.concurrency import CancellationToken

LCOV = "SF:src/lib.rs\nDA:1,1\nDA:2,1\nDA:3,0\nend_of_record\n"


class _QuietLogger:
    def info(self, event: str, **fields: object) -> None:
        return None

    warning = info


class ScriptedExecutor:
    def __init__(
        self,
        *,
        exit_code: int | None = 0,
        output: str = "",
        error: str | None = None,
        lcov: str | None = None,
    ) -> None:
        self.exit_code = exit_code
        self.output = output
        self.error = error
        self.lcov = lcov
        self.specs: list[CommandSpec] = []

    async def run(self, spec: CommandSpec, *, on_output: OutputSink | None = None) -> CommandResult:
        self.specs.append(spec)
        if self.error is not None:
            return CommandResult(
                argv=spec.argv, exit_code=None, output="", duration_ms=0, error=self.error
            )
        if self.lcov is not None and "-o" in spec.argv:
            Path(spec.argv[spec.argv.index("-o") + 1]).write_text(self.lcov, encoding="utf-8")
        if on_output is not None:
            on_output(self.output)
        return CommandResult(
            argv=spec.argv, exit_code=self.exit_code, output=self.output, duration_ms=5
        )


class FakePublisher(ReportPublisher):
    def __init__(self, *, error: str | None = None) -> None:
        super().__init__(logger=_QuietLogger())
        self.error = error
        self.published: list[CoverageReport] = []

    async def publish(
        self, report: CoverageReport, destination: PublishDestination
    ) -> PublishResult:
        self.published.append(report)
        if self.error is not None:
            return PublishResult(success=False, slug=destination.slug, error=self.error)
        return PublishResult(
            success=True,
            slug=destination.slug,
            report_url="https://codecov.example.test/acme/demo/commit/1",
        )


def _context(env: dict[str, str] | None = None) -> StageContext:
    return StageContext(stage_name="stage", env=env or {}, cancel_token=CancellationToken())


def _collector(root: Path, executor: ScriptedExecutor) -> CoverageCollector:
    return CoverageCollector(
        CoverageSettings(project="demo", repo_root=root),
        executor=executor,
        output_dir=root / "run",
        logger=_QuietLogger(),
    )


async def test_command_action_passes_env_and_cwd(tmp_path: Path) -> None:
    executor = ScriptedExecutor(output="Finished\n")
    action = CommandAction(("cargo", "clippy"), executor=executor, cwd=tmp_path)
    context = _context({"CARGO_INCREMENTAL": "0"})

    outcome = await action.run(context)

    assert outcome.exit_status == 0
    assert outcome.reason is None
    assert outcome.resolved_status() is StageStatus.PASS
    assert executor.specs[0].argv == ("cargo", "clippy")
    assert executor.specs[0].cwd == str(tmp_path)
    assert executor.specs[0].env == {"CARGO_INCREMENTAL": "0"}
    assert context.captured() == "Finished\n"
    assert action.describe() == "cargo clippy"


async def test_command_action_nonzero_exit_is_a_failure() -> None:
    action = CommandAction(("cargo", "test"), executor=ScriptedExecutor(exit_code=101))

    outcome = await action.run(_context())

    assert outcome.exit_status == 101
    assert outcome.reason == "cargo exited with status 101"
    assert outcome.resolved_status() is StageStatus.FAIL


async def test_command_action_spawn_error_is_an_error_with_127() -> None:
    executor = ScriptedExecutor(error="cargo: No such file or directory")
    action = CommandAction(("cargo", "test"), executor=executor)

    outcome = await action.run(_context())

    assert outcome.exit_status == 127
    assert outcome.status is StageStatus.ERROR
    assert outcome.reason == "could not start command: cargo: No such file or directory"


async def test_coverage_action_reports_missing_raw_data_as_failure(tmp_path: Path) -> None:
    action = CoverageAction(_collector(tmp_path, ScriptedExecutor(lcov=LCOV)))

    outcome = await action.run(_context())

    assert outcome.exit_status == 1
    assert outcome.reason is not None
    assert "no raw coverage files" in outcome.reason


async def test_coverage_action_emits_the_summary(tmp_path: Path) -> None:
    (tmp_path / "demo-1.gcda").write_bytes(b"raw")
    collector = _collector(tmp_path, ScriptedExecutor(lcov=LCOV))
    action = CoverageAction(collector, raw_data_locations=(tmp_path,))
    context = _context()

    outcome = await action.run(context)

    assert outcome.exit_status == 0
    assert context.captured().endswith("coverage: 1 files, 2/3 lines (66.67%)\n")
    assert collector.output_path.is_file()
    assert "demo*.gc*" in action.describe()


async def test_publish_action_requires_the_report(tmp_path: Path) -> None:
    publisher = FakePublisher()
    action = PublishAction(
        publisher,
        PublishDestination(slug="acme/demo", token="t"),
        report_path=tmp_path / "lcov.info",
    )

    outcome = await action.run(_context())

    assert outcome.exit_status == 1
    assert outcome.reason is not None
    assert outcome.reason.endswith("does not exist")
    assert publisher.published == []


async def test_publish_action_rejects_invalid_lcov(tmp_path: Path) -> None:
    report_path = tmp_path / "lcov.info"
    report_path.write_text("DA:1,1\n", encoding="utf-8")
    action = PublishAction(
        FakePublisher(), PublishDestination(slug="acme/demo"), report_path=report_path
    )

    outcome = await action.run(_context())

    assert outcome.exit_status == 1
    assert outcome.reason is not None
    assert "is not valid lcov" in outcome.reason


async def test_publish_action_failure_carries_the_service_error(tmp_path: Path) -> None:
    report_path = tmp_path / "lcov.info"
    report_path.write_text(LCOV, encoding="utf-8")
    action = PublishAction(
        FakePublisher(error="coverage service answered 503"),
        PublishDestination(slug="acme/demo", token="t"),
        report_path=report_path,
    )

    outcome = await action.run(_context())

    assert outcome.exit_status == 1
    assert outcome.reason == "coverage service answered 503"


async def test_publish_action_success_emits_the_report_url(tmp_path: Path) -> None:
    report_path = tmp_path / "lcov.info"
    report_path.write_text(LCOV, encoding="utf-8")
    publisher = FakePublisher()
    action = PublishAction(
        publisher,
        PublishDestination(slug="acme/demo", token="t", service_url="https://codecov.io"),
        report_path=report_path,
    )
    context = _context()

    outcome = await action.run(context)

    assert outcome.exit_status == 0
    assert publisher.published[0].lines_hit == 2
    assert "https://codecov.example.test/acme/demo/commit/1" in context.captured()
    assert action.describe() == "upload lcov.info to https://codecov.io (acme/demo)"
