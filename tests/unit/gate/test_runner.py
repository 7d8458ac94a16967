"""
pushgate — unit tests for the gate runner

File: tests/unit/gate/test_runner.py
Last updated: 2026-10-19

Purpose
- Drive the local hook and the CI pipelines end to end against a scripted ``cargo``/``grcov``
  executor and an in-memory publisher.

What this test file should cover
- Local gate: clippy then test, both fatal; exit status 0/1.
- CI gate: build -> test -> coverage -> upload, with upload fatality from config.
- Stale raw coverage removal before the first stage.
- Toolchain matrix entries run in order with distinct run directories.
- Parallel entries build into their own target dirs and archive only their own raw dumps.
- Cancellation maps to exit status 130; configuration mistakes fail before anything runs.
"""

from __future__ import annotations

import asyncio
import json
import zipfile
from pathlib import Path
from typing import Any

import pytest

from pushgate.config.schema import assert_valid_config, default_config, merge_config
from pushgate.coverage.report import CoverageReport
from pushgate.gate.builder import PipelineBuildError
from pushgate.gate.runner import GateRunner, exit_code_for
from pushgate.pipeline.engine import PipelineEngine
from pushgate.pipeline.executor import CommandResult, CommandSpec, OutputSink
from pushgate.pipeline.stages import OutcomeKind, PipelineOutcome, PipelineRun
from pushgate.publish.codecov import PublishDestination, PublishResult, ReportPublisher
from pushgate.utils.concurrency import CancellationToken

LCOV = "SF:src/lib.rs\nDA:1,1\nDA:2,1\nDA:3,0\nend_of_record\n"


class _QuietLogger:
    def info(self, event: str, **fields: object) -> None:
        return None

    warning = info


class FakeCargo:
    """Answers ``cargo`` and ``grcov`` invocations by subcommand."""

    def __init__(self, repo: Path, *, failing: set[str] | None = None) -> None:
        self.repo = repo
        self.failing = failing or set()
        self.specs: list[CommandSpec] = []
        self.stale_seen_at_build: bool | None = None

    @staticmethod
    def subcommand(argv: tuple[str, ...]) -> str:
        if argv[0] == "grcov":
            return "grcov"
        args = [token for token in argv[1:] if not token.startswith("+")]
        return args[0]

    def calls(self) -> list[str]:
        return [self.subcommand(spec.argv) for spec in self.specs]

    def target_root(self, spec: CommandSpec) -> Path:
        return Path(spec.env.get("CARGO_TARGET_DIR", self.repo / "target"))

    async def run(self, spec: CommandSpec, *, on_output: OutputSink | None = None) -> CommandResult:
        self.specs.append(spec)
        await asyncio.sleep(0)
        name = self.subcommand(spec.argv)
        output = f"{name} output\n"
        if on_output is not None:
            on_output(output)
        if name in self.failing:
            return CommandResult(argv=spec.argv, exit_code=101, output=output, duration_ms=3)

        if name == "build":
            self.stale_seen_at_build = (self.target_root(spec) / "stale.gcda").exists()
        elif name == "test":
            deps = self.target_root(spec) / "debug" / "deps"
            deps.mkdir(parents=True, exist_ok=True)
            toolchain = spec.env.get("PUSHGATE_TOOLCHAIN", "local")
            (deps / f"demo_app-{toolchain}.gcda").write_bytes(b"raw")
            await asyncio.sleep(0)
        elif name == "grcov":
            target = Path(spec.argv[spec.argv.index("-o") + 1])
            target.write_text(LCOV, encoding="utf-8")
        return CommandResult(argv=spec.argv, exit_code=0, output=output, duration_ms=3)


class FakePublisher(ReportPublisher):
    def __init__(self, *, error: str | None = None) -> None:
        super().__init__(logger=_QuietLogger())
        self.error = error
        self.uploads: list[tuple[CoverageReport, PublishDestination]] = []

    async def publish(
        self, report: CoverageReport, destination: PublishDestination
    ) -> PublishResult:
        self.uploads.append((report, destination))
        if self.error is not None:
            return PublishResult(success=False, slug=destination.slug, error=self.error)
        return PublishResult(success=True, slug=destination.slug)


def _config(
    tmp_path: Path, *, slug: str | None = "acme/demo-app", **overlay: Any
) -> dict[str, Any]:
    project = {"name": "demo-app"} if slug is None else {"name": "demo-app", "slug": slug}
    base = merge_config(
        default_config(),
        {
            "project": project,
            "paths": {"state_dir": str(tmp_path / ".pushgate")},
        },
    )
    return assert_valid_config(merge_config(base, overlay))


def _runner(
    tmp_path: Path,
    executor: FakeCargo,
    *,
    publisher: FakePublisher | None = None,
    environ: dict[str, str] | None = None,
    slug: str | None = "acme/demo-app",
    **overlay: Any,
) -> GateRunner:
    (tmp_path / "Cargo.lock").write_text("version = 3\n", encoding="utf-8")
    return GateRunner(
        _config(tmp_path, slug=slug, **overlay),
        repo_root=tmp_path,
        executor=executor,
        publisher=publisher or FakePublisher(),
        engine=PipelineEngine(logger=_QuietLogger()),
        environ=environ if environ is not None else {"CODECOV_TOKEN": "tok", "RUNNER_OS": "Linux"},
        logger=_QuietLogger(),
    )


async def test_hook_passes_and_writes_a_summary(tmp_path: Path) -> None:
    cargo = FakeCargo(tmp_path)

    report = await _runner(tmp_path, cargo).run_hook()

    assert report.exit_code == 0
    assert cargo.calls() == ["clippy", "test"]
    (entry,) = report.entries
    assert entry.entry.toolchain is None
    assert entry.run.toolchain is None
    summary = json.loads(entry.summary_path.read_text(encoding="utf-8"))
    assert summary["pipeline"] == "pre-push"
    assert summary["outcome"]["kind"] == "pass"


async def test_hook_stops_at_clippy(tmp_path: Path) -> None:
    cargo = FakeCargo(tmp_path, failing={"clippy"})

    report = await _runner(tmp_path, cargo).run_hook()

    assert report.exit_code == 1
    assert cargo.calls() == ["clippy"]
    run = report.runs[0]
    assert run.outcome.describe() == "fail(clippy)"
    assert run.failed_result is not None
    assert run.failed_result.hint == "Fix clippy issues."


async def test_failing_tests_skip_coverage_and_upload(tmp_path: Path) -> None:
    cargo = FakeCargo(tmp_path, failing={"test"})
    publisher = FakePublisher()

    report = await _runner(tmp_path, cargo, publisher=publisher).run_pipeline("tests")

    assert report.exit_code == 1
    assert cargo.calls() == ["build", "test"]
    assert publisher.uploads == []
    assert report.runs[0].exit_statuses() == (("build", 0), ("test", 101))


async def test_full_ci_run_forwards_env_and_publishes(tmp_path: Path) -> None:
    cargo = FakeCargo(tmp_path)
    publisher = FakePublisher()

    report = await _runner(tmp_path, cargo, publisher=publisher).run_pipeline("tests")

    assert report.exit_code == 0
    assert cargo.calls() == ["build", "test", "grcov"]
    build = cargo.specs[0]
    assert build.argv == ("cargo", "+nightly", "build")
    assert build.cwd == str(tmp_path.resolve())
    assert build.env["CARGO_INCREMENTAL"] == "0"
    assert build.env["RUSTFLAGS"].startswith("-Zprofile")
    assert build.env["PUSHGATE_CACHE_KEY"].startswith("test-Linux-cargo-nightly-")
    assert build.env["PUSHGATE_TOOLCHAIN"] == "nightly"
    assert build.env["CARGO_TARGET_DIR"] == str(report.entries[0].run_dir / "target")

    (uploaded, destination) = publisher.uploads[0]
    assert uploaded.lines_hit == 2
    assert destination.slug == "acme/demo-app"
    assert destination.token == "tok"

    entry = report.entries[0]
    assert (entry.run_dir / "lcov.info").is_file()
    assert (entry.run_dir / "ccov.zip").is_file()


async def test_stale_raw_coverage_is_removed_before_build(tmp_path: Path) -> None:
    cargo = FakeCargo(tmp_path)
    runner = _runner(tmp_path, cargo)
    (prepared,) = runner.prepare("tests")
    assert prepared.settings.target_dir is not None
    stale = prepared.settings.target_dir / "stale.gcda"
    stale.parent.mkdir(parents=True)
    stale.write_bytes(b"old")

    await runner.run_pipeline("tests")

    assert cargo.stale_seen_at_build is False


async def test_parallel_entries_keep_raw_coverage_apart(tmp_path: Path) -> None:
    cargo = FakeCargo(tmp_path)
    publisher = FakePublisher()
    runner = _runner(tmp_path, cargo, publisher=publisher, matrix={"max_parallel": 2})

    report = await runner.run_pipeline("tests", toolchains=("nightly", "beta"))

    assert report.exit_code == 0
    assert [item.entry.toolchain for item in report.entries] == ["nightly", "beta"]
    target_dirs = {spec.env["CARGO_TARGET_DIR"] for spec in cargo.specs}
    assert target_dirs == {str(item.run_dir / "target") for item in report.entries}
    for item in report.entries:
        with zipfile.ZipFile(item.run_dir / "ccov.zip") as bundle:
            names = [Path(name).name for name in bundle.namelist()]
        assert names == [f"demo_app-{item.entry.toolchain}.gcda"]
    assert len(publisher.uploads) == 2


@pytest.mark.parametrize(
    ("fail_ci_if_error", "expected_exit", "expected_outcome"),
    [(False, 0, "pass"), (True, 1, "fail(upload)")],
)
async def test_upload_failure_follows_fail_ci_if_error(
    tmp_path: Path, fail_ci_if_error: bool, expected_exit: int, expected_outcome: str
) -> None:
    publisher = FakePublisher(error="coverage service answered 503 for POST codecov.io/upload/v4")

    report = await _runner(
        tmp_path,
        FakeCargo(tmp_path),
        publisher=publisher,
        publish={"fail_ci_if_error": fail_ci_if_error},
    ).run_pipeline("tests")

    assert report.exit_code == expected_exit
    run = report.runs[0]
    assert run.outcome.describe() == expected_outcome
    assert [result.stage for result in run.stages_run] == ["build", "test", "coverage", "upload"]
    assert run.stages_run[-1].passed is False


async def test_matrix_entries_run_in_order(tmp_path: Path) -> None:
    cargo = FakeCargo(tmp_path)

    report = await _runner(tmp_path, cargo).run_pipeline("check", toolchains=("stable", "beta"))

    assert [item.entry.toolchain for item in report.entries] == ["stable", "beta"]
    assert [spec.argv[1] for spec in cargo.specs] == ["+stable", "+stable", "+beta", "+beta"]
    assert len({item.run_dir for item in report.entries}) == 2
    assert report.entries[0].cache_key != report.entries[1].cache_key
    assert report.exit_code == 0


async def test_configured_matrix_is_used_without_requested_toolchains(tmp_path: Path) -> None:
    cargo = FakeCargo(tmp_path)

    report = await _runner(
        tmp_path, cargo, matrix={"toolchain": ["stable", "nightly"]}
    ).run_pipeline("check")

    assert [run.toolchain for run in report.runs] == ["stable", "nightly"]


async def test_cancelled_run_exits_130(tmp_path: Path) -> None:
    cargo = FakeCargo(tmp_path)
    token = CancellationToken()
    token.cancel("SIGINT")

    report = await _runner(tmp_path, cargo).run_hook(cancel_token=token)

    assert report.exit_code == 130
    assert cargo.specs == []
    assert report.runs[0].outcome.kind is OutcomeKind.ABORTED
    assert report.runs[0].outcome.reason == "SIGINT"


async def test_unknown_pipeline_is_a_build_error(tmp_path: Path) -> None:
    cargo = FakeCargo(tmp_path)

    with pytest.raises(PipelineBuildError, match="release"):
        await _runner(tmp_path, cargo).run_pipeline("release")
    assert cargo.specs == []


async def test_missing_slug_fails_before_anything_runs(tmp_path: Path) -> None:
    cargo = FakeCargo(tmp_path)
    runner = _runner(tmp_path, cargo, environ={"RUNNER_OS": "Linux"}, slug=None)

    with pytest.raises(PipelineBuildError, match="project.slug"):
        await runner.run_pipeline("tests")
    assert cargo.specs == []
    assert not (tmp_path / ".pushgate" / "runs").exists()


async def test_hook_rejects_toolchain_placeholders(tmp_path: Path) -> None:
    cargo = FakeCargo(tmp_path)
    runner = _runner(
        tmp_path,
        cargo,
        pipelines={
            "pre-push": {
                "stages": [{"name": "clippy", "command": "cargo +{toolchain} clippy"}],
            }
        },
    )

    with pytest.raises(PipelineBuildError, match=r"\{toolchain\}"):
        await runner.run_hook()
    assert cargo.specs == []


async def test_report_to_dict(tmp_path: Path) -> None:
    report = await _runner(tmp_path, FakeCargo(tmp_path)).run_hook()

    payload = report.to_dict()

    assert payload["pipeline"] == "pre-push"
    assert payload["exit_code"] == 0
    (entry,) = payload["entries"]
    assert entry["summary_path"].endswith("summary.json")
    assert entry["cache_key"].startswith("test-Linux-cargo-default-")
    assert "output" not in entry["stages"][0]


def test_exit_code_precedence() -> None:
    passed = PipelineRun(pipeline="a", stages_run=(), outcome=PipelineOutcome.passed())
    failed = PipelineRun(pipeline="b", stages_run=(), outcome=PipelineOutcome.failed("test"))
    aborted = PipelineRun(
        pipeline="c", stages_run=(), outcome=PipelineOutcome.aborted("SIGTERM")
    )

    assert exit_code_for([]) == 0
    assert exit_code_for([passed]) == 0
    assert exit_code_for([passed, failed]) == 1
    assert exit_code_for([failed, aborted, passed]) == 130
