"""
pushgate — unit tests for run reporting

File: tests/unit/gate/test_summary.py
Last updated: 2026-10-19

Purpose
- Validate per-stage summary lines, failure diagnostics with hints, and summary.json.
"""

from __future__ import annotations

import json
from pathlib import Path

from pushgate.gate.summary import (
    SUMMARY_FILE_NAME,
    advisory_lines,
    failure_lines,
    report_lines,
    run_heading,
    stage_line,
    write_run_summary,
)
from pushgate.pipeline.stages import PipelineOutcome, PipelineRun, StageResult, StageStatus


def _passed(stage: str, duration_ms: int = 1500) -> StageResult:
    return StageResult(
        stage=stage, exit_status=0, duration_ms=duration_ms, output="", status=StageStatus.PASS
    )


def _failed_test() -> StageResult:
    return StageResult(
        stage="test",
        exit_status=101,
        duration_ms=240,
        output="running 2 tests\ntest it_adds ... FAILED\n",
        status=StageStatus.FAIL,
        hint="Fix test issues.",
        reason="cargo exited with status 101",
    )


def _failed_run() -> PipelineRun:
    return PipelineRun(
        pipeline="tests",
        stages_run=(_passed("build"), _failed_test()),
        outcome=PipelineOutcome.failed("test"),
        toolchain="nightly",
    )


def test_stage_lines() -> None:
    assert stage_line(_passed("clippy")) == "PASS    clippy [1.5s]"
    assert stage_line(_failed_test()) == "FAIL    test [0.2s]: cargo exited with status 101"

    advisory = StageResult(
        stage="upload",
        exit_status=1,
        duration_ms=3000,
        output="",
        status=StageStatus.FAIL,
        fatal=False,
        reason="coverage service answered 503",
    )
    assert stage_line(advisory) == "FAIL    upload [3.0s] (advisory): coverage service answered 503"


def test_headings() -> None:
    assert run_heading(_failed_run()) == "tests [nightly]: fail(test)"
    local = PipelineRun(
        pipeline="pre-push", stages_run=(), outcome=PipelineOutcome.passed(), toolchain=None
    )
    assert run_heading(local) == "pre-push: pass"


def test_failure_lines_name_the_stage_and_hint() -> None:
    assert failure_lines(_failed_run(), include_output=False) == [
        "Stage 'test' failed with exit status 101.",
        "Fix test issues.",
    ]


def test_failure_lines_with_output() -> None:
    lines = failure_lines(_failed_run(), include_output=True)

    assert lines[2:] == [
        "--- output of test ---",
        "running 2 tests",
        "test it_adds ... FAILED",
        "--- end of test ---",
    ]


def test_aborted_and_passing_runs() -> None:
    aborted = PipelineRun(
        pipeline="pre-push",
        stages_run=(_passed("clippy"),),
        outcome=PipelineOutcome.aborted("SIGINT", stage="test"),
    )
    passed = PipelineRun(
        pipeline="pre-push", stages_run=(_passed("clippy"),), outcome=PipelineOutcome.passed()
    )

    assert failure_lines(aborted, include_output=True) == [
        "Run aborted (SIGINT) during stage 'test'."
    ]
    assert failure_lines(passed, include_output=True) == []


def test_advisory_lines_and_full_report() -> None:
    upload = StageResult(
        stage="upload",
        exit_status=1,
        duration_ms=10,
        output="HTTP 503\n",
        status=StageStatus.FAIL,
        fatal=False,
        reason="coverage service answered 503",
    )
    run = PipelineRun(
        pipeline="tests",
        stages_run=(_passed("build"), upload),
        outcome=PipelineOutcome.passed(),
        toolchain="nightly",
    )

    assert advisory_lines(run, include_output=True) == [
        "Advisory stage 'upload' failed: coverage service answered 503",
        "  HTTP 503",
    ]
    assert report_lines(run) == [
        "tests [nightly]: pass",
        "  PASS    build [1.5s]",
        "  FAIL    upload [0.0s] (advisory): coverage service answered 503",
        "Advisory stage 'upload' failed: coverage service answered 503",
    ]


def test_write_run_summary_includes_output(tmp_path: Path) -> None:
    run_dir = tmp_path / "runs" / "tests-nightly"

    path = write_run_summary(_failed_run(), run_dir)

    assert path.name == SUMMARY_FILE_NAME
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["outcome"] == {"kind": "fail", "stage": "test", "reason": None}
    assert payload["toolchain"] == "nightly"
    assert payload["stages"][1]["output"].startswith("running 2 tests")
    assert payload["stages"][1]["hint"] == "Fix test issues."
