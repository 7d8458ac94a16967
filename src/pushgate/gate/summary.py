"""Human-readable and JSON reporting of finished pipeline runs.

The local hook prints one summary line per stage and, on failure, the failing stage
and its remediation hint. CI runs additionally print the full captured output of the
failing stage and of advisory (non-fatal) failures.
"""

from __future__ import annotations

import json
from pathlib import Path

from pushgate.pipeline.stages import OutcomeKind, PipelineRun, StageResult
from pushgate.utils.fs import atomic_write, ensure_directory

SUMMARY_FILE_NAME = "summary.json"


def stage_line(result: StageResult) -> str:
    seconds = result.duration_ms / 1000
    marker = result.status.value.upper()
    suffix = "" if result.fatal else " (advisory)"
    line = f"{marker:<7} {result.stage} [{seconds:.1f}s]{suffix}"
    if not result.passed and result.reason:
        line = f"{line}: {result.reason}"
    return line


def run_heading(run: PipelineRun) -> str:
    label = run.pipeline if run.toolchain is None else f"{run.pipeline} [{run.toolchain}]"
    return f"{label}: {run.outcome.describe()}"


def failure_lines(run: PipelineRun, *, include_output: bool) -> list[str]:
    """Diagnostics for a run that did not pass. Empty for passing runs."""

    if run.outcome.kind is OutcomeKind.ABORTED:
        where = f" during stage '{run.outcome.stage}'" if run.outcome.stage else ""
        return [f"Run aborted ({run.outcome.reason}){where}."]

    failed = run.failed_result
    if failed is None:
        return []

    lines = [f"Stage '{failed.stage}' failed with exit status {failed.exit_status}."]
    if failed.hint:
        lines.append(failed.hint)
    if include_output and failed.output.strip():
        lines.append(f"--- output of {failed.stage} ---")
        lines.extend(failed.output.rstrip("\n").splitlines())
        lines.append(f"--- end of {failed.stage} ---")
    return lines


def advisory_lines(run: PipelineRun, *, include_output: bool) -> list[str]:
    lines: list[str] = []
    for result in run.advisory_failures:
        detail = f": {result.reason}" if result.reason else ""
        lines.append(f"Advisory stage '{result.stage}' failed{detail}")
        if include_output and result.output.strip():
            lines.extend(f"  {line}" for line in result.output.rstrip("\n").splitlines())
    return lines


def report_lines(run: PipelineRun, *, include_output: bool = False) -> list[str]:
    """Full text report: heading, per-stage lines, then failure diagnostics."""

    lines = [run_heading(run)]
    lines.extend(f"  {stage_line(result)}" for result in run.stages_run)
    lines.extend(advisory_lines(run, include_output=include_output))
    lines.extend(failure_lines(run, include_output=include_output))
    return lines


def write_run_summary(run: PipelineRun, run_dir: Path) -> Path:
    """Persist the run record (with captured output) as ``summary.json`` in ``run_dir``."""

    directory = ensure_directory(run_dir)
    target = directory / SUMMARY_FILE_NAME
    payload = json.dumps(run.to_dict(include_output=True), indent=2, sort_keys=True)
    atomic_write(target, payload + "\n")
    return target


__all__ = [
    "SUMMARY_FILE_NAME",
    "advisory_lines",
    "failure_lines",
    "report_lines",
    "run_heading",
    "stage_line",
    "write_run_summary",
]
