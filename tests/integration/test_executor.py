"""
pushgate — integration tests for the local subprocess executor

File: tests/integration/test_executor.py
Last updated: 2026-10-19

Purpose
- Exercise ``LocalSubprocessExecutor`` and ``CommandAction`` against real child processes.

What this test file should cover
- Combined stdout/stderr capture, exit codes, env and cwd forwarding.
- Spawn failures reported as results instead of exceptions.
- Cancellation and stage deadlines terminate the whole process group.
- A command ends with its leader; background descendants holding stdout are killed.
- Output truncation and redaction.

Functional requirements
- Children are ``sys.executable -c`` snippets; no toolchain needed.

Non-functional requirements
- Each test finishes within a few seconds.
"""

from __future__ import annotations

import asyncio
import sys
import textwrap
import time
from pathlib import Path

import pytest

from pushgate.gate.actions import CommandAction
from pushgate.observability.logging import redact_text
from pushgate.pipeline.engine import PipelineEngine
from pushgate.pipeline.executor import CommandSpec, LocalSubprocessExecutor
from pushgate.pipeline.stages import Stage, StageStatus

pytestmark = pytest.mark.integration


def _python(code: str) -> tuple[str, ...]:
    return (sys.executable, "-c", textwrap.dedent(code))


class _QuietLogger:
    def info(self, event: str, **fields: object) -> None:
        return None

    warning = info


async def test_captures_combined_output_in_order() -> None:
    executor = LocalSubprocessExecutor()
    spec = CommandSpec(
        argv=_python(
            """
            import sys
            print("compiling", flush=True)
            print("warning: unused import", file=sys.stderr, flush=True)
            print("finished", flush=True)
            """
        )
    )

    result = await executor.run(spec)

    assert result.is_success()
    assert result.output == "compiling\nwarning: unused import\nfinished\n"
    assert result.duration_ms >= 0


async def test_reports_nonzero_exit_status() -> None:
    executor = LocalSubprocessExecutor()

    result = await executor.run(CommandSpec(argv=_python("import sys; sys.exit(101)")))

    assert result.spawned
    assert result.exit_code == 101
    assert not result.is_success()


async def test_forwards_env_and_cwd(tmp_path: Path) -> None:
    executor = LocalSubprocessExecutor()
    spec = CommandSpec(
        argv=_python(
            """
            import os
            print(os.environ["CARGO_INCREMENTAL"])
            print(os.getcwd())
            """
        ),
        cwd=str(tmp_path),
        env={"CARGO_INCREMENTAL": "0"},
    )

    result = await executor.run(spec)

    first, second = result.output.splitlines()
    assert first == "0"
    assert Path(second).resolve() == tmp_path.resolve()


async def test_missing_binary_is_a_spawn_error() -> None:
    executor = LocalSubprocessExecutor()

    result = await executor.run(CommandSpec(argv=("pushgate-no-such-binary-for-tests",)))

    assert not result.spawned
    assert result.exit_code is None
    assert result.error is not None
    assert result.error.startswith("pushgate-no-such-binary-for-tests")


async def test_output_is_truncated_from_the_front_and_redacted() -> None:
    executor = LocalSubprocessExecutor(max_output_chars=40, redactor=redact_text)
    spec = CommandSpec(
        argv=_python(
            """
            print("x" * 200)
            print("token=abcdef")
            """
        )
    )

    result = await executor.run(spec)

    assert result.output.startswith("...[truncated ")
    assert result.output.endswith("token=***REDACTED***\n")
    assert "abcdef" not in result.output


async def test_cancellation_kills_the_whole_process_group(tmp_path: Path) -> None:
    marker = tmp_path / "grandchild-survived"
    executor = LocalSubprocessExecutor(kill_grace_seconds=0.5)
    spec = CommandSpec(
        argv=_python(
            f"""
            import subprocess, sys, time
            subprocess.Popen([
                sys.executable,
                "-c",
                "import pathlib, time; time.sleep(1.0); pathlib.Path({str(marker)!r}).write_text('x')",
            ])
            print("ready", flush=True)
            time.sleep(60)
            """
        )
    )
    ready = asyncio.Event()

    def on_output(text: str) -> None:
        if "ready" in text:
            ready.set()

    task = asyncio.create_task(executor.run(spec, on_output=on_output))
    await asyncio.wait_for(ready.wait(), timeout=10)
    started = time.monotonic()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert time.monotonic() - started < 5

    await asyncio.sleep(1.5)
    assert not marker.exists()


async def test_background_descendant_holding_stdout_does_not_block(tmp_path: Path) -> None:
    marker = tmp_path / "background-survived"
    executor = LocalSubprocessExecutor()
    spec = CommandSpec(
        argv=_python(
            f"""
            import subprocess, sys
            subprocess.Popen([
                sys.executable,
                "-c",
                "import pathlib, time; time.sleep(3.0); pathlib.Path({str(marker)!r}).write_text('x')",
            ])
            print("tests passed", flush=True)
            """
        )
    )
    started = time.monotonic()

    result = await asyncio.wait_for(executor.run(spec), timeout=20)

    assert result.is_success()
    assert result.output == "tests passed\n"
    assert time.monotonic() - started < 2.5

    await asyncio.sleep(3.5)
    assert not marker.exists()


async def test_stage_deadline_terminates_a_real_command() -> None:
    executor = LocalSubprocessExecutor(kill_grace_seconds=0.5)
    action = CommandAction(
        _python(
            """
            import time
            print("running 1 test", flush=True)
            time.sleep(60)
            """
        ),
        executor=executor,
    )
    engine = PipelineEngine(logger=_QuietLogger())
    started = time.monotonic()

    run = await engine.run([Stage(name="test", action=action, timeout_seconds=1.0)])

    result = run.stages_run[0]
    assert result.status is StageStatus.TIMEOUT
    assert result.exit_status == 124
    assert "running 1 test" in result.output
    assert time.monotonic() - started < 10


async def test_unstartable_command_stage_is_an_error_with_exit_127() -> None:
    action = CommandAction(
        ("pushgate-no-such-binary-for-tests", "--all-targets"),
        executor=LocalSubprocessExecutor(),
    )
    engine = PipelineEngine(logger=_QuietLogger())

    run = await engine.run([Stage(name="clippy", action=action, hint="Fix clippy issues.")])

    result = run.stages_run[0]
    assert result.status is StageStatus.ERROR
    assert result.exit_status == 127
    assert result.reason is not None
    assert result.reason.startswith("could not start command:")
    assert run.outcome.stage == "clippy"


async def test_failing_command_stage_reason_names_the_program() -> None:
    action = CommandAction(_python("import sys; sys.exit(2)"), executor=LocalSubprocessExecutor())
    engine = PipelineEngine(logger=_QuietLogger())

    run = await engine.run([Stage(name="lint", action=action)])

    assert run.stages_run[0].reason == f"{sys.executable} exited with status 2"
