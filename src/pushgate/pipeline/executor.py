"""
pushgate — stage command executor

File: src/pushgate/pipeline/executor.py
Last updated: 2026-10-19

Purpose
- Defines the command invocation contract (``CommandSpec`` -> ``CommandResult``) used by
  command stages and the coverage merge step.
- Provides the local subprocess executor.

Behavior
- stdout and stderr are captured as one combined, order-preserving stream.
- Every child runs as the leader of a new session/process group. When the awaiting task
  is cancelled (pipeline abort or stage deadline), the whole group receives SIGTERM,
  then SIGKILL after the grace period, and the leader is reaped before the
  cancellation propagates.
- A command ends when its leader exits: the rest of its process group is killed and the
  pipe is drained for a bounded time, so background descendants holding the output
  pipe never keep a stage running.
- Spawn failures (missing binary, bad cwd) are reported as results, not raised.
"""

from __future__ import annotations

import asyncio
import codecs
import math
import os
import signal
import time
from collections.abc import Callable, Mapping, Sequence
from contextlib import suppress
from dataclasses import dataclass, field
from typing import NoReturn, Protocol, runtime_checkable

OutputSink = Callable[[str], None]
TextRedactor = Callable[[str], str]

_MAX_ENV_ENTRIES = 512
_READ_CHUNK_BYTES = 64 * 1024
_DEFAULT_KILL_GRACE_SECONDS = 5.0
_OUTPUT_DRAIN_SECONDS = 2.0
_EXIT_POLL_SECONDS = 0.05


def _identity_text_redactor(text: str) -> str:
    return text


@dataclass(slots=True)
class CommandSpec:
    """Portable command invocation contract."""

    argv: tuple[str, ...]
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    inherit_env: bool = True

    def __post_init__(self) -> None:
        self.argv = _as_non_empty_str_tuple(self.argv, "CommandSpec.argv")
        if self.cwd is not None:
            self.cwd = _as_str(self.cwd, "CommandSpec.cwd")
        self.env = _as_str_mapping(self.env, "CommandSpec.env")
        if not isinstance(self.inherit_env, bool):
            _fail("CommandSpec.inherit_env", "expected boolean")

    def build_env(self) -> dict[str, str]:
        if not self.inherit_env:
            return dict(self.env)
        env = dict(os.environ)
        env.update(self.env)
        return env


@dataclass(slots=True)
class CommandResult:
    """Outcome of one command invocation."""

    argv: tuple[str, ...]
    exit_code: int | None
    output: str
    duration_ms: int
    error: str | None = None

    def __post_init__(self) -> None:
        self.argv = _as_non_empty_str_tuple(self.argv, "CommandResult.argv")
        if self.duration_ms < 0:
            _fail("CommandResult.duration_ms", "must be >= 0")
        if self.error is None and self.exit_code is None:
            _fail("CommandResult.exit_code", "must be set when no spawn error is reported")

    @property
    def spawned(self) -> bool:
        return self.error is None

    def is_success(self) -> bool:
        return self.error is None and self.exit_code == 0


@runtime_checkable
class CommandExecutor(Protocol):
    """Pluggable async command execution interface."""

    async def run(
        self,
        spec: CommandSpec,
        *,
        on_output: OutputSink | None = None,
    ) -> CommandResult: ...


class LocalSubprocessExecutor(CommandExecutor):
    """Async local subprocess executor with process-group termination on cancel."""

    def __init__(
        self,
        *,
        kill_grace_seconds: float = _DEFAULT_KILL_GRACE_SECONDS,
        max_output_chars: int | None = 1_000_000,
        redactor: TextRedactor | None = None,
    ) -> None:
        if isinstance(kill_grace_seconds, bool) or not math.isfinite(kill_grace_seconds):
            _fail("LocalSubprocessExecutor.kill_grace_seconds", "must be a finite number")
        if kill_grace_seconds < 0:
            _fail("LocalSubprocessExecutor.kill_grace_seconds", "must be >= 0")
        if max_output_chars is not None and max_output_chars <= 0:
            _fail("LocalSubprocessExecutor.max_output_chars", "must be > 0")
        self._kill_grace_seconds = float(kill_grace_seconds)
        self._max_output_chars = max_output_chars
        self._redactor = redactor if redactor is not None else _identity_text_redactor

    @property
    def kill_grace_seconds(self) -> float:
        return self._kill_grace_seconds

    async def run(
        self,
        spec: CommandSpec,
        *,
        on_output: OutputSink | None = None,
    ) -> CommandResult:
        started_ns = time.monotonic_ns()

        try:
            process = await asyncio.create_subprocess_exec(
                *spec.argv,
                cwd=spec.cwd,
                env=spec.build_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as exc:
            return CommandResult(
                argv=spec.argv,
                exit_code=None,
                output="",
                duration_ms=_elapsed_ms(started_ns),
                error=self._redactor(f"{spec.argv[0]}: {exc.strerror or exc}"),
            )

        chunks: list[str] = []
        pump = asyncio.create_task(self._pump_output(process, chunks, on_output))
        try:
            exit_code = await _leader_exit(process)
        except asyncio.CancelledError:
            await terminate_process_group(process, grace_seconds=self._kill_grace_seconds)
            await _drain(pump)
            raise
        _signal_group(process.pid, signal.SIGKILL)
        await _drain(pump)

        output = self._redactor(
            _truncate_text(_normalize_output_text("".join(chunks)), self._max_output_chars)
        )
        return CommandResult(
            argv=spec.argv,
            exit_code=exit_code,
            output=output,
            duration_ms=_elapsed_ms(started_ns),
        )

    async def _pump_output(
        self,
        process: asyncio.subprocess.Process,
        chunks: list[str],
        on_output: OutputSink | None,
    ) -> None:
        stream = process.stdout
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            raw = await stream.read(_READ_CHUNK_BYTES)
            text = decoder.decode(raw, final=not raw)
            if text:
                chunks.append(text)
                if on_output is not None:
                    on_output(self._redactor(text))
            if not raw:
                return


async def terminate_process_group(
    process: asyncio.subprocess.Process,
    *,
    grace_seconds: float = _DEFAULT_KILL_GRACE_SECONDS,
) -> None:
    """SIGTERM the child's process group, SIGKILL it after ``grace_seconds``, reap the leader.

    The final SIGKILL is sent even when the leader exits within the grace period so that
    grandchildren which ignored SIGTERM do not outlive the stage.
    """

    pgid = process.pid
    _signal_group(pgid, signal.SIGTERM)
    if process.returncode is None:
        with suppress(TimeoutError):
            await asyncio.wait_for(_leader_exit(process), timeout=grace_seconds)
    _signal_group(pgid, signal.SIGKILL)
    await _leader_exit(process)


async def _leader_exit(process: asyncio.subprocess.Process) -> int:
    """Exit status of the group leader. ``Process.wait`` also waits for the pipes to close."""

    while process.returncode is None:
        await asyncio.sleep(_EXIT_POLL_SECONDS)
    return process.returncode


def _signal_group(pgid: int, signum: signal.Signals) -> None:
    with suppress(ProcessLookupError, PermissionError):
        os.killpg(pgid, signum)


async def _drain(pump: asyncio.Task[None], *, timeout: float = _OUTPUT_DRAIN_SECONDS) -> None:
    """Wait for the output pump to hit EOF; give up on pipes held by escaped descendants."""

    done, _ = await asyncio.wait({pump}, timeout=timeout)
    if not done:
        pump.cancel()
        await asyncio.wait({pump})
        return
    pump.result()


def _elapsed_ms(started_ns: int) -> int:
    delta_ns = time.monotonic_ns() - started_ns
    if delta_ns < 0:
        return 0
    return delta_ns // 1_000_000


def _normalize_output_text(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _truncate_text(text: str, max_chars: int | None) -> str:
    if max_chars is None or len(text) <= max_chars:
        return text
    omitted = len(text) - max_chars
    # Keep the tail: failure summaries from compilers and test runners come last.
    return f"...[truncated {omitted} chars]\n{text[-max_chars:]}"


def _as_str(value: object, path: str) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    if not value.strip():
        _fail(path, "must not be empty")
    return value


def _as_non_empty_str_tuple(value: object, path: str) -> tuple[str, ...]:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes, bytearray)):
        _fail(path, f"expected sequence, got {type(value).__name__}")

    parsed: list[str] = []
    for index, item in enumerate(value):
        if not isinstance(item, str):
            _fail(f"{path}[{index}]", f"expected string, got {type(item).__name__}")
        parsed.append(item)

    if not parsed or not parsed[0].strip():
        _fail(path, "must name a program")

    return tuple(parsed)


def _as_str_mapping(value: object, path: str) -> dict[str, str]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")
    if len(value) > _MAX_ENV_ENTRIES:
        _fail(path, f"contains too many entries (>{_MAX_ENV_ENTRIES})")

    parsed: dict[str, str] = {}
    for key, item in value.items():
        parsed_key = _as_str(key, f"{path}.<key>")
        if not isinstance(item, str):
            _fail(f"{path}.{parsed_key}", f"expected string, got {type(item).__name__}")
        parsed[parsed_key] = item
    return {key: parsed[key] for key in sorted(parsed)}


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


__all__ = [
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "LocalSubprocessExecutor",
    "OutputSink",
    "TextRedactor",
    "terminate_process_group",
]
