"""
pushgate — matrix expansion

File: src/pushgate/gate/matrix.py
Last updated: 2026-10-19

Purpose
- Expand one pipeline definition into one independent run per toolchain entry.

Invariants
- Entries keep the configured toolchain order; duplicates are dropped.
- Each entry's fingerprint is a SHA-256 over its canonical configuration, so two
  entries never share a run directory and re-running the same entry reuses it.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from pushgate.constants import RUNS_DIR_NAME
from pushgate.gate.builder import PipelineBuildError, PipelineDefinition
from pushgate.utils.hashing import fingerprint

_RUN_DIR_HASH_CHARS = 32


@dataclass(frozen=True, slots=True)
class MatrixEntry:
    """One (pipeline, toolchain) combination."""

    index: int
    pipeline: str
    toolchain: str | None
    fingerprint: str

    @property
    def label(self) -> str:
        if self.toolchain is None:
            return self.pipeline
        return f"{self.pipeline}[{self.toolchain}]"

    def run_dir(self, state_dir: Path) -> Path:
        toolchain = self.toolchain or "local"
        name = f"{self.pipeline}-{toolchain}-{self.fingerprint[:_RUN_DIR_HASH_CHARS]}"
        return Path(state_dir) / RUNS_DIR_NAME / name


def entry_fingerprint(definition: PipelineDefinition, toolchain: str | None) -> str:
    payload = {
        "pipeline": definition.name,
        "toolchain": toolchain,
        "env": dict(definition.env),
        "stages": [
            {
                "name": stage.name,
                "kind": stage.kind.value,
                "command": stage.command,
                "fatal": stage.fatal,
                "timeout_seconds": stage.timeout_seconds,
            }
            for stage in definition.stages
        ],
    }
    return fingerprint(payload)


def expand_matrix(
    definition: PipelineDefinition,
    toolchains: Sequence[str | None],
) -> tuple[MatrixEntry, ...]:
    """Return one entry per distinct toolchain, in the given order."""

    if not toolchains:
        raise PipelineBuildError(f"pipeline {definition.name!r}: the toolchain matrix is empty")

    seen: set[str | None] = set()
    entries: list[MatrixEntry] = []
    for toolchain in toolchains:
        if toolchain in seen:
            continue
        seen.add(toolchain)
        entries.append(
            MatrixEntry(
                index=len(entries),
                pipeline=definition.name,
                toolchain=toolchain,
                fingerprint=entry_fingerprint(definition, toolchain),
            )
        )
    return tuple(entries)


def select_toolchains(
    definition: PipelineDefinition,
    *,
    matrix_default: Sequence[str],
    requested: Sequence[str] = (),
) -> tuple[str, ...]:
    """CLI-requested toolchains, else the pipeline's own list, else ``matrix.toolchain``."""

    if requested:
        return tuple(requested)
    if definition.toolchains:
        return tuple(definition.toolchains)
    return tuple(matrix_default)


__all__ = ["MatrixEntry", "entry_fingerprint", "expand_matrix", "select_toolchains"]
