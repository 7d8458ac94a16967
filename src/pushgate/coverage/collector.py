"""
pushgate — coverage collector

File: src/pushgate/coverage/collector.py
Last updated: 2026-10-19

Purpose
- Remove stale raw coverage dumps before the instrumented test stage runs.
- After tests: discover raw dumps by project-prefixed glob, package them into an
  uncompressed zip archive, run the external merge tool, and parse its lcov output.

Failure policy
- ``CollectionFailure`` is raised when no raw dumps exist, the merge tool cannot be
  started or exits non-zero, its output file is missing or unparsable, or the merged
  report is empty. An empty report is never returned.
"""

from __future__ import annotations

import shlex
import string
import zipfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from pushgate.coverage.report import CoverageFormatError, CoverageReport
from pushgate.pipeline.executor import CommandExecutor, CommandSpec, OutputSink
from pushgate.utils.fs import ensure_directory, remove_within

DEFAULT_STALE_PATTERNS: tuple[str, ...] = ("**/*.gcda",)
DEFAULT_RAW_PATTERN = "{project_underscore}*.gc*"
DEFAULT_MERGE_COMMAND = (
    'grcov {archive} -s {repo_root} -t lcov --llvm --ignore-not-existing --ignore "/*" '
    "-o {output}"
)
_FORMATTER = string.Formatter()


class CollectionFailure(RuntimeError):
    """Raised when raw coverage cannot be turned into a non-empty report."""


@dataclass(frozen=True, slots=True)
class CoverageSettings:
    """Static collector configuration for one project."""

    project: str
    repo_root: Path
    stale_patterns: tuple[str, ...] = DEFAULT_STALE_PATTERNS
    raw_pattern: str = DEFAULT_RAW_PATTERN
    archive_name: str = "ccov.zip"
    output_name: str = "lcov.info"
    merge_command: str = DEFAULT_MERGE_COMMAND
    raw_root: Path | None = None

    def __post_init__(self) -> None:
        if not self.project.strip():
            raise ValueError("CoverageSettings.project must be non-empty")
        object.__setattr__(self, "repo_root", Path(self.repo_root))
        if self.raw_root is not None:
            object.__setattr__(self, "raw_root", Path(self.raw_root))
        object.__setattr__(self, "stale_patterns", tuple(self.stale_patterns))
        for name in (self.archive_name, self.output_name):
            if not name or Path(name).name != name:
                raise ValueError("archive/output names must be plain file names")

    @property
    def project_underscore(self) -> str:
        return self.project.replace("-", "_")

    @property
    def raw_data_root(self) -> Path:
        return self.raw_root if self.raw_root is not None else self.repo_root

    def raw_glob(self) -> str:
        return self.raw_pattern.format(
            project=self.project,
            project_underscore=self.project_underscore,
        )

    @classmethod
    def from_config(
        cls,
        section: Mapping[str, Any],
        *,
        project: str,
        repo_root: Path,
        raw_root: Path | None = None,
    ) -> CoverageSettings:
        return cls(
            project=project,
            repo_root=repo_root,
            raw_root=raw_root,
            stale_patterns=tuple(section.get("stale_patterns", DEFAULT_STALE_PATTERNS)),
            raw_pattern=str(section.get("raw_pattern", DEFAULT_RAW_PATTERN)),
            archive_name=str(section.get("archive_name", "ccov.zip")),
            output_name=str(section.get("output_name", "lcov.info")),
            merge_command=str(section.get("merge_command", DEFAULT_MERGE_COMMAND)),
        )


class CoverageCollector:
    """Turns raw instrumentation dumps into a ``CoverageReport``."""

    def __init__(
        self,
        settings: CoverageSettings,
        *,
        executor: CommandExecutor,
        output_dir: Path,
        logger: Any | None = None,
    ) -> None:
        self._settings = settings
        self._executor = executor
        self._output_dir = Path(output_dir)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def settings(self) -> CoverageSettings:
        return self._settings

    @property
    def archive_path(self) -> Path:
        return self._output_dir / self._settings.archive_name

    @property
    def output_path(self) -> Path:
        return self._output_dir / self._settings.output_name

    def remove_stale(self) -> tuple[Path, ...]:
        """Delete raw dumps left over from previous runs below the raw-data root."""

        root = self._settings.raw_data_root
        removed: list[Path] = []
        for pattern in self._settings.stale_patterns:
            for candidate in sorted(root.glob(pattern)):
                if candidate.is_file() and remove_within(candidate, root):
                    removed.append(candidate)
        self._logger.info(
            "coverage_stale_removed",
            count=len(removed),
            patterns=list(self._settings.stale_patterns),
        )
        return tuple(removed)

    def discover(self, raw_data_locations: Sequence[Path] = ()) -> tuple[Path, ...]:
        """Return raw dumps matching the project-prefixed glob, sorted and de-duplicated."""

        locations = tuple(raw_data_locations) or (self._settings.raw_data_root,)
        pattern = self._settings.raw_glob()
        found: set[Path] = set()
        for location in locations:
            base = Path(location)
            if base.is_file():
                if base.match(pattern):
                    found.add(base.resolve())
                continue
            if not base.is_dir():
                continue
            for candidate in base.rglob(pattern):
                if candidate.is_file():
                    found.add(candidate.resolve())
        return tuple(sorted(found))

    def package(self, raw_files: Sequence[Path]) -> Path:
        """Store ``raw_files`` uncompressed, keyed by repo- or raw-root-relative path."""

        ensure_directory(self._output_dir)
        roots = (
            self._settings.repo_root.resolve(),
            self._settings.raw_data_root.resolve(),
        )
        archive = self.archive_path
        with zipfile.ZipFile(archive, "w", compression=zipfile.ZIP_STORED) as bundle:
            for path in raw_files:
                bundle.write(path, arcname=_archive_name(path, roots))
        return archive

    def merge_argv(self, archive: Path) -> tuple[str, ...]:
        values = {
            "archive": str(archive),
            "output": str(self.output_path),
            "repo_root": str(self._settings.repo_root),
            "project": self._settings.project,
            "project_underscore": self._settings.project_underscore,
        }
        argv: list[str] = []
        for token in shlex.split(self._settings.merge_command):
            try:
                argv.append(_FORMATTER.vformat(token, (), values))
            except (KeyError, IndexError) as exc:
                raise CollectionFailure(
                    f"merge command references unknown placeholder {exc}"
                ) from exc
        if not argv:
            raise CollectionFailure("merge command is empty")
        return tuple(argv)

    async def merge(
        self,
        archive: Path,
        *,
        env: Mapping[str, str] | None = None,
        on_output: OutputSink | None = None,
    ) -> CoverageReport:
        """Run the merge tool over ``archive`` and parse the lcov file it writes."""

        output = self.output_path
        if output.exists():
            output.unlink()
        spec = CommandSpec(
            argv=self.merge_argv(archive),
            cwd=str(self._settings.repo_root),
            env=dict(env or {}),
        )
        result = await self._executor.run(spec, on_output=on_output)
        if result.error is not None:
            raise CollectionFailure(f"merge tool could not be started: {result.error}")
        if result.exit_code != 0:
            raise CollectionFailure(f"merge tool exited with status {result.exit_code}")
        if not output.is_file():
            raise CollectionFailure(f"merge tool did not produce {output}")

        try:
            return CoverageReport.load(output)
        except CoverageFormatError as exc:
            raise CollectionFailure(f"merged report {output} is not valid lcov: {exc}") from exc

    async def collect(
        self,
        raw_data_locations: Sequence[Path] = (),
        *,
        env: Mapping[str, str] | None = None,
        on_output: OutputSink | None = None,
    ) -> CoverageReport:
        raw_files = self.discover(raw_data_locations)
        if not raw_files:
            raise CollectionFailure(
                f"no raw coverage files matching {self._settings.raw_glob()!r} were found"
            )
        self._logger.info("coverage_raw_discovered", count=len(raw_files))

        archive = self.package(raw_files)
        report = await self.merge(archive, env=env, on_output=on_output)
        if report.is_empty:
            raise CollectionFailure("merged coverage report is empty")

        self._logger.info(
            "coverage_collected",
            files=len(report.per_file),
            lines_hit=report.lines_hit,
            lines_total=report.lines_total,
            report_path=str(self.output_path),
        )
        return report


def _archive_name(path: Path, roots: Sequence[Path]) -> str:
    for root in roots:
        if path.is_relative_to(root):
            return path.relative_to(root).as_posix()
    return path.name


__all__ = [
    "CollectionFailure",
    "CoverageCollector",
    "CoverageSettings",
    "DEFAULT_MERGE_COMMAND",
    "DEFAULT_RAW_PATTERN",
    "DEFAULT_STALE_PATTERNS",
]
