"""
pushgate — configuration-driven pipeline builder

File: src/pushgate/gate/builder.py
Last updated: 2026-10-19

Purpose
- Turn the validated ``[pipelines.<name>]`` tables into immutable ``Stage`` lists.

What should be included in this file
- ``StageDefinition`` / ``PipelineDefinition``: typed views over config entries.
- ``RunSettings``: the explicit per-run inputs (project, toolchain, run dir, cache key,
  target dir, pipeline env) that command templates and stage environments are derived from.
  With a ``target_dir``, build output and raw coverage dumps stay inside the entry.
- ``PipelineBuilder``: maps each stage kind to its ``StageAction``.

Template expansion
- Command templates are split with ``shlex`` first, then each token is formatted with
  the run's template values, so a value containing spaces never becomes two arguments.
- Unknown placeholders and ``{toolchain}`` without a toolchain raise ``PipelineBuildError``.
"""

from __future__ import annotations

import shlex
import string
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

from pushgate.constants import (
    CACHE_KEY_ENV,
    PROJECT_ENV,
    RUN_DIR_ENV,
    TARGET_DIR_ENV,
    TOOLCHAIN_ENV,
)
from pushgate.coverage.collector import CoverageCollector, CoverageSettings
from pushgate.gate.actions import CommandAction, CoverageAction, PublishAction
from pushgate.pipeline.executor import CommandExecutor
from pushgate.pipeline.stages import Stage, StageKind
from pushgate.publish.codecov import PublishDestination, ReportPublisher

_FORMATTER = string.Formatter()


class PipelineBuildError(ValueError):
    """Raised when a configured pipeline cannot be turned into stages."""


@dataclass(frozen=True, slots=True)
class StageDefinition:
    """Declarative stage entry: ``{name, kind, command, fatal, hint, timeout_seconds}``."""

    name: str
    kind: StageKind = StageKind.COMMAND
    command: str | None = None
    fatal: bool = True
    hint: str | None = None
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", StageKind(self.kind))
        if self.kind is StageKind.COMMAND and not self.command:
            raise PipelineBuildError(f"stage {self.name!r}: command stages require a command")
        if self.kind is not StageKind.COMMAND and self.command:
            raise PipelineBuildError(f"stage {self.name!r}: {self.kind} stages take no command")

    @classmethod
    def from_config(cls, entry: Mapping[str, Any]) -> StageDefinition:
        timeout = entry.get("timeout_seconds")
        return cls(
            name=str(entry["name"]),
            kind=StageKind(str(entry.get("kind", StageKind.COMMAND))),
            command=entry.get("command"),
            fatal=bool(entry.get("fatal", True)),
            hint=entry.get("hint"),
            timeout_seconds=None if timeout is None else float(timeout),
        )


@dataclass(frozen=True, slots=True)
class PipelineDefinition:
    """A named, ordered stage list plus the env forwarded to every stage."""

    name: str
    stages: tuple[StageDefinition, ...]
    env: Mapping[str, str] = field(default_factory=dict)
    description: str | None = None
    toolchains: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        if not self.stages:
            raise PipelineBuildError(f"pipeline {self.name!r} has no stages")
        seen: set[str] = set()
        for stage in self.stages:
            if stage.name in seen:
                raise PipelineBuildError(
                    f"pipeline {self.name!r}: duplicate stage name {stage.name!r}"
                )
            seen.add(stage.name)
        object.__setattr__(self, "stages", tuple(self.stages))
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))
        if self.toolchains is not None:
            object.__setattr__(self, "toolchains", tuple(self.toolchains))

    @classmethod
    def from_config(cls, name: str, section: Mapping[str, Any]) -> PipelineDefinition:
        toolchains = section.get("toolchains")
        return cls(
            name=name,
            stages=tuple(StageDefinition.from_config(item) for item in section["stages"]),
            env={str(key): str(value) for key, value in section.get("env", {}).items()},
            description=section.get("description"),
            toolchains=None if toolchains is None else tuple(toolchains),
        )

    def has_kind(self, kind: StageKind) -> bool:
        return any(stage.kind is kind for stage in self.stages)

    def stage_names(self) -> tuple[str, ...]:
        return tuple(stage.name for stage in self.stages)


def pipeline_definitions(config: Mapping[str, Any]) -> dict[str, PipelineDefinition]:
    """Return every configured pipeline keyed by name, in name order."""

    pipelines = config.get("pipelines", {})
    return {
        name: PipelineDefinition.from_config(name, pipelines[name]) for name in sorted(pipelines)
    }


def get_pipeline(config: Mapping[str, Any], name: str) -> PipelineDefinition:
    definitions = pipeline_definitions(config)
    if name not in definitions:
        known = ", ".join(definitions) or "<none>"
        raise PipelineBuildError(f"unknown pipeline {name!r}; configured pipelines: {known}")
    return definitions[name]


@dataclass(frozen=True, slots=True)
class RunSettings:
    """Explicit inputs of one pipeline run. Nothing is read from ``os.environ`` later."""

    project: str
    repo_root: Path
    run_dir: Path
    toolchain: str | None = None
    cache_key: str | None = None
    target_dir: Path | None = None
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.project.strip():
            raise PipelineBuildError("project name must be non-empty")
        object.__setattr__(self, "repo_root", Path(self.repo_root))
        object.__setattr__(self, "run_dir", Path(self.run_dir))
        if self.target_dir is not None:
            object.__setattr__(self, "target_dir", Path(self.target_dir))
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    @property
    def project_underscore(self) -> str:
        return self.project.replace("-", "_")

    @property
    def coverage_root(self) -> Path:
        """Where instrumented runs leave raw dumps: the entry target dir, else the repo."""
        return self.target_dir if self.target_dir is not None else self.repo_root

    def template_values(self) -> dict[str, str]:
        values = {
            "project": self.project,
            "project_underscore": self.project_underscore,
            "repo_root": str(self.repo_root),
            "run_dir": str(self.run_dir),
        }
        if self.toolchain is not None:
            values["toolchain"] = self.toolchain
        if self.cache_key is not None:
            values["cache_key"] = self.cache_key
        if self.target_dir is not None:
            values["target_dir"] = str(self.target_dir)
        return values

    def stage_env(self) -> dict[str, str]:
        """Pipeline env plus the ``PUSHGATE_*`` and target-dir variables for every stage."""

        env = dict(self.env)
        env[PROJECT_ENV] = self.project
        env[RUN_DIR_ENV] = str(self.run_dir)
        if self.toolchain is not None:
            env[TOOLCHAIN_ENV] = self.toolchain
        if self.cache_key is not None:
            env[CACHE_KEY_ENV] = self.cache_key
        if self.target_dir is not None:
            env[TARGET_DIR_ENV] = str(self.target_dir)
        return env


def expand_command(template: str, values: Mapping[str, str]) -> tuple[str, ...]:
    """Split ``template`` into argv and substitute ``{placeholder}`` values per token."""

    try:
        tokens = shlex.split(template)
    except ValueError as exc:
        raise PipelineBuildError(f"cannot split command {template!r}: {exc}") from exc
    argv: list[str] = []
    for token in tokens:
        try:
            argv.append(_FORMATTER.vformat(token, (), values))
        except KeyError as exc:
            missing = exc.args[0] if exc.args else "?"
            raise PipelineBuildError(
                f"command {template!r} needs {{{missing}}}, which is not available for this run"
            ) from exc
        except (IndexError, ValueError) as exc:
            raise PipelineBuildError(f"invalid placeholder in command {template!r}: {exc}") from exc
    if not argv:
        raise PipelineBuildError("command template is empty")
    return tuple(argv)


class PipelineBuilder:
    """Builds ``Stage`` tuples from ``PipelineDefinition`` + ``RunSettings``."""

    def __init__(
        self,
        config: Mapping[str, Any],
        *,
        executor: CommandExecutor,
        publisher: ReportPublisher,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._config = config
        self._executor = executor
        self._publisher = publisher
        self._environ = dict(environ or {})

    def build(self, definition: PipelineDefinition, settings: RunSettings) -> tuple[Stage, ...]:
        values = settings.template_values()
        stages: list[Stage] = []
        collector: CoverageCollector | None = None
        for entry in definition.stages:
            if entry.kind is StageKind.COMMAND:
                action: CommandAction | CoverageAction | PublishAction = CommandAction(
                    expand_command(str(entry.command), values),
                    executor=self._executor,
                    cwd=settings.repo_root,
                )
                fatal = entry.fatal
            elif entry.kind is StageKind.COVERAGE:
                collector = self.collector_for(settings)
                action = CoverageAction(collector, raw_data_locations=(settings.coverage_root,))
                fatal = entry.fatal
            else:
                destination = self.destination_for(settings)
                report_path = (collector or self.collector_for(settings)).output_path
                action = PublishAction(self._publisher, destination, report_path=report_path)
                fatal = destination.fail_ci_if_error
            stages.append(
                Stage(
                    name=entry.name,
                    action=action,
                    fatal=fatal,
                    hint=entry.hint,
                    timeout_seconds=entry.timeout_seconds,
                    kind=entry.kind,
                )
            )
        return tuple(stages)

    def collector_for(self, settings: RunSettings) -> CoverageCollector:
        coverage_settings = CoverageSettings.from_config(
            self._config.get("coverage", {}),
            project=settings.project,
            repo_root=settings.repo_root,
            raw_root=settings.target_dir,
        )
        return CoverageCollector(
            coverage_settings,
            executor=self._executor,
            output_dir=settings.run_dir,
        )

    def destination_for(self, settings: RunSettings) -> PublishDestination:
        slug = self._config.get("project", {}).get("slug") or self._environ.get(
            "GITHUB_REPOSITORY", ""
        ).strip()
        if not slug:
            raise PipelineBuildError(
                "publish stages need project.slug (or GITHUB_REPOSITORY) to identify the upload"
            )
        return PublishDestination.from_config(
            self._config.get("publish", {}),
            slug=slug,
            environ=self._environ,
        )


__all__ = [
    "PipelineBuildError",
    "PipelineBuilder",
    "PipelineDefinition",
    "RunSettings",
    "StageDefinition",
    "expand_command",
    "get_pipeline",
    "pipeline_definitions",
]
