"""Command-line interface router for pushgate."""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pushgate.config import (
    ConfigLoadError,
    ConfigValidationError,
    effective_config,
    load_config,
)
from pushgate.constants import PRE_PUSH_PIPELINE
from pushgate.gate.builder import (
    PipelineBuildError,
    PipelineDefinition,
    get_pipeline,
    pipeline_definitions,
)
from pushgate.gate.cache import describe_cache
from pushgate.gate.hooks import HookInstallError, install_hook
from pushgate.gate.matrix import select_toolchains
from pushgate.gate.runner import GateReport, GateRunner
from pushgate.gate.summary import advisory_lines, failure_lines, run_heading, stage_line
from pushgate.observability.logging import configure_structlog, setup_logging, shutdown_logging
from pushgate.pipeline.stages import StageKind
from pushgate.ui.render import CLIRenderer, create_renderer


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="pushgate",
        description=(
            "pushgate: fail-fast quality gate for git pushes and CI jobs.\n\n"
            "Common workflows:\n"
            "  pushgate install-hook        Install the git pre-push hook\n"
            "  pushgate hook                Run the local pre-push gate\n"
            "  pushgate run tests           Run a CI pipeline over its toolchain matrix\n"
            "  pushgate cache-key           Print the dependency cache key\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--repo-root",
        default=".",
        help="Repository root directory (default: current working directory).",
    )
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to pushgate TOML/YAML config (default: <repo-root>/pushgate.toml if present).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output, including captured output of failing stages.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # hook ----------------------------------------------------------------
    hook_parser = subparsers.add_parser(
        "hook",
        parents=[common],
        help="Run the local pre-push gate",
        description=(
            "Run the 'pre-push' pipeline once. Exit 0 lets the push proceed, 1 blocks it.\n"
            "Extra arguments passed by git (remote name and URL) are ignored."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    hook_parser.add_argument("git_args", nargs="*", help=argparse.SUPPRESS)
    hook_parser.set_defaults(handler=_cmd_hook)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Run a configured pipeline over its toolchain matrix",
        description=(
            "Run a named pipeline once per toolchain entry and print full diagnostics.\n\n"
            "Examples:\n"
            "  pushgate run check\n"
            "  pushgate run tests --toolchain nightly --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.add_argument("pipeline", help="Pipeline name (see 'pushgate pipelines').")
    run_parser.add_argument(
        "--toolchain",
        dest="toolchains",
        action="append",
        default=[],
        help="Toolchain matrix entry; repeat for several (default: configured matrix).",
    )
    run_parser.add_argument("--json", action="store_true", help="Emit machine-readable JSON.")
    run_parser.set_defaults(handler=_cmd_run)

    # install-hook --------------------------------------------------------
    install_parser = subparsers.add_parser(
        "install-hook",
        parents=[common],
        help="Install the git pre-push hook",
    )
    install_parser.add_argument(
        "--force",
        action="store_true",
        help="Replace an existing pre-push hook that pushgate did not install.",
    )
    install_parser.add_argument(
        "--python",
        default=None,
        help="Interpreter the hook should use (default: the current interpreter).",
    )
    install_parser.set_defaults(handler=_cmd_install_hook)

    # cache-key -----------------------------------------------------------
    cache_parser = subparsers.add_parser(
        "cache-key",
        parents=[common],
        help="Print the dependency cache key derived from lock files",
    )
    cache_parser.add_argument(
        "--pipeline",
        default=None,
        help="Use this pipeline's toolchain list when --toolchain is not given.",
    )
    cache_parser.add_argument(
        "--toolchain",
        dest="toolchains",
        action="append",
        default=[],
        help="Toolchain to compute the key for; repeat for several.",
    )
    cache_parser.add_argument("--json", action="store_true", help="Emit machine-readable JSON.")
    cache_parser.set_defaults(handler=_cmd_cache_key)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show the redacted effective configuration",
    )
    config_parser.add_argument("--json", action="store_true", help="Emit machine-readable JSON.")
    config_parser.set_defaults(handler=_cmd_config)

    # pipelines -----------------------------------------------------------
    pipelines_parser = subparsers.add_parser(
        "pipelines",
        parents=[common],
        help="List configured pipelines and their stages",
    )
    pipelines_parser.add_argument(
        "--json", action="store_true", help="Emit machine-readable JSON."
    )
    pipelines_parser.set_defaults(handler=_cmd_pipelines)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    configure_structlog()
    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


def main(argv: Sequence[str] | None = None) -> int:
    """Compatibility wrapper for main-module wiring."""

    return run_cli(argv)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_hook(args: argparse.Namespace) -> int:
    repo_root = _repo_root(args)
    config = _load_effective_config(args, repo_root)
    runner = GateRunner(config, repo_root=repo_root)

    report = _run_logged(config, lambda: runner.run_sync(None), label=PRE_PUSH_PIPELINE)

    renderer = _get_renderer(args)
    # A passing push shows only its stage summaries.
    blocked = report.exit_code != 0
    _render_report(renderer, report, include_output=renderer.verbose, headings=blocked)
    if blocked:
        renderer.fail(f"{PRE_PUSH_PIPELINE}: push blocked")
    return report.exit_code


def _cmd_run(args: argparse.Namespace) -> int:
    repo_root = _repo_root(args)
    config = _load_effective_config(args, repo_root)
    pipeline = _require_str(getattr(args, "pipeline", None), "pipeline")
    toolchains = _string_sequence(getattr(args, "toolchains", ()))
    runner = GateRunner(config, repo_root=repo_root)

    report = _run_logged(
        config,
        lambda: runner.run_sync(pipeline, toolchains=toolchains),
        label=pipeline,
    )

    if _flag(args, "json"):
        _emit_json(report.to_dict(include_output=True))
        return report.exit_code

    renderer = _get_renderer(args)
    _render_report(renderer, report, include_output=True)
    for item in report.entries:
        renderer.kv("Run directory", item.run_dir)
    if report.exit_code == 0:
        renderer.ok(pipeline)
    else:
        renderer.fail(pipeline)
    return report.exit_code


def _cmd_install_hook(args: argparse.Namespace) -> int:
    repo_root = _repo_root(args)
    try:
        target = install_hook(
            repo_root,
            force=_flag(args, "force"),
            python=_optional_str(getattr(args, "python", None)),
        )
    except HookInstallError as exc:
        raise CLIError(str(exc), exit_code=2) from exc

    renderer = _get_renderer(args)
    renderer.kv("Installed", target)
    renderer.text("The pre-push gate now runs before every 'git push'.")
    return 0


def _cmd_cache_key(args: argparse.Namespace) -> int:
    repo_root = _repo_root(args)
    config = _load_effective_config(args, repo_root)
    toolchains = _string_sequence(getattr(args, "toolchains", ()))
    pipeline_name = _optional_str(getattr(args, "pipeline", None))

    if not toolchains:
        if pipeline_name is not None:
            definition = _get_pipeline_or_fail(config, pipeline_name)
            toolchains = select_toolchains(definition, matrix_default=_matrix_default(config))
        else:
            toolchains = _matrix_default(config)

    descriptors = [
        (
            toolchain,
            describe_cache(
                config.get("cache", {}),
                repo_root=repo_root,
                toolchain=toolchain,
                environ=os.environ,
            ),
        )
        for toolchain in toolchains
    ]

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "cache-key",
                "caches": [
                    {"toolchain": toolchain, **descriptor.to_dict()}
                    for toolchain, descriptor in descriptors
                ],
            }
        )
        return 0

    renderer = _get_renderer(args)
    for _, descriptor in descriptors:
        renderer.text(descriptor.key)
    if renderer.verbose and descriptors:
        renderer.section("Cached paths:")
        renderer.items(list(descriptors[0][1].paths))
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    repo_root = _repo_root(args)
    config = _load_effective_config(args, repo_root)
    redacted = effective_config(config)

    if _flag(args, "json"):
        _emit_json({"command": "config", "config": redacted})
        return 0

    renderer = _get_renderer(args)
    renderer.text(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


def _cmd_pipelines(args: argparse.Namespace) -> int:
    repo_root = _repo_root(args)
    config = _load_effective_config(args, repo_root)
    try:
        definitions = pipeline_definitions(config)
    except PipelineBuildError as exc:
        raise CLIError(str(exc), exit_code=2) from exc

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "pipelines",
                "pipelines": [
                    {
                        "name": definition.name,
                        "description": definition.description,
                        "toolchains": list(
                            select_toolchains(definition, matrix_default=_matrix_default(config))
                        ),
                        "stages": [
                            {
                                "name": stage.name,
                                "kind": stage.kind.value,
                                "command": stage.command,
                                "fatal": stage.fatal,
                                "hint": stage.hint,
                            }
                            for stage in definition.stages
                        ],
                    }
                    for definition in definitions.values()
                ],
            }
        )
        return 0

    renderer = _get_renderer(args)
    fail_ci_if_error = bool(config.get("publish", {}).get("fail_ci_if_error", True))
    for definition in definitions.values():
        rows: list[list[str]] = []
        for stage in definition.stages:
            fatal = fail_ci_if_error if stage.kind is StageKind.PUBLISH else stage.fatal
            rows.append(
                [
                    stage.name,
                    stage.kind.value,
                    "yes" if fatal else "no",
                    stage.command or "-",
                ]
            )
        title = definition.name
        if definition.description:
            title = f"{title}: {definition.description}"
        renderer.table(["stage", "kind", "fatal", "command"], rows, title=title)
    return 0


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    """Retrieve or create a CLI renderer from the parsed namespace."""

    no_color = _flag(args, "no_color")
    verbose = _flag(args, "verbose")
    return create_renderer(no_color=no_color, verbose=verbose)


def _render_report(
    renderer: CLIRenderer,
    report: GateReport,
    *,
    include_output: bool,
    headings: bool = True,
) -> None:
    """Stage summaries on stdout; failure diagnostics and hints on stderr."""

    for run in report.runs:
        if headings:
            renderer.heading(run_heading(run))
        renderer.lines([f"  {stage_line(result)}" for result in run.stages_run])
        renderer.error_lines(advisory_lines(run, include_output=include_output))
        renderer.error_lines(failure_lines(run, include_output=include_output))


# ---------------------------------------------------------------------------
# Helpers: config, paths, execution
# ---------------------------------------------------------------------------


def _repo_root(args: argparse.Namespace) -> Path:
    raw = _require_str(getattr(args, "repo_root", None), "repo_root")
    candidate = Path(raw).expanduser().resolve()
    if not candidate.exists() or not candidate.is_dir():
        raise CLIError(f"repo root is not a directory: {candidate}", exit_code=2)
    return candidate


def _load_effective_config(args: argparse.Namespace, repo_root: Path) -> dict[str, Any]:
    config_path = _optional_str(getattr(args, "config_path", None))
    if config_path is not None and not Path(config_path).expanduser().is_absolute():
        config_path = str(repo_root / config_path)

    try:
        loaded = load_config(config_path, base_dir=repo_root)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc
    return dict(loaded)


def _get_pipeline_or_fail(config: Mapping[str, Any], name: str) -> PipelineDefinition:
    try:
        return get_pipeline(config, name)
    except PipelineBuildError as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _matrix_default(config: Mapping[str, Any]) -> tuple[str, ...]:
    return tuple(config.get("matrix", {}).get("toolchain", ()))


def _run_logged(
    config: Mapping[str, Any],
    execute: Callable[[], GateReport],
    *,
    label: str,
) -> GateReport:
    """Run ``execute`` with per-run JSON-lines logging; build errors map to exit code 2."""

    log_dir = config.get("paths", {}).get("log_dir")
    handle = setup_logging(
        config.get("observability", {}),
        run_id=_new_run_id(label),
        log_dir=log_dir,
    )
    try:
        return execute()
    except PipelineBuildError as exc:
        raise CLIError(str(exc), exit_code=2) from exc
    finally:
        shutdown_logging(handle)


def _new_run_id(label: str) -> str:
    stamp = time.strftime("%Y%m%dT%H%M%SZ", time.gmtime())
    return f"{stamp}-{label}-{os.getpid()}"


# ---------------------------------------------------------------------------
# Helpers: argument coercion
# ---------------------------------------------------------------------------


def _require_str(value: object, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise CLIError(f"missing required argument: {name}", exit_code=2)
    return value.strip()


def _optional_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


def _string_sequence(value: object) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,) if value.strip() else ()
    if isinstance(value, (list, tuple)):
        return tuple(item.strip() for item in value if isinstance(item, str) and item.strip())
    return ()


__all__ = ["CLIError", "build_parser", "main", "run_cli"]
