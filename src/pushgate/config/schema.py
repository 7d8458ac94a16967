"""
pushgate — configuration schema and validation.

File: src/pushgate/config/schema.py
Last updated: 2026-10-19

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums, and numeric constraints.
- Declarative pipeline definitions: named pipelines, each an env table plus an ordered
  list of ``{name, kind, command, fatal, hint, timeout_seconds}`` stage entries.
- Deterministic deep-merge helpers and redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject embedded secrets; tokens are referenced through ``*_env`` keys.
- Reject command templates that reference unknown placeholders.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
import re
import shlex
import string
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, NotRequired, TypedDict

from pushgate.constants import (
    CHECK_PIPELINE,
    CONFIG_SCHEMA_VERSION,
    LOG_DIR,
    PRE_PUSH_PIPELINE,
    STATE_DIR,
    TESTS_PIPELINE,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

STAGE_KINDS: Final[tuple[str, ...]] = ("command", "coverage", "publish")
COMMAND_PLACEHOLDERS: Final[frozenset[str]] = frozenset(
    {"project", "project_underscore", "toolchain", "run_dir", "repo_root", "cache_key"}
)
RAW_PATTERN_PLACEHOLDERS: Final[frozenset[str]] = frozenset({"project", "project_underscore"})
MERGE_PLACEHOLDERS: Final[frozenset[str]] = frozenset(
    {"archive", "output", "repo_root", "project", "project_underscore"}
)

_ENV_NAME_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_PIPELINE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_STAGE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
_SLUG_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_FORMATTER = string.Formatter()

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {
        "secret",
        "token",
        "password",
        "passwd",
        "api",
        "key",
        "apikey",
        "private",
        "credential",
        "credentials",
        "auth",
    }
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "refresh_token",
    "client_secret",
    "private_key",
    "password",
    "secret",
)

# Config paths that are normalized relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "state_dir"),
    ("paths", "log_dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class ProjectConfig(TypedDict, total=False):
    name: str
    slug: str


class PathsConfig(TypedDict):
    state_dir: str
    log_dir: str


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    redact_secrets: bool


class EngineConfig(TypedDict):
    kill_grace_seconds: float
    max_output_chars: int
    default_timeout_seconds: NotRequired[float]


class CoverageConfig(TypedDict):
    stale_patterns: list[str]
    raw_pattern: str
    archive_name: str
    output_name: str
    merge_command: str


class PublishConfig(TypedDict):
    service_url: str
    token_env: str
    fail_ci_if_error: bool
    timeout_seconds: float
    flags: list[str]


class CacheConfig(TypedDict):
    prefix: str
    lock_files: list[str]
    paths: list[str]


class MatrixConfig(TypedDict):
    toolchain: list[str]
    max_parallel: int


class StageEntry(TypedDict, total=False):
    name: str
    kind: Literal["command", "coverage", "publish"]
    command: str
    fatal: bool
    hint: str
    timeout_seconds: float


class PipelineConfig(TypedDict, total=False):
    description: str
    env: dict[str, str]
    toolchains: list[str]
    stages: list[StageEntry]


class GateConfig(TypedDict):
    meta: MetaConfig
    project: ProjectConfig
    paths: PathsConfig
    observability: ObservabilityConfig
    engine: EngineConfig
    coverage: CoverageConfig
    publish: PublishConfig
    cache: CacheConfig
    matrix: MatrixConfig
    pipelines: dict[str, PipelineConfig]


_COVERAGE_RUSTFLAGS: Final[str] = (
    "-Zprofile -Ccodegen-units=1 -Copt-level=0 -Clink-dead-code -Coverflow-checks=off "
    "-Zpanic_abort_tests -Cpanic=abort"
)

DEFAULT_CONFIG: Final[GateConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "project": {},
    "paths": {
        "state_dir": f"{STATE_DIR}/",
        "log_dir": f"{LOG_DIR}/",
    },
    "observability": {
        "log_level": "INFO",
        "redact_secrets": True,
    },
    "engine": {
        "kill_grace_seconds": 5.0,
        "max_output_chars": 1_000_000,
    },
    "coverage": {
        "stale_patterns": ["**/*.gcda"],
        "raw_pattern": "{project_underscore}*.gc*",
        "archive_name": "ccov.zip",
        "output_name": "lcov.info",
        "merge_command": (
            'grcov {archive} -s {repo_root} -t lcov --llvm --ignore-not-existing --ignore "/*" '
            "-o {output}"
        ),
    },
    "publish": {
        "service_url": "https://codecov.io",
        "token_env": "CODECOV_TOKEN",
        "fail_ci_if_error": True,
        "timeout_seconds": 60.0,
        "flags": [],
    },
    "cache": {
        "prefix": "test",
        "lock_files": ["**/Cargo.lock"],
        "paths": [
            "~/.cargo/bin/",
            "~/.cargo/registry/index/",
            "~/.cargo/registry/cache/",
            "~/.cargo/git/db/",
            "target/",
        ],
    },
    "matrix": {
        "toolchain": ["stable"],
        "max_parallel": 1,
    },
    "pipelines": {
        PRE_PUSH_PIPELINE: {
            "description": "Local gate run by the git pre-push hook.",
            "env": {},
            "stages": [
                {
                    "name": "clippy",
                    "kind": "command",
                    "command": "cargo clippy --all-targets -- -D warnings",
                    "fatal": True,
                    "hint": "Fix clippy issues.",
                },
                {
                    "name": "test",
                    "kind": "command",
                    "command": "cargo test",
                    "fatal": True,
                    "hint": "Fix test issues.",
                },
            ],
        },
        CHECK_PIPELINE: {
            "description": "CI type-check and lint.",
            "env": {},
            "stages": [
                {
                    "name": "check",
                    "kind": "command",
                    "command": "cargo +{toolchain} check",
                    "fatal": True,
                    "hint": "Fix check issues.",
                },
                {
                    "name": "clippy",
                    "kind": "command",
                    "command": "cargo +{toolchain} clippy --all-targets -- -D warnings",
                    "fatal": True,
                    "hint": "Fix clippy issues.",
                },
            ],
        },
        TESTS_PIPELINE: {
            "description": "CI build, instrumented tests, coverage merge and upload.",
            "env": {
                "CARGO_INCREMENTAL": "0",
                "RUSTFLAGS": _COVERAGE_RUSTFLAGS,
                "RUSTDOCFLAGS": "-Cpanic=abort",
            },
            "toolchains": ["nightly"],
            "stages": [
                {
                    "name": "build",
                    "kind": "command",
                    "command": "cargo +{toolchain} build",
                    "fatal": True,
                    "hint": "Fix build issues.",
                },
                {
                    "name": "test",
                    "kind": "command",
                    "command": "cargo +{toolchain} test --tests",
                    "fatal": True,
                    "hint": "Fix test issues.",
                },
                {
                    "name": "coverage",
                    "kind": "coverage",
                    "fatal": True,
                    "hint": (
                        "Check that grcov is installed and the test stage produced raw coverage."
                    ),
                },
                {
                    "name": "upload",
                    "kind": "publish",
                    "hint": "Check the coverage service status and the upload token.",
                },
            ],
        },
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> GateConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade pushgate.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the pushgate runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``. Lists are replaced, not merged."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, "", issues)
    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())

    return ConfigValidationResult(config=normalized, issues=issues.items())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return deterministic redacted representation for logs and ``pushgate config``."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    if isinstance(redacted, dict):
        return redacted
    return {}


def template_fields(template: str) -> tuple[str, ...]:
    """Return the root field names referenced by ``str.format`` placeholders in ``template``."""

    names: list[str] = []
    for _, field_name, _, _ in _FORMATTER.parse(template):
        if field_name is None:
            continue
        root = re.split(r"[.\[]", field_name, maxsplit=1)[0]
        names.append(root)
    return tuple(names)


def _validate_root(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
) -> dict[str, Any]:
    validators: dict[str, Callable[[dict[str, object], str, _IssueCollector], dict[str, Any]]] = {
        "meta": _validate_meta,
        "project": _validate_project,
        "paths": _validate_paths,
        "observability": _validate_observability,
        "engine": _validate_engine,
        "coverage": _validate_coverage,
        "publish": _validate_publish,
        "cache": _validate_cache,
        "matrix": _validate_matrix,
        "pipelines": _validate_pipelines,
    }
    allowed = set(validators)
    required = allowed - {"project"}

    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, required, path, issues)

    out: dict[str, Any] = {}
    for key in sorted(validators):
        _section(payload, key=key, path=path, issues=issues, validator=validators[key], out=out)
    return out


def _section(
    payload: Mapping[str, object],
    *,
    key: str,
    path: str,
    issues: _IssueCollector,
    validator: Callable[[dict[str, object], str, _IssueCollector], dict[str, Any]],
    out: dict[str, Any],
) -> None:
    raw = payload.get(key)
    if raw is None:
        return
    section_path = _join(path, key)
    section_obj = _as_object(raw, section_path, issues)
    if section_obj is None:
        return
    out[key] = validator(section_obj, section_path, issues)


def _validate_meta(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    _require_keys(payload, {"schema_version"}, path, issues)

    out: dict[str, Any] = {}
    if "schema_version" in payload:
        parsed = _as_int(
            payload["schema_version"], _join(path, "schema_version"), issues, minimum=1
        )
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(_join(path, "schema_version"), migration_guidance(parsed))
    return out


def _validate_project(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"name", "slug"}, path, issues)

    out: dict[str, Any] = {}
    if "name" in payload:
        parsed_name = _as_str(payload["name"], _join(path, "name"), issues)
        if parsed_name is not None:
            out["name"] = parsed_name
    if "slug" in payload:
        parsed_slug = _as_str(payload["slug"], _join(path, "slug"), issues)
        if parsed_slug is not None:
            if _SLUG_PATTERN.fullmatch(parsed_slug):
                out["slug"] = parsed_slug
            else:
                issues.add(_join(path, "slug"), "must look like 'owner/repository'")
    return out


def _validate_paths(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"state_dir", "log_dir"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in sorted(allowed):
        if key in payload:
            parsed = _as_path_text(payload[key], _join(path, key), issues)
            if parsed is not None:
                out[key] = parsed
    return out


def _validate_observability(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"log_level", "redact_secrets"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "log_level" in payload:
        parsed_log_level = _as_enum(
            payload["log_level"],
            _join(path, "log_level"),
            issues,
            allowed_values=("DEBUG", "INFO", "WARNING", "ERROR"),
        )
        if parsed_log_level is not None:
            out["log_level"] = parsed_log_level

    if "redact_secrets" in payload:
        parsed_redact = _as_bool(payload["redact_secrets"], _join(path, "redact_secrets"), issues)
        if parsed_redact is not None:
            out["redact_secrets"] = parsed_redact
    return out


def _validate_engine(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"kill_grace_seconds", "max_output_chars", "default_timeout_seconds"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, {"kill_grace_seconds", "max_output_chars"}, path, issues)

    out: dict[str, Any] = {}
    if "kill_grace_seconds" in payload:
        parsed_grace = _as_float(
            payload["kill_grace_seconds"], _join(path, "kill_grace_seconds"), issues, minimum=0.0
        )
        if parsed_grace is not None:
            out["kill_grace_seconds"] = parsed_grace
    if "max_output_chars" in payload:
        parsed_chars = _as_int(
            payload["max_output_chars"], _join(path, "max_output_chars"), issues, minimum=1
        )
        if parsed_chars is not None:
            out["max_output_chars"] = parsed_chars
    if "default_timeout_seconds" in payload:
        parsed_timeout = _as_positive_float(
            payload["default_timeout_seconds"], _join(path, "default_timeout_seconds"), issues
        )
        if parsed_timeout is not None:
            out["default_timeout_seconds"] = parsed_timeout
    return out


def _validate_coverage(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"stale_patterns", "raw_pattern", "archive_name", "output_name", "merge_command"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "stale_patterns" in payload:
        parsed_patterns = _as_str_list(
            payload["stale_patterns"], _join(path, "stale_patterns"), issues, non_empty=True
        )
        if parsed_patterns is not None:
            out["stale_patterns"] = parsed_patterns
    if "raw_pattern" in payload:
        parsed_raw = _as_template(
            payload["raw_pattern"],
            _join(path, "raw_pattern"),
            issues,
            allowed_fields=RAW_PATTERN_PLACEHOLDERS,
        )
        if parsed_raw is not None:
            out["raw_pattern"] = parsed_raw
    for key in ("archive_name", "output_name"):
        if key in payload:
            parsed_name = _as_file_name(payload[key], _join(path, key), issues)
            if parsed_name is not None:
                out[key] = parsed_name
    if "merge_command" in payload:
        parsed_merge = _as_command(
            payload["merge_command"],
            _join(path, "merge_command"),
            issues,
            allowed_fields=MERGE_PLACEHOLDERS,
        )
        if parsed_merge is not None:
            out["merge_command"] = parsed_merge
    return out


def _validate_publish(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"service_url", "token_env", "fail_ci_if_error", "timeout_seconds", "flags"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "service_url" in payload:
        parsed_url = _as_str(payload["service_url"], _join(path, "service_url"), issues)
        if parsed_url is not None:
            if parsed_url.startswith(("http://", "https://")):
                out["service_url"] = parsed_url.rstrip("/")
            else:
                issues.add(_join(path, "service_url"), "must be an http(s) URL")
    if "token_env" in payload:
        parsed_env = _as_env_name(payload["token_env"], _join(path, "token_env"), issues)
        if parsed_env is not None:
            out["token_env"] = parsed_env
    if "fail_ci_if_error" in payload:
        parsed_fatal = _as_bool(
            payload["fail_ci_if_error"], _join(path, "fail_ci_if_error"), issues
        )
        if parsed_fatal is not None:
            out["fail_ci_if_error"] = parsed_fatal
    if "timeout_seconds" in payload:
        parsed_timeout = _as_positive_float(
            payload["timeout_seconds"], _join(path, "timeout_seconds"), issues
        )
        if parsed_timeout is not None:
            out["timeout_seconds"] = parsed_timeout
    if "flags" in payload:
        parsed_flags = _as_str_list(payload["flags"], _join(path, "flags"), issues)
        if parsed_flags is not None:
            out["flags"] = parsed_flags
    return out


def _validate_cache(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"prefix", "lock_files", "paths"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "prefix" in payload:
        parsed_prefix = _as_str(payload["prefix"], _join(path, "prefix"), issues)
        if parsed_prefix is not None:
            out["prefix"] = parsed_prefix
    if "lock_files" in payload:
        parsed_locks = _as_str_list(
            payload["lock_files"], _join(path, "lock_files"), issues, non_empty=True
        )
        if parsed_locks is not None:
            out["lock_files"] = parsed_locks
    if "paths" in payload:
        parsed_paths = _as_str_list(payload["paths"], _join(path, "paths"), issues)
        if parsed_paths is not None:
            out["paths"] = parsed_paths
    return out


def _validate_matrix(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"toolchain", "max_parallel"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "toolchain" in payload:
        parsed_toolchains = _as_toolchains(payload["toolchain"], _join(path, "toolchain"), issues)
        if parsed_toolchains is not None:
            out["toolchain"] = parsed_toolchains
    if "max_parallel" in payload:
        parsed_parallel = _as_int(
            payload["max_parallel"], _join(path, "max_parallel"), issues, minimum=1
        )
        if parsed_parallel is not None:
            out["max_parallel"] = parsed_parallel
    return out


def _validate_pipelines(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    if not payload:
        issues.add(path, "at least one pipeline must be defined")
        return {}

    out: dict[str, Any] = {}
    for name in sorted(payload):
        pipeline_path = _join(path, name)
        if not _PIPELINE_NAME_PATTERN.fullmatch(name):
            issues.add(pipeline_path, "pipeline names must match [a-z][a-z0-9_-]*")
            continue
        pipeline_obj = _as_object(payload[name], pipeline_path, issues)
        if pipeline_obj is None:
            continue
        out[name] = _validate_pipeline(pipeline_obj, pipeline_path, issues)
    return out


def _validate_pipeline(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"description", "env", "toolchains", "stages"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, {"stages"}, path, issues)

    out: dict[str, Any] = {"env": {}}
    if "description" in payload:
        parsed_description = _as_str(payload["description"], _join(path, "description"), issues)
        if parsed_description is not None:
            out["description"] = parsed_description

    if "env" in payload:
        env_obj = _as_object(payload["env"], _join(path, "env"), issues)
        if env_obj is not None:
            out["env"] = _validate_pipeline_env(env_obj, _join(path, "env"), issues)

    if "toolchains" in payload:
        parsed_toolchains = _as_toolchains(
            payload["toolchains"], _join(path, "toolchains"), issues
        )
        if parsed_toolchains is not None:
            out["toolchains"] = parsed_toolchains

    if "stages" in payload:
        stages_path = _join(path, "stages")
        raw_stages = payload["stages"]
        if not isinstance(raw_stages, list) or not raw_stages:
            issues.add(stages_path, "expected a non-empty list of stage entries")
            return out
        stages: list[dict[str, Any]] = []
        seen: set[str] = set()
        for index, raw_stage in enumerate(raw_stages):
            stage_path = f"{stages_path}[{index}]"
            stage_obj = _as_object(raw_stage, stage_path, issues)
            if stage_obj is None:
                continue
            stage = _validate_stage(stage_obj, stage_path, issues)
            name = stage.get("name")
            if isinstance(name, str):
                if name in seen:
                    issues.add(_join(stage_path, "name"), f"duplicate stage name {name!r}")
                seen.add(name)
            stages.append(stage)
        out["stages"] = stages
    return out


def _validate_pipeline_env(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, str]:
    out: dict[str, str] = {}
    for name in sorted(payload):
        entry_path = _join(path, name)
        if not _ENV_NAME_PATTERN.fullmatch(name):
            issues.add(entry_path, "must be an env var name (example: RUSTFLAGS)")
            continue
        if _looks_sensitive_key(name):
            issues.add(
                entry_path,
                "embedded secret values are forbidden; export the secret in the CI job instead",
            )
            continue
        value = payload[name]
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            issues.add(entry_path, f"expected string, got {type(value).__name__}")
            continue
        out[name] = value if isinstance(value, str) else str(value)
    return out


def _validate_stage(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"name", "kind", "command", "fatal", "hint", "timeout_seconds"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, {"name"}, path, issues)

    out: dict[str, Any] = {"kind": "command", "fatal": True}
    if "name" in payload:
        parsed_name = _as_str(payload["name"], _join(path, "name"), issues)
        if parsed_name is not None:
            if _STAGE_NAME_PATTERN.fullmatch(parsed_name):
                out["name"] = parsed_name
            else:
                issues.add(_join(path, "name"), "stage names must match [A-Za-z0-9][A-Za-z0-9_.-]*")

    if "kind" in payload:
        parsed_kind = _as_enum(
            payload["kind"], _join(path, "kind"), issues, allowed_values=STAGE_KINDS
        )
        if parsed_kind is not None:
            out["kind"] = parsed_kind
    kind = out["kind"]

    if kind == "command":
        if "command" not in payload:
            issues.add(_join(path, "command"), "command stages require a command template")
        else:
            parsed_command = _as_command(
                payload["command"],
                _join(path, "command"),
                issues,
                allowed_fields=COMMAND_PLACEHOLDERS,
            )
            if parsed_command is not None:
                out["command"] = parsed_command
    elif "command" in payload:
        issues.add(
            _join(path, "command"),
            f"{kind} stages do not take a command; configure the [{kind}] section instead",
        )

    if "fatal" in payload:
        if kind == "publish":
            issues.add(
                _join(path, "fatal"),
                "publish stage fatality is controlled by publish.fail_ci_if_error",
            )
        else:
            parsed_fatal = _as_bool(payload["fatal"], _join(path, "fatal"), issues)
            if parsed_fatal is not None:
                out["fatal"] = parsed_fatal

    if "hint" in payload:
        parsed_hint = _as_str(payload["hint"], _join(path, "hint"), issues)
        if parsed_hint is not None:
            out["hint"] = parsed_hint

    if "timeout_seconds" in payload:
        parsed_timeout = _as_positive_float(
            payload["timeout_seconds"], _join(path, "timeout_seconds"), issues
        )
        if parsed_timeout is not None:
            out["timeout_seconds"] = parsed_timeout
    return out


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_str_list(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    non_empty: bool = False,
) -> list[str] | None:
    if not isinstance(value, (list, tuple)):
        issues.add(path, f"expected list of strings, got {type(value).__name__}")
        return None
    out: list[str] = []
    for index, item in enumerate(value):
        parsed = _as_str(item, f"{path}[{index}]", issues)
        if parsed is None:
            return None
        out.append(parsed)
    if non_empty and not out:
        issues.add(path, "must not be empty")
        return None
    return out


def _as_toolchains(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    parsed = _as_str_list(value, path, issues, non_empty=True)
    if parsed is None:
        return None
    if len(set(parsed)) != len(parsed):
        issues.add(path, "toolchain entries must be unique")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_file_name(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_path_text(value, path, issues)
    if parsed is None:
        return None
    if "/" in parsed or "\\" in parsed or parsed in {".", ".."}:
        issues.add(path, "must be a plain file name")
        return None
    return parsed


def _as_template(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_fields: frozenset[str],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    try:
        fields = template_fields(parsed)
    except ValueError as exc:
        issues.add(path, f"invalid template: {exc}")
        return None
    unknown = sorted({item for item in fields if item not in allowed_fields})
    if any(not item for item in fields):
        issues.add(path, "positional placeholders are not supported")
        return None
    if unknown:
        expected = ", ".join(sorted(allowed_fields))
        issues.add(path, f"unknown placeholder(s) {unknown}; expected one of: {expected}")
        return None
    return parsed


def _as_command(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_fields: frozenset[str],
) -> str | None:
    parsed = _as_template(value, path, issues, allowed_fields=allowed_fields)
    if parsed is None:
        return None
    try:
        tokens = shlex.split(parsed)
    except ValueError as exc:
        issues.add(path, f"cannot split command: {exc}")
        return None
    if not tokens:
        issues.add(path, "must name a program")
        return None
    return parsed


def _as_env_name(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if not _ENV_NAME_PATTERN.fullmatch(parsed):
        issues.add(path, "must be an env var name (example: CODECOV_TOKEN)")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return parsed


def _as_positive_float(value: object, path: str, issues: _IssueCollector) -> float | None:
    parsed = _as_float(value, path, issues)
    if parsed is None:
        return None
    if parsed <= 0.0:
        issues.add(path, "must be > 0")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(
                key_path,
                "embedded secret values are forbidden; use an *_env key with an env var name",
            )
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized.endswith("_env"):
        return False
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = _deep_copy_value(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in sorted(value):
        out[key] = _deep_copy_value(value[key])
    return out


def _deep_copy_value(value: object) -> Any:
    if isinstance(value, Mapping):
        return {key: _deep_copy_value(item) for key, item in value.items() if isinstance(key, str)}
    if isinstance(value, (list, tuple)):
        return [_deep_copy_value(item) for item in value]
    return copy.deepcopy(value)


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        out: dict[str, object] = {}
        for key in sorted(value):
            item = value[key]
            if _key_is_sensitive_for_redaction(key):
                out[key] = "<redacted>"
            else:
                out[key] = _redact_value(item, key)
        return out
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


def _key_is_sensitive_for_redaction(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized.endswith("_env"):
        return True
    return _looks_sensitive_key(normalized)


__all__ = [
    "COMMAND_PLACEHOLDERS",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "GateConfig",
    "MERGE_PLACEHOLDERS",
    "PATH_FIELDS",
    "PipelineConfig",
    "RAW_PATTERN_PLACEHOLDERS",
    "STAGE_KINDS",
    "StageEntry",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "template_fields",
    "validate_config",
]
