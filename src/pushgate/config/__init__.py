"""
pushgate config package public API.

File: src/pushgate/config/__init__.py
Last updated: 2026-10-19

Purpose
- Export config loading/validation entrypoints and public error types.

Functional requirements
- Support loading from ``pushgate.toml`` (or YAML) + ``PUSHGATE_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from pushgate.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    effective_config,
    env_bindings,
    load_config,
    load_config_file,
    normalize_paths,
)
from pushgate.config.schema import (
    COMMAND_PLACEHOLDERS,
    DEFAULT_CONFIG,
    PATH_FIELDS,
    STAGE_KINDS,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    GateConfig,
    PipelineConfig,
    StageEntry,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    template_fields,
    validate_config,
)

__all__ = [
    "COMMAND_PLACEHOLDERS",
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "GateConfig",
    "PATH_FIELDS",
    "PipelineConfig",
    "STAGE_KINDS",
    "StageEntry",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "effective_config",
    "env_bindings",
    "load_config",
    "load_config_file",
    "merge_config",
    "migration_guidance",
    "normalize_paths",
    "redact_config",
    "template_fields",
    "validate_config",
]
