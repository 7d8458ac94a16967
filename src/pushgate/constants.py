"""Stable constants shared across the gate runner, pipeline and config layers."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1

# Config discovery.
DEFAULT_CONFIG_FILE: Final[str] = "pushgate.toml"
ENV_PREFIX: Final[str] = "PUSHGATE_"

# Built-in pipeline names.
PRE_PUSH_PIPELINE: Final[str] = "pre-push"
CHECK_PIPELINE: Final[str] = "check"
TESTS_PIPELINE: Final[str] = "tests"

# Default runtime paths (relative to the config file directory unless overridden).
STATE_DIR: Final[PurePosixPath] = PurePosixPath(".pushgate")
LOG_DIR: Final[PurePosixPath] = STATE_DIR / "logs"
RUNS_DIR_NAME: Final[str] = "runs"

# Exit statuses recorded on StageResult when no real process exit status exists.
TIMEOUT_EXIT_STATUS: Final[int] = 124
SPAWN_ERROR_EXIT_STATUS: Final[int] = 127
ACTION_ERROR_EXIT_STATUS: Final[int] = 1

# Variables exported to every stage command.
RUN_DIR_ENV: Final[str] = "PUSHGATE_RUN_DIR"
CACHE_KEY_ENV: Final[str] = "PUSHGATE_CACHE_KEY"
TOOLCHAIN_ENV: Final[str] = "PUSHGATE_TOOLCHAIN"
PROJECT_ENV: Final[str] = "PUSHGATE_PROJECT"

# Per-entry build output; matrix entries never share a target directory.
TARGET_DIR_ENV: Final[str] = "CARGO_TARGET_DIR"
TARGET_DIR_NAME: Final[str] = "target"

__all__ = [
    "ACTION_ERROR_EXIT_STATUS",
    "CACHE_KEY_ENV",
    "CHECK_PIPELINE",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "LOG_DIR",
    "PRE_PUSH_PIPELINE",
    "PROJECT_ENV",
    "RUNS_DIR_NAME",
    "RUN_DIR_ENV",
    "SPAWN_ERROR_EXIT_STATUS",
    "STATE_DIR",
    "TARGET_DIR_ENV",
    "TARGET_DIR_NAME",
    "TESTS_PIPELINE",
    "TIMEOUT_EXIT_STATUS",
    "TOOLCHAIN_ENV",
]
