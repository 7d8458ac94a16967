"""Dependency-cache key material derived from lock-file contents.

The key has the shape ``{prefix}-{os}-cargo-{toolchain}-{lock hash}``. Restoring and
saving the cache itself belongs to the CI platform; pushgate only computes the key and
exposes it to stages and to ``pushgate cache-key``.
"""

from __future__ import annotations

import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pushgate.utils.hashing import hash_files

_OS_NAMES: dict[str, str] = {
    "linux": "Linux",
    "darwin": "macOS",
    "win32": "Windows",
    "cygwin": "Windows",
}
DEFAULT_TOOLCHAIN_LABEL = "default"


@dataclass(frozen=True, slots=True)
class CacheDescriptor:
    key: str
    lock_hash: str
    paths: tuple[str, ...]

    def to_dict(self) -> dict[str, object]:
        return {"key": self.key, "lock_hash": self.lock_hash, "paths": list(self.paths)}


def runner_os(environ: Mapping[str, str] | None = None, *, platform: str | None = None) -> str:
    """CI runner OS label. ``RUNNER_OS`` wins when the CI platform exports it."""

    if environ is not None:
        exported = environ.get("RUNNER_OS", "").strip()
        if exported:
            return exported
    name = platform if platform is not None else sys.platform
    return _OS_NAMES.get(name, name)


def cache_key(*, prefix: str, os_name: str, toolchain: str | None, lock_hash: str) -> str:
    label = toolchain or DEFAULT_TOOLCHAIN_LABEL
    return f"{prefix}-{os_name}-cargo-{label}-{lock_hash}"


def describe_cache(
    cache_config: Mapping[str, Any],
    *,
    repo_root: Path,
    toolchain: str | None,
    environ: Mapping[str, str] | None = None,
) -> CacheDescriptor:
    """Hash the configured lock files under ``repo_root`` and build the key for ``toolchain``."""

    patterns: Sequence[str] = tuple(cache_config.get("lock_files", ("**/Cargo.lock",)))
    lock_hash = hash_files(repo_root, patterns)
    key = cache_key(
        prefix=str(cache_config.get("prefix", "test")),
        os_name=runner_os(environ),
        toolchain=toolchain,
        lock_hash=lock_hash,
    )
    return CacheDescriptor(
        key=key,
        lock_hash=lock_hash,
        paths=tuple(cache_config.get("paths", ())),
    )


__all__ = ["CacheDescriptor", "cache_key", "describe_cache", "runner_os"]
