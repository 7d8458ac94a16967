"""
pushgate — unit tests for dependency-cache keys

File: tests/unit/gate/test_cache.py
Last updated: 2026-10-19

Purpose
- Validate the ``{prefix}-{os}-cargo-{toolchain}-{lock hash}`` key and its inputs.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from pushgate.gate.cache import cache_key, describe_cache, runner_os

CACHE_CONFIG = {
    "prefix": "test",
    "lock_files": ["**/Cargo.lock"],
    "paths": ["~/.cargo/registry/cache/", "target/"],
}


def _lock(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_runner_os_prefers_the_ci_variable() -> None:
    assert runner_os({"RUNNER_OS": "Windows"}, platform="linux") == "Windows"
    assert runner_os({"RUNNER_OS": " "}, platform="darwin") == "macOS"
    assert runner_os({}, platform="linux") == "Linux"
    assert runner_os(None, platform="freebsd14") == "freebsd14"


def test_cache_key_shape() -> None:
    assert cache_key(prefix="test", os_name="Linux", toolchain="nightly", lock_hash="ab12") == (
        "test-Linux-cargo-nightly-ab12"
    )
    assert cache_key(prefix="ci", os_name="macOS", toolchain=None, lock_hash="") == (
        "ci-macOS-cargo-default-"
    )


def test_describe_cache_hashes_every_lock_file(tmp_path: Path) -> None:
    _lock(tmp_path / "Cargo.lock", "version = 3\n")
    _lock(tmp_path / "crates" / "cli" / "Cargo.lock", "version = 3\n[[package]]\n")
    env = {"RUNNER_OS": "Linux"}

    first = describe_cache(CACHE_CONFIG, repo_root=tmp_path, toolchain="nightly", environ=env)
    again = describe_cache(CACHE_CONFIG, repo_root=tmp_path, toolchain="nightly", environ=env)

    assert first == again
    assert len(first.lock_hash) == 64
    assert first.key == f"test-Linux-cargo-nightly-{first.lock_hash}"
    assert first.paths == ("~/.cargo/registry/cache/", "target/")
    assert first.to_dict()["paths"] == ["~/.cargo/registry/cache/", "target/"]

    _lock(tmp_path / "crates" / "cli" / "Cargo.lock", "version = 4\n")
    changed = describe_cache(CACHE_CONFIG, repo_root=tmp_path, toolchain="nightly", environ=env)

    assert changed.lock_hash != first.lock_hash


@pytest.mark.parametrize("toolchain", ["stable", "beta"])
def test_toolchains_get_distinct_keys(tmp_path: Path, toolchain: str) -> None:
    _lock(tmp_path / "Cargo.lock", "version = 3\n")

    descriptor = describe_cache(
        CACHE_CONFIG, repo_root=tmp_path, toolchain=toolchain, environ={"RUNNER_OS": "Linux"}
    )

    assert descriptor.key.startswith(f"test-Linux-cargo-{toolchain}-")


def test_no_lock_files_gives_an_empty_hash(tmp_path: Path) -> None:
    descriptor = describe_cache(
        CACHE_CONFIG, repo_root=tmp_path, toolchain=None, environ={"RUNNER_OS": "Linux"}
    )

    assert descriptor.lock_hash == ""
    assert descriptor.key == "test-Linux-cargo-default-"
