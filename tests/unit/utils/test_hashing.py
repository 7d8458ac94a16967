"""Tests for SHA-256 helpers and lock-file digests."""

from __future__ import annotations

from pathlib import Path

import pytest

from pushgate.utils.hashing import (
    fingerprint,
    hash_files,
    matching_files,
    sha256_bytes,
    sha256_file,
    sha256_text,
)

ABC_SHA256 = "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_known_digests(tmp_path: Path) -> None:
    path = tmp_path / "abc.txt"
    path.write_bytes(b"abc")

    assert sha256_bytes(b"abc") == ABC_SHA256
    assert sha256_text("abc") == ABC_SHA256
    assert sha256_file(path) == ABC_SHA256
    assert sha256_file(path, chunk_size=1) == ABC_SHA256


def test_sha256_file_rejects_bad_chunk_size(tmp_path: Path) -> None:
    path = tmp_path / "f"
    path.write_bytes(b"")

    with pytest.raises(ValueError):
        sha256_file(path, chunk_size=0)


def test_matching_files_are_sorted_by_relative_path(tmp_path: Path) -> None:
    for relative in ("b/Cargo.lock", "Cargo.lock", "a/Cargo.lock", "a/Cargo.toml"):
        target = tmp_path / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(relative, encoding="utf-8")
    (tmp_path / "dir.lock").mkdir()

    found = matching_files(tmp_path, ["**/Cargo.lock", "**/*.lock"])

    assert [path.relative_to(tmp_path).as_posix() for path in found] == [
        "Cargo.lock",
        "a/Cargo.lock",
        "b/Cargo.lock",
    ]


def test_hash_files_tracks_content_and_location(tmp_path: Path) -> None:
    (tmp_path / "Cargo.lock").write_text("version = 3\n", encoding="utf-8")
    first = hash_files(tmp_path, ["**/Cargo.lock"])

    assert first == hash_files(tmp_path, ["**/Cargo.lock"])
    assert len(first) == 64

    moved = tmp_path / "sub"
    moved.mkdir()
    (tmp_path / "Cargo.lock").rename(moved / "Cargo.lock")

    assert hash_files(tmp_path, ["**/Cargo.lock"]) != first


def test_hash_files_without_matches_is_empty(tmp_path: Path) -> None:
    assert hash_files(tmp_path, ["**/Cargo.lock"]) == ""


def test_fingerprint_ignores_key_order() -> None:
    assert fingerprint({"a": 1, "b": [1, 2]}) == fingerprint({"b": [1, 2], "a": 1})
    assert fingerprint({"a": 1}) != fingerprint({"a": 2})
