"""
pushgate — hashing utilities

File: src/pushgate/utils/hashing.py
Last updated: 2026-10-19

Purpose
- Deterministic SHA-256 helpers for bytes, text and files.
- Glob-scoped file-set digests used as cache key material (lock files).
- Canonical-JSON fingerprints used to key per-matrix-entry run directories.

Functional requirements
- File-set digests are independent of filesystem iteration order.
- An empty file set digests to the empty string so callers can tell "nothing
  matched" apart from "matched files hash to X".
"""

from __future__ import annotations

import hashlib
import json
import os
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

PathLike = str | os.PathLike[str]

_FILE_READ_CHUNK_BYTES = 1024 * 1024

__all__ = [
    "fingerprint",
    "hash_files",
    "matching_files",
    "sha256_bytes",
    "sha256_file",
    "sha256_text",
]


def sha256_bytes(data: bytes) -> str:
    """Return SHA-256 hex digest for raw bytes."""

    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    """Return SHA-256 hex digest for text encoded with ``encoding``."""

    return sha256_bytes(text.encode(encoding))


def sha256_file(path: PathLike, *, chunk_size: int = _FILE_READ_CHUNK_BYTES) -> str:
    """Return SHA-256 hex digest for a file read in chunks."""

    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    digest = hashlib.sha256()
    with Path(path).open("rb") as file_handle:
        while True:
            chunk = file_handle.read(chunk_size)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


def matching_files(root: PathLike, patterns: Iterable[str]) -> tuple[Path, ...]:
    """Return regular files under ``root`` matching any glob in ``patterns``, sorted."""

    base = Path(root)
    found: set[Path] = set()
    for pattern in patterns:
        for candidate in base.glob(pattern):
            if candidate.is_file():
                found.add(candidate)
    return tuple(sorted(found, key=lambda item: item.relative_to(base).as_posix()))


def hash_files(root: PathLike, patterns: Iterable[str]) -> str:
    """
    Digest every file matching ``patterns`` below ``root``.

    Each file contributes ``<relative posix path>\\0<sha256>\\n``; the result is the
    SHA-256 of the concatenation. Returns ``""`` when nothing matches.
    """

    base = Path(root)
    files = matching_files(base, patterns)
    if not files:
        return ""
    digest = hashlib.sha256()
    for path in files:
        relative = path.relative_to(base).as_posix()
        digest.update(f"{relative}\0{sha256_file(path)}\n".encode())
    return digest.hexdigest()


def fingerprint(payload: object) -> str:
    """SHA-256 over the canonical JSON encoding of ``payload``."""

    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return sha256_text(encoded)
