"""Utility exports for filesystem, hashing, and concurrency helpers."""

from pushgate.utils.concurrency import (
    CancellationToken,
    WorkerPool,
    install_signal_cancellation,
    run_with_timeout,
)
from pushgate.utils.fs import atomic_write, ensure_directory, make_executable, remove_within
from pushgate.utils.hashing import (
    fingerprint,
    hash_files,
    matching_files,
    sha256_bytes,
    sha256_file,
    sha256_text,
)

__all__ = [
    "CancellationToken",
    "WorkerPool",
    "atomic_write",
    "ensure_directory",
    "fingerprint",
    "hash_files",
    "install_signal_cancellation",
    "make_executable",
    "matching_files",
    "remove_within",
    "run_with_timeout",
    "sha256_bytes",
    "sha256_file",
    "sha256_text",
]
