"""Git pre-push hook installation and the ``pushgate-pre-push`` console script."""

from __future__ import annotations

import shlex
import sys
from pathlib import Path

from pushgate.utils.fs import atomic_write, ensure_directory, make_executable

HOOK_NAME = "pre-push"
HOOK_MARKER = "# installed by pushgate"


class HookInstallError(RuntimeError):
    """Raised when the pre-push hook cannot be installed."""


def git_dir(repo_root: Path) -> Path:
    """Return the repository's git directory, following ``gitdir:`` files (worktrees)."""

    dot_git = Path(repo_root) / ".git"
    if dot_git.is_dir():
        return dot_git
    if dot_git.is_file():
        content = dot_git.read_text(encoding="utf-8").strip()
        prefix = "gitdir:"
        if content.startswith(prefix):
            target = Path(content[len(prefix) :].strip())
            if not target.is_absolute():
                target = (dot_git.parent / target).resolve()
            return target
    raise HookInstallError(f"{repo_root} is not a git repository (no .git found)")


def render_hook_script(python: str) -> str:
    return (
        "#!/bin/sh\n"
        f"{HOOK_MARKER}\n"
        'cd "$(git rev-parse --show-toplevel)" || exit 1\n'
        f"exec {shlex.quote(python)} -m pushgate hook\n"
    )


def install_hook(repo_root: Path, *, force: bool = False, python: str | None = None) -> Path:
    """Write an executable ``pre-push`` hook that runs ``pushgate hook``.

    An existing hook that pushgate did not write is only replaced with ``force``.
    """

    hooks_dir = ensure_directory(git_dir(repo_root) / "hooks")
    target = hooks_dir / HOOK_NAME
    if target.exists() and not force:
        existing = target.read_text(encoding="utf-8", errors="replace")
        if HOOK_MARKER not in existing:
            raise HookInstallError(
                f"{target} exists and was not installed by pushgate; use --force to replace it"
            )
    atomic_write(target, render_hook_script(python or sys.executable))
    make_executable(target)
    return target


def main() -> int:
    """``pushgate-pre-push``: git passes remote name and URL, which the gate ignores."""

    from pushgate.main import cli_entrypoint

    return cli_entrypoint(["hook"])


__all__ = [
    "HOOK_MARKER",
    "HOOK_NAME",
    "HookInstallError",
    "git_dir",
    "install_hook",
    "main",
    "render_hook_script",
]
