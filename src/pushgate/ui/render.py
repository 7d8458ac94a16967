"""Output rendering abstraction for the pushgate CLI.

File: src/pushgate/ui/render.py
Last updated: 2026-10-19

Purpose
- Provide a thin plain-text rendering layer for CLI output.
- Respect NO_COLOR environment variable and --no-color CLI flag.

Functional requirements
- Plain-text rendering must always work without external dependencies.
- Gate results go to stdout; diagnostics and failures go to stderr so the git client
  shows them even when stdout is redirected.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from collections.abc import Sequence

_GREEN = "\033[32m"
_RED = "\033[31m"
_RESET = "\033[0m"


def _color_allowed(no_color_flag: bool, stream: TextIO) -> bool:
    """Check whether color output should be attempted."""

    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


class CLIRenderer:
    """Thin CLI output renderer.

    Produces clean, deterministic plain-text output.
    Respects ``NO_COLOR`` env var and ``--no-color`` flag.
    """

    def __init__(self, *, no_color: bool = False, verbose: bool = False) -> None:
        self.verbose = verbose
        self._color = _color_allowed(no_color, sys.stdout)

    def heading(self, text: str) -> None:
        """Print a heading line."""

        print(text)

    def kv(self, key: str, value: object) -> None:
        """Print a key: value pair."""

        print(f"{key}: {value}")

    def text(self, line: str) -> None:
        """Print a plain text line."""

        print(line)

    def lines(self, entries: Sequence[str]) -> None:
        for entry in entries:
            print(entry)

    def section(self, title: str) -> None:
        """Print a section header with a preceding blank line."""

        print(f"\n{title}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        """Print a bulleted list."""

        for entry in entries:
            print(f"  {prefix}{entry}")

    def ok(self, label: str) -> None:
        """Print a passing verdict."""

        print(self._paint(f"PASSED  {label}", _GREEN))

    def fail(self, label: str) -> None:
        """Print a failing verdict to stderr."""

        print(self._paint(f"FAILED  {label}", _RED), file=sys.stderr)

    def error_lines(self, entries: Sequence[str]) -> None:
        for entry in entries:
            print(entry, file=sys.stderr)

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        """Print a formatted ASCII table."""

        if not rows:
            return

        col_count = len(headers)
        widths = [len(h) for h in headers]
        for row in rows:
            for i in range(min(len(row), col_count)):
                widths[i] = max(widths[i], len(str(row[i])))

        def _pad(cells: Sequence[str]) -> str:
            parts: list[str] = []
            for i in range(col_count):
                cell = str(cells[i]) if i < len(cells) else ""
                parts.append(cell.ljust(widths[i]))
            return "  ".join(parts).rstrip()

        if title:
            self.section(title)
        print(f"  {_pad(list(headers))}")
        print(f"  {'  '.join('-' * w for w in widths)}")
        for row in rows:
            print(f"  {_pad(list(row))}")

    def _paint(self, text: str, color: str) -> str:
        if not self._color:
            return text
        return f"{color}{text}{_RESET}"


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    """Create a CLI renderer with the given settings."""

    return CLIRenderer(no_color=no_color, verbose=verbose)


__all__ = ["CLIRenderer", "create_renderer"]
