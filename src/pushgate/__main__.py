"""Module entrypoint for ``python -m pushgate``."""

from __future__ import annotations

from pushgate.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
