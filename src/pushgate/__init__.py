"""
pushgate — ordered, fail-fast quality gates

File: src/pushgate/__init__.py
Last updated: 2026-10-19

Purpose
- Package root. Runs a configured sequence of verification stages (lint, build,
  test, coverage, upload) from a local pre-push hook or a CI job and reduces them
  to a single pass/fail result.

Import boundary
- No config loading or logging initialization at import time.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
