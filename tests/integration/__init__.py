"""
pushgate — integration test package

File: tests/integration/__init__.py
Last updated: 2026-10-19

Purpose
- Test package marker file for tests that spawn real subprocesses.

Functional requirements
- Must not trigger network access.
"""
