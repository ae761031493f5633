"""Centralized version constant for kairo."""

# KAIRO_GIT_COMMIT is rewritten by setup.py at build time.
KAIRO_VERSION = "0.3.0"
KAIRO_GIT_COMMIT = "unknown"

__all__ = ["KAIRO_VERSION", "KAIRO_GIT_COMMIT"]
