"""Version information for the command line tool."""

from __future__ import annotations

import platform
import sys

VERSION_CORE = "0.13.0"
"""Core portion of the semantic version."""

VERSION_PRE_RELEASE = "alpha"
"""Pre-release portion of the semantic version."""

GIT_COMMIT = ""
"""Commit the tool was built from, if known."""


def truncate(s: str, max_len: int) -> str:
    """Cut ``s`` down to at most ``max_len`` characters."""
    if len(s) < max_len:
        return s
    return s[:max_len]


def version() -> str:
    """Return the semantic version, with build metadata for pre-releases."""
    result = VERSION_CORE
    if VERSION_PRE_RELEASE:
        result += "-" + VERSION_PRE_RELEASE
        if GIT_COMMIT:
            result += "+" + truncate(GIT_COMMIT, 14)
    return result


def display_version() -> str:
    """Return the version line shown by the ``version`` command."""
    arch = platform.machine().lower() or "unknown"
    return f"kind v{version()} python{platform.python_version()} {sys.platform}/{arch}"