"""Utility helpers for spawning agent CLIs."""

from __future__ import annotations

import os
from typing import Mapping

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}

# Shims installed by Homebrew and system package managers are not always on a
# service manager's PATH.
_EXTRA_PATH_ENTRIES = ("/usr/local/bin", "/opt/homebrew/bin")


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized environment suitable for subprocess execution."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    existing = env.get("PATH", "")
    prefix = [entry for entry in _EXTRA_PATH_ENTRIES if entry not in existing.split(os.pathsep)]
    env["PATH"] = os.pathsep.join([*prefix, existing]) if existing else os.pathsep.join(prefix)
    if additional:
        env.update(additional)
    return env


__all__ = ["sanitize_environment"]
