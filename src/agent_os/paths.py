"""Home-directory aware path helpers."""

from __future__ import annotations

from pathlib import Path


def expand_home(path: str | Path, home: str | Path) -> Path:
    """Expand a leading ``~`` in ``path`` against an explicit ``home`` directory.

    ``~user`` forms are left untouched; only the current user's home is known here.
    """

    text = str(path)
    if text == "~":
        return Path(home)
    if text.startswith("~/"):
        return Path(home) / text[2:]
    return Path(text)


__all__ = ["expand_home"]
