"""Locating and reading ``pricerules.toml``.

A catalog directory is marked by its config file, the way a git work tree
is marked by ``.git/``: commands run anywhere below it find it by walking
up. ``PRICERULES_CONFIG`` pins the file explicitly.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from pricerules.config.models import RulesConfig

CONFIG_FILENAME = "pricerules.toml"
CONFIG_ENV_VAR = "PRICERULES_CONFIG"


def _ancestors(start: Path) -> Iterator[Path]:
    current = start.resolve()
    yield current
    yield from current.parents


def find_config(start: Path | None = None) -> Path | None:
    """Path of the config file governing *start* (default: cwd), or None.

    ``PRICERULES_CONFIG`` wins when set; if it names a missing file there
    is no config at all rather than a silent fallback to walk-up.
    """
    pinned = os.environ.get(CONFIG_ENV_VAR)
    if pinned:
        path = Path(pinned)
        return path if path.is_file() else None

    for directory in _ancestors(start or Path.cwd()):
        candidate = directory / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def read_toml(path: Path) -> dict[str, Any]:
    """Parse *path*; raises ``tomllib.TOMLDecodeError`` on bad syntax."""
    return tomllib.loads(path.read_text(encoding="utf-8"))


def load_config(path: Path | None = None, cwd: Path | None = None) -> RulesConfig:
    """Validated sections from *path* (or the discovered file); defaults if none."""
    path = path or find_config(cwd)
    if path is None:
        return RulesConfig()
    return RulesConfig.model_validate(read_toml(path))
