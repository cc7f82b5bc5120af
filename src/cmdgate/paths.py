"""Platform storage roots and logical path containment."""

from __future__ import annotations

import os
from pathlib import Path

from platformdirs import PlatformDirs

APP_NAME = "cmdgate"
APP_AUTHOR = "cmdgate"


def dirs() -> PlatformDirs:
    return PlatformDirs(appname=APP_NAME, appauthor=APP_AUTHOR, roaming=False)


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def config_root() -> Path:
    return ensure_dir(Path(dirs().user_config_path))


def state_root() -> Path:
    return ensure_dir(Path(dirs().user_state_path))


def settings_path() -> Path:
    return config_root() / "settings.json"


def runtime_log_path() -> Path:
    return state_root() / "logs" / "cmdgate.runtime.jsonl"


def is_path_within_directory(candidate: str | os.PathLike[str], root: str | os.PathLike[str]) -> bool:
    """Return True when ``candidate`` lies on or beneath ``root``.

    Purely lexical: symlinks are not resolved and nothing touches the
    filesystem. Relative candidates are taken relative to ``root`` and ``..``
    segments are collapsed before comparing, so ``root/../x`` is outside.
    """

    normalized_root = os.path.normpath(os.path.abspath(os.fspath(root)))
    normalized = os.path.normpath(os.path.join(normalized_root, os.fspath(candidate)))
    if normalized == normalized_root:
        return True
    prefix = normalized_root if normalized_root.endswith(os.sep) else normalized_root + os.sep
    return normalized.startswith(prefix)
