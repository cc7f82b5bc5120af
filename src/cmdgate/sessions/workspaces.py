"""In-memory task -> workspace root bindings."""

from __future__ import annotations

from pathlib import Path
from typing import Awaitable, Callable

WorkspaceResolver = Callable[[str | None], Awaitable[str | None]]


class WorkspaceRegistry:
    def __init__(self, default_root: str | Path | None = None) -> None:
        self._roots: dict[str, Path] = {}
        self.default_root = Path(default_root).expanduser() if default_root else None

    def bind(self, task_id: str, root: str | Path) -> Path:
        path = Path(root).expanduser()
        self._roots[task_id] = path
        return path

    def unbind(self, task_id: str) -> None:
        self._roots.pop(task_id, None)

    async def resolve(self, task_id: str | None) -> str | None:
        """Return the root bound to ``task_id``, falling back to the default root."""
        root = self._roots.get(task_id) if task_id else None
        if root is None:
            root = self.default_root
        return str(root) if root is not None else None
