"""Confine ``rm`` to the workspace of a git repository."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal

from cmdgate.paths import is_path_within_directory
from cmdgate.runtime_logging import get_runtime_logger
from cmdgate.shell.safety import OutcomeCode, split_chain

RmState = Literal["NO_RM", "NO_WORKSPACE", "NOT_GIT_REPO", "PATH_OUTSIDE", "APPROVED"]

GitCheck = Callable[[], Awaitable[bool]]
PathContains = Callable[[str, str], bool]

_RM_WORD_RE = re.compile(r"\brm\b")
_RM_ARGS_RE = re.compile(r"\brm\s+([^\n]+)")
# Whitespace-separated words where a quoted run counts as part of one word.
_ARG_TOKEN_RE = re.compile(r"""(?:[^\s"']+|"[^"]*"|'[^']*')+""")
_EDGE_QUOTES_RE = re.compile(r"""^["']|["']$""")
_UNRESOLVABLE_CHARS = ("*", "?", "$", "`")


@dataclass(frozen=True, slots=True)
class RmTarget:
    literal_path: str
    is_absolute: bool


@dataclass(frozen=True, slots=True)
class RmValidation:
    allowed: bool
    state: RmState
    code: OutcomeCode | None = None
    reason: str | None = None


def contains_rm(text: str) -> bool:
    return _RM_WORD_RE.search(text) is not None


def _is_absolute(path: str) -> bool:
    return path.startswith("~") or os.path.isabs(path)


def extract_rm_paths(segment: str) -> list[RmTarget]:
    """Return the path arguments of every ``rm`` in ``segment``, flags excluded.

    Each match runs to the end of its line, so anything after an ``rm`` on
    the same line (a pipe into a second ``rm`` included) is read as a path.
    """
    targets: list[RmTarget] = []
    for match in _RM_ARGS_RE.finditer(segment):
        for token in _ARG_TOKEN_RE.findall(match.group(1)):
            if token.startswith("-"):
                continue
            path = _EDGE_QUOTES_RE.sub("", token)
            if path:
                targets.append(RmTarget(literal_path=path, is_absolute=_is_absolute(path)))
    return targets


class RmPathValidator:
    def __init__(self, path_contains: PathContains = is_path_within_directory) -> None:
        self._path_contains = path_contains

    async def validate(
        self,
        scan_text: str,
        workspace_root: str | None,
        git_check: GitCheck,
    ) -> RmValidation:
        if not contains_rm(scan_text):
            return RmValidation(allowed=True, state="NO_RM")

        if not workspace_root:
            return RmValidation(
                allowed=False,
                state="NO_WORKSPACE",
                code="BLOCKED_NO_WORKSPACE",
                reason="rm command is not allowed: no workspace root is set",
            )

        try:
            inside_repo = await git_check()
        except Exception as exc:
            get_runtime_logger().warning(
                "rm_guard.git_check_failed",
                workspace_root=workspace_root,
                error=str(exc),
            )
            return RmValidation(
                allowed=False,
                state="NOT_GIT_REPO",
                code="BLOCKED_NOT_GIT_REPO",
                reason="rm command is only allowed in git repositories (git check failed)",
            )

        if not inside_repo:
            return RmValidation(
                allowed=False,
                state="NOT_GIT_REPO",
                code="BLOCKED_NOT_GIT_REPO",
                reason="rm command is only allowed in git repositories",
            )

        for segment in split_chain(scan_text):
            if not contains_rm(segment):
                continue
            # A bare `rm` is a usage error for the shell to report, not a risk.
            for target in extract_rm_paths(segment):
                if not self._inside(target, workspace_root):
                    return RmValidation(
                        allowed=False,
                        state="PATH_OUTSIDE",
                        code="BLOCKED_PATH_OUTSIDE_WORKSPACE",
                        reason=(
                            f'rm command blocked: path "{target.literal_path}" '
                            "is outside the workspace directory"
                        ),
                    )

        return RmValidation(allowed=True, state="APPROVED")

    def _inside(self, target: RmTarget, workspace_root: str) -> bool:
        path = target.literal_path
        # Globs and expansions cannot be resolved here, so they never count as inside.
        if any(char in path for char in _UNRESOLVABLE_CHARS):
            return False
        if target.is_absolute:
            expanded = os.path.expanduser(path)
            if expanded.startswith("~"):
                return False
            return self._path_contains(expanded, workspace_root)
        return self._path_contains(os.path.join(workspace_root, path), workspace_root)
