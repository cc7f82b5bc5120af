"""One-shot shell execution with idle and maximum timeouts."""

from __future__ import annotations

import asyncio
import contextlib
import os
import signal
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

DEFAULT_TIMEOUT_MS = 120_000
DEFAULT_IDLE_TIMEOUT_MS = 5_000
MAX_OUTPUT_BYTES = 256 * 1024

GIT_CHECK_COMMAND = "git rev-parse --is-inside-work-tree"


class ShellSpawnError(RuntimeError):
    """The shell process could not be started."""


@dataclass(slots=True)
class ProcessResult:
    stdout: str
    stderr: str
    exit_code: int
    timed_out: bool = False
    idle_timed_out: bool = False
    pid: int | None = None


class ProcessRunner(Protocol):
    async def run(
        self,
        command: str,
        cwd: str | Path | None,
        max_timeout_ms: int | None = None,
        idle_timeout_ms: int | None = None,
    ) -> ProcessResult: ...


@dataclass(slots=True)
class _Capture:
    last_output: float
    stdout: bytearray = field(default_factory=bytearray)
    stderr: bytearray = field(default_factory=bytearray)

    async def pump(self, reader: asyncio.StreamReader | None, sink: bytearray) -> None:
        if reader is None:
            return
        loop = asyncio.get_running_loop()
        while True:
            chunk = await reader.read(4096)
            if not chunk:
                return
            # Any byte counts as activity, not just complete lines.
            self.last_output = loop.time()
            remaining = MAX_OUTPUT_BYTES - len(sink)
            if remaining > 0:
                sink.extend(chunk[:remaining])


class SubprocessRunner:
    def __init__(self, shell_program: str = "/bin/bash") -> None:
        self.shell_program = shell_program

    async def run(
        self,
        command: str,
        cwd: str | Path | None,
        max_timeout_ms: int | None = None,
        idle_timeout_ms: int | None = None,
    ) -> ProcessResult:
        max_timeout = (max_timeout_ms or DEFAULT_TIMEOUT_MS) / 1000
        idle_timeout = (idle_timeout_ms or DEFAULT_IDLE_TIMEOUT_MS) / 1000

        try:
            process = await asyncio.create_subprocess_exec(
                self.shell_program,
                "-c",
                command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd else None,
                preexec_fn=os.setsid,
            )
        except OSError as exc:
            raise ShellSpawnError(f"Failed to spawn shell: {exc}") from exc

        loop = asyncio.get_running_loop()
        started = loop.time()
        capture = _Capture(last_output=started)
        readers = [
            asyncio.create_task(capture.pump(process.stdout, capture.stdout)),
            asyncio.create_task(capture.pump(process.stderr, capture.stderr)),
        ]
        waiter = asyncio.create_task(process.wait())

        timed_out = False
        idle_timed_out = False
        try:
            while not waiter.done():
                now = loop.time()
                if now - started >= max_timeout:
                    timed_out = True
                    break
                if now - capture.last_output >= idle_timeout:
                    idle_timed_out = True
                    break
                budget = min(
                    idle_timeout - (now - capture.last_output),
                    max_timeout - (now - started),
                )
                await asyncio.wait({waiter}, timeout=max(budget, 0.01))

            if timed_out or idle_timed_out:
                await self._terminate(process)
        finally:
            # Background children can keep the pipes open after the shell exits.
            _, pending = await asyncio.wait(readers, timeout=1.0)
            for task in pending:
                task.cancel()
            if not waiter.done():
                waiter.cancel()
            await asyncio.gather(*readers, waiter, return_exceptions=True)

        return ProcessResult(
            stdout=capture.stdout.decode("utf-8", errors="replace"),
            stderr=capture.stderr.decode("utf-8", errors="replace"),
            exit_code=process.returncode if process.returncode is not None else -1,
            timed_out=timed_out,
            idle_timed_out=idle_timed_out,
            pid=process.pid,
        )

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            os.killpg(os.getpgid(process.pid), signal.SIGKILL)
        try:
            await asyncio.wait_for(process.wait(), timeout=2)
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()


async def is_inside_git_repository(
    runner: ProcessRunner,
    workspace_root: str,
    timeout_ms: int = 5_000,
) -> bool:
    """Ask git whether ``workspace_root`` belongs to a work tree."""
    result = await runner.run(
        GIT_CHECK_COMMAND,
        workspace_root,
        max_timeout_ms=timeout_ms,
        idle_timeout_ms=timeout_ms,
    )
    if result.timed_out or result.idle_timed_out:
        return False
    return result.exit_code == 0 and result.stdout.strip() == "true"
