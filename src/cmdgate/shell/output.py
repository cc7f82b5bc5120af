"""Decide how much of an approved command's output to keep."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

from cmdgate.config.models import OutputSettings
from cmdgate.shell.runner import ProcessResult
from cmdgate.shell.safety import OutcomeCode

OutputStrategy = Literal["full", "minimal", "default"]

MINIMAL_SUCCESS_MARKER = "(output truncated on success)"

# The output is the answer: status, listings, searches, printing, system info.
OUTPUT_IS_RESULT_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern)
    for pattern in (
        r"^git\s+(status|log|diff|show|branch|remote|config|rev-parse|ls-files|blame|describe|tag)",
        r"^(ls|dir|find|tree|exa|eza|lsd)\b",
        r"^(cat|head|tail|grep|rg|ag|ack|sed|awk)\b",
        r"^(curl|wget|http|httpie)\b",
        r"^(echo|printf)\b",
        r"^(pwd|whoami|hostname|uname|id|groups)\b",
        r"^(env|printenv|set)\b",
        r"^(which|where|type|command)\b",
        r"^(jq|yq|xq)\b",
        r"^(wc|sort|uniq|cut|tr|column)\b",
        r"^(date|cal|uptime)\b",
        r"^(df|du|free|top|ps|lsof)\b",
        r"^npm\s+(list|ls|outdated|view|info|search)\b",
        r"^yarn\s+(list|info|why)\b",
        r"^bun\s+pm\s+(ls|cache)\b",
        r"^cargo\s+(tree|metadata|search)\b",
        r"^pip\s+(list|show|freeze)\b",
        r"^docker\s+(ps|images|inspect|logs)\b",
    )
)

# Pass/fail is what matters; stdout on success is noise.
BUILD_TEST_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern)
    for pattern in (
        r"^(npm|yarn|pnpm|bun)\s+(run\s+)?(test|build|lint|check|typecheck|tsc|compile)",
        r"^(cargo|rustc)\s+(test|build|check|clippy)",
        r"^go\s+(test|build|vet)",
        r"^(pytest|jest|vitest|mocha|ava|tap|tox|nox)\b",
        r"^(ruff|mypy|pyright|flake8|pylint)\b",
        r"^(make|cmake|ninja)\b",
        r"^(tsc|eslint|prettier|biome)\b",
        r"^(gradle|mvn|ant)\b",
        r"^dotnet\s+(build|test|run)",
    )
)


def classify_output_strategy(command: str) -> OutputStrategy:
    trimmed = command.strip()
    if any(pattern.search(trimmed) for pattern in OUTPUT_IS_RESULT_PATTERNS):
        return "full"
    if any(pattern.search(trimmed) for pattern in BUILD_TEST_PATTERNS):
        return "minimal"
    return "default"


def truncate_output(text: str, max_lines: int) -> str | None:
    """Keep the last ``max_lines`` lines of ``text``; blank output becomes None."""
    if not text.strip():
        return None
    lines = text.split("\n")
    if len(lines) <= max_lines:
        return text
    dropped = len(lines) - max_lines
    return f"... ({dropped} lines truncated)\n" + "\n".join(lines[-max_lines:])


@dataclass(slots=True)
class ExecutionOutcome:
    success: bool
    command: str
    message: str
    output: str | None = None
    error: str | None = None
    exit_code: int | None = None
    timed_out: bool | None = None
    idle_timed_out: bool | None = None
    pid: int | None = None
    code: OutcomeCode | None = None

    def to_dict(self) -> dict[str, object]:
        payload = {
            "success": self.success,
            "command": self.command,
            "message": self.message,
            "output": self.output,
            "error": self.error,
            "exit_code": self.exit_code,
            "timed_out": self.timed_out,
            "idle_timed_out": self.idle_timed_out,
            "pid": self.pid,
            "code": self.code,
        }
        return {key: value for key, value in payload.items() if value is not None}


class OutputShaper:
    def __init__(self, limits: OutputSettings | None = None, idle_timeout_ms: int = 5_000) -> None:
        self.limits = limits or OutputSettings()
        self.idle_timeout_ms = idle_timeout_ms

    def shape(self, result: ProcessResult, command: str) -> ExecutionOutcome:
        """Map a finished process onto the outcome handed back to the agent.

        Timeouts are not failures: a dev server or watcher that went quiet is
        reported as a success along with its pid and the output it produced.
        A non-zero exit always keeps its error detail whatever the strategy.
        """

        limits = self.limits
        pid_text = result.pid if result.pid is not None else "unknown"
        stderr = result.stderr or None

        if result.idle_timed_out:
            seconds = self.idle_timeout_ms / 1000
            success = True
            message = f"Command running in background (idle timeout after {seconds:g}s). PID: {pid_text}"
            output = truncate_output(result.stdout, limits.timeout_max_lines)
            error = stderr
        elif result.timed_out:
            success = True
            message = f"Command timed out after max timeout. PID: {pid_text}"
            output = truncate_output(result.stdout, limits.timeout_max_lines)
            error = stderr
        elif result.exit_code == 0:
            success = True
            message = "Command executed successfully"
            strategy = classify_output_strategy(command)
            if strategy == "full":
                output = truncate_output(result.stdout, limits.full_max_lines)
            elif strategy == "minimal":
                output = MINIMAL_SUCCESS_MARKER if result.stdout.strip() else None
            else:
                output = truncate_output(result.stdout, limits.default_max_lines)
            error = stderr
        else:
            success = False
            message = f"Command failed with exit code {result.exit_code}"
            error = result.stderr if result.stderr.strip() else None
            output = truncate_output(result.stdout, limits.failure_max_lines)

        return ExecutionOutcome(
            success=success,
            command=command,
            message=message,
            output=output,
            error=error,
            exit_code=result.exit_code,
            timed_out=result.timed_out,
            idle_timed_out=result.idle_timed_out,
            pid=result.pid,
        )
