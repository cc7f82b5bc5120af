"""JSONL event log for gateway decisions and command runs.

One JSON object per line, written synchronously so a crash never loses the
event that preceded it. Commands can be arbitrarily long (heredocs, generated
scripts), so string fields are clipped before they are written.
"""

from __future__ import annotations

import json
import os
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

from cmdgate.paths import runtime_log_path

LogLevel = Literal["off", "error", "warning", "info", "debug"]

_SEVERITY: dict[str, int] = {"debug": 10, "info": 20, "warning": 30, "error": 40, "off": 100}
_ALIASES: dict[str, LogLevel] = {"warn": "warning", "none": "off", "disabled": "off", "0": "off"}

MAX_FIELD_CHARS = 4000

_runtime_logger: "RuntimeLogger | None" = None


def parse_level(value: str | None, default: LogLevel = "warning") -> LogLevel:
    if not value:
        return default
    name = value.strip().lower()
    name = _ALIASES.get(name, name)
    return name if name in _SEVERITY else default  # type: ignore[return-value]


def resolve_log_file(path: str | Path | None) -> Path:
    return runtime_log_path() if path is None else Path(path).expanduser().resolve()


def _clip(value: Any) -> Any:
    if isinstance(value, str) and len(value) > MAX_FIELD_CHARS:
        return f"{value[:MAX_FIELD_CHARS]}... ({len(value) - MAX_FIELD_CHARS} chars clipped)"
    return value


@dataclass(slots=True)
class RuntimeLogger:
    level: LogLevel
    sink_path: Path
    context: dict[str, Any] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def enabled(self, level: str) -> bool:
        threshold = _SEVERITY[self.level]
        return threshold < _SEVERITY["off"] and _SEVERITY.get(level, 10) >= threshold

    def bind(self, **context: Any) -> RuntimeLogger:
        """Return a logger on the same sink that stamps ``context`` on every event."""
        return RuntimeLogger(self.level, self.sink_path, {**self.context, **context}, self._lock)

    def log(self, level: str, event: str, **fields: Any) -> None:
        if not self.enabled(level):
            return
        record = {key: _clip(value) for key, value in {**self.context, **fields}.items()}
        record.update(ts=datetime.now(UTC).isoformat(), level=level, event=event, pid=os.getpid())
        self._write(json.dumps(record, sort_keys=True, default=str))

    def _write(self, line: str) -> None:
        with self._lock:
            self.sink_path.parent.mkdir(parents=True, exist_ok=True)
            with self.sink_path.open("a", encoding="utf-8") as handle:
                handle.write(f"{line}\n")

    def debug(self, event: str, **fields: Any) -> None:
        self.log("debug", event, **fields)

    def info(self, event: str, **fields: Any) -> None:
        self.log("info", event, **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self.log("warning", event, **fields)

    def error(self, event: str, **fields: Any) -> None:
        self.log("error", event, **fields)


def configure_runtime_logging(
    *,
    level: str | None = None,
    log_file: str | Path | None = None,
) -> RuntimeLogger:
    """Install the process-wide logger; arguments win over CMDGATE_LOG_LEVEL / CMDGATE_LOG_FILE."""
    global _runtime_logger

    effective_level = parse_level(level or os.getenv("CMDGATE_LOG_LEVEL"))
    if effective_level == "off":
        # Never resolve the default sink here; that would create state directories.
        _runtime_logger = RuntimeLogger(level="off", sink_path=Path(os.devnull))
        return _runtime_logger

    sink = resolve_log_file(log_file or os.getenv("CMDGATE_LOG_FILE"))
    _runtime_logger = RuntimeLogger(level=effective_level, sink_path=sink)
    _runtime_logger.info("logging.configured", configured_level=effective_level, sink_path=str(sink))
    return _runtime_logger


def get_runtime_logger() -> RuntimeLogger:
    if _runtime_logger is None:
        return configure_runtime_logging()
    return _runtime_logger


def read_log_tail(path: Path, limit: int = 100) -> list[dict[str, Any]]:
    """Parse the last ``limit`` events of a JSONL sink, skipping corrupt lines."""
    if not path.exists():
        return []

    events: list[dict[str, Any]] = []
    for line in path.read_text(encoding="utf-8", errors="replace").splitlines()[-limit:]:
        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(payload, dict):
            events.append(payload)
    return events
