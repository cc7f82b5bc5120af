"""Settings schema for the command gateway."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, field_validator


class ShellSettings(BaseModel):
    shell_program: str = Field(default="/bin/bash", description="Shell used to run approved commands")


class TimeoutSettings(BaseModel):
    max_timeout_ms: int = Field(default=120_000, ge=1_000, le=3_600_000)
    idle_timeout_ms: int = Field(default=5_000, ge=500, le=600_000)
    git_check_timeout_ms: int = Field(default=5_000, ge=500, le=60_000)


class OutputSettings(BaseModel):
    full_max_lines: int = Field(default=1000, ge=10, le=100_000)
    default_max_lines: int = Field(default=200, ge=10, le=100_000)
    failure_max_lines: int = Field(default=50, ge=10, le=100_000)
    timeout_max_lines: int = Field(default=100, ge=10, le=100_000)


class WorkspaceSettings(BaseModel):
    default_root: str | None = Field(default=None, description="Root used when a task has none bound")

    @field_validator("default_root")
    @classmethod
    def validate_root(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return str(Path(value).expanduser())


class GatewaySettings(BaseModel):
    schema_version: int = Field(default=1)
    shell: ShellSettings = Field(default_factory=ShellSettings)
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings)
    output: OutputSettings = Field(default_factory=OutputSettings)
    workspace: WorkspaceSettings = Field(default_factory=WorkspaceSettings)

    def setting_items(self) -> list[tuple[str, str]]:
        """Flatten to dotted key/value pairs."""

        result: list[tuple[str, str]] = []

        def walk(prefix: str, value: object) -> None:
            if isinstance(value, BaseModel):
                for key in type(value).model_fields:
                    walk(f"{prefix}.{key}" if prefix else key, getattr(value, key))
            else:
                result.append((prefix, str(value)))

        walk("", self)
        return result
