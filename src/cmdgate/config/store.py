"""Load/save gateway settings."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from cmdgate.config.models import GatewaySettings
from cmdgate.paths import settings_path
from cmdgate.runtime_logging import get_runtime_logger

_ENV_OVERRIDES: dict[str, str] = {
    "CMDGATE_SHELL": "shell.shell_program",
    "CMDGATE_WORKSPACE_ROOT": "workspace.default_root",
}


class SettingsStore:
    def __init__(self, path: Path | None = None) -> None:
        self.path = path or settings_path()

    def load(self) -> GatewaySettings:
        if not self.path.exists():
            return self._with_env(GatewaySettings())

        raw = self.path.read_text(encoding="utf-8")
        try:
            settings = GatewaySettings.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as exc:
            # Keep the unreadable payload next to the fresh defaults.
            backup = self.path.with_suffix(".corrupt.json")
            backup.write_text(raw, encoding="utf-8")
            get_runtime_logger().warning(
                "settings.corrupt",
                path=str(self.path),
                backup=str(backup),
                error=str(exc),
            )
            settings = GatewaySettings()
            self.save(settings)
        return self._with_env(settings)

    def save(self, settings: GatewaySettings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(settings.model_dump(mode="json"), indent=2, sort_keys=True)
        self.path.write_text(f"{payload}\n", encoding="utf-8")

    def update(self, dotted_key: str, value: Any) -> GatewaySettings:
        """Set one dotted key in the file on disk and return the validated result."""
        settings = self._read_file()
        data = _assign(settings.model_dump(), dotted_key, value)
        updated = GatewaySettings.model_validate(data)
        self.save(updated)
        return updated

    def _read_file(self) -> GatewaySettings:
        if not self.path.exists():
            return GatewaySettings()
        return GatewaySettings.model_validate_json(self.path.read_text(encoding="utf-8"))

    def _with_env(self, settings: GatewaySettings) -> GatewaySettings:
        data = settings.model_dump()
        overridden = False
        for env_name, dotted_key in _ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value:
                data = _assign(data, dotted_key, value)
                overridden = True
        if not overridden:
            return settings
        return GatewaySettings.model_validate(data)


def _assign(data: dict[str, Any], dotted_key: str, value: Any) -> dict[str, Any]:
    keys = dotted_key.split(".")
    cursor: dict[str, Any] = data
    for key in keys[:-1]:
        nested = cursor.get(key)
        if not isinstance(nested, dict):
            raise KeyError(f"Unknown setting path: {dotted_key}")
        cursor = nested
    if keys[-1] not in cursor:
        raise KeyError(f"Unknown setting path: {dotted_key}")
    cursor[keys[-1]] = value
    return data
