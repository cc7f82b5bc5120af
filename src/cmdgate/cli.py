"""CLI entrypoint for cmdgate."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import click
from pydantic import ValidationError

from cmdgate.config.store import SettingsStore
from cmdgate.gateway import CommandGateway
from cmdgate.paths import settings_path
from cmdgate.runtime_logging import RuntimeLogger, configure_runtime_logging, read_log_tail
from cmdgate.sessions.workspaces import WorkspaceRegistry
from cmdgate.shell.heredoc import extract_scan_text, has_heredoc
from cmdgate.shell.output import ExecutionOutcome, classify_output_strategy
from cmdgate.version import __version__

_CLI_TASK_ID = "cli"


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--log-level", help="off, error, warning, info or debug")
@click.option("--log-file", type=click.Path(dir_okay=False), help="JSONL sink for runtime events")
@click.pass_context
def main(ctx: click.Context, log_level: str | None, log_file: str | None) -> None:
    """cmdgate: safety gateway for agent-proposed shell commands."""
    ctx.obj = configure_runtime_logging(level=log_level, log_file=log_file)


def _build_gateway(workspace_dir: str | None) -> tuple[CommandGateway, str | None]:
    settings = SettingsStore().load()
    registry = WorkspaceRegistry(settings.workspace.default_root)
    if workspace_dir is not None:
        registry.bind(_CLI_TASK_ID, Path(workspace_dir).expanduser().resolve())
    return CommandGateway.from_settings(settings, registry), _CLI_TASK_ID


@main.command()
@click.argument("command")
@click.option("--workspace", "workspace_dir", type=click.Path(file_okay=False), help="Workspace root for rm checks")
def check(command: str, workspace_dir: str | None) -> None:
    """Validate COMMAND without running it."""
    gateway, task_id = _build_gateway(workspace_dir)

    async def _validate() -> tuple[str | None, ExecutionOutcome | None]:
        root = await gateway.resolve_workspace(task_id)
        return root, await gateway.validate(command, root)

    workspace_root, blocked = asyncio.run(_validate())
    payload = {
        "command": command,
        "scan_text": extract_scan_text(command),
        "has_heredoc": has_heredoc(command),
        "workspace_root": workspace_root,
        "allowed": blocked is None,
        "output_strategy": classify_output_strategy(command),
    }
    if blocked is not None:
        payload["code"] = blocked.code
        payload["reason"] = blocked.error
    click.echo(json.dumps(payload, indent=2))
    if blocked is not None:
        raise SystemExit(1)


@main.command()
@click.argument("command")
@click.option("--workspace", "workspace_dir", type=click.Path(file_okay=False), help="Workspace root and cwd")
@click.option("--timeout-ms", type=int, help="Maximum run time")
@click.option("--idle-timeout-ms", type=int, help="Maximum time without output")
def run(
    command: str,
    workspace_dir: str | None,
    timeout_ms: int | None,
    idle_timeout_ms: int | None,
) -> None:
    """Validate COMMAND and run it when it passes."""
    gateway, task_id = _build_gateway(workspace_dir)
    if timeout_ms is not None:
        gateway.settings.timeouts.max_timeout_ms = timeout_ms
    if idle_timeout_ms is not None:
        gateway.settings.timeouts.idle_timeout_ms = idle_timeout_ms
        gateway.shaper.idle_timeout_ms = idle_timeout_ms

    outcome = asyncio.run(gateway.execute(command, task_id))
    click.echo(json.dumps(outcome.to_dict(), indent=2))
    if not outcome.success:
        raise SystemExit(1)


@main.group()
def config() -> None:
    """Inspect or change persisted settings."""


@config.command("show")
def config_show() -> None:
    for key, value in SettingsStore().load().setting_items():
        click.echo(f"{key} = {value}")


@config.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str) -> None:
    """Set dotted KEY (for example timeouts.idle_timeout_ms) to VALUE."""
    try:
        updated = SettingsStore().update(key, value)
    except KeyError as exc:
        raise click.UsageError(str(exc.args[0])) from exc
    except ValidationError as exc:
        raise click.BadParameter(str(exc), param_hint="VALUE") from exc
    current = dict(updated.setting_items())
    click.echo(f"{key} = {current[key]}")


@main.command("settings-path")
def settings_path_command() -> None:
    """Print settings file path."""
    click.echo(str(settings_path()))


@main.command()
def about() -> None:
    """Show version and project summary."""
    payload = {
        "name": "cmdgate",
        "version": __version__,
        "description": "Pre-execution safety gateway for agent shell commands",
    }
    click.echo(json.dumps(payload, indent=2))


@main.command("log")
@click.option("--limit", type=int, default=50, show_default=True)
@click.pass_obj
def log_command(logger: RuntimeLogger, limit: int) -> None:
    """Print the most recent runtime log events."""
    sink = logger.sink_path
    if not sink.exists():
        raise click.ClickException("No runtime log has been written yet")
    for event in read_log_tail(sink, limit=limit):
        click.echo(json.dumps(event, sort_keys=True))


if __name__ == "__main__":
    main()
