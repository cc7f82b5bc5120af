"""Validate agent-proposed shell commands and run the ones that pass."""

from __future__ import annotations

from functools import partial

from cmdgate.config.models import GatewaySettings
from cmdgate.runtime_logging import get_runtime_logger
from cmdgate.sessions.workspaces import WorkspaceRegistry, WorkspaceResolver
from cmdgate.shell.heredoc import extract_scan_text
from cmdgate.shell.output import ExecutionOutcome, OutputShaper
from cmdgate.shell.rm_guard import RmPathValidator
from cmdgate.shell.runner import ProcessRunner, SubprocessRunner, is_inside_git_repository
from cmdgate.shell.safety import DangerClassifier, OutcomeCode


def rejection(command: str, code: OutcomeCode, reason: str) -> ExecutionOutcome:
    return ExecutionOutcome(
        success=False,
        command=command,
        message=f"Command blocked: {reason}",
        error=reason,
        code=code,
    )


class CommandGateway:
    """Pre-execution firewall in front of a process runner.

    A command is classified on its heredoc-stripped text, ``rm`` targets are
    confined to the task's workspace, and only then is the original,
    unmodified command handed to the runner. Every rejection is returned
    before the runner is touched, and no exception escapes :meth:`execute`.
    """

    def __init__(
        self,
        runner: ProcessRunner,
        resolve_workspace: WorkspaceResolver,
        *,
        settings: GatewaySettings | None = None,
        classifier: DangerClassifier | None = None,
        rm_validator: RmPathValidator | None = None,
        shaper: OutputShaper | None = None,
    ) -> None:
        self.settings = settings or GatewaySettings()
        self.runner = runner
        self.resolve_workspace = resolve_workspace
        self.classifier = classifier or DangerClassifier()
        self.rm_validator = rm_validator or RmPathValidator()
        self.shaper = shaper or OutputShaper(
            self.settings.output,
            idle_timeout_ms=self.settings.timeouts.idle_timeout_ms,
        )

    @classmethod
    def from_settings(
        cls,
        settings: GatewaySettings,
        registry: WorkspaceRegistry | None = None,
    ) -> CommandGateway:
        registry = registry or WorkspaceRegistry(settings.workspace.default_root)
        runner = SubprocessRunner(settings.shell.shell_program)
        return cls(runner, registry.resolve, settings=settings)

    async def execute(self, command: str, task_id: str | None = None) -> ExecutionOutcome:
        log = get_runtime_logger().bind(task_id=task_id)
        workspace_root: str | None = None
        try:
            scan_text = extract_scan_text(command)
            blocked = self._check_danger(command, scan_text)
            if blocked is None:
                workspace_root = await self.resolve_workspace(task_id)
                blocked = await self._check_rm(command, scan_text, workspace_root)
            if blocked is not None:
                log.warning("gateway.blocked", command=command, code=blocked.code, reason=blocked.error)
                return blocked

            log.info("gateway.executing", command=command, cwd=workspace_root)
            timeouts = self.settings.timeouts
            result = await self.runner.run(
                command,
                workspace_root,
                max_timeout_ms=timeouts.max_timeout_ms,
                idle_timeout_ms=timeouts.idle_timeout_ms,
            )
            outcome = self.shaper.shape(result, command)
            log.log(
                "info" if outcome.success else "debug",
                "gateway.completed",
                command=command,
                exit_code=result.exit_code,
                timed_out=result.timed_out,
                idle_timed_out=result.idle_timed_out,
                pid=result.pid,
            )
            return outcome
        except Exception as exc:
            log.error("gateway.error", command=command, error=repr(exc))
            return ExecutionOutcome(
                success=False,
                command=command,
                message="Error executing bash command",
                error=str(exc) or type(exc).__name__,
                code="EXECUTION_ERROR",
            )

    async def validate(self, command: str, workspace_root: str | None) -> ExecutionOutcome | None:
        """Return the rejection for ``command``, or None when it may run."""
        scan_text = extract_scan_text(command)
        blocked = self._check_danger(command, scan_text)
        if blocked is not None:
            return blocked
        return await self._check_rm(command, scan_text, workspace_root)

    def _check_danger(self, command: str, scan_text: str) -> ExecutionOutcome | None:
        verdict = self.classifier.classify(scan_text)
        if not verdict.dangerous:
            return None
        return rejection(command, verdict.code or "BLOCKED_PATTERN", verdict.reason)

    async def _check_rm(
        self,
        command: str,
        scan_text: str,
        workspace_root: str | None,
    ) -> ExecutionOutcome | None:
        git_check = partial(
            is_inside_git_repository,
            self.runner,
            workspace_root or "",
            self.settings.timeouts.git_check_timeout_ms,
        )
        validation = await self.rm_validator.validate(scan_text, workspace_root, git_check)
        if validation.allowed:
            return None
        return rejection(
            command,
            validation.code or "BLOCKED_PATH_OUTSIDE_WORKSPACE",
            validation.reason or "rm command is not allowed",
        )
