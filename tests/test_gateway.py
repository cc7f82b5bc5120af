from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from cmdgate.config.models import GatewaySettings
from cmdgate.gateway import CommandGateway
from cmdgate.runtime_logging import configure_runtime_logging
from cmdgate.sessions.workspaces import WorkspaceRegistry
from cmdgate.shell.runner import GIT_CHECK_COMMAND, ProcessResult, ShellSpawnError

ROOT = "/test/root"


class FakeRunner:
    """Stands in for the process runner; answers the git check separately."""

    def __init__(
        self,
        *,
        result: ProcessResult | None = None,
        git_result: ProcessResult | None = None,
        error: Exception | None = None,
    ) -> None:
        self.result = result or ProcessResult(stdout="ok", stderr="", exit_code=0, pid=4242)
        self.git_result = git_result or ProcessResult(stdout="true\n", stderr="", exit_code=0)
        self.error = error
        self.calls: list[tuple[str, str | None, int | None, int | None]] = []

    async def run(self, command, cwd, max_timeout_ms=None, idle_timeout_ms=None):  # noqa: ANN001, ANN201
        self.calls.append((command, cwd, max_timeout_ms, idle_timeout_ms))
        if command == GIT_CHECK_COMMAND:
            return self.git_result
        if self.error is not None:
            raise self.error
        return self.result

    @property
    def git_checks(self) -> list[tuple[str, str | None, int | None, int | None]]:
        return [call for call in self.calls if call[0] == GIT_CHECK_COMMAND]

    @property
    def executed(self) -> list[str]:
        return [call[0] for call in self.calls if call[0] != GIT_CHECK_COMMAND]


class GatewayTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        configure_runtime_logging(level="off")
        self.runner = FakeRunner()
        self.registry = WorkspaceRegistry()
        self.registry.bind("task-1", ROOT)
        self.gateway = CommandGateway(self.runner, self.registry.resolve)

    async def execute(self, command: str, task_id: str | None = "task-1"):  # noqa: ANN201
        return await self.gateway.execute(command, task_id)


class SafeCommandTests(GatewayTestCase):
    async def test_safe_command_runs_in_workspace(self) -> None:
        outcome = await self.execute("git status")

        self.assertTrue(outcome.success)
        self.assertEqual(outcome.output, "ok")
        self.assertEqual(outcome.pid, 4242)
        self.assertEqual(self.runner.calls, [("git status", ROOT, 120_000, 5_000)])

    async def test_pipe_is_approved(self) -> None:
        outcome = await self.execute("echo hi | grep hi")
        self.assertTrue(outcome.success)
        self.assertEqual(self.runner.executed, ["echo hi | grep hi"])

    async def test_non_rm_command_ignores_workspace_and_git_state(self) -> None:
        self.runner.git_result = ProcessResult(stdout="", stderr="not a git repo", exit_code=128)

        outcome = await self.execute("ls -la", task_id="unbound")

        self.assertTrue(outcome.success)
        self.assertEqual(self.runner.calls, [("ls -la", None, 120_000, 5_000)])

    async def test_heredoc_body_is_never_scanned_and_original_command_runs(self) -> None:
        command = "cat << 'EOF' > script.sh\nrm -rf /\nshutdown now\nEOF"
        outcome = await self.execute(command)

        self.assertTrue(outcome.success)
        self.assertEqual(self.runner.executed, [command])
        self.assertEqual(self.runner.git_checks, [])

    async def test_settings_drive_timeouts(self) -> None:
        settings = GatewaySettings()
        settings.timeouts.max_timeout_ms = 30_000
        settings.timeouts.idle_timeout_ms = 2_000
        gateway = CommandGateway(self.runner, self.registry.resolve, settings=settings)

        await gateway.execute("npm test", "task-1")

        self.assertEqual(self.runner.calls, [("npm test", ROOT, 30_000, 2_000)])


class BlockedCommandTests(GatewayTestCase):
    async def assertBlocked(self, command: str, code: str, fragment: str, task_id: str | None = "task-1") -> None:
        outcome = await self.execute(command, task_id)

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.code, code)
        self.assertTrue(outcome.message.startswith("Command blocked: "))
        self.assertIn(fragment, outcome.message)
        self.assertEqual(outcome.error, outcome.message.removeprefix("Command blocked: "))
        self.assertEqual(self.runner.executed, [])

    async def test_exact_command(self) -> None:
        await self.assertBlocked("shutdown now", "BLOCKED_EXACT_COMMAND", '"shutdown"')

    async def test_chained_dangerous_command(self) -> None:
        await self.assertBlocked("pwd; shutdown now", "BLOCKED_PATTERN", "dangerous pattern")

    async def test_wildcard_rm_is_blocked_before_any_git_check(self) -> None:
        await self.assertBlocked("rm *.txt", "BLOCKED_PATTERN", "dangerous pattern", task_id=None)
        self.assertEqual(self.runner.git_checks, [])

    async def test_rm_without_workspace(self) -> None:
        await self.assertBlocked("rm file.txt", "BLOCKED_NO_WORKSPACE", "no workspace root is set", task_id=None)
        self.assertEqual(self.runner.calls, [])

    async def test_rm_outside_git_repository(self) -> None:
        self.runner.git_result = ProcessResult(stdout="", stderr="fatal: not a git repository", exit_code=128)
        await self.assertBlocked("rm src/component.tsx", "BLOCKED_NOT_GIT_REPO", "only allowed in git repositories")
        self.assertEqual(self.runner.git_checks, [(GIT_CHECK_COMMAND, ROOT, 5_000, 5_000)])

    async def test_rm_outside_workspace(self) -> None:
        await self.assertBlocked("rm /etc/passwd", "BLOCKED_PATH_OUTSIDE_WORKSPACE", "outside the workspace")

    async def test_rm_before_heredoc(self) -> None:
        await self.assertBlocked(
            "rm -rf / && cat << EOF\nsafe content\nEOF",
            "BLOCKED_PATH_OUTSIDE_WORKSPACE",
            "outside the workspace",
        )

    async def test_rm_after_heredoc_matches_bare_rm(self) -> None:
        bare = await self.execute("rm -rf /")
        after_heredoc = await self.execute("cat << EOF\nsafe\nEOF\nrm -rf /")

        self.assertFalse(after_heredoc.success)
        self.assertEqual(after_heredoc.code, bare.code)
        self.assertEqual(after_heredoc.error, bare.error)
        self.assertEqual(self.runner.executed, [])

    async def test_second_rm_line_outside_workspace(self) -> None:
        await self.assertBlocked(
            "rm build/out.txt\nrm -rf /etc",
            "BLOCKED_PATH_OUTSIDE_WORKSPACE",
            '"/etc"',
        )

    async def test_arithmetic_shift_does_not_hide_following_lines(self) -> None:
        await self.assertBlocked(
            "echo $((1<<2))\nrm -rf ~",
            "BLOCKED_NO_WORKSPACE",
            "no workspace root is set",
            task_id=None,
        )
        self.assertEqual(self.runner.calls, [])

    async def test_quoted_shift_does_not_hide_following_lines(self) -> None:
        await self.assertBlocked('echo "a <<EOF"\nshutdown now', "BLOCKED_PATTERN", "dangerous pattern")

    async def test_chained_command_after_heredoc(self) -> None:
        await self.assertBlocked("cat << EOF > file.txt\ncontent\nEOF\n&& shutdown now", "BLOCKED_PATTERN", "blocked")


class RmApprovalTests(GatewayTestCase):
    async def test_rm_inside_workspace_runs_original_command(self) -> None:
        for command in ("rm src/file.ts", "rm -rf src/", "rm /test/root/src/file.ts"):
            with self.subTest(command=command):
                outcome = await self.execute(command)
                self.assertTrue(outcome.success, outcome.message)
                self.assertEqual(self.runner.executed[-1], command)

    async def test_each_call_runs_its_own_git_check(self) -> None:
        await self.execute("rm a.txt")
        await self.execute("rm b.txt")
        self.assertEqual(len(self.runner.git_checks), 2)


class ResultMappingTests(GatewayTestCase):
    async def test_failed_command_is_reported(self) -> None:
        self.runner.result = ProcessResult(stdout="", stderr="error TS2304\n", exit_code=2, pid=1)
        outcome = await self.execute("npx tsc --noEmit")

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.message, "Command failed with exit code 2")
        self.assertEqual(outcome.error, "error TS2304\n")
        self.assertIsNone(outcome.code)

    async def test_idle_timeout_surfaces_pid(self) -> None:
        self.runner.result = ProcessResult(stdout="ready\n", stderr="", exit_code=-9, idle_timed_out=True, pid=99)
        outcome = await self.execute("npm run dev")

        self.assertTrue(outcome.success)
        self.assertTrue(outcome.idle_timed_out)
        self.assertIn("PID: 99", outcome.message)


class ExecutionErrorTests(GatewayTestCase):
    async def test_runner_failure_becomes_execution_error(self) -> None:
        self.runner.error = ShellSpawnError("Failed to spawn shell: no such file")
        outcome = await self.execute("ls")

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.code, "EXECUTION_ERROR")
        self.assertEqual(outcome.message, "Error executing bash command")
        self.assertEqual(outcome.error, "Failed to spawn shell: no such file")

    async def test_resolver_failure_becomes_execution_error(self) -> None:
        async def broken(task_id: str | None) -> str | None:
            raise RuntimeError("state store unavailable")

        gateway = CommandGateway(self.runner, broken)
        outcome = await gateway.execute("ls", "task-1")

        self.assertEqual(outcome.code, "EXECUTION_ERROR")
        self.assertEqual(outcome.error, "state store unavailable")
        self.assertEqual(self.runner.calls, [])


class ValidateTests(GatewayTestCase):
    async def test_validate_never_runs_the_command(self) -> None:
        self.assertIsNone(await self.gateway.validate("rm src/file.ts", ROOT))
        blocked = await self.gateway.validate("reboot", ROOT)

        assert blocked is not None
        self.assertEqual(blocked.code, "BLOCKED_EXACT_COMMAND")
        self.assertEqual(self.runner.executed, [])


class GatewayLoggingTests(unittest.IsolatedAsyncioTestCase):
    async def test_blocked_command_is_logged_with_task_id(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            sink = Path(tmp) / "runtime.jsonl"
            configure_runtime_logging(level="info", log_file=sink)
            try:
                gateway = CommandGateway(FakeRunner(), WorkspaceRegistry(ROOT).resolve)
                await gateway.execute("reboot", "task-9")
                events = [json.loads(line) for line in sink.read_text(encoding="utf-8").splitlines()]
            finally:
                configure_runtime_logging(level="off")

        blocked = [event for event in events if event["event"] == "gateway.blocked"]
        self.assertEqual(len(blocked), 1)
        self.assertEqual(blocked[0]["task_id"], "task-9")
        self.assertEqual(blocked[0]["code"], "BLOCKED_EXACT_COMMAND")


if __name__ == "__main__":
    unittest.main()
