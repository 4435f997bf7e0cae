from __future__ import annotations

import asyncio
import contextlib
import os
import signal
import time
from pathlib import Path
from typing import Any, Dict

from codeloop.permissions import PermissionUiHint, is_destructive, validate_bash_command
from codeloop.tools.base import PermissionRequiredError, Tool, ToolExecutionContext, ToolResult

MAX_OUTPUT_CHARS = 30000

SCHEMA = {
    "properties": {
        "command": {"type": "string", "description": "Shell command to execute."},
        "timeout_sec": {
            "type": "integer",
            "description": "Timeout in seconds. Default: 120.",
        },
    },
    "required": ["command"],
}


def truncate_output(text: str, max_length: int = MAX_OUTPUT_CHARS) -> tuple[str, bool]:
    if len(text) <= max_length:
        return text, False
    return text[:max_length] + f"\n\n[Output truncated - showing first {max_length} characters]", True


async def kill_process_group(proc: asyncio.subprocess.Process) -> None:
    """Kill the shell and everything it started, then reap it."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    await proc.wait()


class BashTool(Tool):
    name = "bash"
    description = (
        "Execute a shell command in the working directory. "
        "Commands that are not pre-approved require user confirmation."
    )
    schema = SCHEMA

    async def run(self, args: Dict[str, Any], context: ToolExecutionContext) -> ToolResult:
        command: str = args["command"].strip()
        timeout: int = int(args.get("timeout_sec", 120))

        if not command:
            return ToolResult.failure("INVALID_ARGS", "command must not be empty")

        banned = validate_bash_command(command)
        if banned is not None:
            return ToolResult.failure("BANNED_COMMAND", banned)

        cwd = Path(context.cwd)
        if not cwd.exists():
            return ToolResult.failure("CWD_NOT_FOUND", f"Working directory does not exist: {cwd}")

        if not context.permissions.check_bash(context.cwd, command, context.approval_mode):
            raise PermissionRequiredError(PermissionUiHint(
                kind="bash",
                message=f"Permission required to run: {command}",
                command=command,
                destructive=is_destructive(command),
            ))

        started = time.monotonic()
        proc = await asyncio.create_subprocess_shell(
            command,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
        communicate = asyncio.ensure_future(proc.communicate())
        cancel_waiter = asyncio.ensure_future(context.cancellation.wait())
        try:
            done, _ = await asyncio.wait(
                {communicate, cancel_waiter},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if communicate not in done:
                communicate.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await communicate
                await kill_process_group(proc)
                if cancel_waiter in done:
                    return ToolResult.cancelled(
                        f"Command interrupted: {command}", data={"command": command}
                    )
                return ToolResult.failure(
                    "TIMEOUT", f"Command timed out after {timeout} seconds: {command}"
                )
            stdout_b, stderr_b = communicate.result()
        finally:
            cancel_waiter.cancel()
            if not communicate.done():
                communicate.cancel()

        stdout, stdout_truncated = truncate_output(stdout_b.decode("utf-8", errors="replace"))
        stderr, stderr_truncated = truncate_output(stderr_b.decode("utf-8", errors="replace"))
        exit_code = proc.returncode
        return ToolResult.success(
            data={
                "command": command,
                "exit_code": exit_code,
                "stdout": stdout,
                "stderr": stderr,
                "truncated": stdout_truncated or stderr_truncated,
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
            warnings=[] if exit_code == 0 else [f"Command exited with non-zero code {exit_code}"],
        )
