"""Execution context, session history and the system message for a task."""

import logging
import platform
import uuid
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Callable

from codeloop.core.cancellation import CancellationToken
from codeloop.permissions import ApprovalMode, PermissionStore
from codeloop.tools.base import ToolExecutionContext
from codeloop.tools.registry import ToolRegistry

_log = logging.getLogger(__name__)

PROJECT_INSTRUCTIONS_FILE = "AGENTS.md"

SYSTEM_PROMPT = """You are a coding assistant working inside the user's project. \
You can read, search and edit files and run shell commands through tools.

## Behavior
- Be concise. Act first, then explain only what is useful.
- Say in one sentence what you are about to do before calling a tool.
- When a tool fails, read the error, then try a different approach.
- If the task is ambiguous, make a reasonable assumption and state it.

## Tools
- Read files before editing them. Never guess their contents.
- Prefer file_edit for targeted changes and file_write for new files.
- Use glob and grep to locate code instead of listing whole directories.
- Several read-only tool calls in one turn run in parallel; batch them.

## Safety
- Mutating actions may be rejected by the user. When a call is rejected, \
stop and explain what you intended to do.
- Treat irreversible commands (rm -rf, dropping databases, force pushes) as \
destructive and avoid them unless the user asked for exactly that.
- Stay inside the working directory unless told otherwise.

## Code Quality
- Match the language, style and structure already used in the project.
- Leave no debug prints or commented-out code behind.
"""


def is_git_repository(cwd: str) -> bool:
    return (Path(cwd) / ".git").exists()


def build_environment_details(cwd: str, model: str) -> str:
    return (
        "Here is useful information about the environment you are running in:\n"
        "<env>\n"
        f"Working directory: {cwd}\n"
        f"Is directory a git repo: {is_git_repository(cwd)}\n"
        f"Computer Platform: {platform.system().lower()}\n"
        f"Today's date: {date.today().isoformat()}\n"
        f"Model: {model}\n"
        "</env>"
    )


def read_project_instructions(cwd: str) -> str:
    path = Path(cwd) / PROJECT_INSTRUCTIONS_FILE
    if not path.is_file():
        return ""
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        _log.warning("Could not read %s: %s", path, e)
        return ""


def build_system_message(cwd: str, model: str) -> dict[str, Any]:
    """System prompt + environment block + the project's AGENTS.md, if any."""
    content = f"{SYSTEM_PROMPT}\n{build_environment_details(cwd, model)}"
    instructions = read_project_instructions(cwd)
    if instructions.strip():
        content += (
            f"\n\n# Project Instructions ({PROJECT_INSTRUCTIONS_FILE})\n"
            f"<project_instructions>\n{instructions.strip()}\n</project_instructions>"
        )
    return {"role": "system", "content": content}


@dataclass
class Session:
    """Prior turns of an interactive session, kept in memory only."""

    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    messages: list[dict[str, Any]] = field(default_factory=list)

    def clear(self) -> None:
        self.messages = []


@dataclass
class ExecutionContext:
    """Everything one task needs from its surroundings."""

    cwd: str
    cancellation: CancellationToken
    get_approval_mode: Callable[[], ApprovalMode]
    session: Session
    registry: ToolRegistry
    permissions: PermissionStore

    def tool_context(self) -> ToolExecutionContext:
        """Snapshot for one tool call; the approval mode is read at call time."""
        return ToolExecutionContext(
            cwd=self.cwd,
            approval_mode=ApprovalMode(self.get_approval_mode()),
            session_id=self.session.session_id,
            permissions=self.permissions,
            cancellation=self.cancellation,
        )
