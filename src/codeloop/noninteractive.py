"""Non-interactive mode: run one task silently and map the outcome to an exit code.

Exit codes:

- 0: success
- 1: permission denied
- 2: aborted
- 3: model (LLM) error
- 4: internal error

Only pre-configured permissions apply: every request that would need the user
is rejected, with an explanation on stderr. The final response goes to
stdout; nothing else does.
"""

import logging
from typing import Optional

import click

from codeloop.config import AgentConfig
from codeloop.core.cancellation import CancellationToken
from codeloop.core.compression import CompressionManager
from codeloop.core.context import ExecutionContext, Session
from codeloop.core.events import EventBus
from codeloop.core.executor import AgentExecutor, ErrorType
from codeloop.core.llm import LLMClient
from codeloop.permissions import ApprovalDecision, ApprovalMode, PermissionStore, PermissionUiHint
from codeloop.tools import ToolRegistry, build_registry

_log = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_CODES = {
    ErrorType.PERMISSION_DENIED: 1,
    ErrorType.ABORTED: 2,
    ErrorType.LLM_ERROR: 3,
    ErrorType.INTERNAL_ERROR: 4,
}


def build_executor(config: AgentConfig) -> AgentExecutor:
    """Model client, compression manager and loop controller for ``config``."""
    client = LLMClient(config)
    return AgentExecutor(client, CompressionManager(client, config.compression_threshold))


def format_permission_hint(hint: PermissionUiHint) -> str:
    if hint.kind == "fs":
        return f"File system write access to: {hint.path}"
    if hint.kind == "bash":
        return f"Bash command: {hint.command}"
    return "unknown permission"


async def deny_permission(hint: PermissionUiHint, request_id: str) -> ApprovalDecision:
    click.echo(f"\nPermission required: {format_permission_hint(hint)}", err=True)
    click.echo("In non-interactive mode, all permissions must be pre-configured.", err=True)
    click.echo("Use --approval-mode or grant project permissions interactively first.", err=True)
    return ApprovalDecision.reject()


async def run_non_interactive(
    prompt: str,
    cwd: str,
    config: AgentConfig,
    approval_mode: Optional[ApprovalMode] = None,
    cancellation: Optional[CancellationToken] = None,
    executor: Optional[AgentExecutor] = None,
    registry: Optional[ToolRegistry] = None,
    permissions: Optional[PermissionStore] = None,
) -> int:
    """Run ``prompt`` in ``cwd`` without a UI and return the process exit code."""
    mode = ApprovalMode(approval_mode or config.approval_mode)
    context = ExecutionContext(
        cwd=cwd,
        cancellation=cancellation or CancellationToken(),
        get_approval_mode=lambda: mode,
        session=Session(),
        registry=registry or build_registry(),
        permissions=permissions or PermissionStore(),
    )
    executor = executor or build_executor(config)

    result = await executor.run(prompt, context, EventBus(), approver=deny_permission)

    if result.success:
        if result.response:
            click.echo(result.response)
        return EXIT_SUCCESS

    error = result.error
    if error is None:
        click.echo("\nExecution failed with an internal error: no result was produced", err=True)
        return EXIT_CODES[ErrorType.INTERNAL_ERROR]
    _log.debug("Task failed: %s: %s", error.type.value, error.message)

    if error.type is ErrorType.PERMISSION_DENIED:
        click.echo("\nExecution failed due to permission denial.", err=True)
        click.echo("To resolve:", err=True)
        click.echo("  1. Use --approval-mode yolo (auto-approve everything)", err=True)
        click.echo("  2. Use --approval-mode auto_edit (auto-approve file edits)", err=True)
        click.echo(f"  3. Pre-approve commands in {PermissionStore.project_grants_path(cwd)}", err=True)
    elif error.type is ErrorType.ABORTED:
        click.echo(f"\nExecution was aborted: {error.message}", err=True)
    elif error.type is ErrorType.LLM_ERROR:
        click.echo(f"\nLLM API call failed: {error.message}", err=True)
        click.echo("Check your API key and network connection.", err=True)
    else:
        click.echo(f"\nExecution failed with an internal error: {error.message}", err=True)
    return EXIT_CODES[error.type]
