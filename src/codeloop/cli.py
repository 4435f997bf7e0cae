"""codeloop CLI entry point."""

import asyncio
import logging
import os
import sys
from pathlib import Path

import click
import litellm
from prompt_toolkit import PromptSession

from codeloop import __version__
from codeloop.config import ConfigError, apply_cli_overrides, load_config
from codeloop.core.cancellation import CancellationToken, SigintCanceller
from codeloop.core.context import ExecutionContext, Session
from codeloop.core.events import EventBus
from codeloop.core.executor import AgentExecutor, ErrorType
from codeloop.noninteractive import build_executor, run_non_interactive
from codeloop.permissions import ApprovalDecision, ApprovalMode, PermissionOption, PermissionStore, PermissionUiHint
from codeloop.renderer import Renderer
from codeloop.tools import build_registry

litellm.suppress_debug_info = True

USER_PROMPT = "You   > "

EXIT_COMMANDS = {"/exit", "exit", "quit"}


def make_approver(prompt_session: PromptSession, renderer: Renderer):
    """Approval callback that asks the user to pick one of the hint's options."""

    async def approve(hint: PermissionUiHint, request_id: str) -> ApprovalDecision:
        options = hint.options()
        renderer.render_permission_request(hint, options)
        while True:
            try:
                answer = (await prompt_session.prompt_async("Choose [1]: ")).strip() or "1"
            except (KeyboardInterrupt, EOFError):
                return ApprovalDecision.reject()
            if answer.isdigit() and 1 <= int(answer) <= len(options):
                option = options[int(answer) - 1]
                if option == PermissionOption.REJECT:
                    return ApprovalDecision.reject()
                return ApprovalDecision.approve(option)
            renderer.print_warning(f"Enter a number between 1 and {len(options)}.")

    return approve


class InteractiveSession:
    """State of one REPL: session history, grants and the event wiring."""

    def __init__(self, executor: AgentExecutor, cwd: str, approval_mode: ApprovalMode, renderer: Renderer) -> None:
        self.executor = executor
        self.cwd = cwd
        self.approval_mode = approval_mode
        self.renderer = renderer
        self.session = Session()
        self.permissions = PermissionStore()
        self.registry = build_registry()
        self.events = EventBus()
        self.renderer.attach(self.events)
        self.prompt_session: PromptSession = PromptSession()

    async def run_task(self, text: str) -> None:
        token = CancellationToken()
        context = ExecutionContext(
            cwd=self.cwd,
            cancellation=token,
            get_approval_mode=lambda: self.approval_mode,
            session=self.session,
            registry=self.registry,
            permissions=self.permissions,
        )
        with SigintCanceller(token):
            result = await self.executor.run(
                text, context, self.events, approver=make_approver(self.prompt_session, self.renderer)
            )
        if not result.success and result.error is not None:
            if result.error.type is ErrorType.ABORTED:
                self.renderer.print_warning("Interrupted.")
            elif result.error.type is ErrorType.PERMISSION_DENIED:
                self.renderer.print_warning("Stopped: a tool call was rejected.")
        self.renderer.render_status_line(self.executor.client.model, self.session.session_id)

    async def compact(self) -> None:
        if not self.session.messages:
            self.renderer.print_info("Nothing to compact.")
            return
        token = CancellationToken()
        with SigintCanceller(token):
            outcome = await self.executor.compression.compress(
                self.session.messages, self.events, token, auto_triggered=False
            )
        if outcome.compressed:
            self.session.messages = outcome.messages

    def clear(self) -> None:
        self.session.clear()
        self.permissions.clear_session()
        self.renderer.print_info("Conversation cleared.")

    async def loop(self) -> None:
        while True:
            try:
                text = await self.prompt_session.prompt_async(USER_PROMPT)
            except KeyboardInterrupt:
                self.renderer.print_info("Use Ctrl+D or type /exit to quit.")
                continue
            except EOFError:
                break

            text = text.strip()
            if not text:
                continue
            if text in EXIT_COMMANDS:
                break
            if text == "/clear":
                self.clear()
                continue
            if text == "/compact":
                await self.compact()
                continue
            if text.startswith("/"):
                self.renderer.print_warning(f"Unknown command: {text.split()[0]}")
                continue

            await self.run_task(text)


@click.command()
@click.argument("prompt", required=False)
@click.option("--model", default=None, help="Override LLM model (e.g., openai/gpt-4o)")
@click.option("--api-base", default=None, help="Override LiteLLM API base URL")
@click.option(
    "--approval-mode",
    type=click.Choice([m.value for m in ApprovalMode]),
    default=None,
    help="default asks before edits and commands; auto_edit allows edits; yolo allows everything",
)
@click.option("--cwd", "cwd", type=click.Path(exists=True, file_okay=False), default=None, help="Working directory")
@click.option("--verbose", is_flag=True, help="Log debug output to stderr")
@click.version_option(__version__, prog_name="codeloop")
def main(
    prompt: str | None,
    model: str | None,
    api_base: str | None,
    approval_mode: str | None,
    cwd: str | None,
    verbose: bool,
) -> None:
    """Model-agnostic coding agent. Runs PROMPT non-interactively, or starts a REPL."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    try:
        config = load_config()
        config = apply_cli_overrides(config, model=model, api_base=api_base, approval_mode=approval_mode)
    except ConfigError as e:
        click.echo(str(e), err=True)
        sys.exit(1)

    if config.https_proxy:
        os.environ["HTTPS_PROXY"] = config.https_proxy
        os.environ["HTTP_PROXY"] = config.https_proxy

    work_dir = str(Path(cwd or os.getcwd()).resolve())

    if prompt is not None:
        token = CancellationToken()
        with SigintCanceller(token):
            exit_code = asyncio.run(run_non_interactive(prompt, work_dir, config, cancellation=token))
        sys.exit(exit_code)

    renderer = Renderer()
    renderer.render_banner(__version__)
    renderer.render_config({
        "Model": config.model,
        "API": config.api_base,
        "Approval": config.approval_mode,
        "Directory": work_dir,
    })
    renderer.print_info("Type /exit to quit, /clear to reset, /compact to summarize history.")

    repl = InteractiveSession(build_executor(config), work_dir, ApprovalMode(config.approval_mode), renderer)
    asyncio.run(repl.loop())
