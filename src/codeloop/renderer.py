"""Rich terminal output for the interactive loop."""

import io
from typing import Any, Callable

from rich.align import Align
from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text

from codeloop.core.events import (
    CompressionFailed,
    CompressionStarted,
    CompressionSucceeded,
    EventBus,
    LLMMessageUpdate,
    TaskError,
    TokenUsageUpdate,
    ToolComplete,
    ToolStart,
    ToolUpdate,
)
from codeloop.core.tool_call import (
    ToolCallAbort,
    ToolCallError,
    ToolCallExecuting,
    ToolCallPermissionDenied,
    ToolCallPermissionRequired,
    ToolCallSuccess,
)
from codeloop.permissions import PermissionOption, PermissionUiHint

OPTION_LABELS = {
    PermissionOption.ONCE: "Yes, allow once",
    PermissionOption.FS_DIRECTORY: "Yes, allow edits in this directory",
    PermissionOption.FS_GLOBAL: "Yes, allow all edits in this project",
    PermissionOption.BASH_COMMAND: "Yes, always allow this exact command",
    PermissionOption.BASH_PREFIX: "Yes, always allow commands with this prefix",
    PermissionOption.BASH_GLOBAL: "Yes, allow all commands in this project",
    PermissionOption.REJECT: "No, reject",
}


class StreamingDisplay:
    """Progressive markdown display using Rich Live.

    The model client yields the whole message so far, so each update
    replaces the text instead of appending to it.
    """

    def __init__(self, console: Console) -> None:
        self._text = ""
        self._live = Live("", console=console, refresh_per_second=8, vertical_overflow="visible")
        self._live.start()

    def update(self, text: str) -> None:
        self._text = text
        self._live.update(Markdown(text))

    def close(self) -> None:
        self._live.stop()

    @property
    def full_text(self) -> str:
        return self._text


class PlainStreamingDisplay:
    """Fallback for piped/dumb terminals: prints only the new part of the text."""

    def __init__(self, console: Console) -> None:
        self._console = console
        self._text = ""

    def update(self, text: str) -> None:
        if text.startswith(self._text):
            self._console.out(text[len(self._text):], end="")
        else:
            self._console.out(text, end="")
        self._text = text

    def close(self) -> None:
        if self._text.strip():
            self._console.out("")

    @property
    def full_text(self) -> str:
        return self._text


class Renderer:
    """Render events, markdown and styled status/error output in the terminal."""

    def __init__(self, output_file: io.TextIOBase | None = None) -> None:
        if output_file is not None:
            self.console = Console(file=output_file, force_terminal=False, highlight=False)
        else:
            self.console = Console()
        self._display: StreamingDisplay | PlainStreamingDisplay | None = None
        self.token_count: int | None = None

    # ── event wiring ───────────────────────────────────────────────────

    def attach(self, events: EventBus) -> Callable[[], None]:
        """Subscribe to every event the renderer draws; returns an unsubscribe function."""
        handlers: list[tuple[Callable[[Any], None], type]] = [
            (self.on_message_update, LLMMessageUpdate),
            (self.on_tool_start, ToolStart),
            (self.on_tool_update, ToolUpdate),
            (self.on_tool_complete, ToolComplete),
            (self.on_token_usage, TokenUsageUpdate),
            (self.on_compression_started, CompressionStarted),
            (self.on_compression_succeeded, CompressionSucceeded),
            (self.on_compression_failed, CompressionFailed),
            (self.on_task_error, TaskError),
        ]
        removers = [events.subscribe(handler, event_type) for handler, event_type in handlers]

        def _detach() -> None:
            for remove in removers:
                remove()

        return _detach

    def _open_display(self) -> StreamingDisplay | PlainStreamingDisplay:
        if self._display is None:
            if self.console.is_terminal:
                self._display = StreamingDisplay(self.console)
            else:
                self._display = PlainStreamingDisplay(self.console)
        return self._display

    def _close_display(self) -> None:
        if self._display is not None:
            self._display.close()
            self._display = None

    def on_message_update(self, event: LLMMessageUpdate) -> None:
        content = event.message.get("content")
        text = content if isinstance(content, str) else ""
        if event.status == "streaming":
            self._open_display().update(text)
            return
        if text:
            self._open_display().update(text)
        self._close_display()

    def on_tool_start(self, event: ToolStart) -> None:
        self._close_display()
        self.render_tool_panel(event.tool_call.tool_name, event.tool_call.input)

    def on_tool_update(self, event: ToolUpdate) -> None:
        call = event.tool_call
        if isinstance(call, ToolCallPermissionRequired):
            self.print_warning(f"  {call.ui_hint.message}")
        elif isinstance(call, ToolCallExecuting):
            self.print_info("  approved, running...")

    def on_tool_complete(self, event: ToolComplete) -> None:
        call = event.tool_call
        if isinstance(call, ToolCallSuccess):
            self.console.print("  [green]done[/green]", highlight=False)
        elif isinstance(call, ToolCallError):
            self.print_error(f"  error: {call.message}")
        elif isinstance(call, ToolCallAbort):
            self.print_warning(f"  {call.message}")
        elif isinstance(call, ToolCallPermissionDenied):
            self.print_error(f"  {call.tool_name} was rejected")

    def on_token_usage(self, event: TokenUsageUpdate) -> None:
        self.token_count = event.usage.total_tokens

    def on_compression_started(self, event: CompressionStarted) -> None:
        self._close_display()
        label = "Context limit reached, compacting conversation..." if event.auto_triggered else "Compacting conversation..."
        self.print_info(label)

    def on_compression_succeeded(self, event: CompressionSucceeded) -> None:
        self.print_success("Conversation compacted.")

    def on_compression_failed(self, event: CompressionFailed) -> None:
        self.print_warning(f"Compaction failed: {event.error}")

    def on_task_error(self, event: TaskError) -> None:
        self._close_display()
        self.print_error(str(event.error))

    # ── plain output ───────────────────────────────────────────────────

    def render_markdown(self, text: str) -> None:
        self.console.print(Markdown(text))

    def print_error(self, message: str) -> None:
        """Print a styled error message."""
        self.console.print(f"[red]{escape(message)}[/red]", highlight=False)

    def print_info(self, message: str) -> None:
        self.console.print(f"[dim]{escape(message)}[/dim]", highlight=False)

    def print_warning(self, message: str) -> None:
        self.console.print(f"[yellow]{escape(message)}[/yellow]", highlight=False)

    def print_success(self, message: str) -> None:
        self.console.print(f"[green]{escape(message)}[/green]", highlight=False)

    def render_banner(self, version: str) -> None:
        content = Text.assemble(("codeloop", "bold cyan"), ("  v" + version, "dim"))
        self.console.print(Panel(Align.left(content), border_style="cyan dim", expand=False, padding=(0, 2)))

    def render_config(self, config_items: dict) -> None:
        """Render configuration items one per line, left-aligned."""
        for key, value in config_items.items():
            self.console.print(Text.assemble((f"{key}: ", "dim"), (str(value), "#888888")), highlight=False)

    def render_status_line(self, model: str, session_id: str | None = None) -> None:
        """Compact status line after each task: model | tokens | session."""
        parts = [model]
        if self.token_count is not None:
            parts.append(f"{self.token_count:,} tokens")
        if session_id is not None:
            parts.append(session_id[:12] + "..." if len(session_id) > 12 else session_id)
        self.console.print(Text(" | ".join(parts), style="dim"))

    def render_tool_panel(self, tool_name: str, tool_args: dict) -> None:
        """Render a compact inline display for tool execution.

        Args:
            tool_name: Name of the tool being executed
            tool_args: Dictionary of tool arguments
        """
        self.console.print(f"[bold cyan]◆[/bold cyan] [cyan]{escape(tool_name)}[/cyan]")
        for key, value in tool_args.items():
            value_str = str(value)
            if len(value_str) > 50:
                value_str = value_str[:47] + "..."
            self.console.print(Text.assemble((f"  {key}", "dim"), (f": {value_str}", "")), highlight=False)

    def render_permission_request(self, hint: PermissionUiHint, options: list[PermissionOption]) -> None:
        title = "Run command?" if hint.kind == "bash" else "Modify file?"
        body = Text(hint.command or hint.path or hint.message)
        if hint.destructive:
            body.append("\n\nThis command looks destructive.", style="bold red")
        self.console.print(Panel(body, title=title, border_style="yellow", expand=False))
        for number, option in enumerate(options, start=1):
            self.console.print(f"  [bold]{number}[/bold]. {OPTION_LABELS[option]}", highlight=False)
