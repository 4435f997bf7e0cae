"""Tests for Rich-based terminal renderer."""

import io
from unittest.mock import MagicMock, patch

from rich.markdown import Markdown

from codeloop.core.events import (
    CompressionFailed,
    CompressionStarted,
    EventBus,
    LLMMessageUpdate,
    TaskError,
    TokenUsage,
    TokenUsageUpdate,
    ToolComplete,
    ToolStart,
)
from codeloop.core.tool_call import ToolCallPending, ToolCallRequest
from codeloop.permissions import PermissionOption, PermissionUiHint
from codeloop.renderer import PlainStreamingDisplay, Renderer


def attached_renderer():
    output = io.StringIO()
    renderer = Renderer(output_file=output)
    bus = EventBus()
    renderer.attach(bus)
    return renderer, bus, output


def running(tool_name="bash", **arguments):
    return ToolCallPending.from_request(
        ToolCallRequest(id="call_1", tool_name=tool_name, arguments=arguments)
    ).executing()


class TestPrinting:

    @patch("codeloop.renderer.Console")
    def test_render_markdown_prints_markdown(self, mock_console_cls):
        mock_console = MagicMock()
        mock_console_cls.return_value = mock_console

        Renderer().render_markdown("# Hello")

        assert isinstance(mock_console.print.call_args.args[0], Markdown)

    @patch("codeloop.renderer.Console")
    def test_print_error_escapes_markup(self, mock_console_cls):
        mock_console = MagicMock()
        mock_console_cls.return_value = mock_console

        Renderer().print_error("bad [value]")

        mock_console.print.assert_called_once_with("[red]bad \\[value][/red]", highlight=False)

    def test_status_line(self):
        output = io.StringIO()
        renderer = Renderer(output_file=output)
        renderer.token_count = 12345
        renderer.render_status_line("openai/gpt-4o", "0123456789abcdef")
        assert "openai/gpt-4o | 12,345 tokens | 0123456789ab..." in output.getvalue()

    def test_permission_request_lists_options(self):
        output = io.StringIO()
        hint = PermissionUiHint(kind="bash", message="", command="rm -rf build", destructive=True)
        Renderer(output_file=output).render_permission_request(hint, [PermissionOption.ONCE, PermissionOption.REJECT])
        text = output.getvalue()
        assert "rm -rf build" in text
        assert "destructive" in text
        assert "1. Yes, allow once" in text
        assert "2. No, reject" in text


class TestEvents:

    def test_streams_text_once(self):
        renderer, bus, output = attached_renderer()
        bus.emit(LLMMessageUpdate(status="streaming", message={"role": "assistant", "content": "Hel"}))
        bus.emit(LLMMessageUpdate(status="streaming", message={"role": "assistant", "content": "Hello"}))
        bus.emit(LLMMessageUpdate(status="complete", message={"role": "assistant", "content": "Hello"}))
        assert output.getvalue().count("Hello") == 1

    def test_tool_lifecycle(self):
        renderer, bus, output = attached_renderer()
        call = running(command="make test")
        bus.emit(ToolStart(tool_call=call))
        bus.emit(ToolComplete(tool_call=call.fail("exit 2")))
        text = output.getvalue()
        assert "bash" in text
        assert "command: make test" in text
        assert "error: exit 2" in text

    def test_rejected_tool(self):
        renderer, bus, output = attached_renderer()
        bus.emit(ToolComplete(tool_call=running().deny()))
        assert "bash was rejected" in output.getvalue()

    def test_token_usage(self):
        renderer, bus, output = attached_renderer()
        bus.emit(TokenUsageUpdate(usage=TokenUsage(total_tokens=42)))
        assert renderer.token_count == 42

    def test_compression_messages(self):
        renderer, bus, output = attached_renderer()
        bus.emit(CompressionStarted(call_id="/compact_auto_1", started_at="now"))
        bus.emit(CompressionFailed(call_id="/compact_auto_1", ended_at="now", error="compaction canceled"))
        text = output.getvalue()
        assert "compacting conversation" in text
        assert "Compaction failed: compaction canceled" in text

    def test_task_error(self):
        renderer, bus, output = attached_renderer()
        bus.emit(TaskError(error=RuntimeError("Cannot connect")))
        assert "Cannot connect" in output.getvalue()

    def test_detach(self):
        renderer = Renderer(output_file=io.StringIO())
        bus = EventBus()
        detach = renderer.attach(bus)
        detach()
        bus.emit(TokenUsageUpdate(usage=TokenUsage(total_tokens=7)))
        assert renderer.token_count is None


class TestPlainStreamingDisplay:

    def test_prints_only_new_text(self):
        output = io.StringIO()
        renderer = Renderer(output_file=output)
        display = PlainStreamingDisplay(renderer.console)
        display.update("ab")
        display.update("abcd")
        display.close()
        assert output.getvalue() == "abcd\n"
        assert display.full_text == "abcd"
