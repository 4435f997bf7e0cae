"""Tests for the transcript, session and system message."""

import json

from codeloop.core.context import (
    SYSTEM_PROMPT,
    ExecutionContext,
    Session,
    build_environment_details,
    build_system_message,
)
from codeloop.core.cancellation import CancellationToken
from codeloop.core.tool_call import ToolCallPending, ToolCallRequest
from codeloop.core.transcript import Transcript, format_tool_result_message
from codeloop.permissions import ApprovalMode, PermissionStore
from codeloop.tools import ToolRegistry

from conftest import make_file


def running_call(tool_name="file_read"):
    return ToolCallPending.from_request(ToolCallRequest(id="call_1", tool_name=tool_name)).executing()


class TestToolResultMessages:

    def test_success_is_json(self):
        content = format_tool_result_message(running_call().succeed({"content": "x"}))
        assert json.loads(content) == {"content": "x"}

    def test_error(self):
        assert format_tool_result_message(running_call().fail("File not found")) == "Error: File not found"

    def test_abort(self):
        content = format_tool_result_message(running_call().abort("Tool execution was aborted"))
        assert content == "Tool execution was aborted\n\n[Interrupted by User]"

    def test_denied(self):
        assert format_tool_result_message(running_call("bash").deny()) == "bash was rejected by user"


class TestTranscript:

    def test_append_order(self):
        transcript = Transcript([{"role": "system", "content": "s"}])
        transcript.add_user("hi")
        transcript.add_assistant({"content": "hello"})
        transcript.add_tool_result(running_call().succeed({}))
        roles = [m["role"] for m in transcript.messages]
        assert roles == ["system", "user", "assistant", "tool"]
        assert transcript.messages[-1]["tool_call_id"] == "call_1"
        assert len(transcript) == 4

    def test_messages_is_a_copy(self):
        transcript = Transcript()
        transcript.add_user("hi")
        transcript.messages.append({"role": "user", "content": "sneaky"})
        assert len(transcript) == 1

    def test_replace(self):
        transcript = Transcript()
        transcript.add_user("a")
        transcript.replace([{"role": "user", "content": "b"}])
        assert transcript.messages == [{"role": "user", "content": "b"}]


class TestSystemMessage:

    def test_environment_block(self, workspace):
        details = build_environment_details(str(workspace), "openai/gpt-4o")
        assert "<env>" in details
        assert f"Working directory: {workspace}" in details
        assert "Is directory a git repo: False" in details
        assert "Model: openai/gpt-4o" in details

    def test_git_detection(self, workspace):
        (workspace / ".git").mkdir()
        assert "Is directory a git repo: True" in build_environment_details(str(workspace), "m")

    def test_includes_project_instructions(self, workspace):
        make_file(workspace, "AGENTS.md", "Always run pytest.\n")
        message = build_system_message(str(workspace), "m")
        assert message["role"] == "system"
        assert message["content"].startswith(SYSTEM_PROMPT)
        assert "<project_instructions>\nAlways run pytest.\n</project_instructions>" in message["content"]

    def test_without_project_instructions(self, workspace):
        assert "project_instructions" not in build_system_message(str(workspace), "m")["content"]


class TestExecutionContext:

    def test_session_clear(self):
        session = Session(messages=[{"role": "user", "content": "x"}])
        session.clear()
        assert session.messages == []

    def test_sessions_get_distinct_ids(self):
        assert Session().session_id != Session().session_id

    def test_tool_context_reads_current_approval_mode(self, workspace):
        mode = {"value": ApprovalMode.DEFAULT}
        context = ExecutionContext(
            cwd=str(workspace),
            cancellation=CancellationToken(),
            get_approval_mode=lambda: mode["value"],
            session=Session(session_id="s1"),
            registry=ToolRegistry(),
            permissions=PermissionStore(),
        )
        assert context.tool_context().approval_mode is ApprovalMode.DEFAULT
        mode["value"] = ApprovalMode.YOLO
        tool_context = context.tool_context()
        assert tool_context.approval_mode is ApprovalMode.YOLO
        assert tool_context.session_id == "s1"
        assert tool_context.cancellation is context.cancellation
