"""Shared pytest fixtures, fakes and helpers for codeloop tests."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import pytest

from codeloop.core.cancellation import CancellationToken
from codeloop.core.context import ExecutionContext, Session
from codeloop.core.events import EventBus, TokenUsage
from codeloop.core.llm import StreamingResponse
from codeloop.core.tool_call import ToolCallRequest
from codeloop.permissions import ApprovalMode, PermissionStore
from codeloop.tools.base import Tool, ToolExecutionContext, ToolResult
from codeloop.tools.registry import ToolRegistry


@pytest.fixture
def workspace(tmp_path):
    """A temporary directory that acts as the working directory."""
    return tmp_path


@pytest.fixture
def tool_context(workspace):
    return make_tool_context(workspace)


# ── Plain helper functions ─────────────────────────────────────────────────
# Each test file imports these directly:
#   from conftest import assert_ok, assert_fail, make_file, run

def run(coro: Awaitable[Any]) -> Any:
    return asyncio.run(coro)


def make_file(workspace: Path, relative_path: str, content: str = "hello\n") -> Path:
    p = workspace / relative_path
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(content, encoding="utf-8")
    return p


def assert_ok(result: ToolResult) -> None:
    assert result.ok, f"Expected ok=True but got error: {result.error_code}: {result.message}"


def assert_fail(result: ToolResult, error_code: str | None = None) -> None:
    assert not result.ok, f"Expected ok=False but result succeeded: {result.message}"
    if error_code:
        assert result.error_code == error_code, (
            f"Expected error_code={error_code!r}, got {result.error_code!r}"
        )


def make_tool_context(
    workspace: Path,
    approval_mode: ApprovalMode = ApprovalMode.DEFAULT,
    permissions: Optional[PermissionStore] = None,
    cancellation: Optional[CancellationToken] = None,
) -> ToolExecutionContext:
    return ToolExecutionContext(
        cwd=str(workspace),
        approval_mode=approval_mode,
        session_id="test-session",
        permissions=permissions or PermissionStore(),
        cancellation=cancellation or CancellationToken(),
    )


def make_context(
    workspace: Path,
    registry: ToolRegistry,
    approval_mode: ApprovalMode = ApprovalMode.DEFAULT,
    cancellation: Optional[CancellationToken] = None,
    session: Optional[Session] = None,
    permissions: Optional[PermissionStore] = None,
) -> ExecutionContext:
    return ExecutionContext(
        cwd=str(workspace),
        cancellation=cancellation or CancellationToken(),
        get_approval_mode=lambda: approval_mode,
        session=session or Session(session_id="test-session"),
        registry=registry,
        permissions=permissions or PermissionStore(),
    )


# ── Fakes ──────────────────────────────────────────────────────────────────

class EventRecorder:
    """Collects every event emitted on a bus, in order."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list[Any] = []
        bus.subscribe(self.events.append)

    def of_type(self, *event_types: type) -> list[Any]:
        return [e for e in self.events if isinstance(e, event_types)]


ToolBehavior = Callable[[dict, ToolExecutionContext], Awaitable[ToolResult]]


class FakeTool(Tool):
    """Tool whose behaviour is a coroutine function supplied by the test."""

    def __init__(self, name: str, readonly: bool = False, behavior: Optional[ToolBehavior] = None) -> None:
        self.name = name
        self.readonly = readonly
        self.description = f"fake {name}"
        self.schema = {"properties": {}, "required": []}
        self.calls: list[dict] = []
        self._behavior = behavior

    async def run(self, args, context):
        self.calls.append(dict(args))
        if self._behavior is None:
            return ToolResult.success(data={"tool": self.name})
        return await self._behavior(args, context)


def text_response(text: str, usage: Optional[TokenUsage] = None) -> StreamingResponse:
    return StreamingResponse(
        message={"role": "assistant", "content": text},
        is_complete=True,
        finish_reason="stop",
        token_usage=usage,
    )


def partial_response(text: str) -> StreamingResponse:
    return StreamingResponse(message={"role": "assistant", "content": text})


def tool_response(*requests: ToolCallRequest, usage: Optional[TokenUsage] = None) -> StreamingResponse:
    return StreamingResponse(
        message={
            "role": "assistant",
            "content": None,
            "tool_calls": [
                {
                    "id": r.id,
                    "type": "function",
                    "function": {"name": r.tool_name, "arguments": json.dumps(r.arguments)},
                }
                for r in requests
            ],
        },
        is_complete=True,
        finish_reason="tool_calls",
        parsed_tool_calls=list(requests),
        token_usage=usage,
    )


class FakeLLMClient:
    """Stands in for ``LLMClient``: each ``stream`` call replays the next script.

    A script is a list of ``StreamingResponse`` objects; an exception in the
    list is raised at that point of the stream.
    """

    model = "fake/model"

    def __init__(self, *scripts: list) -> None:
        self._scripts = list(scripts)
        self.requests: list[list[dict]] = []
        self.tools: list[Optional[list]] = []

    async def stream(self, messages, tools=None, cancellation=None):
        self.requests.append([dict(m) for m in messages])
        self.tools.append(tools)
        if not self._scripts:
            raise AssertionError("FakeLLMClient ran out of scripted responses")
        for item in self._scripts.pop(0):
            if isinstance(item, BaseException):
                raise item
            yield item
