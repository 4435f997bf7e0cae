"""Append-only conversation transcript sent to the model."""

import json
import logging
from typing import Any

from codeloop.core.tool_call import (
    ToolCallAbort,
    ToolCallError,
    ToolCallPermissionDenied,
    ToolCallSuccess,
    ToolCallTerminal,
)

_log = logging.getLogger(__name__)

INTERRUPTED_SUFFIX = "[Interrupted by User]"


def format_tool_result_message(call: ToolCallTerminal) -> str:
    """Render a terminal tool call as the content of its ``tool`` message."""
    if isinstance(call, ToolCallSuccess):
        return json.dumps(call.result, indent=2, default=str)
    if isinstance(call, ToolCallError):
        return f"Error: {call.message}"
    if isinstance(call, ToolCallAbort):
        return f"{call.message}\n\n{INTERRUPTED_SUFFIX}"
    if isinstance(call, ToolCallPermissionDenied):
        return f"{call.tool_name} was rejected by user"
    raise TypeError(f"Tool call {call.request_id} is not terminal: {call.status}")


class Transcript:
    """Ordered message history for one task.

    Messages are only ever appended; compression is the one operation that
    swaps the whole history, through ``replace``.
    """

    def __init__(self, messages: list[dict[str, Any]] | None = None) -> None:
        self._messages: list[dict[str, Any]] = list(messages or [])

    def add_user(self, content: str) -> None:
        self._messages.append({"role": "user", "content": content})

    def add_assistant(self, message: dict[str, Any]) -> None:
        """Append an assistant message exactly as the model produced it."""
        self._messages.append(dict(message, role="assistant"))

    def add_tool_result(self, call: ToolCallTerminal) -> None:
        self._messages.append({
            "role": "tool",
            "tool_call_id": call.request_id,
            "content": format_tool_result_message(call),
        })

    def replace(self, messages: list[dict[str, Any]]) -> None:
        _log.debug("Transcript replaced: %d → %d messages", len(self._messages), len(messages))
        self._messages = list(messages)

    @property
    def messages(self) -> list[dict[str, Any]]:
        """A copy of the messages, safe to hand to the model client."""
        return self._messages.copy()

    def __len__(self) -> int:
        return len(self._messages)
