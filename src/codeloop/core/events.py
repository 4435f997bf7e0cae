"""Typed notifications emitted while a task runs.

The loop controller and the orchestrator publish events on an ``EventBus``;
the renderer, the non-interactive runner and tests subscribe to it. Delivery
is synchronous and in emission order, so per tool call a subscriber always
sees ``ToolStart`` → ``ToolUpdate``* → ``ToolComplete``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Literal, Optional

from codeloop.core.tool_call import ToolCallExecuting, ToolCallNonTerminal, ToolCallTerminal


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class LLMMessageUpdate:
    """The assistant message accumulated so far."""

    status: Literal["streaming", "complete", "error"]
    message: dict[str, Any]
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class ToolStart:
    tool_call: ToolCallExecuting


@dataclass(frozen=True)
class ToolUpdate:
    tool_call: ToolCallNonTerminal


@dataclass(frozen=True)
class ToolComplete:
    tool_call: ToolCallTerminal


@dataclass(frozen=True)
class GeneratingChange:
    is_generating: bool


@dataclass(frozen=True)
class TokenUsageUpdate:
    usage: TokenUsage


@dataclass(frozen=True)
class CompressionStarted:
    call_id: str
    started_at: str
    auto_triggered: bool = True


@dataclass(frozen=True)
class CompressionSucceeded:
    call_id: str
    ended_at: str
    summary: str


@dataclass(frozen=True)
class CompressionFailed:
    call_id: str
    ended_at: str
    error: str


@dataclass(frozen=True)
class TaskComplete:
    response: str


@dataclass(frozen=True)
class TaskError:
    error: BaseException


Listener = Callable[[Any], None]


class EventBus:
    """Observer hub for task notifications."""

    def __init__(self) -> None:
        self._listeners: list[tuple[Listener, tuple[type, ...]]] = []

    def subscribe(self, listener: Listener, *event_types: type) -> Callable[[], None]:
        """Register ``listener`` for the given event types (all events when none given).

        Returns a function that removes the subscription.
        """
        entry = (listener, event_types)
        self._listeners.append(entry)

        def _unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return _unsubscribe

    def emit(self, event: Any) -> None:
        for listener, event_types in list(self._listeners):
            if event_types and not isinstance(event, event_types):
                continue
            listener(event)
