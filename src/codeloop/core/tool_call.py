"""Tool call requests and the ToolCall lifecycle.

A ToolCall moves through these states::

    pending → executing → success
                        ↘ error
                        ↘ abort
                        ↘ permission_required → executing (after approval)
                                              ↘ permission_denied

``pending``, ``executing`` and ``permission_required`` are transient.
``success``, ``error``, ``abort`` and ``permission_denied`` are terminal: a
terminal record is never changed again, so each transition builds a new
frozen instance of the target variant.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Optional, Union

from codeloop.permissions import PermissionUiHint

INTERRUPTED_MESSAGE = "Tool execution was interrupted by user"
ABORTED_MESSAGE = "Tool execution was aborted"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ToolCallRequest:
    """A tool invocation requested by the model."""

    id: str
    tool_name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    # Set when the model's argument JSON could not be parsed.
    argument_error: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class _ToolCallBase:
    status: ClassVar[str] = ""
    terminal: ClassVar[bool] = False

    tool_name: str
    request_id: str
    input: dict[str, Any]
    started_at: str
    ended_at: Optional[str] = None

    def _base_fields(self) -> dict[str, Any]:
        return {
            "tool_name": self.tool_name,
            "request_id": self.request_id,
            "input": self.input,
            "started_at": self.started_at,
        }

    def _require_transient(self) -> None:
        if self.terminal:
            raise ValueError(
                f"Tool call {self.request_id} is already {self.status} and cannot change"
            )

    def executing(self, started_at: Optional[str] = None) -> "ToolCallExecuting":
        self._require_transient()
        fields = self._base_fields()
        if started_at is not None:
            fields["started_at"] = started_at
        return ToolCallExecuting(**fields)

    def permission_required(self, ui_hint: PermissionUiHint) -> "ToolCallPermissionRequired":
        self._require_transient()
        return ToolCallPermissionRequired(**self._base_fields(), ui_hint=ui_hint)

    def succeed(self, result: dict[str, Any]) -> "ToolCallSuccess":
        self._require_transient()
        return ToolCallSuccess(**self._base_fields(), ended_at=now_iso(), result=result)

    def fail(self, message: str) -> "ToolCallError":
        self._require_transient()
        return ToolCallError(**self._base_fields(), ended_at=now_iso(), message=message)

    def abort(self, message: str = INTERRUPTED_MESSAGE, result: Optional[dict[str, Any]] = None) -> "ToolCallAbort":
        self._require_transient()
        return ToolCallAbort(
            **self._base_fields(), ended_at=now_iso(), message=message, result=result or {}
        )

    def deny(self, rejection_reason: Optional[str] = None) -> "ToolCallPermissionDenied":
        self._require_transient()
        return ToolCallPermissionDenied(
            **self._base_fields(), ended_at=now_iso(), rejection_reason=rejection_reason
        )


@dataclass(frozen=True, kw_only=True)
class ToolCallPending(_ToolCallBase):
    status: ClassVar[str] = "pending"

    @classmethod
    def from_request(cls, request: ToolCallRequest) -> "ToolCallPending":
        return cls(
            tool_name=request.tool_name,
            request_id=request.id,
            input=dict(request.arguments),
            started_at=now_iso(),
        )


@dataclass(frozen=True, kw_only=True)
class ToolCallExecuting(_ToolCallBase):
    status: ClassVar[str] = "executing"


@dataclass(frozen=True, kw_only=True)
class ToolCallPermissionRequired(_ToolCallBase):
    status: ClassVar[str] = "permission_required"

    ui_hint: PermissionUiHint


@dataclass(frozen=True, kw_only=True)
class ToolCallSuccess(_ToolCallBase):
    status: ClassVar[str] = "success"
    terminal: ClassVar[bool] = True

    result: dict[str, Any]


@dataclass(frozen=True, kw_only=True)
class ToolCallError(_ToolCallBase):
    status: ClassVar[str] = "error"
    terminal: ClassVar[bool] = True

    message: str


@dataclass(frozen=True, kw_only=True)
class ToolCallAbort(_ToolCallBase):
    status: ClassVar[str] = "abort"
    terminal: ClassVar[bool] = True

    message: str
    result: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class ToolCallPermissionDenied(_ToolCallBase):
    status: ClassVar[str] = "permission_denied"
    terminal: ClassVar[bool] = True

    rejection_reason: Optional[str] = None


ToolCallNonTerminal = Union[ToolCallPending, ToolCallExecuting, ToolCallPermissionRequired]
ToolCallTerminal = Union[ToolCallSuccess, ToolCallError, ToolCallAbort, ToolCallPermissionDenied]
ToolCall = Union[ToolCallNonTerminal, ToolCallTerminal]
