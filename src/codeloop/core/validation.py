"""Message sequence validation for the OpenAI chat protocol.

Checks a transcript before it is sent to the model:

- an assistant message has text or tool calls (not neither);
- every tool call is answered by exactly one ``tool`` message, in the order
  the calls were requested, before the next assistant or user message;
- a ``tool`` message answers a call from the preceding assistant message and
  is never repeated.

Consecutive user messages and a user message right after tool results are
allowed (a cancelled response leaves exactly that shape behind).
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


def _missing(prefix: str, pending: list[tuple[str, int]]) -> str:
    ids = ", ".join(call_id for call_id, _ in pending)
    return f"{prefix}: missing tool messages for tool_call_ids: {ids}"


def validate_message_sequence(messages: list[dict[str, Any]]) -> ValidationResult:
    """Validate ``messages`` in a single pass. Never raises; errors are ordered."""
    errors: list[str] = []
    seen_ids: set[str] = set()
    # (id, request index) of the calls still awaiting an answer
    pending: Optional[list[tuple[str, int]]] = None
    requested: list[str] = []
    next_index = 0

    for i, msg in enumerate(messages):
        role = msg.get("role")

        if role == "assistant":
            content = msg.get("content")
            tool_calls = msg.get("tool_calls") or []
            if (content is None or content == "") and not tool_calls:
                errors.append(
                    f"Message {i}: assistant message must have either content or tool_calls, "
                    f"but both are missing (content: {content}, tool_calls: {len(tool_calls)})"
                )
            if pending:
                errors.append(_missing(f"Message {i}", pending))
            if tool_calls:
                requested = [tc.get("id") for tc in tool_calls]
                pending = list(zip(requested, range(len(requested))))
            else:
                pending = None
            next_index = 0

        elif role == "tool":
            call_id = msg.get("tool_call_id")
            if call_id in seen_ids:
                errors.append(f"Message {i}: duplicate tool message for tool_call_id '{call_id}'")
                continue
            seen_ids.add(call_id)

            if pending is None:
                errors.append(
                    f"Message {i}: tool message (tool_call_id: {call_id}) has no preceding "
                    f"assistant message with tool_calls"
                )
                continue

            entry = next((p for p in pending if p[0] == call_id), None)
            if entry is None:
                errors.append(
                    f"Message {i}: tool_call_id '{call_id}' not found in preceding assistant's tool_calls"
                )
                continue

            if entry[1] != next_index:
                expected = requested[next_index] if next_index < len(requested) else None
                errors.append(
                    f"Message {i}: tool messages out of order. Expected tool_call_id "
                    f"'{expected}' (index {next_index}), but got '{call_id}' (index {entry[1]})"
                )
            pending = [p for p in pending if p[0] != call_id]
            next_index += 1

        elif role == "user":
            if pending:
                errors.append(_missing(f"Message {i}", pending))
                pending = None
                next_index = 0

    if pending:
        errors.append(_missing("End of sequence", pending))

    return ValidationResult(valid=not errors, errors=errors)
