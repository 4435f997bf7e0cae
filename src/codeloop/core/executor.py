"""Conversation loop controller.

Drives one task end to end::

    validate transcript → stream model response → append it
        tool calls?  → orchestrator → append tool results → compress? → loop
        text only    → compress? → done

There is no iteration cap: the loop ends when the model answers without tool
calls, when a tool call is rejected, on cancellation or on an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from codeloop.core.compression import CompressionManager
from codeloop.core.context import ExecutionContext, build_system_message
from codeloop.core.events import (
    EventBus,
    GeneratingChange,
    LLMMessageUpdate,
    TaskComplete,
    TaskError,
    TokenUsage,
    TokenUsageUpdate,
)
from codeloop.core.llm import LLMAbortError, LLMClient, LLMError, StreamingResponse
from codeloop.core.orchestrator import Approver, ToolOrchestrator
from codeloop.core.tool_call import ToolCallPermissionDenied
from codeloop.core.transcript import Transcript
from codeloop.core.validation import validate_message_sequence

_log = logging.getLogger(__name__)

REJECTED_MESSAGE = "Rejected by user"


class ErrorType(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    ABORTED = "aborted"
    LLM_ERROR = "llm_error"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True)
class ExecutionError:
    type: ErrorType
    message: str
    cause: Optional[BaseException] = None


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    response: Optional[str] = None
    error: Optional[ExecutionError] = None


class MessageValidationError(Exception):
    """The transcript violates the chat protocol and cannot be sent."""


def classify_error(error: BaseException) -> ErrorType:
    if isinstance(error, LLMAbortError):
        return ErrorType.ABORTED
    if isinstance(error, LLMError):
        return ErrorType.LLM_ERROR
    return ErrorType.INTERNAL_ERROR


class AgentExecutor:
    """Runs tasks against one model client."""

    def __init__(
        self,
        client: LLMClient,
        compression: CompressionManager,
        orchestrator: Optional[ToolOrchestrator] = None,
    ) -> None:
        self.client = client
        self.compression = compression
        self.orchestrator = orchestrator or ToolOrchestrator()

    def _initial_transcript(self, prompt: str, context: ExecutionContext) -> Transcript:
        transcript = Transcript([
            build_system_message(context.cwd, self.client.model),
            *context.session.messages,
        ])
        transcript.add_user(prompt)
        return transcript

    async def _stream_response(
        self,
        transcript: Transcript,
        context: ExecutionContext,
        events: EventBus,
    ) -> StreamingResponse:
        last: Optional[StreamingResponse] = None
        try:
            async for response in self.client.stream(
                transcript.messages,
                tools=context.registry.to_openai_tools() or None,
                cancellation=context.cancellation,
            ):
                last = response
                status = "complete" if response.is_complete else "streaming"
                events.emit(LLMMessageUpdate(status=status, message=response.message))
        except LLMError as e:
            if last is not None:
                events.emit(LLMMessageUpdate(status="error", message=last.message, error=e))
            raise
        if last is None:
            raise RuntimeError("Model stream ended without producing a response")
        return last

    async def run(
        self,
        prompt: str,
        context: ExecutionContext,
        events: EventBus,
        approver: Optional[Approver] = None,
    ) -> ExecutionResult:
        """Run ``prompt`` to completion and return the final result.

        Never raises for task failures; they come back as ``ExecutionResult``
        with an error type. ``asyncio.CancelledError`` propagates.
        """
        transcript = self._initial_transcript(prompt, context)
        latest_usage: Optional[TokenUsage] = None

        async def maybe_compress() -> None:
            nonlocal latest_usage
            if not self.compression.should_compress(latest_usage):
                return
            outcome = await self.compression.compress(
                transcript.messages, events, context.cancellation, usage=latest_usage
            )
            if outcome.compressed:
                transcript.replace(outcome.messages)
                latest_usage = outcome.usage

        try:
            iteration = 0
            while True:
                iteration += 1
                _log.debug("Loop iteration %d (%d messages)", iteration, len(transcript))
                events.emit(GeneratingChange(True))

                validation = validate_message_sequence(transcript.messages)
                if not validation.valid:
                    raise MessageValidationError(
                        f"Message validation failed: {'; '.join(validation.errors)}"
                    )

                response = await self._stream_response(transcript, context, events)
                transcript.add_assistant(response.message)

                if response.token_usage and response.token_usage.total_tokens > 0:
                    latest_usage = response.token_usage
                    events.emit(TokenUsageUpdate(response.token_usage))

                if response.parsed_tool_calls:
                    results = await self.orchestrator.execute(
                        response.parsed_tool_calls, context, events, approver
                    )
                    for call in results:
                        transcript.add_tool_result(call)

                    if any(isinstance(call, ToolCallPermissionDenied) for call in results):
                        events.emit(GeneratingChange(False))
                        self._remember(context, transcript)
                        return ExecutionResult(
                            success=False,
                            error=ExecutionError(ErrorType.PERMISSION_DENIED, REJECTED_MESSAGE),
                        )

                    await maybe_compress()
                    continue

                await maybe_compress()
                text = response.content
                events.emit(GeneratingChange(False))
                events.emit(TaskComplete(text))
                self._remember(context, transcript)
                return ExecutionResult(success=True, response=text)

        except Exception as e:
            error_type = classify_error(e)
            if error_type is ErrorType.INTERNAL_ERROR:
                _log.debug("Task failed with an internal error", exc_info=True)
            else:
                self._remember(context, transcript)
            events.emit(GeneratingChange(False))
            if error_type is not ErrorType.ABORTED:
                events.emit(TaskError(e))
            return ExecutionResult(
                success=False,
                error=ExecutionError(error_type, str(e) or type(e).__name__, cause=e),
            )

    @staticmethod
    def _remember(context: ExecutionContext, transcript: Transcript) -> None:
        """Keep the task's turns (system message excluded) for the next prompt."""
        context.session.messages = [
            m for m in transcript.messages if m.get("role") != "system"
        ]

