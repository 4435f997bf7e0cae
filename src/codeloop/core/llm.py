"""LiteLLM client wrapper - streaming chat completions with tool calls."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Optional

import litellm

from codeloop.config import AgentConfig, is_ollama_model
from codeloop.core.cancellation import CancellationToken
from codeloop.core.events import TokenUsage
from codeloop.core.tool_call import ToolCallRequest

_log = logging.getLogger(__name__)

EMPTY_RESPONSE_TEXT = "(Empty response)"


class LLMError(Exception):
    """A classified transport or API fault from the model provider."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class LLMAbortError(LLMError):
    """The request was cancelled through the cancellation token."""

    def __init__(self, message: str = "Request was aborted.") -> None:
        super().__init__(message)


@dataclass
class StreamingResponse:
    """Snapshot of the assistant message accumulated so far."""

    message: dict[str, Any]
    is_complete: bool = False
    finish_reason: Optional[str] = None
    parsed_tool_calls: list[ToolCallRequest] = field(default_factory=list)
    token_usage: Optional[TokenUsage] = None

    @property
    def content(self) -> str:
        content = self.message.get("content")
        return content if isinstance(content, str) else ""


def parse_tool_call(call: dict[str, Any]) -> ToolCallRequest:
    """Turn an accumulated OpenAI tool call into a request, keeping JSON errors."""
    fn = call.get("function", {})
    raw = fn.get("arguments") or "{}"
    try:
        arguments = json.loads(raw)
    except json.JSONDecodeError:
        _log.warning("Invalid JSON in arguments for tool %s", fn.get("name"))
        return ToolCallRequest(
            id=call.get("id", ""),
            tool_name=fn.get("name", ""),
            argument_error=f"Invalid JSON in tool arguments: {raw}",
        )
    if not isinstance(arguments, dict):
        return ToolCallRequest(
            id=call.get("id", ""),
            tool_name=fn.get("name", ""),
            argument_error=f"Tool arguments must be a JSON object: {raw}",
        )
    return ToolCallRequest(id=call.get("id", ""), tool_name=fn.get("name", ""), arguments=arguments)


def _usage_from(chunk: Any) -> Optional[TokenUsage]:
    usage = getattr(chunk, "usage", None)
    if not usage:
        return None
    return TokenUsage(
        prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
        completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
        total_tokens=getattr(usage, "total_tokens", 0) or 0,
    )


class LLMClient:
    """LiteLLM client for model communication."""

    def __init__(self, config: AgentConfig) -> None:
        self.model = config.model
        self.api_base = config.api_base
        self.api_key = config.api_key
        self.temperature = config.temperature
        self.max_output_tokens = config.max_output_tokens
        self.top_p = config.top_p

    def _translate_error(self, error: Exception) -> LLMError:
        """Convert exceptions from LiteLLM calls to LLMError with clear messages."""
        if isinstance(error, LLMError):
            return error
        if isinstance(error, litellm.AuthenticationError):
            return LLMError(
                f"Authentication failed connecting to model server.\n\n"
                f"  Server: {self.api_base}\n"
                f"  Error: {error.message}\n\n"
                f"Check your api_key in ~/.codeloop/config.yaml",
                status_code=401,
            )
        if isinstance(error, litellm.Timeout):
            return LLMError(
                f"Connection to model server timed out.\n\n"
                f"  Server: {self.api_base}\n\n"
                f"The server may be overloaded or unreachable. "
                f"Check your network connection."
            )
        if isinstance(error, litellm.APIConnectionError):
            if is_ollama_model(self.model):
                model_name = self.model.split("/", 1)[-1]
                return LLMError(
                    f"Cannot connect to Ollama.\n\n"
                    f"  Server: {self.api_base}\n\n"
                    f"Suggestions:\n"
                    f"  1. Start Ollama:     ollama serve\n"
                    f"  2. Pull the model:   ollama pull {model_name}\n"
                    f"  3. Verify api_base in ~/.codeloop/config.yaml"
                )
            return LLMError(
                f"Cannot connect to model server.\n\n"
                f"  Server: {self.api_base}\n"
                f"  Error: {error.message}\n\n"
                f"Suggestions:\n"
                f"  1. Verify the server is running at {self.api_base}\n"
                f"  2. Check your network/firewall settings\n"
                f"  3. Verify api_base in ~/.codeloop/config.yaml"
            )
        if isinstance(error, litellm.RateLimitError):
            return LLMError(
                f"Rate limit reached.\n\n"
                f"  Server: {self.api_base}\n"
                f"  Error: {error.message}",
                status_code=429,
            )
        if isinstance(error, litellm.BadRequestError):
            return LLMError(
                f"Model rejected the request.\n\n"
                f"  Server: {self.api_base}\n"
                f"  Error: {error}\n\n"
                f"The model may not support tool calls or this message format.",
                status_code=400,
            )
        if isinstance(error, litellm.APIError):
            return LLMError(
                f"Model request failed (status {error.status_code}).\n\n"
                f"  Server: {self.api_base}\n"
                f"  Error: {error.message}",
                status_code=error.status_code,
            )
        return LLMError(
            f"Unexpected error from model provider.\n\n"
            f"  Server: {self.api_base}\n"
            f"  Error: {type(error).__name__}: {error}"
        )

    async def stream(
        self,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict[str, Any]]] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> AsyncIterator[StreamingResponse]:
        """Stream a completion, yielding the accumulated message after each chunk.

        The last response has ``is_complete`` set, the finish reason, the parsed
        tool calls and (when the provider reports it) the token usage.

        Raises:
            LLMAbortError: The cancellation token tripped before the stream finished.
            LLMError: Connectivity, authentication, rate-limit or server errors.
        """
        cancellation = cancellation or CancellationToken()
        if cancellation.cancelled:
            raise LLMAbortError()

        request: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "api_base": self.api_base,
            "api_key": self.api_key,
            "stream": True,
            "stream_options": {"include_usage": True},
            "timeout": 300,
            "max_tokens": self.max_output_tokens,
            "temperature": self.temperature,
            "top_p": self.top_p,
        }
        if tools:
            request["tools"] = tools

        try:
            response_stream = await litellm.acompletion(**request)
        except Exception as e:
            raise self._translate_error(e) from e

        content = ""
        tool_calls: dict[int, dict[str, Any]] = {}
        finish_reason: Optional[str] = None
        usage: Optional[TokenUsage] = None

        def snapshot(done: bool) -> StreamingResponse:
            ordered = [tool_calls[i] for i in sorted(tool_calls)]
            if ordered:
                message = {"role": "assistant", "content": content or None, "tool_calls": ordered}
            else:
                message = {"role": "assistant", "content": content or EMPTY_RESPONSE_TEXT}
            return StreamingResponse(
                message=message,
                is_complete=done,
                finish_reason=finish_reason if done else None,
                parsed_tool_calls=[parse_tool_call(c) for c in ordered] if done else [],
                token_usage=usage,
            )

        try:
            async for chunk in response_stream:
                if cancellation.cancelled:
                    raise LLMAbortError()

                usage = _usage_from(chunk) or usage
                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                choice = choices[0]
                delta = choice.delta
                if getattr(choice, "finish_reason", None):
                    finish_reason = choice.finish_reason

                text = getattr(delta, "content", None)
                if text:
                    content += text

                for tc in getattr(delta, "tool_calls", None) or []:
                    entry = tool_calls.setdefault(tc.index, {
                        "id": "",
                        "type": "function",
                        "function": {"name": "", "arguments": ""},
                    })
                    if tc.id:
                        entry["id"] = tc.id
                    fn = getattr(tc, "function", None)
                    if fn is not None:
                        if fn.name:
                            entry["function"]["name"] = fn.name
                        if fn.arguments:
                            entry["function"]["arguments"] += fn.arguments

                # The final snapshot is emitted after the loop so late usage chunks land in it
                if text and finish_reason is None:
                    yield snapshot(done=False)
        except LLMError:
            raise
        except Exception as e:
            raise self._translate_error(e) from e

        if cancellation.cancelled:
            raise LLMAbortError()
        if finish_reason is None:
            _log.debug("Stream ended without a finish reason; treating as complete")
            finish_reason = "tool_calls" if tool_calls else "stop"
        yield snapshot(done=True)
