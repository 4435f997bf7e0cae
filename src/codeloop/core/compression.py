"""Context compression: replace a long history with a model-written summary."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from codeloop.core.cancellation import CancellationToken
from codeloop.core.events import (
    CompressionFailed,
    CompressionStarted,
    CompressionSucceeded,
    EventBus,
    TokenUsage,
    TokenUsageUpdate,
)
from codeloop.core.llm import LLMAbortError, LLMClient
from codeloop.core.tool_call import now_iso

_log = logging.getLogger(__name__)

SUMMARY_HEADER = "[Auto-compressed conversation summary]"
COMPACT_COMMAND = "/compact"

SUMMARY_INSTRUCTIONS = """Please provide a detailed summary that includes:

1. Primary Request and Intent:
   - What the user is trying to accomplish and why

2. Key Technical Concepts:
   - Technologies, patterns and design decisions that came up

3. Files and Code Sections:
   - Files that were read, changed or created, with the important snippets

4. Errors and Fixes:
   - Problems hit along the way and how they were resolved

5. Problem Solving:
   - Approaches taken and the reasoning behind them

6. All User Messages:
   - A short list of every request the user made

7. Pending Tasks:
   - Work that was asked for but is not finished

8. Current Work:
   - What was being done right before this summary

9. Optional Next Step:
   - The next action, if one follows directly from the current work

If the conversation is short or has little technical content, say so instead of \
inventing detail. Keep technical details exact: paths, names and commands."""


def build_summary_prompt(messages: list[dict[str, Any]]) -> str:
    """One-shot prompt asking the model to summarize ``messages``."""
    history = "\n\n".join(
        f"<{m.get('role')}>\n{m['content'] if isinstance(m.get('content'), str) else ''}\n</{m.get('role')}>"
        for m in messages
    )
    return (
        "Please analyze this conversation and create a comprehensive summary that "
        "captures the key points, decisions, and context.\n\n"
        f"Conversation History:\n<conversation>\n{history}\n</conversation>\n\n"
        f"{SUMMARY_INSTRUCTIONS}"
    )


def summary_message(summary: str) -> dict[str, Any]:
    return {"role": "user", "content": f"{SUMMARY_HEADER}\n\n{summary}"}


@dataclass(frozen=True)
class CompressionOutcome:
    messages: list[dict[str, Any]]
    usage: TokenUsage
    compressed: bool
    summary: str = ""
    error: Optional[str] = None


class CompressionManager:
    """Watches token usage and summarizes the transcript past ``threshold``."""

    def __init__(self, client: LLMClient, threshold: int) -> None:
        self.client = client
        self.threshold = threshold

    def should_compress(self, usage: Optional[TokenUsage]) -> bool:
        return usage is not None and usage.total_tokens > self.threshold

    async def summarize(
        self, messages: list[dict[str, Any]], cancellation: Optional[CancellationToken] = None
    ) -> tuple[str, Optional[TokenUsage]]:
        """Ask the model for a summary of ``messages`` (system message excluded)."""
        history = [m for m in messages if m.get("role") != "system"]
        if not history:
            raise ValueError("No messages to compact")
        prompt = [{"role": "user", "content": build_summary_prompt(history)}]

        summary = ""
        usage: Optional[TokenUsage] = None
        async for response in self.client.stream(prompt, cancellation=cancellation):
            summary = response.content
            usage = response.token_usage or usage
            if response.is_complete:
                break
        return summary, usage

    async def compress(
        self,
        messages: list[dict[str, Any]],
        events: EventBus,
        cancellation: Optional[CancellationToken] = None,
        usage: Optional[TokenUsage] = None,
        auto_triggered: bool = True,
    ) -> CompressionOutcome:
        """Summarize everything but the system message into one user message.

        A failed summary is not fatal: the outcome then carries the original
        messages and ``usage`` unchanged.
        """
        prefix = f"{COMPACT_COMMAND}_auto" if auto_triggered else COMPACT_COMMAND
        call_id = f"{prefix}_{int(time.time() * 1000)}"
        events.emit(CompressionStarted(call_id=call_id, started_at=now_iso(), auto_triggered=auto_triggered))

        try:
            summary, summary_usage = await self.summarize(messages, cancellation)
        except Exception as e:
            # asyncio.CancelledError is a BaseException and propagates
            error = "compaction canceled" if isinstance(e, LLMAbortError) else str(e) or type(e).__name__
            _log.warning("Context compression failed: %s", error)
            events.emit(CompressionFailed(call_id=call_id, ended_at=now_iso(), error=error))
            return CompressionOutcome(
                messages=list(messages), usage=usage or TokenUsage(), compressed=False, error=error
            )

        events.emit(CompressionSucceeded(call_id=call_id, ended_at=now_iso(), summary=summary))

        system = [m for m in messages[:1] if m.get("role") == "system"]
        new_usage = summary_usage or TokenUsage()
        events.emit(TokenUsageUpdate(new_usage))
        _log.debug(
            "Compressed %d messages into a summary (%d tokens reported)",
            len(messages), new_usage.total_tokens,
        )
        return CompressionOutcome(
            messages=[*system, summary_message(summary)],
            usage=new_usage,
            compressed=True,
            summary=summary,
        )
