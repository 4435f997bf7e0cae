"""Batch execution primitive - the lowest level of tool execution.

The runner invokes tools and converts what they return or raise into tool
call records. It turns a tool's ``PermissionRequiredError`` into a
``permission_required`` call but never asks for approval itself; that is the
orchestrator's job.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Sequence

from codeloop.core.tool_call import (
    ABORTED_MESSAGE,
    ToolCall,
    ToolCallExecuting,
    ToolCallPending,
    now_iso,
)
from codeloop.tools.base import PermissionRequiredError, ToolExecutionContext
from codeloop.tools.registry import ToolRegistry

_log = logging.getLogger(__name__)

ExecutableCall = ToolCallPending | ToolCallExecuting


class ToolRunner:
    """Runs tool calls against a registry, one at a time or as a concurrent batch."""

    def __init__(self, registry: ToolRegistry) -> None:
        self.registry = registry

    async def _execute(self, call: ExecutableCall, context: ToolExecutionContext, started_at: str) -> ToolCall:
        running = call.executing(started_at=started_at)
        tool = self.registry.get(call.tool_name)
        if tool is None:
            return running.fail(f"Unknown tool: {call.tool_name}")

        try:
            result = await tool.execute(dict(call.input), context)
        except PermissionRequiredError as e:
            return running.permission_required(e.ui_hint)
        except Exception as e:
            _log.debug("Tool %s raised", call.tool_name, exc_info=True)
            return running.fail(str(e) or "Execution error")

        if result.aborted:
            return running.abort(result.message or ABORTED_MESSAGE, result=result.data)
        if not result.ok:
            return running.fail(result.message or result.error_code or "Tool failed")
        return running.succeed(result.payload())

    async def run_one(self, call: ExecutableCall, context: ToolExecutionContext) -> ToolCall:
        """Execute a single call; returns a terminal or ``permission_required`` call."""
        return await self._execute(call, context, now_iso())

    async def run_concurrent(
        self, calls: Sequence[ExecutableCall], context: ToolExecutionContext
    ) -> AsyncIterator[ToolCall]:
        """Execute ``calls`` concurrently, yielding each result as soon as it finishes.

        When the context's cancellation token trips, every call still running
        is yielded as ``abort`` and its task is cancelled.
        """
        started_at = now_iso()
        tasks = {
            asyncio.ensure_future(self._execute(call, context, started_at)): call
            for call in calls
        }
        cancel_waiter = asyncio.ensure_future(context.cancellation.wait())
        pending = set(tasks)
        try:
            while pending:
                done, _ = await asyncio.wait(
                    pending | {cancel_waiter}, return_when=asyncio.FIRST_COMPLETED
                )
                for task in done:
                    if task is cancel_waiter:
                        continue
                    pending.discard(task)
                    yield task.result()

                if context.cancellation.cancelled and pending:
                    for task in [t for t in tasks if t in pending]:
                        task.cancel()
                        pending.discard(task)
                        yield tasks[task].executing(started_at=started_at).abort(ABORTED_MESSAGE)
                    return
        finally:
            cancel_waiter.cancel()
            for task in tasks:
                if not task.done():
                    task.cancel()
