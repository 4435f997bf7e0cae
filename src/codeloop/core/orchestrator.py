"""Tool execution orchestrator.

Picks the execution strategy for one turn's tool calls and drives each call
through the permission state machine:

- every requested tool read-only → the whole batch runs concurrently;
- anything else (including an unknown tool) → the batch runs one call at a
  time, pausing for approval when a tool asks for it.

Results always come back in request order, whatever order they finished in.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from typing import Awaitable, Callable, Optional, Sequence

from codeloop.core.cancellation import CancellationToken
from codeloop.core.context import ExecutionContext
from codeloop.core.events import EventBus, ToolComplete, ToolStart, ToolUpdate
from codeloop.core.tool_call import (
    INTERRUPTED_MESSAGE,
    ToolCall,
    ToolCallExecuting,
    ToolCallPending,
    ToolCallPermissionDenied,
    ToolCallPermissionRequired,
    ToolCallRequest,
    ToolCallTerminal,
)
from codeloop.permissions import ApprovalDecision, PermissionUiHint
from codeloop.tools.runner import ToolRunner

_log = logging.getLogger(__name__)

Approver = Callable[[PermissionUiHint, str], Awaitable[ApprovalDecision]]


class ToolContractError(RuntimeError):
    """A tool broke its declared contract (e.g. a read-only tool asked for permission)."""


def _precheck(request: ToolCallRequest, runner: ToolRunner) -> Optional[str]:
    """Error message for a request that must not reach the runner, else None."""
    if request.tool_name not in runner.registry:
        return f"Unknown tool: {request.tool_name}"
    if request.argument_error:
        return request.argument_error
    return None


class ToolOrchestrator:
    """Runs one turn's tool calls and returns a terminal call per request."""

    def __init__(self, runner: Optional[ToolRunner] = None) -> None:
        self._runner = runner

    def _runner_for(self, context: ExecutionContext) -> ToolRunner:
        return self._runner or ToolRunner(context.registry)

    async def execute(
        self,
        requests: Sequence[ToolCallRequest],
        context: ExecutionContext,
        events: EventBus,
        approver: Optional[Approver] = None,
    ) -> list[ToolCallTerminal]:
        if not requests:
            return []
        runner = self._runner_for(context)
        if all(runner.registry.is_readonly(r.tool_name) for r in requests):
            _log.debug("Running %d read-only tool calls concurrently", len(requests))
            return await self._execute_concurrently(runner, requests, context, events)
        _log.debug("Running %d tool calls sequentially", len(requests))
        return await self._execute_sequentially(runner, requests, context, events, approver)

    # ── concurrent ─────────────────────────────────────────────────────

    async def _execute_concurrently(
        self,
        runner: ToolRunner,
        requests: Sequence[ToolCallRequest],
        context: ExecutionContext,
        events: EventBus,
    ) -> list[ToolCallTerminal]:
        results: list[Optional[ToolCallTerminal]] = [None] * len(requests)
        runnable: list[ToolCallExecuting] = []
        index_of: dict[str, int] = {}

        for i, request in enumerate(requests):
            running = ToolCallPending.from_request(request).executing()
            problem = _precheck(request, runner)
            if problem:
                failed = running.fail(problem)
                results[i] = failed
                events.emit(ToolStart(running))
                events.emit(ToolComplete(failed))
                continue
            runnable.append(running)
            index_of[running.request_id] = i

        # Calls that failed the precheck are reported before any real call starts.
        for running in runnable:
            events.emit(ToolStart(running))

        if runnable:
            async with aclosing(runner.run_concurrent(runnable, context.tool_context())) as stream:
                async for call in stream:
                    if isinstance(call, ToolCallPermissionRequired):
                        raise ToolContractError(
                            f"Read-only tool '{call.tool_name}' requested permission approval"
                        )
                    results[index_of[call.request_id]] = call
                    events.emit(ToolComplete(call))

        missing = [requests[i].id for i, r in enumerate(results) if r is None]
        if missing:
            raise ToolContractError(f"No result returned for tool calls: {', '.join(missing)}")
        return results  # type: ignore[return-value]

    # ── sequential ─────────────────────────────────────────────────────

    async def _execute_sequentially(
        self,
        runner: ToolRunner,
        requests: Sequence[ToolCallRequest],
        context: ExecutionContext,
        events: EventBus,
        approver: Optional[Approver],
    ) -> list[ToolCallTerminal]:
        results: list[ToolCallTerminal] = []

        for i, request in enumerate(requests):
            if context.cancellation.cancelled:
                for rest in requests[i:]:
                    aborted = ToolCallPending.from_request(rest).abort(INTERRUPTED_MESSAGE)
                    results.append(aborted)
                    events.emit(ToolComplete(aborted))
                break

            running = ToolCallPending.from_request(request).executing()
            events.emit(ToolStart(running))
            problem = _precheck(request, runner)
            if problem:
                result: ToolCallTerminal = running.fail(problem)
            else:
                result = await self._run_with_approval(runner, running, context, events, approver)
            results.append(result)
            events.emit(ToolComplete(result))

            if isinstance(result, ToolCallPermissionDenied):
                for rest in requests[i + 1:]:
                    denied = ToolCallPending.from_request(rest).deny()
                    results.append(denied)
                    events.emit(ToolComplete(denied))
                break

        return results

    async def _run_with_approval(
        self,
        runner: ToolRunner,
        call: ToolCallExecuting,
        context: ExecutionContext,
        events: EventBus,
        approver: Optional[Approver],
    ) -> ToolCallTerminal:
        result: ToolCall = await runner.run_one(call, context.tool_context())
        if not isinstance(result, ToolCallPermissionRequired):
            return result
        if runner.registry.is_readonly(result.tool_name):
            raise ToolContractError(
                f"Read-only tool '{result.tool_name}' requested permission approval"
            )
        if approver is None:
            _log.debug("No approver; denying %s", result.request_id)
            return result.deny()

        events.emit(ToolUpdate(result))
        decision = await _await_decision(approver, result, context.cancellation)
        if decision is None:
            return result.abort(INTERRUPTED_MESSAGE)
        if not decision.approved:
            return result.deny(decision.reason or "user_rejected")

        context.permissions.apply(result.ui_hint, decision.option, context.cwd)
        resumed = result.executing()
        events.emit(ToolUpdate(resumed))

        retried = await runner.run_one(resumed, context.tool_context())
        if isinstance(retried, ToolCallPermissionRequired):
            return resumed.fail(f"Permission still required after approval: {retried.ui_hint.message}")
        return retried


async def _await_decision(
    approver: Approver,
    call: ToolCallPermissionRequired,
    cancellation: CancellationToken,
) -> Optional[ApprovalDecision]:
    """Wait for the approver; None when the token trips first."""
    decision_task = asyncio.ensure_future(approver(call.ui_hint, call.request_id))
    cancel_waiter = asyncio.ensure_future(cancellation.wait())
    try:
        await asyncio.wait({decision_task, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
        if decision_task.done():
            return decision_task.result()
        return None
    finally:
        cancel_waiter.cancel()
        if not decision_task.done():
            decision_task.cancel()
