"""
Tool-calling loop for one assistant turn.

Keeps sending tool results back to the model until it answers with text
only, the round ceiling (or another loop-guard limit) is hit, or the turn
is cancelled. Stops other than a provider exception are graceful: the turn
ends with the last response text and every tool call executed so far.
"""

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Optional

from data_ops.results import ResultKind, ToolResult

from .logging import get_logger, log_error, log_tool_call, log_tool_result
from .loop_guard import LoopGuard, make_call_key
from .messages import ToolCallRecord, TurnStatus

logger = get_logger()

ToolExecutor = Callable[[str, dict], ToolResult]


@dataclass
class TurnResult:
    """Outcome of a tool-mode turn."""
    text: str = ""
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    status: TurnStatus = TurnStatus.DONE
    stop_reason: Optional[str] = None
    rounds: int = 0

    @property
    def charts(self) -> list[ToolResult]:
        return [r.result for r in self.tool_calls if r.result.kind is ResultKind.CHART]

    @property
    def cards(self) -> list[ToolResult]:
        return [r.result for r in self.tool_calls if r.result.kind is ResultKind.CARD]

    @property
    def images(self) -> list[ToolResult]:
        return [r.result for r in self.tool_calls if r.result.kind is ResultKind.IMAGE]


def execute_tool_safe(tool_executor: ToolExecutor, tool_name: str, tool_args: dict) -> ToolResult:
    """Run one tool, converting unexpected exceptions into an error result.

    User-input problems already come back as ERROR results from the
    executors; anything raised here is a bug and is logged with its stack
    trace.
    """
    log_tool_call(tool_name, tool_args)
    try:
        result = tool_executor(tool_name, tool_args)
    except Exception as e:
        log_error(
            f"Unexpected exception in tool {tool_name}",
            exc=e,
            context={"tool_name": tool_name, "tool_args": tool_args},
        )
        result = ToolResult.failure(f"Internal error: {e}")
    log_tool_result(tool_name, result.for_model(), not result.is_error)
    return result


def _normalize_args(args) -> dict:
    if isinstance(args, dict):
        return args
    return dict(args) if args else {}


def execute_tool_calls(
    tool_calls: list,
    tool_executor: ToolExecutor,
    parallel: bool = False,
    max_workers: int = 4,
) -> list[tuple[str, dict, ToolResult]]:
    """Execute one round of tool calls.

    With ``parallel`` and more than one call the batch runs on a thread
    pool. Results are always returned in request order.

    Returns:
        List of (tool_name, tool_args, result) tuples in original order.
    """
    parsed = [(tc.name, _normalize_args(tc.args)) for tc in tool_calls]

    if not parallel or len(parsed) < 2:
        return [
            (name, args, execute_tool_safe(tool_executor, name, args))
            for name, args in parsed
        ]

    logger.debug(
        f"[Parallel] Executing {len(parsed)} tools concurrently: "
        f"{[name for name, _ in parsed]}"
    )
    results_by_idx: dict[int, ToolResult] = {}
    with ThreadPoolExecutor(max_workers=min(len(parsed), max_workers)) as pool:
        futures = {
            pool.submit(execute_tool_safe, tool_executor, name, args): idx
            for idx, (name, args) in enumerate(parsed)
        }
        for future in as_completed(futures):
            results_by_idx[futures[future]] = future.result()

    return [
        (parsed[i][0], parsed[i][1], results_by_idx[i])
        for i in range(len(parsed))
    ]


def run_tool_loop(
    chat,
    response,
    tool_executor: ToolExecutor,
    adapter,
    agent_name: str = "Agent",
    max_rounds: int = 5,
    max_total_calls: int = 20,
    track_usage=None,
    cancel_event: threading.Event | None = None,
    on_record: Callable[[ToolCallRecord], None] | None = None,
    parallel: bool = False,
    max_workers: int = 4,
) -> TurnResult:
    """Run the tool-calling loop on an existing chat session.

    Args:
        chat: An active ``ChatSession`` created with the tool catalog.
        response: The model's response to the user's message.
        tool_executor: ``(tool_name, tool_args) -> ToolResult`` callable.
        adapter: The ``LLMAdapter`` that builds tool-result messages.
        agent_name: Label for log messages.
        max_rounds: Tool rounds allowed before the turn is cut off.
        max_total_calls: Hard cap on total tool invocations.
        track_usage: Optional ``(response, context) -> None`` callback for
            token accounting, called after every send.
        cancel_event: Polled before each round; once set the loop stops.
        on_record: Called with each ToolCallRecord as soon as it exists.
        parallel: Run a round's calls on a thread pool.
        max_workers: Thread pool size.

    Returns:
        A TurnResult with the last response text and all executed calls.
    """
    guard = LoopGuard(max_rounds=max_rounds, max_total_calls=max_total_calls)
    records: list[ToolCallRecord] = []

    def _finish(status: TurnStatus, reason: str | None = None) -> TurnResult:
        return TurnResult(
            text=response.text or "",
            tool_calls=records,
            status=status,
            stop_reason=reason,
            rounds=guard.rounds,
        )

    while True:
        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"[{agent_name}] Tool loop interrupted by user")
            return _finish(TurnStatus.CANCELLED, "cancelled")

        tool_calls = response.tool_calls or []
        if not tool_calls:
            return _finish(TurnStatus.DONE)

        stop_reason = guard.check_round()
        if stop_reason is None:
            call_keys = {make_call_key(tc.name, _normalize_args(tc.args)) for tc in tool_calls}
            stop_reason = guard.check_calls(call_keys, call_count=len(tool_calls))
        if stop_reason:
            logger.debug(f"[{agent_name}] Tool loop stopping: {stop_reason}")
            return _finish(TurnStatus.ROUND_EXHAUSTED, stop_reason)

        executed = execute_tool_calls(tool_calls, tool_executor, parallel=parallel, max_workers=max_workers)

        function_responses = []
        for tc, (name, args, result) in zip(tool_calls, executed):
            record = ToolCallRecord(name=name, args=args, result=result)
            records.append(record)
            if on_record is not None:
                on_record(record)
            function_responses.append(
                adapter.make_tool_result_message(name, result.for_model(), tool_call_id=tc.id)
            )

        guard.record_calls(call_keys, call_count=len(tool_calls))

        logger.debug(f"[{agent_name}] Sending {len(function_responses)} tool result(s) back...")
        response = chat.send(function_responses)
        if track_usage:
            track_usage(response, "+".join(tc.name for tc in tool_calls))
