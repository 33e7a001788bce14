"""
Loop guard for the tool-call loop.

Stops a turn when the model keeps requesting tools without converging on an
answer. Four layers of protection:
1. Round ceiling (tool rounds per turn)
2. Hard total-call limit (absolute cap on tool invocations)
3. Subset-based duplicate detection (catches exact repeats)
4. Cycle detection (catches A->B->A->B... alternating patterns)

Every stop is a graceful one: the caller ends the turn with whatever text and
tool output it already has.
"""

import json


def make_call_key(tool_name: str, tool_args: dict) -> tuple:
    """Create a deterministic hashable key for a tool call.

    Uses JSON serialization with sorted keys so argument dicts that differ
    only in ordering produce the same key.
    """
    try:
        args_str = json.dumps(tool_args, sort_keys=True, default=str)
    except (TypeError, ValueError):
        args_str = str(sorted(tool_args.items()))
    return (tool_name, args_str)


class LoopGuard:
    """Tracks tool rounds for one turn and reports why to stop.

    Usage:
        guard = LoopGuard(max_rounds=5, max_total_calls=20)

        while response.tool_calls:
            reason = guard.check_round()
            if reason:
                break

            keys = {make_call_key(c.name, c.args) for c in response.tool_calls}
            reason = guard.check_calls(keys)
            if reason:
                break

            # ... execute tools ...

            guard.record_calls(keys)

            # ... send results back ...
    """

    def __init__(self, max_rounds: int = 5, max_total_calls: int = 20):
        self.max_rounds = max_rounds
        self.max_total_calls = max_total_calls
        self.total_calls = 0
        self.rounds = 0
        self.previous_calls: set = set()
        self._recent_batches: list = []

    def check_round(self) -> str | None:
        """Start a new tool round. Returns a stop reason or None."""
        if self.rounds >= self.max_rounds:
            return f"round limit ({self.max_rounds}) reached"
        self.rounds += 1
        return None

    def check_calls(self, call_keys: set, call_count: int | None = None) -> str | None:
        """Check if proposed calls should proceed. Call BEFORE executing tools.

        Args:
            call_keys: Keys of the proposed calls (``make_call_key``).
            call_count: Number of calls in the batch, when the batch holds
                repeated identical calls; defaults to ``len(call_keys)``.
        """
        if not call_keys:
            return None
        count = call_count if call_count is not None else len(call_keys)

        if self.total_calls + count > self.max_total_calls:
            return (
                f"total call limit ({self.max_total_calls}) reached "
                f"after {self.total_calls} calls"
            )

        if call_keys.issubset(self.previous_calls):
            return "duplicate tool calls detected"

        batch_key = frozenset(call_keys)
        if batch_key in self._recent_batches[-3:]:
            return "cycling pattern detected"

        return None

    def record_calls(self, call_keys: set, call_count: int | None = None) -> None:
        """Record that a batch of calls was executed. Call AFTER executing tools."""
        self.total_calls += call_count if call_count is not None else len(call_keys)
        self.previous_calls.update(call_keys)
        self._recent_batches.append(frozenset(call_keys))
        if len(self._recent_batches) > 8:
            self._recent_batches = self._recent_batches[-8:]
