"""Token usage accounting across model calls.

Providers report usage differently: some send the input count once per call,
some resend it on every chunk; output counts usually arrive as a running
total for the call. The tracker therefore treats the latest input report for
a call as authoritative (replace) and converts running output totals into
deltas before adding them.
"""

import logging
from typing import Dict

logger = logging.getLogger(__name__)


class UsageTracker:
    """Accumulates token usage for one agent."""

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self.calls = 0
        self._committed_input = 0
        self._call_input = 0
        self._call_output = 0
        self.output_tokens = 0
        self.cache_write_tokens = 0
        self.cache_read_tokens = 0

    def reset_call(self) -> None:
        """Close out the current model call and start a new one."""
        if self._call_input or self._call_output:
            self.calls += 1
        self._committed_input += self._call_input
        self._call_input = 0
        self._call_output = 0

    @property
    def input_tokens(self) -> int:
        return self._committed_input + self._call_input

    def track_input_tokens(self, tokens: int, cache_write: int = 0, cache_read: int = 0) -> None:
        """Record the input size of the current call (replaces earlier reports)."""
        self._call_input = max(int(tokens or 0), 0)
        self.cache_write_tokens += max(int(cache_write or 0), 0)
        self.cache_read_tokens += max(int(cache_read or 0), 0)

    def track_output_tokens(self, delta: int) -> None:
        delta = int(delta or 0)
        if delta <= 0:
            return
        self._call_output += delta
        self.output_tokens += delta

    def record_chunk(self, chunk) -> None:
        """Apply a ``usage`` stream chunk. Output counts are running totals."""
        if chunk.input_tokens:
            self.track_input_tokens(chunk.input_tokens, chunk.cache_write_tokens, chunk.cache_read_tokens)
        if chunk.output_tokens:
            self.track_output_tokens(chunk.output_tokens - self._call_output)
        logger.debug("Usage: in=%d out=%d", self.input_tokens, self.output_tokens)

    def totals(self) -> Dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cache_write_tokens": self.cache_write_tokens,
            "cache_read_tokens": self.cache_read_tokens,
            "total_tokens": self.input_tokens + self.output_tokens,
            "calls": self.calls,
        }
