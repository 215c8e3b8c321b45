"""
Window sizing - how many segments the initiator puts in flight per round.

The policy is deliberately crude, a multiplicative increase / multiplicative
decrease applied once per round:

- A round that completed without a single resend: double the window
- A round that needed any resend (timeout or fast retransmit): halve it

The window never exceeds the configured capacity and never drops below one
segment. Proper congestion avoidance (slow start thresholds, additive
increase) is out of scope.
"""

import logging
import time
from dataclasses import dataclass
from typing import List


logger = logging.getLogger(__name__)


@dataclass
class WindowEvent:
    """Record of a window change for analysis."""
    timestamp: float
    had_resend: bool
    size_before: int
    size_after: int


class WindowController:
    """
    Multiplicative grow/shrink of the send window, in segments.
    """

    def __init__(self, capacity: int, initial_size: int = 1):
        """
        Args:
            capacity: Maximum outstanding segments
            initial_size: Window size of the first round
        """
        if capacity < 1:
            raise ValueError(f"Window capacity must be at least 1: {capacity}")
        if not 1 <= initial_size <= capacity:
            raise ValueError(f"Initial window {initial_size} outside 1..{capacity}")

        self.capacity = capacity
        self._size = initial_size
        self._history: List[WindowEvent] = []

    @property
    def size(self) -> int:
        """Current window size in segments."""
        return self._size

    @property
    def history(self) -> List[WindowEvent]:
        return list(self._history)

    def on_round_complete(self, had_resend: bool) -> int:
        """
        Adjust the window once every segment of a round is acknowledged.

        Returns:
            The new window size
        """
        before = self._size
        if had_resend:
            self._size = max(1, self._size // 2)
        else:
            self._size = min(self.capacity, self._size * 2)

        self._history.append(WindowEvent(
            timestamp=time.time(),
            had_resend=had_resend,
            size_before=before,
            size_after=self._size
        ))

        if self._size != before:
            logger.debug(f"Window {before} -> {self._size} "
                         f"({'resend' if had_resend else 'clean round'})")
        return self._size

    def __str__(self) -> str:
        return f"Window(size={self._size}, capacity={self.capacity})"
