"""
Timeout Estimator - RTT estimation and retransmission timeout.

Retransmitting too early wastes the link on copies the peer already has;
retransmitting too late stalls the transfer whenever a segment is lost. The
right value depends on the path, so it is learned from the acknowledgments:

- ERTT: exponentially smoothed round-trip time
- EDEV: exponentially smoothed deviation of the samples from ERTT
- timeout = ERTT + 4 * EDEV

Samples come from the timestamp echoed in each acknowledgment, never from a
segment that was sent more than once (Karn's algorithm: the ACK cannot tell
which copy it answers).

Unlike a kernel timer nothing here runs in the background. The connection's
run loop asks is_timed_out() while it polls the socket.
"""

import time
from dataclasses import dataclass
from typing import Optional


NANOSECONDS = 1_000_000_000


def now_ns() -> int:
    """Local clock used for segment timestamps."""
    return time.monotonic_ns()


@dataclass
class RTTSample:
    """A single accepted RTT sample."""
    rtt: float
    ertt: float
    edev: float
    timeout: float


class TimeoutEstimator:
    """
    Adaptive retransmission timeout.

    Until the handshake supplies a first sample the estimator answers with a
    fixed default timeout.
    """

    ALPHA = 0.125  # Weight of a new sample in ERTT
    BETA = 0.25    # Weight of a new deviation in EDEV
    K = 4          # Multiplier for EDEV in the timeout

    DEFAULT_TIMEOUT = 5.0
    MIN_TIMEOUT = 0.05
    MAX_TIMEOUT = 60.0

    def __init__(self, initial_timeout: float = DEFAULT_TIMEOUT,
                 min_timeout: float = MIN_TIMEOUT):
        """
        Args:
            initial_timeout: Timeout used before any sample (seconds)
            min_timeout: Floor the adaptive timeout never goes below (seconds)
        """
        if min_timeout <= 0:
            raise ValueError(f"Timeout floor must be positive: {min_timeout}")

        self._min_timeout = min_timeout
        self._ertt: Optional[float] = None
        self._edev: Optional[float] = None
        self._timeout = self._clamp(initial_timeout)
        self._forced: Optional[float] = None

        self._samples: list[RTTSample] = []

    @property
    def ertt(self) -> Optional[float]:
        """Smoothed RTT in seconds (None before the first sample)."""
        return self._ertt

    @property
    def edev(self) -> Optional[float]:
        """Smoothed deviation in seconds (None before the first sample)."""
        return self._edev

    @property
    def timeout(self) -> float:
        """Current retransmission timeout in seconds."""
        if self._forced is not None:
            return self._forced
        return self._timeout

    @property
    def has_sample(self) -> bool:
        return self._ertt is not None

    @property
    def samples(self) -> list[RTTSample]:
        return list(self._samples)

    def _clamp(self, value: float) -> float:
        return max(self._min_timeout, min(self.MAX_TIMEOUT, value))

    def first_sample(self, rtt: float):
        """
        Seed the estimator with the handshake round trip.

        ERTT = sample, EDEV = 0, timeout = 2 * ERTT
        """
        rtt = abs(rtt)
        self._ertt = rtt
        self._edev = 0.0
        self._timeout = self._clamp(2 * rtt)
        self._samples.append(RTTSample(rtt, self._ertt, self._edev, self._timeout))

    def update(self, received_at: int, echoed_sent_at: int,
               retransmitted: bool = False):
        """
        Fold in the sample carried by an accepted acknowledgment.

        Args:
            received_at: Local clock (ns) when the ACK arrived
            echoed_sent_at: Timestamp (ns) echoed back by the peer
            retransmitted: True if the acknowledged segment was ever resent;
                such samples are ignored (Karn's algorithm)
        """
        if retransmitted:
            return

        rtt = abs(received_at - echoed_sent_at) / NANOSECONDS

        if self._ertt is None:
            self.first_sample(rtt)
            return

        deviation = abs(rtt - self._ertt)
        self._ertt = (1 - self.ALPHA) * self._ertt + self.ALPHA * rtt
        self._edev = (1 - self.BETA) * self._edev + self.BETA * deviation
        self._timeout = self._clamp(self._ertt + self.K * self._edev)

        self._samples.append(RTTSample(rtt, self._ertt, self._edev, self._timeout))

    def force_timeout(self, timeout: Optional[float]):
        """
        Pin the timeout to a fixed value, or release it with None.

        Used during teardown, where a short explicit deadline replaces the
        adaptive estimate.
        """
        if timeout is not None and timeout <= 0:
            raise ValueError(f"Forced timeout must be positive: {timeout}")
        self._forced = timeout

    def is_timed_out(self, now: int, sent_at: int) -> bool:
        """True iff more than the current timeout separates the two clocks (ns)."""
        return abs(now - sent_at) / NANOSECONDS > self.timeout

    def get_statistics(self) -> dict:
        return {
            "ertt": self._ertt,
            "edev": self._edev,
            "timeout": self.timeout,
            "forced": self._forced is not None,
            "samples": len(self._samples),
        }

    def __str__(self) -> str:
        ertt_str = f"{self._ertt*1000:.1f}ms" if self._ertt is not None else "N/A"
        return f"TimeoutEstimator(ERTT={ertt_str}, timeout={self.timeout*1000:.1f}ms)"
