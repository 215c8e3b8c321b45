"""
Send Window and Receive Buffer.

Both ends keep segments around that they cannot act on yet:

Send Window (initiator):
- Segments transmitted in the current round and not yet acknowledged
- Kept in send order, which is also sequence order
- Each one remembers when it was last sent and how often it was resent

Receive Buffer (responder):
- Segments that arrived ahead of a gap and wait for it to be filled
- Kept sorted by sequence number, never two with the same start
- Bounded: once full, a lower segment pushes out the *highest* one

Visualization of the receive side:

    delivered |  gap  | [401] [501] | gap | [801]
              ^
        next expected byte (301)

Segments leave the buffer from the front only, once its head matches the next
expected byte.
"""

import bisect
from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterator, List, Optional, Tuple

from .segment import Segment
from .timer import TimeoutEstimator


@dataclass
class InFlightSegment:
    """A transmitted segment awaiting its cumulative ACK."""
    segment: Segment
    sent_at: int              # Local clock (ns) of the latest transmission
    retries: int = 0          # Resends of this segment alone
    resent: bool = False      # Karn's rule: never sample RTT from it

    @property
    def seq_num(self) -> int:
        return self.segment.seq_num

    @property
    def end_seq(self) -> int:
        return self.segment.end_seq

    def mark_resent(self, sent_at: int):
        self.sent_at = sent_at
        self.retries += 1
        self.resent = True


class SendWindow:
    """
    The initiator's in-flight segments for one round.

    Segments are added in increasing sequence order and removed by cumulative
    acknowledgment. Once it is empty the round is over.
    """

    def __init__(self):
        self._entries: List[InFlightSegment] = []

    @property
    def base_seq(self) -> Optional[int]:
        """First unacknowledged byte, or None when empty."""
        return self._entries[0].seq_num if self._entries else None

    @property
    def next_seq(self) -> Optional[int]:
        """Byte after the last one in flight, or None when empty."""
        return self._entries[-1].end_seq if self._entries else None

    def add(self, segment: Segment, sent_at: int = 0) -> InFlightSegment:
        """
        Append a segment.

        Raises:
            ValueError: If it does not continue the window contiguously
        """
        if self._entries and segment.seq_num != self._entries[-1].end_seq:
            raise ValueError(
                f"Segment seq={segment.seq_num} does not follow "
                f"{self._entries[-1].end_seq}"
            )
        entry = InFlightSegment(segment=segment, sent_at=sent_at)
        self._entries.append(entry)
        return entry

    def entry_ending_at(self, ack_num: int) -> Optional[InFlightSegment]:
        """The in-flight segment whose last byte precedes ack_num."""
        for entry in self._entries:
            if entry.end_seq == ack_num:
                return entry
        return None

    def covers(self, ack_num: int) -> bool:
        """True if ack_num is a boundary of some in-flight segment."""
        return self.entry_ending_at(ack_num) is not None

    def acknowledge(self, ack_num: int) -> List[InFlightSegment]:
        """
        Remove every segment that lies entirely before ack_num.

        Returns:
            The removed entries, in sequence order
        """
        acked = [entry for entry in self._entries if entry.end_seq <= ack_num]
        self._entries = [entry for entry in self._entries if entry.end_seq > ack_num]
        return acked

    def timed_out(self, estimator: TimeoutEstimator, now: int) -> List[InFlightSegment]:
        """Entries whose latest transmission is older than the timeout."""
        return [entry for entry in self._entries
                if estimator.is_timed_out(now, entry.sent_at)]

    def __iter__(self) -> Iterator[InFlightSegment]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        seqs = ", ".join(str(entry.seq_num) for entry in self._entries)
        return f"SendWindow([{seqs}])"


class InsertResult(Enum):
    """What happened to a segment offered to the receive buffer."""
    INSERTED = auto()   # Stored, buffer had room
    EVICTED = auto()    # Stored after pushing out the highest segment
    DUPLICATE = auto()  # Same start already buffered, not stored
    DROPPED = auto()    # Buffer full and segment not lower than its maximum


class ReceiveBuffer:
    """
    Bounded reordering buffer on the responder.

    Eviction policy: when the buffer is full, a newcomer below the current
    maximum replaces the maximum; anything else is dropped. Keeping the lowest
    segments keeps the ones closest to becoming deliverable.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"Capacity must be at least 1: {capacity}")
        self.capacity = capacity
        self._segments: List[Segment] = []
        self._seqs: List[int] = []  # Parallel sorted keys for bisect

    @property
    def head(self) -> Optional[Segment]:
        return self._segments[0] if self._segments else None

    @property
    def max_seq(self) -> Optional[int]:
        return self._seqs[-1] if self._seqs else None

    def is_full(self) -> bool:
        return len(self._segments) >= self.capacity

    def contains(self, seq_num: int) -> bool:
        i = bisect.bisect_left(self._seqs, seq_num)
        return i < len(self._seqs) and self._seqs[i] == seq_num

    def insert(self, segment: Segment) -> Tuple[InsertResult, Optional[Segment]]:
        """
        Offer a segment to the buffer.

        Returns:
            Tuple of (result, evicted_segment)
        """
        if self.contains(segment.seq_num):
            return (InsertResult.DUPLICATE, None)

        evicted = None
        if self.is_full():
            if segment.seq_num >= self._seqs[-1]:
                return (InsertResult.DROPPED, None)
            evicted = self._segments.pop()
            self._seqs.pop()

        i = bisect.bisect_left(self._seqs, segment.seq_num)
        self._seqs.insert(i, segment.seq_num)
        self._segments.insert(i, segment)

        if evicted is not None:
            return (InsertResult.EVICTED, evicted)
        return (InsertResult.INSERTED, None)

    def pop(self) -> Segment:
        """Remove and return the lowest segment."""
        if not self._segments:
            raise IndexError("pop from empty ReceiveBuffer")
        self._seqs.pop(0)
        return self._segments.pop(0)

    def sequence_numbers(self) -> List[int]:
        return list(self._seqs)

    def __len__(self) -> int:
        return len(self._segments)

    def __repr__(self) -> str:
        return f"ReceiveBuffer({self._seqs}, capacity={self.capacity})"
