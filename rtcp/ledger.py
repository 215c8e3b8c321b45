"""
Transfer Ledger - bookkeeping of what has been sent, acknowledged, delivered.

The ledger is created once the handshake is done and sits between the
connection engine and the byte source or sink.

Sender side:
- Pulls chunks from the ByteSource and counts bytes sent
- Remembers every acknowledgment boundary it has seen, so that a repeated
  boundary is recognized as a duplicate ACK

Receiver side:
- Tracks the next contiguous byte it needs
- Remembers the start of every delivered segment, so that a retransmitted
  copy is recognized as a duplicate
- Hands bytes to the ByteSink strictly in order
"""

import logging
from typing import Optional, Set

from .exceptions import SinkIOError, SourceIOError
from .files import ByteSink, ByteSource


logger = logging.getLogger(__name__)

# The SYN consumes sequence number 0, so data starts at byte 1
FIRST_DATA_SEQ = 1


class SenderLedger:
    """Sender-side bookkeeping."""

    def __init__(self, source: ByteSource, max_payload: int):
        self._source = source
        self.max_payload = max_payload

        self.last_byte_sent = 0
        self.last_byte_acked = 0
        self.end_of_data = False

        # The handshake acknowledged boundary 1 already
        self._acked = {FIRST_DATA_SEQ}

    def next_chunk(self) -> Optional[bytes]:
        """
        Pull the next chunk from the source.

        Returns:
            The chunk, or None once the source is exhausted

        Raises:
            SourceIOError: If the source cannot be read
            ValueError: If the source hands out a chunk above max_payload
        """
        if self.end_of_data:
            return None

        try:
            chunk = self._source.next_chunk()
        except OSError as e:
            raise SourceIOError(f"Error retrieving data chunk: {e}") from e

        if not chunk:
            self.end_of_data = True
            return None

        if len(chunk) > self.max_payload:
            raise ValueError(
                f"Source chunk of {len(chunk)} bytes exceeds maximum {self.max_payload}"
            )

        self.last_byte_sent += len(chunk)
        return chunk

    def record_ack(self, ack_num: int) -> bool:
        """
        Record an acknowledgment boundary.

        Returns:
            True if the boundary had not been seen before
        """
        if ack_num in self._acked:
            return False
        self._acked.add(ack_num)
        self.last_byte_acked = max(self.last_byte_acked, ack_num - 1)
        return True

    def is_already_acked(self, ack_num: int) -> bool:
        return ack_num in self._acked

    @property
    def bytes_outstanding(self) -> int:
        return self.last_byte_sent - self.last_byte_acked


class ReceiverLedger:
    """Receiver-side bookkeeping."""

    def __init__(self, sink: ByteSink):
        self._sink = sink
        self._next_expected = FIRST_DATA_SEQ
        self._delivered_starts: Set[int] = set()
        self.bytes_delivered = 0

    def next_expected_byte(self) -> int:
        return self._next_expected

    def is_already_received(self, seq_num: int) -> bool:
        """True if a segment starting at seq_num was already delivered."""
        return seq_num in self._delivered_starts or seq_num < self._next_expected

    def deliver(self, seq_num: int, length: int, payload: bytes) -> bool:
        """
        Hand a segment's bytes to the sink if they are the next ones needed.

        Returns:
            True if delivered; False (nothing written) if seq_num is not the
            next expected byte

        Raises:
            SinkIOError: If the sink fails to store the bytes
        """
        if seq_num != self._next_expected:
            return False
        if length != len(payload):
            raise ValueError(f"Length {length} does not match payload of {len(payload)} bytes")

        try:
            self._sink.append(seq_num - FIRST_DATA_SEQ, payload)
        except OSError as e:
            raise SinkIOError(f"Error writing data: {e}") from e

        self._delivered_starts.add(seq_num)
        self._next_expected += length
        self.bytes_delivered += length
        return True
