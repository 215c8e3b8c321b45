"""
Connection - the reliable transfer engine.

This module brings together all the rtcp components:
- Segment encoding and decoding
- The role-specific state machine
- The send window and the receive (reordering) buffer
- The timeout estimator for retransmission
- The transfer ledger feeding the byte source / sink

A connection runs one transfer from start to finish on a single thread:

1. Handshake (SYN, SYN-ACK, ACK)
2. Data transfer, initiator to responder, in windowed rounds
3. Teardown (FIN, FIN-ACK, ACK)

Nothing here ever blocks forever. Every wait on the channel is bounded by
the adaptive timeout, a fixed teardown timeout, the receiver's poll interval
or, across waits, the inactivity ceiling. Running out of retries or hitting
the ceiling aborts the connection; run() then returns False.

Usage:
    # Receiving end
    conn = ResponderConnection(ConnectionConfig(local_port=6000), MemorySink())
    ok = conn.run()

    # Sending end
    config = ConnectionConfig(local_port=5000, remote_address=("10.0.0.2", 6000))
    ok = InitiatorConnection(config, FileSource("data.bin", 1000)).run()
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Dict, List, Optional

from .buffer import InFlightSegment, InsertResult, ReceiveBuffer, SendWindow
from .channel import Address, DatagramChannel, UDPChannel
from .congestion import WindowController
from .exceptions import (
    CorruptSegment, InactivityCeilingExceeded, ProtocolViolation,
    RetryBudgetExhausted, TransportError
)
from .files import ByteSink, ByteSource
from .ledger import FIRST_DATA_SEQ, ReceiverLedger, SenderLedger
from .segment import (
    MAX_PAYLOAD, Segment,
    create_ack_segment, create_data_segment, create_fin_ack_segment,
    create_fin_segment, create_syn_ack_segment, create_syn_segment
)
from .states import ConnectionState, Role, StateMachine
from .timer import NANOSECONDS, TimeoutEstimator, now_ns


logger = logging.getLogger(__name__)


@dataclass
class ConnectionConfig:
    """Configuration options for a connection."""

    # Endpoints
    local_port: int = 0
    remote_address: Optional[Address] = None  # Initiator only

    # Largest payload per segment, in bytes
    max_payload: int = 1000

    # Maximum outstanding segments, and the window of the first round
    window_capacity: int = 10
    initial_window: int = 1

    # Resends of any single segment before the connection is given up
    max_retries: int = 16

    # Timeouts (seconds)
    initial_timeout: float = 5.0      # Before the handshake supplies a sample
    min_timeout: float = 0.05         # Floor of the adaptive timeout
    fin_timeout: float = 0.2          # Fixed timeout of the responder's FIN-ACK
    poll_interval: float = 0.2        # Responder's wait per receive pass
    inactivity_ceiling: float = 30.0  # Silence tolerated from the peer

    # Copies of the unacknowledged final handshake / teardown ACK
    redundant_acks: int = 3

    # Duplicate ACKs that trigger a resend of the whole window
    duplicate_ack_threshold: int = 3

    def __post_init__(self):
        if not 0 <= self.local_port <= 65535:
            raise ValueError(f"Invalid local port: {self.local_port}")
        if self.remote_address is not None:
            host, port = self.remote_address
            if not host or not 0 < port <= 65535:
                raise ValueError(f"Invalid remote address: {self.remote_address}")
        if not 1 <= self.max_payload <= MAX_PAYLOAD:
            raise ValueError(f"Invalid max payload: {self.max_payload}")
        if self.window_capacity < 1:
            raise ValueError(f"Invalid window capacity: {self.window_capacity}")
        if not 1 <= self.initial_window <= self.window_capacity:
            raise ValueError(f"Invalid initial window: {self.initial_window}")
        if self.max_retries < 1:
            raise ValueError(f"Invalid retry budget: {self.max_retries}")
        for name in ("initial_timeout", "min_timeout", "fin_timeout",
                     "poll_interval", "inactivity_ceiling"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.redundant_acks < 1:
            raise ValueError(f"Invalid redundant ACK count: {self.redundant_acks}")
        if self.duplicate_ack_threshold < 1:
            raise ValueError(f"Invalid duplicate ACK threshold: {self.duplicate_ack_threshold}")


@dataclass
class ConnectionStatistics:
    """Counters reported at the end of a run."""
    bytes_transferred: int = 0
    segments_sent: int = 0
    segments_received: int = 0
    out_of_order_discards: int = 0
    checksum_failures: int = 0
    retransmissions: int = 0
    duplicate_acks: int = 0
    duplicate_segments: int = 0

    def __str__(self) -> str:
        return (
            f"Connection Stats:\n"
            f"  Data transferred: {self.bytes_transferred} bytes\n"
            f"  Segments sent: {self.segments_sent}\n"
            f"  Segments received: {self.segments_received}\n"
            f"  Out-of-sequence discards: {self.out_of_order_discards}\n"
            f"  Checksum failures: {self.checksum_failures}\n"
            f"  Retransmissions: {self.retransmissions}\n"
            f"  Duplicate ACKs: {self.duplicate_acks}\n"
            f"  Duplicate segments: {self.duplicate_segments}"
        )


class ReceiveError(Enum):
    """Why a receive attempt produced no segment."""
    TIMEOUT = auto()  # Nothing arrived in time
    CORRUPT = auto()  # Checksum or framing failure, treated as a loss
    FOREIGN = auto()  # Datagram from someone other than the peer


@dataclass
class ReceiveResult:
    """Outcome of one receive attempt: a segment or an error, never both."""
    segment: Optional[Segment] = None
    address: Optional[Address] = None
    error: Optional[ReceiveError] = None
    received_at: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


class Connection:
    """
    Plumbing shared by both ends of a transfer.

    Subclasses supply the role, the handshake, the data phase and the
    teardown; this class owns the channel, the state machine, the timeout
    estimator, the ledger and the statistics.
    """

    role: Role

    def __init__(self, config: ConnectionConfig,
                 channel: Optional[DatagramChannel] = None):
        """
        Args:
            config: Connection parameters
            channel: Datagram channel to use; a UDP socket bound to
                config.local_port is opened when None. Either way the
                connection closes it when the run ends.
        """
        self.config = config
        self._channel = channel

        self._state_machine = StateMachine(self.role)
        self._state_machine.on_transition(self._log_transition)

        # The estimator lives as long as the connection; the ledger only
        # exists once the handshake is done
        self._estimator = TimeoutEstimator(config.initial_timeout, config.min_timeout)
        self._ledger = None

        self._peer_address: Optional[Address] = None
        self.stats = ConnectionStatistics()

        self.is_open = False
        self.is_connected = False
        self.is_closed = True

        self._start_ns = 0
        self._last_heard = 0.0

    @property
    def state(self) -> ConnectionState:
        return self._state_machine.state

    @property
    def estimator(self) -> TimeoutEstimator:
        return self._estimator

    @property
    def peer_address(self) -> Optional[Address]:
        return self._peer_address

    def _log_transition(self, old: ConnectionState, new: ConnectionState, event: str):
        logger.debug(f"{self.role.name}: {old.name} --[{event}]--> {new.name}")

    # ========== Lifecycle ==========

    def run(self) -> bool:
        """
        Perform the whole transfer.

        Returns:
            True if the transfer and the teardown completed, False if the
            connection was aborted. Bytes already delivered stay delivered.
        """
        self._open()
        try:
            self._establish()
            self.is_connected = True
            logger.info(f"Connection established with {self._peer_address}")

            self._ledger = self._create_ledger()
            self._transfer()
            self._teardown()
        except TransportError as e:
            logger.error(f"{self.role.name.capitalize()} connection lost: {e}")
            self._state_machine.transition("abort")
            return False
        finally:
            self._release()
            logger.info(f"{self.role.name.capitalize()} finished\n{self.stats}")

        return True

    def _open(self):
        if self._channel is None:
            self._channel = UDPChannel(("0.0.0.0", self.config.local_port))

        self._start_ns = now_ns()
        self._last_heard = time.monotonic()
        self.is_open = True
        self.is_closed = False

    def _release(self):
        """Close the channel and drop the ledger."""
        if self._channel is not None:
            self._channel.close()
        self._ledger = None
        self.is_open = False
        self.is_connected = False
        self.is_closed = True
        logger.debug(f"{self.role.name}: channel released")

    def _establish(self):
        raise NotImplementedError

    def _create_ledger(self):
        raise NotImplementedError

    def _transfer(self):
        raise NotImplementedError

    def _teardown(self):
        raise NotImplementedError

    # ========== Channel I/O ==========

    def _elapsed(self) -> float:
        return (now_ns() - self._start_ns) / NANOSECONDS

    def _destination(self) -> Address:
        if self._peer_address is not None:
            return self._peer_address
        return self.config.remote_address

    def _transmit(self, segment: Segment):
        """Encode and send one segment to the peer."""
        frame = segment.serialize(self.config.max_payload)
        self._channel.send(frame, self._destination())
        self.stats.segments_sent += 1
        logger.info(segment.trace_line("snd", self._elapsed()))

    def _check_inactivity(self):
        silence = time.monotonic() - self._last_heard
        if silence > self.config.inactivity_ceiling:
            raise InactivityCeilingExceeded(
                f"Nothing heard from the peer for {silence:.1f}s"
            )

    def _receive(self, timeout: float) -> ReceiveResult:
        """
        One bounded receive attempt.

        Raises:
            InactivityCeilingExceeded: If the peer has been silent too long
        """
        self._check_inactivity()

        received = self._channel.receive(timeout)
        if received is None:
            self._check_inactivity()
            return ReceiveResult(error=ReceiveError.TIMEOUT)

        data, address = received
        if self._peer_address is not None and address != self._peer_address:
            logger.debug(f"Ignoring datagram from {address}")
            return ReceiveResult(address=address, error=ReceiveError.FOREIGN)

        try:
            segment = Segment.parse(data)
        except CorruptSegment as e:
            self.stats.checksum_failures += 1
            logger.warning(f"Discarding corrupt segment: {e}")
            return ReceiveResult(address=address, error=ReceiveError.CORRUPT)

        self._last_heard = time.monotonic()
        self.stats.segments_received += 1
        logger.info(segment.trace_line("rcv", self._elapsed()))
        return ReceiveResult(segment=segment, address=address, received_at=now_ns())

    def _exchange(self, segment: Segment, matches: Callable[[Segment], bool],
                  description: str, refresh_timestamp: bool = True,
                  resend_on: Optional[Callable[[Segment], bool]] = None,
                  answer: Optional[Callable[[Segment], bool]] = None) -> ReceiveResult:
        """
        Send a control segment until the expected answer arrives.

        Args:
            segment: Segment to (re)send
            matches: Predicate recognizing the answer
            description: What is awaited, for messages
            refresh_timestamp: Stamp each copy with the current clock
            resend_on: Predicate for segments that call for an immediate resend
            answer: Handles a segment on the spot (without resending
                `segment`); returns True if it did

        Returns:
            The receive result holding the answer

        Raises:
            RetryBudgetExhausted: If max_retries copies went unanswered
        """
        for attempt in range(self.config.max_retries):
            if refresh_timestamp:
                segment.timestamp = now_ns()
            if attempt:
                self.stats.retransmissions += 1
                logger.debug(f"Resending {segment} (attempt {attempt + 1})")
            self._transmit(segment)

            deadline = time.monotonic() + self._estimator.timeout
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break

                result = self._receive(remaining)
                if not result.ok:
                    continue

                if matches(result.segment):
                    return result
                if resend_on is not None and resend_on(result.segment):
                    break
                if answer is not None and answer(result.segment):
                    continue
                logger.debug(f"Ignoring {result.segment} while waiting for {description}")

        raise RetryBudgetExhausted(
            f"No {description} after {self.config.max_retries} attempts"
        )

    def get_statistics(self) -> dict:
        """Get connection statistics."""
        return {
            "role": self.role.name,
            "state": self.state.name,
            "timeout": self._estimator.timeout,
            "ertt": self._estimator.ertt,
            **vars(self.stats),
        }

    def __str__(self) -> str:
        return f"{type(self).__name__}(peer={self._peer_address}, state={self.state.name})"


class InitiatorConnection(Connection):
    """
    The sending end: opens the connection, sends the source, closes.
    """

    role = Role.INITIATOR

    def __init__(self, config: ConnectionConfig, source: ByteSource,
                 channel: Optional[DatagramChannel] = None):
        if config.remote_address is None:
            raise ValueError("An initiator needs a remote address")
        super().__init__(config, channel)

        self._source = source
        self._window = WindowController(config.window_capacity, config.initial_window)
        self._handshake_ack: Optional[Segment] = None
        self._fin_seq = FIRST_DATA_SEQ

    @property
    def window(self) -> WindowController:
        return self._window

    # ========== Handshake ==========

    def _establish(self):
        """
        Three-way handshake, active side.

        SYN goes out every timeout until a SYN-ACK acknowledging it arrives.
        The final ACK is never acknowledged itself, so it is sent several
        times to survive a loss.
        """
        self._state_machine.transition("active_open")

        syn = create_syn_segment(now_ns())
        try:
            result = self._exchange(
                syn,
                matches=lambda s: s.is_syn and s.is_ack and s.ack_num == syn.seq_num + 1,
                description="SYN-ACK",
            )
        except RetryBudgetExhausted as e:
            raise RetryBudgetExhausted(f"Connection refused: {e}") from e

        syn_ack = result.segment
        self._peer_address = result.address
        if syn_ack.timestamp == syn.timestamp:
            self._estimator.first_sample((result.received_at - syn_ack.timestamp) / NANOSECONDS)
            logger.debug(f"Handshake RTT sample, {self._estimator}")
        else:
            # Answers an earlier copy of the SYN: the round trip is ambiguous
            logger.debug("SYN-ACK echoes a superseded SYN, no handshake RTT sample")

        self._handshake_ack = create_ack_segment(
            FIRST_DATA_SEQ, syn_ack.seq_num + 1, syn_ack.timestamp
        )
        for _ in range(self.config.redundant_acks):
            self._transmit(self._handshake_ack)

        self._state_machine.transition("recv_syn_ack")

    def _answer_syn_ack(self, segment: Segment) -> bool:
        """Re-send the handshake ACK if segment is a SYN-ACK (every copy of ours was lost)."""
        if not (segment.is_syn and segment.is_ack):
            return False
        self._transmit(self._handshake_ack)
        return True

    def _create_ledger(self) -> SenderLedger:
        return SenderLedger(self._source, self.config.max_payload)

    # ========== Data Transfer ==========

    def _transfer(self):
        """
        Send the whole source in rounds.

        Each round fills a fresh window with up to window.size new chunks,
        sends them and waits until every one is acknowledged. The outcome of
        the round then grows or shrinks the window for the next one.
        """
        next_seq = FIRST_DATA_SEQ
        final_round = False

        while not final_round:
            send_window = SendWindow()
            while len(send_window) < self._window.size:
                chunk = self._ledger.next_chunk()
                if chunk is None:
                    final_round = True
                    break
                send_window.add(create_data_segment(next_seq, chunk, 0))
                next_seq += len(chunk)

            if not len(send_window):
                break

            logger.debug(f"Round of {len(send_window)} segments, {self._window}")
            for entry in send_window:
                self._send_entry(entry)

            had_resend = self._await_acks(send_window)
            self._window.on_round_complete(had_resend)

        self._fin_seq = next_seq
        logger.debug(f"Final round sent, FIN at {self._fin_seq}")

    def _send_entry(self, entry: InFlightSegment):
        sent_at = now_ns()
        entry.segment.timestamp = sent_at
        entry.sent_at = sent_at
        self._transmit(entry.segment)

    def _resend_entry(self, entry: InFlightSegment):
        """
        Raises:
            RetryBudgetExhausted: If the segment was already resent max_retries times
        """
        if entry.retries >= self.config.max_retries:
            raise RetryBudgetExhausted(
                f"Segment seq={entry.seq_num} unacknowledged after {entry.retries} resends"
            )
        sent_at = now_ns()
        entry.segment.timestamp = sent_at
        entry.mark_resent(sent_at)
        self.stats.retransmissions += 1
        self._transmit(entry.segment)

    def _await_acks(self, send_window: SendWindow) -> bool:
        """
        Collect the acknowledgments of one round.

        Returns:
            True if any segment had to be resent
        """
        had_resend = False
        dup_counts: Dict[int, int] = {}

        while len(send_window):
            for entry in send_window.timed_out(self._estimator, now_ns()):
                logger.debug(f"Timeout for seq={entry.seq_num}")
                self._resend_entry(entry)
                had_resend = True

            result = self._receive(self._estimator.timeout)
            if not result.ok:
                continue

            segment = result.segment
            if self._answer_syn_ack(segment):
                continue

            try:
                ack_num = self._check_ack(segment, send_window)
            except ProtocolViolation as e:
                logger.debug(f"Dropping segment: {e}")
                continue

            if self._ledger.is_already_acked(ack_num):
                self.stats.duplicate_acks += 1
                if ack_num != send_window.base_seq:
                    continue

                dup_counts[ack_num] = dup_counts.get(ack_num, 0) + 1
                if dup_counts[ack_num] >= self.config.duplicate_ack_threshold:
                    dup_counts[ack_num] = 0
                    logger.debug(f"Duplicate ACKs for {ack_num}, resending {send_window}")
                    for entry in send_window:
                        self._resend_entry(entry)
                    had_resend = True
                continue

            answered = send_window.entry_ending_at(ack_num)
            for entry in send_window.acknowledge(ack_num):
                self._ledger.record_ack(entry.end_seq)
                self.stats.bytes_transferred += len(entry.segment.data)

            self._estimator.update(result.received_at, segment.timestamp,
                                   retransmitted=answered.resent)

        return had_resend

    def _check_ack(self, segment: Segment, send_window: SendWindow) -> int:
        """
        Validate an acknowledgment received during data transfer.

        Returns:
            Its acknowledgment number

        Raises:
            ProtocolViolation: If it is not a pure ACK, or acknowledges a
                boundary that was neither acknowledged before nor is in flight
        """
        if not segment.is_pure_ack:
            raise ProtocolViolation(f"Unexpected {segment} during data transfer")

        ack_num = segment.ack_num
        if not self._ledger.is_already_acked(ack_num) and not send_window.covers(ack_num):
            raise ProtocolViolation(f"ACK {ack_num} matches no segment in flight")
        return ack_num

    # ========== Teardown ==========

    def _teardown(self):
        """
        Send FIN until the FIN-ACK arrives, then ACK it (several times, as
        nothing acknowledges that last ACK).
        """
        self._state_machine.transition("close")

        fin = create_fin_segment(self._fin_seq, now_ns())
        result = self._exchange(
            fin,
            matches=lambda s: s.is_fin and s.is_ack and s.ack_num == fin.seq_num + 1,
            description="FIN-ACK",
            answer=self._answer_syn_ack,
        )

        fin_ack = result.segment
        final_ack = create_ack_segment(fin.seq_num + 1, fin_ack.seq_num + 1, fin_ack.timestamp)
        for _ in range(self.config.redundant_acks):
            self._transmit(final_ack)

        self._state_machine.transition("recv_fin_ack")
        logger.info("Initiator closed the connection")


class ResponderConnection(Connection):
    """
    The receiving end: waits for a SYN, collects the data, answers the FIN.
    """

    role = Role.RESPONDER

    def __init__(self, config: ConnectionConfig, sink: ByteSink,
                 channel: Optional[DatagramChannel] = None):
        super().__init__(config, channel)

        self._sink = sink
        self._buffer = ReceiveBuffer(config.window_capacity)
        self._pending: List[Segment] = []
        self._fin: Optional[Segment] = None

    @property
    def buffer(self) -> ReceiveBuffer:
        return self._buffer

    # ========== Handshake ==========

    def _establish(self):
        """
        Three-way handshake, passive side.

        The SYN-ACK is resent on timeout, and right away when the initiator
        repeats its SYN (it has not seen our answer); it always echoes the
        timestamp of the latest SYN. Besides the ACK, the initiator's first
        data segment or, for an empty transfer, its FIN completes the
        handshake.
        """
        self._state_machine.transition("passive_open")
        logger.info(f"Waiting for incoming connection on {self._channel.local_address}")

        syn_result = self._await_syn()
        syn = syn_result.segment
        self._peer_address = syn_result.address

        syn_ack = create_syn_ack_segment(syn.seq_num + 1, syn.timestamp)
        first_seq = syn.seq_num + 1
        expected_ack = syn_ack.seq_num + 1

        def completes_handshake(s: Segment) -> bool:
            return (not s.is_syn and (s.is_ack or s.is_fin)
                    and s.seq_num == first_seq and s.ack_num == expected_ack)

        def repeated_syn(s: Segment) -> bool:
            if not (s.is_syn and not s.is_ack):
                return False
            syn_ack.timestamp = s.timestamp
            return True

        result = self._exchange(
            syn_ack,
            matches=completes_handshake,
            description="handshake ACK",
            refresh_timestamp=False,
            resend_on=repeated_syn,
        )

        if result.segment.data or result.segment.is_fin:
            # The initiator's data or FIN beat its ACKs here; keep it
            self._pending.append(result.segment)

        self._state_machine.transition("recv_ack")

    def _await_syn(self) -> ReceiveResult:
        """
        Wait for a SYN from anyone.

        Bounded by the inactivity ceiling; datagrams other than a SYN count
        against the retry budget.
        """
        strays = 0
        while True:
            result = self._receive(self.config.poll_interval)
            if not result.ok:
                continue

            segment = result.segment
            if segment.is_syn and not segment.is_ack:
                return result

            strays += 1
            logger.debug(f"Expected SYN, got {segment}")
            if strays >= self.config.max_retries:
                raise RetryBudgetExhausted(f"No SYN among {strays} segments received")

    def _create_ledger(self) -> ReceiverLedger:
        return ReceiverLedger(self._sink)

    # ========== Data Transfer ==========

    def _transfer(self):
        """
        Receive until a lone FIN sits at the next expected byte.
        """
        pending, self._pending = self._pending, []
        for segment in pending:
            self._accept(segment)

        while not self._drain():
            result = self._receive(self.config.poll_interval)
            if result.ok:
                self._accept(result.segment)

        logger.info(f"Received FIN at {self._fin.seq_num}, closing")

    def _accept(self, segment: Segment):
        """Sort an incoming segment: ignore, re-acknowledge, or buffer it."""
        if segment.is_syn:
            logger.debug(f"Ignoring stale {segment}")
            return

        if segment.is_pure_ack:
            # Lingering copy of the initiator's handshake ACK
            return

        if not segment.data and not segment.is_fin:
            logger.debug(f"Ignoring empty {segment}")
            return

        if len(segment.data) > self.config.max_payload:
            logger.warning(f"Dropping oversized {segment}")
            return

        next_expected = self._ledger.next_expected_byte()

        if segment.data and self._ledger.is_already_received(segment.seq_num):
            self.stats.duplicate_segments += 1
            logger.debug(f"Segment seq={segment.seq_num} already received")
            self._send_ack(segment.timestamp)
            return

        if segment.seq_num < next_expected:
            logger.debug(f"Ignoring stale {segment}")
            return

        if segment.data and segment.seq_num == next_expected:
            self._deliver(segment)
            return

        outcome, evicted = self._buffer.insert(segment)
        if outcome is InsertResult.DUPLICATE:
            self.stats.duplicate_segments += 1
            logger.debug(f"Segment seq={segment.seq_num} already buffered")
            self._send_ack(segment.timestamp)
            return
        if outcome is InsertResult.EVICTED:
            self.stats.out_of_order_discards += 1
            logger.debug(f"Buffer full, evicted seq={evicted.seq_num} for seq={segment.seq_num}")
        elif outcome is InsertResult.DROPPED:
            self.stats.out_of_order_discards += 1
            logger.debug(f"Buffer full, dropped seq={segment.seq_num}")

        if segment.seq_num != next_expected:
            # Ahead of a gap: repeat the cumulative ACK so the sender notices
            self._send_ack(segment.timestamp)

    def _deliver(self, segment: Segment):
        self._ledger.deliver(segment.seq_num, len(segment.data), segment.data)
        self.stats.bytes_transferred += len(segment.data)
        self._send_ack(segment.timestamp)

    def _drain(self) -> bool:
        """
        Deliver the buffer's head for as long as it is contiguous.

        Returns:
            True if what is left is a lone FIN at the next expected byte
        """
        while self._buffer.head is not None:
            head = self._buffer.head
            next_expected = self._ledger.next_expected_byte()

            if head.seq_num < next_expected:
                self._buffer.pop()
                continue
            if head.is_fin or head.seq_num != next_expected:
                break

            self._deliver(self._buffer.pop())

        head = self._buffer.head
        if (len(self._buffer) == 1 and head.is_fin and not head.data
                and head.seq_num == self._ledger.next_expected_byte()):
            self._fin = self._buffer.pop()
            return True
        return False

    def _send_ack(self, echo_timestamp: int):
        """Cumulative ACK for everything delivered so far."""
        ack = create_ack_segment(
            FIRST_DATA_SEQ, self._ledger.next_expected_byte(), echo_timestamp
        )
        self._transmit(ack)

    # ========== Teardown ==========

    def _teardown(self):
        """
        Answer the FIN with a FIN-ACK until the initiator's final ACK arrives.

        A short fixed timeout replaces the adaptive one here.
        """
        self._state_machine.transition("recv_fin")
        self._estimator.force_timeout(self.config.fin_timeout)

        fin = self._fin
        fin_ack = create_fin_ack_segment(fin.seq_num + 1, fin.timestamp)
        self._exchange(
            fin_ack,
            matches=lambda s: (s.is_pure_ack and s.seq_num == fin.seq_num + 1
                               and s.ack_num == fin_ack.seq_num + 1),
            description="final ACK",
            refresh_timestamp=False,
            resend_on=lambda s: s.is_fin and not s.is_ack,
        )

        self._state_machine.transition("recv_ack")
        logger.info("Responder closed the connection")
