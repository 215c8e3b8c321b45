"""
Segment - encoding and decoding of the on-the-wire unit.

Every datagram exchanged by two rtcp endpoints carries exactly one segment:
a fixed 24-byte header followed by the payload bytes.

Header Format (network byte order):

     0                   1                   2                   3
     0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |                        Sequence Number                        |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |                     Acknowledgment Number                     |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |                                                               |
    +                           Timestamp                           +
    |                                                               |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |                  Payload Length                     |S|F|A|
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |          Reserved (0)         |           Checksum            |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |                             data                              |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+

The sequence number is the byte offset of the first payload byte (the SYN
uses 0 and data starts at 1). The timestamp is the sender's clock for a fresh
segment; an acknowledgment echoes the timestamp of the segment it answers, so
the original sender can sample the round-trip time without keeping state.

The checksum is the usual Internet checksum: one's complement of the one's
complement sum of every 16-bit word in the frame. A frame is intact when the
same sum taken over the received bytes, checksum included, folds to 0xFFFF.
"""

import struct
from dataclasses import dataclass, field
from enum import IntFlag

from .exceptions import CorruptSegment


class SegmentFlags(IntFlag):
    """
    Control flags, packed into the low three bits of the length field.

    - SYN: "Let's start a connection"
    - FIN: "I have nothing more to send"
    - ACK: "The acknowledgment number field is valid"
    """
    ACK = 0x1
    FIN = 0x2
    SYN = 0x4

    def __str__(self) -> str:
        names = []
        if self & SegmentFlags.SYN: names.append("SYN")
        if self & SegmentFlags.FIN: names.append("FIN")
        if self & SegmentFlags.ACK: names.append("ACK")
        return "|".join(names) if names else "NONE"


HEADER = struct.Struct("!IIqIHH")
HEADER_SIZE = HEADER.size  # 24

# Largest payload that still fits in one UDP datagram with our header
MAX_PAYLOAD = 65507 - HEADER_SIZE

FLAG_BITS = 3
FLAG_MASK = (1 << FLAG_BITS) - 1


def ones_complement_sum(data: bytes) -> int:
    """16-bit one's complement sum with end-around carry."""
    if len(data) % 2:
        data += b'\x00'

    total = 0
    for i in range(0, len(data), 2):
        total += (data[i] << 8) + data[i + 1]
        total = (total & 0xFFFF) + (total >> 16)
    return total


def compute_checksum(frame: bytes) -> int:
    """
    Compute the checksum of a frame.

    The checksum field (bytes 22-23) is treated as zero whatever it holds.
    """
    zeroed = frame[:22] + b'\x00\x00' + frame[HEADER_SIZE:]
    return ~ones_complement_sum(zeroed) & 0xFFFF


def is_valid_frame(frame: bytes) -> bool:
    """Check a received frame, transmitted checksum included."""
    if len(frame) < HEADER_SIZE:
        return False
    return ones_complement_sum(frame) == 0xFFFF


@dataclass
class Segment:
    """
    One protocol segment.

    The segment knows nothing about addresses; the datagram carrying it does.
    """

    seq_num: int
    ack_num: int
    flags: SegmentFlags

    timestamp: int = 0
    data: bytes = field(default_factory=bytes)
    checksum: int = 0  # filled in by parse()

    def __post_init__(self):
        if not 0 <= self.seq_num <= 0xFFFFFFFF:
            raise ValueError(f"Invalid sequence number: {self.seq_num}")
        if not 0 <= self.ack_num <= 0xFFFFFFFF:
            raise ValueError(f"Invalid acknowledgment number: {self.ack_num}")
        if not -(1 << 63) <= self.timestamp < (1 << 63):
            raise ValueError(f"Invalid timestamp: {self.timestamp}")
        self.flags = SegmentFlags(self.flags)

    @property
    def payload_length(self) -> int:
        return len(self.data)

    @property
    def end_seq(self) -> int:
        """Sequence number of the byte after the payload."""
        return self.seq_num + len(self.data)

    @property
    def is_syn(self) -> bool:
        return bool(self.flags & SegmentFlags.SYN)

    @property
    def is_fin(self) -> bool:
        return bool(self.flags & SegmentFlags.FIN)

    @property
    def is_ack(self) -> bool:
        return bool(self.flags & SegmentFlags.ACK)

    @property
    def is_pure_ack(self) -> bool:
        """An acknowledgment with no payload and no other flag."""
        return self.flags == SegmentFlags.ACK and not self.data

    def serialize(self, max_payload: int = MAX_PAYLOAD) -> bytes:
        """
        Encode the segment, computing its checksum.

        Args:
            max_payload: Negotiated payload cap

        Raises:
            ValueError: If the payload is larger than the cap
        """
        if len(self.data) > min(max_payload, MAX_PAYLOAD):
            raise ValueError(
                f"Payload of {len(self.data)} bytes exceeds maximum {max_payload}"
            )

        length_and_flags = (len(self.data) << FLAG_BITS) | int(self.flags)
        header = HEADER.pack(
            self.seq_num,
            self.ack_num,
            self.timestamp,
            length_and_flags,
            0,  # Reserved
            0   # Checksum placeholder
        )
        frame = header + self.data
        checksum = compute_checksum(frame)
        return frame[:22] + struct.pack("!H", checksum) + self.data

    @classmethod
    def parse(cls, frame: bytes) -> "Segment":
        """
        Decode a frame received from the wire.

        Raises:
            CorruptSegment: If the frame is truncated, the declared length
                does not match, or the checksum does not validate. No
                segment is produced in that case.
        """
        if len(frame) < HEADER_SIZE:
            raise CorruptSegment(f"Frame too short: {len(frame)} bytes")

        if not is_valid_frame(frame):
            raise CorruptSegment("Checksum mismatch")

        (
            seq_num,
            ack_num,
            timestamp,
            length_and_flags,
            _reserved,
            checksum
        ) = HEADER.unpack_from(frame)

        length = length_and_flags >> FLAG_BITS
        if length != len(frame) - HEADER_SIZE:
            raise CorruptSegment(
                f"Declared length {length} does not match "
                f"{len(frame) - HEADER_SIZE} payload bytes"
            )

        return cls(
            seq_num=seq_num,
            ack_num=ack_num,
            flags=SegmentFlags(length_and_flags & FLAG_MASK),
            timestamp=timestamp,
            data=bytes(frame[HEADER_SIZE:]),
            checksum=checksum
        )

    def trace_line(self, direction: str, elapsed: float) -> str:
        """
        One line of the per-segment trace.

        Format: <snd|rcv> <seconds> <S> <A> <F> <D> <seq> <bytes> <ack>
        """
        marks = " ".join((
            "S" if self.is_syn else "-",
            "A" if self.is_ack else "-",
            "F" if self.is_fin else "-",
            "D" if self.data else "-",
        ))
        return (
            f"{direction} {elapsed:.3f} {marks} "
            f"{self.seq_num} {len(self.data)} {self.ack_num}"
        )

    def __str__(self) -> str:
        return (
            f"[{self.flags}] seq={self.seq_num} ack={self.ack_num} "
            f"len={len(self.data)}"
        )


# Convenience functions for the segment kinds the engine exchanges

def create_syn_segment(timestamp: int) -> Segment:
    """SYN opening the connection; it consumes sequence number 0."""
    return Segment(seq_num=0, ack_num=0, flags=SegmentFlags.SYN,
                   timestamp=timestamp)


def create_syn_ack_segment(ack_num: int, timestamp: int) -> Segment:
    """SYN-ACK answering a SYN; timestamp echoes the SYN's."""
    return Segment(seq_num=0, ack_num=ack_num,
                   flags=SegmentFlags.SYN | SegmentFlags.ACK,
                   timestamp=timestamp)


def create_ack_segment(seq_num: int, ack_num: int, timestamp: int) -> Segment:
    """Pure acknowledgment."""
    return Segment(seq_num=seq_num, ack_num=ack_num, flags=SegmentFlags.ACK,
                   timestamp=timestamp)


def create_data_segment(seq_num: int, data: bytes, timestamp: int) -> Segment:
    """Data segment. The ACK bit is always on once the connection is up."""
    return Segment(seq_num=seq_num, ack_num=1, flags=SegmentFlags.ACK,
                   timestamp=timestamp, data=data)


def create_fin_segment(seq_num: int, timestamp: int) -> Segment:
    """FIN sent by the initiator at the end of its data."""
    return Segment(seq_num=seq_num, ack_num=1, flags=SegmentFlags.FIN,
                   timestamp=timestamp)


def create_fin_ack_segment(ack_num: int, timestamp: int) -> Segment:
    """FIN-ACK sent by the responder; timestamp echoes the FIN's."""
    return Segment(seq_num=1, ack_num=ack_num,
                   flags=SegmentFlags.FIN | SegmentFlags.ACK,
                   timestamp=timestamp)
