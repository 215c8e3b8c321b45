"""
rtcp - reliable, TCP-like file transfer over UDP.

This package moves a byte stream from one host to another over an unreliable
datagram service, with a three-way handshake, windowed transmission, adaptive
retransmission timeouts, duplicate-ACK fast retransmit, receiver-side
reordering and a FIN teardown.
"""

from .segment import Segment, SegmentFlags
from .states import ConnectionState, Role
from .buffer import SendWindow, ReceiveBuffer
from .timer import TimeoutEstimator
from .congestion import WindowController
from .ledger import SenderLedger, ReceiverLedger
from .files import ByteSource, ByteSink, BytesSource, MemorySink, FileSource, FileSink
from .channel import DatagramChannel, UDPChannel
from .connection import (
    ConnectionConfig, ConnectionStatistics, InitiatorConnection, ResponderConnection
)
from .exceptions import TransportError

__version__ = "1.0.0"

__all__ = [
    "Segment",
    "SegmentFlags",
    "ConnectionState",
    "Role",
    "SendWindow",
    "ReceiveBuffer",
    "TimeoutEstimator",
    "WindowController",
    "SenderLedger",
    "ReceiverLedger",
    "ByteSource",
    "ByteSink",
    "BytesSource",
    "MemorySink",
    "FileSource",
    "FileSink",
    "DatagramChannel",
    "UDPChannel",
    "ConnectionConfig",
    "ConnectionStatistics",
    "InitiatorConnection",
    "ResponderConnection",
    "TransportError",
]
