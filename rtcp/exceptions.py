"""
Transport errors.

Only the fatal ones ever leave a Connection's run loop: a retry budget or the
inactivity ceiling running out, and I/O failures of the byte source or sink.
CorruptSegment and ProtocolViolation are raised close to the wire and handled
on the spot as if the datagram had been lost.
"""


class TransportError(Exception):
    """Base class for every error raised by this package."""


class CorruptSegment(TransportError, ValueError):
    """A frame failed checksum validation or is malformed."""


class ProtocolViolation(TransportError):
    """A segment does not match the transition the state machine expects."""


class RetryBudgetExhausted(TransportError):
    """A segment was resent more than max_retries times without an answer."""


class InactivityCeilingExceeded(TransportError):
    """Nothing usable was heard from the peer for too long."""


class SourceIOError(TransportError):
    """Reading from the byte source failed."""


class SinkIOError(TransportError):
    """Writing to the byte sink failed."""
