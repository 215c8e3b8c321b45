#!/usr/bin/env python3
"""
Network Simulator for rtcp Testing

This module provides a simulated datagram network for running rtcp
connections without real sockets. It allows you to:

1. Create in-process endpoints that behave like bound UDP sockets
2. Simulate packet loss, delay, reordering, duplication and corruption
3. Drop chosen packets deterministically to script a scenario
4. Capture every datagram sent, decoded as a segment

Each endpoint is a DatagramChannel, so a connection can be handed one in
place of a UDPChannel:

    net = NetworkSimulator(seed=7)
    net.loss_rate = 0.1
    sender = net.endpoint(("10.0.0.1", 5000))
    receiver = net.endpoint(("10.0.0.2", 6000))
"""

import heapq
import itertools
import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from rtcp.channel import Address, DatagramChannel
from rtcp.exceptions import CorruptSegment
from rtcp.segment import Segment

logger = logging.getLogger(__name__)

DropFilter = Callable[[bytes, Address, Address], bool]


@dataclass(order=True)
class ScheduledPacket:
    """A packet scheduled for future delivery."""
    delivery_time: float
    order: int  # Breaks ties in send order
    packet: bytes = field(compare=False)
    src: Address = field(compare=False)
    dst: Address = field(compare=False)


@dataclass
class NetworkStats:
    """Statistics about network behavior."""
    packets_sent: int = 0
    packets_delivered: int = 0
    packets_dropped: int = 0
    packets_reordered: int = 0
    packets_duplicated: int = 0
    packets_corrupted: int = 0
    bytes_sent: int = 0
    bytes_delivered: int = 0

    def __str__(self) -> str:
        loss_rate = self.packets_dropped / max(1, self.packets_sent) * 100
        return (
            f"Network Stats:\n"
            f"  Packets sent: {self.packets_sent}\n"
            f"  Packets delivered: {self.packets_delivered}\n"
            f"  Packets dropped: {self.packets_dropped} ({loss_rate:.1f}%)\n"
            f"  Packets reordered: {self.packets_reordered}\n"
            f"  Packets duplicated: {self.packets_duplicated}\n"
            f"  Packets corrupted: {self.packets_corrupted}\n"
            f"  Bytes sent: {self.bytes_sent}\n"
            f"  Bytes delivered: {self.bytes_delivered}"
        )


class SimulatedEndpoint(DatagramChannel):
    """
    One address on the simulated network.

    Packets addressed to it wait in a heap ordered by delivery time;
    receive() hands out the earliest one that is due.
    """

    def __init__(self, network: "NetworkSimulator", address: Address):
        self._network = network
        self._address = address
        self._queue: List[ScheduledPacket] = []  # heap
        self._ready = threading.Condition()
        self._closed = False

    @property
    def local_address(self) -> Address:
        return self._address

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, data: bytes, address: Address):
        if self._closed:
            raise OSError(f"Endpoint {self._address} is closed")
        self._network.send(bytes(data), self._address, address)

    def receive(self, timeout: float) -> Optional[Tuple[bytes, Address]]:
        deadline = time.monotonic() + max(timeout, 0.0)
        with self._ready:
            while True:
                now = time.monotonic()
                if self._queue and self._queue[0].delivery_time <= now:
                    scheduled = heapq.heappop(self._queue)
                    break

                remaining = deadline - now
                if remaining <= 0 or self._closed:
                    return None

                if self._queue:
                    remaining = min(remaining, self._queue[0].delivery_time - now)
                self._ready.wait(remaining)

        # The network lock is always taken before an endpoint's, never after
        self._network._record_delivery(scheduled)
        return scheduled.packet, scheduled.src

    def close(self):
        with self._ready:
            if self._closed:
                return
            self._closed = True
            self._queue.clear()
            self._ready.notify_all()
        self._network._release(self._address)

    def _enqueue(self, scheduled: ScheduledPacket) -> bool:
        with self._ready:
            if self._closed:
                return False
            heapq.heappush(self._queue, scheduled)
            self._ready.notify_all()
            return True

    def __repr__(self) -> str:
        return f"SimulatedEndpoint({self._address[0]}:{self._address[1]})"


class NetworkSimulator:
    """
    A network simulator that models an unreliable datagram service.

    Features:
    - Configurable latency (base + jitter)
    - Packet loss (random or burst)
    - Deterministic loss through a drop filter
    - Packet reordering
    - Packet duplication
    - Packet corruption (one flipped byte)
    - Multiple endpoints

    All randomness comes from one seeded generator, so a scenario is
    repeatable for a given seed (up to thread scheduling).
    """

    def __init__(self, seed: Optional[int] = None):
        self._endpoints: Dict[Address, SimulatedEndpoint] = {}
        self._lock = threading.Lock()
        self._random = random.Random(seed)
        self._order = itertools.count()
        self._stats = NetworkStats()
        self._captures: List["PacketCapture"] = []

        # Network characteristics
        self.latency = 0.0         # Base one-way latency (seconds)
        self.jitter = 0.0          # +/- latency variation
        self.loss_rate = 0.0       # Fraction of packets dropped
        self.reorder_rate = 0.0    # Fraction delayed past their successors
        self.duplicate_rate = 0.0  # Fraction delivered twice
        self.corrupt_rate = 0.0    # Fraction with one byte flipped

        # Burst loss simulation
        self.burst_loss_enabled = False
        self.burst_loss_probability = 0.01  # Probability of entering burst
        self.burst_loss_length = 3  # Average packets lost in burst
        self._in_burst = False
        self._burst_remaining = 0

        # Returns True for packets that must be dropped
        self.drop_filter: Optional[DropFilter] = None

    def endpoint(self, address: Address) -> SimulatedEndpoint:
        """
        Create an endpoint bound to address.

        Raises:
            OSError: If the address is already in use
        """
        with self._lock:
            if address in self._endpoints:
                raise OSError(f"Address already in use: {address}")
            endpoint = SimulatedEndpoint(self, address)
            self._endpoints[address] = endpoint
            return endpoint

    def attach_capture(self, capture: "PacketCapture"):
        """Record every packet sent from now on."""
        with self._lock:
            self._captures.append(capture)

    def _release(self, address: Address):
        with self._lock:
            self._endpoints.pop(address, None)

    def send(self, packet: bytes, src: Address, dst: Address):
        """
        Send a packet through the simulated network.

        The packet may be delayed, dropped, reordered, duplicated or
        corrupted based on the network characteristics.
        """
        with self._lock:
            self._stats.packets_sent += 1
            self._stats.bytes_sent += len(packet)

            dropped = self._should_drop(packet, src, dst)
            for capture in self._captures:
                capture.capture(packet, src, dst, dropped)

            if dropped:
                self._stats.packets_dropped += 1
                logger.debug(f"Dropped: {src} -> {dst}")
                return

            destination = self._endpoints.get(dst)
            if destination is None:
                self._stats.packets_dropped += 1
                logger.debug(f"No endpoint for {dst[0]}:{dst[1]}")
                return

            if self._random.random() < self.corrupt_rate:
                self._stats.packets_corrupted += 1
                packet = self._corrupt(packet)

            now = time.monotonic()
            delay = self._calculate_delay()

            # Check for duplication
            if self._random.random() < self.duplicate_rate:
                self._stats.packets_duplicated += 1
                self._schedule_packet(destination, packet, src, dst,
                                      now + self._calculate_delay())

            # Check for reordering (add extra delay)
            if self._random.random() < self.reorder_rate:
                self._stats.packets_reordered += 1
                delay += self._random.uniform(0.01, 0.05)  # Extra 10-50ms

            self._schedule_packet(destination, packet, src, dst, now + delay)

    def _should_drop(self, packet: bytes, src: Address, dst: Address) -> bool:
        """Determine if packet should be dropped."""
        if self.drop_filter is not None and self.drop_filter(packet, src, dst):
            return True

        # Burst loss
        if self.burst_loss_enabled:
            if self._in_burst:
                self._burst_remaining -= 1
                if self._burst_remaining <= 0:
                    self._in_burst = False
                return True
            elif self._random.random() < self.burst_loss_probability:
                self._in_burst = True
                self._burst_remaining = self._random.randint(1, self.burst_loss_length * 2)
                return True

        # Random loss
        return self._random.random() < self.loss_rate

    def _calculate_delay(self) -> float:
        """Calculate packet delay."""
        return max(0.0, self.latency + self._random.uniform(-self.jitter, self.jitter))

    def _corrupt(self, packet: bytes) -> bytes:
        if not packet:
            return packet
        corrupted = bytearray(packet)
        position = self._random.randrange(len(corrupted))
        corrupted[position] ^= 0xFF
        return bytes(corrupted)

    def _schedule_packet(self, destination: SimulatedEndpoint, packet: bytes,
                         src: Address, dst: Address, delivery_time: float):
        """Schedule a packet for delivery."""
        scheduled = ScheduledPacket(
            delivery_time=delivery_time,
            order=next(self._order),
            packet=packet,
            src=src,
            dst=dst
        )
        if not destination._enqueue(scheduled):
            self._stats.packets_dropped += 1

    def _record_delivery(self, scheduled: ScheduledPacket):
        with self._lock:
            self._stats.packets_delivered += 1
            self._stats.bytes_delivered += len(scheduled.packet)

    def get_stats(self) -> NetworkStats:
        """Get network statistics."""
        return self._stats

    def reset_stats(self):
        """Reset network statistics."""
        with self._lock:
            self._stats = NetworkStats()

    def configure_lossy(self, loss_rate: float = 0.05):
        """Configure for a lossy network (e.g., wireless)."""
        self.loss_rate = loss_rate
        self.reorder_rate = 0.02
        self.jitter = 0.002
        logger.info(f"Configured lossy network: {loss_rate*100}% loss")

    def configure_lan(self):
        """Configure for LAN characteristics."""
        self.latency = 0.001
        self.jitter = 0.0005
        self.loss_rate = 0.0
        logger.info("Configured LAN: 1ms latency")


@dataclass
class CapturedPacket:
    """One datagram seen by a PacketCapture."""
    timestamp: float
    src: Address
    dst: Address
    size: int
    dropped: bool
    raw: bytes
    segment: Optional[Segment]  # None if it does not decode


class PacketCapture:
    """
    Capture and analyze packets in the simulated network.

    Packets are recorded when sent, before the network decides their fate,
    so a capture shows every transmission including the ones later lost.
    """

    def __init__(self):
        self._packets: List[CapturedPacket] = []
        self._lock = threading.Lock()

    def capture(self, packet: bytes, src: Address, dst: Address, dropped: bool = False):
        """Capture a packet."""
        try:
            segment = Segment.parse(packet)
        except CorruptSegment:
            segment = None

        with self._lock:
            self._packets.append(CapturedPacket(
                timestamp=time.monotonic(),
                src=src,
                dst=dst,
                size=len(packet),
                dropped=dropped,
                raw=packet,
                segment=segment
            ))

    def get_packets(self) -> List[CapturedPacket]:
        """Get all captured packets."""
        with self._lock:
            return list(self._packets)

    def segments_from(self, src: Address) -> List[Segment]:
        """Decoded segments sent from src, in send order."""
        return [pkt.segment for pkt in self.get_packets()
                if pkt.src == src and pkt.segment is not None]

    def clear(self):
        """Clear captured packets."""
        with self._lock:
            self._packets.clear()

    def summary(self) -> str:
        """Generate a summary of captured packets."""
        with self._lock:
            if not self._packets:
                return "No packets captured"

            lines = [f"Captured {len(self._packets)} packets:"]
            start_time = self._packets[0].timestamp

            for i, pkt in enumerate(self._packets[:50]):  # Limit to 50
                rel_time = (pkt.timestamp - start_time) * 1000
                fate = " (dropped)" if pkt.dropped else ""
                lines.append(
                    f"  {i:4d} [{rel_time:8.1f}ms] "
                    f"{pkt.src[0]}:{pkt.src[1]} -> {pkt.dst[0]}:{pkt.dst[1]} "
                    f"{pkt.segment or f'<{pkt.size} bytes>'}{fate}"
                )

            if len(self._packets) > 50:
                lines.append(f"  ... and {len(self._packets) - 50} more")

            return '\n'.join(lines)
