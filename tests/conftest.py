"""
Shared fixtures.

Engine tests either drive one end against a ScriptedChannel, whose peer is a
plain Python callable, or run both ends on two threads over the simulator.
"""

import threading
import time
from collections import deque
from typing import Callable, List, Optional

import pytest

from rtcp.channel import DatagramChannel
from rtcp.connection import ConnectionConfig, InitiatorConnection, ResponderConnection
from rtcp.files import BytesSource, MemorySink
from rtcp.segment import (
    Segment, create_ack_segment, create_fin_ack_segment, create_syn_ack_segment
)
from simulator.network import NetworkSimulator, PacketCapture


LOCAL = ("10.0.0.1", 5000)
PEER = ("10.0.0.2", 6000)


class ScriptedChannel(DatagramChannel):
    """
    In-memory channel talking to a scripted peer.

    Every segment sent is decoded, recorded, and handed to `script`, whose
    return value (segments or raw frames) is queued for receive().
    """

    def __init__(self, script: Optional[Callable] = None, local=LOCAL, peer=PEER):
        self.script = script
        self.peer = peer
        self._local = local
        self.inbox = deque()
        self.sent: List[Segment] = []
        self.closed = False

    @property
    def local_address(self):
        return self._local

    def deliver(self, item, source=None):
        """Queue a segment or raw frame as if it had arrived from source."""
        frame = item.serialize() if isinstance(item, Segment) else item
        self.inbox.append((frame, source or self.peer))

    def send(self, data, address):
        segment = Segment.parse(data)
        self.sent.append(segment)
        if self.script is not None:
            for reply in self.script(segment) or ():
                self.deliver(reply)

    def receive(self, timeout):
        if self.inbox:
            return self.inbox.popleft()
        time.sleep(min(timeout, 0.005))
        return None

    def close(self):
        self.closed = True

    def sent_matching(self, predicate) -> List[Segment]:
        return [segment for segment in self.sent if predicate(segment)]


class AckingPeer:
    """Scripted responder that answers every segment the way a correct one would."""

    def __init__(self):
        self.received = bytearray()
        self.expected = 1

    def __call__(self, segment: Segment):
        if segment.is_syn:
            return [create_syn_ack_segment(segment.seq_num + 1, segment.timestamp)]
        if segment.is_fin:
            return [create_fin_ack_segment(segment.seq_num + 1, segment.timestamp)]
        if segment.data:
            if segment.seq_num == self.expected:
                self.received += segment.data
                self.expected += len(segment.data)
            return [create_ack_segment(1, self.expected, segment.timestamp)]
        return []


@pytest.fixture
def make_channel():
    return ScriptedChannel


@pytest.fixture
def acking_peer():
    return AckingPeer()


@pytest.fixture
def initiator_config():
    """Initiator settings that keep scripted runs fast."""
    return ConnectionConfig(
        local_port=LOCAL[1],
        remote_address=PEER,
        max_payload=100,
        window_capacity=4,
        initial_timeout=0.5,
        inactivity_ceiling=5.0,
    )


@pytest.fixture
def responder_config():
    return ConnectionConfig(
        local_port=PEER[1],
        max_payload=100,
        window_capacity=4,
        initial_timeout=0.2,
        inactivity_ceiling=5.0,
    )


@pytest.fixture
def network():
    return NetworkSimulator(seed=42)


@pytest.fixture
def run_transfer(network):
    """
    Run a complete transfer over the simulator.

    Returns a function (data, **config_overrides) -> dict with both
    connections, their results, the delivered bytes and a capture.
    """

    def run(data: bytes, **overrides) -> dict:
        settings = dict(max_payload=100, window_capacity=4,
                        initial_timeout=0.5, inactivity_ceiling=10.0)
        settings.update(overrides)

        capture = PacketCapture()
        network.attach_capture(capture)

        sink = MemorySink()
        responder = ResponderConnection(
            ConnectionConfig(local_port=PEER[1], **settings),
            sink,
            network.endpoint(PEER),
        )
        initiator = InitiatorConnection(
            ConnectionConfig(local_port=LOCAL[1], remote_address=PEER, **settings),
            BytesSource(data, settings["max_payload"]),
            network.endpoint(LOCAL),
        )

        results = {}
        thread = threading.Thread(
            target=lambda: results.update(responder_ok=responder.run()),
            daemon=True,
        )
        thread.start()
        results["initiator_ok"] = initiator.run()
        thread.join(timeout=30)
        assert not thread.is_alive(), "responder did not finish"

        results.update(
            initiator=initiator,
            responder=responder,
            received=sink.getvalue(),
            capture=capture,
        )
        return results

    return run
