"""
Tests for the network simulator.
"""

import pytest
from rtcp.segment import create_data_segment
from simulator.network import NetworkSimulator, PacketCapture

A = ("10.0.0.1", 5000)
B = ("10.0.0.2", 6000)


class TestSimulatedEndpoint:
    """Test endpoints as datagram channels."""

    def test_delivery(self, network):
        a, b = network.endpoint(A), network.endpoint(B)
        a.send(b"hello", B)

        assert b.receive(timeout=0.5) == (b"hello", A)
        assert b.receive(timeout=0.01) is None

    def test_address_in_use(self, network):
        network.endpoint(A)
        with pytest.raises(OSError):
            network.endpoint(A)

    def test_close_releases_address(self, network):
        network.endpoint(A).close()
        network.endpoint(A)

    def test_unknown_destination_is_dropped(self, network):
        network.endpoint(A).send(b"lost", B)
        assert network.get_stats().packets_dropped == 1

    def test_latency(self, network):
        network.latency = 0.05
        a, b = network.endpoint(A), network.endpoint(B)
        a.send(b"slow", B)

        assert b.receive(timeout=0.01) is None
        assert b.receive(timeout=0.5) == (b"slow", A)


class TestImpairments:
    """Test loss, duplication and corruption."""

    def test_total_loss(self, network):
        network.loss_rate = 1.0
        a, b = network.endpoint(A), network.endpoint(B)
        for _ in range(5):
            a.send(b"x", B)

        assert b.receive(timeout=0.02) is None
        assert network.get_stats().packets_dropped == 5

    def test_duplication(self, network):
        network.duplicate_rate = 1.0
        a, b = network.endpoint(A), network.endpoint(B)
        a.send(b"twice", B)

        assert b.receive(timeout=0.1) == (b"twice", A)
        assert b.receive(timeout=0.1) == (b"twice", A)

    def test_corruption(self, network):
        network.corrupt_rate = 1.0
        a, b = network.endpoint(A), network.endpoint(B)
        a.send(b"payload", B)

        data, _ = b.receive(timeout=0.1)
        assert data != b"payload"
        assert len(data) == len(b"payload")

    def test_drop_filter(self, network):
        """Only the packets picked by the filter are lost."""
        network.drop_filter = lambda packet, src, dst: packet == b"drop me"
        a, b = network.endpoint(A), network.endpoint(B)
        a.send(b"drop me", B)
        a.send(b"keep me", B)

        assert b.receive(timeout=0.1) == (b"keep me", A)

    def test_same_seed_same_losses(self):
        outcomes = []
        for _ in range(2):
            net = NetworkSimulator(seed=3)
            net.loss_rate = 0.5
            a, b = net.endpoint(A), net.endpoint(B)
            for i in range(20):
                a.send(bytes([i]), B)
            delivered = []
            while True:
                received = b.receive(timeout=0.01)
                if received is None:
                    break
                delivered.append(received[0])
            outcomes.append(delivered)

        assert outcomes[0] == outcomes[1]


class TestBurstLoss:
    """Test the burst loss model."""

    def test_burst_drops_consecutive_packets(self, network):
        network.burst_loss_enabled = True
        network.burst_loss_probability = 1.0
        a, b = network.endpoint(A), network.endpoint(B)
        for i in range(10):
            a.send(bytes([i]), B)

        assert b.receive(timeout=0.02) is None
        assert network.get_stats().packets_dropped == 10

    def test_burst_ends(self):
        """After a burst runs out, packets flow again."""
        net = NetworkSimulator(seed=1)
        net.burst_loss_enabled = True
        net.burst_loss_probability = 1.0
        net.burst_loss_length = 1
        a = net.endpoint(A)
        net.endpoint(B)

        a.send(b"starts burst", B)
        assert net._in_burst
        remaining = net._burst_remaining
        assert 1 <= remaining <= 2

        net.burst_loss_probability = 0.0
        for _ in range(remaining):
            a.send(b"in burst", B)
        assert not net._in_burst

        a.send(b"through", B)
        stats = net.get_stats()
        assert stats.packets_dropped == 1 + remaining
        assert stats.packets_sent == 2 + remaining

    def test_disabled_by_default(self, network):
        network.burst_loss_probability = 1.0
        a, b = network.endpoint(A), network.endpoint(B)
        a.send(b"fine", B)

        assert b.receive(timeout=0.1) == (b"fine", A)


class TestPresets:
    """Test the canned network configurations."""

    def test_lossy(self, network):
        network.configure_lossy(loss_rate=1.0)
        assert (network.reorder_rate, network.jitter) == (0.02, 0.002)

        a, b = network.endpoint(A), network.endpoint(B)
        a.send(b"gone", B)
        assert b.receive(timeout=0.02) is None

    def test_lan(self, network):
        network.loss_rate = 0.5
        network.configure_lan()
        assert network.loss_rate == 0.0
        assert network.latency == 0.001

        a, b = network.endpoint(A), network.endpoint(B)
        a.send(b"near", B)
        assert b.receive(timeout=0.5) == (b"near", A)

    def test_reset_stats(self, network):
        a, b = network.endpoint(A), network.endpoint(B)
        a.send(b"counted", B)
        b.receive(timeout=0.1)
        assert network.get_stats().packets_delivered == 1

        network.reset_stats()
        assert network.get_stats().packets_sent == 0
        assert network.get_stats().packets_delivered == 0


class TestPacketCapture:
    """Test capture of decoded segments."""

    def test_capture_decodes_segments(self, network):
        capture = PacketCapture()
        network.attach_capture(capture)
        network.loss_rate = 1.0
        a = network.endpoint(A)
        network.endpoint(B)

        a.send(create_data_segment(1, b"abc", 0).serialize(), B)
        a.send(b"not a segment", B)

        packets = capture.get_packets()
        assert len(packets) == 2
        assert packets[0].dropped
        assert packets[0].segment.data == b"abc"
        assert packets[1].segment is None
        assert [s.seq_num for s in capture.segments_from(A)] == [1]
        assert "dropped" in capture.summary()
