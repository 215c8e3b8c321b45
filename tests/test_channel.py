"""
Tests for the UDP channel, over the loopback interface.
"""

import pytest
from rtcp.channel import UDPChannel


@pytest.fixture
def pair():
    a = UDPChannel(("127.0.0.1", 0))
    b = UDPChannel(("127.0.0.1", 0))
    yield a, b
    a.close()
    b.close()


class TestUDPChannel:
    """Test datagram exchange on a real socket."""

    def test_send_and_receive(self, pair):
        a, b = pair
        a.send(b"ping", b.local_address)

        received = b.receive(timeout=1.0)

        assert received is not None
        data, source = received
        assert data == b"ping"
        assert source == a.local_address

    def test_receive_timeout(self, pair):
        _, b = pair
        assert b.receive(timeout=0.05) is None

    def test_close_is_idempotent(self):
        channel = UDPChannel(("127.0.0.1", 0))
        channel.close()
        channel.close()
        assert channel.closed

    def test_context_manager(self):
        with UDPChannel(("127.0.0.1", 0)) as channel:
            assert channel.local_address[1] != 0
        assert channel.closed

    def test_port_in_use(self, pair):
        a, _ = pair
        with pytest.raises(OSError):
            UDPChannel(a.local_address)
