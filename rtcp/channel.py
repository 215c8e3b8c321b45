"""
Datagram channels - the unreliable substrate underneath a connection.

A channel moves whole datagrams and promises nothing: they may be lost,
duplicated, reordered or corrupted. The connection engine only needs three
things from it:

- send a datagram to an address
- wait a bounded time for the next datagram, returning None if none came
- release the underlying resources

UDPChannel implements this over a real UDP socket; the simulator package
provides an in-process implementation for testing.
"""

import logging
import socket
from abc import ABC, abstractmethod
from typing import Optional, Tuple


logger = logging.getLogger(__name__)

Address = Tuple[str, int]

# Large enough for any UDP payload
RECEIVE_BUFFER_SIZE = 65535


class DatagramChannel(ABC):
    """
    Abstract datagram transport.
    """

    @property
    @abstractmethod
    def local_address(self) -> Address:
        """Address this channel receives on."""

    @abstractmethod
    def send(self, data: bytes, address: Address):
        """Send one datagram. Delivery is not guaranteed."""

    @abstractmethod
    def receive(self, timeout: float) -> Optional[Tuple[bytes, Address]]:
        """
        Wait up to `timeout` seconds for a datagram.

        Returns:
            Tuple of (data, source_address), or None if nothing arrived
        """

    @abstractmethod
    def close(self):
        """Release the channel."""

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class UDPChannel(DatagramChannel):
    """
    Channel over a UDP socket.

    Usage:
        with UDPChannel(("0.0.0.0", 5000)) as channel:
            channel.send(b"...", ("10.0.0.2", 6000))
            received = channel.receive(timeout=0.5)
    """

    def __init__(self, bind_address: Address = ("0.0.0.0", 0)):
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            self._socket.bind(bind_address)
        except OSError:
            self._socket.close()
            raise
        self._closed = False
        logger.debug(f"UDP channel bound to {self.local_address}")

    @property
    def local_address(self) -> Address:
        return self._socket.getsockname()

    def send(self, data: bytes, address: Address):
        try:
            self._socket.sendto(data, address)
        except ConnectionError as e:
            # ICMP errors surfaced by the OS; to the protocol this is a loss
            logger.warning(f"Send to {address[0]}:{address[1]} failed: {e}")

    def receive(self, timeout: float) -> Optional[Tuple[bytes, Address]]:
        self._socket.settimeout(max(timeout, 0.0001))
        try:
            data, address = self._socket.recvfrom(RECEIVE_BUFFER_SIZE)
        except socket.timeout:
            return None
        except ConnectionError as e:
            logger.warning(f"Receive failed: {e}")
            return None
        return data, address

    def close(self):
        if not self._closed:
            self._closed = True
            self._socket.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def __repr__(self) -> str:
        state = "closed" if self._closed else f"{self.local_address[0]}:{self.local_address[1]}"
        return f"UDPChannel({state})"
