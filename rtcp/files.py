"""
Byte sources and sinks.

The transfer engine does not care where the bytes come from or go to. The
initiator pulls fixed-size chunks from a ByteSource; the responder appends
delivered bytes, strictly in order, to a ByteSink.
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import Optional


logger = logging.getLogger(__name__)


class ByteSource(ABC):
    """Supplies the bytes to send, one chunk at a time."""

    @abstractmethod
    def next_chunk(self) -> Optional[bytes]:
        """Next chunk of at most chunk_size bytes, or None at end of data."""

    def close(self):
        """Release any underlying resource."""


class ByteSink(ABC):
    """Accepts delivered bytes in increasing, contiguous order."""

    def __init__(self):
        self.bytes_written = 0

    def append(self, offset: int, data: bytes):
        """
        Append data that starts at byte offset `offset` of the stream.

        Raises:
            ValueError: If offset is not exactly where the previous append ended
            OSError: If the underlying storage fails
        """
        if offset != self.bytes_written:
            raise ValueError(
                f"Out of order append at {offset}, expected {self.bytes_written}"
            )
        self._write(data)
        self.bytes_written += len(data)

    @abstractmethod
    def _write(self, data: bytes):
        """Store the bytes."""

    def close(self):
        """Release any underlying resource."""


class BytesSource(ByteSource):
    """Chunks an in-memory bytes object."""

    def __init__(self, data: bytes, chunk_size: int):
        if chunk_size < 1:
            raise ValueError(f"Invalid chunk size: {chunk_size}")
        self._data = data
        self.chunk_size = chunk_size
        self.position = 0

    def next_chunk(self) -> Optional[bytes]:
        if self.position >= len(self._data):
            return None
        chunk = self._data[self.position:self.position + self.chunk_size]
        self.position += len(chunk)
        return chunk


class MemorySink(ByteSink):
    """Collects delivered bytes in memory."""

    def __init__(self):
        super().__init__()
        self._buffer = bytearray()

    def _write(self, data: bytes):
        self._buffer.extend(data)

    def getvalue(self) -> bytes:
        return bytes(self._buffer)


class FileSource(ByteSource):
    """
    Reads a file in chunks of chunk_size bytes.

    Raises:
        FileNotFoundError: If path is not an existing regular file
    """

    def __init__(self, path: str, chunk_size: int):
        if chunk_size < 1:
            raise ValueError(f"Invalid chunk size: {chunk_size}")
        if not os.path.isfile(path):
            raise FileNotFoundError(f"The file {path} does not exist")

        self.path = path
        self.chunk_size = chunk_size
        self.total_bytes = os.path.getsize(path)
        self.position = 0
        self._file = open(path, 'rb')
        logger.debug(f"The file {path} exists and will be read ({self.total_bytes} bytes)")

    def next_chunk(self) -> Optional[bytes]:
        chunk = self._file.read(self.chunk_size)
        if not chunk:
            logger.debug("End of file reached")
            return None
        self.position += len(chunk)
        return chunk

    def close(self):
        self._file.close()


class FileSink(ByteSink):
    """
    Writes delivered bytes to a new file.

    The file must not exist yet: received data never overwrites anything.
    Missing parent directories are created.

    Raises:
        FileExistsError: If path already exists
    """

    def __init__(self, path: str):
        super().__init__()
        if os.path.exists(path):
            raise FileExistsError(
                f"The file {path} already exists, will not overwrite data"
            )

        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)

        self.path = path
        self._file = open(path, 'xb')
        logger.debug(f"The file {path} was created")

    def _write(self, data: bytes):
        self._file.write(data)
        self._file.flush()

    def close(self):
        self._file.close()
