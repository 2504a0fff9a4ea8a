from typing import Protocol

class Transport(Protocol):
    """
    A connected, blocking byte stream.

    ``write`` returns the number of bytes accepted. ``read_into`` fills the
    given buffer and returns the number of bytes read, with 0 meaning the peer
    has finished sending. Failures are raised as ``TransportError`` subclasses.
    ``close`` may be called more than once.
    """

    def connect(self, host: str, port: int) -> None:
        ...

    def write(self, data: bytes | memoryview) -> int:
        ...

    def read_into(self, buffer: bytearray | memoryview) -> int:
        ...

    def close(self) -> None:
        ...
