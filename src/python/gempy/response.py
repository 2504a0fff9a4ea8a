import json
from collections.abc import Iterable, Iterator
from typing import Any, BinaryIO, Union

from .errors import (
    BodyConsumedError,
    ConnectionClosedError,
    InvalidResponseError,
    InvalidStatusError,
    LineTooLongError,
)
from .request import CRLF
from .status import GeminiStatus, StatusClass, class_of, is_redirect, is_success, validate_status
from .transport import Transport

MAX_LINE_LENGTH = 1024
READ_CHUNK_SIZE = 4096
DEFAULT_MIME_TYPE = "text/gemini"

_CRLF_BYTES = CRLF.encode("ascii")

BodyInit = Union[str, bytes, bytearray, memoryview, BinaryIO, Iterable[Union[str, bytes]]]


class GeminiResponse:
    """
    A Gemini response, either produced by a server or received by a client.

    The response is bound to the transport it was created with. A server sets
    the status and calls ``send``; a client calls ``recv`` to parse the status
    line and then drains the body through one of the body accessors.
    """

    def __init__(self, transport: Transport):
        self._transport = transport
        self.status: int = GeminiStatus.SUCCESS
        self.meta: str | None = None
        self.sent = False

        self._buffer = bytearray()
        self._content: bytes | None = None
        self._streamed = False

    def __repr__(self) -> str:
        return f"<GeminiResponse [{self.status}] {self.meta!r}>"

    def __enter__(self) -> "GeminiResponse":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def ok(self) -> bool:
        return is_success(self.status)

    @property
    def redirect(self) -> bool:
        return is_redirect(self.status)

    @property
    def status_class(self) -> StatusClass:
        return class_of(self.status)

    @property
    def mime_type(self) -> str | None:
        if not self.ok or not self.meta:
            return None
        return self.meta.split(";", 1)[0].strip().lower()

    @property
    def charset(self) -> str | None:
        if not self.ok or not self.meta:
            return None
        for param in self.meta.split(";")[1:]:
            key, _, value = param.partition("=")
            if key.strip().lower() == "charset":
                return value.strip().strip('"') or None
        return None

    def close(self) -> None:
        self._transport.close()

    # --- Producer ---

    def set_status(self, status: int, meta: str | None = None) -> "GeminiResponse":
        status = validate_status(status)
        if meta is not None and ("\r" in meta or "\n" in meta):
            raise InvalidResponseError("Meta must not contain line terminators.")

        self.status = status
        if meta is None and is_success(status):
            meta = DEFAULT_MIME_TYPE
        self.meta = meta
        return self

    def status_line(self) -> bytes:
        line = f"{self.status} {self.meta or ''}{CRLF}".encode("utf-8")
        if len(line) > MAX_LINE_LENGTH:
            raise LineTooLongError(f"Status line is {len(line)} bytes, the limit is {MAX_LINE_LENGTH}.")
        return line

    def send(self, body: BodyInit | None = None) -> None:
        """Writes the status line and then the body, chunk by chunk. The transport is left open."""
        validate_status(self.status)
        self._write_all(self.status_line())
        self.sent = True

        if body is None:
            return
        for chunk in self._iter_chunks(body):
            if chunk:
                self._write_all(chunk)

    def _write_all(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            written = self._transport.write(view)
            if written <= 0:
                raise ConnectionClosedError("Transport accepted no data.")
            view = view[written:]

    @staticmethod
    def _iter_chunks(body: BodyInit) -> Iterator[bytes]:
        if isinstance(body, str):
            yield body.encode("utf-8")
        elif isinstance(body, (bytes, bytearray, memoryview)):
            yield bytes(body)
        elif hasattr(body, "read"):
            while chunk := body.read(READ_CHUNK_SIZE):
                yield chunk.encode("utf-8") if isinstance(chunk, str) else bytes(chunk)
        elif isinstance(body, Iterable):
            for chunk in body:
                if isinstance(chunk, str):
                    yield chunk.encode("utf-8")
                elif isinstance(chunk, (bytes, bytearray, memoryview)):
                    yield bytes(chunk)
                else:
                    raise InvalidResponseError(f"Unsupported body chunk type: {type(chunk).__name__}")
        else:
            raise InvalidResponseError(f"Unsupported body type: {type(body).__name__}")

    # --- Consumer ---

    def recv(self, max_line_length: int = MAX_LINE_LENGTH) -> "GeminiResponse":
        """Reads and parses the status line. Bytes after the terminator are kept for the body."""
        raw_line = self._read_status_line(max_line_length)

        try:
            line = raw_line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidStatusError("Status line is not valid UTF-8.") from e

        status_token, _, meta = line.partition(" ")
        if not status_token.isascii() or not status_token.isdigit():
            raise InvalidStatusError(f"Invalid status code in status line: {status_token!r}")

        self.status = validate_status(int(status_token))
        self.meta = meta or None
        return self

    def _read_status_line(self, limit: int) -> bytes:
        while True:
            end = self._buffer.find(_CRLF_BYTES, 0, limit)
            if end != -1:
                line = bytes(self._buffer[:end])
                del self._buffer[:end + len(_CRLF_BYTES)]
                return line

            if len(self._buffer) >= limit:
                raise LineTooLongError(f"Status line exceeds {limit} bytes.")

            if self._fill() == 0:
                # Unterminated line at end of stream; a trailing CR may only be half a terminator.
                line = bytes(self._buffer)
                self._buffer.clear()
                return line[:-1] if line.endswith(b"\r") else line

    def _fill(self) -> int:
        old_len = len(self._buffer)
        bytes_read = 0
        self._buffer.extend(b"\0" * READ_CHUNK_SIZE)
        try:
            with memoryview(self._buffer) as read_view:
                bytes_read = self._transport.read_into(read_view[old_len:])
        finally:
            del self._buffer[old_len + bytes_read:]
        return bytes_read

    @property
    def body_used(self) -> bool:
        return self._streamed

    def iter_body(self, chunk_size: int = READ_CHUNK_SIZE) -> Iterator[bytes]:
        """
        Streams the body. This is the only accessor that touches the transport;
        ``read``, ``text`` and ``json`` buffer the stream once through it.
        """
        if self._content is not None:
            return iter([self._content] if self._content else [])
        if self._streamed:
            raise BodyConsumedError("The response body has already been consumed.")

        self._streamed = True
        return self._stream_body(chunk_size)

    def _stream_body(self, chunk_size: int) -> Iterator[bytes]:
        if self._buffer:
            yield bytes(self._buffer)
            self._buffer.clear()

        chunk = bytearray(chunk_size)
        while True:
            bytes_read = self._transport.read_into(chunk)
            if bytes_read == 0:
                break
            yield bytes(chunk[:bytes_read])

    def read(self) -> bytes:
        if self._content is None:
            self._content = b"".join(self.iter_body())
        return self._content

    def text(self, encoding: str | None = None) -> str:
        return self.read().decode(encoding or self.charset or "utf-8")

    def json(self) -> Any:
        return json.loads(self.text())
