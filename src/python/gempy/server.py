import logging
import socket
import socketserver
import ssl
import threading
from collections.abc import Callable
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from .errors import LineTooLongError, MalformedUrlError, TransportError
from .request import CRLF, DEFAULT_PORT, GeminiRequest
from .response import GeminiResponse
from .status import GeminiStatus
from .tls_transport import TlsTransport
from .transport import Transport

logger = logging.getLogger(__name__)

Handler = Callable[[GeminiRequest, GeminiResponse], None]

_CRLF_BYTES = CRLF.encode("ascii")


class ServerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    certfile: Path
    keyfile: Path
    host: str = "0.0.0.0"
    port: int = Field(default=DEFAULT_PORT, ge=0, le=65535)
    request_timeout: float | None = Field(default=10.0, gt=0)
    # Longest accepted URL in bytes, not counting the CRLF terminator.
    max_request_length: int = Field(default=1024, ge=1)

    def ssl_context(self) -> ssl.SSLContext:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        context.load_cert_chain(certfile=self.certfile, keyfile=self.keyfile)
        return context


class _ConnectionHandler(socketserver.BaseRequestHandler):
    server: "_ThreadingTlsServer"

    def handle(self) -> None:
        gemini_server = self.server.gemini_server
        sock: ssl.SSLSocket = self.request
        sock.settimeout(gemini_server.config.request_timeout)

        try:
            sock.do_handshake()
        except (ssl.SSLError, OSError) as e:
            logger.warning("TLS handshake with %s failed: %s", self.client_address, e)
            return

        transport = TlsTransport(
            sock=sock, context=gemini_server.ssl_context, timeout=gemini_server.config.request_timeout
        )
        gemini_server.handle_connection(transport, self.client_address)


class _ThreadingTlsServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, address: tuple[str, int], gemini_server: "GeminiServer"):
        self.gemini_server = gemini_server
        super().__init__(address, _ConnectionHandler)

    def get_request(self) -> tuple[socket.socket, tuple]:
        sock, address = super().get_request()
        # The handshake runs in the connection's own thread, not the accept loop.
        try:
            tls_sock = self.gemini_server.ssl_context.wrap_socket(
                sock, server_side=True, do_handshake_on_connect=False
            )
        except OSError:
            sock.close()
            raise
        return tls_sock, address

    def handle_error(self, request, client_address) -> None:
        logger.exception("Unhandled error on connection from %s", client_address)


class GeminiServer:
    """
    A threaded Gemini server.

    The TLS identity belongs to the instance, so several servers with
    different certificates can run side by side. Every accepted connection is
    handled on its own thread; an error on one connection is logged and never
    reaches the accept loop or other connections.
    """

    def __init__(self, config: ServerConfig, handler: Handler):
        self.config = config
        self.handler = handler
        self.ssl_context = config.ssl_context()
        self._server: _ThreadingTlsServer | None = None
        self._thread: threading.Thread | None = None
        self._serving = False

    def __enter__(self) -> "GeminiServer":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    @property
    def address(self) -> tuple[str, int]:
        if self._server is None:
            raise RuntimeError("Server is not bound.")
        host, port = self._server.server_address[:2]
        return host, port

    def bind(self) -> None:
        if self._server is None:
            self._server = _ThreadingTlsServer((self.config.host, self.config.port), self)
            logger.info("Gemini server bound to %s:%d", *self.address)

    def listen(self, callback: Callable[[int], object] | None = None) -> None:
        """Serves in the calling thread until ``shutdown`` is called from elsewhere."""
        self.bind()
        server = self._server
        self._serving = True
        if callback:
            callback(self.address[1])
        server.serve_forever()

    def start(self) -> None:
        """Serves from a background thread."""
        self.bind()
        if self._thread is not None:
            return
        self._serving = True
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="gemini-server", daemon=True
        )
        self._thread.start()

    def shutdown(self) -> None:
        if self._server is None:
            return
        if self._serving:
            self._server.shutdown()
            self._serving = False
        self._server.server_close()
        self._server = None
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        logger.info("Gemini server stopped")

    def handle_connection(self, transport: Transport, client_address: tuple | None = None) -> None:
        """Reads one request from ``transport``, answers it and closes the transport."""
        response = GeminiResponse(transport)
        try:
            try:
                request = self._read_request(transport)
            except (MalformedUrlError, LineTooLongError) as e:
                logger.warning("Rejected request from %s: %s", client_address, e)
                response.set_status(GeminiStatus.BAD_REQUEST, "Bad request").send()
                return

            logger.debug("%s requested %s", client_address, request.url)
            try:
                self.handler(request, response)
            except Exception:
                logger.exception("Handler failed for %s", request.url)
                if not response.sent:
                    response.set_status(GeminiStatus.TEMPORARY_FAILURE, "Internal server error").send()
                return

            # A handler may only set the status and leave sending to the server.
            if not response.sent:
                response.set_status(response.status, response.meta).send()
        except TransportError as e:
            logger.warning("Connection from %s failed: %s", client_address, e)
        finally:
            transport.close()

    def _read_request(self, transport: Transport) -> GeminiRequest:
        limit = self.config.max_request_length + len(_CRLF_BYTES)
        buffer = bytearray()
        chunk = bytearray(limit)

        while True:
            end = buffer.find(_CRLF_BYTES, 0, limit)
            if end != -1:
                return GeminiRequest.from_wire_bytes(bytes(buffer[:end + len(_CRLF_BYTES)]))
            if len(buffer) >= limit:
                raise LineTooLongError(f"Request exceeds {self.config.max_request_length} bytes.")

            bytes_read = transport.read_into(chunk)
            if bytes_read == 0:
                break
            buffer += chunk[:bytes_read]

        if not buffer:
            raise MalformedUrlError("Empty request.")
        return GeminiRequest.from_wire_bytes(bytes(buffer))
