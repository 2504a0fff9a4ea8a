import logging
import socket
import ssl
from collections.abc import Iterable
from typing import TYPE_CHECKING

from .errors import TransportError, SocketReadError, TlsHandshakeError
from .tcp_transport import TcpTransport

if TYPE_CHECKING:
    from .gempy import FetchOptions

logger = logging.getLogger(__name__)


def create_client_context(ca_certs: Iterable[str] = (), verify: bool = True) -> ssl.SSLContext:
    """Builds the client-side TLS context.

    ``ca_certs`` are PEM encoded certificates trusted in addition to the
    system store. With ``verify`` disabled any server certificate is accepted,
    which is how most Gemini capsules with self-signed certificates are reached.
    """
    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1_2

    pem_data = "\n".join(ca_certs)
    if pem_data:
        try:
            context.load_verify_locations(cadata=pem_data)
        except ssl.SSLError as e:
            raise TransportError(f"Invalid CA certificate data: {e}") from e

    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    return context


class TlsTransport(TcpTransport):
    def __init__(
        self,
        ca_certs: Iterable[str] = (),
        verify: bool = True,
        timeout: float | None = None,
        sock: socket.socket | None = None,
        context: ssl.SSLContext | None = None,
    ) -> None:
        super().__init__(timeout=timeout, sock=sock)
        self._context = context or create_client_context(ca_certs, verify)

    @classmethod
    def from_options(cls, options: "FetchOptions") -> "TlsTransport":
        return cls(ca_certs=options.ca_certs, verify=options.verify, timeout=options.timeout)

    def connect(self, host: str, port: int) -> None:
        super().connect(host, port)

        raw_sock = self._sock
        try:
            self._sock = self._context.wrap_socket(raw_sock, server_hostname=host)
        except (ssl.SSLError, ssl.CertificateError, OSError) as e:
            self._sock = None
            raw_sock.close()
            raise TlsHandshakeError(f"TLS handshake with '{host}:{port}' failed: {e}") from e

        logger.debug("TLS established with %s:%d using %s", host, port, self._sock.version())

    def read_into(self, buffer: bytearray | memoryview) -> int:
        try:
            return super().read_into(buffer)
        except SocketReadError as e:
            # Many servers close the connection without a close_notify alert.
            if isinstance(e.__cause__, (ssl.SSLZeroReturnError, ssl.SSLEOFError)):
                return 0
            raise

