import pytest
import socket
import struct
import threading
import time
from queue import Queue


from unittest.mock import patch


from gempy.tcp_transport import TcpTransport
from gempy.errors import (
    SocketConnectError,
    DnsFailureError,
    SocketWriteError,
    TransportError,
    SocketReadError,
    ReadTimeoutError,
)

class ServerFixture:
    def __init__(self, handler):
        self._handler = handler
        self._should_stop = threading.Event()
        self.listener_sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.listener_sock.bind(("127.0.0.1", 0))
        self.port = self.listener_sock.getsockname()[1]
        self.listener_sock.listen()
        self.thread = threading.Thread(target=self._accept_loop)

    def start(self):
        self.thread.start()

    def stop(self):
        if not self._should_stop.is_set():
            self._should_stop.set()
            # Connect to unblock the accept() call
            try:
                with socket.create_connection(("127.0.0.1", self.port), timeout=0.1):
                    pass
            except OSError:
                pass
            self.thread.join(timeout=2.0)
            self.listener_sock.close()

    def _accept_loop(self):
        try:
            client_sock, _ = self.listener_sock.accept()
            with client_sock:
                if self._handler:
                    self._handler(client_sock)
        except OSError:
            pass


@pytest.fixture
def test_server(request):
    server = ServerFixture(request.param if hasattr(request, "param") else None)
    server.start()
    yield server
    server.stop()


def test_construction_succeeds():
    transport = TcpTransport()
    assert transport.connected is False


@pytest.mark.parametrize("test_server", [lambda sock: None], indirect=True)
def test_connect_succeeds(test_server):
    transport = TcpTransport()
    transport.connect("127.0.0.1", test_server.port)
    assert transport.connected is True
    transport.close()


def test_write_succeeds(test_server):
    message_queue = Queue()
    def server_logic(sock):
        data = sock.recv(1024)
        message_queue.put(data)

    test_server._handler = server_logic

    transport = TcpTransport()
    transport.connect("127.0.0.1", test_server.port)
    message_to_send = b"gemini://example.org/\r\n"
    bytes_written = transport.write(message_to_send)

    assert bytes_written == len(message_to_send)

    captured_message = message_queue.get(timeout=1)
    assert captured_message == message_to_send
    transport.close()


@pytest.mark.parametrize("test_server", [lambda sock: sock.sendall(b"20 text/gemini\r\n")], indirect=True)
def test_read_into_succeeds(test_server):
    transport = TcpTransport()
    transport.connect("127.0.0.1", test_server.port)

    buffer = bytearray(1024)
    bytes_read = transport.read_into(buffer)

    assert bytes_read == len(b"20 text/gemini\r\n")
    assert buffer[:bytes_read] == b"20 text/gemini\r\n"
    transport.close()


def test_wraps_an_already_connected_socket():
    left, right = socket.socketpair()
    transport = TcpTransport(sock=left)

    assert transport.connected is True
    transport.write(b"ping")
    assert right.recv(4) == b"ping"

    right.sendall(b"pong")
    buffer = bytearray(4)
    assert transport.read_into(buffer) == 4
    assert buffer == b"pong"

    transport.close()
    right.close()


@pytest.mark.parametrize("test_server", [lambda sock: None], indirect=True)
def test_close_is_idempotent(test_server):
    transport = TcpTransport()
    transport.connect("127.0.0.1", test_server.port)
    transport.close()
    transport.close()
    assert transport.connected is False


def test_connect_fails_on_unresponsive_port():
    # Bind and release a port so that nothing is listening on it.
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
        probe.bind(("127.0.0.1", 0))
        unresponsive_port = probe.getsockname()[1]

    transport = TcpTransport()
    with pytest.raises(SocketConnectError):
        transport.connect("127.0.0.1", unresponsive_port)
    assert transport.connected is False


def test_connect_fails_on_dns_failure():
    transport = TcpTransport()
    with patch("socket.create_connection", side_effect=socket.gaierror("Name or service not known")):
        with pytest.raises(DnsFailureError, match="a-hostname-that-will-not-resolve.invalid"):
            transport.connect("a-hostname-that-will-not-resolve.invalid", 1965)
    assert transport.connected is False


def test_write_fails_on_closed_connection():
    server_closed_event = threading.Event()
    def server_logic(sock):
        # Force an abrupt RST shutdown with SO_LINGER
        l_onoff = 1
        l_linger = 0
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, struct.pack('ii', l_onoff, l_linger))
        server_closed_event.set()

    server = ServerFixture(server_logic)
    server.start()

    transport = TcpTransport()
    transport.connect("127.0.0.1", server.port)

    server_closed_event.wait(timeout=1)
    time.sleep(0.05) # Give OS time to process RST

    with pytest.raises(SocketWriteError):
        transport.write(b"this should fail")

    transport.close()
    server.stop()


@pytest.mark.parametrize("test_server", [lambda sock: None], indirect=True)
def test_read_into_returns_zero_on_peer_shutdown(test_server):
    transport = TcpTransport()
    transport.connect("127.0.0.1", test_server.port)

    # Wait for the server thread to accept and close the connection
    test_server.thread.join(timeout=1)

    buffer = bytearray(1024)
    bytes_read = transport.read_into(buffer)
    assert bytes_read == 0
    transport.close()


def test_read_into_times_out():
    release = threading.Event()
    server = ServerFixture(lambda sock: release.wait(timeout=2))
    server.start()

    transport = TcpTransport(timeout=0.1)
    transport.connect("127.0.0.1", server.port)

    try:
        with pytest.raises(ReadTimeoutError):
            transport.read_into(bytearray(16))
    finally:
        release.set()
        transport.close()
        server.stop()


def test_write_fails_if_not_connected():
    transport = TcpTransport()
    with pytest.raises(TransportError, match="Cannot write on a disconnected transport."):
        transport.write(b"some data")


def test_read_into_fails_if_not_connected():
    transport = TcpTransport()
    buffer = bytearray(1024)
    with pytest.raises(TransportError, match="Cannot read from a disconnected transport."):
        transport.read_into(buffer)


@pytest.mark.parametrize("test_server", [lambda sock: None], indirect=True)
def test_connect_fails_if_already_connected(test_server):
    transport = TcpTransport()
    transport.connect("127.0.0.1", test_server.port)

    with pytest.raises(TransportError, match="Transport is already connected."):
        transport.connect("127.0.0.1", test_server.port)

    transport.close()


@pytest.mark.parametrize("test_server", [lambda sock: None], indirect=True)
def test_read_into_raises_socket_read_error_on_os_error(test_server):
    transport = TcpTransport()
    transport.connect("127.0.0.1", test_server.port)

    buffer = bytearray(1024)

    with patch('socket.socket.recv_into') as mock_recv_into:
        mock_recv_into.side_effect = OSError("Mock OS-level read error")

        with pytest.raises(SocketReadError, match="Mock OS-level read error"):
            transport.read_into(buffer)

    transport.close()
