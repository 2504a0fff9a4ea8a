import shutil
import socket
import subprocess
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from queue import Queue
from typing import Callable

import pytest


@dataclass
class ServerDetails:
    host: str = ""
    port: int = 0
    requests: Queue = field(default_factory=Queue)

    def captured(self) -> list[bytes]:
        items = []
        while not self.requests.empty():
            items.append(self.requests.get_nowait())
        return items


@dataclass
class TlsIdentity:
    certfile: Path
    keyfile: Path

    @property
    def cert_pem(self) -> str:
        return self.certfile.read_text()


def recv_request_line(sock: socket.socket) -> bytes:
    data = bytearray()
    while b"\r\n" not in data:
        chunk = sock.recv(1024)
        if not chunk:
            break
        data += chunk
    return bytes(data)


@pytest.fixture
def server_factory() -> Callable:
    """
    Starts a plain TCP server that calls ``handler(request_line, client_sock)``
    for every connection it accepts until the context exits. Each request line
    is also recorded on ``details.requests``.
    """
    @contextmanager
    def _factory(handler: Callable[[bytes, socket.socket], None]):
        details = ServerDetails()
        stop_event = threading.Event()

        listener_sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener_sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        listener_sock.bind(("127.0.0.1", 0))
        details.host, details.port = listener_sock.getsockname()

        def server_loop():
            while not stop_event.is_set():
                try:
                    client_sock, _ = listener_sock.accept()
                except socket.timeout:
                    continue
                except OSError:
                    break
                with client_sock:
                    request_line = recv_request_line(client_sock)
                    details.requests.put(request_line)
                    try:
                        handler(request_line, client_sock)
                    except OSError:
                        pass

        listener_sock.settimeout(0.1)
        listener_sock.listen()
        server_thread = threading.Thread(target=server_loop, daemon=True)
        server_thread.start()
        try:
            yield details
        finally:
            stop_event.set()
            server_thread.join(timeout=2.0)
            listener_sock.close()

    return _factory


def _generate_identity(directory: Path, common_name: str) -> TlsIdentity:
    certfile = directory / "cert.pem"
    keyfile = directory / "key.pem"
    subprocess.run(
        [
            "openssl", "req", "-x509", "-nodes", "-days", "2",
            "-newkey", "ec", "-pkeyopt", "ec_paramgen_curve:prime256v1",
            "-keyout", str(keyfile), "-out", str(certfile),
            "-subj", f"/CN={common_name}",
        ],
        check=True,
        capture_output=True,
    )
    return TlsIdentity(certfile=certfile, keyfile=keyfile)


@pytest.fixture(scope="session")
def tls_identity_factory(tmp_path_factory) -> Callable[[str], TlsIdentity]:
    if shutil.which("openssl") is None:
        pytest.skip("openssl is required to generate test certificates")

    cache: dict[str, TlsIdentity] = {}

    def _factory(common_name: str = "localhost") -> TlsIdentity:
        if common_name not in cache:
            cache[common_name] = _generate_identity(tmp_path_factory.mktemp(common_name), common_name)
        return cache[common_name]

    return _factory


@pytest.fixture(scope="session")
def tls_identity(tls_identity_factory) -> TlsIdentity:
    return tls_identity_factory("localhost")
