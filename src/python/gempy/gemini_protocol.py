import logging

from .errors import ConnectionClosedError
from .request import GeminiRequest
from .response import GeminiResponse, MAX_LINE_LENGTH
from .transport import Transport

logger = logging.getLogger(__name__)


class GeminiProtocol:
    """Runs a single request/response exchange over one transport."""

    def __init__(self, transport: Transport, max_line_length: int = MAX_LINE_LENGTH):
        self._transport: Transport = transport
        self._max_line_length = max_line_length

    @property
    def transport(self) -> Transport:
        return self._transport

    def connect(self, host: str, port: int) -> None:
        logger.debug("Connecting to %s:%d", host, port)
        self._transport.connect(host, port)

    def disconnect(self) -> None:
        self._transport.close()

    def perform_request(self, request: GeminiRequest) -> GeminiResponse:
        logger.debug("Sending request %s", request.url)
        self._write_request(request.raw)

        response = GeminiResponse(self._transport).recv(self._max_line_length)
        logger.debug("Received status %d %s for %s", response.status, response.meta or "", request.url)
        return response

    def _write_request(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            written = self._transport.write(view)
            if written <= 0:
                raise ConnectionClosedError("Transport accepted no data.")
            view = view[written:]
