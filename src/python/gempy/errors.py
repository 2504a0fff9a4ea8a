class GemError(Exception):
    """Base exception for the gempy library."""
    pass

# --- Transport Errors ---

class TransportError(GemError):
    """A generic error occurred in the transport layer."""
    pass

class DnsFailureError(TransportError): pass
class SocketCreateError(TransportError): pass
class SocketConnectError(TransportError): pass
class SocketWriteError(TransportError): pass
class SocketReadError(TransportError): pass
class ReadTimeoutError(SocketReadError): pass
class TlsHandshakeError(TransportError): pass
class ConnectionClosedError(TransportError): pass

# --- Gemini Protocol / Client Errors ---

class GeminiClientError(GemError):
    """A generic error occurred in the Gemini protocol or client logic."""
    pass

class MalformedUrlError(GeminiClientError): pass
class InvalidStatusError(GeminiClientError): pass
class LineTooLongError(GeminiClientError): pass
class InvalidResponseError(GeminiClientError): pass
class BodyConsumedError(GeminiClientError): pass
class TooManyRedirectsError(GeminiClientError): pass


class RequestFailedError(GeminiClientError):
    """The final response was neither a success nor a redirect."""

    def __init__(self, status: int, meta: str | None):
        super().__init__(f"Request not OK - {status} {meta or ''}".rstrip())
        self.status = status
        self.meta = meta
