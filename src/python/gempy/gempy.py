import logging
from collections.abc import Callable, Mapping
from typing import Any
from urllib.parse import SplitResult

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import MalformedUrlError, RequestFailedError, TooManyRedirectsError
from .gemini_protocol import GeminiProtocol
from .request import GeminiRequest, resolve_url
from .response import GeminiResponse, MAX_LINE_LENGTH
from .tls_transport import TlsTransport
from .transport import Transport

logger = logging.getLogger(__name__)

FetchTarget = str | SplitResult | GeminiRequest


class FetchOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    follow_redirects: bool = True
    hostname: str | None = None
    port: int | None = Field(default=None, ge=1, le=65535)
    safe: bool = False
    input: str | None = None
    ca_certs: list[str] = Field(default_factory=list)
    verify: bool = True
    timeout: float | None = Field(default=30.0, gt=0)
    max_redirects: int = Field(default=5, ge=0)
    max_line_length: int = Field(default=MAX_LINE_LENGTH, ge=3)

    @field_validator("ca_certs", mode="before")
    @classmethod
    def _wrap_single_cert(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value


TransportFactory = Callable[[FetchOptions], Transport]


class GeminiClient:
    """
    Fetches Gemini resources.

    Each request, including every hop of a redirect chain, runs on its own
    transport created by ``transport_factory``. The returned response owns
    its transport; close it (or use it as a context manager) when done.
    """

    def __init__(self, transport_factory: TransportFactory = TlsTransport.from_options):
        self._transport_factory = transport_factory

    def fetch(
        self,
        target: FetchTarget,
        options: FetchOptions | Mapping[str, Any] | None = None,
        **overrides: Any,
    ) -> GeminiResponse:
        options = self._resolve_options(options, overrides)
        request = self._initial_request(target, options)
        visited = {request.url}
        redirects = 0

        while True:
            response = self._exchange(request, options)

            if options.follow_redirects and response.redirect and response.meta:
                response.close()
                redirects += 1
                if redirects > options.max_redirects:
                    raise TooManyRedirectsError(f"Exceeded {options.max_redirects} redirects starting at {target}")

                next_request = GeminiRequest.from_url(resolve_url(request.url, response.meta), options.input)
                if next_request.url in visited:
                    raise TooManyRedirectsError(f"Redirect loop detected at {next_request.url}")

                logger.debug("Following %d redirect from %s to %s", response.status, request.url, next_request.url)
                visited.add(next_request.url)
                request = next_request
                continue

            if not (response.ok or response.redirect) and not options.safe:
                response.close()
                raise RequestFailedError(response.status, response.meta)

            return response

    def _exchange(self, request: GeminiRequest, options: FetchOptions) -> GeminiResponse:
        host = options.hostname or request.hostname
        if not host:
            raise MalformedUrlError(f"URL '{request.url}' has no host to connect to.")
        port = options.port or request.port

        protocol = GeminiProtocol(self._transport_factory(options), options.max_line_length)
        try:
            protocol.connect(host, port)
            return protocol.perform_request(request)
        except BaseException:
            protocol.disconnect()
            raise

    @staticmethod
    def _resolve_options(options: FetchOptions | Mapping[str, Any] | None, overrides: dict[str, Any]) -> FetchOptions:
        if options is None:
            return FetchOptions(**overrides)
        if isinstance(options, FetchOptions):
            if not overrides:
                return options
            options = options.model_dump()
        return FetchOptions(**{**options, **overrides})

    @staticmethod
    def _initial_request(target: FetchTarget, options: FetchOptions) -> GeminiRequest:
        # A prebuilt request goes out exactly as it was built.
        if isinstance(target, GeminiRequest):
            return target
        if isinstance(target, (str, SplitResult)):
            return GeminiRequest.from_url(target, options.input)
        raise TypeError(f"Cannot fetch a target of type {type(target).__name__}")


_default_client = GeminiClient()


def fetch(
    target: FetchTarget,
    options: FetchOptions | Mapping[str, Any] | None = None,
    **overrides: Any,
) -> GeminiResponse:
    """Fetches ``target`` with a shared client that connects over TLS."""
    return _default_client.fetch(target, options, **overrides)


gemfetch = fetch
