from dataclasses import dataclass
import urllib.parse
from urllib.parse import SplitResult, quote, unquote, urljoin, urlsplit, urlunsplit

from .errors import MalformedUrlError

CRLF = "\r\n"
DEFAULT_PORT = 1965
GEMINI_SCHEME = "gemini"

# Everything printable in ASCII except what a URL query setter escapes.
_QUERY_SAFE_CHARS = "!$%&'()*+,-./:;=?@[\\]^_`{|}~"

# urljoin only resolves relative references for schemes it knows about.
for _scheme_list in (urllib.parse.uses_relative, urllib.parse.uses_netloc):
    if GEMINI_SCHEME not in _scheme_list:
        _scheme_list.append(GEMINI_SCHEME)


def encode_input(text: str) -> str:
    """Percent-encodes user input for use as a query component."""
    return quote(text, safe=_QUERY_SAFE_CHARS)


def resolve_url(base: str, target: str) -> str:
    """Resolves a possibly relative URL, such as a redirect target, against ``base``."""
    return urljoin(base, target)


def _parse_absolute_url(url: str) -> SplitResult:
    if "\r" in url or "\n" in url:
        raise MalformedUrlError("URL must not contain line terminators.")

    try:
        parts = urlsplit(url)
        # Accessing the port validates it.
        _ = parts.port
    except ValueError as e:
        raise MalformedUrlError(f"Invalid URL '{url}': {e}") from e

    if not parts.scheme or not parts.netloc:
        raise MalformedUrlError(f"URL '{url}' is not absolute.")

    return parts


@dataclass(frozen=True)
class GeminiRequest:
    url: str
    raw: bytes

    @classmethod
    def from_url(cls, url: str | SplitResult, input: str | None = None) -> "GeminiRequest":
        if isinstance(url, SplitResult):
            url = url.geturl()

        parts = _parse_absolute_url(url)
        if input is not None:
            url = urlunsplit(parts._replace(query=encode_input(input)))

        return cls(url=url, raw=(url + CRLF).encode("utf-8"))

    @classmethod
    def from_wire_bytes(cls, data: bytes) -> "GeminiRequest":
        # Requests carry no body, anything after the first terminator is ignored.
        line, _, _ = bytes(data).partition(CRLF.encode("ascii"))

        try:
            url = line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedUrlError("Request line is not valid UTF-8.") from e

        _parse_absolute_url(url)
        return cls(url=url, raw=(url + CRLF).encode("utf-8"))

    @property
    def parts(self) -> SplitResult:
        return urlsplit(self.url)

    @property
    def scheme(self) -> str:
        return self.parts.scheme

    @property
    def hostname(self) -> str | None:
        return self.parts.hostname

    @property
    def port(self) -> int:
        return self.parts.port or DEFAULT_PORT

    @property
    def path(self) -> str:
        return self.parts.path or "/"

    @property
    def query(self) -> str | None:
        """The decoded query component, or None when the URL has no query."""
        parts = self.parts
        if not parts.query and not self.url.split("#", 1)[0].endswith("?"):
            return None
        return unquote(parts.query)
