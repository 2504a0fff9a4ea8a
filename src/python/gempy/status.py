from enum import Enum, IntEnum

from .errors import InvalidStatusError


class GeminiStatus(IntEnum):
    INPUT = 10
    SENSITIVE_INPUT = 11
    SUCCESS = 20
    REDIRECT_TEMPORARY = 30
    REDIRECT_PERMANENT = 31
    TEMPORARY_FAILURE = 40
    SERVER_UNAVAILABLE = 41
    CGI_ERROR = 42
    PROXY_ERROR = 43
    SLOW_DOWN = 44
    PERMANENT_FAILURE = 50
    NOT_FOUND = 51
    GONE = 52
    PROXY_REQUEST_REFUSED = 53
    BAD_REQUEST = 59
    CLIENT_CERTIFICATE_REQUIRED = 60
    CERTIFICATE_NOT_AUTHORIZED = 61
    CERTIFICATE_NOT_VALID = 62


class StatusClass(Enum):
    INPUT = 1
    SUCCESS = 2
    REDIRECT = 3
    TEMPORARY_FAILURE = 4
    PERMANENT_FAILURE = 5
    CLIENT_CERTIFICATE_REQUIRED = 6


class MetaKind(Enum):
    PROMPT = "prompt"
    MIME_TYPE = "mime-type"
    REDIRECT_URL = "redirect-url"
    ERROR_MESSAGE = "error-message"


MIN_STATUS = 10
MAX_STATUS = 69


def validate_status(code: int) -> int:
    """Returns ``code`` as a plain int, or raises if it is not a two digit status in 10-69."""
    if isinstance(code, bool) or not isinstance(code, int):
        raise InvalidStatusError(f"Status code must be an integer, got {code!r}")
    if not MIN_STATUS <= code <= MAX_STATUS:
        raise InvalidStatusError(f"Status code {code} is outside the range {MIN_STATUS}-{MAX_STATUS}")
    return int(code)


def class_of(code: int) -> StatusClass:
    """
    Classifies a status code by its tens digit.

    Codes without an assigned name (e.g. 45 or 69) are still valid members of
    their class and carry the class's generic meaning.
    """
    return StatusClass(validate_status(code) // 10)


def is_success(code: int) -> bool:
    return 20 <= code < 30


def is_redirect(code: int) -> bool:
    return 30 <= code < 40


def meta_kind(code: int) -> MetaKind:
    status_class = class_of(code)
    if status_class is StatusClass.INPUT:
        return MetaKind.PROMPT
    if status_class is StatusClass.SUCCESS:
        return MetaKind.MIME_TYPE
    if status_class is StatusClass.REDIRECT:
        return MetaKind.REDIRECT_URL
    return MetaKind.ERROR_MESSAGE
