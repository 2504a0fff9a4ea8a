import logging
import mimetypes
from pathlib import Path
from urllib.parse import unquote

from .request import GEMINI_SCHEME, GeminiRequest
from .response import DEFAULT_MIME_TYPE, GeminiResponse
from .status import GeminiStatus

logger = logging.getLogger(__name__)

GEMTEXT_SUFFIXES = {".gmi", ".gemini"}
INDEX_FILE = "index.gmi"


def guess_mime_type(path: Path) -> str:
    if path.suffix.lower() in GEMTEXT_SUFFIXES:
        return DEFAULT_MIME_TYPE
    mime_type, _ = mimetypes.guess_type(path.name)
    return mime_type or "application/octet-stream"


class StaticDirectoryHandler:
    """Serves the files below ``root``, using ``index.gmi`` for directories."""

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    def __call__(self, request: GeminiRequest, response: GeminiResponse) -> None:
        if request.scheme != GEMINI_SCHEME:
            response.set_status(GeminiStatus.PROXY_REQUEST_REFUSED, "Only gemini:// URLs are served")
            return

        url_path = unquote(request.path)
        if "\0" in url_path:
            logger.warning("Refusing path with a NUL byte: %r", url_path)
            response.set_status(GeminiStatus.BAD_REQUEST, "Bad request")
            return

        target = (self.root / url_path.lstrip("/")).resolve()
        if not target.is_relative_to(self.root):
            logger.warning("Refusing path outside of %s: %s", self.root, url_path)
            response.set_status(GeminiStatus.BAD_REQUEST, "Bad request")
            return

        if target.is_dir():
            if not url_path.endswith("/"):
                response.set_status(GeminiStatus.REDIRECT_PERMANENT, request.path + "/")
                return
            target = target / INDEX_FILE

        if not target.is_file():
            response.set_status(GeminiStatus.NOT_FOUND, "Not found")
            return

        with target.open("rb") as f:
            response.set_status(GeminiStatus.SUCCESS, guess_mime_type(target)).send(f)
