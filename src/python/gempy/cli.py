import argparse
import logging
import sys
from pathlib import Path

from .errors import GemError
from .gempy import FetchOptions, fetch
from .request import DEFAULT_PORT
from .server import GeminiServer, ServerConfig
from .static import StaticDirectoryHandler

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def parse_fetch_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fetch a resource over the Gemini protocol.")

    parser.add_argument("url", help="The URL to fetch (e.g., gemini://geminiprotocol.net/).")
    parser.add_argument("--host", help="Connect to this host instead of the URL's host.")
    parser.add_argument("--port", type=int, help="Connect to this port instead of the URL's port.")
    parser.add_argument("--input", help="Replace the URL's query with this input.")
    parser.add_argument("--ca-cert", action="append", default=[], type=Path, help="Extra PEM file to trust. May be repeated.")
    parser.add_argument("--timeout", type=float, default=30.0, help="Socket timeout in seconds.")
    parser.add_argument("--max-redirects", type=int, default=5, help="Maximum number of redirects to follow.")

    parser.add_argument('--safe', action='store_true', help="Print failure responses instead of exiting with an error.")
    parser.add_argument('--no-follow', action='store_false', dest='follow_redirects', help="Do not follow redirects.")
    parser.add_argument('--insecure', action='store_false', dest='verify', help="Accept any server certificate.")
    parser.add_argument('-v', '--verbose', action='store_true', help="Enable debug logging.")
    parser.set_defaults(follow_redirects=True, verify=True, safe=False)

    return parser.parse_args(argv)


def fetch_main(argv: list[str] | None = None) -> int:
    args = parse_fetch_args(argv)
    _setup_logging(args.verbose)

    try:
        options = FetchOptions(
            hostname=args.host,
            port=args.port,
            input=args.input,
            ca_certs=[path.read_text() for path in args.ca_cert],
            timeout=args.timeout,
            max_redirects=args.max_redirects,
            safe=args.safe,
            follow_redirects=args.follow_redirects,
            verify=args.verify,
        )
        with fetch(args.url, options) as response:
            print(f"{response.status} {response.meta or ''}", file=sys.stderr)
            for chunk in response.iter_body():
                sys.stdout.buffer.write(chunk)
            sys.stdout.buffer.flush()
    except (GemError, OSError, ValueError) as e:
        logger.error("%s", e)
        return 1

    return 0


def parse_serve_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve a directory over the Gemini protocol.")

    parser.add_argument("root", type=Path, help="Directory to serve.")
    parser.add_argument("--certfile", type=Path, required=True, help="Server certificate (PEM).")
    parser.add_argument("--keyfile", type=Path, required=True, help="Server private key (PEM).")
    parser.add_argument("--host", default="0.0.0.0", help="Address to listen on.")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Port to listen on.")
    parser.add_argument('-v', '--verbose', action='store_true', help="Enable debug logging.")

    return parser.parse_args(argv)


def serve_main(argv: list[str] | None = None) -> int:
    args = parse_serve_args(argv)
    _setup_logging(args.verbose)

    if not args.root.is_dir():
        logger.error("%s is not a directory", args.root)
        return 1

    config = ServerConfig(certfile=args.certfile, keyfile=args.keyfile, host=args.host, port=args.port)
    try:
        server = GeminiServer(config, StaticDirectoryHandler(args.root))
        server.bind()
    except OSError as e:
        logger.error("Cannot start server: %s", e)
        return 1

    try:
        server.listen(lambda port: logger.info("Serving %s on port %d", args.root, port))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        server.shutdown()

    return 0


if __name__ == "__main__":
    sys.exit(fetch_main())
