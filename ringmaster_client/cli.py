"""
ringtostdout -- attach to a ring buffer as a consumer and copy all of
its data to stdout.

Run::

    ringtostdout --ring events
    ringtostdout --directory /dev/shm --ring events --port 30000 \\
        --comment "to client on host spdaq42"

The RingMaster launches this program with stdout connected to a socket
to the remote reader.  Streaming is meant to run forever, so every exit
is a failure exit.  Diagnostics go to stderr; stdout carries only ring
data.
"""

import sys
import logging
import argparse

from . import __version__
from .client import attach_consumer
from .config import ClientConfig
from .discovery import DEFAULT_PORT
from .exceptions import RingClientError
from .utils import default_ring_directory

logger = logging.getLogger("ringclient.cli")

EXIT_FAILURE = 255


def _port(text: str) -> int:
    try:
        port = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"The port number {text} must be an unsigned integer."
        ) from None
    if not 0 < port <= 0xFFFF:
        raise argparse.ArgumentTypeError(
            f"The port number {text} must be an unsigned 16-bit integer."
        )
    return port


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ringtostdout",
        description="Attach to a ring buffer as a consumer and copy its data to stdout.",
    )
    parser.add_argument(
        "--directory",
        "-d",
        default=default_ring_directory(),
        metavar="DIRECTORY",
        help="Directory of ring buffer files managed by the ringmaster "
        "(default: %(default)s)",
    )
    parser.add_argument(
        "--ring",
        "-r",
        required=True,
        metavar="RINGBUFFER",
        help="Name of the ring buffer to take data from",
    )
    parser.add_argument(
        "--port",
        "-p",
        type=_port,
        default=DEFAULT_PORT,
        metavar="PORTMAN_PORT",
        help="TCP port the port manager listens on (default: %(default)s)",
    )
    parser.add_argument(
        "--comment",
        "-c",
        default="",
        metavar="COMMENT",
        help="Where the data is going; shown in diagnostics only",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log debug detail to stderr",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def parse_args(argv=None) -> tuple[ClientConfig, bool]:
    """Parse *argv* into a :class:`ClientConfig` and the verbose flag.

    Invalid values end the program through ``parser.error``.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = ClientConfig(
            ring=args.ring,
            directory=args.directory,
            port=args.port,
            comment=args.comment,
        )
    except ValueError as exc:
        parser.error(str(exc))
    return config, args.verbose


def main(argv=None) -> int:
    """Entry point.  Returns the process exit status, never 0."""
    config, verbose = parse_args(argv)
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )
    logger.info("%r", config)
    if config.comment:
        logger.info("ringtostdout %s: %s", config.ring, config.comment)

    try:
        with attach_consumer(
            config.ring_path,
            config.port,
            host=config.host,
            service=config.service,
            timeout=config.connect_timeout,
        ) as client:
            client.stream_to(sys.stdout.buffer, timeout=config.poll_timeout)
    except RingClientError as exc:
        logger.error("%s (%s)", exc, exc.kind)
        return EXIT_FAILURE

    logger.error("Streaming from ring '%s' ended", config.ring)
    return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
