"""
Command-line front end.

    # Receiver
    rtcp-end -p 6000 -f received.bin -m 1000 -c 10

    # Sender (giving -s selects sender mode)
    rtcp-end -p 5000 -s 10.0.0.2 -a 6000 -f data.bin -m 1000 -c 10

Exit status: 0 when the transfer completed, 1 when the connection was
aborted, 2 on bad arguments or an unusable file.
"""

import argparse
import logging
import sys
from typing import List, Optional

from .connection import ConnectionConfig, InitiatorConnection, ResponderConnection
from .files import FileSink, FileSource
from .segment import MAX_PAYLOAD


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def _port(value: str) -> int:
    port = int(value)
    if not 0 < port <= 65535:
        raise argparse.ArgumentTypeError(f"invalid port: {value}")
    return port


def _positive(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer: {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="rtcp-end",
        description="Reliable file transfer over UDP.",
    )
    p.add_argument("-p", dest="port", type=_port, required=True,
                   help="local port")
    p.add_argument("-s", dest="remote_ip",
                   help="remote IP address; selects sender mode")
    p.add_argument("-a", dest="remote_port", type=_port,
                   help="remote port (sender only)")
    p.add_argument("-f", dest="file", required=True,
                   help="file to send, or to create when receiving")
    p.add_argument("-m", dest="mtu", type=_positive, required=True,
                   help="maximum payload bytes per segment")
    p.add_argument("-c", dest="window", type=_positive, required=True,
                   help="window capacity in segments")
    p.add_argument("-v", "--verbose", action="store_true",
                   help="debug logging")
    return p


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.remote_ip is not None and args.remote_port is None:
        parser.error("the sender needs a remote port (-a)")
    if args.remote_ip is None and args.remote_port is not None:
        parser.error("-a only applies to the sender; give -s as well")
    if args.mtu > MAX_PAYLOAD:
        parser.error(f"-m cannot exceed {MAX_PAYLOAD}")
    return args


def run_sender(args: argparse.Namespace) -> int:
    config = ConnectionConfig(
        local_port=args.port,
        remote_address=(args.remote_ip, args.remote_port),
        max_payload=args.mtu,
        window_capacity=args.window,
    )
    try:
        source = FileSource(args.file, args.mtu)
    except OSError as e:
        logger.error(f"Cannot read {args.file}: {e}")
        return EXIT_USAGE

    try:
        ok = InitiatorConnection(config, source).run()
    finally:
        source.close()
    return EXIT_OK if ok else EXIT_FAILED


def run_receiver(args: argparse.Namespace) -> int:
    config = ConnectionConfig(
        local_port=args.port,
        max_payload=args.mtu,
        window_capacity=args.window,
    )
    try:
        sink = FileSink(args.file)
    except OSError as e:
        logger.error(f"Cannot create {args.file}: {e}")
        return EXIT_USAGE

    try:
        ok = ResponderConnection(config, sink).run()
    finally:
        sink.close()
    return EXIT_OK if ok else EXIT_FAILED


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s" if not args.verbose else "%(name)s %(levelname)s: %(message)s",
    )

    mode = "sender" if args.remote_ip is not None else "receiver"
    logger.debug(f"rtcp-end as {mode}: {vars(args)}")

    try:
        if mode == "sender":
            return run_sender(args)
        return run_receiver(args)
    except OSError as e:
        # Typically the local port is already taken
        logger.error(f"Cannot open the connection: {e}")
        return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
