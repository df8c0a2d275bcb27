# run_server.py
import argparse
import logging
import os
import sys

from server_app.server import Server
from common.protocol import HOST, PORT, MAX_WORKERS, SOCKET_TIMEOUT


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Share a folder over the file sharing protocol.")
    parser.add_argument("shared_folder", help="directory exposed to clients")
    parser.add_argument("--host", default=HOST)
    parser.add_argument("--port", type=int, default=PORT)
    parser.add_argument("--max-workers", type=int, default=MAX_WORKERS,
                        help="connections served at the same time")
    parser.add_argument("--timeout", type=float, default=SOCKET_TIMEOUT,
                        help="seconds a connection may stay idle")
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(threadName)s %(message)s",
    )
    if not os.path.isdir(args.shared_folder):
        print("Shared folder must be a directory.", file=sys.stderr)
        return 1
    server = Server(args.host, args.port, args.shared_folder, args.max_workers, args.timeout)
    try:
        server.start()
    except OSError:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
