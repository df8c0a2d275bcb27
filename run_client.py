# run_client.py
import argparse
import logging
import os
import sys

from client_app.client import Client, describe_error
from common.errors import FileShareError
from common.protocol import PORT, SOCKET_TIMEOUT


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Talk to a file sharing server.")
    parser.add_argument("server_host")
    parser.add_argument("local_folder")
    parser.add_argument("--port", type=int, default=PORT)
    parser.add_argument("--timeout", type=float, default=SOCKET_TIMEOUT)
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("local", help="list files in the local folder")
    commands.add_parser("remote", help="list files on the server")
    upload = commands.add_parser("upload", help="send a local file to the server")
    upload.add_argument("filename")
    download = commands.add_parser("download", help="fetch a file from the server")
    download.add_argument("filename")
    download.add_argument("--to", dest="destination", help="save under this path instead")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=logging.WARNING)
    if not os.path.isdir(args.local_folder):
        print("Local folder must be a directory.", file=sys.stderr)
        return 1
    client = Client(args.server_host, args.port, args.local_folder, args.timeout)
    try:
        if args.command == "local":
            for name in sorted(client.list_local_files()):
                print(name)
        elif args.command == "remote":
            for name in sorted(client.list_remote_files()):
                print(name)
        elif args.command == "upload":
            size = client.upload(args.filename)
            print(f"Uploaded '{args.filename}' ({size} bytes).")
        elif args.command == "download":
            path = client.download(args.filename, args.destination)
            print(f"Downloaded '{args.filename}' to {path}")
    except FileShareError as e:
        print(describe_error(e), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
