"""Command-line TFTP client: download a server file or upload standard input."""

from __future__ import annotations

import dataclasses
import re
import shutil
import socket
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Sequence

from .packets import (
    DATA_HEADER_SIZE,
    DEFAULT_BLOCK_SIZE,
    DEFAULT_PORT,
    MODE_OCTET,
    CheckResult,
    ErrorPacket,
    Opcode,
    Options,
    RequestPacket,
    read_opcode,
)
from .tracelog import log_packet
from .transfer import (
    Connection,
    TransferFailed,
    handle_ack,
    handle_data,
    handle_oack,
    receive_file,
    send_file,
)

MIN_ARGS = 4
MAX_ARGS = 8
CLIENT_TIMEOUT = 2

_HELP = (
    "NAME:\n"
    "  tftp-client - TFTP client\n"
    "\n"
    "USAGE:\n"
    "  Run client:\ttftp-client -h hostname [-p port] [-f filepath] -t dest_filepath\n"
    "  Show help:\ttftp-client --help\n"
    "\n"
    "OPTIONS:\n"
    "  -h <VALUE>\thostname or IPv4 address to connect to\n"
    "  -p <MODE>\thost port number to connect to (if not set, then 69)\n"
    "  -f <PATH>\tpath to the server file to download (if not set, then upload from stdin)\n"
    "  -t <PATH>\tpath to the file to save data in\n"
    "\n"
)

_ANY_LINE = re.compile(r".*")
_PORT = re.compile(r"[0-9]+")


class UsageError(Exception):
    """The command line is not valid."""


@dataclass(frozen=True)
class ClientArgs:
    """Parsed command line of the client."""

    host: str
    dest: str
    port: int = DEFAULT_PORT
    source: Optional[str] = None


def _take_value(items: Iterator[str], pattern: re.Pattern, message: str) -> str:
    value = next(items, None)
    if value is None or pattern.fullmatch(value) is None:
        raise UsageError(message)
    return value


def parse_args(argv: Sequence[str]) -> ClientArgs:
    """Parse the arguments (without the program name).

    Prints the help text and raises SystemExit(0) for ``--help``;
    raises UsageError for anything invalid.
    """
    argv = list(argv)
    if argv == ["--help"]:
        print(_HELP, end="")
        raise SystemExit(0)

    if not MIN_ARGS <= len(argv) <= MAX_ARGS:
        raise UsageError("invalid number of program arguments")

    host: Optional[str] = None
    port: Optional[int] = None
    source: Optional[str] = None
    source_seen = False
    dest: Optional[str] = None

    items = iter(argv)
    for flag in items:
        if flag == "-h" and host is None:
            host = _take_value(items, _ANY_LINE, "invalid format of IPv4 address")
        elif flag == "-p" and port is None:
            port = int(_take_value(items, _PORT, "invalid format of port"))
        elif flag == "-f" and not source_seen:
            source_seen = True
            source = _take_value(items, _ANY_LINE, "invalid source filepath (argument -f)")
        elif flag == "-t" and dest is None:
            dest = _take_value(
                items, _ANY_LINE, "invalid destination filepath (argument -t)"
            )
        else:
            raise UsageError(
                "invalid argument (the client is started using: "
                "'tftp-client -h hostname [-p port] [-f filepath] -t dest_filepath')"
            )

    if host is None or dest is None:
        raise UsageError("missing required argument (-h hostname or -t dest_filepath)")

    return ClientArgs(
        host=host,
        dest=dest,
        port=DEFAULT_PORT if port is None else port,
        source=source or None,
    )


def resolve_host(host: str, port: int) -> tuple[str, int]:
    """Resolve a host name or IPv4 address to the address to send to."""
    try:
        address = socket.gethostbyname(host)
    except (OSError, UnicodeError) as exc:
        raise UsageError(f"no such a host {host}") from exc
    return address, port & 0xFFFF


def _raise_peer_error(conn: Connection, data: bytes) -> None:
    packet = ErrorPacket.decode(data)
    log_packet(packet, conn.peer, conn.local_port())
    raise TransferFailed(f"peer reported error {packet.code}: {packet.message}")


def _receive_first_reply(
    conn: Connection, request: RequestPacket, data: bytes, out: BinaryIO, tid: int
) -> int:
    opcode = read_opcode(data)
    if opcode == Opcode.ERROR:
        _raise_peer_error(conn, data)

    if opcode == Opcode.OACK:
        accepted = handle_oack(conn, request.options, data)
        last = conn.send_ack(0)
        return receive_file(conn, accepted, out, last, MODE_OCTET, tid, 1)

    defaults = Options()
    if handle_data(conn, data, out, MODE_OCTET, defaults.timeout, 1) is not CheckResult.OK:
        raise TransferFailed("unexpected duplicate DATA block")
    last = conn.send_ack(1)
    if len(data) < defaults.blocksize + DATA_HEADER_SIZE:
        return 1
    return receive_file(conn, defaults, out, last, MODE_OCTET, tid, 2)


def download(conn: Connection, source: str, dest: str, options: Options) -> int:
    """Read ``source`` from the server into the local file ``dest``.

    Returns the number of the last block received. Raises TransferFailed;
    a partly written ``dest`` is removed.
    """
    dest_path = Path(dest)
    if dest_path.exists():
        raise TransferFailed("File - file to write to already exists")

    request = RequestPacket(
        Opcode.RRQ,
        source,
        MODE_OCTET,
        dataclasses.replace(options, transfer_size=0, order=list(options.order)),
    )
    packet = request.encode()
    conn.send(packet)
    data = conn.receive_retransmit(
        options.blocksize + DATA_HEADER_SIZE, options.timeout, packet, None
    )
    tid = conn.peer[1]

    try:
        with dest_path.open("wb") as out:
            return _receive_first_reply(conn, request, data, out, tid)
    except BaseException:
        dest_path.unlink(missing_ok=True)
        raise


def upload(conn: Connection, dest: str, stdin: BinaryIO, options: Options) -> int:
    """Write everything read from ``stdin`` to ``dest`` on the server.

    Returns the number of blocks sent. Raises TransferFailed.
    """
    with tempfile.TemporaryFile() as spool:
        shutil.copyfileobj(stdin, spool)
        size = spool.tell()

        request = RequestPacket(
            Opcode.WRQ,
            dest,
            MODE_OCTET,
            dataclasses.replace(
                options, transfer_size=size & 0xFFFFFFFF, order=list(options.order)
            ),
        )
        packet = request.encode()
        conn.send(packet)

        defaults = Options()
        data = conn.receive_retransmit(
            defaults.blocksize + DATA_HEADER_SIZE, defaults.timeout, packet, None
        )
        tid = conn.peer[1]

        opcode = read_opcode(data)
        if opcode == Opcode.ERROR:
            _raise_peer_error(conn, data)
        if opcode == Opcode.OACK:
            transfer_options = handle_oack(conn, request.options, data)
        else:
            if handle_ack(conn, data, 0, defaults.timeout) is not CheckResult.OK:
                raise TransferFailed("unexpected acknowledgement of the request")
            transfer_options = defaults

        spool.seek(0)
        return send_file(conn, spool, transfer_options, MODE_OCTET, tid)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the client; return the process exit status."""
    arguments = sys.argv[1:] if argv is None else list(argv)
    try:
        args = parse_args(arguments)
        address = resolve_host(args.host, args.port)
    except UsageError as exc:
        print(f"ERR: {exc}")
        return 1

    options = Options(blocksize=DEFAULT_BLOCK_SIZE, timeout=CLIENT_TIMEOUT)
    try:
        with Connection(socket.socket(socket.AF_INET, socket.SOCK_DGRAM), address) as conn:
            if args.source:
                download(conn, args.source, args.dest, options)
            else:
                upload(conn, args.dest, sys.stdin.buffer, options)
    except TransferFailed as exc:
        print(f"ERR: {exc}")
        return 1
    except KeyboardInterrupt:
        print("Client process closed by the interrupt signal")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())