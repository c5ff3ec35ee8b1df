"""TFTP server: serves files from a root directory, one thread per transfer."""

from __future__ import annotations

import os
import re
import select
import shutil
import socket
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional, Sequence

from .negotiation import negotiate_server, select_oack_options
from .packets import (
    DATA_HEADER_SIZE,
    DEFAULT_BLOCK_SIZE,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT,
    CheckResult,
    ErrorCode,
    ErrorPacket,
    OackPacket,
    Opcode,
    Options,
    RequestPacket,
    TftpError,
    read_opcode,
)
from .tracelog import log_packet
from .transfer import Connection, TransferFailed, handle_ack, receive_file, send_file

MIN_ARGS = 1
MAX_ARGS = 3

_HELP = (
    "NAME:\n"
    "  tftp-server - TFTP server\n"
    "\n"
    "USAGE:\n"
    "  Run server:\ttftp-server [-p port] root_dirpath\n"
    "  Show help:\ttftp-server --help\n"
    "\n"
    "OPTIONS:\n"
    "  -p <MODE>\thost port number to connect to (if not set, then 69)\n"
    "  root_dirpath\tpath to the server directory to upload files to and download files from\n"
    "\n"
)

_PORT = re.compile(r"[0-9]+")


class UsageError(Exception):
    """The command line is not valid."""


@dataclass(frozen=True)
class ServerArgs:
    """Parsed command line of the server."""

    root: str
    port: int = DEFAULT_PORT


def parse_args(argv: Sequence[str]) -> ServerArgs:
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

    port: Optional[int] = None
    root: Optional[str] = None

    items = iter(argv)
    for arg in items:
        if arg == "-p" and port is None:
            value = next(items, None)
            if value is None or _PORT.fullmatch(value) is None:
                raise UsageError("invalid format of port")
            port = int(value)
        elif root is None:
            root = arg
        else:
            raise UsageError(
                "invalid argument (the server is started using: "
                "'tftp-server [-p port] root_dirpath')"
            )

    if root is None:
        raise UsageError("missing required argument (root_dirpath)")

    return ServerArgs(root=root, port=DEFAULT_PORT if port is None else port)


class TftpServer:
    """Listens for RRQ/WRQ requests and handles each on its own socket and thread."""

    def __init__(
        self,
        root: str,
        port: int = DEFAULT_PORT,
        host: str = "0.0.0.0",
        error_timeout: float = DEFAULT_TIMEOUT,
        poll_interval: float = 0.5,
    ) -> None:
        self.root = root
        self.error_timeout = error_timeout
        self.poll_interval = poll_interval
        self.supported = Options(
            use_blocksize=True, use_transfer_size=True, use_timeout=True
        )
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            self.sock.bind((host, port & 0xFFFF))
        except OSError:
            self.sock.close()
            raise
        self.address: tuple[str, int] = self.sock.getsockname()
        self._stop = threading.Event()
        self._idle = threading.Event()
        self._idle.set()

    def __enter__(self) -> "TftpServer":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def serve_forever(self) -> None:
        """Accept requests until shutdown() is called; each runs in a new thread."""
        self._stop.clear()
        self._idle.clear()
        try:
            while not self._stop.is_set():
                ready, _, _ = select.select([self.sock], [], [], self.poll_interval)
                if not ready:
                    continue
                data, address = self.sock.recvfrom(DEFAULT_BLOCK_SIZE + DATA_HEADER_SIZE)
                worker = threading.Thread(
                    target=self.handle_request,
                    args=(data, (address[0], address[1])),
                    daemon=True,
                )
                worker.start()
        finally:
            self._idle.set()

    def handle_request(self, data: bytes, peer: tuple[str, int]) -> bool:
        """Handle one initial packet from ``peer``; return True if the transfer completed."""
        tid = peer[1]
        if read_opcode(data) == Opcode.ERROR:
            log_packet(ErrorPacket.decode(data), peer, self.address[1])
            return False

        with Connection(self._new_socket(), peer, self.error_timeout) as conn:
            request = RequestPacket.decode(data)
            log_packet(request, peer, conn.local_port())
            try:
                request.validate()
            except TftpError as err:
                conn.send_error(err.code, err.message)
                return False

            path = f"{self.root}/{request.filename}"
            try:
                if request.opcode == Opcode.RRQ:
                    self._serve_read(conn, request, path, tid)
                else:
                    self._serve_write(conn, request, Path(path), tid)
            except TransferFailed:
                return False
        return True

    def shutdown(self) -> None:
        """Stop serve_forever() and close the listening socket."""
        self._stop.set()
        self._idle.wait()
        self.sock.close()

    def _new_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.bind((self.address[0], 0))
        return sock

    def _negotiate(self, conn: Connection, requested: Options) -> Options:
        try:
            return negotiate_server(requested, self.supported)
        except TftpError as err:
            conn.send_error(err.code, err.message)
            raise TransferFailed(err.message) from err

    def _serve_read(
        self, conn: Connection, request: RequestPacket, path: str, tid: int
    ) -> None:
        try:
            source = open(path, "rb")
        except OSError as exc:
            message = "File - file to read from doesn't exists"
            conn.send_error(ErrorCode.FILE_NOT_FOUND, message)
            raise TransferFailed(message) from exc

        with source:
            requested = request.options
            if requested.any_requested():
                negotiated = self._negotiate(conn, requested)
                size = os.fstat(source.fileno()).st_size & 0xFFFFFFFF
                oack = OackPacket(select_oack_options(requested, negotiated, size)).encode()
                conn.send(oack)
                reply = conn.receive_retransmit(
                    negotiated.blocksize + DATA_HEADER_SIZE, negotiated.timeout, oack, tid
                )
                if read_opcode(reply) == Opcode.ERROR:
                    packet = ErrorPacket.decode(reply)
                    log_packet(packet, conn.peer, conn.local_port())
                    raise TransferFailed(packet.message)
                if handle_ack(conn, reply, 0, negotiated.timeout) is not CheckResult.OK:
                    raise TransferFailed("unexpected acknowledgement of the OACK")
            else:
                negotiated = Options()
            send_file(conn, source, negotiated, request.mode, tid)

    def _serve_write(
        self, conn: Connection, request: RequestPacket, target: Path, tid: int
    ) -> None:
        exists_message = "File - file to write to already exists"
        if target.exists():
            conn.send_error(ErrorCode.FILE_EXISTS, exists_message)
            raise TransferFailed(exists_message)

        requested = request.options
        if requested.use_transfer_size:
            if shutil.disk_usage(".").free < requested.transfer_size:
                message = "Transfer size - not enough space on disk to download the file"
                conn.send_error(ErrorCode.DISK_FULL, message)
                raise TransferFailed(message)

        try:
            out: BinaryIO = target.open("xb")
        except FileExistsError as exc:
            conn.send_error(ErrorCode.FILE_EXISTS, exists_message)
            raise TransferFailed(exists_message) from exc
        except OSError as exc:
            conn.send_error(ErrorCode.ACCESS_VIOLATION, str(exc))
            raise TransferFailed(str(exc)) from exc

        try:
            with out:
                if requested.any_requested():
                    negotiated = self._negotiate(conn, requested)
                    oack = OackPacket(
                        select_oack_options(requested, negotiated, requested.transfer_size)
                    ).encode()
                    conn.send(oack)
                    first = oack
                else:
                    negotiated = Options()
                    first = conn.send_ack(0)
                receive_file(conn, negotiated, out, first, request.mode, tid, 1)
        except BaseException:
            target.unlink(missing_ok=True)
            raise


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the server; return the process exit status."""
    arguments = sys.argv[1:] if argv is None else list(argv)
    try:
        args = parse_args(arguments)
    except UsageError as exc:
        print(f"ERR: {exc}")
        return 1

    try:
        server = TftpServer(args.root, args.port)
    except OSError:
        print("ERR: bind has failed")
        return 1

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("Main server process closed by the interrupt signal")
        return 1
    except OSError:
        print("ERROR: recvfrom - server initialization communication (RRQ or WRQ)")
        return 1
    finally:
        server.shutdown()

    print("End of the transfer")
    return 0


if __name__ == "__main__":
    sys.exit(main())