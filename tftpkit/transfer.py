"""Reliable block transfer over UDP: retransmission, DATA/ACK exchange and netascii."""

from __future__ import annotations

import re
import select
import shutil
import socket
from typing import BinaryIO, Iterator, Optional

from .negotiation import negotiate_client
from .packets import (
    DATA_HEADER_SIZE,
    DEFAULT_BLOCK_SIZE,
    DEFAULT_TIMEOUT,
    MODE_NETASCII,
    AckPacket,
    CheckResult,
    DataPacket,
    ErrorCode,
    ErrorPacket,
    OackPacket,
    Opcode,
    Options,
    TftpError,
    parse_packet,
    read_opcode,
)
from .tracelog import log_packet

MAX_ATTEMPTS = 3
BACKOFF_MULTIPLIER = 2

_READ_CHUNK = 2048
_NETASCII_PAIR = re.compile(rb"\r([\n\x00])")

Address = tuple[str, int]


class TransferFailed(Exception):
    """The transfer was abandoned; the peer has been told where that applies."""


class Connection:
    """A UDP socket talking to one peer, which is learnt from received replies."""

    def __init__(
        self,
        sock: socket.socket,
        peer: Address,
        error_timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.sock = sock
        self.peer = peer
        self.error_timeout = error_timeout

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _send_to(self, data: bytes, address: Address) -> None:
        try:
            self.sock.sendto(data, address)
        except OSError as exc:
            print(f"ERROR: sendto - {exc}")

    def send(self, data: bytes) -> None:
        """Send a datagram to the current peer; a failed send is reported, not raised."""
        self._send_to(data, self.peer)

    def receive(
        self, size: int, timeout: float, attempt: int = 0
    ) -> Optional[tuple[bytes, Address]]:
        """Wait for one datagram; return it with its sender, or None on timeout.

        After a retransmission the wait is stretched to
        ``timeout * 2 * attempt``.
        """
        interval = timeout * BACKOFF_MULTIPLIER * attempt if attempt else timeout
        ready, _, _ = select.select([self.sock], [], [], interval)
        if not ready:
            print("recvfrom - timeout")
            return None
        data, address = self.sock.recvfrom(size)
        return data, (address[0], address[1])

    def _reject_stranger(self, data: bytes, address: Address) -> None:
        try:
            log_packet(parse_packet(data), address, self.local_port())
        except TftpError:
            pass
        error = ErrorPacket(
            ErrorCode.UNKNOWN_TID,
            "Invalid TID - Transfer ID doesn't match established communication",
        )
        self._send_to(error.encode(), address)

    def receive_retransmit(
        self,
        size: int,
        timeout: float,
        packet: bytes,
        expected_tid: Optional[int] = None,
    ) -> bytes:
        """Receive a reply, resending ``packet`` on each timeout.

        Datagrams from a port other than ``expected_tid`` are answered with
        an UNKNOWN_TID error and ignored. When ``expected_tid`` is None the
        sender of the reply becomes the peer. Raises TransferFailed after
        the last attempt times out.
        """
        attempt = 0
        while attempt < MAX_ATTEMPTS:
            try:
                received = self.receive(size, timeout, attempt)
            except OSError as exc:
                raise TransferFailed(f"receive failed: {exc}") from exc
            if received is None:
                self.send(packet)
                attempt += 1
                continue
            data, address = received
            if expected_tid is not None and address[1] != expected_tid:
                self._reject_stranger(data, address)
                continue
            self.peer = address
            return data
        raise TransferFailed("no response from the peer")

    def send_error(
        self,
        code: int,
        message: str,
        timeout: Optional[float] = None,
        wait: bool = True,
    ) -> bytes:
        """Send an ERROR packet and, if ``wait``, resend it while the peer keeps talking."""
        packet = ErrorPacket(int(code), message).encode()
        interval = self.error_timeout if timeout is None else timeout
        for attempt in range(MAX_ATTEMPTS):
            self.send(packet)
            if not wait:
                break
            try:
                reply = self.receive(DEFAULT_BLOCK_SIZE + DATA_HEADER_SIZE, interval, attempt)
            except OSError:
                break
            if reply is None:
                # most probably delivered
                break
        return packet

    def send_ack(self, block: int) -> bytes:
        """Send an ACK for ``block`` and return its bytes."""
        packet = AckPacket(block & 0xFFFF).encode()
        self.send(packet)
        return packet

    def local_port(self) -> int:
        """The port this connection's socket is bound to."""
        return self.sock.getsockname()[1]

    def close(self) -> None:
        self.sock.close()


def netascii_blocks(stream: BinaryIO, blocksize: int, mode: str) -> Iterator[bytes]:
    """Yield the blocks to send from ``stream``.

    In netascii mode LF becomes CR LF and CR becomes CR NUL. Every block
    but the last is exactly ``blocksize`` long; the last is shorter, and
    empty when the data fills whole blocks.
    """
    netascii = mode == MODE_NETASCII
    pending = bytearray()
    while True:
        chunk = stream.read(_READ_CHUNK)
        if not chunk:
            break
        if netascii:
            chunk = chunk.replace(b"\r", b"\r\x00").replace(b"\n", b"\r\n")
        pending += chunk
        while len(pending) >= blocksize:
            yield bytes(pending[:blocksize])
            del pending[:blocksize]
    yield bytes(pending)


def from_netascii(data: bytes) -> bytes:
    """Turn netascii line endings back into local ones: CR LF to LF, CR NUL to CR."""
    return _NETASCII_PAIR.sub(
        lambda match: b"\n" if match.group(1) == b"\n" else b"\r", data
    )


def _log(conn: Connection, packet) -> None:
    log_packet(packet, conn.peer, conn.local_port())


def _fail_on_error_packet(conn: Connection, data: bytes) -> None:
    if read_opcode(data) == Opcode.ERROR:
        packet = ErrorPacket.decode(data)
        _log(conn, packet)
        raise TransferFailed(f"peer reported error {packet.code}: {packet.message}")


def handle_data(
    conn: Connection,
    data: bytes,
    out: BinaryIO,
    mode: str,
    timeout: float,
    expected_block: int,
) -> CheckResult:
    """Check a received DATA packet and write its payload unless it is a duplicate."""
    packet = DataPacket.decode(data)
    _log(conn, packet)
    try:
        result = packet.check(expected_block)
    except TftpError as err:
        conn.send_error(err.code, err.message, timeout)
        raise TransferFailed(err.message) from err
    if result is CheckResult.DUPLICATE:
        return result
    payload = packet.data
    if mode == MODE_NETASCII:
        payload = from_netascii(payload)
    out.write(payload)
    return result


def handle_ack(
    conn: Connection, data: bytes, expected_block: int, timeout: float
) -> CheckResult:
    """Check a received ACK packet against the block that was sent."""
    packet = AckPacket.decode(data)
    _log(conn, packet)
    try:
        return packet.check(expected_block)
    except TftpError as err:
        conn.send_error(err.code, err.message, timeout)
        raise TransferFailed(err.message) from err


def handle_oack(conn: Connection, requested: Options, data: bytes) -> Options:
    """Accept or refuse an OACK; return the options the transfer will use."""
    packet = OackPacket.decode(data)
    _log(conn, packet)
    try:
        accepted = negotiate_client(requested, packet.options)
    except TftpError as err:
        conn.send_error(err.code, err.message)
        raise TransferFailed(err.message or "option negotiation failed") from err
    if requested.use_transfer_size and requested.transfer_size == 0:
        if shutil.disk_usage(".").free < packet.options.transfer_size:
            message = "Transfer size - not enough space on disk to download the file"
            conn.send_error(ErrorCode.DISK_FULL, message)
            raise TransferFailed(message)
    return accepted


def _dally(conn: Connection, size: int, timeout: float, last_packet: bytes) -> None:
    """Resend the final ACK while the sender keeps repeating its last block."""
    for _ in range(MAX_ATTEMPTS):
        try:
            reply = conn.receive(size, timeout, 0)
        except OSError:
            break
        if reply is None:
            break
        conn.send(last_packet)


def receive_file(
    conn: Connection,
    options: Options,
    out: BinaryIO,
    last_packet: bytes,
    mode: str,
    expected_tid: Optional[int],
    first_block: int = 1,
) -> int:
    """Receive DATA blocks into ``out``, acknowledging each; return the last block number.

    ``last_packet`` is the packet that started the exchange and is resent
    on timeouts until the first block arrives. Raises TransferFailed.
    """
    datagram_size = options.blocksize + DATA_HEADER_SIZE
    block = first_block
    while True:
        while True:
            data = conn.receive_retransmit(
                datagram_size, options.timeout, last_packet, expected_tid
            )
            _fail_on_error_packet(conn, data)
            result = handle_data(conn, data, out, mode, options.timeout, block)
            if result is CheckResult.OK:
                break
            conn.send(last_packet)
        last_packet = conn.send_ack(block)
        if len(data) < datagram_size:
            _dally(conn, datagram_size, options.timeout, last_packet)
            return block
        block += 1


def send_file(
    conn: Connection,
    source: BinaryIO,
    options: Options,
    mode: str,
    expected_tid: Optional[int],
) -> int:
    """Send ``source`` as DATA blocks, waiting for each ACK; return the blocks sent.

    Duplicate ACKs are ignored rather than answered, so that no block is
    sent twice because of them. Raises TransferFailed.
    """
    datagram_size = options.blocksize + DATA_HEADER_SIZE
    sent = 0
    for number, chunk in enumerate(netascii_blocks(source, options.blocksize, mode), start=1):
        packet = DataPacket(number & 0xFFFF, chunk).encode()
        conn.send(packet)
        while True:
            data = conn.receive_retransmit(
                datagram_size, options.timeout, packet, expected_tid
            )
            _fail_on_error_packet(conn, data)
            if handle_ack(conn, data, number, options.timeout) is CheckResult.OK:
                break
        sent = number
    return sent