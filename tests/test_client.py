import contextlib
import io
import socket
import threading

import pytest

from tftpkit.client import (
    ClientArgs,
    UsageError,
    download,
    main,
    parse_args,
    resolve_host,
    upload,
)
from tftpkit.packets import (
    AckPacket,
    DataPacket,
    ErrorPacket,
    OackPacket,
    Opcode,
    Options,
    RequestPacket,
)
from tftpkit.transfer import Connection, TransferFailed


def _udp():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(5)
    return sock


@contextlib.contextmanager
def serving(script):
    listen = _udp()
    transfer = _udp()
    result = {}

    def run():
        try:
            result["value"] = script(listen, transfer)
        except Exception as exc:  # reported to the test below
            result["error"] = exc

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    try:
        yield listen.getsockname(), result
    finally:
        thread.join(10)
        listen.close()
        transfer.close()
    if "error" in result:
        raise result["error"]


@contextlib.contextmanager
def client_to(address):
    with Connection(_udp(), address) as conn:
        yield conn


# --- argument parsing -------------------------------------------------------


def test_parse_minimal_arguments():
    args = parse_args(["-h", "localhost", "-t", "out.bin"])
    assert args == ClientArgs(host="localhost", dest="out.bin", port=69, source=None)


def test_parse_all_arguments():
    args = parse_args(["-t", "dst", "-f", "src", "-p", "6969", "-h", "10.0.0.1"])
    assert args.host == "10.0.0.1"
    assert args.port == 6969
    assert args.source == "src"
    assert args.dest == "dst"


def test_parse_empty_source_means_upload():
    args = parse_args(["-h", "a", "-f", "", "-t", "b"])
    assert args.source is None


def test_parse_wrong_argument_count():
    with pytest.raises(UsageError, match="invalid number of program arguments"):
        parse_args(["-h", "a"])


def test_parse_invalid_port():
    with pytest.raises(UsageError, match="invalid format of port"):
        parse_args(["-h", "a", "-p", "12a", "-t", "b"])


def test_parse_repeated_flag():
    with pytest.raises(UsageError, match="invalid argument"):
        parse_args(["-h", "a", "-h", "b", "-t", "c"])


def test_parse_missing_destination():
    with pytest.raises(UsageError, match="missing required argument"):
        parse_args(["-h", "a", "-p", "70"])


def test_parse_flag_without_value():
    with pytest.raises(UsageError, match="invalid format of port"):
        parse_args(["-h", "a", "-t", "b", "-p"])


def test_parse_help(capsys):
    with pytest.raises(SystemExit) as info:
        parse_args(["--help"])
    assert info.value.code == 0
    assert "tftp-client -h hostname" in capsys.readouterr().out


# --- host resolution --------------------------------------------------------


def test_resolve_ip_address():
    assert resolve_host("127.0.0.1", 69) == ("127.0.0.1", 69)


def test_resolve_unknown_host():
    with pytest.raises(UsageError, match="no such a host"):
        resolve_host("no-such-host.invalid", 69)


# --- download ---------------------------------------------------------------


def test_download_single_block(tmp_path):
    def script(listen, transfer):
        request, addr = listen.recvfrom(1024)
        transfer.sendto(DataPacket(1, b"hello").encode(), addr)
        ack, _ = transfer.recvfrom(1024)
        return request, ack

    dest = tmp_path / "out.txt"
    with serving(script) as (address, outcome):
        with client_to(address) as conn:
            last = download(conn, "remote.txt", str(dest), Options(timeout=1))
    request_bytes, ack = outcome["value"]
    request = RequestPacket.decode(request_bytes)
    assert last == 1
    assert dest.read_bytes() == b"hello"
    assert request.opcode == Opcode.RRQ
    assert request.filename == "remote.txt"
    assert request.mode == "octet"
    assert ack == b"\x00\x04\x00\x01"


def test_download_refuses_existing_file(tmp_path):
    dest = tmp_path / "exists.txt"
    dest.write_bytes(b"keep")
    with client_to(("127.0.0.1", 9)) as conn:
        with pytest.raises(TransferFailed, match="already exists"):
            download(conn, "remote", str(dest), Options(timeout=1))
    assert dest.read_bytes() == b"keep"


def test_download_error_reply_removes_file(tmp_path):
    def script(listen, transfer):
        _, addr = listen.recvfrom(1024)
        transfer.sendto(ErrorPacket(1, "File not found").encode(), addr)

    dest = tmp_path / "missing.txt"
    with serving(script) as (address, _):
        with client_to(address) as conn:
            with pytest.raises(TransferFailed, match="File not found"):
                download(conn, "remote", str(dest), Options(timeout=1))
    assert not dest.exists()


# --- upload -----------------------------------------------------------------


def test_upload_without_options():
    payload = b"x" * 600

    def script(listen, transfer):
        request, addr = listen.recvfrom(1024)
        transfer.sendto(AckPacket(0).encode(), addr)
        blocks = []
        while True:
            packet = DataPacket.decode(transfer.recvfrom(1024)[0])
            blocks.append(packet)
            transfer.sendto(AckPacket(packet.block).encode(), addr)
            if len(packet.data) < 512:
                return request, blocks

    options = Options(timeout=1, use_transfer_size=True)
    with serving(script) as (address, outcome):
        with client_to(address) as conn:
            sent = upload(conn, "remote.bin", io.BytesIO(payload), options)
    request_bytes, blocks = outcome["value"]
    request = RequestPacket.decode(request_bytes)
    assert sent == len(blocks)
    assert b"".join(block.data for block in blocks) == payload
    assert [block.block for block in blocks] == list(range(1, len(blocks) + 1))
    assert request.opcode == Opcode.WRQ
    assert request.filename == "remote.bin"
    assert request.options.transfer_size == len(payload)


def test_upload_with_option_acknowledgement():
    payload = b"abcdefghijk"
    requested = Options(blocksize=8, use_blocksize=True, timeout=1)

    def script(listen, transfer):
        _, addr = listen.recvfrom(1024)
        transfer.sendto(OackPacket(Options(blocksize=8, use_blocksize=True)).encode(), addr)
        blocks = []
        while True:
            packet = DataPacket.decode(transfer.recvfrom(1024)[0])
            blocks.append(packet.data)
            transfer.sendto(AckPacket(packet.block).encode(), addr)
            if len(packet.data) < 8:
                return blocks

    with serving(script) as (address, outcome):
        with client_to(address) as conn:
            sent = upload(conn, "remote.bin", io.BytesIO(payload), requested)
    blocks = outcome["value"]
    assert sent == len(blocks)
    assert all(len(block) == 8 for block in blocks[:-1])
    assert b"".join(blocks) == payload


def test_upload_error_reply():
    def script(listen, transfer):
        _, addr = listen.recvfrom(1024)
        transfer.sendto(ErrorPacket(6, "File exists").encode(), addr)

    with serving(script) as (address, _):
        with client_to(address) as conn:
            with pytest.raises(TransferFailed, match="File exists"):
                upload(conn, "remote", io.BytesIO(b"data"), Options(timeout=1))


# --- main -------------------------------------------------------------------


def test_main_reports_usage_error(capsys):
    assert main(["-h", "a"]) == 1
    assert "ERR: invalid number of program arguments" in capsys.readouterr().out


def test_main_downloads_file(tmp_path):
    def script(listen, transfer):
        _, addr = listen.recvfrom(1024)
        transfer.sendto(DataPacket(1, b"content").encode(), addr)
        transfer.recvfrom(1024)

    dest = tmp_path / "saved.txt"
    with serving(script) as (address, _):
        status = main(["-h", "127.0.0.1", "-p", str(address[1]),
                       "-f", "remote", "-t", str(dest)])
    assert status == 0
    assert dest.read_bytes() == b"content"