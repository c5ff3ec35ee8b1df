import io

import pytest

from tftpkit.packets import (
    AckPacket,
    DataPacket,
    ErrorPacket,
    OackPacket,
    Opcode,
    Options,
    RequestPacket,
)
from tftpkit.tracelog import format_options, format_packet, log_packet

PEER = ("10.0.0.1", 4000)
LOCAL = 5000


def test_ack_line():
    assert format_packet(AckPacket(7), PEER, LOCAL) == "ACK 10.0.0.1:4000 7"


def test_data_line_includes_local_port():
    assert format_packet(DataPacket(3, b"abc"), PEER, LOCAL) == "DATA 10.0.0.1:4000:5000 3"


def test_error_line():
    line = format_packet(ErrorPacket(1, "File not found"), PEER, LOCAL)
    assert line == 'ERROR 10.0.0.1:4000:5000 1 "File not found" '


def test_options_follow_arrival_order():
    options = Options.decode(b"blksize\x001024\x00tsize\x000\x00")
    text = format_options(options)
    assert text.index("blksize=1024") < text.index("tsize=0")
    assert text.startswith(" ")


def test_options_empty_when_none_received():
    assert format_options(Options(use_blocksize=True)) == ""


def test_request_line_kind_and_fields():
    packet = RequestPacket.decode(
        RequestPacket(Opcode.RRQ, "file.txt", "octet", Options(use_timeout=True, timeout=3)).encode()
    )
    line = format_packet(packet, PEER, LOCAL)
    assert line.startswith("RRQ ")
    assert '"file.txt"' in line
    assert line.endswith(format_options(packet.options))
    assert "timeout=3" in line


def test_write_request_is_labelled_wrq():
    line = format_packet(RequestPacket(Opcode.WRQ, "up.bin"), PEER, LOCAL)
    assert line.split()[0] == "WRQ"


def test_oack_line_contains_options():
    packet = OackPacket.decode(OackPacket(Options(use_blocksize=True, blocksize=1024)).encode())
    line = format_packet(packet, PEER, LOCAL)
    assert line == f"OACK {PEER[0]}:{PEER[1]}" + format_options(packet.options)
    assert "blksize=1024" in line


def test_log_packet_writes_line_to_stream():
    stream = io.StringIO()
    packet = AckPacket(2)
    log_packet(packet, PEER, LOCAL, stream)
    assert stream.getvalue() == format_packet(packet, PEER, LOCAL) + "\n"


def test_log_packet_defaults_to_stderr(capsys):
    packet = DataPacket(1, b"x")
    log_packet(packet, PEER, LOCAL)
    captured = capsys.readouterr()
    assert captured.err == format_packet(packet, PEER, LOCAL) + "\n"
    assert captured.out == ""


def test_unknown_object_raises():
    with pytest.raises(TypeError):
        format_packet(object(), PEER, LOCAL)