"""One-line trace records of received packets, written to standard error."""

from __future__ import annotations

import sys
from typing import TextIO

from .packets import (
    AckPacket,
    DataPacket,
    ErrorPacket,
    OackPacket,
    Opcode,
    OptionName,
    Options,
    Packet,
    RequestPacket,
)


def format_options(options: Options) -> str:
    """Render the options in the order they arrived, each preceded by a space."""
    values = {
        OptionName.TSIZE: options.transfer_size,
        OptionName.TIMEOUT: options.timeout,
        OptionName.BLKSIZE: options.blocksize,
    }
    return "".join(f" {name.value}={values[name]}" for name in options.order)


def format_packet(packet: Packet, peer: tuple[str, int], local_port: int) -> str:
    """Build the trace line (without newline) for a packet from ``peer``."""
    host, port = peer[0], peer[1]
    source = f"{host}:{port}"
    if isinstance(packet, RequestPacket):
        kind = "RRQ" if packet.opcode == Opcode.RRQ else "WRQ"
        return f'{kind} {source} "{packet.filename}" {packet.mode}' + format_options(
            packet.options
        )
    if isinstance(packet, DataPacket):
        return f"DATA {source}:{local_port} {packet.block}"
    if isinstance(packet, AckPacket):
        return f"ACK {source} {packet.block}"
    if isinstance(packet, ErrorPacket):
        return f'ERROR {source}:{local_port} {packet.code} "{packet.message}" '
    if isinstance(packet, OackPacket):
        return f"OACK {source}" + format_options(packet.options)
    raise TypeError(f"cannot trace {type(packet).__name__}")


def log_packet(
    packet: Packet,
    peer: tuple[str, int],
    local_port: int,
    stream: TextIO | None = None,
) -> None:
    """Write the trace line for a packet to ``stream`` (standard error by default)."""
    out = sys.stderr if stream is None else stream
    out.write(format_packet(packet, peer, local_port) + "\n")
    out.flush()