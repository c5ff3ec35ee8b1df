# tftpkit

A TFTP client and server for UDP file transfer. It has the `blksize`,
`timeout` and `tsize` option extensions, octet and netascii modes,
retransmission with a growing wait after each resend, and checks on
transfer IDs: a datagram from an unexpected port is answered with an
"unknown TID" error and ignored.

## Installation

```
pip install .
```

## Client

Download a file from a server:

```
tftp-client -h 192.0.2.10 -p 69 -f remote/file.txt -t local_copy.txt
```

Upload standard input to a server under the name given with `-t`:

```
tftp-client -h tftp.example.com -t uploaded.bin < data.bin
```

Options:

- `-h HOST`: host name or IPv4 address of the server (required)
- `-p PORT`: server port (default 69)
- `-f PATH`: file on the server to download. Without this option the client uploads from standard input.
- `-t PATH`: destination path (required)
- `--help`: print usage and exit

The client will not overwrite a local file that already exists. If a
download fails, the client removes the partial file. Standard input is
copied to a temporary file before an upload so that its size is known.
The client exits with status 0 on success and 1 on any error.

## Server

```
tftp-server -p 6969 /srv/tftp
```

The server answers read and write requests for files under the given
root directory (default port 69). Each request is handled on its own
socket in its own thread. It refuses to overwrite an existing file on
upload, refuses an upload whose announced `tsize` is larger than the free
space, accepts the `blksize` (8–65464) and `timeout` (1–255) options and
reports the file size when a client asks for `tsize` on a download.

Each received packet is logged to standard error, for example:

```
RRQ 192.0.2.20:50123 "file.txt" octet blksize=1024
ACK 192.0.2.20:50123 3
```

`TftpServer` can also be used from code:

```python
import threading
from tftpkit.server import TftpServer

server = TftpServer("/srv/tftp", port=6969)
threading.Thread(target=server.serve_forever, daemon=True).start()
# ...
server.shutdown()
```

## Library use

The packet codec in `tftpkit.packets` can be used on its own:

```python
from tftpkit.packets import AckPacket, parse_packet

raw = AckPacket(block=7).encode()
packet = parse_packet(raw)
assert packet.block == 7
```

- `tftpkit.packets`: packet classes (`RequestPacket`, `DataPacket`,
  `AckPacket`, `ErrorPacket`, `OackPacket`), `Options`, `parse_packet`
  and `TftpError`.
- `tftpkit.negotiation`: `negotiate_client`, `negotiate_server` and
  `select_oack_options`.
- `tftpkit.tracelog`: `format_packet` and `log_packet` for the trace lines.
- `tftpkit.transfer`: `Connection`, `send_file`, `receive_file` and the
  netascii helpers `netascii_blocks` and `from_netascii`.

## Limitations

- The client always transfers in octet mode and does not request any
  options; only the server side negotiates them.
- The server joins the root directory and the requested file name as
  given; it does not keep requests inside the root directory.

## Tests

```
pip install .[test]
pytest
```