"""Negotiation of transfer options (blksize, timeout, tsize)."""

from __future__ import annotations

import dataclasses

from .packets import DEFAULT_BLOCK_SIZE, DEFAULT_TIMEOUT, ErrorCode, Options, TftpError

MIN_BLOCKSIZE = 8
MAX_BLOCKSIZE = 65464
MIN_TIMEOUT = 1
MAX_TIMEOUT = 255


def _copy(options: Options) -> Options:
    return dataclasses.replace(options, order=list(options.order))


def negotiate_client(requested: Options, offered: Options) -> Options:
    """Check the options a server acknowledged against what the client asked for.

    Returns the options to use for the transfer. Raises TftpError with
    ``OPTIONS_FAILED`` when the server's answer is not acceptable.
    """
    if (
        (offered.use_blocksize and not requested.use_blocksize)
        or (offered.use_timeout and not requested.use_timeout)
        or (offered.use_transfer_size and not requested.use_transfer_size)
    ):
        # the server must not acknowledge an option the client did not request
        raise TftpError(ErrorCode.OPTIONS_FAILED, "")

    accepted = _copy(requested)

    if requested.use_blocksize and offered.use_blocksize:
        if (
            requested.blocksize < offered.blocksize
            or not MIN_BLOCKSIZE <= offered.blocksize <= MAX_BLOCKSIZE
        ):
            raise TftpError(
                ErrorCode.OPTIONS_FAILED, "Block size - offered value was not accepted"
            )
        accepted.blocksize = offered.blocksize
    else:
        accepted.blocksize = DEFAULT_BLOCK_SIZE

    if requested.use_timeout and offered.use_timeout:
        if (
            requested.timeout != offered.timeout
            or not MIN_TIMEOUT <= offered.timeout <= MAX_TIMEOUT
        ):
            raise TftpError(
                ErrorCode.OPTIONS_FAILED,
                "Timeout interval - offered value was not accepted",
            )
    else:
        accepted.timeout = DEFAULT_TIMEOUT

    return accepted


def negotiate_server(requested: Options, supported: Options) -> Options:
    """Work out the server's transfer options from a client's request.

    Returns a copy of ``supported`` with the block size and timeout set.
    Raises TftpError with ``OPTIONS_FAILED`` when a requested value is out of range.
    """
    result = _copy(supported)

    if requested.use_blocksize and supported.use_blocksize:
        if not MIN_BLOCKSIZE <= requested.blocksize <= MAX_BLOCKSIZE:
            raise TftpError(
                ErrorCode.OPTIONS_FAILED,
                "Block size - offered value is outside of range of alloved values "
                "<8, 65464>",
            )
        result.blocksize = requested.blocksize
    else:
        result.blocksize = DEFAULT_BLOCK_SIZE

    if requested.use_timeout and supported.use_timeout:
        if not MIN_TIMEOUT <= requested.timeout <= MAX_TIMEOUT:
            raise TftpError(
                ErrorCode.OPTIONS_FAILED,
                "Timeout interval - offered value is outside of range of alloved values "
                "<1, 255>",
            )
        result.timeout = requested.timeout
    else:
        result.timeout = DEFAULT_TIMEOUT

    return result


def select_oack_options(requested: Options, supported: Options, transfer_size: int) -> Options:
    """Choose which options go into an OACK: only those the client requested.

    ``transfer_size`` is reported for tsize when the client asked for it.
    """
    result = _copy(supported)
    if not requested.use_blocksize:
        result.use_blocksize = False
    if not requested.use_timeout:
        result.use_timeout = False
    if not requested.use_transfer_size:
        result.use_transfer_size = False
    else:
        result.transfer_size = transfer_size
    return result