"""Network utilities — target parsing and deadline-bounded TCP connect."""

from __future__ import annotations

import asyncio
import logging

from sslprobe.errors import DialError
from sslprobe.utils.deadline import Deadline

logger = logging.getLogger(__name__)

# How long a close may wait for the peer (TLS close_notify) before giving up
CLOSE_TIMEOUT = 1.0


def split_host_port(target: str) -> tuple[str, int]:
    """Split ``host:port`` / ``[v6]:port`` into its parts.

    Raises ValueError for anything else.
    """
    host, sep, port_str = target.rpartition(":")
    if not sep or not host or not port_str:
        raise ValueError(f"missing port in address {target!r}")
    if host.startswith("["):
        if not host.endswith("]"):
            raise ValueError(f"unbalanced brackets in address {target!r}")
        host = host[1:-1]
    elif ":" in host:
        raise ValueError(f"too many colons in address {target!r}")
    if not host:
        raise ValueError(f"missing host in address {target!r}")
    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"invalid port in address {target!r}") from None
    if not 0 < port < 65536:
        raise ValueError(f"port out of range in address {target!r}")
    return host, port


async def dial(
    target: str, deadline: Deadline,
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Open a plain TCP connection to *target*, bounded by *deadline*."""
    try:
        host, port = split_host_port(target)
    except ValueError as e:
        raise DialError(str(e)) from e

    logger.debug("Dialing %s:%d (%.2fs left)", host, port, deadline.remaining())
    try:
        return await deadline.run(asyncio.open_connection(host, port), "dial")
    except (OSError, UnicodeError) as e:
        # UnicodeError: the host is not a valid IDNA name
        raise DialError(f"dial {target}: {e}") from e


async def close(writer: asyncio.StreamWriter, deadline: Deadline | None = None) -> None:
    """Close a stream, waiting briefly for the peer.

    The wait never runs past *deadline*; once it has expired the transport is
    aborted straight away.
    """
    timeout = CLOSE_TIMEOUT
    if deadline is not None:
        timeout = min(timeout, deadline.remaining())
    writer.close()
    try:
        await asyncio.wait_for(writer.wait_closed(), timeout=timeout)
    except (OSError, TimeoutError) as e:
        logger.debug("Close of %s did not finish cleanly: %s",
                     writer.get_extra_info("peername"), e)
        writer.transport.abort()
