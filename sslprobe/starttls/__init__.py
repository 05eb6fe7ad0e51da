"""STARTTLS negotiators — one coroutine per application protocol.

Each negotiator drives the plaintext exchange up to the point where the
server has agreed to start TLS, then returns with the connection untouched.
Negotiators register themselves against a ``StartTLSProtocol`` member::

    @negotiator(StartTLSProtocol.SMTP)
    async def negotiate_smtp(session: NegotiationSession) -> None: ...
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from sslprobe.models.types import StartTLSProtocol
from sslprobe.starttls.session import NegotiationSession
from sslprobe.utils.deadline import Deadline

logger = logging.getLogger(__name__)

Negotiator = Callable[[NegotiationSession], Awaitable[None]]

_NEGOTIATORS: dict[StartTLSProtocol, Negotiator] = {}


def negotiator(protocol: StartTLSProtocol) -> Callable[[Negotiator], Negotiator]:
    """Register the decorated coroutine as the negotiator for *protocol*."""
    if protocol is StartTLSProtocol.NONE:
        raise ValueError("cannot register a negotiator for the plain protocol")

    def decorator(fn: Negotiator) -> Negotiator:
        _NEGOTIATORS[protocol] = fn
        return fn

    return decorator


def get_negotiator(protocol: StartTLSProtocol) -> Negotiator | None:
    return _NEGOTIATORS.get(protocol)


def supported_protocols() -> list[StartTLSProtocol]:
    return sorted(_NEGOTIATORS, key=lambda p: p.value)


async def negotiate(
    protocol: StartTLSProtocol,
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    deadline: Deadline,
) -> None:
    """Run the STARTTLS exchange for *protocol*; a no-op for ``NONE``."""
    if protocol is StartTLSProtocol.NONE:
        return
    fn = _NEGOTIATORS.get(protocol)
    if fn is None:
        raise LookupError(f"no STARTTLS negotiator for {protocol.value!r}")

    session = NegotiationSession(protocol.value, reader, writer, deadline)
    await fn(session)
    logger.debug("%s STARTTLS accepted, ready for TLS", protocol.value)


# Negotiator modules register on import
from sslprobe.starttls import ftp, mail, postgres  # noqa: E402, F401

__all__ = [
    "NegotiationSession",
    "Negotiator",
    "get_negotiator",
    "negotiate",
    "negotiator",
    "supported_protocols",
]
