"""PostgreSQL negotiator — binary SSLRequest preamble."""

from __future__ import annotations

import struct

from sslprobe.models.types import StartTLSProtocol
from sslprobe.starttls import negotiator
from sslprobe.starttls.session import NegotiationSession

# Int32 length (8) followed by the magic request code 1234.5679
SSL_REQUEST = struct.pack("!II", 8, 80877103)


@negotiator(StartTLSProtocol.POSTGRES)
async def negotiate_postgres(session: NegotiationSession) -> None:
    await session.write(SSL_REQUEST, "sslrequest")
    answer = await session.read_exactly(1, "sslrequest")
    if answer == b"N":
        raise session.fail("sslrequest", "server does not support TLS")
    if answer != b"S":
        raise session.fail("sslrequest", answer.decode("latin-1"))
