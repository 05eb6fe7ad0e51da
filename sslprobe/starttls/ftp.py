"""FTP negotiator — explicit FTPS via AUTH TLS (RFC 4217)."""

from __future__ import annotations

from sslprobe.models.types import StartTLSProtocol
from sslprobe.starttls import negotiator
from sslprobe.starttls.session import NegotiationSession


@negotiator(StartTLSProtocol.FTP)
async def negotiate_ftp(session: NegotiationSession) -> None:
    await session.read_reply("greeting", "220")
    await session.send_line("AUTH TLS", "auth")
    await session.read_reply("auth", "234")
