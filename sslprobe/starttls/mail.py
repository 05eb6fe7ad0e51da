"""Mail protocol negotiators — SMTP, IMAP, POP3."""

from __future__ import annotations

from sslprobe.models.types import StartTLSProtocol
from sslprobe.starttls import negotiator
from sslprobe.starttls.session import NegotiationSession

# Fixed identity sent in EHLO; servers only log it
EHLO_HOSTNAME = "prober"

IMAP_TAG = "a001"


@negotiator(StartTLSProtocol.SMTP)
async def negotiate_smtp(session: NegotiationSession) -> None:
    """220 greeting, EHLO, 250 capabilities advertising STARTTLS, STARTTLS, 220."""
    await session.read_reply("greeting", "220")

    await session.send_line(f"EHLO {EHLO_HOSTNAME}", "ehlo")
    capabilities = await session.read_reply("ehlo", "250")
    # First line is the server's own hello, the rest are extension keywords
    keywords = {line[4:].strip().split(" ", 1)[0].upper() for line in capabilities[1:]}
    if "STARTTLS" not in keywords:
        raise session.fail("ehlo", "STARTTLS not advertised")

    await session.send_line("STARTTLS", "starttls")
    await session.read_reply("starttls", "220")


@negotiator(StartTLSProtocol.IMAP)
async def negotiate_imap(session: NegotiationSession) -> None:
    """``* OK`` greeting, tagged STARTTLS, tagged OK."""
    greeting = await session.read_line("greeting")
    if "* OK" not in greeting:
        raise session.fail("greeting", greeting)

    await session.send_line(f"{IMAP_TAG} STARTTLS", "starttls")
    while True:
        line = await session.read_line("starttls")
        if line.startswith("* "):
            continue
        status = line[len(IMAP_TAG) + 1:].split(" ", 1)[0].upper()
        if line.startswith(IMAP_TAG + " ") and status == "OK":
            return
        raise session.fail("starttls", line)


@negotiator(StartTLSProtocol.POP3)
async def negotiate_pop3(session: NegotiationSession) -> None:
    """``+OK`` greeting, STLS, ``+OK``."""
    greeting = await session.read_line("greeting")
    if not greeting.startswith("+OK"):
        raise session.fail("greeting", greeting)

    await session.send_line("STLS", "stls")
    reply = await session.read_line("stls")
    if not reply.startswith("+OK"):
        raise session.fail("stls", reply)
