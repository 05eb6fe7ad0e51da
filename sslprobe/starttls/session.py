"""NegotiationSession — deadline-bounded line I/O over the plaintext stream."""

from __future__ import annotations

import asyncio
import logging
import re

from sslprobe.errors import NegotiationError
from sslprobe.utils.deadline import Deadline

logger = logging.getLogger(__name__)

_REPLY_LINE_RE = re.compile(r"^(\d{3})([ -]|$)")


class NegotiationSession:
    """Plaintext exchange state for one STARTTLS negotiation.

    Owned by a single negotiator call; it never writes anything the
    negotiator did not ask for and is dropped once the upgrade is confirmed.
    """

    def __init__(
        self,
        protocol: str,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        deadline: Deadline,
    ) -> None:
        self.protocol = protocol
        self.reader = reader
        self.writer = writer
        self.deadline = deadline

    def fail(self, step: str, reply: str = "") -> NegotiationError:
        return NegotiationError(self.protocol, step, reply)

    def _stage(self, step: str) -> str:
        return f"{self.protocol} {step}"

    async def read_line(self, step: str) -> str:
        """Read one CRLF/LF terminated line, without the terminator."""
        try:
            raw = await self.deadline.run(self.reader.readline(), self._stage(step))
        except ValueError as e:
            # StreamReader limit overrun
            raise self.fail(step, f"line too long: {e}") from e
        except OSError as e:
            raise self.fail(step, str(e)) from e
        if not raw:
            raise self.fail(step, "connection closed by peer")
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        logger.debug("%s S: %s", self.protocol, line)
        return line

    async def send_line(self, line: str, step: str) -> None:
        logger.debug("%s C: %s", self.protocol, line)
        await self.write(line.encode("ascii") + b"\r\n", step)

    async def write(self, data: bytes, step: str) -> None:
        try:
            self.writer.write(data)
            await self.deadline.run(self.writer.drain(), self._stage(step))
        except OSError as e:
            raise self.fail(step, str(e)) from e

    async def read_exactly(self, n: int, step: str) -> bytes:
        try:
            return await self.deadline.run(self.reader.readexactly(n), self._stage(step))
        except asyncio.IncompleteReadError as e:
            raise self.fail(step, "connection closed by peer") from e
        except OSError as e:
            raise self.fail(step, str(e)) from e

    async def read_reply(self, step: str, expected: str) -> list[str]:
        """Read a numeric (SMTP/FTP style) reply and require *expected* as its code.

        ``NNN-text`` lines continue the reply; ``NNN text`` or a bare ``NNN``
        ends it. Lines without a code inside a multi-line reply are kept
        (FTP allows them). Returns all lines of the reply.
        """
        first = await self.read_line(step)
        match = _REPLY_LINE_RE.match(first)
        if match is None or match.group(1) != expected:
            raise self.fail(step, first)

        lines = [first]
        final = match.group(2) != "-"
        while not final:
            line = await self.read_line(step)
            lines.append(line)
            match = _REPLY_LINE_RE.match(line)
            if match is None:
                continue
            if match.group(1) != expected:
                raise self.fail(step, line)
            final = match.group(2) != "-"
        return lines
