"""Probe failure taxonomy.

Every stage of a probe reports failure by raising a ``ProbeError`` subclass.
The orchestrator turns the exception into a ``ProbeOutcome``; nothing else
catches them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sslprobe.models.types import FailureKind

if TYPE_CHECKING:
    from sslprobe.models.types import CertificateFacts


class ProbeError(Exception):
    """Base class for classified probe failures."""

    kind: FailureKind = FailureKind.HANDSHAKE

    def __init__(self, message: str, *, facts: CertificateFacts | None = None) -> None:
        super().__init__(message)
        self.facts = facts


class ConfigError(ProbeError):
    """CA bundle or client certificate could not be loaded."""

    kind = FailureKind.CONFIG


class DialError(ProbeError):
    """TCP connection could not be established."""

    kind = FailureKind.DIAL


class DeadlineExceeded(ProbeError):
    kind = FailureKind.DEADLINE_EXCEEDED

    def __init__(self, stage: str) -> None:
        super().__init__(f"deadline exceeded during {stage}")
        self.stage = stage


class ProbeCancelled(ProbeError):
    kind = FailureKind.CANCELLED

    def __init__(self, stage: str) -> None:
        super().__init__(f"probe cancelled during {stage}")
        self.stage = stage


class NegotiationError(ProbeError):
    """The STARTTLS peer answered something other than what the grammar expects."""

    kind = FailureKind.NEGOTIATION

    def __init__(self, protocol: str, step: str, reply: str = "") -> None:
        message = f"{protocol} negotiation failed at {step}"
        if reply:
            message += f": {reply!r}"
        super().__init__(message)
        self.protocol = protocol
        self.step = step
        self.reply = reply


class HandshakeError(ProbeError):
    """TLS handshake failed at the transport level."""

    kind = FailureKind.HANDSHAKE


class CertificateVerifyError(HandshakeError):
    """Handshake completed but the presented certificate was rejected."""

    def __init__(
        self, kind: FailureKind, message: str, *, facts: CertificateFacts | None = None,
    ) -> None:
        if not kind.is_verification:
            raise ValueError(f"not a verification failure: {kind}")
        super().__init__(f"{kind.value.replace('_', ' ')}: {message}", facts=facts)
        self.kind = kind
