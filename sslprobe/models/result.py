"""Result model — the single outcome of one probe invocation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sslprobe.errors import ProbeError
    from sslprobe.models.types import CertificateFacts, FailureKind


@dataclass(frozen=True)
class ProbeOutcome:
    """Success/failure of a probe plus whatever certificate facts were obtained.

    ``facts`` is populated whenever a TLS handshake completed, including when
    the certificate was then rejected, so an expired or mismatched
    certificate still shows up in the emitted metrics.

    A plain frozen dataclass rather than a pydantic model: it holds the live
    exception object, which is never validated or serialized.
    """

    target: str
    error: ProbeError | None = None
    facts: CertificateFacts | None = None
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def failure(self) -> FailureKind | None:
        return self.error.kind if self.error is not None else None

    @property
    def handshake_completed(self) -> bool:
        return self.facts is not None

    @classmethod
    def succeeded(
        cls, target: str, facts: CertificateFacts, duration: float = 0.0,
    ) -> ProbeOutcome:
        return cls(target=target, facts=facts, duration=duration)

    @classmethod
    def failed(
        cls, target: str, error: ProbeError, duration: float = 0.0,
    ) -> ProbeOutcome:
        return cls(target=target, error=error, facts=error.facts, duration=duration)

    def raise_for_failure(self) -> None:
        if self.error is not None:
            raise self.error

    def summary(self) -> str:
        if self.error is None:
            return f"{self.target}: ok"
        return f"{self.target}: {self.error.kind.value} ({self.error})"
