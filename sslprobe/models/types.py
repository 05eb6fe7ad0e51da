"""Domain-specific types — STARTTLS protocols, failure kinds, certificate facts."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

# === Probe configuration ===

class StartTLSProtocol(StrEnum):
    NONE = ""
    SMTP = "smtp"
    FTP = "ftp"
    IMAP = "imap"
    POP3 = "pop3"
    POSTGRES = "postgres"

    @classmethod
    def _missing_(cls, value: object) -> StartTLSProtocol | None:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("", "none"):
                return cls.NONE
            for member in cls:
                if member.value == lowered:
                    return member
        return None


# === Failures ===

class FailureKind(StrEnum):
    CONFIG = "config"
    DIAL = "dial"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    CANCELLED = "cancelled"
    NEGOTIATION = "negotiation"
    HANDSHAKE = "handshake"
    UNTRUSTED_CHAIN = "untrusted_chain"
    HOSTNAME_MISMATCH = "hostname_mismatch"
    EXPIRED = "expired"
    NOT_YET_VALID = "not_yet_valid"

    @property
    def is_verification(self) -> bool:
        return self in _VERIFICATION_KINDS


_VERIFICATION_KINDS = frozenset({
    FailureKind.UNTRUSTED_CHAIN,
    FailureKind.HOSTNAME_MISMATCH,
    FailureKind.EXPIRED,
    FailureKind.NOT_YET_VALID,
})


# === Certificates ===

class CertificateInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    common_name: str = ""
    subject: dict[str, str] = Field(default_factory=dict)
    issuer_common_name: str = ""
    issuer: dict[str, str] = Field(default_factory=dict)
    serial_number: str = ""
    not_before: datetime
    not_after: datetime
    dns_names: list[str] = Field(default_factory=list)
    ip_addresses: list[str] = Field(default_factory=list)
    emails: list[str] = Field(default_factory=list)
    uris: list[str] = Field(default_factory=list)
    organizational_units: list[str] = Field(default_factory=list)
    signature_algorithm: str = ""

    def is_valid_at(self, when: datetime) -> bool:
        return self.not_before <= when <= self.not_after


class CertificateFacts(BaseModel):
    """What a completed handshake revealed, whether or not it was trusted."""

    model_config = ConfigDict(frozen=True)

    chain: list[CertificateInfo]  # as presented, leaf first
    verified_chain: list[CertificateInfo] = Field(default_factory=list)
    verified: bool = False
    tls_version: str = ""
    cipher: str = ""

    @property
    def leaf(self) -> CertificateInfo:
        return self.chain[0]
