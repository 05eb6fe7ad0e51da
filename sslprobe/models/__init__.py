"""Data models — configuration enums, certificate facts, probe outcome."""

from sslprobe.models.result import ProbeOutcome
from sslprobe.models.types import (
    CertificateFacts,
    CertificateInfo,
    FailureKind,
    StartTLSProtocol,
)

__all__ = [
    "CertificateFacts",
    "CertificateInfo",
    "FailureKind",
    "ProbeOutcome",
    "StartTLSProtocol",
]
