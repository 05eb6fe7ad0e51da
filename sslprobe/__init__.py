"""sslprobe — TLS certificate prober for TCP and STARTTLS endpoints."""

from __future__ import annotations

__version__ = "1.0.0"

from sslprobe.config import Module, Settings, TCPProbe, TLSConfig  # noqa: E402
from sslprobe.core.prober import probe, probe_tcp  # noqa: E402
from sslprobe.errors import (  # noqa: E402
    CertificateVerifyError,
    ConfigError,
    DeadlineExceeded,
    DialError,
    HandshakeError,
    NegotiationError,
    ProbeCancelled,
    ProbeError,
)
from sslprobe.models import (  # noqa: E402
    CertificateFacts,
    CertificateInfo,
    FailureKind,
    ProbeOutcome,
    StartTLSProtocol,
)
from sslprobe.utils.deadline import Deadline  # noqa: E402

__all__ = [
    "CertificateFacts",
    "CertificateInfo",
    "CertificateVerifyError",
    "ConfigError",
    "Deadline",
    "DeadlineExceeded",
    "DialError",
    "FailureKind",
    "HandshakeError",
    "Module",
    "NegotiationError",
    "ProbeCancelled",
    "ProbeError",
    "ProbeOutcome",
    "Settings",
    "StartTLSProtocol",
    "TCPProbe",
    "TLSConfig",
    "__version__",
    "probe",
    "probe_tcp",
]
