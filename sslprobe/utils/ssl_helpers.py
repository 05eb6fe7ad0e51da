"""TLS handshake, certificate parsing and verification helpers.

The handshake itself runs with OpenSSL verification disabled so that the
presented chain is always available; the verification policy is applied
afterwards with ``cryptography.x509.verification``. That way a rejected
certificate can still be reported with its facts.
"""

from __future__ import annotations

import asyncio
import functools
import ipaddress
import logging
import re
import ssl
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.x509.oid import NameOID
from cryptography.x509.verification import PolicyBuilder, Store, VerificationError

from sslprobe.errors import CertificateVerifyError, ConfigError, HandshakeError
from sslprobe.models.types import CertificateFacts, CertificateInfo, FailureKind
from sslprobe.utils.deadline import Deadline

if TYPE_CHECKING:
    from sslprobe.config import TLSConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Trust material
# ---------------------------------------------------------------------------
_PEM_CERT_RE = re.compile(
    rb"-----BEGIN CERTIFICATE-----.+?-----END CERTIFICATE-----", re.DOTALL,
)


def parse_pem_certificates(data: bytes, source: str = "<bytes>") -> list[x509.Certificate]:
    """Parse every PEM certificate in *data*, skipping blocks that do not load."""
    certs: list[x509.Certificate] = []
    for block in _PEM_CERT_RE.finditer(data):
        try:
            certs.append(x509.load_pem_x509_certificate(block.group(0)))
        except ValueError as e:
            logger.debug("Skipping unparseable certificate in %s: %s", source, e)
    return certs


def _read_ca_dir(directory: Path) -> list[x509.Certificate]:
    try:
        entries = sorted(directory.iterdir())
    except OSError as e:
        logger.debug("Cannot list CA directory %s: %s", directory, e)
        return []
    certs: list[x509.Certificate] = []
    for entry in entries:
        try:
            if entry.is_file():
                certs.extend(parse_pem_certificates(entry.read_bytes(), str(entry)))
        except OSError as e:
            logger.debug("Skipping %s: %s", entry, e)
    return certs


@functools.cache
def system_trust_roots() -> tuple[x509.Certificate, ...]:
    """Roots OpenSSL would use by default, loaded once per process.

    A bundle file (``SSL_CERT_FILE`` or the built-in one) wins; the hashed CA
    directory (``SSL_CERT_DIR`` or the built-in one) is read otherwise.
    """
    paths = ssl.get_default_verify_paths()
    for candidate in (paths.cafile, paths.openssl_cafile):
        if not candidate or not Path(candidate).is_file():
            continue
        try:
            roots = parse_pem_certificates(Path(candidate).read_bytes(), candidate)
        except OSError as e:
            logger.debug("Cannot read CA bundle %s: %s", candidate, e)
            continue
        if roots:
            logger.debug("Loaded %d system trust roots from %s", len(roots), candidate)
            return tuple(dict.fromkeys(roots))

    for candidate in (paths.capath, paths.openssl_capath):
        if not candidate or not Path(candidate).is_dir():
            continue
        roots = _read_ca_dir(Path(candidate))
        if roots:
            # Hash links and the files they point at load twice
            roots = list(dict.fromkeys(roots))
            logger.debug("Loaded %d system trust roots from %s", len(roots), candidate)
            return tuple(roots)

    raise ConfigError("no CA file configured and no system trust store found")


def load_trust_roots(ca_file: str | None = None) -> list[x509.Certificate]:
    """Load the configured CA bundle, or the system trust store when none is set."""
    if not ca_file:
        return list(system_trust_roots())
    path = Path(ca_file)
    try:
        roots = parse_pem_certificates(path.read_bytes(), str(path))
    except OSError as e:
        raise ConfigError(f"cannot read CA file {path}: {e}") from e
    if not roots:
        raise ConfigError(f"no usable certificates in CA file {path}")
    logger.debug("Loaded %d trust roots from %s", len(roots), path)
    return roots


def build_client_context(tls: TLSConfig) -> ssl.SSLContext:
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    if tls.cert_file:
        try:
            ctx.load_cert_chain(tls.cert_file, tls.key_file or None)
        except (OSError, ssl.SSLError) as e:
            raise ConfigError(f"cannot load client certificate {tls.cert_file}: {e}") from e
    return ctx


# ---------------------------------------------------------------------------
# Certificate parsing
# ---------------------------------------------------------------------------
def _name_attrs(name: x509.Name) -> dict[str, str]:
    return {
        attr.oid._name: attr.value if isinstance(attr.value, str) else attr.value.hex()
        for attr in name
    }


def _first(name: x509.Name, oid: x509.ObjectIdentifier) -> str:
    attrs = name.get_attributes_for_oid(oid)
    if not attrs:
        return ""
    value = attrs[0].value
    return value if isinstance(value, str) else value.decode("utf-8", errors="replace")


def certificate_info(cert: x509.Certificate) -> CertificateInfo:
    """Extract the reportable facts of one certificate."""
    dns_names: list[str] = []
    ips: list[str] = []
    emails: list[str] = []
    uris: list[str] = []
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        pass
    else:
        dns_names = san.get_values_for_type(x509.DNSName)
        ips = [str(ip) for ip in san.get_values_for_type(x509.IPAddress)]
        emails = san.get_values_for_type(x509.RFC822Name)
        uris = san.get_values_for_type(x509.UniformResourceIdentifier)

    ous = [
        attr.value for attr in cert.subject.get_attributes_for_oid(
            NameOID.ORGANIZATIONAL_UNIT_NAME,
        )
    ]
    sig_oid = cert.signature_algorithm_oid

    return CertificateInfo(
        common_name=_first(cert.subject, NameOID.COMMON_NAME),
        subject=_name_attrs(cert.subject),
        issuer_common_name=_first(cert.issuer, NameOID.COMMON_NAME),
        issuer=_name_attrs(cert.issuer),
        serial_number=str(cert.serial_number),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        dns_names=dns_names,
        ip_addresses=ips,
        emails=emails,
        uris=uris,
        organizational_units=ous,
        signature_algorithm=sig_oid._name or sig_oid.dotted_string,
    )


# ---------------------------------------------------------------------------
# Hostname matching
# ---------------------------------------------------------------------------
def _parse_ip(name: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    try:
        return ipaddress.ip_address(name)
    except ValueError:
        return None


def _dns_matches(pattern: str, hostname: str) -> bool:
    pattern = pattern.rstrip(".").lower()
    if pattern == hostname:
        return True
    if not pattern.startswith("*."):
        return False
    # Single left-most label only: *.example.com never matches example.com
    # or a.b.example.com
    label, sep, rest = hostname.partition(".")
    return bool(label and sep and rest == pattern[2:])


def matches_hostname(info: CertificateInfo, name: str) -> bool:
    """Check *name* against the SAN entries of *info* (no CN fallback)."""
    ip = _parse_ip(name.strip("[]"))
    if ip is not None:
        return any(_parse_ip(entry) == ip for entry in info.ip_addresses)
    hostname = name.rstrip(".").lower()
    return any(_dns_matches(entry, hostname) for entry in info.dns_names)


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------
def _verification_subject(name: str) -> x509.GeneralName:
    ip = _parse_ip(name.strip("[]"))
    if ip is not None:
        return x509.IPAddress(ip)
    return x509.DNSName(name.rstrip("."))


def verify_chain(
    certs: list[x509.Certificate],
    name: str,
    roots: list[x509.Certificate],
    facts: CertificateFacts,
    *,
    now: datetime | None = None,
) -> list[x509.Certificate]:
    """Apply the verification policy to a presented chain.

    The leaf is checked for validity window, then hostname, then for a path
    to *roots*. The first failing check raises ``CertificateVerifyError``
    carrying *facts*. Returns the verified chain, leaf first.
    """
    now = now or datetime.now(UTC)
    leaf = facts.leaf

    if now > leaf.not_after:
        raise CertificateVerifyError(
            FailureKind.EXPIRED,
            f"certificate expired at {leaf.not_after.isoformat()}",
            facts=facts,
        )
    if now < leaf.not_before:
        raise CertificateVerifyError(
            FailureKind.NOT_YET_VALID,
            f"certificate not valid before {leaf.not_before.isoformat()}",
            facts=facts,
        )
    if not matches_hostname(leaf, name):
        sans = ", ".join(leaf.dns_names + leaf.ip_addresses) or "none"
        raise CertificateVerifyError(
            FailureKind.HOSTNAME_MISMATCH,
            f"certificate is not valid for {name!r} (SANs: {sans})",
            facts=facts,
        )

    try:
        verifier = (
            PolicyBuilder()
            .store(Store(roots))
            .time(now)
            .build_server_verifier(_verification_subject(name))
        )
        return verifier.verify(certs[0], certs[1:])
    except (VerificationError, ValueError) as e:
        raise CertificateVerifyError(
            FailureKind.UNTRUSTED_CHAIN, str(e), facts=facts,
        ) from e


# ---------------------------------------------------------------------------
# Handshake
# ---------------------------------------------------------------------------
async def handshake(
    writer: asyncio.StreamWriter,
    host: str,
    tls: TLSConfig,
    roots: list[x509.Certificate] | None,
    deadline: Deadline,
) -> CertificateFacts:
    """Upgrade *writer* to TLS and return the facts of the presented chain.

    Raises ``HandshakeError`` when no TLS session could be established and
    ``CertificateVerifyError`` when it was but the chain is rejected.
    """
    name = tls.server_name or host
    ctx = build_client_context(tls)
    # SNI is never sent for IP literals
    sni = None if _parse_ip(name.strip("[]")) is not None else name

    logger.debug("TLS handshake with %s (sni=%s)", host, sni)
    try:
        await deadline.run(writer.start_tls(ctx, server_hostname=sni), "handshake")
    except (ssl.SSLError, OSError) as e:
        raise HandshakeError(f"TLS handshake failed: {e}") from e
    except ValueError as e:
        # Includes UnicodeError for an SNI name that is not valid IDNA
        raise HandshakeError(f"TLS handshake failed for {name!r}: {e}") from e

    ssl_obj = writer.get_extra_info("ssl_object")
    if ssl_obj is None:
        raise HandshakeError("TLS session missing after handshake")
    chain_der = ssl_obj.get_unverified_chain()
    if not chain_der:
        raise HandshakeError("server presented no certificate")

    try:
        certs = [x509.load_der_x509_certificate(der) for der in chain_der]
        infos = [certificate_info(cert) for cert in certs]
    except ValueError as e:
        raise HandshakeError(f"unparseable server certificate: {e}") from e

    cipher = ssl_obj.cipher()
    facts = CertificateFacts(
        chain=infos,
        tls_version=ssl_obj.version() or "",
        cipher=cipher[0] if cipher else "",
    )

    if tls.insecure_skip_verify:
        logger.debug("Skipping verification of %s", host)
        return facts

    if roots is None:
        roots = load_trust_roots(tls.ca_file)
    verified = verify_chain(certs, name, roots, facts)
    return facts.model_copy(update={
        "verified": True,
        "verified_chain": [certificate_info(cert) for cert in verified],
    })

