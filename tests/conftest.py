"""Shared test fixtures — throwaway PKI and scripted loopback peers."""

from __future__ import annotations

import asyncio
import ipaddress
import ssl
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from prometheus_client import CollectorRegistry

# ---------------------------------------------------------------------------
# PKI
# ---------------------------------------------------------------------------

def _key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


def _ski(cert: x509.Certificate) -> x509.SubjectKeyIdentifier:
    return cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier).value


def make_ca(common_name: str = "sslprobe test CA"):
    key = _key()
    name = x509.Name([
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "sslprobe"),
        x509.NameAttribute(NameOID.COMMON_NAME, common_name),
    ])
    now = datetime.now(UTC)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=2))
        .not_valid_after(now + timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True, content_commitment=False,
                key_encipherment=False, data_encipherment=False,
                key_agreement=False, key_cert_sign=True, crl_sign=True,
                encipher_only=False, decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False,
        )
        .sign(key, hashes.SHA256())
    )
    return cert, key


def issue(
    ca_cert: x509.Certificate,
    ca_key: ec.EllipticCurvePrivateKey,
    *,
    common_name: str = "sslprobe.test",
    dns_names: tuple[str, ...] = ("sslprobe.test", "*.sslprobe.test"),
    ip_addresses: tuple[str, ...] = ("127.0.0.1",),
    not_before: datetime | None = None,
    not_after: datetime | None = None,
):
    now = datetime.now(UTC)
    key = _key()
    sans: list[x509.GeneralName] = [x509.DNSName(d) for d in dns_names]
    sans += [x509.IPAddress(ipaddress.ip_address(ip)) for ip in ip_addresses]
    cert = (
        x509.CertificateBuilder()
        .subject_name(x509.Name([
            x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, "probes"),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]))
        .issuer_name(ca_cert.subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before or now - timedelta(days=1))
        .not_valid_after(not_after or now + timedelta(days=90))
        .add_extension(x509.SubjectAlternativeName(sans), critical=False)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True, content_commitment=False,
                key_encipherment=False, data_encipherment=False,
                key_agreement=False, key_cert_sign=False, crl_sign=False,
                encipher_only=False, decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False,
        )
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(_ski(ca_cert)),
            critical=False,
        )
        .sign(ca_key, hashes.SHA256())
    )
    return cert, key


def _pem(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.PEM)


@dataclass
class Pki:
    """A CA written to disk plus server contexts for the leaves it issued."""

    directory: Path
    ca_cert: x509.Certificate
    ca_key: ec.EllipticCurvePrivateKey
    ca_file: str = ""
    certs: dict[str, x509.Certificate] = field(default_factory=dict)
    contexts: dict[str, ssl.SSLContext] = field(default_factory=dict)

    def add(self, name: str, cert: x509.Certificate, key) -> ssl.SSLContext:
        cert_path = self.directory / f"{name}.pem"
        key_path = self.directory / f"{name}.key"
        cert_path.write_bytes(_pem(cert))
        key_path.write_bytes(key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ))
        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ctx.load_cert_chain(str(cert_path), str(key_path))
        self.certs[name] = cert
        self.contexts[name] = ctx
        return ctx


@pytest.fixture(scope="session")
def pki(tmp_path_factory) -> Pki:
    directory = tmp_path_factory.mktemp("pki")
    ca_cert, ca_key = make_ca()
    ca_file = directory / "ca.pem"
    ca_file.write_bytes(_pem(ca_cert))
    p = Pki(directory=directory, ca_cert=ca_cert, ca_key=ca_key, ca_file=str(ca_file))

    now = datetime.now(UTC)
    p.add("valid", *issue(ca_cert, ca_key))
    p.add("expired", *issue(
        ca_cert, ca_key,
        not_before=now - timedelta(days=30), not_after=now - timedelta(days=1),
    ))
    p.add("not_yet_valid", *issue(
        ca_cert, ca_key,
        not_before=now + timedelta(days=1), not_after=now + timedelta(days=30),
    ))
    other_cert, other_key = make_ca("unrelated CA")
    p.add("untrusted", *issue(other_cert, other_key))
    return p


@pytest.fixture
def issue_leaf(pki):
    """Issue an extra leaf from the test CA; keywords as for ``issue``."""
    def _issue(**kwargs) -> x509.Certificate:
        cert, _ = issue(pki.ca_cert, pki.ca_key, **kwargs)
        return cert
    return _issue


@pytest.fixture
def registry() -> CollectorRegistry:
    return CollectorRegistry()


# ---------------------------------------------------------------------------
# Scripted peers
# ---------------------------------------------------------------------------

SMTP_EHLO_REPLY = (
    b"250-mail.sslprobe.test greets prober\r\n"
    b"250-PIPELINING\r\n"
    b"250-SIZE 10240000\r\n"
    b"250-STARTTLS\r\n"
    b"250 8BITMIME\r\n"
)

# Each step is ("send", bytes), ("recv", None) for one line,
# or ("recv_exactly", n) for a binary preamble.
STARTTLS_SCRIPTS: dict[str, list[tuple[str, object]]] = {
    "smtp": [
        ("send", b"220 mail.sslprobe.test ESMTP ready\r\n"),
        ("recv", None),
        ("send", SMTP_EHLO_REPLY),
        ("recv", None),
        ("send", b"220 2.0.0 Ready to start TLS\r\n"),
    ],
    "ftp": [
        ("send", b"220-Welcome to the sslprobe FTP service\r\n220 Ready\r\n"),
        ("recv", None),
        ("send", b"234 AUTH TLS successful\r\n"),
    ],
    "imap": [
        ("send", b"* OK [CAPABILITY IMAP4rev1 STARTTLS LOGINDISABLED] ready\r\n"),
        ("recv", None),
        ("send", b"a001 OK Begin TLS negotiation now\r\n"),
    ],
    "pop3": [
        ("send", b"+OK POP3 server ready\r\n"),
        ("recv", None),
        ("send", b"+OK Begin TLS negotiation\r\n"),
    ],
    "postgres": [
        ("recv_exactly", 8),
        ("send", b"S"),
    ],
}


class ScriptedPeer:
    """Server-side connection handler that plays a fixed script.

    After the script it upgrades to TLS when given a context, then holds the
    connection open until the client hangs up.
    """

    def __init__(self, script=(), tls_ctx: ssl.SSLContext | None = None) -> None:
        self.script = list(script)
        self.tls_ctx = tls_ctx
        self.received: list[bytes] = []
        self.connections = 0
        self.tls_started = False

    async def __call__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        try:
            for action, arg in self.script:
                if action == "send":
                    writer.write(arg)
                    await writer.drain()
                elif action == "recv":
                    line = await reader.readline()
                    if not line:
                        return
                    self.received.append(line)
                elif action == "recv_exactly":
                    self.received.append(await reader.readexactly(arg))
            if self.tls_ctx is not None:
                await writer.start_tls(self.tls_ctx)
                self.tls_started = True
            await reader.read()
        except (ConnectionError, ssl.SSLError, asyncio.IncompleteReadError):
            pass
        finally:
            writer.close()


@pytest.fixture
async def serve():
    """Start loopback servers; returns ``host:port`` for each."""
    servers: list[asyncio.Server] = []

    async def _serve(handler, *, ssl_ctx: ssl.SSLContext | None = None) -> str:
        server = await asyncio.start_server(handler, "127.0.0.1", 0, ssl=ssl_ctx)
        servers.append(server)
        host, port = server.sockets[0].getsockname()[:2]
        return f"{host}:{port}"

    yield _serve

    for server in servers:
        server.close()
        server.close_clients()
    for server in servers:
        await asyncio.wait_for(server.wait_closed(), timeout=5)


@pytest.fixture
def starttls_scripts() -> dict[str, list[tuple[str, object]]]:
    return {name: list(steps) for name, steps in STARTTLS_SCRIPTS.items()}


@pytest.fixture
def make_peer():
    return ScriptedPeer
