"""Probe orchestrator — Dial, Negotiate, Handshake, Emit."""

from __future__ import annotations

import logging
import time

from sslprobe.config import Module
from sslprobe.errors import DialError, ProbeError
from sslprobe.metrics import emit
from sslprobe.models.result import ProbeOutcome
from sslprobe.starttls import negotiate
from sslprobe.utils.deadline import Deadline
from sslprobe.utils.net import close, dial, split_host_port
from sslprobe.utils.ssl_helpers import handshake, load_trust_roots

logger = logging.getLogger(__name__)


async def probe(
    deadline: Deadline, target: str, module: Module, registry,
) -> ProbeOutcome:
    """Run one probe against *target* and register its metrics on *registry*.

    Never raises for probe failures: the classified ``ProbeError`` is carried
    by the returned outcome, together with the certificate facts when the
    handshake got far enough to see a certificate. The connection is closed
    on every path and exactly one outcome is emitted.
    """
    started = time.monotonic()
    tls = module.tls_config
    writer = None
    try:
        try:
            host, _ = split_host_port(target)
        except ValueError as e:
            raise DialError(str(e)) from e
        roots = None if tls.insecure_skip_verify else load_trust_roots(tls.ca_file)

        reader, writer = await dial(target, deadline)
        await negotiate(module.tcp.starttls, reader, writer, deadline)
        facts = await handshake(writer, host, tls, roots, deadline)
    except ProbeError as e:
        outcome = ProbeOutcome.failed(target, e, duration=time.monotonic() - started)
        logger.info("Probe of %s failed: %s", target, e)
    else:
        outcome = ProbeOutcome.succeeded(target, facts, duration=time.monotonic() - started)
        logger.debug(
            "Probe of %s succeeded in %.3fs (%s, not after %s)",
            target, outcome.duration, facts.tls_version, facts.leaf.not_after,
        )
    finally:
        if writer is not None:
            await close(writer, deadline)

    emit(outcome, registry, prober=module.prober)
    return outcome


async def probe_tcp(
    deadline: Deadline, target: str, module: Module, registry,
) -> ProbeOutcome:
    """Like ``probe()``, but raises the classified error when the probe fails."""
    outcome = await probe(deadline, target, module, registry)
    outcome.raise_for_failure()
    return outcome
