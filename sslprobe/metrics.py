"""Metrics emitter — translates a ProbeOutcome into Prometheus gauges."""

from __future__ import annotations

import logging
import threading
import weakref
from collections.abc import Iterable, Iterator

from prometheus_client.core import GaugeMetricFamily, Metric
from prometheus_client.registry import Collector

from sslprobe.models.result import ProbeOutcome
from sslprobe.models.types import CertificateInfo

logger = logging.getLogger(__name__)

NAMESPACE = "ssl"

CERT_LABELS = ["serial_no", "issuer_cn", "cn", "dnsnames", "ips", "emails", "ou"]


def join_label(values: Iterable[str]) -> str:
    """``["a", "b"]`` -> ``",a,b,"`` so that regex matchers can anchor on commas."""
    values = list(values)
    if not values:
        return ""
    return "," + ",".join(values) + ","


def cert_label_values(info: CertificateInfo) -> list[str]:
    return [
        info.serial_number,
        info.issuer_common_name,
        info.common_name,
        join_label(info.dns_names),
        join_label(info.ip_addresses),
        join_label(info.emails),
        join_label(info.organizational_units),
    ]


class ProbeCollector(Collector):
    """Exposes the metrics of one probe outcome.

    Families are built fresh on every scrape from the immutable outcome,
    so the collector carries no mutable state of its own.
    """

    def __init__(self, outcome: ProbeOutcome, prober: str = "tcp") -> None:
        self.outcome = outcome
        self.prober = prober

    def describe(self) -> Iterator[Metric]:
        return self._families(with_samples=False)

    def collect(self) -> Iterator[Metric]:
        return self._families(with_samples=True)

    def _families(self, *, with_samples: bool) -> Iterator[Metric]:
        outcome = self.outcome
        facts = outcome.facts

        success = GaugeMetricFamily(
            f"{NAMESPACE}_probe_success",
            "If the probe was a success",
        )
        prober = GaugeMetricFamily(
            f"{NAMESPACE}_prober",
            "The prober used by the exporter to connect to the target",
            labels=["prober"],
        )
        connect = GaugeMetricFamily(
            f"{NAMESPACE}_tls_connect_success",
            "If the TLS connection was a success",
        )
        failure = GaugeMetricFamily(
            f"{NAMESPACE}_probe_failure_info",
            "Classification of the probe failure",
            labels=["reason"],
        )
        version = GaugeMetricFamily(
            f"{NAMESPACE}_tls_version_info",
            "The TLS version used",
            labels=["version"],
        )
        not_after = GaugeMetricFamily(
            f"{NAMESPACE}_cert_not_after",
            "NotAfter expressed as a Unix Epoch Time",
            labels=CERT_LABELS,
        )
        not_before = GaugeMetricFamily(
            f"{NAMESPACE}_cert_not_before",
            "NotBefore expressed as a Unix Epoch Time",
            labels=CERT_LABELS,
        )
        verified = GaugeMetricFamily(
            f"{NAMESPACE}_cert_verified",
            "If the presented certificate chain was verified",
        )
        verified_not_after = GaugeMetricFamily(
            f"{NAMESPACE}_verified_cert_not_after",
            "NotAfter expressed as a Unix Epoch Time for a certificate in the verified chain",
            labels=["chain_no", *CERT_LABELS],
        )
        families = [
            success, prober, connect, failure, version,
            not_after, not_before, verified, verified_not_after,
        ]
        if not with_samples:
            yield from families
            return

        success.add_metric([], 1.0 if outcome.success else 0.0)
        prober.add_metric([self.prober], 1.0)
        connect.add_metric([], 1.0 if facts is not None else 0.0)
        if outcome.failure is not None:
            failure.add_metric([outcome.failure.value], 1.0)

        if facts is not None:
            if facts.tls_version:
                version.add_metric([facts.tls_version], 1.0)
            for info in facts.chain:
                labels = cert_label_values(info)
                not_after.add_metric(labels, info.not_after.timestamp())
                not_before.add_metric(labels, info.not_before.timestamp())
            verified.add_metric([], 1.0 if facts.verified else 0.0)
            for chain_no, info in enumerate(facts.verified_chain):
                verified_not_after.add_metric(
                    [str(chain_no), *cert_label_values(info)],
                    info.not_after.timestamp(),
                )

        yield from families


_lock = threading.Lock()
_installed: weakref.WeakKeyDictionary = weakref.WeakKeyDictionary()


def emit(outcome: ProbeOutcome, registry, prober: str = "tcp") -> ProbeCollector:
    """Register the metrics of *outcome* on *registry*.

    Each registry holds at most one probe collector: a second emission on the
    same registry replaces the first, so every metric name is registered
    exactly once and carries the latest values.
    """
    if not callable(getattr(registry, "register", None)) or not callable(
        getattr(registry, "unregister", None)
    ):
        raise TypeError(f"metrics sink {registry!r} does not support register/unregister")

    collector = ProbeCollector(outcome, prober=prober)
    with _lock:
        previous = _installed.get(registry)
        if previous is not None:
            registry.unregister(previous)
        registry.register(collector)
        _installed[registry] = collector
    logger.debug("Emitted %s", outcome.summary())
    return collector
