"""Map a Pi-hole Snapshot onto Prometheus metric families.

The metric contract (name, help text, type, source field and label) lives in
a single descriptor table, METRICS. Both describe() and render() iterate that
table, so registration and scraping always agree on the exported names.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional, Sequence, Union

from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily

from .errors import DecodeFailure, MetricParseFailure, UpstreamUnreachable
from .pihole.client import PiholeClient
from .pihole.models import Snapshot

logger = logging.getLogger(__name__)

NAMESPACE = "pihole"

COUNTER = "counter"
GAUGE = "gauge"

MetricFamily = Union[CounterMetricFamily, GaugeMetricFamily]


@dataclass(frozen=True)
class MetricDescriptor:
    """Brief: Static description of one exported metric family.

    Inputs (constructor fields):
      - name: Metric name without the namespace prefix.
      - help: HELP text written in the exposition output.
      - kind: COUNTER or GAUGE.
      - source: Snapshot attribute the value(s) come from.
      - label: Label name for mapping-valued sources; None for scalars.

    Outputs:
      - Descriptor instance; fqname is "<namespace>_<name>".
    """

    name: str
    help: str
    kind: str
    source: str
    label: Optional[str] = None

    @property
    def fqname(self) -> str:
        return f"{NAMESPACE}_{self.name}"

    def new_family(self) -> MetricFamily:
        """Return an empty metric family for this descriptor."""

        labels = [self.label] if self.label else None
        if self.kind == COUNTER:
            return CounterMetricFamily(self.fqname, self.help, labels=labels)
        return GaugeMetricFamily(self.fqname, self.help, labels=labels)


METRICS: tuple[MetricDescriptor, ...] = (
    MetricDescriptor(
        "domains_being_blocked", "Domains being blocked.", COUNTER, "domains_being_blocked"
    ),
    MetricDescriptor("dns_queries_today", "DNS Queries today.", COUNTER, "dns_queries_today"),
    MetricDescriptor("ads_blocked_today", "Ads blocked today.", COUNTER, "ads_blocked_today"),
    MetricDescriptor(
        "ads_percentage_today", "Ads percentage today.", COUNTER, "ads_percentage_today"
    ),
    MetricDescriptor("unique_domains", "Unique domains seen today.", COUNTER, "unique_domains"),
    MetricDescriptor(
        "queries_forwarded", "Queries forwarded to upstream servers today.", COUNTER, "queries_forwarded"
    ),
    MetricDescriptor(
        "queries_cached", "Queries answered from cache today.", COUNTER, "queries_cached"
    ),
    MetricDescriptor("clients_ever_seen", "Clients ever seen.", COUNTER, "clients_ever_seen"),
    MetricDescriptor("unique_clients", "Unique clients today.", COUNTER, "unique_clients"),
    MetricDescriptor("query_types", "DNS Query types.", COUNTER, "query_types", label="type"),
    MetricDescriptor("top_queries", "Top queries.", COUNTER, "top_queries", label="domain"),
    MetricDescriptor("top_ads", "Top Ads.", COUNTER, "top_ads", label="domain"),
    MetricDescriptor("top_sources", "Top sources.", COUNTER, "top_sources", label="client"),
    MetricDescriptor(
        "forward_destinations",
        "Share of queries per forward destination (percent).",
        GAUGE,
        "forward_destinations",
        label="destination",
    ),
)


def parse_float(value: Any) -> float:
    """Brief: Convert a Pi-hole API value to float.

    Inputs:
      - value: int, float or numeric string as found in the API response.

    Outputs:
      - float

    Raises:
      - MetricParseFailure: for booleans, None, containers and strings that
        do not parse as a number.

    Example:
      >>> parse_float("12.5")
      12.5
      >>> parse_float(3)
      3.0
    """

    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise MetricParseFailure(f"not a number: {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise MetricParseFailure(f"not a number: {value!r}") from exc


def describe() -> List[MetricFamily]:
    """Return one empty family per descriptor, in table order."""

    return [desc.new_family() for desc in METRICS]


def render(snapshot: Snapshot) -> List[MetricFamily]:
    """Brief: Build metric families for a decoded snapshot.

    Inputs:
      - snapshot: Snapshot returned by PiholeClient.fetch().

    Outputs:
      - list of metric families in METRICS order. Scalar families always
        carry exactly one sample (zero when the field was absent). Mapping
        families carry one sample per key, labelled with the key, in the
        mapping's iteration order.

    Values that fail parse_float() are logged and skipped; the remaining
    samples are still emitted. The snapshot is never modified.
    """

    families: List[MetricFamily] = []
    for desc in METRICS:
        family = desc.new_family()
        value = getattr(snapshot, desc.source)
        if desc.label is None:
            family.add_metric([], float(value))
        else:
            for key, raw in value.items():
                try:
                    family.add_metric([str(key)], parse_float(raw))
                except MetricParseFailure as exc:
                    logger.warning(
                        "Can't store metric %s{%s=%r}: %s",
                        desc.fqname,
                        desc.label,
                        key,
                        exc,
                    )
        families.append(family)
    return families


class PiholeCollector:
    """Brief: prometheus_client collector backed by a PiholeClient.

    Inputs (constructor):
      - client: PiholeClient (or any object exposing fetch() -> Snapshot).

    Outputs:
      - Collector suitable for CollectorRegistry.register(). Each collect()
        call performs exactly one upstream fetch.

    Example:
      >>> registry = CollectorRegistry(auto_describe=False)
      >>> registry.register(PiholeCollector(PiholeClient("http://pi.hole")))
    """

    def __init__(self, client: PiholeClient) -> None:
        self._client = client

    def describe(self) -> Sequence[MetricFamily]:
        return describe()

    def collect(self) -> Iterator[MetricFamily]:
        try:
            snapshot = self._client.fetch()
        except (UpstreamUnreachable, DecodeFailure) as exc:
            logger.error("Pihole error: %s", exc)
            return
        yield from render(snapshot)
