"""Resolver that records metrics about requests and responses."""

from __future__ import annotations

import bisect
import logging
import threading
import time
from typing import Optional, Sequence

import dns.rcode
import dns.rdatatype

from dnschain.chain import ChainedResolver
from dnschain.model import Request, Response

_log = logging.getLogger(__name__)

DURATION_BUCKETS = (5, 10, 20, 30, 50, 75, 100, 200, 500, 1000, 2000)


class Counter:
    """A monotonically increasing count, kept per combination of label values."""

    def __init__(self, name: str, help_text: str, label_names: Sequence[str] = ()) -> None:
        self.name = name
        self.help = help_text
        self.label_names = tuple(label_names)
        self._values: dict[tuple[str, ...], float] = {}
        self._lock = threading.Lock()

    def _key(self, labels: tuple[str, ...]) -> tuple[str, ...]:
        if len(labels) != len(self.label_names):
            raise ValueError(
                f"{self.name}: expected {len(self.label_names)} label values, got {len(labels)}"
            )
        return tuple(str(v) for v in labels)

    def inc(self, *args: str) -> None:
        """Add one to the count for the given label values."""
        key = self._key(args)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + 1

    def value(self, *args: str) -> float:
        """Return the count for the given label values."""
        key = self._key(args)
        with self._lock:
            return self._values.get(key, 0.0)


class Histogram:
    """Distribution of observed values, kept per label value."""

    def __init__(
        self, name: str, help_text: str, buckets: Sequence[float], label_name: str
    ) -> None:
        self.name = name
        self.help = help_text
        self.buckets = tuple(sorted(buckets))
        self.label_name = label_name
        self._bucket_counts: dict[str, list[int]] = {}
        self._sums: dict[str, float] = {}
        self._counts: dict[str, int] = {}
        self._lock = threading.Lock()

    def observe(self, label: str, value: float) -> None:
        """Record one value."""
        with self._lock:
            counts = self._bucket_counts.setdefault(label, [0] * (len(self.buckets) + 1))
            counts[bisect.bisect_left(self.buckets, value)] += 1
            self._sums[label] = self._sums.get(label, 0.0) + value
            self._counts[label] = self._counts.get(label, 0) + 1

    def count(self, label: str) -> int:
        """Return how many values were recorded for the label."""
        with self._lock:
            return self._counts.get(label, 0)


class MetricsResolver(ChainedResolver):
    """Counts queries, responses and errors and measures request durations."""

    def __init__(self, enable: bool, path: str = "/metrics") -> None:
        super().__init__()
        self.enable = enable
        self.path = path
        self.total_queries = Counter(
            "blocky_query_total", "Number of total queries", ("client", "type")
        )
        self.total_response = Counter(
            "blocky_response_total",
            "Number of total responses",
            ("reason", "response_code", "response_type"),
        )
        self.total_errors = Counter("blocky_error_total", "Number of total errors")
        self.duration_histogram = Histogram(
            "blocky_request_duration_ms",
            "Request duration distribution",
            DURATION_BUCKETS,
            "response_type",
        )

    def resolve(self, request: Request) -> Response:
        try:
            response = super().resolve(request)
        except Exception:
            if self.enable:
                self._record(request, None)
            raise
        if self.enable:
            self._record(request, response)
        return response

    def _record(self, request: Request, response: Optional[Response]) -> None:
        qtype = request.req.question[0].rdtype
        self.total_queries.inc(",".join(request.client_names), dns.rdatatype.to_text(qtype))
        duration_ms = float(int((time.monotonic() - request.request_ts) * 1000))
        response_type = "err" if response is None else str(response.rtype)
        self.duration_histogram.observe(response_type, duration_ms)
        if response is None:
            self.total_errors.inc()
        else:
            self.total_response.inc(
                response.reason,
                dns.rcode.to_text(response.res.rcode()),
                str(response.rtype),
            )

    def configuration(self) -> list[str]:
        return [
            "metrics:",
            f"  Enable = {str(self.enable).lower()}",
            f"  Path   = {self.path}",
        ]