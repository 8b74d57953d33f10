import dns.message
import pytest

from dnschain.chain import Resolver
from dnschain.metrics import Counter, Histogram, MetricsResolver
from dnschain.model import Response, new_request


class NextStub(Resolver):
    def __init__(self, error=None):
        self.error = error
        self.calls = 0

    def resolve(self, request):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return Response(res=dns.message.Message())

    def configuration(self):
        return []


def _request():
    return new_request("example.com.", "A", client_names=["client"])


def test_records_request_metrics():
    sut = MetricsResolver(enable=True)
    nxt = NextStub()
    sut.next = nxt
    resp = sut.resolve(_request())
    assert resp.res.rcode() == 0
    assert sut.total_queries.value("client", "A") == 1
    assert sut.total_response.value("", "NOERROR", "RESOLVED") == 1
    assert sut.duration_histogram.count("RESOLVED") == 1
    assert sut.total_errors.value() == 0
    assert nxt.calls == 1


def test_records_errors():
    sut = MetricsResolver(enable=True)
    sut.next = NextStub(error=RuntimeError("error"))
    with pytest.raises(RuntimeError):
        sut.resolve(_request())
    assert sut.total_errors.value() == 1
    assert sut.total_queries.value("client", "A") == 1
    assert sut.duration_histogram.count("err") == 1


def test_disabled_records_nothing():
    sut = MetricsResolver(enable=False)
    sut.next = NextStub()
    sut.resolve(_request())
    assert sut.total_queries.value("client", "A") == 0


def test_counter_rejects_wrong_label_count():
    counter = Counter("c", "help", ("a", "b"))
    with pytest.raises(ValueError):
        counter.inc("only-one")


def test_counter_counts_per_labels():
    counter = Counter("c", "help", ("a",))
    counter.inc("x")
    counter.inc("x")
    counter.inc("y")
    assert (counter.value("x"), counter.value("y"), counter.value("z")) == (2, 1, 0)


def test_histogram_counts_per_label():
    histogram = Histogram("h", "help", (5, 10), "t")
    histogram.observe("a", 3)
    histogram.observe("a", 30)
    assert histogram.count("a") == 2
    assert histogram.count("b") == 0


def test_configuration():
    sut = MetricsResolver(enable=True, path="/metrics")
    assert sut.configuration() == ["metrics:", "  Enable = true", "  Path   = /metrics"]