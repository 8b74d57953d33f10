import dns.message
import dns.rrset
import pytest

from dnschain.chain import Resolver
from dnschain.conditional import ConditionalUpstreamResolver
from dnschain.model import Response, ResponseType, new_request
from dnschain.upstream import UpstreamError


class AnsweringResolver(Resolver):
    def __init__(self, ttl, ip):
        self.ttl = ttl
        self.ip = ip
        self.calls = []

    def resolve(self, request):
        question = request.req.question[0]
        self.calls.append(question.name.to_text())
        msg = dns.message.make_response(request.req)
        msg.answer.append(dns.rrset.from_text(question.name, self.ttl, "IN", "A", self.ip))
        return Response(res=msg)

    def configuration(self):
        return []


class FailingResolver(Resolver):
    def resolve(self, request):
        raise OSError("unreachable")

    def configuration(self):
        return []


class NextStub(Resolver):
    def __init__(self):
        self.calls = 0

    def resolve(self, request):
        self.calls += 1
        return Response(res=dns.message.Message())

    def configuration(self):
        return []


@pytest.fixture
def setup():
    fritz = AnsweringResolver(123, "123.124.122.122")
    other = AnsweringResolver(250, "192.192.192.192")
    dot = AnsweringResolver(223, "168.168.168.168")
    sut = ConditionalUpstreamResolver(
        {"fritz.box": [fritz], "other.box": [other], ".": [dot]},
        check_upstreams=False,
    )
    nxt = NextStub()
    sut.next = nxt
    return sut, nxt, fritz, other, dot


def _single_answer(resp):
    rrset = resp.res.answer[0]
    return rrset.name.to_text(), rrset.ttl, [r.address for r in rrset]


def test_exact_match_first_entry(setup):
    sut, nxt, fritz, _, _ = setup
    resp = sut.resolve(new_request("fritz.box.", "A"))
    assert _single_answer(resp) == ("fritz.box.", 123, ["123.124.122.122"])
    assert nxt.calls == 0
    assert resp.rtype is ResponseType.CONDITIONAL
    assert resp.reason == "CONDITIONAL"


def test_exact_match_last_entry(setup):
    sut, nxt, _, other, _ = setup
    resp = sut.resolve(new_request("other.box.", "A"))
    assert _single_answer(resp) == ("other.box.", 250, ["192.192.192.192"])
    assert nxt.calls == 0
    assert resp.rtype is ResponseType.CONDITIONAL


def test_subdomain_match(setup):
    sut, nxt, fritz, _, _ = setup
    resp = sut.resolve(new_request("test.fritz.box.", "A"))
    assert _single_answer(resp) == ("test.fritz.box.", 123, ["123.124.122.122"])
    assert fritz.calls == ["test.fritz.box."]
    assert nxt.calls == 0
    assert resp.rtype is ResponseType.CONDITIONAL


def test_single_label_uses_dot_mapping(setup):
    sut, nxt, _, _, dot = setup
    resp = sut.resolve(new_request("test.", "A"))
    assert _single_answer(resp) == ("test.", 223, ["168.168.168.168"])
    assert dot.calls == ["test."]
    assert nxt.calls == 0
    assert resp.rtype is ResponseType.CONDITIONAL


def test_question_name_is_lowered(setup):
    sut, _, fritz, _, _ = setup
    resp = sut.resolve(new_request("WWW.Fritz.Box.", "A"))
    assert fritz.calls == ["www.fritz.box."]
    assert resp.res.question[0].name.to_text() == "www.fritz.box."


def test_unmatched_query_goes_to_next(setup):
    sut, nxt, fritz, other, dot = setup
    sut.resolve(new_request("google.com.", "A"))
    assert nxt.calls == 1
    assert fritz.calls == [] and other.calls == [] and dot.calls == []


def test_invalid_upstream_fails_construction():
    with pytest.raises(UpstreamError):
        ConditionalUpstreamResolver({".": [FailingResolver()]}, start_verify_upstream=True)


def test_configuration_enabled(setup):
    sut = setup[0]
    lines = sut.configuration()
    assert len(lines) == 3
    assert lines[0].startswith('fritz.box = "parallel upstreams')


def test_configuration_disabled():
    sut = ConditionalUpstreamResolver({}, check_upstreams=False)
    assert sut.configuration() == ["deactivated"]