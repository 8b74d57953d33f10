import ipaddress
import socket
import threading
import time

import dns.message
import dns.rcode
import dns.rdatatype
import dns.rrset
import httpx
import pytest

from dnschain.model import RequestProtocol, ResponseType, new_request
from dnschain.upstream import NetProtocol, Upstream, UpstreamError, UpstreamResolver


def _answer(*records):
    msg = dns.message.Message()
    for text in records:
        name, ttl, rdclass, rdtype, data = text.split(None, 4)
        msg.answer.append(dns.rrset.from_text(name, int(ttl), rdclass, rdtype, data))
    return msg


class _UdpServer:
    def __init__(self, answer_fn):
        self.answer_fn = answer_fn
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(0.05)
        self.call_count = 0
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    @property
    def upstream(self):
        return Upstream(NetProtocol.TCP_UDP, "127.0.0.1", self.sock.getsockname()[1])

    def _serve(self):
        while not self._stop.is_set():
            try:
                data, addr = self.sock.recvfrom(4096)
            except socket.timeout:
                continue
            except OSError:
                break
            threading.Thread(target=self._handle, args=(data, addr), daemon=True).start()

    def _handle(self, data, addr):
        query = dns.message.from_wire(data)
        with self._lock:
            self.call_count += 1
            number = self.call_count
        answer = self.answer_fn(query, number)
        if answer is None:
            wire = b"dummy"
        else:
            reply = dns.message.make_response(query)
            reply.answer = list(answer.answer)
            reply.set_rcode(answer.rcode())
            wire = reply.to_wire()
        try:
            self.sock.sendto(wire, addr)
        except OSError:
            pass

    def close(self):
        self._stop.set()
        self._thread.join()
        self.sock.close()


@pytest.fixture
def udp_server():
    servers = []

    def factory(answer_fn):
        server = _UdpServer(answer_fn)
        servers.append(server)
        return server

    yield factory
    for server in servers:
        server.close()


@pytest.mark.parametrize(
    "text, expected",
    [
        ("1.2.3.4", (NetProtocol.TCP_UDP, "1.2.3.4", 53, "")),
        ("tcp+udp:dns.example.com:5353", (NetProtocol.TCP_UDP, "dns.example.com", 5353, "")),
        ("tcp-tls:dns.example.com", (NetProtocol.TCP_TLS, "dns.example.com", 853, "")),
        ("https://dns.example.com/dns-query", (NetProtocol.HTTPS, "dns.example.com", 443, "/dns-query")),
        ("https://dns.example.com:8443/q", (NetProtocol.HTTPS, "dns.example.com", 8443, "/q")),
        ("[2001:db8::1]:5353", (NetProtocol.TCP_UDP, "2001:db8::1", 5353, "")),
        ("2001:db8::1", (NetProtocol.TCP_UDP, "2001:db8::1", 53, "")),
    ],
)
def test_parse(text, expected):
    upstream = Upstream.parse(text)
    assert (upstream.net, upstream.host, upstream.port, upstream.path) == expected


@pytest.mark.parametrize("text", ["", "tcp+udp:host:notaport", "1.2.3.4:70000", "[::1"])
def test_parse_invalid(text):
    with pytest.raises(ValueError):
        Upstream.parse(text)


def test_upstream_string():
    assert str(Upstream.parse("https://dns.example.com/dns-query")) == "https://dns.example.com:443/dns-query"
    assert str(Upstream(host="1.2.3.4")) == "tcp+udp:1.2.3.4:53"
    assert str(Upstream(host="::1", port=5353)) == "tcp+udp:[::1]:5353"


def test_resolver_string():
    sut = UpstreamResolver(Upstream(host="1.2.3.4"), check_upstream=False)
    assert str(sut) == "upstream 'tcp+udp:1.2.3.4:53'"


def test_returns_answer_from_dns_upstream(udp_server):
    server = udp_server(lambda q, n: _answer("example.com 123 IN A 123.124.122.122"))
    upstream = server.upstream
    sut = UpstreamResolver(upstream, check_upstream=False)

    resp = sut.resolve(new_request("example.com.", "A"))

    assert resp.res.rcode() == dns.rcode.NOERROR
    assert resp.rtype == ResponseType.RESOLVED
    rrset = resp.res.answer[0]
    assert rrset.name.to_text() == "example.com."
    assert rrset.rdtype == dns.rdatatype.A
    assert rrset.ttl == 123
    assert [r.address for r in rrset] == ["123.124.122.122"]
    assert resp.reason == f"RESOLVED ({upstream})"


def test_returns_response_code_from_upstream(udp_server):
    def nxdomain(query, number):
        msg = dns.message.Message()
        msg.set_rcode(dns.rcode.NXDOMAIN)
        return msg

    server = udp_server(nxdomain)
    upstream = server.upstream
    sut = UpstreamResolver(upstream, check_upstream=False)

    resp = sut.resolve(new_request("example.com.", "A"))

    assert resp.res.rcode() == dns.rcode.NXDOMAIN
    assert resp.rtype == ResponseType.RESOLVED
    assert resp.reason == f"RESOLVED ({upstream})"


def test_broken_reply_raises(udp_server):
    server = udp_server(lambda q, n: None)
    sut = UpstreamResolver(server.upstream, check_upstream=False)

    with pytest.raises(UpstreamError):
        sut.resolve(new_request("example.com.", "A"))


def test_tcp_request_falls_back_to_udp(udp_server):
    server = udp_server(lambda q, n: _answer("example.com 123 IN A 123.124.122.122"))
    sut = UpstreamResolver(server.upstream, check_upstream=False)
    request = new_request("example.com.", "A")
    request.protocol = RequestProtocol.TCP

    resp = sut.resolve(request)

    assert [r.address for r in resp.res.answer[0]] == ["123.124.122.122"]


def _slow_first(attempts_with_timeout):
    def answer(query, number):
        if number <= attempts_with_timeout:
            time.sleep(0.5)
        return _answer("example.com 123 IN A 123.124.122.122")

    return answer


def test_retries_after_timeouts(udp_server):
    server = udp_server(_slow_first(2))
    sut = UpstreamResolver(server.upstream, check_upstream=False, timeout=0.3)

    resp = sut.resolve(new_request("example.com.", "A"))

    assert resp.res.rcode() == dns.rcode.NOERROR
    assert [r.address for r in resp.res.answer[0]] == ["123.124.122.122"]
    assert resp.rtype == ResponseType.RESOLVED
    assert server.call_count == 3


def test_three_timeouts_raise(udp_server):
    server = udp_server(_slow_first(3))
    sut = UpstreamResolver(server.upstream, check_upstream=False, timeout=0.3)

    with pytest.raises(UpstreamError, match="i/o timeout") as info:
        sut.resolve(new_request("example.com.", "A"))
    assert info.value.timeout is True


def _doh_resolver(handler):
    upstream = Upstream.parse("https://127.0.0.1/dns-query")
    sut = UpstreamResolver(
        upstream,
        check_upstream=False,
        user_agent="test-agent",
        transport=httpx.MockTransport(handler),
    )
    return upstream, sut


def _doh_reply(request, status=200, content_type="application/dns-message", content=None):
    query = dns.message.from_wire(request.content)
    reply = dns.message.make_response(query)
    reply.answer.append(dns.rrset.from_text("example.com.", 123, "IN", "A", "123.124.122.122"))
    return httpx.Response(
        status,
        headers={"content-type": content_type},
        content=reply.to_wire() if content is None else content,
    )


def test_doh_returns_answer():
    seen = []

    def handler(request):
        seen.append(request)
        return _doh_reply(request)

    upstream, sut = _doh_resolver(handler)
    resp = sut.resolve(new_request("example.com.", "A"))

    assert resp.res.rcode() == dns.rcode.NOERROR
    assert resp.rtype == ResponseType.RESOLVED
    assert [r.address for r in resp.res.answer[0]] == ["123.124.122.122"]
    assert resp.reason == f"RESOLVED (https://{upstream.host}:{upstream.port}/dns-query)"
    assert str(seen[0].url) == "https://127.0.0.1:443/dns-query"
    assert seen[0].headers["content-type"] == "application/dns-message"
    assert seen[0].headers["user-agent"] == "test-agent"


def test_doh_wrong_status_code():
    _, sut = _doh_resolver(lambda request: _doh_reply(request, status=500))
    with pytest.raises(UpstreamError, match="http return code should be 200, but received 500"):
        sut.resolve(new_request("example.com.", "A"))


def test_doh_wrong_content_type():
    _, sut = _doh_resolver(lambda request: _doh_reply(request, content_type="text"))
    with pytest.raises(
        UpstreamError,
        match="http return content type should be 'application/dns-message', but was 'text'",
    ):
        sut.resolve(new_request("example.com.", "A"))


def test_doh_wrong_content():
    _, sut = _doh_resolver(lambda request: _doh_reply(request, content=b"wrongcontent"))
    with pytest.raises(UpstreamError, match="can't unpack message"):
        sut.resolve(new_request("example.com.", "A"))


def test_doh_connection_failure():
    def handler(request):
        raise httpx.ConnectError("no such host", request=request)

    _, sut = _doh_resolver(handler)
    with pytest.raises(UpstreamError, match="no such host"):
        sut.resolve(new_request("example.com.", "A"))


def test_configuration_is_empty():
    sut = UpstreamResolver(Upstream(), check_upstream=False)
    assert sut.configuration() == []


def test_invalid_upstream_fails_construction():
    with pytest.raises(UpstreamError):
        UpstreamResolver(Upstream())


def test_upstream_ips_for_literal_address():
    sut = UpstreamResolver(Upstream(host="::1"))
    assert sut.upstream_ips() == [ipaddress.IPv6Address("::1")]