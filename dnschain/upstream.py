"""Resolver that forwards queries to an external DNS server."""

from __future__ import annotations

import enum
import ipaddress
import logging
import socket
import ssl
import threading
import time
from dataclasses import dataclass
from typing import Optional, Union

import dns.exception
import dns.message
import dns.query
import dns.rcode
import httpx

from dnschain.chain import Resolver
from dnschain.model import (
    IPAddress,
    Request,
    RequestProtocol,
    Response,
    ResponseType,
    answer_to_string,
)

_log = logging.getLogger(__name__)

DNS_CONTENT_TYPE = "application/dns-message"
DEFAULT_TIMEOUT = 2.0
RETRY_ATTEMPTS = 3


class NetProtocol(enum.Enum):
    """Transport used to talk to an upstream server."""

    TCP_UDP = "tcp+udp"
    TCP_TLS = "tcp-tls"
    HTTPS = "https"

    @property
    def default_port(self) -> int:
        return {NetProtocol.TCP_UDP: 53, NetProtocol.TCP_TLS: 853, NetProtocol.HTTPS: 443}[self]

    def __str__(self) -> str:
        return self.value


def _join_host_port(host: Union[str, IPAddress], port: int) -> str:
    text = str(host)
    if ":" in text:
        return f"[{text}]:{port}"
    return f"{text}:{port}"


@dataclass(frozen=True)
class Upstream:
    """Address of an external DNS server."""

    net: NetProtocol = NetProtocol.TCP_UDP
    host: str = ""
    port: int = 0
    path: str = ""
    common_name: str = ""

    def __post_init__(self) -> None:
        if self.port == 0:
            object.__setattr__(self, "port", self.net.default_port)

    @property
    def is_default(self) -> bool:
        """True when no upstream server is configured."""
        return not self.host

    @classmethod
    def parse(cls, text: str) -> "Upstream":
        """Parse ``[net:]host[:port][/path]``; IPv6 hosts may be bracketed."""
        rest = text.strip()
        if not rest:
            raise ValueError("empty upstream definition")
        net = NetProtocol.TCP_UDP
        for protocol in NetProtocol:
            prefix = f"{protocol.value}:"
            if rest.startswith(prefix):
                net = protocol
                rest = rest[len(prefix):]
                break
        if rest.startswith("//"):
            rest = rest[2:]
        path = ""
        if "/" in rest:
            rest, _, tail = rest.partition("/")
            path = f"/{tail}"
        if rest.startswith("["):
            host, closed, after = rest[1:].partition("]")
            if not closed:
                raise ValueError(f"missing ']' in upstream {text!r}")
            if after and not after.startswith(":"):
                raise ValueError(f"invalid upstream {text!r}")
            port_text = after[1:]
        elif rest.count(":") == 1:
            host, _, port_text = rest.partition(":")
        else:
            host, port_text = rest, ""
        if not host:
            raise ValueError(f"missing host in upstream {text!r}")
        if port_text:
            if not port_text.isdigit():
                raise ValueError(f"invalid port {port_text!r} in upstream {text!r}")
            port = int(port_text)
            if not 1 <= port <= 65535:
                raise ValueError(f"port {port} out of range in upstream {text!r}")
        else:
            port = net.default_port
        return cls(net=net, host=host, port=port, path=path)

    def __str__(self) -> str:
        if self.is_default:
            return "no upstream"
        if self.net is NetProtocol.HTTPS:
            return f"https://{_join_host_port(self.host, self.port)}{self.path}"
        return f"{self.net}:{_join_host_port(self.host, self.port)}"


class UpstreamError(Exception):
    """Raised when an upstream server cannot answer a query."""

    def __init__(self, message: str, timeout: bool = False) -> None:
        super().__init__(message)
        self.timeout = timeout


def _tls_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    return context


class _DnsClient:
    def __init__(self, upstream: Upstream, timeout: float) -> None:
        self.net = upstream.net
        self.timeout = timeout
        self.server_name = upstream.common_name or upstream.host

    def fmt_url(self, ip: IPAddress, port: int, path: str) -> str:
        return _join_host_port(ip, port)

    def call_external(
        self,
        msg: dns.message.Message,
        ip: IPAddress,
        port: int,
        path: str,
        protocol: RequestProtocol,
    ) -> dns.message.Message:
        where = str(ip)
        try:
            if self.net is NetProtocol.TCP_TLS:
                return dns.query.tls(
                    msg, where, timeout=self.timeout, port=port, server_hostname=self.server_name
                )
            if protocol is RequestProtocol.TCP:
                try:
                    return dns.query.tcp(msg, where, timeout=self.timeout, port=port)
                except ConnectionRefusedError:
                    _log.debug("tcp connection to %s refused, trying udp", where)
            return dns.query.udp(msg, where, timeout=self.timeout, port=port)
        except (dns.exception.Timeout, TimeoutError) as exc:
            raise UpstreamError("i/o timeout", timeout=True) from exc
        except (dns.exception.DNSException, OSError) as exc:
            raise UpstreamError(str(exc) or type(exc).__name__) from exc


class _HttpClient:
    def __init__(
        self,
        upstream: Upstream,
        timeout: float,
        user_agent: str,
        verify_tls: bool,
        transport: Optional[httpx.BaseTransport],
    ) -> None:
        self.host = upstream.host
        self.server_name = upstream.common_name or upstream.host
        self.user_agent = user_agent
        if transport is not None:
            self.client = httpx.Client(timeout=timeout, transport=transport)
        else:
            verify: Union[bool, ssl.SSLContext] = _tls_context() if verify_tls else False
            self.client = httpx.Client(timeout=timeout, verify=verify)

    def fmt_url(self, ip: IPAddress, port: int, path: str) -> str:
        return f"https://{_join_host_port(ip, port)}{path}"

    def call_external(
        self,
        msg: dns.message.Message,
        ip: IPAddress,
        port: int,
        path: str,
        protocol: RequestProtocol,
    ) -> dns.message.Message:
        headers = {"Content-Type": DNS_CONTENT_TYPE, "Host": self.host}
        if self.user_agent:
            headers["User-Agent"] = self.user_agent
        try:
            reply = self.client.post(
                self.fmt_url(ip, port, path),
                content=msg.to_wire(),
                headers=headers,
                extensions={"sni_hostname": self.server_name},
            )
        except httpx.TimeoutException as exc:
            raise UpstreamError("i/o timeout", timeout=True) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"can't perform https request: {exc}") from exc
        if reply.status_code != 200:
            raise UpstreamError(
                f"http return code should be 200, but received {reply.status_code}"
            )
        content_type = reply.headers.get("content-type", "")
        if content_type != DNS_CONTENT_TYPE:
            raise UpstreamError(
                f"http return content type should be '{DNS_CONTENT_TYPE}', "
                f"but was '{content_type}'"
            )
        try:
            return dns.message.from_wire(reply.content)
        except dns.exception.DNSException as exc:
            raise UpstreamError(f"can't unpack message: {exc}") from exc


def _lookup(host: str) -> list[IPAddress]:
    if not host:
        raise UpstreamError("no upstream host configured")
    try:
        return [ipaddress.ip_address(host)]
    except ValueError:
        pass
    try:
        infos = socket.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    except OSError as exc:
        raise UpstreamError(f"can't resolve upstream host {host}: {exc}") from exc
    result: list[IPAddress] = []
    for info in infos:
        address = ipaddress.ip_address(str(info[4][0]).partition("%")[0])
        if address not in result:
            result.append(address)
    if not result:
        raise UpstreamError(f"no addresses found for upstream host {host}")
    return result


class UpstreamResolver(Resolver):
    """Sends requests to one external DNS server."""

    def __init__(
        self,
        upstream: Upstream,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = "",
        check_upstream: bool = True,
        verify_tls: bool = True,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.upstream = upstream
        self.timeout = timeout
        self._client: Union[_DnsClient, _HttpClient]
        if upstream.net is NetProtocol.HTTPS:
            self._client = _HttpClient(upstream, timeout, user_agent, verify_tls, transport)
        else:
            self._client = _DnsClient(upstream, timeout)
        self._ips: Optional[list[IPAddress]] = None
        self._ip_index = 0
        self._lock = threading.Lock()
        if check_upstream:
            self.upstream_ips()

    def upstream_ips(self) -> list[IPAddress]:
        """Return the addresses of the upstream host, looking them up once."""
        with self._lock:
            if self._ips is None:
                self._ips = _lookup(self.upstream.host)
            return list(self._ips)

    def _current_ip(self, ips: list[IPAddress]) -> IPAddress:
        with self._lock:
            return ips[self._ip_index % len(ips)]

    def _next_ip(self) -> None:
        with self._lock:
            self._ip_index += 1

    def configuration(self) -> list[str]:
        return []

    def __str__(self) -> str:
        return f"upstream '{self.upstream}'"

    def resolve(self, request: Request) -> Response:
        ips = self.upstream_ips()
        last_error: Optional[UpstreamError] = None
        for attempt in range(1, RETRY_ATTEMPTS + 1):
            ip = self._current_ip(ips)
            url = self._client.fmt_url(ip, self.upstream.port, self.upstream.path)
            start = time.monotonic()
            try:
                msg = self._client.call_external(
                    request.req, ip, self.upstream.port, self.upstream.path, request.protocol
                )
            except UpstreamError as exc:
                error = UpstreamError(
                    f"can't resolve request via upstream server {url}: {exc}",
                    timeout=exc.timeout,
                )
                if not exc.timeout:
                    raise error from exc
                last_error = error
                if attempt < RETRY_ATTEMPTS:
                    _log.debug(
                        "%s, retrying... (attempt %d/%d)", error, attempt + 1, RETRY_ATTEMPTS
                    )
                    self._next_ip()
                continue
            _log.debug(
                "received response from upstream %s (%s): answer=%s rcode=%s time=%dms",
                self.upstream,
                ip,
                answer_to_string(msg.answer),
                dns.rcode.to_text(msg.rcode()),
                int((time.monotonic() - start) * 1000),
            )
            return Response(
                res=msg, rtype=ResponseType.RESOLVED, reason=f"RESOLVED ({self.upstream})"
            )
        assert last_error is not None
        raise last_error