"""Resolver for special-use domain names (RFC 6761 and RFC 6762)."""

from __future__ import annotations

import ipaddress
from typing import Union

import dns.rcode
import dns.rdata
import dns.rdataclass
import dns.rdatatype
import dns.rrset

from dnschain.chain import ChainedResolver
from dnschain.model import Request, Response, ResponseType, new_response_msg

SUDN_TEST = "test."
SUDN_INVALID = "invalid."
SUDN_LOCALHOST = "localhost."
MDNS_LOCAL = "local."

_REASON = "Special-Use Domain Name"


def sudn_arpa_zones() -> list[str]:
    """Reverse zones of the private address ranges."""
    return [
        "10.in-addr.arpa.",
        "21.172.in-addr.arpa.",
        "26.172.in-addr.arpa.",
        "16.172.in-addr.arpa.",
        "22.172.in-addr.arpa.",
        "27.172.in-addr.arpa.",
        "17.172.in-addr.arpa.",
        "30.172.in-addr.arpa.",
        "28.172.in-addr.arpa.",
        "18.172.in-addr.arpa.",
        "23.172.in-addr.arpa.",
        "29.172.in-addr.arpa.",
        "19.172.in-addr.arpa.",
        "24.172.in-addr.arpa.",
        "31.172.in-addr.arpa.",
        "20.172.in-addr.arpa.",
        "25.172.in-addr.arpa.",
        "168.192.in-addr.arpa.",
    ]


class SpecialUseDomainNamesResolver(ChainedResolver):
    """Answers special-use names locally; these rules are always active."""

    def __init__(self) -> None:
        super().__init__()
        self.loopback_v4 = ipaddress.IPv4Address("127.0.0.1")
        self.loopback_v6 = ipaddress.IPv6Address("::1")
        self._negative_zones = (*sudn_arpa_zones(), SUDN_INVALID, SUDN_TEST)

    def resolve(self, request: Request) -> Response:
        if self._is_special(request, *self._negative_zones):
            return self._negative_response(request)
        if self._is_special(request, SUDN_LOCALHOST):
            return self._localhost_response(request)
        if self._is_special(request, MDNS_LOCAL):
            return self._negative_response(request)
        return super().resolve(request)

    def configuration(self) -> list[str]:
        return []

    @staticmethod
    def _is_special(request: Request, *names: str) -> bool:
        domain = request.req.question[0].name.to_text()
        return any(domain == n or domain.endswith(f".{n}") for n in names)

    def _localhost_response(self, request: Request) -> Response:
        qtype = request.req.question[0].rdtype
        if qtype == dns.rdatatype.A:
            return self._positive_response(request, SUDN_LOCALHOST, qtype, self.loopback_v4)
        if qtype == dns.rdatatype.AAAA:
            return self._positive_response(request, SUDN_LOCALHOST, qtype, self.loopback_v6)
        return self._negative_response(request)

    @staticmethod
    def _positive_response(
        request: Request,
        name: str,
        rdtype: dns.rdatatype.RdataType,
        ip: Union[ipaddress.IPv4Address, ipaddress.IPv6Address],
    ) -> Response:
        response = new_response_msg(request)
        response.set_rcode(dns.rcode.NOERROR)
        rdata = dns.rdata.from_text(dns.rdataclass.IN, rdtype, str(ip))
        response.answer = [dns.rrset.from_rdata(name, 0, rdata)]
        return Response(res=response, rtype=ResponseType.SPECIAL, reason=_REASON)

    @staticmethod
    def _negative_response(request: Request) -> Response:
        response = new_response_msg(request)
        response.set_rcode(dns.rcode.NXDOMAIN)
        return Response(res=response, rtype=ResponseType.SPECIAL, reason=_REASON)