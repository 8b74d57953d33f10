"""Request and response types shared by all resolvers, plus DNS message helpers."""

from __future__ import annotations

import enum
import ipaddress
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

import dns.message
import dns.rdata
import dns.rdataclass
import dns.rdatatype
import dns.rrset

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class ResponseType(enum.Enum):
    """Where a response came from."""

    RESOLVED = "RESOLVED"
    CACHED = "CACHED"
    BLOCKED = "BLOCKED"
    CONDITIONAL = "CONDITIONAL"
    CUSTOMDNS = "CUSTOMDNS"
    HOSTSFILE = "HOSTSFILE"
    FILTERED = "FILTERED"
    NOTFQDN = "NOTFQDN"
    SPECIAL = "SPECIAL"

    def __str__(self) -> str:
        return self.value


class RequestProtocol(enum.Enum):
    """Transport a request arrived on."""

    TCP = "TCP"
    UDP = "UDP"

    def __str__(self) -> str:
        return self.value


@dataclass
class Request:
    """A DNS query together with what is known about the client."""

    req: dns.message.Message
    client_ip: Optional[IPAddress] = None
    client_names: list[str] = field(default_factory=list)
    request_client_id: str = ""
    protocol: RequestProtocol = RequestProtocol.UDP
    request_ts: float = field(default_factory=time.monotonic)


@dataclass
class Response:
    """A DNS answer and the reason it was produced."""

    res: dns.message.Message
    rtype: ResponseType = ResponseType.RESOLVED
    reason: str = ""


def new_request(
    question: str,
    qtype: Union[int, str],
    client_ip: Optional[str] = None,
    client_names: Iterable[str] = (),
    request_client_id: str = "",
) -> Request:
    """Build a request asking for ``qtype`` records of ``question``."""
    msg = dns.message.make_query(question, dns.rdatatype.RdataType.make(qtype))
    ip = ipaddress.ip_address(client_ip) if client_ip else None
    return Request(
        req=msg,
        client_ip=ip,
        client_names=list(client_names),
        request_client_id=request_client_id,
    )


def new_response_msg(request: Request) -> dns.message.Message:
    """Return an empty NOERROR reply to the request's message."""
    return dns.message.make_response(request.req)


def extract_domain(question: dns.rrset.RRset) -> str:
    """Return the question's name in lower case, without the trailing dot."""
    text = question.name.to_text().lower()
    return text[:-1] if text.endswith(".") else text


def create_header(question: dns.rrset.RRset, ttl: int) -> dns.rrset.RRset:
    """Return an empty record set with the question's name, class and type."""
    rrset = dns.rrset.RRset(question.name, question.rdclass, question.rdtype)
    rrset.update_ttl(ttl)
    return rrset


def create_answer_from_question(
    question: dns.rrset.RRset, ip: Union[str, IPAddress], ttl: int
) -> dns.rrset.RRset:
    """Answer an A or AAAA question with the given address."""
    if question.rdtype not in (dns.rdatatype.A, dns.rdatatype.AAAA):
        raise ValueError(
            f"unsupported query type {dns.rdatatype.to_text(question.rdtype)}"
        )
    rrset = create_header(question, ttl)
    rrset.add(dns.rdata.from_text(question.rdclass, question.rdtype, str(ip)))
    return rrset


def _record_to_string(rrset: dns.rrset.RRset, rdata: dns.rdata.Rdata) -> str:
    rdtype = rdata.rdtype
    if rdtype == dns.rdatatype.A:
        return f"A ({rdata.address})"
    if rdtype == dns.rdatatype.AAAA:
        return f"AAAA ({rdata.address})"
    if rdtype == dns.rdatatype.CNAME:
        return f"CNAME ({rdata.target.to_text()})"
    if rdtype == dns.rdatatype.PTR:
        return f"PTR ({rdata.target.to_text()})"
    return "\t".join(
        (
            rrset.name.to_text(),
            str(rrset.ttl),
            dns.rdataclass.to_text(rrset.rdclass),
            dns.rdatatype.to_text(rdtype),
            rdata.to_text(),
        )
    )


def answer_to_string(answer: Iterable[dns.rrset.RRset]) -> str:
    """Render answer records in a compact, human readable form."""
    return ", ".join(
        _record_to_string(rrset, rdata) for rrset in answer for rdata in rrset
    )