"""Resolver answering from a fixed mapping of domain names to addresses."""

from __future__ import annotations

import ipaddress
import logging
from typing import Iterable, Iterator, Mapping, Optional, Union

import dns.name
import dns.rdata
import dns.rdatatype
import dns.reversename
import dns.rrset

from dnschain.chain import ChainedResolver
from dnschain import model

_log = logging.getLogger(__name__)

IPLike = Union[str, model.IPAddress]


def is_supported_type(ip: IPLike, question: dns.rrset.RRset) -> bool:
    """Tell whether the address can answer the question's query type."""
    address = ipaddress.ip_address(str(ip))
    mapped = getattr(address, "ipv4_mapped", None)
    wanted = dns.rdatatype.A if address.version == 4 or mapped else dns.rdatatype.AAAA
    return question.rdtype == wanted


def _domain_suffixes(domain: str) -> Iterator[str]:
    while domain:
        yield domain
        domain = domain.partition(".")[2]


def _custom(message) -> model.Response:
    return model.Response(res=message, rtype=model.ResponseType.CUSTOMDNS, reason="CUSTOM DNS")


class CustomDNSResolver(ChainedResolver):
    """Resolves names (and their subdomains) to configured addresses."""

    def __init__(
        self,
        mapping: Mapping[str, Iterable[IPLike]],
        ttl: float = 0,
        filter_unmapped_types: bool = False,
    ) -> None:
        super().__init__()
        self.mapping: dict[str, list[model.IPAddress]] = {}
        self.reverse_addresses: dict[dns.name.Name, list[str]] = {}
        for host, ips in mapping.items():
            addresses = [ipaddress.ip_address(str(ip)) for ip in ips]
            self.mapping[host.lower()] = addresses
            for address in addresses:
                reverse = dns.reversename.from_address(str(address))
                self.reverse_addresses.setdefault(reverse, []).append(host)
        self.ttl = int(ttl)
        self.filter_unmapped_types = filter_unmapped_types

    def configuration(self) -> list[str]:
        if not self.mapping:
            return ["deactivated"]
        return [
            f'{key} = "[{" ".join(map(str, ips))}]"' for key, ips in self.mapping.items()
        ]

    def _reverse_lookup(self, request: model.Request) -> Optional[model.Response]:
        question = request.req.question[0]
        names = (
            self.reverse_addresses.get(question.name)
            if question.rdtype == dns.rdatatype.PTR
            else None
        )
        if names is None:
            return None
        records = model.create_header(question, self.ttl)
        for host in names:
            target = dns.name.from_text(host).to_text()
            records.add(dns.rdata.from_text(question.rdclass, dns.rdatatype.PTR, target))
        reply = model.new_response_msg(request)
        reply.answer.append(records)
        return _custom(reply)

    def _forward_lookup(self, request: model.Request) -> Optional[model.Response]:
        question = request.req.question[0]
        for domain in _domain_suffixes(model.extract_domain(question)):
            ips = self.mapping.get(domain)
            if ips is None:
                continue
            reply = model.new_response_msg(request)
            records = model.create_header(question, self.ttl)
            for ip in filter(lambda candidate: is_supported_type(candidate, question), ips):
                for rdata in model.create_answer_from_question(question, ip, self.ttl):
                    records.add(rdata)
            if records:
                reply.answer.append(records)
                _log.debug("returning custom dns entry for %s", domain)
                return _custom(reply)
            # a mapping exists but for another type: empty answer or let the chain continue
            return _custom(reply) if self.filter_unmapped_types else None
        return None

    def resolve(self, request: model.Request) -> model.Response:
        answered = self._reverse_lookup(request)
        if answered is None and self.mapping:
            answered = self._forward_lookup(request)
        if answered is not None:
            return answered
        _log.debug("go to next resolver")
        return super().resolve(request)