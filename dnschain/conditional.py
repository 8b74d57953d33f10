"""Resolver that sends queries for chosen domains to dedicated upstream servers."""

from __future__ import annotations

import logging
from typing import Iterator, Mapping, Optional, Sequence, Union

import dns.name
import dns.rrset

from dnschain.chain import ChainedResolver, Resolver
from dnschain.model import Request, Response, ResponseType, answer_to_string, extract_domain
from dnschain.parallel import UPSTREAM_DEFAULT_CFG_NAME, ParallelBestResolver
from dnschain.upstream import DEFAULT_TIMEOUT, Upstream

_log = logging.getLogger(__name__)

_REASON = "CONDITIONAL"


def _domain_suffixes(domain: str) -> Iterator[str]:
    while domain:
        yield domain
        domain = domain.partition(".")[2]


def _with_name(rrset: dns.rrset.RRset, name: dns.name.Name) -> dns.rrset.RRset:
    return dns.rrset.RRset(name, rrset.rdclass, rrset.rdtype)


class ConditionalUpstreamResolver(ChainedResolver):
    """Delegates a query to other upstream servers depending on its domain name.

    A mapping key matches the domain and all of its subdomains; the key "."
    matches names without any dot.
    """

    def __init__(
        self,
        mapping: Mapping[str, Sequence[Union[Upstream, Resolver]]],
        *,
        check_upstreams: bool = True,
        start_verify_upstream: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__()
        self.mapping: dict[str, Resolver] = {}
        for domain, entries in mapping.items():
            self.mapping[domain.lower()] = ParallelBestResolver(
                {UPSTREAM_DEFAULT_CFG_NAME: list(entries)},
                check_upstreams=check_upstreams,
                start_verify_upstream=start_verify_upstream,
                timeout=timeout,
            )

    def configuration(self) -> list[str]:
        if not self.mapping:
            return ["deactivated"]
        return [f'{key} = "{val}"' for key, val in self.mapping.items()]

    def _find(self, domain_from_question: str) -> Optional[tuple[str, Resolver]]:
        if "." in domain_from_question:
            for domain in _domain_suffixes(domain_from_question):
                resolver = self.mapping.get(domain)
                if resolver is not None:
                    return domain, resolver
            return None
        resolver = self.mapping.get(".")
        if resolver is None:
            return None
        return domain_from_question, resolver

    def _internal_resolve(
        self, resolver: Resolver, domain_from_question: str, domain: str, request: Request
    ) -> Response:
        question = request.req.question[0]
        fqdn = dns.name.from_text(domain_from_question or ".")
        request.req.question[0] = _with_name(question, fqdn)
        response = resolver.resolve(request)
        response.reason = _REASON
        response.rtype = ResponseType.CONDITIONAL
        if response.res.question:
            response.res.question[0] = _with_name(response.res.question[0], fqdn)
        _log.debug(
            "received response from conditional upstream %s for %s: %s",
            resolver,
            domain,
            answer_to_string(response.res.answer),
        )
        return response

    def resolve(self, request: Request) -> Response:
        if self.mapping:
            domain_from_question = extract_domain(request.req.question[0])
            found = self._find(domain_from_question)
            if found is not None:
                domain, resolver = found
                return self._internal_resolve(resolver, domain_from_question, domain, request)
        _log.debug("go to next resolver")
        return super().resolve(request)