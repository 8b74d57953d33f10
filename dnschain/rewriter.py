"""Resolver that rewrites query names before passing them to an inner resolver."""

from __future__ import annotations

import logging
from typing import Mapping, Optional

import dns.message
import dns.name
import dns.rrset

from dnschain.chain import (
    NO_RESPONSE,
    ChainedResolver,
    NoOpResolver,
    Resolver,
    default_name,
)
from dnschain.chain import name as resolver_name
from dnschain.model import Request, Response

_log = logging.getLogger(__name__)


def _renamed(rrset: dns.rrset.RRset, new_name: dns.name.Name) -> dns.rrset.RRset:
    result = dns.rrset.RRset(new_name, rrset.rdclass, rrset.rdtype, rrset.covers)
    result.update_ttl(rrset.ttl)
    for rdata in rrset:
        result.add(rdata)
    return result


class RewriterResolver(ChainedResolver):
    """Runs an inner resolver branch on rewritten names.

    If the branch yields no response, resolution continues with the normal chain.
    """

    def __init__(
        self,
        rewrite: Mapping[str, str],
        inner: Resolver,
        fallback_upstream: bool = False,
    ) -> None:
        super().__init__()
        self.rewrite = {k.lower(): v.lower() for k, v in rewrite.items()}
        self.inner = inner
        self.fallback_upstream = fallback_upstream

    def name(self) -> str:
        return f"{resolver_name(self.inner)} w/ {default_name(self)}"

    def configuration(self) -> list[str]:
        lines = ["rewrite:"]
        lines.extend(f'  {key} = "{val}"' for key, val in self.rewrite.items())
        lines.extend(self.inner.configuration())
        return lines

    def _rewrite_domain(self, domain: str) -> tuple[str, str]:
        for key, value in self.rewrite.items():
            suffix = f".{key}"
            if domain.endswith(suffix):
                return f"{domain[: -len(suffix)]}.{value}", key
        return domain, ""

    def _rewrite_request(
        self, msg: dns.message.Message
    ) -> tuple[Optional[dns.message.Message], list[dns.name.Name]]:
        rewritten: Optional[dns.message.Message] = None
        original_names = [q.name for q in msg.question]
        for index, question in enumerate(msg.question):
            domain = question.name.to_text(omit_final_dot=True).lower()
            new_domain, key = self._rewrite_domain(domain)
            if new_domain == domain:
                continue
            if rewritten is None:
                rewritten = dns.message.from_wire(msg.to_wire())
            rewritten.question[index] = dns.rrset.RRset(
                dns.name.from_text(new_domain), question.rdclass, question.rdtype
            )
            _log.debug("rewriting %r to %r (%s:%s)", domain, new_domain, key, self.rewrite[key])
        return rewritten, original_names

    def resolve(self, request: Request) -> Response:
        original = request.req
        rewritten, original_names = self._rewrite_request(original)
        if rewritten is not None:
            request.req = rewritten

        error: Optional[Exception] = None
        response: Optional[Response] = None
        try:
            response = self.inner.resolve(request)
        except Exception as exc:  # noqa: BLE001 - decided below whether to fall back
            error = exc
        finally:
            request.req = original

        no_answer = response is not None and response is not NO_RESPONSE and not response.res.answer
        if self.fallback_upstream and (error is not None or no_answer):
            _log.debug("fallback to next resolver")
            return super().resolve(request)

        if error is not None:
            raise error
        assert response is not None

        if response is NO_RESPONSE:
            _log.debug("go to next resolver")
            return super().resolve(request)

        if rewritten is not None:
            msg = response.res
            for index, original_name in enumerate(original_names):
                if index < len(msg.question):
                    msg.question[index] = _renamed(msg.question[index], original_name)
                if index < len(msg.answer):
                    msg.answer[index] = _renamed(msg.answer[index], original_name)
        return response


def new_rewriter_resolver(
    rewrite: Mapping[str, str],
    inner: ChainedResolver,
    fallback_upstream: bool = False,
) -> ChainedResolver:
    """Wrap ``inner`` in a rewriter, or return it unchanged when nothing is rewritten."""
    if not rewrite:
        return inner
    inner.next = NoOpResolver()
    return RewriterResolver(rewrite, inner, fallback_upstream)