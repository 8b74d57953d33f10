"""Resolver that adds Extended DNS Error information to responses."""

from __future__ import annotations

import dns.edns

from dnschain.chain import ChainedResolver
from dnschain.model import Request, Response, ResponseType

_EDE_CODES = {
    ResponseType.RESOLVED: dns.edns.EDECode.OTHER,
    ResponseType.CACHED: dns.edns.EDECode.CACHED_ERROR,
    ResponseType.CONDITIONAL: dns.edns.EDECode.FORGED_ANSWER,
    ResponseType.CUSTOMDNS: dns.edns.EDECode.FORGED_ANSWER,
    ResponseType.HOSTSFILE: dns.edns.EDECode.FORGED_ANSWER,
    ResponseType.NOTFQDN: dns.edns.EDECode.BLOCKED,
    ResponseType.BLOCKED: dns.edns.EDECode.BLOCKED,
    ResponseType.FILTERED: dns.edns.EDECode.FILTERED,
    ResponseType.SPECIAL: dns.edns.EDECode.FILTERED,
}


def extended_error_code(response_type: ResponseType) -> dns.edns.EDECode:
    """Return the EDE info code describing a response type."""
    return _EDE_CODES.get(response_type, dns.edns.EDECode.OTHER)


def _add_extra_reasoning(response: Response) -> None:
    code = extended_error_code(response.rtype)
    # the "other" code is left out, some clients handle it badly
    if code <= 0:
        return
    option = dns.edns.EDEOption(code, response.reason or None)
    msg = response.res
    if msg.edns < 0:
        msg.use_edns(edns=0, options=[option])
    else:
        msg.use_edns(
            edns=msg.edns,
            ednsflags=msg.ednsflags,
            payload=msg.payload,
            options=[*msg.options, option],
        )


class EdeResolver(ChainedResolver):
    """Attaches the reason of a response as an Extended DNS Error option."""

    def __init__(self, enable: bool) -> None:
        super().__init__()
        self.enable = enable

    def resolve(self, request: Request) -> Response:
        response = super().resolve(request)
        if self.enable:
            _add_extra_reasoning(response)
        return response

    def configuration(self) -> list[str]:
        return ["activated" if self.enable else "deactivated"]