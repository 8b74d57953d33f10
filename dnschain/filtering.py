"""Resolver that answers queries of chosen types with an empty result."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Union

from dns import rcode, rdatatype

from dnschain import chain, model


class FilteringResolver(chain.ChainedResolver):
    """Returns an empty NOERROR answer for the configured query types."""

    def __init__(self, query_types: Iterable[Union[int, str]]) -> None:
        super().__init__()
        self.query_types = frozenset(map(rdatatype.RdataType.make, query_types))

    def resolve(self, request: model.Request) -> model.Response:
        if request.req.question[0].rdtype not in self.query_types:
            return super().resolve(request)
        reply = model.new_response_msg(request)
        reply.set_rcode(rcode.NOERROR)
        return model.Response(res=reply, rtype=model.ResponseType.FILTERED)

    def configuration(self) -> list[str]:
        listed = ", ".join(sorted(map(rdatatype.to_text, self.query_types)))
        return [f"filtering query Types: '{listed}'"]