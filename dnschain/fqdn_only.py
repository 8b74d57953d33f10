"""Resolver that rejects names without a dot."""

from __future__ import annotations

from dns import message, rcode

from dnschain import chain, model


class FqdnOnlyResolver(chain.ChainedResolver):
    """Answers NXDOMAIN for single-label names when enabled."""

    def __init__(self, enabled: bool) -> None:
        super().__init__()
        self.enabled = enabled

    def _is_single_label(self, request: model.Request) -> bool:
        return "." not in model.extract_domain(request.req.question[0])

    def resolve(self, request: model.Request) -> model.Response:
        if not (self.enabled and self._is_single_label(request)):
            return super().resolve(request)
        rejection = message.Message()
        rejection.set_rcode(rcode.NXDOMAIN)
        return model.Response(
            res=rejection, rtype=model.ResponseType.NOTFQDN, reason="NOTFQDN"
        )

    def configuration(self) -> list[str]:
        return ["activated" if self.enabled else "deactivated"]