"""Resolver that determines client names from a mapping or by reverse lookup."""

from __future__ import annotations

import ipaddress
import logging
import threading
import time
from typing import Iterable, Mapping, Optional, Sequence, Union

import dns.message
import dns.rdatatype
import dns.reversename
import dns.rrset

from dnschain.chain import ChainedResolver, Resolver
from dnschain.model import IPAddress, Request, Response
from dnschain.upstream import DEFAULT_TIMEOUT, Upstream, UpstreamResolver

_log = logging.getLogger(__name__)

_CACHE_TTL = 3600.0


class _ExpiringCache:
    def __init__(self) -> None:
        self._items: dict[str, tuple[float, list[str]]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[list[str]]:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            expires, value = item
            if expires <= time.monotonic():
                del self._items[key]
                return None
            return list(value)

    def put(self, key: str, value: list[str], ttl: float) -> None:
        with self._lock:
            self._items[key] = (time.monotonic() + ttl, list(value))

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        now = time.monotonic()
        with self._lock:
            return sum(1 for expires, _ in self._items.values() if expires > now)


def extract_client_names(
    answer: Iterable[dns.rrset.RRset], fallback_ip: Union[str, IPAddress]
) -> list[str]:
    """Return the PTR targets of the answer, or the fallback address if there are none."""
    names = [
        rdata.target.to_text().removesuffix(".")
        for rrset in answer
        if rrset.rdtype == dns.rdatatype.PTR
        for rdata in rrset
    ]
    return names or [str(fallback_ip)]


class ClientNamesResolver(ChainedResolver):
    """Sets the client names of a request before passing it on.

    Names come from the request's client id, a fixed IP mapping or a reverse
    DNS lookup; without any of these the client's IP address is used.
    """

    def __init__(
        self,
        upstream: Optional[Union[Upstream, Resolver]] = None,
        single_name_order: Sequence[int] = (),
        client_ip_mapping: Optional[Mapping[str, Iterable[Union[str, IPAddress]]]] = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        check_upstream: bool = True,
    ) -> None:
        super().__init__()
        self.external_resolver: Optional[Resolver]
        if isinstance(upstream, Upstream):
            self.external_resolver = (
                None
                if upstream.is_default
                else UpstreamResolver(upstream, timeout=timeout, check_upstream=check_upstream)
            )
        else:
            self.external_resolver = upstream
        self.single_name_order = list(single_name_order)
        self.client_ip_mapping: dict[str, list[IPAddress]] = {
            name: [ipaddress.ip_address(str(ip)) for ip in ips]
            for name, ips in (client_ip_mapping or {}).items()
        }
        self._cache = _ExpiringCache()

    def configuration(self) -> list[str]:
        if self.external_resolver is None and not self.client_ip_mapping:
            return ["deactivated, use only IP address"]
        order = " ".join(str(i) for i in self.single_name_order)
        lines = [f'singleNameOrder = "[{order}]"']
        if self.external_resolver is not None:
            lines.append(f'externalResolver = "{self.external_resolver}"')
        lines.append(f"cache item count = {len(self._cache)}")
        if self.client_ip_mapping:
            lines.append("client IP mapping:")
            lines.extend(
                f"{name} -> [{' '.join(str(ip) for ip in ips)}]"
                for name, ips in self.client_ip_mapping.items()
            )
        return lines

    def resolve(self, request: Request) -> Response:
        names = self._client_names(request)
        request.client_names = names
        _log.debug("client names: %s", "; ".join(names))
        return super().resolve(request)

    def flush_cache(self) -> None:
        """Forget all cached client names."""
        self._cache.clear()

    def _client_names(self, request: Request) -> list[str]:
        if request.request_client_id:
            return [request.request_client_id]
        ip = request.client_ip
        if ip is None:
            return []
        key = str(ip)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        names = self._resolve_client_names(ip)
        self._cache.put(key, names, _CACHE_TTL)
        return names

    def _names_from_mapping(self, ip: IPAddress) -> list[str]:
        return [
            name
            for name, ips in self.client_ip_mapping.items()
            for mapped in ips
            if mapped == ip
        ]

    def _resolve_client_names(self, ip: IPAddress) -> list[str]:
        mapped = self._names_from_mapping(ip)
        if mapped:
            return mapped
        if self.external_resolver is None:
            return [str(ip)]
        reverse = dns.reversename.from_address(str(ip))
        lookup = Request(req=dns.message.make_query(reverse, dns.rdatatype.PTR))
        try:
            response = self.external_resolver.resolve(lookup)
        except Exception as exc:  # noqa: BLE001 - any failure falls back to the address
            _log.error("can't resolve client name: %s", exc)
            return [str(ip)]
        names = extract_client_names(response.res.answer, ip)
        if self.single_name_order:
            result: list[str] = []
            for index in self.single_name_order:
                if 0 < index <= len(names):
                    result = [names[index - 1]]
                    break
        else:
            result = names
        _log.debug("resolved client name(s) from external resolver: %s", "; ".join(result))
        return result