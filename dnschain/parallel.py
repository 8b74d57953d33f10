"""Resolver that asks two upstream resolvers at once and uses the fastest answer."""

from __future__ import annotations

import fnmatch
import ipaddress
import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence, Union

from dnschain.chain import Resolver
from dnschain.model import IPAddress, Request, Response, ResponseType, new_request
from dnschain.upstream import DEFAULT_TIMEOUT, Upstream, UpstreamError, UpstreamResolver

_log = logging.getLogger(__name__)

UPSTREAM_DEFAULT_CFG_NAME = "default"
_ERROR_WINDOW_MINUTES = 60
_ERROR_MEMORY_SECONDS = 3600


def client_name_matches_group(group: str, client_name: str) -> bool:
    """Match a client name against a group name, which may hold wildcards."""
    return fnmatch.fnmatchcase(client_name.lower(), group.lower())


def cidr_contains_ip(cidr: str, ip: Union[str, IPAddress, None]) -> bool:
    """Tell whether ``cidr`` (a network in slash notation) contains ``ip``."""
    if ip is None or "/" not in cidr:
        return False
    try:
        network = ipaddress.ip_network(cidr, strict=False)
        address = ipaddress.ip_address(str(ip))
    except ValueError:
        return False
    return address.version == network.version and address in network


@dataclass(eq=False)
class _UpstreamStatus:
    resolver: Resolver
    last_error_time: float = 0.0


def _weighted_random(
    statuses: Sequence[_UpstreamStatus], exclude: Optional[Resolver] = None
) -> _UpstreamStatus:
    now = time.time()
    choices: list[_UpstreamStatus] = []
    weights: list[int] = []
    for status in statuses:
        weight = float(_ERROR_WINDOW_MINUTES)
        since = now - status.last_error_time
        if since < _ERROR_MEMORY_SECONDS:
            # recent errors reduce the weight
            weight = max(1.0, weight - (_ERROR_WINDOW_MINUTES - since / 60))
        if status.resolver is not exclude:
            choices.append(status)
            weights.append(int(weight))
    if not choices:
        raise ValueError("no resolver to choose from")
    return random.choices(choices, weights=weights)[0]


def pick_random(
    statuses: Sequence[_UpstreamStatus],
) -> tuple[_UpstreamStatus, _UpstreamStatus]:
    """Pick two different resolvers, preferring those without recent errors."""
    first = _weighted_random(statuses)
    second = _weighted_random(statuses, first.resolver)
    return first, second


def _test_resolver(resolver: Resolver) -> None:
    try:
        response = resolver.resolve(new_request("github.com.", "A"))
    except Exception as exc:  # noqa: BLE001 - any failure means unreachable
        raise UpstreamError(f"test resolve of upstream server failed: {exc}") from exc
    if response.rtype != ResponseType.RESOLVED:
        raise UpstreamError("test resolve of upstream server failed")


def _resolve_with(request: Request, status: _UpstreamStatus) -> Response:
    try:
        return status.resolver.resolve(request)
    except Exception:
        status.last_error_time = time.time()
        raise


class ParallelBestResolver(Resolver):
    """Sends each request to two upstream resolvers and returns the first answer."""

    def __init__(
        self,
        upstreams: Mapping[str, Sequence[Union[Upstream, Resolver]]],
        *,
        check_upstreams: bool = True,
        start_verify_upstream: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.resolvers_per_client: dict[str, list[_UpstreamStatus]] = {}
        for group, entries in upstreams.items():
            statuses: list[_UpstreamStatus] = []
            failed = 0
            for entry in entries:
                if isinstance(entry, Upstream):
                    try:
                        resolver: Resolver = UpstreamResolver(
                            entry, timeout=timeout, check_upstream=check_upstreams
                        )
                    except UpstreamError as exc:
                        _log.warning("upstream group %s: %s", group, exc)
                        failed += 1
                        continue
                else:
                    resolver = entry
                if check_upstreams:
                    try:
                        _test_resolver(resolver)
                    except UpstreamError as exc:
                        _log.warning("%s", exc)
                        failed += 1
                statuses.append(_UpstreamStatus(resolver))
            if check_upstreams and start_verify_upstream and failed == len(entries):
                raise UpstreamError(
                    f"unable to reach any DNS resolvers configured for resolver group {group}"
                )
            self.resolvers_per_client[group] = statuses

        if not self.resolvers_per_client.get(UPSTREAM_DEFAULT_CFG_NAME):
            raise UpstreamError(
                "no external DNS resolvers configured as default upstream resolvers. "
                f"Please configure at least one under '{UPSTREAM_DEFAULT_CFG_NAME}' "
                "configuration name"
            )

    def configuration(self) -> list[str]:
        lines = ["upstream resolvers:"]
        for group, statuses in self.resolvers_per_client.items():
            lines.append(f"- {group}")
            lines.extend(f"  - {status.resolver}" for status in statuses)
        return lines

    def __str__(self) -> str:
        groups = "; ".join(
            f"{group} ({','.join(str(s.resolver) for s in statuses)})"
            for group, statuses in self.resolvers_per_client.items()
        )
        return f"parallel upstreams '{groups}'"

    def resolvers_for_client(self, request: Request) -> list[_UpstreamStatus]:
        """Return the resolvers configured for the request's client."""
        result: list[_UpstreamStatus] = []
        for client_name in request.client_names:
            for group, statuses in self.resolvers_per_client.items():
                if client_name_matches_group(group, client_name):
                    result.extend(statuses)
        if request.client_ip is not None:
            result.extend(self.resolvers_per_client.get(str(request.client_ip), []))
            for group, statuses in self.resolvers_per_client.items():
                if cidr_contains_ip(group, request.client_ip):
                    result.extend(statuses)
        if not result:
            result = list(self.resolvers_per_client[UPSTREAM_DEFAULT_CFG_NAME])
        return result

    def resolve(self, request: Request) -> Response:
        statuses = self.resolvers_for_client(request)
        if len(statuses) == 1:
            _log.debug("delegating to resolver %s", statuses[0].resolver)
            return statuses[0].resolver.resolve(request)

        first, second = pick_random(statuses)
        _log.debug("using %s and %s as resolver", first.resolver, second.resolver)
        errors: list[Exception] = []
        executor = ThreadPoolExecutor(max_workers=2)
        try:
            futures = [executor.submit(_resolve_with, request, s) for s in (first, second)]
            for future in as_completed(futures):
                try:
                    return future.result()
                except Exception as exc:  # noqa: BLE001 - collected and reported below
                    _log.debug("resolution failed from resolver, cause: %s", exc)
                    errors.append(exc)
        finally:
            executor.shutdown(wait=False)
        raise UpstreamError(
            "resolution was not successful, used resolvers: "
            f"'{first.resolver}' and '{second.resolver}' errors: {[str(e) for e in errors]}"
        )