"""Resolver interfaces and chaining of resolvers."""

from __future__ import annotations

import abc
from typing import Optional, Protocol, runtime_checkable

import dns.message

from dnschain.model import Request, Response


class Resolver(abc.ABC):
    """Anything that can answer a DNS request."""

    @abc.abstractmethod
    def resolve(self, request: Request) -> Response:
        """Resolve the request."""

    @abc.abstractmethod
    def configuration(self) -> list[str]:
        """Describe the current configuration, one line per entry."""


class ChainedResolver(Resolver):
    """A resolver that hands requests it does not answer to the next one."""

    def __init__(self) -> None:
        self.next: Optional[Resolver] = None

    def resolve(self, request: Request) -> Response:
        """Pass the request on to the next resolver."""
        if self.next is None:
            raise RuntimeError(f"{default_name(self)} has no next resolver")
        return self.next.resolve(request)


NO_RESPONSE = Response(res=dns.message.Message())
"""Marker returned by :class:`NoOpResolver` meaning "no answer here"."""


class NoOpResolver(Resolver):
    """Ends a resolver branch without producing an answer."""

    def resolve(self, request: Request) -> Response:
        return NO_RESPONSE

    def configuration(self) -> list[str]:
        return []


@runtime_checkable
class _NamedResolver(Protocol):
    def name(self) -> str:
        ...


def chain(*resolvers: Resolver) -> Resolver:
    """Link the resolvers in order and return the first one."""
    if not resolvers:
        raise ValueError("at least one resolver is required")
    for current, following in zip(resolvers, resolvers[1:]):
        if isinstance(current, ChainedResolver):
            current.next = following
    return resolvers[0]


def name(resolver: Resolver) -> str:
    """Return a user friendly name of the resolver."""
    if isinstance(resolver, _NamedResolver) and callable(resolver.name):
        return resolver.name()
    return default_name(resolver)


def default_name(resolver: Resolver) -> str:
    """Return the short name of the resolver's class."""
    return type(resolver).__name__