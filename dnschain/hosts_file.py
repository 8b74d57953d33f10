"""Resolver answering from a hosts file."""

from __future__ import annotations

import ipaddress
import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Optional, Union

import dns.rdata
import dns.rdatatype
import dns.reversename

from dnschain.chain import ChainedResolver
from dnschain.custom_dns import is_supported_type
from dnschain.model import (
    IPAddress,
    Request,
    Response,
    ResponseType,
    create_answer_from_question,
    create_header,
    extract_domain,
    new_response_msg,
)

_log = logging.getLogger(__name__)

_REASON = "HOSTS FILE"
_MIN_COLUMN_COUNT = 2
_LOOPBACK4 = ipaddress.IPv4Network("127.0.0.0/8")
_LOOPBACK6 = ipaddress.IPv6Address("::1")


@dataclass
class Host:
    """One entry of a hosts file."""

    ip: IPAddress
    hostname: str
    aliases: list[str] = field(default_factory=list)


def _is_loopback(ip: IPAddress) -> bool:
    if isinstance(ip, ipaddress.IPv6Address):
        if ip.ipv4_mapped is not None:
            return ip.ipv4_mapped in _LOOPBACK4
        return ip == _LOOPBACK6
    return ip in _LOOPBACK4


def parse_hosts(text: str, filter_loopback: bool = False) -> list[Host]:
    """Parse hosts file content, skipping comments and invalid lines."""
    hosts = []
    for line in text.split("\n"):
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#"):
            continue
        fields = trimmed.partition("#")[0].split()
        if len(fields) < _MIN_COLUMN_COUNT:
            continue
        try:
            ip = ipaddress.ip_address(fields[0])
        except ValueError:
            continue
        if filter_loopback and _is_loopback(ip):
            continue
        hosts.append(Host(ip=ip, hostname=fields[1], aliases=fields[2:]))
    return hosts


def _format_duration(seconds: float) -> str:
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    secs_text = f"{secs:g}s"
    if hours:
        return f"{int(hours)}h{int(minutes)}m{secs_text}"
    if minutes:
        return f"{int(minutes)}m{secs_text}"
    return secs_text


def _fqdn(name: str) -> str:
    return name if name.endswith(".") else f"{name}."


class HostsFileResolver(ChainedResolver):
    """Resolves names and reverse lookups from a hosts file, refreshed periodically."""

    def __init__(
        self,
        hosts_file_path: Union[str, "os.PathLike[str]"] = "",
        ttl: float = 0,
        refresh_period: float = 0,
        filter_loopback: bool = False,
    ) -> None:
        super().__init__()
        self.hosts_file_path = os.fspath(hosts_file_path) if hosts_file_path else ""
        self.ttl = int(ttl)
        self.refresh_period = float(refresh_period)
        self.filter_loopback = filter_loopback
        self.hosts: list[Host] = []
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        try:
            self.reload()
        except OSError:
            _log.warning(
                "cannot parse hosts file: %s, hosts file resolving is disabled",
                self.hosts_file_path,
            )
            self.hosts_file_path = ""
        else:
            self.start_refresh()

    def reload(self) -> None:
        """Read the hosts file again; does nothing when no file is configured."""
        if not self.hosts_file_path:
            return
        with open(self.hosts_file_path, encoding="utf-8", errors="replace") as handle:
            text = handle.read()
        self.hosts = parse_hosts(text, self.filter_loopback)

    def start_refresh(self) -> None:
        """Start rereading the file every refresh period in the background."""
        if self.refresh_period <= 0 or not self.hosts_file_path:
            return
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._periodic_update,
            args=(self._stop_event,),
            name="hosts-file-refresh",
            daemon=True,
        )
        self._thread.start()

    def stop_refresh(self) -> None:
        """Stop the background refresh, if running."""
        if self._stop_event is not None:
            self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
        self._thread = None
        self._stop_event = None

    def _periodic_update(self, stop: threading.Event) -> None:
        while not stop.wait(self.refresh_period):
            _log.debug("refreshing hosts file %s", self.hosts_file_path)
            try:
                self.reload()
            except OSError as exc:
                _log.error("can't refresh hosts file: %s", exc)

    def _handle_reverse_dns(self, request: Request) -> Optional[Response]:
        question = request.req.question[0]
        if question.rdtype != dns.rdatatype.PTR:
            return None
        for host in self.hosts:
            if dns.reversename.from_address(str(host.ip)) != question.name:
                continue
            response = new_response_msg(request)
            answer = create_header(question, self.ttl)
            for hostname in (host.hostname, *host.aliases):
                answer.add(
                    dns.rdata.from_text(question.rdclass, dns.rdatatype.PTR, _fqdn(hostname))
                )
            response.answer.append(answer)
            return Response(res=response, rtype=ResponseType.HOSTSFILE, reason=_REASON)
        return None

    def resolve(self, request: Request) -> Response:
        if not self.hosts_file_path:
            return super().resolve(request)
        reverse = self._handle_reverse_dns(request)
        if reverse is not None:
            return reverse
        hosts = self.hosts
        if hosts:
            question = request.req.question[0]
            domain = extract_domain(question)
            answer = create_header(question, self.ttl)
            for host in hosts:
                names = (host.hostname, *host.aliases)
                matches = sum(1 for n in names if n == domain)
                if matches and is_supported_type(host.ip, question):
                    for rdata in create_answer_from_question(question, host.ip, self.ttl):
                        answer.add(rdata)
            if answer:
                response = new_response_msg(request)
                response.answer.append(answer)
                _log.debug("returning hosts file entry for %s", domain)
                return Response(res=response, rtype=ResponseType.HOSTSFILE, reason=_REASON)
        _log.debug("go to next resolver")
        return super().resolve(request)

    def configuration(self) -> list[str]:
        if not self.hosts_file_path or not self.hosts:
            return ["deactivated"]
        return [
            f"hosts file path: {self.hosts_file_path}",
            f"hosts TTL: {self.ttl}",
            f"hosts refresh period: {_format_duration(self.refresh_period)}",
            f"filter loopback addresses: {str(self.filter_loopback).lower()}",
        ]