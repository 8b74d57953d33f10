"""Resolver that hands query information to a query log writer."""

from __future__ import annotations

import enum
import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Protocol

import dns.rcode
import dns.rdatatype

from dnschain.chain import ChainedResolver
from dnschain.model import Request, Response, answer_to_string

_log = logging.getLogger(__name__)
_query_log = logging.getLogger("dnschain.query_log")

LOG_CHAN_CAP = 1000
CLEAN_UP_RUN_PERIOD = 12 * 3600.0

_STOP = object()


class QueryLogType(enum.Enum):
    """Where query log entries are written."""

    CONSOLE = "console"
    NONE = "none"
    CSV = "csv"
    CSV_CLIENT = "csv-client"
    MYSQL = "mysql"
    POSTGRESQL = "postgresql"

    def __str__(self) -> str:
        return self.value


@dataclass
class LogEntry:
    """One logged query with its answer."""

    request: Request
    response: Response
    start: float
    duration_ms: int


class Writer(Protocol):
    def write(self, entry: LogEntry) -> None:
        ...

    def clean_up(self) -> None:
        ...


WriterFactory = Callable[[str, int], Writer]


class LoggerWriter:
    """Writes query log entries to the application log."""

    def write(self, entry: LogEntry) -> None:
        question = entry.request.req.question[0]
        _query_log.info(
            "query resolved: client_ip=%s client_names=%s question_name=%s "
            "question_type=%s response_reason=%s answer=%s response_code=%s duration_ms=%d",
            entry.request.client_ip,
            "; ".join(entry.request.client_names),
            question.name.to_text(),
            dns.rdatatype.to_text(question.rdtype),
            entry.response.reason,
            answer_to_string(entry.response.res.answer),
            dns.rcode.to_text(entry.response.res.rcode()),
            entry.duration_ms,
        )

    def clean_up(self) -> None:
        """The application log keeps no query log files; only report that."""
        _log.debug("console query log keeps no files, nothing to clean up")


class NoneWriter:
    """Discards query log entries, counting how many were dropped."""

    def __init__(self) -> None:
        self.discarded = 0

    def write(self, entry: LogEntry) -> None:
        """Drop the entry."""
        self.discarded += 1

    def clean_up(self) -> None:
        """Reset the count of dropped entries."""
        _log.debug("query log disabled, %d entries discarded", self.discarded)
        self.discarded = 0


_DEFAULT_FACTORIES: dict[QueryLogType, WriterFactory] = {
    QueryLogType.CONSOLE: lambda target, days: LoggerWriter(),
    QueryLogType.NONE: lambda target, days: NoneWriter(),
}


def _create_writer(
    log_type: QueryLogType,
    target: str,
    retention_days: int,
    factories: Mapping[QueryLogType, WriterFactory],
    attempts: int,
    cooldown: float,
) -> Writer:
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            factory = factories.get(log_type)
            if factory is None:
                raise ValueError(f"no query log writer available for type {log_type}")
            return factory(target, retention_days)
        except Exception as exc:  # noqa: BLE001 - retried, then reported by the caller
            if attempt == attempts:
                raise
            _log.warning(
                "Error occurred on query writer creation, retry attempt %d/%d: %s",
                attempt + 1,
                attempts,
                exc,
            )
            time.sleep(cooldown)
    raise AssertionError("unreachable")


class QueryLoggingResolver(ChainedResolver):
    """Passes question, answer and duration of every successful query to a writer.

    Writing happens in a background thread; when it falls behind, new entries
    are dropped.
    """

    def __init__(
        self,
        log_type: QueryLogType = QueryLogType.CONSOLE,
        target: str = "",
        log_retention_days: int = 0,
        *,
        creation_attempts: int = 3,
        creation_cooldown: float = 2.0,
        writer_factories: Optional[Mapping[QueryLogType, WriterFactory]] = None,
    ) -> None:
        super().__init__()
        self.target = target
        self.log_retention_days = log_retention_days
        factories = {**_DEFAULT_FACTORIES, **(writer_factories or {})}
        try:
            self.writer: Writer = _create_writer(
                log_type,
                target,
                log_retention_days,
                factories,
                creation_attempts,
                creation_cooldown,
            )
            self.log_type = log_type
        except Exception as exc:  # noqa: BLE001 - fall back to console
            _log.error("can't create query log writer, using console as fallback: %s", exc)
            self.writer = LoggerWriter()
            self.log_type = QueryLogType.CONSOLE

        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=LOG_CHAN_CAP)
        self._closed = threading.Event()
        self._writer_thread = threading.Thread(
            target=self._write_log, name="query-log-writer", daemon=True
        )
        self._writer_thread.start()
        self._cleanup_thread: Optional[threading.Thread] = None
        if log_retention_days > 0:
            self._cleanup_thread = threading.Thread(
                target=self._periodic_clean_up, name="query-log-cleanup", daemon=True
            )
            self._cleanup_thread.start()

    @property
    def pending(self) -> int:
        """Number of entries waiting to be written."""
        return self._queue.qsize()

    def resolve(self, request: Request) -> Response:
        start = time.time()
        started = time.monotonic()
        response = super().resolve(request)
        duration_ms = int((time.monotonic() - started) * 1000)
        entry = LogEntry(request=request, response=response, start=start, duration_ms=duration_ms)
        try:
            self._queue.put_nowait(entry)
        except queue.Full:
            _log.error("query log writer is too slow, log entry will be dropped")
        return response

    def _write_log(self) -> None:
        while True:
            try:
                item = self._queue.get(timeout=0.05)
            except queue.Empty:
                if self._closed.is_set():
                    return
                continue
            if item is _STOP:
                return
            assert isinstance(item, LogEntry)
            started = time.monotonic()
            try:
                self.writer.write(item)
            except Exception as exc:  # noqa: BLE001 - keep the writer thread alive
                _log.error("can't write query log entry: %s", exc)
            pending = self._queue.qsize()
            if pending > LOG_CHAN_CAP // 2:
                _log.warning(
                    "query log writer is too slow, write duration: %d ms (pending %d)",
                    int((time.monotonic() - started) * 1000),
                    pending,
                )

    def _periodic_clean_up(self) -> None:
        while not self._closed.wait(CLEAN_UP_RUN_PERIOD):
            self.clean_up()

    def clean_up(self) -> None:
        """Remove old log data through the writer."""
        self.writer.clean_up()

    def close(self) -> None:
        """Stop the background threads after pending entries are written."""
        self._closed.set()
        try:
            self._queue.put_nowait(_STOP)
        except queue.Full:
            pass
        self._writer_thread.join()
        if self._cleanup_thread is not None:
            self._cleanup_thread.join()
            self._cleanup_thread = None

    def __enter__(self) -> "QueryLoggingResolver":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def configuration(self) -> list[str]:
        return [
            f'type: "{self.log_type}"',
            f'target: "{self.target}"',
            f"logRetentionDays: {self.log_retention_days}",
        ]