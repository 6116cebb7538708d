from __future__ import annotations

import functools
import logging
import sys
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, TextIO, Tuple

from config import CONNECT_TIMEOUT, DEFAULT_PORT, MAX_WORKERS
from errors import ConnectError
from models import HostEntry, SessionRecord
from normalize import session_to_record
from scanner import TLSSession, connect_session

log = logging.getLogger(__name__)

Connector = Callable[[str, int, float], TLSSession]


class LineWriter(object):
    """Writes whole lines to a shared stream; one line never interleaves with another."""

    def __init__(self, stream: Optional[TextIO] = None):
        self._stream = stream
        self._lock = threading.Lock()

    def write_line(self, line: str) -> None:
        stream = self._stream or sys.stdout
        with self._lock:
            stream.write(line + "\n")
            stream.flush()


class NullWriter(LineWriter):
    """Drops every line; for callers that only want the kept results."""

    def write_line(self, line: str) -> None:
        pass


class RunOutcome(NamedTuple):
    record: Optional[SessionRecord] = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.record is not None


def format_failure(position: int, hostname: str, err: Exception) -> str:
    return "[%8d:%s] %s" % (position, hostname, err)


def fetch_session_record(
    hostname: str,
    port: int = DEFAULT_PORT,
    connect: Connector = connect_session,
    timeout: float = CONNECT_TIMEOUT,
) -> SessionRecord:
    """
    Connect to hostname:port, falling back once to www.<hostname>.
    Raises the ConnectError of the second attempt when both fail.
    """
    try:
        session = connect(hostname, port, timeout)
    except ConnectError as e:
        log.debug("%s:%d failed (%s: %s), retrying with www.", hostname, port, e.reason, e)
        session = connect("www." + hostname, port, timeout)
    return session_to_record(session)


def run_and_print(
    position: int,
    hostname: str,
    port: int = DEFAULT_PORT,
    connect: Connector = connect_session,
    timeout: float = CONNECT_TIMEOUT,
    out: Optional[LineWriter] = None,
) -> RunOutcome:
    """
    Scan one host and emit exactly one line: the session JSON on stdout, or
    "[position:hostname] error" on the log at WARNING. The failure line
    always names the hostname as given, even when the www. retry was the
    last attempt.
    """
    try:
        record = fetch_session_record(hostname, port=port, connect=connect, timeout=timeout)
    except ConnectError as e:
        line = format_failure(position, hostname, e)
        log.warning("%s", line)
        return RunOutcome(error=line)

    (out or LineWriter()).write_line(record.to_json())
    return RunOutcome(record=record)


class BatchScanner(object):
    """
    Runs run_and_print over a host list with at most `max_workers` hosts in
    flight. Dispatch blocks while the gate is full; run() returns once every
    dispatched host has finished.

    Each host is accounted for in its future's done-callback, so nothing is
    held past the host's own line. With keep_results=True the records and
    failure lines are also kept on the scanner, paired with their entry
    (used by the HTTP API).
    """

    def __init__(
        self,
        max_workers: int = MAX_WORKERS,
        port: int = DEFAULT_PORT,
        timeout: float = CONNECT_TIMEOUT,
        connect: Connector = connect_session,
        out: Optional[LineWriter] = None,
        keep_results: bool = False,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers
        self.port = port
        self.timeout = timeout
        self.connect = connect
        self.out = out or LineWriter()
        self.keep_results = keep_results

        self._gate = threading.BoundedSemaphore(max_workers)
        self._lock = threading.Lock()

        self.total = 0
        self.done = 0
        self.failed = 0
        self.results: List[Tuple[HostEntry, SessionRecord]] = []
        self.errors: List[Tuple[HostEntry, str]] = []
        self.started_at = None
        self.finished_at = None

    def add_outcome(self, entry: HostEntry, outcome: RunOutcome):
        with self._lock:
            self.done += 1
            if not outcome.ok:
                self.failed += 1
            if not self.keep_results:
                return
            if outcome.ok:
                self.results.append((entry, outcome.record))
            else:
                self.errors.append((entry, outcome.error))

    def _scan_one(self, entry: HostEntry) -> RunOutcome:
        return run_and_print(
            entry.rank,
            entry.hostname,
            port=self.port,
            connect=self.connect,
            timeout=self.timeout,
            out=self.out,
        )

    def _finish(self, entry: HostEntry, fut: Future) -> None:
        try:
            try:
                outcome = fut.result()
            except Exception as e:
                line = format_failure(entry.rank, entry.hostname, e)
                log.exception("%s", line)
                outcome = RunOutcome(error=line)
            self.add_outcome(entry, outcome)
        finally:
            self._gate.release()

    def run(self, entries: Iterable[HostEntry]) -> Dict[str, Any]:
        self.started_at = time.time()

        # leaving the with block waits for every submitted host
        with ThreadPoolExecutor(max_workers=self.max_workers) as ex:
            for entry in entries:
                # blocks while max_workers hosts are in flight
                self._gate.acquire()
                try:
                    fut = ex.submit(self._scan_one, entry)
                except Exception:
                    self._gate.release()
                    raise
                self.total += 1
                fut.add_done_callback(functools.partial(self._finish, entry))

        self.finished_at = time.time()
        log.debug("batch finished: %d hosts, %d failed", self.total, self.failed)
        return self.snapshot_progress()

    def snapshot_progress(self) -> Dict[str, Any]:
        with self._lock:
            elapsed = (self.finished_at or time.time()) - (self.started_at or time.time())
            return {
                "total": self.total,
                "done": self.done,
                "failed": self.failed,
                "elapsed_seconds": int(elapsed),
            }
