from __future__ import annotations

import csv
import logging
from typing import Iterator, List, TextIO

from errors import FatalReadError, ParseError
from models import HostEntry

log = logging.getLogger(__name__)


def parse_rank(value: str, line: int = 0) -> int:
    try:
        return int((value or "").strip())
    except ValueError:
        raise ParseError(f"invalid rank {value!r}", line=line)


def iter_host_entries(stream: TextIO) -> Iterator[HostEntry]:
    """
    Yield one HostEntry per `rank,hostname` row (no header).
    A bad rank becomes 0; short rows and blank hostnames are skipped.
    """
    reader = csv.reader(stream)
    while True:
        try:
            row = next(reader)
        except StopIteration:
            return
        except (csv.Error, OSError, UnicodeDecodeError) as e:
            raise FatalReadError(f"line {reader.line_num}: {e}") from e

        if not row:
            continue
        if len(row) < 2 or not row[1].strip():
            log.warning("line %d: expected rank,hostname, got %r; skipping", reader.line_num, row)
            continue

        try:
            rank = parse_rank(row[0], line=reader.line_num)
        except ParseError as e:
            log.debug("line %d: %s, using 0", reader.line_num, e)
            rank = 0

        yield HostEntry(rank=rank, hostname=row[1].strip())


def read_host_entries(path: str) -> List[HostEntry]:
    """Read the whole host list up front. Any read failure raises FatalReadError."""
    try:
        with open(path, newline="", encoding="utf-8") as f:
            return list(iter_host_entries(f))
    except OSError as e:
        raise FatalReadError(f"{path}: {e}") from e
