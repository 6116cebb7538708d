#!/usr/bin/env python3
"""
get-certs - dump TLS peer certificate chains as JSON lines

Usage:
    get-certs --host example.com [--port 443]
    get-certs --csvFile top-sites.csv [--workers 100]

Single-target mode prints one JSON line (or one error line on stderr).
Batch mode reads `rank,hostname` rows and scans them concurrently, falling
back to www.<hostname> when the bare name does not answer.
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

import config
from errors import ConnectError, FatalReadError
from hostlist import read_host_entries
from normalize import session_to_record
from runner import BatchScanner, LineWriter
from scanner import connect_session

log = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="get-certs",
        description="Fetch TLS certificate chains (without verifying them) and print them as JSON.",
    )
    parser.add_argument("--host", default="127.0.0.1", help="hostname dial")
    parser.add_argument("--port", type=int, default=443, help="hostport dial")
    parser.add_argument("--csvFile", dest="csv_file", default="", help="CSV of rank,hostname rows (batch mode)")
    parser.add_argument("--workers", type=int, default=config.MAX_WORKERS,
                        help=f"max hosts in flight in batch mode (default: {config.MAX_WORKERS})")
    parser.add_argument("--timeout", type=float, default=config.CONNECT_TIMEOUT,
                        help=f"connect timeout in seconds (default: {config.CONNECT_TIMEOUT:g})")
    parser.add_argument("--wait", action="store_true",
                        help="after a batch, keep running until a line is read from stdin")
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="logging level (default: %(default)s)")
    return parser


def run_single(host: str, port: int, timeout: float, out: LineWriter) -> int:
    try:
        session = connect_session(host, port, timeout)
    except ConnectError as e:
        log.warning("%s", e)
        return 1
    out.write_line(session_to_record(session).to_json())
    return 0


def run_batch(csv_file: str, workers: int, timeout: float, out: LineWriter, wait: bool = False) -> int:
    try:
        entries = read_host_entries(csv_file)
    except FatalReadError as e:
        log.critical("%s", e)
        return 2

    scanner = BatchScanner(max_workers=workers, timeout=timeout, out=out)
    scanner.run(entries)

    if wait:
        sys.stdin.readline()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config.setup_logging(args.log_level)

    if args.workers < 1:
        log.critical("--workers must be at least 1")
        return 2

    out = LineWriter()
    if args.csv_file:
        return run_batch(args.csv_file, args.workers, args.timeout, out, wait=args.wait)
    return run_single(args.host, args.port, args.timeout, out)


if __name__ == "__main__":
    sys.exit(main())
