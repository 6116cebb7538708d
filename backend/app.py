from __future__ import annotations

from typing import List

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import API_MAX_TARGET_LEN, API_MAX_TARGETS, CONNECT_TIMEOUT, DEFAULT_PORT, MAX_WORKERS, setup_logging
from errors import ConnectError
from models import HostEntry
from runner import BatchScanner, NullWriter, fetch_session_record
from scanner import connect_session


# -----------------------------
# Pydantic models
# -----------------------------

class ScanRequest(BaseModel):
    targets: List[str]


# -----------------------------
# App
# -----------------------------

app = FastAPI(
    title="get-certs API",
    description="Fetch TLS peer certificate chains (unverified) as normalized JSON records.",
    version="0.1.0",
)


@app.on_event("startup")
def _startup():
    setup_logging()


@app.get("/health")
def health():
    return {"status": "ok"}


def _valid_target(t: str) -> bool:
    return bool(t) and len(t) <= API_MAX_TARGET_LEN


@app.get("/certs/{hostname}")
def get_certs(hostname: str, port: int = DEFAULT_PORT):
    hostname = (hostname or "").strip()
    if not _valid_target(hostname):
        raise HTTPException(status_code=400, detail="Invalid hostname.")
    try:
        record = fetch_session_record(hostname, port=port, connect=connect_session, timeout=CONNECT_TIMEOUT)
    except ConnectError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return JSONResponse(content=record.model_dump(mode="json", by_alias=True))


@app.post("/scan")
def scan(request: ScanRequest):
    if len(request.targets) > API_MAX_TARGETS:
        raise HTTPException(status_code=400, detail=f"Too many targets. Max is {API_MAX_TARGETS}.")

    entries: List[HostEntry] = []
    for rank, t in enumerate(request.targets, start=1):
        t = (t or "").strip()
        if not _valid_target(t):
            raise HTTPException(status_code=400, detail="Invalid target.")
        entries.append(HostEntry(rank=rank, hostname=t))

    # parallel-ish without overwhelming networks
    scanner = BatchScanner(
        max_workers=min(MAX_WORKERS, max(1, len(entries))),
        port=DEFAULT_PORT,
        timeout=CONNECT_TIMEOUT,
        connect=connect_session,
        out=NullWriter(),
        keep_results=True,
    )
    progress = scanner.run(entries)

    # completion order is arbitrary; report in request order
    results = [
        {"rank": e.rank, "target": e.hostname, "record": r.model_dump(mode="json", by_alias=True)}
        for e, r in sorted(scanner.results, key=lambda item: item[0].rank)
    ]
    errors = [
        {"rank": e.rank, "target": e.hostname, "error": line}
        for e, line in sorted(scanner.errors, key=lambda item: item[0].rank)
    ]
    return {"count": len(results), "results": results, "errors": errors, "progress": progress}
