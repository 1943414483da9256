"""
ui/web_app.py — FastAPI server exposing an OmniCore orchestrator.

Presentation clients submit queries over REST and follow pipeline progress
over a WebSocket at /ws. Rendering is left entirely to the client.

REST endpoints
--------------
GET  /health     JSON health check
GET  /stages     Ordered stage table
GET  /domains    Domain enumeration (first entry is the auto-detect sentinel)
GET  /samples    Catalog questions usable as sample queries
GET  /state      Orchestrator snapshot
GET  /history    Resolved answers, newest first (≤ capacity)
POST /query      Submit a query  {"query": "...", "domain": "Auto-Detect"}
                 202 accepted · 409 busy · 422 invalid · 503 shut down

WebSocket
---------
ws://<host>:<port>/ws

Messages pushed by server (JSON):
  {"type": "snapshot", ...}                       ← once, on connect
  {"type": "on_run_started", "run_id": 1, ...}
  {"type": "on_stage_started", "index": 0, "stage": {...}}
  {"type": "on_stage_completed", "index": 0, "delay_ms": 912.3, ...}
  {"type": "on_result", "answer": {...}, "assessment": {...}}
  {"type": "on_run_cancelled", "reason": "shutdown", ...}
  {"type": "on_submit_rejected", "reason": "busy", ...}
  {"type": "on_status_changed", "from": "IDLE", "to": "RUNNING", ...}
  {"type": "tick", "timestamp_ms": ..., "status": "RUNNING"}  ← heartbeat every second
"""

from __future__ import annotations

import asyncio
import json
import threading
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Set

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator

from answer.catalog import sample_queries
from core.constants import AUTO_DETECT, DOMAINS, PIPELINE_STAGES, normalize_domain
from core.logger import get_logger
from pipeline.controller import ALL_EVENTS, PipelineOrchestrator

_log = get_logger()

# ── Shared state ──────────────────────────────────────────────────────────────
_orchestrator: Optional[PipelineOrchestrator] = None
_connected_clients: Set[WebSocket] = set()
_clients_lock = threading.Lock()

# asyncio event loop running in the uvicorn thread
_loop: Optional[asyncio.AbstractEventLoop] = None


# ── Request schema ────────────────────────────────────────────────────────────

class QueryRequest(BaseModel):
    """
    Pydantic-validated body for ``POST /query``.

    Rejects blank queries and unknown domains before they reach the
    orchestrator; the domain is returned in its canonical spelling.
    """

    query: str
    domain: str = AUTO_DETECT

    @field_validator("query")
    @classmethod
    def query_must_be_non_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("query must not be empty")
        return v

    @field_validator("domain")
    @classmethod
    def domain_must_be_known(cls, v: str) -> str:
        canonical = normalize_domain(v)
        if canonical is None:
            raise ValueError(f"unknown domain {v!r}; expected one of {list(DOMAINS)}")
        return canonical


# ── WebSocket helpers ─────────────────────────────────────────────────────────

def _push(msg: Dict[str, Any]) -> None:
    """Thread-safe push of a JSON message to every connected WebSocket client."""
    if _loop is None or _loop.is_closed():
        return
    asyncio.run_coroutine_threadsafe(_broadcast(msg), _loop)


async def _broadcast(msg: Dict[str, Any]) -> None:
    text = json.dumps(msg, default=str)
    with _clients_lock:
        clients = list(_connected_clients)
    dead: List[WebSocket] = []
    for ws in clients:
        try:
            await ws.send_text(text)
        except Exception:  # noqa: BLE001
            dead.append(ws)
    if dead:
        with _clients_lock:
            for ws in dead:
                _connected_clients.discard(ws)


# ── EventBus → WebSocket bridge ───────────────────────────────────────────────

def wire_orchestrator(orchestrator: PipelineOrchestrator) -> None:
    """Register EventBus callbacks so *orchestrator* feeds the WS stream."""
    global _orchestrator
    _orchestrator = orchestrator

    for event in ALL_EVENTS:
        orchestrator.subscribe(event, _forwarder(event))

    _log.info("web_app", "orchestrator_wired", {})


def _forwarder(event: str):
    msg_type = event.lower()

    def _forward(data: Dict[str, Any]) -> None:
        _push({"type": msg_type, **data})

    return _forward


# ── Heartbeat ─────────────────────────────────────────────────────────────────

async def _heartbeat() -> None:
    """Push a tick message every second so the client can detect disconnects."""
    while True:
        await asyncio.sleep(1.0)
        status = _orchestrator.status.value if _orchestrator else None
        _push({"type": "tick", "timestamp_ms": round(time.time() * 1000), "status": status})


# ── App lifecycle ─────────────────────────────────────────────────────────────

@asynccontextmanager
async def _lifespan(_app: FastAPI):
    global _loop
    _loop = asyncio.get_running_loop()
    heartbeat = asyncio.create_task(_heartbeat())
    _log.info("web_app", "startup", {})
    try:
        yield
    finally:
        heartbeat.cancel()
        _loop = None
        _log.info("web_app", "shutdown", {})


app = FastAPI(title="OmniCore", version="1.0", lifespan=_lifespan)


def _not_ready() -> JSONResponse:
    return JSONResponse({"error": "orchestrator not ready"}, status_code=503)


# ── Routes ────────────────────────────────────────────────────────────────────

@app.get("/health")
async def health() -> JSONResponse:
    ready = _orchestrator is not None
    return JSONResponse({
        "status": "ok" if ready else "orchestrator_not_ready",
        "run_status": _orchestrator.status.value if ready else None,
        "clients": len(_connected_clients),
    })


@app.get("/stages")
async def stages() -> JSONResponse:
    return JSONResponse([s.to_dict() for s in PIPELINE_STAGES])


@app.get("/domains")
async def domains() -> JSONResponse:
    return JSONResponse(list(DOMAINS))


@app.get("/samples")
async def samples() -> JSONResponse:
    return JSONResponse(sample_queries())


@app.get("/state")
async def state() -> JSONResponse:
    if _orchestrator is None:
        return _not_ready()
    return JSONResponse(_orchestrator.snapshot())


@app.get("/history")
async def history() -> JSONResponse:
    if _orchestrator is None:
        return _not_ready()
    return JSONResponse([a.to_dict() for a in _orchestrator.history.list()])


@app.post("/query")
async def query(body: QueryRequest) -> JSONResponse:
    if _orchestrator is None:
        return _not_ready()
    accepted = _orchestrator.submit(body.query, body.domain)
    if not accepted and _orchestrator.is_closed:
        return JSONResponse({"accepted": False, "reason": "shutdown"}, status_code=503)
    if not accepted:
        return JSONResponse(
            {"accepted": False, "reason": "busy", "state": _orchestrator.snapshot()},
            status_code=409,
        )
    return JSONResponse(
        {"accepted": True, "run_id": _orchestrator.snapshot()["run_id"]},
        status_code=202,
    )


@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket) -> None:
    await ws.accept()
    with _clients_lock:
        _connected_clients.add(ws)

    snapshot = _orchestrator.snapshot() if _orchestrator else {}
    await ws.send_text(json.dumps({"type": "snapshot", **snapshot}, default=str))
    _log.info("web_app", "ws_connected", {"total": len(_connected_clients)})

    try:
        while True:
            msg = await ws.receive_text()
            try:
                data = json.loads(msg)
            except json.JSONDecodeError:
                _log.warn("web_app", "ws_bad_message", {"raw": msg[:200]})
                continue
            if not isinstance(data, dict):
                _log.warn("web_app", "ws_non_object_message", {"raw": msg[:200]})
                continue
            await _handle_client_msg(data, ws)
    except WebSocketDisconnect:
        pass
    finally:
        with _clients_lock:
            _connected_clients.discard(ws)
        _log.info("web_app", "ws_disconnected", {"total": len(_connected_clients)})


async def _handle_client_msg(data: Dict[str, Any], ws: WebSocket) -> None:
    """Handle browser messages: ``{"action": "submit", "query": ..., "domain": ...}``."""
    action = data.get("action")
    if action == "submit" and _orchestrator is not None:
        accepted = _orchestrator.submit(
            str(data.get("query", "")),
            str(data.get("domain", AUTO_DETECT)),
        )
        await ws.send_text(json.dumps({"type": "submit_ack", "accepted": accepted}))
    elif action == "state" and _orchestrator is not None:
        await ws.send_text(
            json.dumps({"type": "snapshot", **_orchestrator.snapshot()}, default=str)
        )


# ── Public launcher ───────────────────────────────────────────────────────────

def start_web_server(
    orchestrator: PipelineOrchestrator,
    host: str = "0.0.0.0",
    port: int = 7860,
) -> None:
    """
    Wire *orchestrator* to the WS bridge and start uvicorn in the current thread.

    Blocking.

    Args:
        orchestrator: Initialised :class:`~pipeline.controller.PipelineOrchestrator`.
        host:         Bind address (default ``0.0.0.0`` — all interfaces).
        port:         TCP port (default ``7860``).
    """
    wire_orchestrator(orchestrator)

    import uvicorn  # type: ignore
    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="warning",
        access_log=False,
    )
    server = uvicorn.Server(config)
    _log.info("web_app", "server_start", {"host": host, "port": port})
    server.run()
