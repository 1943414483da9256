"""
tests/test_web_app.py — FastAPI routes and WebSocket bridge.

Uses Starlette's TestClient as a context manager so the lifespan handler runs
and WebSocket pushes have a live event loop.
"""

from __future__ import annotations

import random

import pytest
from fastapi.testclient import TestClient

from conftest import GatedStageClock, instant_clock

from answer.resolver import AnswerResolver
from pipeline.controller import PipelineOrchestrator
from ui import web_app

FINANCE_Q = "What is the compound interest on $10,000 at 5% for 3 years?"


def _orchestrator(clock=None) -> PipelineOrchestrator:
    return PipelineOrchestrator(
        stage_clock=clock or instant_clock(),
        resolver=AnswerResolver(rng=random.Random(11)),
    )


@pytest.fixture()
def unwired(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(web_app, "_orchestrator", None)
    with TestClient(web_app.app) as client:
        yield client


@pytest.fixture()
def wired(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(web_app, "_orchestrator", None)
    orch = _orchestrator()
    web_app.wire_orchestrator(orch)
    with TestClient(web_app.app) as client:
        yield client, orch
    orch.shutdown(timeout=2.0)


class TestStaticRoutes:

    def test_health_without_orchestrator(self, unwired: TestClient) -> None:
        body = unwired.get("/health").json()
        assert body["status"] == "orchestrator_not_ready"
        assert body["run_status"] is None

    def test_state_without_orchestrator(self, unwired: TestClient) -> None:
        assert unwired.get("/state").status_code == 503
        assert unwired.get("/history").status_code == 503

    def test_stages(self, unwired: TestClient) -> None:
        stages = unwired.get("/stages").json()
        assert [s["label"] for s in stages] == [
            "Routing", "RAG Retrieval", "Generation", "Verification", "Scoring",
        ]

    def test_domains(self, unwired: TestClient) -> None:
        assert unwired.get("/domains").json() == [
            "Auto-Detect", "Mathematics", "Code", "Medical", "Finance", "General",
        ]

    def test_samples(self, unwired: TestClient) -> None:
        samples = unwired.get("/samples").json()
        assert len(samples) == 3
        assert samples[0]["domain"] == "Finance"


class TestQueryEndpoint:

    def test_accepted_query_completes(self, wired) -> None:
        client, orch = wired
        resp = client.post("/query", json={"query": FINANCE_Q, "domain": "auto"})
        assert resp.status_code == 202
        assert resp.json() == {"accepted": True, "run_id": 1}

        assert orch.wait(timeout=5.0)
        state = client.get("/state").json()
        assert state["status"] == "COMPLETED"
        assert state["requested_domain"] == "Auto-Detect"
        assert state["last_result"]["domain"] == "Finance"

        history = client.get("/history").json()
        assert [h["confidence"] for h in history] == [98]

    def test_health_reports_run_status(self, wired) -> None:
        client, _ = wired
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["run_status"] == "IDLE"

    @pytest.mark.parametrize("payload", [
        {"query": ""},
        {"query": "   "},
        {"query": FINANCE_Q, "domain": "Astrology"},
        {"domain": "Code"},
    ])
    def test_invalid_body_is_422(self, wired, payload: dict) -> None:
        client, orch = wired
        assert client.post("/query", json=payload).status_code == 422
        assert orch.snapshot()["run_id"] is None

    def test_query_after_shutdown_is_503(self, wired) -> None:
        client, orch = wired
        orch.shutdown(timeout=1.0)
        resp = client.post("/query", json={"query": FINANCE_Q})
        assert resp.status_code == 503
        assert resp.json() == {"accepted": False, "reason": "shutdown"}

    def test_busy_is_409(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(web_app, "_orchestrator", None)
        clock = GatedStageClock()
        orch = _orchestrator(clock)
        web_app.wire_orchestrator(orch)
        try:
            with TestClient(web_app.app) as client:
                assert client.post("/query", json={"query": FINANCE_Q}).status_code == 202
                assert clock.started.wait(timeout=5.0)

                resp = client.post("/query", json={"query": "Something else entirely"})
                assert resp.status_code == 409
                body = resp.json()
                assert body["reason"] == "busy"
                assert body["state"]["query"] == FINANCE_Q
        finally:
            clock.release()
            orch.shutdown(timeout=2.0)


class TestWebSocket:

    def test_snapshot_on_connect_and_on_request(self, wired) -> None:
        client, _ = wired
        with client.websocket_connect("/ws") as ws:
            first = ws.receive_json()
            assert first["type"] == "snapshot"
            assert first["status"] == "IDLE"

            ws.send_json({"action": "state"})
            msg = ws.receive_json()
            while msg["type"] == "tick":
                msg = ws.receive_json()
            assert msg["type"] == "snapshot"

    def test_submit_streams_run_events(self, wired) -> None:
        client, orch = wired
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"action": "submit", "query": FINANCE_Q, "domain": "Finance"})

            seen: list[str] = []
            for _ in range(60):
                msg = ws.receive_json()
                seen.append(msg["type"])
                if msg["type"] == "on_result":
                    assert msg["answer"]["confidence"] == 98
                if "on_result" in seen and "submit_ack" in seen:
                    break

            assert "submit_ack" in seen
            assert "on_stage_completed" in seen
            assert "on_run_started" in seen
        assert orch.wait(timeout=5.0)

    def test_non_object_message_is_ignored(self, wired) -> None:
        client, _ = wired
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json([1])
            ws.send_text('"state"')
            ws.send_json({"action": "state"})
            msg = ws.receive_json()
            while msg["type"] == "tick":
                msg = ws.receive_json()
            assert msg["type"] == "snapshot"
