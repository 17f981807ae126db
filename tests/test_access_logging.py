import json
import logging

from fastapi import FastAPI, Request
from starlette.testclient import TestClient

from support_engine.app_logging import _install_access_logging, _scrub


def _create_app() -> FastAPI:
    app = FastAPI()

    @app.post("/api/chat/turn")
    async def turn(request: Request):
        return {"rid": request.state.request_id}

    @app.get("/api/health")
    async def health():  # pragma: no cover - simple
        return {"status": "ok"}

    _install_access_logging(app)
    return app


def test_access_log_masks_customer_identifiers(caplog, monkeypatch):
    monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
    app = _create_app()

    with (
        TestClient(app) as client,
        caplog.at_level(logging.INFO, logger="uvicorn.access"),
    ):
        resp = client.post(
            "/api/chat/turn",
            json={
                "sessionToken": "widget-secret",
                "message": "where is my order?",
                "customer": {"email": "sanne@example.com"},
            },
            headers={"X-Request-Id": "abc", "X-Helpdesk-Hmac-Sha256": "deadbeef"},
        )

        assert resp.status_code == 200
        assert resp.headers["X-Request-Id"] == "abc"
        assert resp.json() == {"rid": "abc"}

        data = json.loads(caplog.records[0].getMessage())
        assert data["request_id"] == "abc"
        assert data["path"] == "/api/chat/turn"
        assert data["headers"]["x-helpdesk-hmac-sha256"] == "***"
        assert data["body"]["sessionToken"] == "***"
        assert data["body"]["customer"]["email"] == "***"
        assert data["body"]["message"] == "where is my order?"

        caplog.clear()
        client.get("/api/health")
        assert len(caplog.records) == 0


def test_request_id_is_generated_and_raw_bodies_kept(caplog, monkeypatch):
    monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
    app = _create_app()

    with (
        TestClient(app) as client,
        caplog.at_level(logging.INFO, logger="uvicorn.access"),
    ):
        resp = client.post("/api/chat/turn", content=b"not json")

        assert len(resp.headers["X-Request-Id"]) == 32
        data = json.loads(caplog.records[0].getMessage())
        assert data["body"] == "not json"


def test_scrub_walks_lists():
    assert _scrub([{"Phone": "+31", "ok": [{"token": "t"}]}]) == [
        {"Phone": "***", "ok": [{"token": "***"}]}
    ]
