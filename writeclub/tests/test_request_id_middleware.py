import logging

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from writeclub.core.logging import get_request_id
from writeclub.core.middleware.request_id import RequestIdMiddleware, accepted_request_id


def _make_app():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)

    @app.get("/")
    async def root(request: Request):
        return {
            "request_id": getattr(request.state, "request_id", None),
            "context_request_id": get_request_id(),
        }

    return app


def test_generates_request_id_when_missing():
    client = TestClient(_make_app())

    resp = client.get("/")
    assert resp.status_code == 200
    rid_header = resp.headers.get("x-request-id")
    body = resp.json()

    assert rid_header
    assert body["request_id"] == rid_header
    assert body["context_request_id"] == rid_header


def test_echoes_provided_request_id():
    client = TestClient(_make_app())

    provided = "test-rid-123"
    resp = client.get("/", headers={"X-Request-Id": provided})

    assert resp.status_code == 200
    assert resp.headers.get("x-request-id") == provided
    assert resp.json().get("request_id") == provided


def test_completion_is_logged(caplog):
    client = TestClient(_make_app())
    with caplog.at_level(logging.INFO, logger="writeclub"):
        client.get("/", headers={"X-Request-Id": "logged-rid"})

    records = [r for r in caplog.records if r.getMessage() == "request.complete"]
    assert records
    assert records[-1].request_id == "logged-rid"
    assert records[-1].status == 200
    assert get_request_id() is None


def test_unsafe_request_id_is_replaced():
    client = TestClient(_make_app())

    forged = "abc\" level=ERROR msg=forged"
    resp = client.get("/", headers={"X-Request-Id": forged})
    rid = resp.headers.get("x-request-id")
    assert rid != forged
    assert resp.json()["request_id"] == rid

    too_long = "a" * 65
    resp = client.get("/", headers={"X-Request-Id": too_long})
    assert resp.headers.get("x-request-id") != too_long


def test_accepted_request_id_rules():
    assert accepted_request_id(" job-2025-03:advance ") == "job-2025-03:advance"
    assert accepted_request_id("") is None
    assert accepted_request_id("has space") is None
    assert accepted_request_id("a" * 64) == "a" * 64
