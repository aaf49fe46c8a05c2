"""Tests for normalized error responses."""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from writeclub.core.errors import (
    AppError,
    ConflictError,
    QuotaExceededError,
    app_error_handler,
    unhandled_exception_handler,
)
from writeclub.core.middleware.request_id import RequestIdMiddleware


def _make_app():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get("/conflict")
    async def conflict():
        raise ConflictError("Story has already been entered", code="already_submitted")

    @app.get("/quota")
    async def quota():
        raise QuotaExceededError("No entries left", counter="competition_entries", limit=3)

    @app.get("/boom")
    async def boom():
        raise RuntimeError("secret internals")

    return app


def test_validation_error_has_standard_shape(client):
    resp = client.get("/v1/competitions/previous", params={"page": 0})
    assert resp.status_code == 422

    resp = client.post("/v1/stories", headers={"X-User-Id": "shape"}, json={"title": "  ", "word_count": 10})
    assert resp.status_code == 400
    body = resp.json()
    rid = resp.headers.get("x-request-id")
    assert body["error"]["code"] == "invalid_title"
    assert body["error"]["request_id"] == rid
    assert body["detail"] == body["error"]["message"]


def test_permission_error_normalized(client, frozen_clock):
    created = client.post("/v1/stories", headers={"X-User-Id": "owner"}, json={"title": "Mine", "word_count": 900})
    story_id = created.json()["story"]["story_id"]

    resp = client.post(f"/v1/stories/{story_id}/assessment", headers={"X-User-Id": "other"})
    assert resp.status_code == 403
    body = resp.json()
    assert body["error"]["code"] == "not_story_owner"
    assert body["error"]["request_id"] == resp.headers.get("x-request-id")


def test_conflict_code_preserved():
    client = TestClient(_make_app())
    resp = client.get("/conflict", headers={"X-Request-Id": "rid-409"})
    assert resp.status_code == 409
    assert resp.json()["error"] == {
        "code": "already_submitted",
        "message": "Story has already been entered",
        "request_id": "rid-409",
    }


def test_quota_error_carries_details():
    client = TestClient(_make_app())
    body = client.get("/quota").json()
    assert body["error"]["code"] == "quota_exceeded"
    assert body["error"]["details"] == {"remaining": 0, "counter": "competition_entries", "limit": 3}


def test_unhandled_error_hides_message():
    client = TestClient(_make_app(), raise_server_exceptions=False)
    resp = client.get("/boom")
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"]["code"] == "internal_error"
    assert "secret" not in resp.text
