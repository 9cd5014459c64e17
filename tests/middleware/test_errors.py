from __future__ import annotations

import asyncio
import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.requests import Request

from access_engine.core.errors import (
    NO_SEATS,
    BadRequestError,
    ConflictError,
    EngineError,
    ForbiddenError,
    NotFoundError,
)
from access_engine.middleware.errors import (
    engine_error_handler,
    install_error_handlers,
    status_for,
)


@pytest.mark.parametrize(
    "exc, expected",
    [
        (NotFoundError("x"), 404),
        (ConflictError("x"), 409),
        (BadRequestError("x"), 400),
        (ForbiddenError("x"), 403),
        (EngineError("x"), 400),
    ],
)
def test_status_for(exc: EngineError, expected: int) -> None:
    assert status_for(exc) == expected


def test_handler_body_carries_code_and_reason() -> None:
    request = Request({"type": "http", "method": "POST", "path": "/v1/x", "headers": []})
    exc = ForbiddenError("No seats available", reason=NO_SEATS)
    resp = asyncio.run(engine_error_handler(request, exc))
    assert resp.status_code == 403
    assert json.loads(resp.body) == {
        "detail": "No seats available",
        "code": "FORBIDDEN",
        "reason": "no_seats",
    }


def test_handler_reason_is_null_when_unset() -> None:
    request = Request({"type": "http", "method": "GET", "path": "/v1/x", "headers": []})
    resp = asyncio.run(engine_error_handler(request, NotFoundError("License not found")))
    assert json.loads(resp.body)["reason"] is None


def test_installed_handler_maps_raised_errors() -> None:
    app = FastAPI()
    install_error_handlers(app)

    @app.get("/boom")
    async def boom() -> None:
        raise ConflictError("Enrollment changed concurrently")

    resp = TestClient(app).get("/boom")
    assert resp.status_code == 409
    assert resp.json() == {
        "detail": "Enrollment changed concurrently",
        "code": "CONFLICT",
        "reason": None,
    }
