from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.core.exceptions import FanoutIncomplete, InvalidOffset
from app.errors import error_body, register_error_handlers


def _app() -> FastAPI:
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/invalid")
    async def invalid() -> None:
        raise InvalidOffset("offset must be a non-negative integer", details={"offset": -1})

    @app.get("/fanout")
    async def fanout() -> None:
        raise FanoutIncomplete("message.created", ["u2"])

    @app.get("/boom")
    async def boom() -> None:
        raise ValueError("unexpected")

    return app


def test_domain_exception_renders_envelope():
    response = TestClient(_app()).get("/invalid")

    assert response.status_code == 400
    assert response.json() == {
        "ok": False,
        "error": {
            "code": "INVALID_OFFSET",
            "message": "offset must be a non-negative integer",
            "details": {"offset": -1},
        },
    }


def test_fanout_incomplete_is_server_error():
    response = TestClient(_app()).get("/fanout")

    assert response.status_code == 500
    body = response.json()["error"]
    assert body["code"] == "FANOUT_INCOMPLETE"
    assert body["details"]["failed_user_ids"] == ["u2"]


def test_unhandled_exception_is_internal_error():
    response = TestClient(_app(), raise_server_exceptions=False).get("/boom")

    assert response.status_code == 500
    assert response.json() == {
        "ok": False,
        "error": {"code": "INTERNAL_ERROR", "message": "Internal server error"},
    }


def test_error_body_omits_empty_details():
    assert error_body("X", "msg") == {"ok": False, "error": {"code": "X", "message": "msg"}}
