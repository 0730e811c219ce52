# tests/test_errors.py
from fastapi import FastAPI
from fastapi.testclient import TestClient

from duet.core.errors import InvalidStateError, PersistenceError, register_error_handlers


def _app() -> FastAPI:
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/conflict")
    def conflict() -> None:
        raise InvalidStateError("No pending chat request")

    @app.get("/broken")
    def broken() -> None:
        raise PersistenceError("Could not store message")

    return app


def test_chat_errors_map_to_json(caplog) -> None:
    """Domain errors become JSON bodies with their status code."""
    client = TestClient(_app())

    conflict = client.get("/conflict")
    assert conflict.status_code == 409
    assert conflict.json() == {"detail": "No pending chat request"}

    broken = client.get("/broken")
    assert broken.status_code == 500
    assert broken.json() == {"detail": "Could not store message"}
    assert "Persistence failure on GET /broken" in caplog.text
