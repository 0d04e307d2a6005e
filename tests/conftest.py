"""Shared fixtures: isolated settings, a scripted backend and JPEG samples."""

import io
import json
from typing import Any, Callable, Union

import httpx
import pytest
from PIL import Image

from qskipper_server.auth import SessionStore
from qskipper_server.config import Settings
from qskipper_server.models import SessionIdentity
from qskipper_server.qskipper_client import QSkipperClient

ENV_VARS = (
    "QSKIPPER_USER_ID",
    "QSKIPPER_AUTH_TOKEN",
    "QSKIPPER_RESTAURANT_ID",
    "QSKIPPER_BASE_URL",
    "QSKIPPER_SESSION_FILE",
    "QSKIPPER_CACHE_DIR",
    "QSKIPPER_TIMEOUT",
    "QSKIPPER_UPLOAD_TIMEOUT",
    "QSKIPPER_RESPONSE_CACHE_TTL",
    "QSKIPPER_LOG_LEVEL",
    "QSKIPPER_EMAIL",
    "QSKIPPER_PASSWORD",
)

BASE_URL = "https://backend.test"

Handler = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


def jpeg_bytes(size: tuple = (40, 30), color: tuple = (200, 20, 20)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color=color).save(buffer, format="JPEG")
    return buffer.getvalue()


def json_response(status_code: int, payload: Any) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(payload).encode("utf-8"))


class FakeBackend:
    """Scripted stand-in for the QSkipper backend, recording every request."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Handler] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, handler: Handler) -> None:
        self.routes[(method.upper(), path)] = handler

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method.upper() and r.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return json_response(404, {"message": f"No route for {request.method} {request.url.path}"})
        if callable(handler):
            return handler(request)
        return handler

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        base_url=BASE_URL,
        session_file=str(tmp_path / "session.json"),
        cache_dir=str(tmp_path / "images"),
    )


@pytest.fixture()
def session_store(settings: Settings) -> SessionStore:
    return SessionStore(settings.session_file)


@pytest.fixture()
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def client(settings: Settings, session_store: SessionStore, backend: FakeBackend) -> QSkipperClient:
    qskipper_client = QSkipperClient(settings, session_store=session_store, transport=backend.transport)
    yield qskipper_client
    qskipper_client.close()


@pytest.fixture()
def logged_in(client: QSkipperClient) -> QSkipperClient:
    client.session_store.save_login(
        SessionIdentity(
            user_id="u1",
            auth_token="tok-123",
            email="owner@example.com",
            restaurant_id="r1",
            restaurant_name="Campus Bites",
        )
    )
    return client
