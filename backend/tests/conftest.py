from __future__ import annotations

from datetime import datetime
from urllib.parse import parse_qs

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from proxyguard import db_models  # noqa: F401  (registers tables)
from proxyguard.db import Base, get_db
from proxyguard.dependencies import get_verifier
from proxyguard.main import app
from proxyguard.security import create_access_token
from proxyguard.security.captcha_verifier import CaptchaVerifier


class FakeProvider:
    """Stands in for every siteverify endpoint via httpx.MockTransport."""

    def __init__(self) -> None:
        self.status_code = 200
        self.payload = {"success": True}
        self.error: Exception | None = None
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, json=self.payload)

    def form(self, index: int = -1) -> dict:
        body = parse_qs(self.requests[index].content.decode())
        return {key: values[0] for key, values in body.items()}

    def verifier(self) -> CaptchaVerifier:
        return CaptchaVerifier(client=httpx.Client(transport=httpx.MockTransport(self.handler)))


NGINX_PEER = ("127.0.0.1", 50000)


def behind_nginx(asgi_app):
    """Present every request as coming from the local nginx hop."""

    async def wrapped(scope, receive, send):
        if scope["type"] in ("http", "websocket"):
            scope = dict(scope, client=NGINX_PEER)
        await asgi_app(scope, receive, send)

    return wrapped


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture()
def clock(monkeypatch) -> Clock:
    fake = Clock(datetime(2026, 1, 1, 12, 0, 0))
    monkeypatch.setattr("proxyguard.security.tokens.utcnow", fake)
    return fake


@pytest.fixture()
def client(session_factory, provider):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_verifier] = provider.verifier
    app.state.limiter.reset()
    try:
        yield TestClient(behind_nginx(app))
    finally:
        app.dependency_overrides.clear()
        app.state.limiter.reset()


@pytest.fixture()
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {create_access_token('ops@example.com', 'admin')}"}


@pytest.fixture()
def viewer_headers() -> dict:
    return {"Authorization": f"Bearer {create_access_token('viewer@example.com', 'viewer')}"}
