import asyncio

from fastapi.testclient import TestClient

from proxyguard import main
from proxyguard.core.settings import get_settings
from proxyguard.main import SECURITY_HEADERS, STRICT_TRANSPORT_SECURITY, app

client = TestClient(app)


def test_health():
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_security_headers_present():
    response = client.get("/health")
    for header, value in SECURITY_HEADERS.items():
        assert response.headers.get(header) == value
    assert response.headers.get("Strict-Transport-Security") == STRICT_TRANSPORT_SECURITY


def test_cors_preflight_allows_known_origin():
    origin = get_settings().allowed_origins[0]
    response = client.options(
        "/health",
        headers={
            "origin": origin,
            "access-control-request-method": "PUT",
            "access-control-request-headers": "authorization",
        },
    )

    assert response.status_code == 200
    assert response.headers.get("access-control-allow-origin") == origin
    assert response.headers.get("access-control-allow-credentials") == "true"
    assert "PUT" in response.headers.get("access-control-allow-methods", "")


def test_simple_get_disallowed_origin_omits_acao():
    res = client.get("/health", headers={"Origin": "https://evil.com"})
    assert res.status_code == 200
    # No ACAO header => browsers will block cross-origin access
    assert "access-control-allow-origin" not in {k.lower(): v for k, v in res.headers.items()}


def test_bodiless_post_passes_content_type_check():
    # Reaches routing (404 for an unknown path) instead of being refused with 415.
    assert client.post("/no-such-route").status_code == 404
    assert client.post("/no-such-route", content="x", headers={"Content-Type": "text/plain"}).status_code == 415


def test_lifespan_waits_for_purge_loop_to_stop(monkeypatch):
    events = []

    async def fake_loop(interval):
        events.append("started")
        try:
            await asyncio.Event().wait()
        finally:
            events.append("stopped")

    monkeypatch.setattr(main, "_purge_loop", fake_loop)
    monkeypatch.setattr(main, "init_db", lambda: None)

    async def run():
        async with main.lifespan(app):
            await asyncio.sleep(0)
        return list(events)

    assert asyncio.run(run()) == ["started", "stopped"]
