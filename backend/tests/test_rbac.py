from datetime import timedelta

from fastapi.testclient import TestClient
from jose import jwt

from proxyguard.main import app
from proxyguard.security import create_access_token

client = TestClient(app)

URL = "/api/v1/challenge/tokens/purge"


def test_admin_route_requires_auth():
    r = client.post(URL)
    assert r.status_code == 401


def test_admin_route_forbids_viewer():
    token = create_access_token("viewer@example.com", "viewer")
    r = client.post(URL, headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 403


def test_expired_token_is_rejected():
    token = create_access_token("ops@example.com", "admin", expires_delta=timedelta(seconds=-5))
    r = client.post(URL, headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401


def test_foreign_signature_is_rejected():
    token = jwt.encode({"sub": "ops@example.com", "role": "admin"}, "some-other-secret", algorithm="HS256")
    r = client.post(URL, headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401


def test_unknown_role_is_rejected():
    token = create_access_token("ops@example.com", "superuser")  # type: ignore[arg-type]
    r = client.get("/api/v1/challenge/config", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401
