from sqlalchemy import select

from proxyguard.db_models import ChallengeToken

CONFIG_URL = "/api/v1/challenge/config"
HOST_URL = "/api/v1/hosts/host-a/challenge/config"
TOKENS_URL = "/api/v1/challenge/tokens"
CLIENT_IP = "203.0.113.7"


def _solve(client, ip=CLIENT_IP, host=None):
    response = client.post(
        "/api/v1/challenge/verify",
        json={"token": "solved", "proxy_host_id": host},
        headers={"X-Real-IP": ip},
    )
    assert response.status_code == 200, response.text
    return response.json()


def _validate(client, token, ip=CLIENT_IP):
    return client.get(
        "/api/v1/challenge/validate",
        headers={"X-Real-IP": ip, "X-Challenge-Token": token},
    ).status_code


def _enable(client, admin_headers):
    response = client.put(
        CONFIG_URL,
        json={"enabled": True, "site_key": "site", "secret_key": "secret"},
        headers=admin_headers,
    )
    assert response.status_code == 200


# ---------------- auth ----------------
def test_config_requires_auth(client):
    assert client.get(CONFIG_URL).status_code == 401
    assert client.get(CONFIG_URL, headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401


def test_viewer_can_read_but_not_write(client, viewer_headers):
    assert client.get(CONFIG_URL, headers=viewer_headers).status_code == 200
    assert client.put(CONFIG_URL, json={"enabled": True}, headers=viewer_headers).status_code == 403
    assert client.post(f"{TOKENS_URL}/purge", headers=viewer_headers).status_code == 403


# ---------------- config ----------------
def test_global_config_defaults(client, admin_headers):
    body = client.get(CONFIG_URL, headers=admin_headers).json()
    assert body["source"] == "default"
    assert body["enabled"] is False
    assert body["has_secret_key"] is False


def test_put_global_config_hides_secret(client, admin_headers):
    response = client.put(
        CONFIG_URL,
        json={"enabled": True, "site_key": "site", "secret_key": "s3cret", "theme": "dark"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["source"] == "global"
    assert body["has_secret_key"] is True
    assert body["theme"] == "dark"
    assert "secret_key" not in body
    assert "s3cret" not in response.text

    # Saving the form again with an empty secret keeps the stored one.
    again = client.put(CONFIG_URL, json={"secret_key": "", "min_score": 0.8}, headers=admin_headers)
    assert again.json()["has_secret_key"] is True
    assert again.json()["min_score"] == 0.8


def test_host_config_lifecycle(client, admin_headers):
    _enable(client, admin_headers)
    assert client.get(HOST_URL, headers=admin_headers).json()["source"] == "global"

    put = client.put(HOST_URL, json={"challenge_type": "turnstile"}, headers=admin_headers)
    assert put.status_code == 200
    assert put.json()["source"] == "host"
    assert put.json()["proxy_host_id"] == "host-a"
    assert client.get(HOST_URL, headers=admin_headers).json()["challenge_type"] == "turnstile"

    assert client.delete(HOST_URL, headers=admin_headers).status_code == 204
    assert client.get(HOST_URL, headers=admin_headers).json()["source"] == "global"
    assert client.delete(HOST_URL, headers=admin_headers).status_code == 404


def test_delete_global_config(client, admin_headers):
    _enable(client, admin_headers)
    assert client.delete(CONFIG_URL, headers=admin_headers).status_code == 204
    assert client.get(CONFIG_URL, headers=admin_headers).json()["source"] == "default"


def test_config_validation(client, admin_headers):
    assert client.put(CONFIG_URL, json={"token_validity": 10}, headers=admin_headers).status_code == 422
    assert client.put(CONFIG_URL, json={"min_score": 1.5}, headers=admin_headers).status_code == 422
    assert client.put(CONFIG_URL, json={"challenge_type": "captcha9000"}, headers=admin_headers).status_code == 422
    assert client.put(CONFIG_URL, json={"theme": "neon"}, headers=admin_headers).status_code == 422


# ---------------- stats ----------------
def test_stats(client, provider, admin_headers):
    _enable(client, admin_headers)

    assert client.get("/api/v1/challenge/page", params={"host": "host-a"}).status_code == 200
    _solve(client, host="host-a")
    provider.payload = {"success": False, "error-codes": ["invalid-input-response"]}
    _solve(client, host="host-a")
    _solve(client, host="host-b")

    response = client.get(
        "/api/v1/challenge/stats",
        params={"proxy_host_id": "host-a", "hours": 1},
        headers=admin_headers,
    )
    assert response.status_code == 200
    stats = response.json()
    assert stats["total_challenges"] == 3
    assert stats["passed_challenges"] == 1
    assert stats["failed_challenges"] == 1
    assert stats["active_tokens"] == 1
    assert stats["window_hours"] == 1
    assert stats["average_solve_time"] >= 0

    overall = client.get("/api/v1/challenge/stats", headers=admin_headers).json()
    assert overall["failed_challenges"] == 2
    assert overall["window_hours"] == 24


def test_stats_rejects_bad_window(client, admin_headers):
    response = client.get("/api/v1/challenge/stats", params={"hours": 0}, headers=admin_headers)
    assert response.status_code == 422


# ---------------- tokens ----------------
def test_revoke_token(client, admin_headers, session_factory):
    _enable(client, admin_headers)
    token = _solve(client)["token"]
    with session_factory() as session:
        token_id = session.execute(select(ChallengeToken.id)).scalar_one()

    response = client.post(
        f"{TOKENS_URL}/{token_id}/revoke",
        json={"reason": "abuse report"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json() == {"revoked": 1}
    assert _validate(client, token) == 401

    # Already revoked: no-op. No body: default reason.
    again = client.post(f"{TOKENS_URL}/{token_id}/revoke", headers=admin_headers)
    assert again.json() == {"revoked": 0}

    with session_factory() as session:
        record = session.get(ChallengeToken, token_id)
        assert record.revoked_reason.startswith("abuse report")

    missing = client.post(f"{TOKENS_URL}/nope/revoke", headers=admin_headers)
    assert missing.status_code == 404


def test_revoke_ip(client, admin_headers):
    _enable(client, admin_headers)
    first = _solve(client)["token"]
    second = _solve(client)["token"]
    other = _solve(client, ip="198.51.100.9")["token"]

    response = client.post(
        f"{TOKENS_URL}/revoke-ip",
        json={"client_ip": CLIENT_IP, "reason": "scraper"},
        headers=admin_headers,
    )
    assert response.json() == {"revoked": 2}
    assert _validate(client, first) == 401
    assert _validate(client, second) == 401
    assert _validate(client, other, ip="198.51.100.9") == 200


def test_purge(client, admin_headers):
    response = client.post(f"{TOKENS_URL}/purge", headers=admin_headers)
    assert response.status_code == 200
    assert response.json() == {"deleted": 0}
