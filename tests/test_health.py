"""
tests/test_health.py -- Integration tests for GET /health and the middleware stack.

Covers:
  - 200 response with status, timestamp, redacted catalog path, secret_configured
  - No authentication required
  - Security headers on every response
  - Origin guard: unlisted cross-origin requests refused, same-origin and listed pass
  - FORCE_HTTPS: plain-HTTP requests redirected, /health exempt, HSTS sent
"""

from __future__ import annotations


def test_health_returns_200(api_client):
    """Health endpoint returns 200 with status and configuration summary."""
    client, _ = api_client
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["timestamp"]
    assert data["secret_configured"] is True


def test_health_redacts_catalog_file_name(api_client):
    client, _ = api_client
    path = client.get("/health").json()["catalog_path"]
    assert path.endswith("/***")
    assert "catalog.json" not in path


def test_health_reports_missing_secret(client_factory):
    client = client_factory(admin_secret="")
    assert client.get("/health").json()["secret_configured"] is False


def test_health_no_auth_required(api_client):
    client, _ = api_client
    resp = client.get("/health", headers={})
    assert resp.status_code == 200


def test_security_headers_present(api_client):
    client, _ = api_client
    for path in ("/health", "/api/catalog"):
        headers = client.get(path).headers
        assert "default-src 'self'" in headers["Content-Security-Policy"]
        assert headers["X-Content-Type-Options"] == "nosniff"
        assert headers["X-Frame-Options"] == "DENY"
        assert headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
        assert "Strict-Transport-Security" not in headers


def test_disallowed_origin_refused(api_client, admin_headers, sample_catalog):
    client, app = api_client
    headers = {**admin_headers, "Origin": "https://evil.example"}
    resp = client.post("/api/catalog", json=sample_catalog, headers=headers)
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "origin_not_allowed"
    assert not app.state.catalog_store.path.exists()


def test_same_origin_allowed(api_client):
    client, _ = api_client
    resp = client.get("/health", headers={"Origin": "http://testserver"})
    assert resp.status_code == 200


def test_listed_origin_allowed(client_factory, admin_headers, sample_catalog):
    client = client_factory(allowed_origins="https://admin.example.com")
    headers = {**admin_headers, "Origin": "https://admin.example.com"}
    assert client.post("/api/catalog", json=sample_catalog, headers=headers).status_code == 200


def test_force_https_redirects(client_factory):
    client = client_factory(force_https=True)
    resp = client.get("/api/catalog", follow_redirects=False)
    assert resp.status_code == 301
    assert resp.headers["location"].startswith("https://")


def test_force_https_exempts_health_and_sends_hsts(client_factory):
    client = client_factory(force_https=True)
    resp = client.get("/health", follow_redirects=False)
    assert resp.status_code == 200
    assert resp.headers["Strict-Transport-Security"].startswith("max-age=")


def test_force_https_trusts_forwarded_proto_behind_proxy(client_factory):
    client = client_factory(force_https=True, trust_forwarded_for=True)
    resp = client.get("/api/catalog", headers={"X-Forwarded-Proto": "https"}, follow_redirects=False)
    assert resp.status_code == 404
