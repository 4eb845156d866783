"""Unit tests for auth/authorizer.py and auth/tokens.py.

Covers:
- Check order: allow-list -> suspicious IP -> secret configured -> bearer -> compare
- Oversized tokens rejected with 400 before hashing, without the failure delay
- Mismatch rejected as invalid-credential with the delay flag set
- Session tokens: issued tokens accepted, tampered / expired / foreign tokens refused
- Passphrase verification for POST /api/session
- Audit trail records outcomes but never the token
- Comparison timing does not depend on the length of a shared prefix
"""

import base64
import statistics
import time
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.authorizer import RequestAuthorizer, ip_allowed
from auth.models import Rejection
from auth.tokens import _signing_key, create_session_token, decode_session_token, looks_like_session_token
from core.audit import AuditLogger
from core.ratelimit import RateLimiter, RateLimitPolicy

SECRET = "correct-horse-battery-staple"
PATH = "/api/catalog"


@pytest.fixture
def audit() -> AuditLogger:
    return AuditLogger()


@pytest.fixture
def rate_limiter(audit) -> RateLimiter:
    return RateLimiter(audit=audit)


def _authorizer(settings, rate_limiter, audit) -> RequestAuthorizer:
    return RequestAuthorizer(settings, rate_limiter, audit)


@pytest.fixture
def authorizer(settings, rate_limiter, audit) -> RequestAuthorizer:
    return _authorizer(settings, rate_limiter, audit)


# ---------------------------------------------------------------------------
# IP allow-list matching
# ---------------------------------------------------------------------------


class TestIpAllowed:
    def test_empty_list_allows_everyone(self):
        assert ip_allowed("203.0.113.1", [])

    def test_exact_match(self):
        assert ip_allowed("203.0.113.1", ["203.0.113.1"])
        assert not ip_allowed("203.0.113.10", ["203.0.113.1"])

    def test_wildcard(self):
        assert ip_allowed("10.0.0.42", ["10.0.0.*"])
        assert ip_allowed("192.168.7.1", ["192.168.*.1"])
        assert not ip_allowed("10.0.1.42", ["10.0.0.*"])
        assert not ip_allowed("192.168.7.2", ["192.168.*.1"])

    def test_multiple_wildcards_are_not_patterns(self):
        assert not ip_allowed("10.1.2.3", ["10.*.*.3"])


# ---------------------------------------------------------------------------
# check() ordering
# ---------------------------------------------------------------------------


class TestCheckOrder:
    def test_valid_secret_allowed(self, authorizer, audit):
        decision = authorizer.check("203.0.113.1", PATH, f"Bearer {SECRET}")
        assert decision.allowed
        assert decision.via == "secret"
        assert audit.logs_by_event("ADMIN_AUTH_SUCCESS")

    def test_scheme_is_case_insensitive(self, authorizer):
        assert authorizer.check("203.0.113.1", PATH, f"bearer {SECRET}").allowed

    def test_ip_not_in_allowlist_is_forbidden_first(self, settings_factory, rate_limiter, audit):
        authorizer = _authorizer(settings_factory(ip_allowlist="10.0.0.*"), rate_limiter, audit)
        decision = authorizer.check("203.0.113.1", PATH, f"Bearer {SECRET}")
        assert decision.reason is Rejection.forbidden_ip
        assert decision.status_code == 403
        assert authorizer.check("10.0.0.7", PATH, f"Bearer {SECRET}").allowed

    def test_suspicious_ip_refused_even_with_valid_secret(self, authorizer, rate_limiter):
        policy = RateLimitPolicy(max_requests=1, window_seconds=60)
        rate_limiter.check("write", "198.51.100.7", "ua", policy)
        rate_limiter.check("write", "198.51.100.7", "ua", policy)
        decision = authorizer.check("198.51.100.7", PATH, f"Bearer {SECRET}")
        assert decision.reason is Rejection.suspicious_ip
        assert decision.status_code == 429

    def test_missing_secret_fails_closed(self, settings_factory, rate_limiter, audit):
        authorizer = _authorizer(settings_factory(admin_secret=""), rate_limiter, audit)
        for header in (None, "Bearer ", "Bearer anything", f"Bearer {SECRET}"):
            decision = authorizer.check("203.0.113.1", PATH, header)
            assert decision.reason is Rejection.server_misconfigured
            assert decision.status_code == 500
        assert audit.logs_by_event("ADMIN_AUTH_MISCONFIGURED")

    @pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer", "Bearer    "])
    def test_missing_bearer(self, authorizer, header):
        decision = authorizer.check("203.0.113.1", PATH, header)
        assert decision.reason is Rejection.missing_credential
        assert decision.status_code == 401
        assert not decision.delay

    def test_oversized_token_rejected_without_delay(self, authorizer):
        decision = authorizer.check("203.0.113.1", PATH, "Bearer " + "a" * 1001)
        assert decision.reason is Rejection.invalid_credential
        assert decision.status_code == 400
        assert not decision.delay

    def test_token_at_limit_is_compared(self, authorizer):
        decision = authorizer.check("203.0.113.1", PATH, "Bearer " + "a" * 1000)
        assert decision.status_code == 403
        assert decision.delay

    def test_wrong_token_is_invalid_with_delay(self, authorizer, audit):
        decision = authorizer.check("203.0.113.1", PATH, "Bearer wrong")
        assert decision.reason is Rejection.invalid_credential
        assert decision.status_code == 403
        assert decision.delay
        assert audit.logs_by_event("ADMIN_AUTH_FAILED")

    def test_failure_delay_within_configured_range(self, authorizer):
        delays = [authorizer.failure_delay() for _ in range(200)]
        assert min(delays) >= 0.1
        assert max(delays) <= 0.2

    def test_token_never_reaches_audit(self, authorizer, audit):
        authorizer.check("203.0.113.1", PATH, "Bearer leaked-token-value")
        authorizer.check("203.0.113.1", PATH, f"Bearer {SECRET}")
        dump = repr([e.to_dict() for e in audit.recent_logs(100)])
        assert "leaked-token-value" not in dump
        assert SECRET not in dump


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


class TestSessionTokens:
    def test_issued_token_accepted(self, settings, authorizer):
        token, _ = create_session_token(settings)
        assert looks_like_session_token(token)
        decision = authorizer.check("203.0.113.1", PATH, f"Bearer {token}")
        assert decision.allowed
        assert decision.via == "session"

    def test_payload_claims(self, settings):
        token, expires_at = create_session_token(settings, expire_seconds=120)
        payload = decode_session_token(settings, token)
        assert payload["sub"] == "admin"
        assert payload["scope"] == "catalog:write"
        assert payload["exp"] == int(expires_at.timestamp())

    def test_tampered_token_refused(self, settings, authorizer):
        token, _ = create_session_token(settings)
        head, _body, sig = token.split(".")
        forged_body = base64.urlsafe_b64encode(b'{"sub":"admin","scope":"catalog:write","exp":9999999999}')
        tampered = ".".join([head, forged_body.decode().rstrip("="), sig])
        assert decode_session_token(settings, tampered) is None
        assert authorizer.check("203.0.113.1", PATH, f"Bearer {tampered}").status_code == 403

    def test_expired_token_refused(self, settings):
        issued = datetime.now(timezone.utc) - timedelta(hours=2)
        claims = {"sub": "admin", "scope": "catalog:write", "iat": issued, "exp": issued + timedelta(hours=1)}
        token = jwt.encode(claims, _signing_key(settings), algorithm="HS256")
        assert decode_session_token(settings, token) is None

    def test_token_from_rotated_secret_refused(self, settings, settings_factory):
        token, _ = create_session_token(settings)
        rotated = settings_factory(admin_secret="a-brand-new-secret")
        assert decode_session_token(rotated, token) is None

    def test_token_refused_when_secret_missing(self, settings, settings_factory):
        token, _ = create_session_token(settings)
        assert decode_session_token(settings_factory(admin_secret=""), token) is None


# ---------------------------------------------------------------------------
# Passphrase login
# ---------------------------------------------------------------------------


class TestVerifyPassphrase:
    def test_correct_passphrase(self, authorizer, audit):
        assert authorizer.verify_passphrase("203.0.113.1", "/api/session", SECRET).allowed
        assert audit.logs_by_event("ADMIN_LOGIN_SUCCESS")

    def test_wrong_passphrase(self, authorizer, audit):
        decision = authorizer.verify_passphrase("203.0.113.1", "/api/session", "nope")
        assert decision.status_code == 401
        assert decision.delay
        assert audit.logs_by_event("ADMIN_LOGIN_FAILED")

    def test_oversized_passphrase(self, authorizer):
        decision = authorizer.verify_passphrase("203.0.113.1", "/api/session", "p" * 5000)
        assert decision.status_code == 400


# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------


def test_rejection_timing_independent_of_shared_prefix(authorizer):
    """A token sharing a long prefix with the secret must not be measurably slower to reject.

    Statistical check on the synchronous decision path (the randomized
    delay is applied by the HTTP layer and would only mask a difference).
    Medians of interleaved samples keep scheduler noise out of the result.
    """
    near = "Bearer " + SECRET[:-1] + "X"
    far = "Bearer " + "X" * len(SECRET)

    def sample(header: str) -> float:
        start = time.perf_counter()
        authorizer.check("203.0.113.1", PATH, header)
        return time.perf_counter() - start

    for _ in range(50):
        sample(near)
        sample(far)
    near_times, far_times = [], []
    for _ in range(400):
        near_times.append(sample(near))
        far_times.append(sample(far))

    near_median = statistics.median(near_times)
    far_median = statistics.median(far_times)
    ratio = max(near_median, far_median) / min(near_median, far_median)
    assert ratio < 1.5, f"Timing differs by prefix: near={near_median:.2e}s far={far_median:.2e}s"
