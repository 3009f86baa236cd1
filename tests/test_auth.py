"""Tests for counselor API keys, rate limiting, and their integration."""

from __future__ import annotations

import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from afyalink.api.auth import (
    DEV_COUNSELOR_ID,
    counselor_key_hashes,
    hash_key,
    optional_counselor,
    optional_user_id,
    require_counselor,
)
from afyalink.api.dependencies import get_db
from afyalink.api.main import app
from afyalink.services.metrics import metrics
from afyalink.services.rate_limiter import SlidingWindowRateLimiter, client_key, rate_limiter


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _mock_db_override():
    """Return a mock async DB session suitable for dependency override."""
    mock_result = MagicMock()
    mock_result.scalars.return_value.all.return_value = []
    mock_result.scalar_one.return_value = 0
    mock_session = AsyncMock()
    mock_session.execute.return_value = mock_result
    return mock_session


# ---------------------------------------------------------------------------
# Auth tests
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_health_needs_no_auth(client):
    """The /health endpoint should be accessible without any API key."""
    mock_session = AsyncMock()
    mock_session.execute.return_value = MagicMock()

    app.dependency_overrides[get_db] = lambda: mock_session
    try:
        with patch("afyalink.config.settings.auth_enabled", True):
            resp = await client.get("/health")
    finally:
        app.dependency_overrides.clear()
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["database"] == "connected"


@pytest.mark.asyncio
async def test_facility_search_needs_no_auth(client):
    app.dependency_overrides[get_db] = _mock_db_override
    try:
        with patch("afyalink.config.settings.auth_enabled", True):
            resp = await client.get("/api/health-services")
    finally:
        app.dependency_overrides.clear()
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_missing_key_returns_401(client):
    with patch("afyalink.config.settings.auth_enabled", True), \
         patch("afyalink.config.settings.counselor_api_keys", "c-1:valid-key"):
        resp = await client.get("/api/mental-health/sessions/waiting")
    assert resp.status_code == 401
    assert "Missing" in resp.json()["detail"]
    assert metrics.auth_failures == 1


@pytest.mark.asyncio
async def test_invalid_key_returns_403(client):
    with patch("afyalink.config.settings.auth_enabled", True), \
         patch("afyalink.config.settings.counselor_api_keys", "c-1:valid-key"):
        resp = await client.get(
            "/api/mental-health/sessions/waiting",
            headers={"X-API-Key": "wrong-key"},
        )
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Counselor access required"


@pytest.mark.asyncio
async def test_valid_key_succeeds(client):
    app.dependency_overrides[get_db] = _mock_db_override
    try:
        with patch("afyalink.config.settings.auth_enabled", True), \
             patch("afyalink.config.settings.counselor_api_keys", "c-1:valid-key"):
            resp = await client.get(
                "/api/mental-health/sessions/waiting",
                headers={"X-API-Key": "valid-key"},
            )
    finally:
        app.dependency_overrides.clear()
    assert resp.status_code == 200
    assert resp.json()["sessions"] == []


# ---------------------------------------------------------------------------
# Key parsing
# ---------------------------------------------------------------------------


class TestCounselorKeys:
    def test_hash_key_deterministic(self):
        h1 = hash_key("my-secret")
        assert h1 == hash_key("my-secret")
        assert len(h1) == 64

    def test_plaintext_key_is_hashed(self):
        with patch("afyalink.config.settings.counselor_api_keys", "c-1:plain-key"):
            hashes = counselor_key_hashes()
        assert hashes == {hash_key("plain-key"): "c-1"}

    def test_prehashed_key_used_directly(self):
        pre_hashed = hash_key("my-secret")
        with patch("afyalink.config.settings.counselor_api_keys", f"c-2:{pre_hashed}"):
            hashes = counselor_key_hashes()
        assert hashes == {pre_hashed: "c-2"}

    def test_several_entries_and_malformed_ignored(self):
        with patch(
            "afyalink.config.settings.counselor_api_keys",
            " c-1:key-one , broken, :nokey, c-2:key-two,",
        ):
            hashes = counselor_key_hashes()
        assert sorted(hashes.values()) == ["c-1", "c-2"]

    @pytest.mark.asyncio
    async def test_require_counselor_returns_id(self):
        with patch("afyalink.config.settings.auth_enabled", True), \
             patch("afyalink.config.settings.counselor_api_keys", "nurse-amina:valid-key"):
            assert await require_counselor(api_key="valid-key") == "nurse-amina"

    @pytest.mark.asyncio
    async def test_require_counselor_auth_disabled(self):
        with patch("afyalink.config.settings.auth_enabled", False):
            assert await require_counselor(api_key=None) == DEV_COUNSELOR_ID

    @pytest.mark.asyncio
    async def test_optional_counselor(self):
        with patch("afyalink.config.settings.auth_enabled", True), \
             patch("afyalink.config.settings.counselor_api_keys", "c-1:valid-key"):
            assert await optional_counselor(api_key=None) is None
            assert await optional_counselor(api_key="wrong") is None
            assert await optional_counselor(api_key="valid-key") == "c-1"

    @pytest.mark.asyncio
    async def test_optional_user_id(self):
        assert await optional_user_id(x_user_id=None) is None
        assert await optional_user_id(x_user_id="  ") is None
        assert await optional_user_id(x_user_id=" user-1 ") == "user-1"


# ---------------------------------------------------------------------------
# Rate limiter unit tests
# ---------------------------------------------------------------------------


class TestSlidingWindowRateLimiter:
    def test_allows_under_limit(self):
        rl = SlidingWindowRateLimiter(max_requests=3, window_seconds=60)
        for _ in range(3):
            allowed, _ = rl.is_allowed("key-a")
            assert allowed is True

    def test_blocks_over_limit(self):
        rl = SlidingWindowRateLimiter(max_requests=2, window_seconds=60)
        rl.is_allowed("key-a")
        rl.is_allowed("key-a")
        allowed, headers = rl.is_allowed("key-a")
        assert allowed is False
        assert headers["X-RateLimit-Remaining"] == "0"

    def test_different_keys_independent(self):
        rl = SlidingWindowRateLimiter(max_requests=1, window_seconds=60)
        allowed_a, _ = rl.is_allowed("key-a")
        allowed_b, _ = rl.is_allowed("key-b")
        assert allowed_a is True
        assert allowed_b is True
        assert rl.active_keys == 2

    def test_window_expiry(self):
        rl = SlidingWindowRateLimiter(max_requests=1, window_seconds=1)
        allowed, _ = rl.is_allowed("key-a")
        assert allowed is True

        future = time.monotonic() + 2
        with patch("afyalink.services.rate_limiter.time.monotonic", return_value=future):
            allowed, _ = rl.is_allowed("key-a")
            assert allowed is True

    def test_headers_info(self):
        rl = SlidingWindowRateLimiter(max_requests=5, window_seconds=60)
        _, headers = rl.is_allowed("key-a")
        assert headers["X-RateLimit-Limit"] == "5"
        assert headers["X-RateLimit-Remaining"] == "4"
        assert "X-RateLimit-Reset" in headers

    def test_clear_resets_state(self):
        rl = SlidingWindowRateLimiter(max_requests=1, window_seconds=60)
        rl.is_allowed("key-a")
        allowed, _ = rl.is_allowed("key-a")
        assert allowed is False

        rl.clear()
        allowed, _ = rl.is_allowed("key-a")
        assert allowed is True

    def test_idle_clients_are_swept(self):
        rl = SlidingWindowRateLimiter(max_requests=5, window_seconds=60)
        with patch("afyalink.services.rate_limiter.time.monotonic", return_value=1000.0):
            for i in range(1000):
                rl.is_allowed(f"ip:10.0.{i // 250}.{i % 250}")
        assert rl.active_keys == 1000

        with patch("afyalink.services.rate_limiter.time.monotonic", return_value=1061.0):
            rl.is_allowed("ip:192.168.1.1")
        assert rl.active_keys == 1

    def test_sweep_keeps_clients_inside_window(self):
        rl = SlidingWindowRateLimiter(max_requests=1, window_seconds=60)
        with patch("afyalink.services.rate_limiter.time.monotonic", return_value=1000.0):
            rl.is_allowed("ip:old")
        with patch("afyalink.services.rate_limiter.time.monotonic", return_value=1030.0):
            rl.is_allowed("ip:recent")
        with patch("afyalink.services.rate_limiter.time.monotonic", return_value=1070.0):
            allowed, _ = rl.is_allowed("ip:recent")
        assert allowed is False
        assert rl.active_keys == 1

    def test_zero_window_does_not_accumulate(self):
        rl = SlidingWindowRateLimiter(max_requests=5, window_seconds=0)
        for i in range(1000):
            rl.is_allowed(f"ip:{i}")
        rl.is_allowed("ip:last")
        assert rl.active_keys == 1


class TestClientKey:
    def test_keyed_by_api_key_hash(self):
        request = MagicMock()
        request.headers = {"X-API-Key": "secret"}
        assert client_key(request) == f"key:{hash_key('secret')}"

    def test_keyed_by_address(self):
        request = MagicMock()
        request.headers = {}
        request.client.host = "10.0.0.5"
        assert client_key(request) == "ip:10.0.0.5"


# ---------------------------------------------------------------------------
# Integration: rate limit returns 429 with headers
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_rate_limit_returns_429(client):
    """Exceeding the rate limit should return 429 with X-RateLimit-* headers."""
    original = rate_limiter._max_requests
    rate_limiter._max_requests = 2
    try:
        app.dependency_overrides[get_db] = _mock_db_override
        for _ in range(2):
            resp = await client.get("/api/health-services")
            assert resp.status_code == 200
            assert "X-RateLimit-Limit" in resp.headers

        resp = await client.get("/api/health-services")
        assert resp.status_code == 429
        assert "X-RateLimit-Limit" in resp.headers
        assert resp.json()["detail"] == "Rate limit exceeded"
    finally:
        rate_limiter._max_requests = original
        app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health_is_not_rate_limited(client):
    original = rate_limiter._max_requests
    rate_limiter._max_requests = 1
    mock_session = AsyncMock()
    app.dependency_overrides[get_db] = lambda: mock_session
    try:
        for _ in range(3):
            resp = await client.get("/health")
            assert resp.status_code == 200
    finally:
        rate_limiter._max_requests = original
        app.dependency_overrides.clear()
