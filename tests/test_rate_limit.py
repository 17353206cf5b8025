"""
tests/test_rate_limit.py — Admin API Rate Limiting Tests
==========================================================
Admin mutation endpoints are rate-limited per operator, returning 429 with
a ``Retry-After`` header once the window is full.
"""

from __future__ import annotations

import pytest
from conftest import EXPERIENCE_ID, OPERATOR_ID, make_creator, token_for
from sqlalchemy.orm import Session

from welcomecast.api.rate_limit import MUTATIONS, VENDOR_CALLS, AdminRateLimiter
from welcomecast.database.models import AdminRateLimitEvent


# ---------------------------------------------------------------------------
# Unit tests for the AdminRateLimiter core (DB-backed)
# ---------------------------------------------------------------------------
class TestAdminRateLimiter:
    """Test the sliding-window rate limiter in isolation (DB-backed)."""

    @pytest.fixture(autouse=True)
    def _limiter(self, db_engine):
        self.limiter = AdminRateLimiter(max_requests=5, window_seconds=60, engine=db_engine)
        self.engine = db_engine

    def test_allows_requests_within_limit(self):
        for _ in range(5):
            allowed, _ = self.limiter.check("user1")
            assert allowed
            self.limiter.record("user1")

    def test_blocks_after_limit_exceeded(self):
        limiter = AdminRateLimiter(max_requests=3, window_seconds=60, engine=self.engine)
        for _ in range(3):
            limiter.record("user1")

        allowed, info = limiter.check("user1")
        assert not allowed
        assert info["remaining"] == 0
        assert info["reset"] > 0

    def test_separate_users_have_separate_limits(self):
        limiter = AdminRateLimiter(max_requests=2, window_seconds=60, engine=self.engine)
        limiter.record("user1")
        limiter.record("user1")

        allowed1, _ = limiter.check("user1")
        allowed2, _ = limiter.check("user2")
        assert not allowed1
        assert allowed2

    def test_remaining_count_decreases(self):
        _, info = self.limiter.check("user1")
        assert info["remaining"] == 5

        self.limiter.record("user1")
        _, info = self.limiter.check("user1")
        assert info["remaining"] == 4

    def test_reset_clears_specific_user(self):
        limiter = AdminRateLimiter(max_requests=2, window_seconds=60, engine=self.engine)
        limiter.record("user1")
        limiter.record("user1")
        limiter.record("user2")

        limiter.reset("user1")

        allowed1, _ = limiter.check("user1")
        assert allowed1
        _, info2 = limiter.check("user2")
        assert info2["remaining"] == 1

    def test_reset_all(self):
        self.limiter.record("user1")
        self.limiter.record("user2")

        self.limiter.reset()

        with Session(self.engine) as s:
            assert s.query(AdminRateLimitEvent).count() == 0

    def test_buckets_count_separately(self):
        general = AdminRateLimiter(max_requests=2, window_seconds=60, engine=self.engine)
        vendor = AdminRateLimiter(
            max_requests=2, window_seconds=60, engine=self.engine, bucket="vendor"
        )
        vendor.record("user1")
        vendor.record("user1")

        assert not vendor.check("user1")[0]
        assert general.check("user1")[1]["remaining"] == 2

        vendor.reset()
        assert vendor.check("user1")[1]["remaining"] == 2


# ---------------------------------------------------------------------------
# Integration tests with FastAPI TestClient
# ---------------------------------------------------------------------------
class TestRateLimitDependency:
    """The limiter dependency end-to-end via the shared ``client`` fixture."""

    @pytest.fixture
    def limiter(self, client, db_engine):
        import welcomecast.api.rate_limit as rl_mod

        return rl_mod.configure_rate_limiter(engine=db_engine, max_requests=3)

    def _toggle(self, client, user_id: str = OPERATOR_ID):
        return client.post(
            "/api/admin/toggle-automation",
            params={"experienceId": EXPERIENCE_ID},
            headers={"x-whop-user-token": token_for(user_id)},
            json={"isActive": True},
        )

    def test_reads_not_rate_limited(self, client, limiter, db_engine):
        make_creator(db_engine)
        for _ in range(3):
            limiter.record(OPERATOR_ID)

        resp = client.get(
            "/api/admin/creator",
            params={"experienceId": EXPERIENCE_ID},
            headers={"x-whop-user-token": token_for(OPERATOR_ID)},
        )
        assert resp.status_code == 200

    def test_returns_429_after_limit(self, client, limiter, db_engine):
        make_creator(db_engine)

        for _ in range(3):
            assert self._toggle(client).status_code == 200
        resp = self._toggle(client)

        assert resp.status_code == 429
        body = resp.json()
        assert body["detail"]["error"] == "rate_limit_exceeded"
        assert "retry_after" in body["detail"]
        assert "Retry-After" in resp.headers

    def test_different_operators_have_separate_limits(self, client, limiter, db_engine):
        make_creator(db_engine)
        make_creator(db_engine, whop_user_id="user_cofounder")
        for _ in range(3):
            limiter.record(OPERATOR_ID)

        assert self._toggle(client).status_code == 429
        assert self._toggle(client, "user_cofounder").status_code == 200

    def test_unauthenticated_mutation_is_401(self, client, limiter):
        resp = client.post(
            "/api/admin/toggle-automation",
            params={"experienceId": EXPERIENCE_ID},
            json={"isActive": True},
        )
        assert resp.status_code == 401


class TestVendorCallBudget:
    """Routes that reach Fish Audio or Whop messaging share a tighter budget."""

    @pytest.fixture
    def limiter(self, client, db_engine):
        import welcomecast.api.rate_limit as rl_mod

        return rl_mod.configure_rate_limiter(engine=db_engine, max_requests=10, vendor_max_requests=2)

    def _preview(self, client):
        return client.post(
            "/api/admin/preview-audio",
            params={"experienceId": EXPERIENCE_ID},
            headers={"x-whop-user-token": token_for(OPERATOR_ID)},
        )

    def test_vendor_routes_hit_their_own_limit(self, client, limiter, db_engine):
        make_creator(db_engine)

        assert self._preview(client).status_code == 200
        assert self._preview(client).status_code == 200
        resp = self._preview(client)

        assert resp.status_code == 429
        assert resp.json()["detail"]["budget"] == VENDOR_CALLS
        assert "Retry-After" in resp.headers

    def test_plain_mutations_still_allowed(self, client, limiter, db_engine, fish_audio):
        make_creator(db_engine)
        self._preview(client)
        self._preview(client)
        assert self._preview(client).status_code == 429

        resp = client.post(
            "/api/admin/toggle-automation",
            params={"experienceId": EXPERIENCE_ID},
            headers={"x-whop-user-token": token_for(OPERATOR_ID)},
            json={"isActive": True},
        )

        assert resp.status_code == 200
        assert fish_audio.generate_speech.await_count == 2

    def test_vendor_calls_also_count_as_mutations(self, client, db_engine):
        import welcomecast.api.rate_limit as rl_mod

        rl_mod.configure_rate_limiter(engine=db_engine, max_requests=1, vendor_max_requests=5)
        make_creator(db_engine)

        assert self._preview(client).status_code == 200
        resp = self._preview(client)

        assert resp.status_code == 429
        assert resp.json()["detail"]["budget"] == MUTATIONS
