"""
welcomecast.api.rate_limit — Per-Operator Mutation Rate Limiting
=================================================================

Two sliding-window budgets per operator, both per minute:

* **mutations** — 30 admin writes of any kind.
* **vendor calls** — 10 of the writes that reach a paid vendor: voice
  uploads (Fish Audio cloning), triggered and preview generations (Fish
  Audio synthesis) and manual DMs (Whop).  A runaway dashboard tab burns
  through these long before the general budget.

Both budgets are keyed by the operator's Whop user id and stored in the
``admin_rate_limit_events`` table so the window survives restarts.
Returns HTTP 429 with a ``Retry-After`` header when either is exceeded.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import Engine, delete, func, select
from sqlalchemy.orm import Session

from welcomecast.api.deps import get_current_creator
from welcomecast.database.models import AdminRateLimitEvent, Creator

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT = 30
DEFAULT_VENDOR_RATE_LIMIT = 10
DEFAULT_WINDOW_SECONDS = 60

MUTATIONS = "mutations"
VENDOR_CALLS = "vendor calls"

_MUTATION_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


class AdminRateLimiter:
    """DB-backed sliding-window limiter keyed by operator id.

    Limiters with different *bucket* names share the table without
    counting each other's events.
    """

    def __init__(
        self,
        max_requests: int = DEFAULT_RATE_LIMIT,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        *,
        engine: Engine,
        bucket: str = "",
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.engine = engine
        self.bucket = bucket

    def _key(self, admin_id: str) -> str:
        return f"{self.bucket}:{admin_id}" if self.bucket else admin_id

    def _normalize_dt(self, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    def _prune(self, session: Session, key: str, cutoff: datetime) -> None:
        session.execute(
            delete(AdminRateLimitEvent).where(
                AdminRateLimitEvent.admin_id == key,
                AdminRateLimitEvent.timestamp < cutoff,
            )
        )

    def check(self, admin_id: str) -> tuple[bool, dict[str, Any]]:
        """Return ``(allowed, info)``; *info* has ``remaining``, ``reset``
        (seconds until a slot frees up) and ``limit``."""
        now = datetime.now(UTC)
        cutoff = now - timedelta(seconds=self.window_seconds)
        key = self._key(admin_id)

        with Session(self.engine) as session:
            self._prune(session, key, cutoff)
            timestamps = session.scalars(
                select(AdminRateLimitEvent.timestamp)
                .where(AdminRateLimitEvent.admin_id == key)
                .order_by(AdminRateLimitEvent.timestamp.asc())
            ).all()
            session.commit()

        count = len(timestamps)
        if count >= self.max_requests:
            oldest = self._normalize_dt(timestamps[0])
            reset = (oldest + timedelta(seconds=self.window_seconds) - now).total_seconds()
            return False, {
                "remaining": 0,
                "reset": max(1, int(reset) + 1),
                "limit": self.max_requests,
            }
        return True, {
            "remaining": self.max_requests - count,
            "reset": self.window_seconds,
            "limit": self.max_requests,
        }

    def record(self, admin_id: str) -> dict[str, Any]:
        """Count one request against *admin_id*'s window."""
        now = datetime.now(UTC)
        cutoff = now - timedelta(seconds=self.window_seconds)
        key = self._key(admin_id)

        with Session(self.engine) as session:
            self._prune(session, key, cutoff)
            session.add(AdminRateLimitEvent(admin_id=key, timestamp=now))
            session.flush()
            count = session.scalar(
                select(func.count())
                .select_from(AdminRateLimitEvent)
                .where(AdminRateLimitEvent.admin_id == key)
            ) or 0
            session.commit()

        return {
            "remaining": max(0, self.max_requests - count),
            "reset": self.window_seconds,
            "limit": self.max_requests,
        }

    def reset(self, admin_id: str | None = None) -> None:
        """Clear this bucket for one operator, or everyone."""
        with Session(self.engine) as session:
            stmt = delete(AdminRateLimitEvent)
            if admin_id is not None:
                stmt = stmt.where(AdminRateLimitEvent.admin_id == self._key(admin_id))
            elif self.bucket:
                stmt = stmt.where(AdminRateLimitEvent.admin_id.startswith(f"{self.bucket}:"))
            session.execute(stmt)
            session.commit()


# ---------------------------------------------------------------------------
# Module-level limiters, one per budget
# ---------------------------------------------------------------------------
_limiters: dict[str, AdminRateLimiter] = {}


def get_rate_limiter(budget: str = MUTATIONS) -> AdminRateLimiter:
    limiter = _limiters.get(budget)
    if limiter is None:
        raise RuntimeError("Rate limiter not configured — call configure_rate_limiter() first")
    return limiter


def configure_rate_limiter(
    *,
    engine: Engine,
    max_requests: int = DEFAULT_RATE_LIMIT,
    vendor_max_requests: int = DEFAULT_VENDOR_RATE_LIMIT,
    window_seconds: int = DEFAULT_WINDOW_SECONDS,
) -> AdminRateLimiter:
    """Install both budgets; returns the general mutation limiter."""
    _limiters[MUTATIONS] = AdminRateLimiter(max_requests, window_seconds, engine=engine)
    _limiters[VENDOR_CALLS] = AdminRateLimiter(
        vendor_max_requests, window_seconds, engine=engine, bucket="vendor"
    )
    return _limiters[MUTATIONS]


# ---------------------------------------------------------------------------
# FastAPI dependencies — chain after get_current_creator
# ---------------------------------------------------------------------------
async def _spend(budget: str, admin_id: str) -> None:
    limiter = get_rate_limiter(budget)
    allowed, info = await asyncio.to_thread(limiter.check, admin_id)

    if not allowed:
        logger.warning(
            "Rate limit exceeded for operator %s: %d %s per %ds",
            admin_id, limiter.max_requests, budget, limiter.window_seconds,
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "rate_limit_exceeded",
                "budget": budget,
                "message": f"Rate limit exceeded: {limiter.max_requests} {budget} per minute.",
                "retry_after": info["reset"],
            },
            headers={"Retry-After": str(info["reset"])},
        )

    await asyncio.to_thread(limiter.record, admin_id)


async def rate_limited_creator(
    request: Request,
    creator: Creator = Depends(get_current_creator),
) -> Creator:
    """Resolve the caller's tenant *and* enforce the mutation limit.

    Read-only methods pass straight through.
    """
    if request.method in _MUTATION_METHODS:
        await _spend(MUTATIONS, creator.whop_user_id)
    return creator


async def vendor_limited_creator(
    creator: Creator = Depends(rate_limited_creator),
) -> Creator:
    """:func:`rate_limited_creator` plus the vendor-call budget."""
    await _spend(VENDOR_CALLS, creator.whop_user_id)
    return creator
