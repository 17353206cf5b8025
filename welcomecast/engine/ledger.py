"""
welcomecast.engine.ledger — Credit Accounting
==============================================

Pure credit logic, shared by the generation pipeline and the admin API.

Rules:
    * Unlimited-plan creators always pass and are never decremented.
    * Metered creators fail the availability check at a balance of 0 or less.
    * A decrement happens **only after a confirmed delivery**; the caller
      (:mod:`welcomecast.services.credit_service`) is responsible for that.
    * Reaching 0 emits :class:`CreditsExhausted`.  The ledger only touches
      the balance; pausing automation is the subscriber's job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from welcomecast.database.models import PlanType
from welcomecast.engine.events import CreditsExhausted, LedgerEvent

__all__ = [
    "Availability",
    "LedgerResult",
    "NO_CREDITS_REASON",
    "check_availability",
    "decrement",
]

NO_CREDITS_REASON = (
    "No message credits remaining. Upgrade your plan to keep sending welcome messages."
)


class Account(Protocol):
    id: str
    plan_type: str
    credits: int


@dataclass(frozen=True, slots=True)
class Availability:
    ok: bool
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class LedgerResult:
    credits: int
    charged: bool
    events: list[LedgerEvent] = field(default_factory=list)


def _is_unlimited(account: Account) -> bool:
    return account.plan_type == PlanType.UNLIMITED


def check_availability(account: Account) -> Availability:
    """Can *account* pay for one more delivered message?"""
    if _is_unlimited(account):
        return Availability(ok=True)
    if (account.credits or 0) <= 0:
        return Availability(ok=False, reason=NO_CREDITS_REASON)
    return Availability(ok=True)


def decrement(account: Account) -> LedgerResult:
    """Charge one credit for a delivered message.

    Mutates ``account.credits`` in place (never below zero) and returns the
    resulting balance plus any events the change produced.
    """
    if _is_unlimited(account):
        return LedgerResult(credits=account.credits, charged=False)

    account.credits = max(0, (account.credits or 0) - 1)
    events: list[LedgerEvent] = []
    if account.credits <= 0:
        events.append(CreditsExhausted(creator_id=account.id, balance=account.credits))
    return LedgerResult(credits=account.credits, charged=True, events=events)
