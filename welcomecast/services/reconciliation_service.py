"""
welcomecast.services.reconciliation_service — Billing Plan Reconciliation
==========================================================================

Whop is the source of truth for what an operator has paid for; the
``creators`` row only caches it.  This module compares the two and
corrects the local row when they disagree.

How it works:
    1. List the operator's memberships on this app's billing company.
    2. Keep memberships on a configured billing plan whose status is still
       live (not ``canceling``, ``canceled``, ``expired`` or ``completed``).
    3. Pick one by precedence: active without a pending cancellation, then
       active with one, then trialing, then whatever came first.
    4. Apply the decision table:

       =====================  ============  ==================================
       External               Local         Action
       =====================  ============  ==================================
       no matching membership paid          downgrade to free, reset credits
       tier differs           any           switch tier, grant its credits
       tier matches           any           no-op (plan ref refreshed)
       =====================  ============  ==================================

    5. Log corrections for audit.

Failures talking to Whop **fail open**: nothing is changed and the caller
gets ``ReconcileResult(False, False)``.  A flaky billing API must never
downgrade a paying customer.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import Engine, select

from welcomecast.config import WelcomecastConfig
from welcomecast.database.engine import get_session, run_db
from welcomecast.database.models import Creator, PlanType, utcnow
from welcomecast.exceptions import TenantNotFound, VendorError
from welcomecast.vendors.whop import Membership, WhopClient

logger = logging.getLogger(__name__)

ENDED_STATUSES = frozenset({"canceling", "canceled", "cancelled", "expired", "completed"})


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    is_cancelled: bool
    did_change_plan: bool
    membership: Membership | None = None


def _rank(membership: Membership) -> int:
    if membership.status == "active" and not membership.cancel_at_period_end:
        return 0
    if membership.status == "active":
        return 1
    if membership.status == "trialing":
        return 2
    return 3


def pick_membership(
    memberships: Iterable[Membership], billing_plans: dict[str, str]
) -> Membership | None:
    """Choose the membership that decides the operator's plan, if any."""
    candidates = [
        m for m in memberships
        if m.plan_id in billing_plans and m.status not in ENDED_STATUSES
    ]
    if not candidates:
        return None
    # min() keeps the first of equal-ranked entries, so "first found" wins ties
    return min(candidates, key=_rank)


def _apply(
    engine: Engine,
    cfg: WelcomecastConfig,
    creator_id: str,
    membership: Membership | None,
) -> ReconcileResult:
    with get_session(engine) as session:
        creator = session.get(Creator, creator_id)
        if creator is None:
            raise TenantNotFound(f"Creator {creator_id} not found")
        before = (creator.plan_type, creator.credits, creator.whop_plan_id)

        if membership is None:
            if creator.plan_type == PlanType.FREE:
                return ReconcileResult(is_cancelled=False, did_change_plan=False)
            creator.plan_type = PlanType.FREE.value
            creator.credits = cfg.free_credits
            creator.whop_plan_id = None
            logger.warning(
                "Plan reconciliation: creator %s has no live membership — downgraded "
                "to free (before: plan=%s credits=%s plan_id=%s)",
                creator_id, *before,
            )
            return ReconcileResult(is_cancelled=True, did_change_plan=True)

        tier = cfg.tier_for_plan(membership.plan_id)
        if tier != creator.plan_type:
            creator.plan_type = tier
            allotment = cfg.credits_for_tier(tier)
            if allotment is not None:
                creator.credits = allotment
            creator.whop_plan_id = membership.plan_id
            creator.last_purchase_date = utcnow()
            logger.warning(
                "Plan reconciliation: creator %s moved %s → %s via membership %s "
                "(credits %s → %s)",
                creator_id, before[0], tier, membership.id, before[1], creator.credits,
            )
            return ReconcileResult(False, True, membership)

        if creator.whop_plan_id != membership.plan_id:
            creator.whop_plan_id = membership.plan_id
            logger.info(
                "Plan reconciliation: refreshed plan ref for creator %s → %s",
                creator_id, membership.plan_id,
            )
        return ReconcileResult(False, False, membership)


async def reconcile(
    engine: Engine, whop: WhopClient, cfg: WelcomecastConfig, creator: Creator
) -> ReconcileResult:
    """Bring *creator*'s cached plan in line with Whop billing."""
    try:
        memberships = await whop.list_memberships(cfg.billing_company_id, creator.whop_user_id)
    except VendorError as exc:
        logger.warning(
            "Plan reconciliation skipped for creator %s: %s", creator.id, exc
        )
        return ReconcileResult(is_cancelled=False, did_change_plan=False)

    membership = pick_membership(memberships, cfg.billing_plans)
    return await run_db(_apply, engine, cfg, creator.id, membership)


def _creators_for_user(engine: Engine, whop_user_id: str) -> list[Creator]:
    with get_session(engine) as session:
        return list(
            session.scalars(select(Creator).where(Creator.whop_user_id == whop_user_id)).all()
        )


async def reconcile_user(
    engine: Engine, whop: WhopClient, cfg: WelcomecastConfig, whop_user_id: str
) -> list[ReconcileResult]:
    """Reconcile every tenant owned by *whop_user_id* (billing webhooks)."""
    creators = await run_db(_creators_for_user, engine, whop_user_id)
    if not creators:
        logger.info("Billing event for user %s with no creator records", whop_user_id)
    return [await reconcile(engine, whop, cfg, c) for c in creators]
