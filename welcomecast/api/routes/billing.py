"""
welcomecast.api.routes.billing — Credits & membership endpoints
=================================================================

Every read here reconciles against Whop first, so the dashboard never
shows a plan the operator has stopped paying for.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import Engine

from welcomecast.api.deps import get_config, get_current_creator, get_engine, get_whop
from welcomecast.api.rate_limit import rate_limited_creator
from welcomecast.config import WelcomecastConfig
from welcomecast.constants import PLAN_CATALOGUE
from welcomecast.database.engine import run_db
from welcomecast.database.models import Creator
from welcomecast.exceptions import WhopAPIError
from welcomecast.services import credit_service, reconciliation_service, tenant_service
from welcomecast.vendors.whop import Membership, WhopClient

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["billing"])


async def _reconciled(
    engine: Engine, whop: WhopClient, cfg: WelcomecastConfig, creator: Creator
) -> tuple[Creator, reconciliation_service.ReconcileResult]:
    result = await reconciliation_service.reconcile(engine, whop, cfg, creator)
    fresh = await run_db(tenant_service.get_creator, engine, creator.id)
    return fresh, result


async def _manage_url(whop: WhopClient, cfg: WelcomecastConfig) -> str | None:
    try:
        company = await whop.get_company(cfg.billing_company_id)
    except WhopAPIError as exc:
        logger.warning("Could not resolve billing company route: %s", exc)
        return None
    return f"https://whop.com/{company.route}/" if company.route else None


def _membership_dict(membership: Membership, manage_url: str | None) -> dict[str, Any]:
    return {
        "id": membership.id,
        "status": membership.status,
        "planId": membership.plan_id,
        "renewalPeriodEnd": membership.renewal_period_end,
        "cancelAtPeriodEnd": membership.cancel_at_period_end,
        "manageUrl": manage_url,
    }


@router.get("/credits")
async def credits(
    creator: Annotated[Creator, Depends(get_current_creator)],
    engine: Annotated[Engine, Depends(get_engine)],
    whop: Annotated[WhopClient, Depends(get_whop)],
    cfg: Annotated[WelcomecastConfig, Depends(get_config)],
):
    fresh, _ = await _reconciled(engine, whop, cfg, creator)
    return credit_service.summarize(fresh)


@router.get("/membership")
async def membership(
    creator: Annotated[Creator, Depends(get_current_creator)],
    engine: Annotated[Engine, Depends(get_engine)],
    whop: Annotated[WhopClient, Depends(get_whop)],
    cfg: Annotated[WelcomecastConfig, Depends(get_config)],
):
    fresh, result = await _reconciled(engine, whop, cfg, creator)
    info = None
    if result.membership is not None:
        info = _membership_dict(result.membership, await _manage_url(whop, cfg))
    return {
        "membership": info,
        "planType": fresh.plan_type,
        "plans": {
            tier: {"name": p.name, "price": p.price, "credits": p.credits}
            for tier, p in PLAN_CATALOGUE.items()
        },
    }


@router.post("/purchase-success")
async def purchase_success(
    creator: Annotated[Creator, Depends(rate_limited_creator)],
    engine: Annotated[Engine, Depends(get_engine)],
    whop: Annotated[WhopClient, Depends(get_whop)],
    cfg: Annotated[WelcomecastConfig, Depends(get_config)],
):
    """Called by the frontend after checkout; picks up the new plan."""
    fresh, result = await _reconciled(engine, whop, cfg, creator)
    return {
        "success": True,
        "didChangePlan": result.did_change_plan,
        **credit_service.summarize(fresh),
    }


@router.post("/cancel-membership")
async def cancel_membership(
    creator: Annotated[Creator, Depends(rate_limited_creator)],
    engine: Annotated[Engine, Depends(get_engine)],
    whop: Annotated[WhopClient, Depends(get_whop)],
    cfg: Annotated[WelcomecastConfig, Depends(get_config)],
):
    """Cancel the operator's plan at the end of the current period."""
    _, result = await _reconciled(engine, whop, cfg, creator)
    if result.membership is None:
        raise HTTPException(404, "No active membership to cancel")

    cancelled = await whop.cancel_membership(result.membership.id, at_period_end=True)
    logger.info(
        "Creator %s cancelled membership %s at period end", creator.id, cancelled.id
    )
    return {
        "success": True,
        "membership": _membership_dict(cancelled, await _manage_url(whop, cfg)),
    }
