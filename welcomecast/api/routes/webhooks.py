"""
welcomecast.api.routes.webhooks — Whop webhook receiver
=========================================================

Two kinds of events arrive on the same endpoint:

* **Member joins** — ``membership.went_valid`` on a creator's community.
  Creates the customer and queues their welcome.
* **Billing** — ``membership.went_valid`` / ``membership.went_invalid`` /
  ``payment.succeeded`` on this app's own billing company.  Reconciles the
  paying operator's plan.

Delivery is at-least-once on Whop's side and nothing here deduplicates by
event id; repeating an event is harmless because customers are keyed by
(creator, user) and reconciliation is idempotent.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from sqlalchemy import Engine

from welcomecast.api.deps import get_config, get_engine, get_queue, get_whop
from welcomecast.config import WelcomecastConfig
from welcomecast.database.engine import run_db
from welcomecast.exceptions import GenerationAlreadyQueued, GenerationQueueFull
from welcomecast.services import member_service, reconciliation_service, tenant_service
from welcomecast.services.generation_queue import GenerationQueue
from welcomecast.vendors.whop import WhopClient

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/whop", tags=["webhooks"])

MEMBERSHIP_WENT_VALID = "membership.went_valid"
MEMBERSHIP_WENT_INVALID = "membership.went_invalid"
PAYMENT_SUCCEEDED = "payment.succeeded"
BILLING_ONLY_ACTIONS = frozenset({MEMBERSHIP_WENT_INVALID, PAYMENT_SUCCEEDED})


# ---------------------------------------------------------------------------
# Payload schemas
# ---------------------------------------------------------------------------
class _Loose(BaseModel):
    model_config = ConfigDict(extra="ignore")


class WebhookUser(_Loose):
    id: str | None = None
    name: str | None = None
    username: str | None = None
    email: str | None = None


class WebhookPlan(_Loose):
    id: str | None = None
    name: str | None = None


class WebhookData(_Loose):
    id: str | None = None
    company_id: str | None = None
    user: WebhookUser | None = None
    user_id: str | None = None
    plan: WebhookPlan | None = None
    plan_id: str | None = None

    @property
    def whop_user_id(self) -> str | None:
        return (self.user.id if self.user else None) or self.user_id

    @property
    def whop_plan_id(self) -> str | None:
        return (self.plan.id if self.plan else None) or self.plan_id


class WebhookEvent(_Loose):
    action: str
    data: WebhookData = WebhookData()


def is_billing_event(event: WebhookEvent, cfg: WelcomecastConfig) -> bool:
    if event.action in BILLING_ONLY_ACTIONS:
        return True
    data = event.data
    return (
        bool(cfg.billing_company_id) and data.company_id == cfg.billing_company_id
    ) or cfg.tier_for_plan(data.whop_plan_id) is not None


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------
async def _handle_billing(
    event: WebhookEvent, engine: Engine, whop: WhopClient, cfg: WelcomecastConfig
) -> dict[str, Any]:
    user_id = event.data.whop_user_id
    if not user_id:
        logger.warning("Billing webhook %s without user id", event.action)
        return {"success": True, "message": "Webhook received but no user ID"}
    results = await reconciliation_service.reconcile_user(engine, whop, cfg, user_id)
    logger.info(
        "Billing webhook %s for %s reconciled %d creator(s)", event.action, user_id, len(results)
    )
    return {
        "success": True,
        "reconciled": len(results),
        "changed": sum(1 for r in results if r.did_change_plan),
    }


async def _handle_member_join(
    data: WebhookData, engine: Engine, queue: GenerationQueue
) -> dict[str, Any]:
    user_id = data.whop_user_id
    if not user_id:
        logger.warning("membership.went_valid without user id")
        return {"success": True, "message": "Webhook received but no user ID"}
    if not data.company_id:
        logger.warning("membership.went_valid for %s without company id", user_id)
        return {"success": True, "message": "Webhook received but no company ID"}

    creator = await run_db(tenant_service.find_creator_for_company, engine, data.company_id)
    if creator is None:
        logger.info("No creator for company %s", data.company_id)
        return {"success": True, "message": "No creator found for this company"}
    if not creator.is_automation_active:
        logger.info("Automation paused for creator %s", creator.id)
        return {"success": True, "message": "Automation is paused"}
    if not creator.is_setup_complete:
        logger.info("Setup not complete for creator %s", creator.id)
        return {"success": True, "message": "Setup not complete"}

    user = data.user or WebhookUser()
    customer, created = await run_db(
        member_service.get_or_create_customer,
        engine,
        creator,
        whop_user_id=user_id,
        whop_member_id=data.id,
        name=user.name or user.username or "Member",
        email=user.email,
        username=user.username,
        plan_name=data.plan.name if data.plan else None,
    )
    if not created:
        logger.info("Customer %s already known to creator %s", user_id, creator.id)
        return {"success": True, "message": "Customer already exists"}

    try:
        queue.submit(creator.id, customer.id)
    except (GenerationAlreadyQueued, GenerationQueueFull) as exc:
        logger.warning("Welcome for %s not queued: %s", customer.id, exc)
        return {"success": True, "message": str(exc)}
    return {"success": True, "message": "Welcome queued", "customerId": customer.id}


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@router.post("/webhook")
async def receive_webhook(
    event: WebhookEvent,
    engine: Annotated[Engine, Depends(get_engine)],
    whop: Annotated[WhopClient, Depends(get_whop)],
    cfg: Annotated[WelcomecastConfig, Depends(get_config)],
    queue: Annotated[GenerationQueue, Depends(get_queue)],
):
    logger.info("Whop webhook received: %s", event.action)
    if is_billing_event(event, cfg):
        return await _handle_billing(event, engine, whop, cfg)
    if event.action == MEMBERSHIP_WENT_VALID:
        return await _handle_member_join(event.data, engine, queue)
    return {"success": True, "message": f"Ignored event {event.action}"}


@router.get("/webhook/test")
def webhook_test():
    return {
        "status": "ready",
        "message": "Webhook endpoint is ready to receive events",
        "endpoints": {"webhook": "/api/whop/webhook"},
        "expectedEvents": [MEMBERSHIP_WENT_VALID, MEMBERSHIP_WENT_INVALID, PAYMENT_SUCCEEDED],
    }
