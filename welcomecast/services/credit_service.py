"""
welcomecast.services.credit_service — Persisted Credit Operations
==================================================================

Wraps the pure rules in :mod:`welcomecast.engine.ledger` with row-level
persistence.  A charge reads, decrements and writes the balance inside one
transaction (``SELECT … FOR UPDATE`` on PostgreSQL) so two deliveries
finishing together can't both spend the last credit.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from welcomecast.constants import PLAN_CATALOGUE
from welcomecast.database.engine import get_session
from welcomecast.database.models import Creator
from welcomecast.engine import ledger
from welcomecast.exceptions import TenantNotFound

logger = logging.getLogger(__name__)


def check(engine: Engine, creator_id: str) -> ledger.Availability:
    with get_session(engine) as session:
        creator = session.get(Creator, creator_id)
        if creator is None:
            raise TenantNotFound(f"Creator {creator_id} not found")
        return ledger.check_availability(creator)


def debit(session: Session, creator_id: str) -> ledger.LedgerResult:
    """Debit one credit inside the caller's transaction."""
    creator = session.scalars(
        select(Creator).where(Creator.id == creator_id).with_for_update()
    ).first()
    if creator is None:
        raise TenantNotFound(f"Creator {creator_id} not found")
    result = ledger.decrement(creator)
    if result.charged:
        logger.info("Charged 1 credit to creator %s (balance %d)", creator_id, result.credits)
    return result


def charge(engine: Engine, creator_id: str) -> ledger.LedgerResult:
    """Debit one credit for a confirmed delivery."""
    with get_session(engine) as session:
        return debit(session, creator_id)


def summarize(creator: Creator) -> dict[str, Any]:
    """Credit view for the admin dashboard."""
    plan = PLAN_CATALOGUE.get(creator.plan_type, PLAN_CATALOGUE["free"])
    return {
        "credits": creator.credits,
        "planType": creator.plan_type,
        "planName": plan.name,
        "planLimit": plan.credits,
        "planPrice": plan.price,
        "isUnlimited": creator.is_unlimited,
        "lastPurchaseDate": (
            creator.last_purchase_date.isoformat() if creator.last_purchase_date else None
        ),
    }
