"""
welcomecast.services.member_service — Customer Records
=======================================================

Customers are created lazily: by the membership webhook, by the member's
first visit to the welcome page, or never (members that joined before the
app was installed only show up in the Whop member directory).
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError

from welcomecast.database.engine import get_session
from welcomecast.database.models import AudioMessage, Creator, Customer, MessageStatus, utcnow

logger = logging.getLogger(__name__)

RESET_REASON = "Manually reset by user"


def find_customer(engine: Engine, creator_id: str, whop_user_id: str) -> Customer | None:
    with get_session(engine) as session:
        return session.scalars(
            select(Customer).where(
                Customer.creator_id == creator_id,
                Customer.whop_user_id == whop_user_id,
            )
        ).first()


def get_customer(engine: Engine, creator_id: str, customer_id: str) -> Customer | None:
    """Fetch a customer, scoped to *creator_id*."""
    with get_session(engine) as session:
        customer = session.get(Customer, customer_id)
        if customer is None or customer.creator_id != creator_id:
            return None
        return customer


def get_or_create_customer(
    engine: Engine,
    creator: Creator,
    *,
    whop_user_id: str,
    whop_member_id: str | None,
    name: str,
    email: str | None = None,
    username: str | None = None,
    plan_name: str | None = None,
    joined_at: datetime | None = None,
) -> tuple[Customer, bool]:
    """Return ``(customer, created)`` for *whop_user_id* under *creator*."""
    existing = find_customer(engine, creator.id, whop_user_id)
    if existing is not None:
        return existing, False

    try:
        with get_session(engine) as session:
            customer = Customer(
                creator_id=creator.id,
                whop_user_id=whop_user_id,
                whop_member_id=whop_member_id or f"mem_{whop_user_id}",
                whop_company_id=creator.whop_company_id,
                name=name,
                email=email,
                username=username,
                plan_name=plan_name,
                joined_at=joined_at or utcnow(),
            )
            session.add(customer)
            session.flush()
    except IntegrityError:
        # Webhook and page visit raced on the (creator, user) key
        existing = find_customer(engine, creator.id, whop_user_id)
        if existing is None:
            raise
        return existing, False

    logger.info("Created customer %s (%s) for creator %s", name, whop_user_id, creator.id)
    return customer, True


def latest_message(engine: Engine, customer_id: str) -> AudioMessage | None:
    with get_session(engine) as session:
        return session.scalars(
            select(AudioMessage)
            .where(AudioMessage.customer_id == customer_id)
            .order_by(AudioMessage.created_at.desc())
        ).first()


def list_customers(engine: Engine, creator_id: str) -> list[tuple[Customer, list[AudioMessage]]]:
    """Every customer of *creator_id* with its jobs, oldest job first."""
    with get_session(engine) as session:
        customers = session.scalars(
            select(Customer)
            .where(Customer.creator_id == creator_id)
            .order_by(Customer.joined_at.desc())
        ).all()
        messages = session.scalars(
            select(AudioMessage)
            .where(AudioMessage.creator_id == creator_id)
            .order_by(AudioMessage.created_at.asc())
        ).all()

    by_customer: dict[str, list[AudioMessage]] = {}
    for message in messages:
        by_customer.setdefault(message.customer_id, []).append(message)
    return [(c, by_customer.get(c.id, [])) for c in customers]


def reset_test_status(engine: Engine, creator_id: str, whop_user_id: str) -> bool:
    """Let a member re-run their welcome flow.

    Clears ``first_message_sent`` and fails any job still generating.
    Returns False when the user isn't a customer of *creator_id*.
    """
    with get_session(engine) as session:
        customer = session.scalars(
            select(Customer).where(
                Customer.creator_id == creator_id,
                Customer.whop_user_id == whop_user_id,
            )
        ).first()
        if customer is None:
            return False

        customer.first_message_sent = False
        stuck = session.scalars(
            select(AudioMessage).where(
                AudioMessage.customer_id == customer.id,
                AudioMessage.status == MessageStatus.GENERATING.value,
            )
        ).all()
        for message in stuck:
            message.advance_status(MessageStatus.FAILED)
            message.error_message = RESET_REASON
        logger.info(
            "Reset test status for customer %s (%d stuck job(s) failed)",
            customer.id, len(stuck),
        )
        return True
