"""
welcomecast.services.tenant_service — Multi-tenant Identity Resolution
=======================================================================

One Whop operator can administer several communities, so a user id alone
never identifies a tenant.  Every request is mapped to a :class:`Creator`
row by the **(operator, company)** pair, where the company is always
derived server-side from the experience the request came from.  A
client-supplied company id is never trusted.

Resolution flow (:func:`resolve`):
    1. Verify the ``x-whop-user-token`` → operator user id.
    2. Fetch the experience → owning company id.
    3. Look up the creator by (operator, company).
    4. Not found, but a row for this operator was created from the same
       experience under a different company → correct the company id in
       place (auto-heal).
    5. Still not found and ``create=True`` → require ``admin`` access on the
       experience, then insert.

Customer-facing pages sometimes arrive without an experience id.  Those
call sites opt into a :class:`FallbackTenantStrategy` explicitly; the
default :class:`NoFallback` never guesses.
"""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from welcomecast.constants import INITIAL_MESSAGE_TEMPLATE
from welcomecast.database.engine import get_session, run_db
from welcomecast.database.models import Creator, Customer
from welcomecast.exceptions import TenantAccessDenied, TenantNotFound
from welcomecast.vendors.whop import WhopClient

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Fallback strategies
# ---------------------------------------------------------------------------
class FallbackTenantStrategy(Protocol):
    """Picks a tenant when the request carries no community reference."""

    def find(self, session: Session, whop_user_id: str) -> Creator | None: ...


class NoFallback:
    """Never guess — an unresolvable request has no tenant."""

    def find(self, session: Session, whop_user_id: str) -> Creator | None:
        return None


class FirstSetupCompleteFallback:
    """Legacy lookup for requests without an experience id.

    Prefers a tenant the user is already a customer of, otherwise the
    oldest tenant with setup complete.  Only the customer welcome page uses
    this; remove it once every caller sends an experience id.
    """

    def find(self, session: Session, whop_user_id: str) -> Creator | None:
        known = session.scalars(
            select(Creator)
            .join(Customer, Customer.creator_id == Creator.id)
            .where(Customer.whop_user_id == whop_user_id)
            .order_by(Customer.created_at.asc())
        ).first()
        if known is not None:
            return known

        creator = session.scalars(
            select(Creator)
            .where(Creator.is_setup_complete.is_(True))
            .order_by(Creator.created_at.asc())
        ).first()
        if creator is not None:
            logger.warning(
                "No experience id for user %s — falling back to creator %s",
                whop_user_id, creator.id,
            )
        return creator


NO_FALLBACK = NoFallback()


# ---------------------------------------------------------------------------
# Synchronous lookups (run via run_db)
# ---------------------------------------------------------------------------
def get_creator(engine: Engine, creator_id: str) -> Creator | None:
    with get_session(engine) as session:
        return session.get(Creator, creator_id)


def find_creator(engine: Engine, whop_user_id: str, company_id: str) -> Creator | None:
    with get_session(engine) as session:
        return _find(session, whop_user_id, company_id)


def _find(session: Session, whop_user_id: str, company_id: str) -> Creator | None:
    return session.scalars(
        select(Creator).where(
            Creator.whop_user_id == whop_user_id,
            Creator.whop_company_id == company_id,
        )
    ).first()


def creator_for_company(session: Session, company_id: str) -> Creator | None:
    """The tenant that owns member-facing flows for *company_id*.

    A company may have more than one operator row; the one with setup
    complete wins, then the oldest.
    """
    return session.scalars(
        select(Creator)
        .where(Creator.whop_company_id == company_id)
        .order_by(Creator.is_setup_complete.desc(), Creator.created_at.asc())
    ).first()


def find_creator_for_company(engine: Engine, company_id: str) -> Creator | None:
    with get_session(engine) as session:
        return creator_for_company(session, company_id)


def _lookup_or_heal(
    engine: Engine, whop_user_id: str, company_id: str, experience_id: str
) -> Creator | None:
    with get_session(engine) as session:
        creator = _find(session, whop_user_id, company_id)
        if creator is not None:
            if creator.whop_experience_id is None:
                creator.whop_experience_id = experience_id
            return creator

        stale = session.scalars(
            select(Creator).where(
                Creator.whop_user_id == whop_user_id,
                Creator.whop_experience_id == experience_id,
            )
        ).first()
        if stale is None:
            return None

        logger.warning(
            "Company id mismatch for creator %s: stored %s, experience %s belongs to %s — correcting",
            stale.id, stale.whop_company_id, experience_id, company_id,
        )
        stale.whop_company_id = company_id
        return stale


def create_creator(
    engine: Engine, whop_user_id: str, company_id: str, experience_id: str | None = None
) -> Creator:
    """Insert a new tenant, or return the existing one if a concurrent
    request won the race on the (operator, company) unique key."""
    try:
        with get_session(engine) as session:
            creator = Creator(
                whop_user_id=whop_user_id,
                whop_company_id=company_id,
                whop_experience_id=experience_id,
                message_template=INITIAL_MESSAGE_TEMPLATE,
            )
            session.add(creator)
            session.flush()
    except IntegrityError:
        existing = find_creator(engine, whop_user_id, company_id)
        if existing is None:
            raise
        return existing
    logger.info("Created creator %s for company %s", creator.id, company_id)
    return creator


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------
async def company_for_experience(whop: WhopClient, experience_id: str) -> str:
    experience = await whop.get_experience(experience_id)
    if not experience.company_id:
        raise TenantNotFound(
            f"Experience {experience_id} has no owning company"
        )
    return experience.company_id


async def resolve(
    engine: Engine,
    whop: WhopClient,
    user_token: str | None,
    experience_id: str,
    *,
    create: bool = False,
) -> Creator:
    """Map (user token, experience) to the caller's :class:`Creator`.

    Raises
    ------
    AuthorizationError
        The token is missing or invalid.
    TenantNotFound
        No tenant exists and ``create`` is False.
    TenantAccessDenied
        ``create`` is True but the caller is not an admin of the experience.
    """
    user_id = whop.verify_user_token(user_token)
    company_id = await company_for_experience(whop, experience_id)

    creator = await run_db(_lookup_or_heal, engine, user_id, company_id, experience_id)
    if creator is not None:
        return creator
    if not create:
        raise TenantNotFound(
            f"No creator for user {user_id} in company {company_id}"
        )

    access = await whop.check_access(user_id, experience_id)
    if access.access_level != "admin":
        logger.warning(
            "User %s tried to set up experience %s with %s access",
            user_id, experience_id, access.access_level,
        )
        raise TenantAccessDenied(
            "You must have admin access to this experience to set up the app"
        )
    return await run_db(create_creator, engine, user_id, company_id, experience_id)


async def resolve_for_member(
    engine: Engine,
    whop: WhopClient,
    whop_user_id: str,
    experience_id: str | None,
    *,
    fallback: FallbackTenantStrategy = NO_FALLBACK,
) -> Creator | None:
    """Tenant whose community a (non-admin) member is visiting."""
    if experience_id:
        company_id = await company_for_experience(whop, experience_id)
        return await run_db(find_creator_for_company, engine, company_id)

    def _fallback() -> Creator | None:
        with get_session(engine) as session:
            return fallback.find(session, whop_user_id)

    return await run_db(_fallback)


# ---------------------------------------------------------------------------
# Tenant mutations
# ---------------------------------------------------------------------------
def _recompute_setup(creator: Creator) -> None:
    creator.is_setup_complete = bool(creator.voice_model_id and creator.message_template)


def save_settings(engine: Engine, creator_id: str, message_template: str) -> Creator:
    """Persist the template and recompute setup completion."""
    with get_session(engine) as session:
        creator = _require(session, creator_id)
        creator.message_template = message_template
        _recompute_setup(creator)
        logger.info(
            "Settings saved for creator %s (setup complete: %s)",
            creator_id, creator.is_setup_complete,
        )
        return creator


def set_voice(
    engine: Engine, creator_id: str, *, voice_sample: str, voice_model_id: str
) -> Creator:
    with get_session(engine) as session:
        creator = _require(session, creator_id)
        creator.voice_sample = voice_sample
        creator.voice_model_id = voice_model_id
        _recompute_setup(creator)
        return creator


def set_automation(engine: Engine, creator_id: str, active: bool) -> Creator:
    with get_session(engine) as session:
        creator = _require(session, creator_id)
        creator.is_automation_active = active
        logger.info(
            "Automation %s for creator %s", "activated" if active else "paused", creator_id
        )
        return creator


def reset_onboarding(engine: Engine, creator_id: str) -> Creator:
    """Send the operator back through onboarding.  Nothing else is cleared."""
    with get_session(engine) as session:
        creator = _require(session, creator_id)
        creator.is_setup_complete = False
        return creator


def _require(session: Session, creator_id: str) -> Creator:
    creator = session.get(Creator, creator_id)
    if creator is None:
        raise TenantNotFound(f"Creator {creator_id} not found")
    return creator
