"""
welcomecast.api.routes.customer — Member-facing endpoints
===========================================================

The welcome page a member sees inside the community.  Visiting it is a
second trigger besides the webhook: a member with no welcome yet gets one
queued on the spot.

Nothing here ever returns vendor error text; members only see the fixed
copy in :mod:`welcomecast.constants`.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import Engine

from welcomecast.api.deps import get_config, get_engine, get_queue, get_user_id, get_whop
from welcomecast.config import WelcomecastConfig
from welcomecast.constants import (
    MSG_DEFAULT,
    MSG_GENERATING,
    MSG_NOT_SET_UP,
    MSG_PAUSED,
    MSG_SENT,
    MSG_STILL_PREPARING,
    MSG_WELCOME,
    STATUS_POLL_INTERVAL_SECONDS,
)
from welcomecast.database.engine import run_db
from welcomecast.database.models import Creator, MessageStatus
from welcomecast.exceptions import (
    GenerationAlreadyQueued,
    GenerationQueueFull,
    TenantNotFound,
    WhopAPIError,
)
from welcomecast.services import member_service, tenant_service
from welcomecast.services.generation_queue import GenerationQueue
from welcomecast.services.tenant_service import FirstSetupCompleteFallback
from welcomecast.services.welcome_service import public_audio_url
from welcomecast.vendors.whop import WhopClient

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/customer", tags=["customer"])

# Used only when the page is opened without an experience id.
_LEGACY_FALLBACK = FirstSetupCompleteFallback()

_STATUS_COPY = {
    MessageStatus.PENDING: MSG_STILL_PREPARING,
    MessageStatus.GENERATING: MSG_STILL_PREPARING,
    MessageStatus.SENT: MSG_SENT,
    MessageStatus.FAILED: MSG_WELCOME,
}


def _status_payload(
    user_id: str,
    user_name: str,
    status: str | None,
    message: str,
    *,
    has_welcome: bool = False,
    audio_url: str | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "hasWelcomeMessage": has_welcome,
        "messageStatus": status,
        "audioUrl": audio_url,
        "message": message,
        "userName": user_name,
        "userId": user_id,
    }
    if status in (MessageStatus.PENDING, MessageStatus.GENERATING):
        payload["pollIntervalSeconds"] = STATUS_POLL_INTERVAL_SECONDS
    return payload


async def _community_creator(
    engine: Engine, whop: WhopClient, user_id: str, experience_id: str | None
) -> Creator | None:
    """Tenant for the visited community, or ``None`` when there isn't one.

    Whop failures propagate as :class:`WhopAPIError`; each route maps them
    to its own fixed copy.
    """
    try:
        return await tenant_service.resolve_for_member(
            engine, whop, user_id, experience_id, fallback=_LEGACY_FALLBACK
        )
    except TenantNotFound as exc:
        logger.warning("No tenant for member %s (experience %s): %s", user_id, experience_id, exc)
        return None


@router.get("/welcome-status")
async def welcome_status(
    user_id: Annotated[str, Depends(get_user_id)],
    engine: Annotated[Engine, Depends(get_engine)],
    whop: Annotated[WhopClient, Depends(get_whop)],
    cfg: Annotated[WelcomecastConfig, Depends(get_config)],
    queue: Annotated[GenerationQueue, Depends(get_queue)],
    experience_id: Annotated[str | None, Query(alias="experienceId")] = None,
):
    """Welcome status for the viewing member; queues a welcome if none exists."""
    name, username, email = "there", None, None
    try:
        profile = await whop.get_user(user_id)
        name = profile.display_name or name
        username, email = profile.username, profile.email
    except WhopAPIError as exc:
        logger.warning("Could not fetch profile for %s: %s", user_id, exc)

    try:
        creator = await _community_creator(engine, whop, user_id, experience_id)
    except WhopAPIError as exc:
        logger.error("Could not resolve community for member %s: %s", user_id, exc)
        return _status_payload(user_id, name, None, MSG_STILL_PREPARING)
    if creator is None:
        return _status_payload(user_id, name, None, MSG_NOT_SET_UP)

    customer = await run_db(member_service.find_customer, engine, creator.id, user_id)
    if customer is None:
        if not creator.is_setup_complete:
            return _status_payload(user_id, name, None, MSG_NOT_SET_UP)
        customer, _ = await run_db(
            member_service.get_or_create_customer,
            engine,
            creator,
            whop_user_id=user_id,
            whop_member_id=None,
            name=name,
            email=email,
            username=username,
        )
        logger.info("New member visit: %s (%s) under creator %s", name, user_id, creator.id)

    latest = await run_db(member_service.latest_message, engine, customer.id)
    if latest is None:
        if queue.is_in_flight(creator.id, customer.id):
            return _status_payload(user_id, name, MessageStatus.GENERATING, MSG_STILL_PREPARING)
        if not creator.is_setup_complete:
            return _status_payload(user_id, name, None, MSG_NOT_SET_UP)
        if not creator.is_automation_active:
            return _status_payload(user_id, name, None, MSG_PAUSED)
        try:
            queue.submit(creator.id, customer.id)
        except GenerationAlreadyQueued:
            pass
        except GenerationQueueFull:
            logger.warning("Generation queue full; member %s will retry on next visit", user_id)
            return _status_payload(user_id, name, None, MSG_STILL_PREPARING)
        return _status_payload(user_id, name, MessageStatus.GENERATING, MSG_GENERATING)

    status = MessageStatus(latest.status)
    return _status_payload(
        user_id,
        name,
        status,
        _STATUS_COPY.get(status, MSG_DEFAULT),
        has_welcome=customer.first_message_sent,
        audio_url=public_audio_url(cfg, latest.id) if latest.audio_data else None,
    )


@router.post("/reset-test-status")
async def reset_test_status(
    user_id: Annotated[str, Depends(get_user_id)],
    engine: Annotated[Engine, Depends(get_engine)],
    whop: Annotated[WhopClient, Depends(get_whop)],
    experience_id: Annotated[str | None, Query(alias="experienceId")] = None,
):
    """Let a member replay their welcome flow from scratch."""
    try:
        creator = await _community_creator(engine, whop, user_id, experience_id)
    except WhopAPIError as exc:
        logger.error("Could not resolve community for member %s: %s", user_id, exc)
        raise HTTPException(503, "Could not reach Whop. Please try again.") from exc
    if creator is None:
        raise HTTPException(400, "No admin has completed setup yet.")

    await run_db(member_service.reset_test_status, engine, creator.id, user_id)
    return {"success": True, "message": "Test status reset successfully"}
