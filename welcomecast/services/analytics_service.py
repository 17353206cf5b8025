"""
welcomecast.services.analytics_service — Dashboard Statistics
==============================================================
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import Engine, select

from welcomecast.database.engine import get_session, run_db
from welcomecast.database.models import AudioMessage, Creator, Customer, MessageStatus
from welcomecast.exceptions import WhopAPIError
from welcomecast.vendors.whop import WhopClient

logger = logging.getLogger(__name__)

RECENT_LIMIT = 10


def _normalize_dt(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def message_dict(message: AudioMessage, *, include_audio: bool = False) -> dict[str, Any]:
    data = {
        "id": message.id,
        "customerId": message.customer_id,
        "status": message.status,
        "personalizedScript": message.personalized_script,
        "playCount": message.play_count,
        "errorMessage": message.error_message,
        "whopMessageId": message.whop_message_id,
        "createdAt": message.created_at.isoformat() if message.created_at else None,
        "completedAt": message.completed_at.isoformat() if message.completed_at else None,
        "sentAt": message.sent_at.isoformat() if message.sent_at else None,
        "playedAt": message.played_at.isoformat() if message.played_at else None,
    }
    if include_audio:
        data["audioUrl"] = message.audio_data
    return data


def compute(
    customers: list[Customer],
    messages: list[AudioMessage],
    *,
    total_customers: int | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Aggregate a creator's rows into the dashboard payload.

    *messages* must be ordered oldest first.  *total_customers* overrides
    the local customer count (Whop's member count, when reachable).
    """
    now = now or datetime.now(UTC)
    week_ago = now - timedelta(days=7)

    sent = sum(1 for m in messages if m.status == MessageStatus.SENT)
    played = sum(1 for m in messages if m.played_at is not None)
    pending = sum(
        1 for m in messages if m.status in (MessageStatus.PENDING, MessageStatus.GENERATING)
    )
    failed = sum(1 for m in messages if m.status == MessageStatus.FAILED)
    total_plays = sum(m.play_count or 0 for m in messages)
    total = len(messages)

    return {
        "totalCustomers": total_customers if total_customers is not None else len(customers),
        "newMembersThisWeek": sum(
            1 for c in customers if c.joined_at and _normalize_dt(c.joined_at) >= week_ago
        ),
        "totalAudioMessages": total,
        "messagesSent": sent,
        "messagesPlayed": played,
        "messagesPending": pending,
        "messagesFailed": failed,
        "totalPlays": total_plays,
        "averagePlaysPerMessage": total_plays / total if total else 0,
        "deliveryRate": f"{round(sent / total * 100) if total else 0}%",
        "recentMessages": [message_dict(m) for m in reversed(messages[-RECENT_LIMIT:])],
    }


def _load(
    engine: Engine, creator_id: str, operator_id: str
) -> tuple[list[Customer], list[AudioMessage]]:
    """The creator's rows minus the operator's own previews and self-tests."""
    with get_session(engine) as session:
        customers = list(
            session.scalars(
                select(Customer).where(
                    Customer.creator_id == creator_id,
                    Customer.whop_user_id != operator_id,
                )
            ).all()
        )
        messages = list(
            session.scalars(
                select(AudioMessage)
                .join(Customer, Customer.id == AudioMessage.customer_id)
                .where(
                    AudioMessage.creator_id == creator_id,
                    Customer.whop_user_id != operator_id,
                )
                .order_by(AudioMessage.created_at.asc())
            ).all()
        )
    return customers, messages


async def analytics(engine: Engine, whop: WhopClient, creator: Creator) -> dict[str, Any]:
    """Dashboard statistics, with Whop's member count when available."""
    total_customers: int | None = None
    try:
        _, total_customers = await whop.list_members(creator.whop_company_id)
    except WhopAPIError as exc:
        if exc.status_code == 403:
            logger.warning(
                "Company %s has not granted member:basic:read — using local customer count",
                creator.whop_company_id,
            )
        else:
            logger.warning("Member count unavailable for %s: %s", creator.whop_company_id, exc)

    customers, messages = await run_db(_load, engine, creator.id, creator.whop_user_id)
    return compute(customers, messages, total_customers=total_customers)
