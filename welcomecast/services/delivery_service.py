"""
welcomecast.services.delivery_service — Support-Channel Delivery
=================================================================

Welcome messages are posted into the Whop **support channel** between the
community and the member, so they read as coming from the creator's team.

Resolution:
    1. List the company's support channels and match on the member's user id.
    2. None found → create one.
    3. Whop says the member is "already attached" to a channel we didn't
       see → list once more.
    4. Still nothing → :class:`Skipped`.  The job stays ``completed`` and the
       creator can resend from the dashboard.

Only the final post can fail hard (:class:`DeliveryError`).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from welcomecast.database.models import Creator, Customer
from welcomecast.exceptions import ChannelConflictError, DeliveryError, WhopAPIError
from welcomecast.vendors.whop import WhopClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Delivered:
    message_id: str
    channel_id: str | None = None


@dataclass(frozen=True, slots=True)
class Skipped:
    reason: str


DeliveryOutcome = Delivered | Skipped


async def find_channel(whop: WhopClient, company_id: str, whop_user_id: str) -> str | None:
    """Return the id of *whop_user_id*'s support channel, if one exists."""
    try:
        channels = await whop.list_support_channels(company_id)
    except WhopAPIError as exc:
        logger.warning("Could not list support channels for %s: %s", company_id, exc)
        return None
    for channel in channels:
        if channel.customer_user and channel.customer_user.id == whop_user_id:
            return channel.id
    return None


async def _resolve_channel(whop: WhopClient, company_id: str, whop_user_id: str) -> str | None:
    channel_id = await find_channel(whop, company_id, whop_user_id)
    if channel_id:
        return channel_id

    try:
        channel = await whop.create_support_channel(company_id, whop_user_id)
    except ChannelConflictError:
        logger.info(
            "Support channel for %s already exists; re-listing company %s",
            whop_user_id, company_id,
        )
        return await find_channel(whop, company_id, whop_user_id)
    except WhopAPIError as exc:
        raise DeliveryError(f"Failed to create support channel: {exc}") from exc

    logger.info("Created support channel %s for %s", channel.id, whop_user_id)
    return channel.id


async def send_via_channel(
    whop: WhopClient, creator: Creator, customer: Customer, content: str
) -> DeliveryOutcome:
    """Post *content* to the customer's support channel.

    Returns :class:`Delivered` or :class:`Skipped`; raises
    :class:`DeliveryError` only when Whop rejects the message itself.
    """
    if not creator.whop_company_id or not customer.whop_user_id:
        return Skipped("Missing company or member id for delivery")

    channel_id = await _resolve_channel(whop, creator.whop_company_id, customer.whop_user_id)
    if not channel_id:
        logger.warning(
            "No support channel reachable for customer %s — delivery skipped", customer.id
        )
        return Skipped(
            "Could not find or create a support channel for this member. "
            "Audio is ready; resend it from the dashboard."
        )

    try:
        message = await whop.send_message(channel_id, content)
    except WhopAPIError as exc:
        raise DeliveryError(f"Failed to send message: {exc}") from exc

    logger.info("Welcome message %s posted to channel %s", message.id, channel_id)
    return Delivered(message_id=message.id, channel_id=channel_id)


async def send_direct(
    whop: WhopClient, creator: Creator, customer: Customer, content: str
) -> Delivered:
    """Send *content* as a direct message (manual resend from the dashboard)."""
    try:
        message = await whop.send_direct_message(
            creator.whop_company_id, customer.whop_user_id, content
        )
    except WhopAPIError as exc:
        raise DeliveryError(f"Failed to send DM: {exc}") from exc
    return Delivered(message_id=message.id)
