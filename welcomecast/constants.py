"""
welcomecast.constants — Shared Constants
=========================================

Single source of truth for the plan catalogue, default message template and
the customer-facing copy.  Import from here instead of duplicating in
services and routes.
"""

from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Message template defaults
# ---------------------------------------------------------------------------
DEFAULT_MESSAGE_TEMPLATE = (
    "Hey {name}! Welcome! I wanted to reach out personally to let you know "
    "how excited I am to have you join us. This is a great community, and I "
    "think you're going to love it here. If you ever need anything or have "
    "questions, don't hesitate to ask. Glad you're here!"
)

INITIAL_MESSAGE_TEMPLATE = (
    "Hi {name}! Welcome to our community. We're excited to have you here!"
)


# ---------------------------------------------------------------------------
# Plan catalogue
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class PlanInfo:
    """Display and allotment details for one plan tier."""

    name: str
    price: str
    credits: int | None  # None → unlimited


PLAN_CATALOGUE: dict[str, PlanInfo] = {
    "free": PlanInfo(name="Free", price="$0/month", credits=20),
    "tier200": PlanInfo(name="Pro", price="$29/month", credits=200),
    "unlimited": PlanInfo(name="Unlimited", price="$99/month", credits=None),
}

FREE_TIER_CREDITS: int = PLAN_CATALOGUE["free"].credits or 0


# ---------------------------------------------------------------------------
# Customer-facing copy — never includes vendor error text
# ---------------------------------------------------------------------------
MSG_GENERATING = (
    "Your personal welcome message is being created... "
    "Check your DMs in a moment! \U0001f3b5"
)
MSG_STILL_PREPARING = (
    "Your personal welcome message is being created... "
    "Check back in a moment! \U0001f3b5"
)
MSG_SENT = "We just sent you a personal audio message — check your DMs \U0001f3b5"
MSG_DEFAULT = "Check your DMs for a personal message \U0001f3b5"
MSG_WELCOME = "Welcome to our community! \U0001f44b"
MSG_NOT_SET_UP = (
    "Welcome! Your admin is still setting up the welcome experience \U0001f3b5"
)
MSG_PAUSED = "Welcome! The admin has paused automatic welcome messages."

# Recommended client poll interval while a job is in flight.
STATUS_POLL_INTERVAL_SECONDS = 3


def dm_content(customer_name: str, audio_url: str) -> str:
    """Body of the direct message that links to a generated welcome."""
    return (
        f"Hi {customer_name}! \U0001f3b5 I recorded a personal audio message "
        f"for you.\n\nListen here: {audio_url}"
    )
