"""
welcomecast.engine.events — Ledger Events
==========================================

The credit ledger never reaches outside its own arithmetic.  When a
balance change has a consequence elsewhere (pausing automation), it emits
one of these and the caller decides what to do.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

__all__ = ["LedgerEvent", "CreditsExhausted"]


@dataclass(frozen=True, slots=True)
class LedgerEvent:
    creator_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True, slots=True)
class CreditsExhausted(LedgerEvent):
    """A metered creator's balance reached zero."""

    balance: int = 0
