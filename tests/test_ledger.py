"""
tests/test_ledger.py — Credit Ledger & Credit Service Tests
=============================================================
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from conftest import make_creator

from welcomecast.engine import ledger
from welcomecast.engine.events import CreditsExhausted
from welcomecast.exceptions import TenantNotFound
from welcomecast.services import credit_service


def _account(credits: int, plan_type: str = "free"):
    return SimpleNamespace(id="c1", credits=credits, plan_type=plan_type)


# ===========================================================================
# Pure ledger rules
# ===========================================================================
class TestCheckAvailability:
    def test_positive_balance_passes(self):
        assert ledger.check_availability(_account(1)).ok

    @pytest.mark.parametrize("credits", [0, -3])
    def test_zero_or_negative_fails(self, credits):
        result = ledger.check_availability(_account(credits))
        assert not result.ok
        assert result.reason == ledger.NO_CREDITS_REASON

    def test_unlimited_always_passes(self):
        assert ledger.check_availability(_account(0, "unlimited")).ok


class TestDecrement:
    def test_decrements_by_one(self):
        account = _account(5)
        result = ledger.decrement(account)
        assert result.charged
        assert result.credits == 4
        assert account.credits == 4
        assert result.events == []

    def test_reaching_zero_emits_exhausted(self):
        account = _account(1)
        result = ledger.decrement(account)
        assert result.credits == 0
        assert len(result.events) == 1
        event = result.events[0]
        assert isinstance(event, CreditsExhausted)
        assert event.creator_id == "c1"
        assert event.balance == 0

    def test_never_goes_negative(self):
        account = _account(0)
        result = ledger.decrement(account)
        assert account.credits == 0
        assert result.credits == 0

    def test_unlimited_not_charged(self):
        account = _account(7, "unlimited")
        result = ledger.decrement(account)
        assert not result.charged
        assert account.credits == 7
        assert result.events == []


# ===========================================================================
# Persisted operations
# ===========================================================================
class TestCreditService:
    def test_charge_persists_balance(self, db_engine):
        creator = make_creator(db_engine, credits=3)
        result = credit_service.charge(db_engine, creator.id)
        assert result.credits == 2
        assert credit_service.check(db_engine, creator.id).ok

    def test_last_credit_reports_exhaustion(self, db_engine):
        creator = make_creator(db_engine, credits=1)
        result = credit_service.charge(db_engine, creator.id)
        assert result.credits == 0
        assert any(isinstance(e, CreditsExhausted) for e in result.events)
        assert not credit_service.check(db_engine, creator.id).ok

    def test_unknown_creator(self, db_engine):
        with pytest.raises(TenantNotFound):
            credit_service.charge(db_engine, "missing")
        with pytest.raises(TenantNotFound):
            credit_service.check(db_engine, "missing")

    def test_summarize_paid_plan(self, db_engine):
        creator = make_creator(db_engine, plan_type="tier200", credits=150)
        summary = credit_service.summarize(creator)
        assert summary["credits"] == 150
        assert summary["planName"] == "Pro"
        assert summary["planLimit"] == 200
        assert summary["isUnlimited"] is False
        assert summary["lastPurchaseDate"] is None

    def test_summarize_unlimited(self, db_engine):
        creator = make_creator(db_engine, plan_type="unlimited", credits=0)
        summary = credit_service.summarize(creator)
        assert summary["isUnlimited"] is True
        assert summary["planLimit"] is None
