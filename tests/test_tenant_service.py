"""
tests/test_tenant_service.py — Tenant Resolution & Member Record Tests
========================================================================
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from conftest import (
    COMPANY_ID,
    EXPERIENCE_ID,
    MEMBER_ID,
    OPERATOR_ID,
    make_creator,
    make_customer,
    make_job,
    run_async,
    token_for,
)
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from welcomecast.constants import INITIAL_MESSAGE_TEMPLATE
from welcomecast.database.models import AudioMessage, Creator
from welcomecast.exceptions import AuthorizationError, TenantAccessDenied, TenantNotFound
from welcomecast.services import member_service, tenant_service
from welcomecast.services.tenant_service import FirstSetupCompleteFallback
from welcomecast.vendors.whop import AccessCheck, CompanyRef, Experience


def _count_creators(engine) -> int:
    with Session(engine) as s:
        return s.scalar(select(func.count()).select_from(Creator))


# ===========================================================================
# resolve()
# ===========================================================================
class TestResolve:
    def test_finds_existing_tenant(self, db_engine, whop):
        creator = make_creator(db_engine)
        found = run_async(
            tenant_service.resolve(db_engine, whop, token_for(OPERATOR_ID), EXPERIENCE_ID)
        )
        assert found.id == creator.id

    def test_missing_token(self, db_engine, whop):
        with pytest.raises(AuthorizationError):
            run_async(tenant_service.resolve(db_engine, whop, None, EXPERIENCE_ID))

    def test_unknown_tenant_without_create(self, db_engine, whop):
        with pytest.raises(TenantNotFound):
            run_async(
                tenant_service.resolve(db_engine, whop, token_for(OPERATOR_ID), EXPERIENCE_ID)
            )
        assert _count_creators(db_engine) == 0

    def test_create_requires_admin(self, db_engine, whop):
        whop.check_access.return_value = AccessCheck(has_access=True, access_level="customer")
        with pytest.raises(TenantAccessDenied):
            run_async(
                tenant_service.resolve(
                    db_engine, whop, token_for(OPERATOR_ID), EXPERIENCE_ID, create=True
                )
            )
        assert _count_creators(db_engine) == 0

    def test_create_inserts_with_initial_template(self, db_engine, whop):
        creator = run_async(
            tenant_service.resolve(
                db_engine, whop, token_for(OPERATOR_ID), EXPERIENCE_ID, create=True
            )
        )
        assert creator.whop_user_id == OPERATOR_ID
        assert creator.whop_company_id == COMPANY_ID
        assert creator.whop_experience_id == EXPERIENCE_ID
        assert creator.message_template == INITIAL_MESSAGE_TEMPLATE
        assert creator.is_setup_complete is False
        assert creator.credits == 20
        assert creator.plan_type == "free"

    def test_same_operator_two_companies_are_separate(self, db_engine, whop):
        first = make_creator(db_engine)
        whop.get_experience.return_value = Experience(
            id="exp_two", company=CompanyRef(id="biz_two")
        )
        second = run_async(
            tenant_service.resolve(db_engine, whop, token_for(OPERATOR_ID), "exp_two", create=True)
        )
        assert second.id != first.id
        assert second.whop_company_id == "biz_two"
        assert _count_creators(db_engine) == 2

    def test_heals_company_mismatch(self, db_engine, whop):
        stale = make_creator(db_engine, whop_company_id="biz_old")

        healed = run_async(
            tenant_service.resolve(db_engine, whop, token_for(OPERATOR_ID), EXPERIENCE_ID)
        )

        assert healed.id == stale.id
        assert healed.whop_company_id == COMPANY_ID
        assert tenant_service.get_creator(db_engine, stale.id).whop_company_id == COMPANY_ID

    def test_experience_without_company(self, db_engine, whop):
        whop.get_experience.return_value = Experience(id=EXPERIENCE_ID)
        with pytest.raises(TenantNotFound):
            run_async(
                tenant_service.resolve(db_engine, whop, token_for(OPERATOR_ID), EXPERIENCE_ID)
            )

    def test_create_creator_race_returns_existing(self, db_engine):
        first = tenant_service.create_creator(db_engine, OPERATOR_ID, COMPANY_ID)
        second = tenant_service.create_creator(db_engine, OPERATOR_ID, COMPANY_ID)
        assert first.id == second.id


# ===========================================================================
# Member-side resolution
# ===========================================================================
class TestResolveForMember:
    def test_by_experience_prefers_setup_complete(self, db_engine, whop):
        make_creator(db_engine, whop_user_id="op_a", is_setup_complete=False)
        ready = make_creator(db_engine, whop_user_id="op_b", is_setup_complete=True)

        found = run_async(
            tenant_service.resolve_for_member(db_engine, whop, MEMBER_ID, EXPERIENCE_ID)
        )
        assert found.id == ready.id

    def test_no_experience_no_fallback(self, db_engine, whop):
        make_creator(db_engine)
        found = run_async(tenant_service.resolve_for_member(db_engine, whop, MEMBER_ID, None))
        assert found is None

    def test_legacy_fallback_prefers_known_customer(self, db_engine, whop):
        make_creator(
            db_engine, whop_user_id="op_a", created_at=datetime(2024, 1, 1, tzinfo=UTC)
        )
        mine = make_creator(
            db_engine, whop_user_id="op_b", created_at=datetime(2025, 1, 1, tzinfo=UTC)
        )
        make_customer(db_engine, mine)

        found = run_async(
            tenant_service.resolve_for_member(
                db_engine, whop, MEMBER_ID, None, fallback=FirstSetupCompleteFallback()
            )
        )
        assert found.id == mine.id

    def test_legacy_fallback_oldest_setup_complete(self, db_engine, whop):
        make_creator(
            db_engine, whop_user_id="op_a", is_setup_complete=False,
            created_at=datetime(2023, 1, 1, tzinfo=UTC),
        )
        oldest_ready = make_creator(
            db_engine, whop_user_id="op_b", created_at=datetime(2024, 1, 1, tzinfo=UTC)
        )
        make_creator(
            db_engine, whop_user_id="op_c", created_at=datetime(2025, 1, 1, tzinfo=UTC)
        )

        found = run_async(
            tenant_service.resolve_for_member(
                db_engine, whop, MEMBER_ID, None, fallback=FirstSetupCompleteFallback()
            )
        )
        assert found.id == oldest_ready.id


# ===========================================================================
# Tenant mutations
# ===========================================================================
class TestMutations:
    def test_save_settings_recomputes_setup(self, db_engine):
        creator = make_creator(db_engine, voice_model_id=None, is_setup_complete=False)
        updated = tenant_service.save_settings(db_engine, creator.id, "Hi {name}")
        assert updated.message_template == "Hi {name}"
        assert updated.is_setup_complete is False

        voiced = tenant_service.set_voice(
            db_engine, creator.id, voice_sample="data:audio/wav;base64,AA==", voice_model_id="m1"
        )
        assert voiced.is_setup_complete is True

    def test_toggle_and_reset(self, db_engine):
        creator = make_creator(db_engine)
        assert tenant_service.set_automation(db_engine, creator.id, False).is_automation_active is False
        reset = tenant_service.reset_onboarding(db_engine, creator.id)
        assert reset.is_setup_complete is False
        assert reset.voice_model_id == "model_trained"

    def test_unknown_creator(self, db_engine):
        with pytest.raises(TenantNotFound):
            tenant_service.set_automation(db_engine, "missing", True)


# ===========================================================================
# Customer records
# ===========================================================================
class TestMemberService:
    def test_get_or_create_is_idempotent(self, db_engine):
        creator = make_creator(db_engine)
        first, created = member_service.get_or_create_customer(
            db_engine, creator, whop_user_id=MEMBER_ID, whop_member_id=None, name="Alex"
        )
        second, created_again = member_service.get_or_create_customer(
            db_engine, creator, whop_user_id=MEMBER_ID, whop_member_id="mem_x", name="Alex"
        )
        assert created and not created_again
        assert first.id == second.id
        assert first.whop_member_id == f"mem_{MEMBER_ID}"
        assert first.whop_company_id == COMPANY_ID

    def test_customers_are_scoped_per_creator(self, db_engine):
        a = make_creator(db_engine)
        b = make_creator(db_engine, whop_company_id="biz_b")
        customer = make_customer(db_engine, a)
        assert member_service.get_customer(db_engine, b.id, customer.id) is None
        assert member_service.find_customer(db_engine, b.id, MEMBER_ID) is None

    def test_reset_fails_stuck_jobs(self, db_engine):
        creator = make_creator(db_engine)
        customer = make_customer(db_engine, creator, first_message_sent=True)
        stuck = make_job(db_engine, customer, status="generating", audio_data=None)
        done = make_job(db_engine, customer, status="sent")

        assert member_service.reset_test_status(db_engine, creator.id, MEMBER_ID) is True

        with Session(db_engine) as s:
            assert s.get(AudioMessage, stuck.id).status == "failed"
            assert s.get(AudioMessage, stuck.id).error_message == member_service.RESET_REASON
            assert s.get(AudioMessage, done.id).status == "sent"
        assert member_service.find_customer(db_engine, creator.id, MEMBER_ID).first_message_sent is False

    def test_reset_unknown_member(self, db_engine):
        creator = make_creator(db_engine)
        assert member_service.reset_test_status(db_engine, creator.id, "nobody") is False
