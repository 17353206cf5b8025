"""
tests/test_end_to_end.py — Webhook to Delivered Welcome
=========================================================
A member-join webhook flows through the real queue and orchestrator; only
the Whop and Fish Audio clients are faked.
"""

from __future__ import annotations

from conftest import COMPANY_ID, make_creator, run_async
from sqlalchemy import select
from sqlalchemy.orm import Session

from welcomecast.api.routes.webhooks import WebhookEvent, receive_webhook
from welcomecast.database.models import AudioMessage, Creator, Customer
from welcomecast.services.generation_queue import GenerationQueue
from welcomecast.services.welcome_service import WelcomeOrchestrator
from welcomecast.vendors.whop import SupportChannel, UserRef

NEW_MEMBER_ID = "user_new"


def _join_event(**data) -> WebhookEvent:
    payload = {
        "id": "mem_new",
        "company_id": COMPANY_ID,
        "user": {"id": NEW_MEMBER_ID, "name": "Sam", "username": "sam"},
        "plan": {"id": "plan_community", "name": "Gold"},
    }
    payload.update(data)
    return WebhookEvent.model_validate({"action": "membership.went_valid", "data": payload})


def _deliver_join(db_engine, whop, fish_audio, cfg, event: WebhookEvent) -> dict:
    orchestrator = WelcomeOrchestrator(db_engine, whop, fish_audio, cfg)

    async def scenario():
        queue = GenerationQueue(orchestrator.generate, workers=1)
        queue.start()
        try:
            response = await receive_webhook(event, db_engine, whop, cfg, queue)
            await queue.join()
        finally:
            await queue.stop()
        return response

    return run_async(scenario())


class TestMemberJoinToDelivery:
    def test_join_is_welcomed_and_charged(self, db_engine, whop, fish_audio, cfg):
        whop.list_support_channels.return_value = [
            SupportChannel(id="ch_1", customer_user=UserRef(id=NEW_MEMBER_ID))
        ]
        creator = make_creator(db_engine, credits=20)

        response = _deliver_join(db_engine, whop, fish_audio, cfg, _join_event())

        assert response["message"] == "Welcome queued"
        with Session(db_engine) as s:
            customer = s.scalars(
                select(Customer).where(Customer.whop_user_id == NEW_MEMBER_ID)
            ).one()
            job = s.scalars(select(AudioMessage)).one()
            credits = s.get(Creator, creator.id).credits

        assert customer.first_message_sent is True
        assert customer.plan_name == "Gold"
        assert job.status == "sent"
        assert job.personalized_script == "Hey Sam, welcome to Gold!"
        assert job.whop_chat_id == "ch_1"
        assert credits == 19
        channel_id, content = whop.send_message.await_args.args
        assert channel_id == "ch_1"
        assert f"/api/audio/{job.id}" in content

    def test_join_without_channel_keeps_welcome_uncharged(self, db_engine, whop, fish_audio, cfg):
        from welcomecast.exceptions import ChannelConflictError

        whop.create_support_channel.side_effect = ChannelConflictError("already attached")
        creator = make_creator(db_engine, credits=20)

        _deliver_join(db_engine, whop, fish_audio, cfg, _join_event())

        with Session(db_engine) as s:
            job = s.scalars(select(AudioMessage)).one()
            credits = s.get(Creator, creator.id).credits
        assert job.status == "completed"
        assert job.audio_data is not None
        assert credits == 20
        whop.send_message.assert_not_awaited()
