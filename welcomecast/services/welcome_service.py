"""
welcomecast.services.welcome_service — Welcome Generation Orchestrator
=======================================================================

Turns (creator, customer) into a delivered audio welcome.  Every attempt is
one ``audio_messages`` row that only ever moves forward::

    pending → generating → completed → sent
        └──────────┴───────────┴──→ failed

Pipeline (:meth:`WelcomeOrchestrator.generate`):
    1. **Gate** — voice model and template present, credits available.  A
       failed gate inserts the job directly as ``failed`` and calls no
       vendor; running out of credits also pauses automation.
    2. **Render** the creator's template for this customer and insert the
       job as ``generating``.
    3. **Synthesize** — the Fish Audio model must be ``trained``.  Any vendor
       error fails the job with the vendor's message.
    4. **Store** the audio on the row → ``completed``.
    5. **Deliver** via the customer's support channel.  Delivered → ``sent``
       and one credit is charged, once per job however many times it is
       delivered.  Skipped → stays ``completed`` with the
       reason recorded, no charge.  A hard delivery error also leaves the
       job ``completed``, records the error and re-raises.

Preview mode (admin self-test) stops after step 4 and never charges.

Credits are only ever charged in step 5, after Whop confirms the message.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import Engine, update

from welcomecast.config import WelcomecastConfig
from welcomecast.constants import dm_content
from welcomecast.database.engine import get_session, run_db
from welcomecast.database.models import (
    AudioMessage,
    Creator,
    Customer,
    MessageStatus,
    utcnow,
)
from welcomecast.engine import data_url, ledger, template
from welcomecast.engine.events import CreditsExhausted, LedgerEvent
from welcomecast.exceptions import (
    DeliveryError,
    FishAudioError,
    QuotaExceeded,
    TenantNotFound,
    VoiceModelNotReady,
)
from welcomecast.services import credit_service, delivery_service, member_service, tenant_service
from welcomecast.services.delivery_service import Delivered, DeliveryOutcome, Skipped
from welcomecast.vendors.fish_audio import FishAudioClient
from welcomecast.vendors.whop import WhopClient

logger = logging.getLogger(__name__)

NO_VOICE_REASON = "Voice model not configured. Please upload a voice sample in settings."
NO_TEMPLATE_REASON = "Message template is empty. Please write a welcome message in settings."
UNEXPECTED_FAILURE_REASON = "Audio generation failed unexpectedly. Please try again."


@dataclass(frozen=True, slots=True)
class GenerationOutcome:
    message_id: str
    status: MessageStatus
    script: str
    audio_url: str | None = None
    error: str | None = None
    delivery: DeliveryOutcome | None = None


def template_fields(customer: Customer) -> template.TemplateFields:
    return {
        "name": customer.name,
        "email": customer.email,
        "username": customer.username,
        "plan_name": customer.plan_name,
    }


def public_audio_url(cfg: WelcomecastConfig, message_id: str) -> str:
    return f"{cfg.public_base_url}/api/audio/{message_id}"


# ---------------------------------------------------------------------------
# Job persistence (synchronous, via run_db)
# ---------------------------------------------------------------------------
def _load_pair(engine: Engine, creator_id: str, customer_id: str) -> tuple[Creator, Customer]:
    with get_session(engine) as session:
        creator = session.get(Creator, creator_id)
        if creator is None:
            raise TenantNotFound(f"Creator {creator_id} not found")
        customer = session.get(Customer, customer_id)
        if customer is None or customer.creator_id != creator_id:
            raise TenantNotFound(f"Customer {customer_id} not found for creator {creator_id}")
        return creator, customer


def _insert_job(
    engine: Engine,
    creator_id: str,
    customer_id: str,
    script: str,
    status: MessageStatus,
    error: str | None = None,
) -> AudioMessage:
    with get_session(engine) as session:
        job = AudioMessage(
            creator_id=creator_id,
            customer_id=customer_id,
            personalized_script=script,
            status=MessageStatus.PENDING.value,
        )
        job.advance_status(status)
        job.error_message = error
        session.add(job)
        session.flush()
        return job


def _fail_job(engine: Engine, job_id: str, reason: str) -> None:
    with get_session(engine) as session:
        job = session.get(AudioMessage, job_id)
        job.advance_status(MessageStatus.FAILED)
        job.error_message = reason


def _complete_job(engine: Engine, job_id: str, audio_data: str) -> None:
    with get_session(engine) as session:
        job = session.get(AudioMessage, job_id)
        job.advance_status(MessageStatus.COMPLETED)
        job.audio_data = audio_data
        job.completed_at = utcnow()


def _note_delivery_problem(engine: Engine, job_id: str, reason: str) -> None:
    with get_session(engine) as session:
        job = session.get(AudioMessage, job_id)
        job.error_message = reason


def _record_delivery(
    engine: Engine, job_id: str, delivered: Delivered
) -> ledger.LedgerResult | None:
    """Mark the job ``sent`` and charge for it in one transaction.

    Only the call that moves the row from ``completed`` to ``sent`` pays;
    a concurrent or repeated delivery of the same job just refreshes the
    message reference and returns ``None``.
    """
    now = utcnow()
    with get_session(engine) as session:
        claimed = session.execute(
            update(AudioMessage)
            .where(
                AudioMessage.id == job_id,
                AudioMessage.status == MessageStatus.COMPLETED.value,
            )
            .values(status=MessageStatus.SENT.value)
            .execution_options(synchronize_session=False)
        ).rowcount == 1

        job = session.get(AudioMessage, job_id)
        job.whop_message_id = delivered.message_id
        job.whop_chat_id = delivered.channel_id or job.whop_chat_id
        job.sent_at = now
        job.error_message = None
        customer = session.get(Customer, job.customer_id)
        customer.first_message_sent = True
        if not claimed:
            return None
        return credit_service.debit(session, job.creator_id)


def _get_job(engine: Engine, creator_id: str, job_id: str) -> AudioMessage | None:
    with get_session(engine) as session:
        job = session.get(AudioMessage, job_id)
        if job is None or job.creator_id != creator_id:
            return None
        return job


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------
class WelcomeOrchestrator:
    """Runs welcome generations against one set of collaborators."""

    def __init__(
        self,
        engine: Engine,
        whop: WhopClient,
        fish_audio: FishAudioClient,
        cfg: WelcomecastConfig,
    ) -> None:
        self.engine = engine
        self.whop = whop
        self.fish_audio = fish_audio
        self.cfg = cfg

    # -- ledger event subscriber --------------------------------------------
    async def _dispatch(self, events: Iterable[LedgerEvent]) -> None:
        for event in events:
            if isinstance(event, CreditsExhausted):
                await self._pause_for_credits(event.creator_id)

    async def _pause_for_credits(self, creator_id: str) -> None:
        logger.warning("Creator %s is out of credits — pausing automation", creator_id)
        await run_db(tenant_service.set_automation, self.engine, creator_id, False)

    # -- pipeline -----------------------------------------------------------
    def _gate(self, creator: Creator, *, preview: bool) -> tuple[str | None, bool]:
        """Return ``(failure_reason, is_credit_failure)``."""
        if not creator.voice_model_id:
            return NO_VOICE_REASON, False
        if not creator.message_template:
            return NO_TEMPLATE_REASON, False
        if not preview:
            availability = ledger.check_availability(creator)
            if not availability.ok:
                return availability.reason, True
        return None, False

    async def generate(
        self, creator_id: str, customer_id: str, *, preview: bool = False
    ) -> GenerationOutcome:
        """Run one welcome generation end to end.

        Raises
        ------
        TenantNotFound
            The creator or customer doesn't exist.
        DeliveryError
            Whop rejected the message post.  The job stays ``completed``.
        """
        creator, customer = await run_db(_load_pair, self.engine, creator_id, customer_id)
        script = template.render(creator.message_template or "", template_fields(customer))

        reason, credit_failure = self._gate(creator, preview=preview)
        if reason:
            job = await run_db(
                _insert_job, self.engine, creator_id, customer_id, script,
                MessageStatus.FAILED, reason,
            )
            logger.warning("Generation for customer %s refused: %s", customer_id, reason)
            if credit_failure:
                await self._pause_for_credits(creator_id)
            return GenerationOutcome(job.id, MessageStatus.FAILED, script, error=reason)

        job = await run_db(
            _insert_job, self.engine, creator_id, customer_id, script, MessageStatus.GENERATING
        )
        logger.info("Generating welcome %s for %s", job.id, customer.name)

        try:
            audio = await self._synthesize(creator, script)
            mime = "audio/" + self.cfg.speech_format
            await run_db(_complete_job, self.engine, job.id, data_url.encode(audio, mime))
        except (VoiceModelNotReady, FishAudioError) as exc:
            await run_db(_fail_job, self.engine, job.id, str(exc))
            logger.error("Welcome %s failed: %s", job.id, exc)
            return GenerationOutcome(job.id, MessageStatus.FAILED, script, error=str(exc))
        except Exception:
            # Never leave the row in ``generating``
            await run_db(_fail_job, self.engine, job.id, UNEXPECTED_FAILURE_REASON)
            logger.exception("Welcome %s failed unexpectedly", job.id)
            raise

        url = public_audio_url(self.cfg, job.id)
        logger.info("Welcome %s completed (%d bytes) → %s", job.id, len(audio), url)

        if preview:
            return GenerationOutcome(job.id, MessageStatus.COMPLETED, script, audio_url=url)

        return await self._deliver(creator, customer, job.id, script, url)

    async def _synthesize(self, creator: Creator, script: str) -> bytes:
        model = await self.fish_audio.get_model(creator.voice_model_id)
        if not model.is_ready:
            raise VoiceModelNotReady(
                f"Voice model is not ready yet (state: {model.state}). "
                "Please wait for training to complete and try again."
            )
        return await self.fish_audio.generate_speech(
            script, creator.voice_model_id, self.cfg.speech_format
        )

    async def _deliver(
        self, creator: Creator, customer: Customer, job_id: str, script: str, url: str
    ) -> GenerationOutcome:
        content = dm_content(customer.name, url)
        try:
            outcome = await delivery_service.send_via_channel(self.whop, creator, customer, content)
        except DeliveryError as exc:
            await run_db(_note_delivery_problem, self.engine, job_id, str(exc))
            logger.error("Delivery of welcome %s failed: %s", job_id, exc)
            raise

        if isinstance(outcome, Skipped):
            await run_db(_note_delivery_problem, self.engine, job_id, outcome.reason)
            return GenerationOutcome(
                job_id, MessageStatus.COMPLETED, script,
                audio_url=url, error=outcome.reason, delivery=outcome,
            )

        result = await run_db(_record_delivery, self.engine, job_id, outcome)
        if result is not None:
            await self._dispatch(result.events)
        logger.info("Welcome %s sent to %s", job_id, customer.name)
        return GenerationOutcome(
            job_id, MessageStatus.SENT, script, audio_url=url, delivery=outcome
        )

    async def resend(self, creator_id: str, job_id: str) -> GenerationOutcome:
        """Manually (re)send a generated welcome as a direct message.

        A ``completed`` job is charged like any first delivery; re-sending
        an already ``sent`` job is free.

        Raises
        ------
        TenantNotFound
            Unknown job for this creator.
        ValueError
            The job has no audio.
        QuotaExceeded
            First delivery of a ``completed`` job with no credits left.
        """
        job = await run_db(_get_job, self.engine, creator_id, job_id)
        if job is None:
            raise TenantNotFound(f"Audio message {job_id} not found")
        if not job.audio_data or job.status not in (MessageStatus.COMPLETED, MessageStatus.SENT):
            raise ValueError("Audio is not available for this message")

        creator, customer = await run_db(_load_pair, self.engine, creator_id, job.customer_id)
        first_delivery = job.status == MessageStatus.COMPLETED
        if first_delivery:
            availability = ledger.check_availability(creator)
            if not availability.ok:
                raise QuotaExceeded(availability.reason)

        url = public_audio_url(self.cfg, job.id)
        delivered = await delivery_service.send_direct(
            self.whop, creator, customer, dm_content(customer.name, url)
        )
        result = await run_db(_record_delivery, self.engine, job.id, delivered)
        if result is not None:
            await self._dispatch(result.events)
        logger.info("Welcome %s manually sent to %s", job.id, customer.name)
        return GenerationOutcome(
            job.id, MessageStatus.SENT, job.personalized_script, audio_url=url, delivery=delivered
        )

    async def preview_for_admin(self, creator: Creator) -> GenerationOutcome:
        """Synthesize a welcome addressed to the operator themself."""
        profile = await self.whop.get_user(creator.whop_user_id)
        customer, _ = await run_db(
            member_service.get_or_create_customer,
            self.engine,
            creator,
            whop_user_id=creator.whop_user_id,
            whop_member_id=None,
            name=profile.display_name or "there",
            email=profile.email,
            username=profile.username,
        )
        return await self.generate(creator.id, customer.id, preview=True)
