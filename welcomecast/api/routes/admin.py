"""
welcomecast.api.routes.admin — Operator dashboard endpoints
=============================================================

Every endpoint takes ``?experienceId=`` and acts on the caller's tenant for
that experience.  Mutations go through :func:`rate_limited_creator`; the ones
that call a paid vendor go through :func:`vendor_limited_creator`.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from welcomecast.api.deps import (
    get_config,
    get_current_creator,
    get_engine,
    get_fish_audio,
    get_orchestrator,
    get_queue,
    get_user_token,
    get_whop,
)
from welcomecast.api.rate_limit import rate_limited_creator, vendor_limited_creator
from welcomecast.config import WelcomecastConfig
from welcomecast.database.engine import run_db
from welcomecast.database.models import AudioMessage, Creator, Customer
from welcomecast.engine import data_url, template
from welcomecast.services import (
    analytics_service,
    member_service,
    reconciliation_service,
    tenant_service,
    upload_service,
)
from welcomecast.services.generation_queue import GenerationQueue
from welcomecast.services.welcome_service import WelcomeOrchestrator, template_fields
from welcomecast.vendors.fish_audio import FishAudioClient
from welcomecast.vendors.whop import WhopClient

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class SettingsBody(BaseModel):
    message_template: str = Field(alias="messageTemplate", min_length=1, max_length=5000)


class ToggleBody(BaseModel):
    is_active: bool = Field(alias="isActive")


class CustomerRef(BaseModel):
    customer_id: str = Field(alias="customerId", min_length=1)


class AudioMessageRef(BaseModel):
    audio_message_id: str = Field(alias="audioMessageId", min_length=1)


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------
def creator_dict(creator: Creator) -> dict[str, Any]:
    return {
        "id": creator.id,
        "whopUserId": creator.whop_user_id,
        "whopCompanyId": creator.whop_company_id,
        "messageTemplate": creator.message_template,
        "voiceModelId": creator.voice_model_id,
        "hasVoiceSample": bool(creator.voice_sample),
        "isSetupComplete": creator.is_setup_complete,
        "isAutomationActive": creator.is_automation_active,
        "credits": creator.credits,
        "planType": creator.plan_type,
        "whopPlanId": creator.whop_plan_id,
        "lastPurchaseDate": (
            creator.last_purchase_date.isoformat() if creator.last_purchase_date else None
        ),
        "createdAt": creator.created_at.isoformat() if creator.created_at else None,
    }


def customer_dict(customer: Customer, messages: list[AudioMessage]) -> dict[str, Any]:
    return {
        "id": customer.id,
        "whopUserId": customer.whop_user_id,
        "whopMemberId": customer.whop_member_id,
        "name": customer.name,
        "email": customer.email,
        "username": customer.username,
        "planName": customer.plan_name,
        "joinedAt": customer.joined_at.isoformat() if customer.joined_at else None,
        "firstMessageSent": customer.first_message_sent,
        "audioMessages": [analytics_service.message_dict(m) for m in messages],
        "latestAudioMessage": (
            analytics_service.message_dict(messages[-1], include_audio=True) if messages else None
        ),
    }


# ---------------------------------------------------------------------------
# Tenant
# ---------------------------------------------------------------------------
@router.get("/creator")
async def get_creator(
    creator: Annotated[Creator, Depends(get_current_creator)],
    engine: Annotated[Engine, Depends(get_engine)],
    whop: Annotated[WhopClient, Depends(get_whop)],
    cfg: Annotated[WelcomecastConfig, Depends(get_config)],
):
    result = await reconciliation_service.reconcile(engine, whop, cfg, creator)
    if result.did_change_plan:
        creator = await run_db(tenant_service.get_creator, engine, creator.id)
    return creator_dict(creator)


@router.post("/initialize")
async def initialize(
    experience_id: Annotated[str, Query(alias="experienceId", min_length=1)],
    token: Annotated[str | None, Depends(get_user_token)],
    engine: Annotated[Engine, Depends(get_engine)],
    whop: Annotated[WhopClient, Depends(get_whop)],
):
    """Get or create the caller's tenant.  Creation requires admin access."""
    creator = await tenant_service.resolve(engine, whop, token, experience_id, create=True)
    return {"creator": creator_dict(creator)}


@router.post("/save-settings")
async def save_settings(
    body: SettingsBody,
    creator: Annotated[Creator, Depends(rate_limited_creator)],
    engine: Annotated[Engine, Depends(get_engine)],
):
    updated = await run_db(tenant_service.save_settings, engine, creator.id, body.message_template)
    return {"creator": creator_dict(updated)}


@router.post("/toggle-automation")
async def toggle_automation(
    body: ToggleBody,
    creator: Annotated[Creator, Depends(rate_limited_creator)],
    engine: Annotated[Engine, Depends(get_engine)],
):
    updated = await run_db(tenant_service.set_automation, engine, creator.id, body.is_active)
    return {
        "success": True,
        "isAutomationActive": updated.is_automation_active,
        "creator": creator_dict(updated),
    }


@router.post("/reset-onboarding")
async def reset_onboarding(
    creator: Annotated[Creator, Depends(rate_limited_creator)],
    engine: Annotated[Engine, Depends(get_engine)],
):
    updated = await run_db(tenant_service.reset_onboarding, engine, creator.id)
    return {
        "success": True,
        "message": "Onboarding has been reset. You can now go through the setup wizard again.",
        "creator": creator_dict(updated),
    }


# ---------------------------------------------------------------------------
# Voice
# ---------------------------------------------------------------------------
@router.post("/upload-audio")
async def upload_audio(
    creator: Annotated[Creator, Depends(vendor_limited_creator)],
    engine: Annotated[Engine, Depends(get_engine)],
    fish_audio: Annotated[FishAudioClient, Depends(get_fish_audio)],
    audio: UploadFile = File(...),
):
    content = await audio.read()
    try:
        updated, model = await upload_service.save_voice_sample(
            engine, fish_audio, creator, audio.filename or "", content, audio.content_type
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    return {
        "success": True,
        "modelId": model.id,
        "modelState": model.state,
        "message": (
            "Voice model is ready!" if model.is_ready
            else "Voice model is being trained. This usually takes a few minutes."
        ),
        "creator": creator_dict(updated),
    }


@router.get("/voice-sample")
async def voice_sample(creator: Annotated[Creator, Depends(get_current_creator)]):
    if not creator.voice_sample:
        raise HTTPException(404, "No voice sample found")
    try:
        mime, content = data_url.decode(creator.voice_sample)
    except ValueError as exc:
        raise HTTPException(500, "Invalid audio data format") from exc
    return Response(
        content,
        media_type=mime,
        headers={"Content-Disposition": "inline", "Cache-Control": "public, max-age=31536000"},
    )


@router.get("/voice-model-status")
async def voice_model_status(
    creator: Annotated[Creator, Depends(get_current_creator)],
    fish_audio: Annotated[FishAudioClient, Depends(get_fish_audio)],
):
    if not creator.voice_model_id:
        return {"hasModel": False, "message": "No voice model found. Please upload a voice sample."}
    model = await fish_audio.get_model(creator.voice_model_id)
    return {
        "hasModel": True,
        "modelId": model.id,
        "modelState": model.state,
        "modelTitle": model.title,
        "isReady": model.is_ready,
        "message": (
            "Voice model is ready!" if model.is_ready
            else f"Voice model is {model.state}. Please wait..."
        ),
    }


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------
@router.post("/trigger-audio", status_code=202)
async def trigger_audio(
    body: CustomerRef,
    creator: Annotated[Creator, Depends(vendor_limited_creator)],
    engine: Annotated[Engine, Depends(get_engine)],
    queue: Annotated[GenerationQueue, Depends(get_queue)],
):
    customer = await run_db(member_service.get_customer, engine, creator.id, body.customer_id)
    if customer is None:
        raise HTTPException(404, "Customer not found")

    queue.submit(creator.id, customer.id)
    return {
        "success": True,
        "message": "Audio generation started! It will automatically be sent via DM when ready.",
        "script": template.render(creator.message_template or "", template_fields(customer)),
    }


@router.post("/preview-audio")
async def preview_audio(
    creator: Annotated[Creator, Depends(vendor_limited_creator)],
    orchestrator: Annotated[WelcomeOrchestrator, Depends(get_orchestrator)],
):
    """Generate a welcome addressed to the operator, without sending it."""
    outcome = await orchestrator.preview_for_admin(creator)
    return {
        "success": outcome.error is None,
        "audioMessageId": outcome.message_id,
        "status": outcome.status,
        "script": outcome.script,
        "audioUrl": outcome.audio_url,
        "error": outcome.error,
    }


@router.post("/send-audio-dm")
async def send_audio_dm(
    body: AudioMessageRef,
    creator: Annotated[Creator, Depends(vendor_limited_creator)],
    orchestrator: Annotated[WelcomeOrchestrator, Depends(get_orchestrator)],
):
    try:
        outcome = await orchestrator.resend(creator.id, body.audio_message_id)
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    return {
        "success": True,
        "message": "DM sent successfully",
        "messageId": outcome.delivery.message_id if outcome.delivery else None,
    }


# ---------------------------------------------------------------------------
# Members & analytics
# ---------------------------------------------------------------------------
@router.get("/customers")
async def list_customers(
    creator: Annotated[Creator, Depends(get_current_creator)],
    engine: Annotated[Engine, Depends(get_engine)],
):
    rows = await run_db(member_service.list_customers, engine, creator.id)
    return {"customers": [customer_dict(c, messages) for c, messages in rows]}


@router.get("/all-members")
async def all_members(
    creator: Annotated[Creator, Depends(get_current_creator)],
    whop: Annotated[WhopClient, Depends(get_whop)],
):
    members, total = await whop.list_members(creator.whop_company_id)
    return {"members": [m.model_dump() for m in members], "total": total}


@router.get("/analytics")
async def analytics(
    creator: Annotated[Creator, Depends(get_current_creator)],
    engine: Annotated[Engine, Depends(get_engine)],
    whop: Annotated[WhopClient, Depends(get_whop)],
):
    return await analytics_service.analytics(engine, whop, creator)


@router.get("/experiences")
async def experiences(
    creator: Annotated[Creator, Depends(get_current_creator)],
    whop: Annotated[WhopClient, Depends(get_whop)],
):
    items = await whop.list_experiences(creator.whop_company_id)
    return {"experiences": [{"id": e.id, "name": e.name} for e in items]}

