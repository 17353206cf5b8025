"""
welcomecast.services.upload_service — Voice sample upload handling
===================================================================

Validates an uploaded voice sample, keeps it on the creator row as a data
URL and submits it to Fish Audio for cloning.  Training runs on Fish
Audio's side; the dashboard polls ``voice-model-status`` afterwards.
"""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import Engine

from welcomecast.database.engine import run_db
from welcomecast.database.models import Creator
from welcomecast.engine import data_url
from welcomecast.services import tenant_service
from welcomecast.vendors.fish_audio import FishAudioClient, VoiceModel

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 20 * 1024 * 1024  # 20 MB
ALLOWED_EXTENSIONS = {".mp3", ".wav", ".m4a", ".aac", ".ogg", ".oga", ".opus", ".flac", ".webm"}


def validate_voice_sample(filename: str, content: bytes, content_type: str | None = None) -> str:
    """Check an uploaded voice sample.

    Parameters
    ----------
    filename:
        Original filename from the upload.
    content:
        Raw file bytes.
    content_type:
        MIME type from the upload header.

    Returns
    -------
    str
        The MIME type to store the sample under.

    Raises
    ------
    ValueError
        If validation fails (wrong type, too large, empty).
    """
    if not content:
        raise ValueError("No audio file provided")

    # Size check
    if len(content) > MAX_FILE_SIZE:
        raise ValueError(
            f"File too large: {len(content)} bytes (max {MAX_FILE_SIZE // 1024 // 1024}MB)"
        )

    # MIME type check: anything audio/*
    if content_type and not content_type.startswith("audio/"):
        raise ValueError(f"Only audio files are allowed, got {content_type!r}")

    # Extension check when the client didn't send a MIME type
    ext = Path(filename or "").suffix.lower()
    if not content_type:
        if ext not in ALLOWED_EXTENSIONS:
            raise ValueError(
                f"File type not allowed: {ext!r}. "
                f"Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
            )
        content_type = "audio/" + ext.lstrip(".")

    return content_type


async def save_voice_sample(
    engine: Engine,
    fish_audio: FishAudioClient,
    creator: Creator,
    filename: str,
    content: bytes,
    content_type: str | None = None,
) -> tuple[Creator, VoiceModel]:
    """Validate, clone and persist a voice sample for *creator*.

    Raises ``ValueError`` on invalid input and
    :class:`~welcomecast.exceptions.FishAudioError` if cloning is refused;
    the creator row is untouched in both cases.
    """
    mime = validate_voice_sample(filename, content, content_type)
    model = await fish_audio.create_model(
        title=f"Welcome voice {creator.whop_company_id}",
        sample=content,
        file_name=filename or "voice-sample",
        description=f"Welcome message voice for creator {creator.id}",
        content_type=mime,
    )
    updated = await run_db(
        tenant_service.set_voice,
        engine,
        creator.id,
        voice_sample=data_url.encode(content, mime),
        voice_model_id=model.id,
    )
    logger.info(
        "Voice sample saved for creator %s (%d bytes, model %s, state %s)",
        creator.id, len(content), model.id, model.state,
    )
    return updated, model
