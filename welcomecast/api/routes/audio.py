"""
welcomecast.api.routes.audio — Public welcome audio
=====================================================

The link inside every delivered message points here.  No auth: the job id
is an unguessable 128-bit token.  Each fetch counts as a play.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy import Engine

from welcomecast.api.deps import get_engine
from welcomecast.database.engine import get_session, run_db
from welcomecast.database.models import AudioMessage, utcnow
from welcomecast.engine import data_url

router = APIRouter(tags=["audio"])


def _record_play(engine: Engine, job_id: str) -> str | None:
    """Bump the play counter and return the stored audio, if any."""
    with get_session(engine) as session:
        job = session.get(AudioMessage, job_id)
        if job is None or not job.audio_data:
            return None
        job.play_count = (job.play_count or 0) + 1
        if job.played_at is None:
            job.played_at = utcnow()
        return job.audio_data


@router.get("/audio/{job_id}")
async def serve_audio(job_id: str, engine: Annotated[Engine, Depends(get_engine)]):
    stored = await run_db(_record_play, engine, job_id)
    if stored is None:
        raise HTTPException(404, "Audio not found")
    try:
        mime, content = data_url.decode(stored)
    except ValueError as exc:
        raise HTTPException(500, "Invalid audio data format") from exc

    return Response(
        content,
        media_type=data_url.serving_mime(mime),
        headers={
            "Content-Disposition": 'inline; filename="welcome-message.mp3"',
            "Cache-Control": "public, max-age=31536000",
            "Access-Control-Allow-Origin": "*",
        },
    )
