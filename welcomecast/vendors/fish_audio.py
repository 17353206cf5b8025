"""
welcomecast.vendors.fish_audio — Voice Cloning & Speech Synthesis
==================================================================

Wraps the Fish Audio API:

* ``create_model`` uploads a voice sample and starts vendor-side training.
* ``get_model`` / ``list_models`` / ``delete_model`` manage cloned voices.
* ``generate_speech`` turns text into audio with a **trained** model.

Training is asynchronous and happens on Fish Audio's side.  This client
never waits for it — callers poll ``get_model`` or check the state right
before generating.
"""

from __future__ import annotations

import logging
import mimetypes
import os
from typing import Any, Literal

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from welcomecast.exceptions import ConfigurationError, FishAudioError

logger = logging.getLogger(__name__)

FISH_AUDIO_API = "https://api.fish.audio"
TTS_MODEL = "s1"
DEFAULT_TIMEOUT = 60.0

ModelState = Literal["created", "training", "trained", "failed"]
SpeechFormat = Literal["wav", "mp3", "opus", "pcm"]


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------
class VoiceModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(alias="_id")
    state: ModelState
    title: str | None = None

    @property
    def is_ready(self) -> bool:
        return self.state == "trained"


class VoiceModelPage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    total: int = 0
    items: list[VoiceModel] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------
class FishAudioClient:
    """Async Fish Audio client.

    Parameters
    ----------
    api_key:
        Fish Audio API key (``FISH_AUDIO_API_KEY``).
    transport:
        Optional ``httpx`` transport — tests pass an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = FISH_AUDIO_API,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_env(cls) -> FishAudioClient:
        api_key = os.getenv("FISH_AUDIO_API_KEY", "").strip()
        if not api_key:
            raise ConfigurationError("FISH_AUDIO_API_KEY is not set")
        return cls(api_key)

    def _client(self) -> httpx.AsyncClient:
        transport = self._transport or httpx.AsyncHTTPTransport(retries=1)
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
            transport=transport,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            async with self._client() as client:
                resp = await client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise FishAudioError(f"Fish Audio request failed: {method} {path}: {exc}") from exc
        if resp.status_code >= 400:
            logger.error(
                "Fish Audio error %s %s → %d: %s",
                method, path, resp.status_code, resp.text[:500],
            )
            raise FishAudioError(
                f"Fish Audio API request failed: {resp.status_code} {resp.reason_phrase}",
                status_code=resp.status_code,
                body=resp.text,
            )
        return resp

    # -----------------------------------------------------------------------
    # Model lifecycle
    # -----------------------------------------------------------------------
    async def create_model(
        self,
        title: str,
        sample: bytes,
        file_name: str,
        *,
        description: str | None = None,
        content_type: str | None = None,
    ) -> VoiceModel:
        """Submit *sample* for cloning.  Returns immediately after upload."""
        logger.info("Creating Fish Audio voice model %r", title)
        form: dict[str, str] = {
            "type": "tts",
            "title": title,
            "train_mode": "fast",
            "visibility": "private",
        }
        if description:
            form["description"] = description
        mime = content_type or mimetypes.guess_type(file_name)[0] or "audio/wav"

        resp = await self._request(
            "POST", "/model", data=form, files={"voices": (file_name, sample, mime)}
        )
        model = _parse(VoiceModel, resp)
        logger.info("Fish Audio model created: %s (state=%s)", model.id, model.state)
        return model

    async def get_model(self, model_id: str) -> VoiceModel:
        resp = await self._request("GET", f"/model/{model_id}")
        return _parse(VoiceModel, resp)

    async def list_models(self, *, page_size: int = 10, page_number: int = 1) -> VoiceModelPage:
        resp = await self._request(
            "GET",
            "/model",
            params={"self": "true", "page_size": page_size, "page_number": page_number},
        )
        return _parse(VoiceModelPage, resp)

    async def delete_model(self, model_id: str) -> None:
        logger.info("Deleting Fish Audio model %s", model_id)
        await self._request("DELETE", f"/model/{model_id}")

    # -----------------------------------------------------------------------
    # Synthesis
    # -----------------------------------------------------------------------
    async def generate_speech(
        self, text: str, model_id: str, fmt: SpeechFormat = "mp3"
    ) -> bytes:
        """Synthesize *text* in the cloned voice *model_id*.

        The model must already be ``trained``; Fish Audio rejects the call
        otherwise and :class:`FishAudioError` propagates.
        """
        logger.info(
            "Generating speech with model %s (%d chars)", model_id, len(text)
        )
        body = {
            "text": text,
            "reference_id": model_id,
            "format": fmt,
            "normalize": True,
            "latency": "normal",
            "prosody": {"speed": 1.1, "volume": 0},
        }
        resp = await self._request("POST", "/v1/tts", json=body, headers={"model": TTS_MODEL})
        if not resp.content:
            raise FishAudioError("Fish Audio returned an empty audio payload")
        return resp.content


def _parse(model: type[BaseModel], resp: httpx.Response):
    try:
        return model.model_validate(resp.json())
    except (ValueError, ValidationError) as exc:
        raise FishAudioError(
            f"Unexpected Fish Audio response for {model.__name__}: {exc}",
            status_code=resp.status_code,
            body=resp.text,
        ) from exc
