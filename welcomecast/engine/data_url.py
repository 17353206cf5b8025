"""
welcomecast.engine.data_url — Embedded Audio Encoding
======================================================

Voice samples and generated welcomes live on their rows as RFC 2397 data
URLs (``data:audio/mp3;base64,…``) so the database is the only storage.
"""

from __future__ import annotations

import base64
import binascii
import re

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.+)$", re.DOTALL)

# Format name → MIME type served to clients
AUDIO_MIME_TYPES: dict[str, str] = {
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "opus": "audio/ogg",
    "pcm": "audio/L16",
}


def encode(content: bytes, mime: str) -> str:
    return f"data:{mime};base64,{base64.b64encode(content).decode('ascii')}"


def decode(data_url: str) -> tuple[str, bytes]:
    """Split a data URL into ``(mime, bytes)``.

    Raises
    ------
    ValueError
        If *data_url* isn't a base64 data URL.
    """
    match = _DATA_URL_RE.match(data_url or "")
    if not match:
        raise ValueError("Not a base64 data URL")
    try:
        content = base64.b64decode(match.group("data"), validate=True)
    except binascii.Error as exc:
        raise ValueError(f"Invalid base64 payload: {exc}") from exc
    return match.group("mime"), content


def serving_mime(mime: str) -> str:
    """MIME type to send over HTTP for a stored *mime*.

    Stored welcome audio is tagged ``audio/mp3``; browsers expect
    ``audio/mpeg``.
    """
    subtype = mime.split("/", 1)[-1]
    return AUDIO_MIME_TYPES.get(subtype, mime)
