"""
tests/test_upload.py — Voice Sample Upload & Data URL Tests
=============================================================
"""

from __future__ import annotations

import pytest
from conftest import make_creator, run_async

from welcomecast.engine import data_url
from welcomecast.exceptions import FishAudioError
from welcomecast.services import tenant_service, upload_service


class TestDataUrl:
    def test_decode(self):
        assert data_url.decode("data:audio/mp3;base64,SUQz") == ("audio/mp3", b"ID3")

    def test_encode_matches_stored_format(self):
        assert data_url.encode(b"ID3", "audio/mp3") == "data:audio/mp3;base64,SUQz"

    @pytest.mark.parametrize("value", ["", "https://cdn/x.mp3", "data:audio/mp3;base64,@@@"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            data_url.decode(value)

    def test_serving_mime(self):
        assert data_url.serving_mime("audio/mp3") == "audio/mpeg"
        assert data_url.serving_mime("audio/webm") == "audio/webm"


class TestValidateVoiceSample:
    def test_accepts_audio_mime(self):
        assert upload_service.validate_voice_sample("a.bin", b"x", "audio/webm") == "audio/webm"

    def test_extension_when_mime_missing(self):
        assert upload_service.validate_voice_sample("a.m4a", b"x") == "audio/m4a"

    def test_rejects_non_audio(self):
        with pytest.raises(ValueError, match="Only audio"):
            upload_service.validate_voice_sample("a.png", b"x", "image/png")

    def test_rejects_unknown_extension(self):
        with pytest.raises(ValueError, match="not allowed"):
            upload_service.validate_voice_sample("a.exe", b"x")

    def test_rejects_empty(self):
        with pytest.raises(ValueError):
            upload_service.validate_voice_sample("a.wav", b"", "audio/wav")

    def test_rejects_oversize(self, monkeypatch):
        monkeypatch.setattr(upload_service, "MAX_FILE_SIZE", 4)
        with pytest.raises(ValueError, match="too large"):
            upload_service.validate_voice_sample("a.wav", b"12345", "audio/wav")


class TestSaveVoiceSample:
    def test_refused_clone_leaves_creator_untouched(self, db_engine, fish_audio):
        fish_audio.create_model.side_effect = FishAudioError("bad sample", status_code=400)
        creator = make_creator(db_engine, voice_model_id=None, is_setup_complete=False)

        with pytest.raises(FishAudioError):
            run_async(
                upload_service.save_voice_sample(
                    db_engine, fish_audio, creator, "v.wav", b"RIFF", "audio/wav"
                )
            )

        fresh = tenant_service.get_creator(db_engine, creator.id)
        assert fresh.voice_sample is None
        assert fresh.voice_model_id is None
