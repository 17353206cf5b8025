"""
tests/test_config.py — YAML Configuration Tests
=================================================
"""

from __future__ import annotations

import pytest

from welcomecast.config import load_config

BASE_YAML = """\
app_name: Welcomecast
public_base_url: https://welcomecast.example.com/
dashboard_port: 8000
billing_company_id: biz_billing
billing_plans:
  plan_pro: tier200
  plan_max: unlimited
tier_credits:
  tier200: 250
  unlimited: null
"""


def _write(tmp_path, text: str):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_reads_settings(self, tmp_path):
        cfg = load_config(_write(tmp_path, BASE_YAML))

        assert cfg.app_name == "Welcomecast"
        assert cfg.public_base_url == "https://welcomecast.example.com"
        assert cfg.billing_company_id == "biz_billing"
        assert cfg.tier_for_plan("plan_pro") == "tier200"
        assert cfg.tier_for_plan("plan_unknown") is None
        assert cfg.tier_for_plan(None) is None

    def test_defaults(self, tmp_path):
        cfg = load_config(_write(tmp_path, BASE_YAML))
        assert cfg.free_credits == 20
        assert cfg.speech_format == "mp3"
        assert cfg.generation_workers == 2
        assert cfg.generation_queue_size == 100

    def test_credits_for_tier(self, tmp_path):
        cfg = load_config(_write(tmp_path, BASE_YAML + "free_credits: 5\n"))
        assert cfg.credits_for_tier("free") == 5
        assert cfg.credits_for_tier("tier200") == 250
        assert cfg.credits_for_tier("unlimited") is None

    def test_catalogue_fallback_for_unlisted_tier(self, tmp_path):
        text = BASE_YAML.replace("  tier200: 250\n", "")
        cfg = load_config(_write(tmp_path, text))
        assert cfg.credits_for_tier("tier200") == 200

    def test_unknown_tier_rejected(self, tmp_path):
        text = BASE_YAML.replace("plan_max: unlimited", "plan_max: platinum")
        with pytest.raises(ValueError, match="platinum"):
            load_config(_write(tmp_path, text))

    def test_missing_required_key(self, tmp_path):
        text = BASE_YAML.replace("billing_company_id: biz_billing\n", "")
        with pytest.raises(KeyError):
            load_config(_write(tmp_path, text))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="config.yaml.example"):
            load_config(tmp_path / "nope.yaml")

    def test_env_var_path(self, tmp_path, monkeypatch):
        monkeypatch.setenv("WELCOMECAST_CONFIG", str(_write(tmp_path, BASE_YAML)))
        assert load_config().app_name == "Welcomecast"
