"""
welcomecast.config — YAML Configuration Loader
===============================================

**Why this file exists:**
This module reads ``config.yaml`` for **non-secret** settings (public URL,
billing plan identifiers, credit allotments, worker sizing).  Credentials
(API keys, database URL, token verification key) stay in the environment
and are read by the modules that use them.

Usage::

    from welcomecast.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.public_base_url)       # "https://welcomecast.example.com"
    print(cfg.tier_for_plan("plan_kQk0AZnAydnTZ"))  # "tier200"
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from welcomecast.constants import FREE_TIER_CREDITS, PLAN_CATALOGUE

VALID_TIERS = frozenset(PLAN_CATALOGUE)


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class WelcomecastConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    app_name: str

    # Public URL used to build audio links inside delivered messages
    public_base_url: str

    # Dashboard
    dashboard_port: int

    # Billing — the company that sells this app's plans, and plan → tier map
    billing_company_id: str
    billing_plans: dict[str, str] = field(default_factory=dict)

    # Balance a new or downgraded free tenant starts with
    free_credits: int = FREE_TIER_CREDITS

    # Credit allotments per tier (None → unlimited)
    tier_credits: dict[str, int | None] = field(default_factory=dict)

    # Speech synthesis
    speech_format: str = "mp3"

    # Background generation
    generation_workers: int = 2
    generation_queue_size: int = 100

    def tier_for_plan(self, plan_id: str | None) -> str | None:
        """Return the local tier for a billing plan id, or ``None``."""
        if not plan_id:
            return None
        return self.billing_plans.get(plan_id)

    def credits_for_tier(self, tier: str) -> int | None:
        """Credit allotment granted when a tenant moves onto *tier*."""
        if tier == "free":
            return self.free_credits
        if tier in self.tier_credits:
            return self.tier_credits[tier]
        return PLAN_CATALOGUE[tier].credits


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path | None = None) -> WelcomecastConfig:
    """Read *path* and return a :class:`WelcomecastConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.  Defaults to the
        ``WELCOMECAST_CONFIG`` env var, then ``config.yaml`` in the current
        working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    ValueError
        If a billing plan maps to an unknown tier.
    """
    config_path = Path(path or os.getenv("WELCOMECAST_CONFIG", "config.yaml"))
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh)

    billing_plans = {str(k): str(v) for k, v in (raw.get("billing_plans") or {}).items()}
    for plan_id, tier in billing_plans.items():
        if tier not in VALID_TIERS:
            raise ValueError(
                f"billing_plans[{plan_id!r}] maps to unknown tier {tier!r}; "
                f"expected one of {sorted(VALID_TIERS)}"
            )

    tier_credits: dict[str, int | None] = {}
    for tier, credits in (raw.get("tier_credits") or {}).items():
        tier_credits[str(tier)] = int(credits) if credits is not None else None

    return WelcomecastConfig(
        app_name=raw["app_name"],
        public_base_url=str(raw["public_base_url"]).rstrip("/"),
        dashboard_port=int(raw["dashboard_port"]),
        billing_company_id=raw["billing_company_id"],
        billing_plans=billing_plans,
        free_credits=int(raw.get("free_credits", FREE_TIER_CREDITS)),
        tier_credits=tier_credits,
        speech_format=raw.get("speech_format", "mp3"),
        generation_workers=int(raw.get("generation_workers", 2)),
        generation_queue_size=int(raw.get("generation_queue_size", 100)),
    )
