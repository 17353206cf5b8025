"""
welcomecast.exceptions — Error Taxonomy
========================================

Services raise these; the API layer maps them onto HTTP status codes in
:mod:`welcomecast.api.main`.
"""

from __future__ import annotations


class WelcomecastError(Exception):
    """Base class for all application errors."""


# ---------------------------------------------------------------------------
# Configuration / authorization
# ---------------------------------------------------------------------------
class ConfigurationError(WelcomecastError):
    """A required credential or identifier is missing."""


class AuthorizationError(WelcomecastError):
    """Missing or invalid user token."""


class TenantAccessDenied(AuthorizationError):
    """Caller lacks the access level required for this community."""


class TenantNotFound(WelcomecastError):
    """No creator record exists for the resolved (operator, community)."""


# ---------------------------------------------------------------------------
# Generation pipeline
# ---------------------------------------------------------------------------
class QuotaExceeded(WelcomecastError):
    """The tenant has no message credits left."""


class VoiceModelNotReady(WelcomecastError):
    """The cloned voice is missing or still training."""


class DeliveryError(WelcomecastError):
    """Posting the welcome message failed outright."""


class GenerationAlreadyQueued(WelcomecastError):
    """A generation for this (creator, customer) pair is already in flight."""


class GenerationQueueFull(WelcomecastError):
    """The background generation queue is at capacity."""


# ---------------------------------------------------------------------------
# Vendors
# ---------------------------------------------------------------------------
class VendorError(WelcomecastError):
    """A third-party API returned an error or an unexpected payload."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class WhopAPIError(VendorError):
    """Error response from the Whop API."""


class ChannelConflictError(WhopAPIError):
    """The customer is already attached to a support channel."""


class FishAudioError(VendorError):
    """Error response from the Fish Audio API."""
