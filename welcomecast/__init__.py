"""
Welcomecast — Personal Voice Welcomes for Whop Communities
===========================================================
A Whop app that greets every new community member with an audio message
spoken in the creator's own cloned voice.  Creators upload a voice sample
and a message template once; from then on each membership webhook turns
into a personalised, credit-metered welcome delivered by direct message.

Package layout::

    welcomecast/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Plan catalogue, default template, statuses
    ├── exceptions.py      # Error taxonomy shared by services and API
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # Creator / Customer / AudioMessage tables
    ├── engine/
    │   ├── template.py    # Placeholder rendering
    │   ├── ledger.py      # Pure credit accounting + ledger events
    │   └── events.py      # Ledger event dataclasses
    ├── vendors/
    │   ├── whop.py        # Whop REST client + typed responses
    │   └── fish_audio.py  # Fish Audio voice cloning / TTS client
    ├── services/
    │   ├── tenant_service.py         # Multi-tenant identity resolution
    │   ├── member_service.py         # Customer records
    │   ├── credit_service.py         # Persisted ledger operations
    │   ├── reconciliation_service.py # Billing ↔ plan reconciliation
    │   ├── delivery_service.py       # Support-channel resolution + send
    │   ├── welcome_service.py        # Generation state machine
    │   ├── generation_queue.py       # Bounded background worker pool
    │   ├── analytics_service.py      # Dashboard statistics
    │   └── upload_service.py         # Voice sample validation
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Dependency wiring
        ├── auth.py        # Whop user-token verification
        └── routes/        # Admin, customer, webhook and audio endpoints
"""

__version__ = "0.1.0"
