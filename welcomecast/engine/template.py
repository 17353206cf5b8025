"""
welcomecast.engine.template — Message Placeholder Rendering
============================================================

Creators write one message template; each customer hears a version with
their own details substituted.  Placeholders are fixed literal tokens, not a
template language — anything that isn't one of the five known tokens is
left exactly as written.

=============  ===========================  ==================
Token          Source field                 Fallback
=============  ===========================  ==================
``{name}``     ``name``                     ``"there"``
``{email}``    ``email``                    ``""``
``{username}`` ``username``                 ``""``
``{plan}``     ``plan_name``                ``"our community"``
``{date}``     —                            today, locale format
=============  ===========================  ==================
"""

from __future__ import annotations

from datetime import date
from typing import TypedDict

__all__ = ["PLACEHOLDERS", "TemplateFields", "render"]

PLACEHOLDERS: dict[str, str] = {
    "NAME": "{name}",
    "EMAIL": "{email}",
    "USERNAME": "{username}",
    "PLAN": "{plan}",
    "DATE": "{date}",
}


class TemplateFields(TypedDict, total=False):
    name: str | None
    email: str | None
    username: str | None
    plan_name: str | None


def render(template: str, fields: TemplateFields | None = None, *, today: date | None = None) -> str:
    """Substitute the known placeholders in *template*.

    Empty or missing values use the fallbacks listed in the module docstring.
    Never raises.
    """
    fields = fields or {}
    today = today or date.today()

    result = template
    result = result.replace(PLACEHOLDERS["NAME"], fields.get("name") or "there")
    result = result.replace(PLACEHOLDERS["EMAIL"], fields.get("email") or "")
    result = result.replace(PLACEHOLDERS["USERNAME"], fields.get("username") or "")
    result = result.replace(PLACEHOLDERS["PLAN"], fields.get("plan_name") or "our community")
    result = result.replace(PLACEHOLDERS["DATE"], today.strftime("%x"))
    return result
