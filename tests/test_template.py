"""
tests/test_template.py — Placeholder Rendering Tests
======================================================
"""

from __future__ import annotations

from datetime import date

from welcomecast.engine.template import PLACEHOLDERS, render

TODAY = date(2026, 3, 14)


class TestRender:
    def test_substitutes_all_known_fields(self):
        out = render(
            "{name} <{email}> @{username} on {plan}",
            {"name": "Sam", "email": "sam@x.io", "username": "sammy", "plan_name": "Gold"},
            today=TODAY,
        )
        assert out == "Sam <sam@x.io> @sammy on Gold"

    def test_fallbacks_for_missing_values(self):
        out = render("Hi {name}, welcome to {plan}.{email}{username}", {}, today=TODAY)
        assert out == "Hi there, welcome to our community."

    def test_empty_strings_use_fallbacks(self):
        out = render("{name}/{plan}", {"name": "", "plan_name": ""}, today=TODAY)
        assert out == "there/our community"

    def test_date_uses_locale_format(self):
        assert render("{date}", today=TODAY) == TODAY.strftime("%x")

    def test_repeated_placeholders_all_replaced(self):
        assert render("{name} {name} {name}", {"name": "Jo"}) == "Jo Jo Jo"

    def test_unknown_tokens_left_untouched(self):
        tpl = "Hello {first_name} {{name}} {NAME}"
        assert render(tpl, {"name": "Jo"}) == "Hello {first_name} {Jo} {NAME}"

    def test_no_fields_argument(self):
        assert render("Hi {name}") == "Hi there"

    def test_placeholder_table(self):
        assert set(PLACEHOLDERS.values()) == {"{name}", "{email}", "{username}", "{plan}", "{date}"}
