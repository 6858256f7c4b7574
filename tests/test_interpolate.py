"""{{path}} substitution."""

import pytest

from autoflow.engine.interpolate import interpolate, lookup_path
from autoflow.types import Contact


CTX = {
    "contact": {"name": "Ana", "phone": "5511999990000", "custom_fields": {"plan": "gold"}},
    "webhook": {"order": {"id": 42, "total": 9.5}},
    "empty": "",
    "nothing": None,
}


@pytest.mark.parametrize("template,expected", [
    ("Hi {{contact.name}}", "Hi Ana"),
    ("{{contact.name}}-welcomed", "Ana-welcomed"),
    ("Order {{webhook.order.id}} = {{webhook.order.total}}", "Order 42 = 9.5"),
    ("plan: {{ contact.custom_fields.plan }}", "plan: gold"),
    ("no tokens here", "no tokens here"),
])
def test_resolves_paths(template, expected):
    assert interpolate(template, CTX) == expected


def test_missing_path_left_verbatim():
    assert interpolate("Hi {{contact.surname}}!", CTX) == "Hi {{contact.surname}}!"


def test_none_value_left_verbatim():
    assert interpolate("x={{nothing}}", CTX) == "x={{nothing}}"


def test_empty_string_value_substituted():
    assert interpolate("[{{empty}}]", CTX) == "[]"


@pytest.mark.parametrize("template", ["", None])
def test_empty_template(template):
    assert interpolate(template, CTX) == ""


def test_idempotent_once_resolved():
    once = interpolate("Hi {{contact.name}} {{unknown.key}}", CTX)
    assert interpolate(once, CTX) == once


def test_substituted_value_not_rescanned():
    ctx = {"a": "{{b}}", "b": "boom"}
    assert interpolate("{{a}}", ctx) == "{{b}}"


def test_second_pass_expands_tokens_carried_in_values():
    # idempotence holds only when resolved values are token-free
    ctx = {"a": "{{b}}", "b": "boom", "c": "plain"}
    once = interpolate("{{a}} {{c}}", ctx)
    assert once == "{{b}} plain"
    assert interpolate(once, ctx) == "boom plain"
    assert interpolate(interpolate(once, ctx), ctx) == "boom plain"


def test_path_through_pydantic_model():
    ctx = {"contact": Contact(id=7, name="Ana")}
    assert interpolate("{{contact.name}} #{{contact.id}}", ctx) == "Ana #7"


def test_lookup_stops_at_primitives():
    from autoflow.engine.interpolate import _MISSING
    assert lookup_path("contact.name.upper", CTX) is _MISSING
