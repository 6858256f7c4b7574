"""Condition evaluation: each source, operators, and and/or folding."""

from datetime import datetime, timezone

import pytest
from pydantic import TypeAdapter

from autoflow.engine.conditions import evaluate_condition, evaluate_conditions
from autoflow.types import Condition, Contact

_adapter = TypeAdapter(Condition)


def cond(**data):
    return _adapter.validate_python(data)


@pytest.fixture
def contact():
    return Contact(
        id=7,
        name="Ana",
        phone="5511999990000",
        tags=["vip", "lead"],
        is_24h_window_open=True,
        custom_fields={"city": "Lisbon"},
    )


def fetcher(contact):
    calls = []

    async def fetch():
        calls.append(1)
        return contact

    fetch.calls = calls
    return fetch


class TestContactTag:

    def test_contains(self, contact):
        assert evaluate_condition(cond(source="contact_tag", operator="contains", value="vip"), contact)
        assert not evaluate_condition(cond(source="contact_tag", operator="contains", value="cold"), contact)

    def test_not_contains(self, contact):
        assert evaluate_condition(cond(source="contact_tag", operator="not_contains", value="cold"), contact)
        assert not evaluate_condition(cond(source="contact_tag", operator="not_contains", value="vip"), contact)

    def test_tag_match_is_exact(self, contact):
        assert not evaluate_condition(cond(source="contact_tag", operator="contains", value="VIP"), contact)


class TestContactField:

    def test_is_case_insensitive(self, contact):
        assert evaluate_condition(cond(source="contact_field", field="name", operator="is", value="ANA"), contact)

    def test_is_not(self, contact):
        assert evaluate_condition(cond(source="contact_field", field="name", operator="is_not", value="Bia"), contact)

    def test_contains(self, contact):
        assert evaluate_condition(
            cond(source="contact_field", field="phone", operator="contains", value="9999"), contact
        )

    def test_custom_field(self, contact):
        assert evaluate_condition(
            cond(source="contact_field", field="city", operator="is", value="lisbon"), contact
        )

    @pytest.mark.parametrize("operator,expected", [("is", False), ("contains", False), ("is_not", True)])
    def test_missing_field(self, contact, operator, expected):
        c = cond(source="contact_field", field="birthday", operator=operator, value="x")
        assert evaluate_condition(c, contact) is expected


class TestConversationWindow:

    def test_open(self, contact):
        assert evaluate_condition(cond(source="conversation_window", operator="is_open"), contact)
        assert not evaluate_condition(cond(source="conversation_window", operator="is_closed"), contact)

    def test_closed(self, contact):
        closed = contact.model_copy(update={"is_24h_window_open": False})
        assert evaluate_condition(cond(source="conversation_window", operator="is_closed"), closed)


class TestBusinessHours:

    WINDOW = {"source": "business_hours", "days": ["mon", "tue", "wed", "thu", "fri"],
              "start_time": "09:00", "end_time": "18:00"}

    @pytest.mark.parametrize("hour,minute,expected", [
        (9, 0, True),
        (18, 0, True),
        (8, 59, False),
        (18, 1, False),
        (12, 30, True),
    ])
    def test_monday_boundaries(self, contact, hour, minute, expected):
        now = datetime(2024, 1, 1, hour, minute, tzinfo=timezone.utc)   # a Monday
        c = cond(operator="is_within", **self.WINDOW)
        assert evaluate_condition(c, contact, now=now) is expected

    def test_outside_is_negation(self, contact):
        now = datetime(2024, 1, 1, 20, 0, tzinfo=timezone.utc)
        assert evaluate_condition(cond(operator="is_outside", **self.WINDOW), contact, now=now)

    def test_weekend_excluded(self, contact):
        saturday = datetime(2024, 1, 6, 12, 0, tzinfo=timezone.utc)
        assert not evaluate_condition(cond(operator="is_within", **self.WINDOW), contact, now=saturday)

    def test_timezone_conversion(self, contact):
        # 11:00 UTC is 08:00 in São Paulo (UTC-3): before opening
        now = datetime(2024, 1, 1, 11, 0, tzinfo=timezone.utc)
        c = cond(operator="is_within", **self.WINDOW)
        assert evaluate_condition(c, contact, now=now, timezone="UTC")
        assert not evaluate_condition(c, contact, now=now, timezone="America/Sao_Paulo")


class TestFolding:

    @pytest.mark.asyncio
    async def test_empty_and_is_true(self, contact):
        assert await evaluate_conditions("and", [], fetcher(contact)) is True

    @pytest.mark.asyncio
    async def test_empty_or_is_false(self, contact):
        assert await evaluate_conditions("or", [], fetcher(contact)) is False

    @pytest.mark.asyncio
    async def test_and_short_circuits(self, contact):
        fetch = fetcher(contact)
        conditions = [
            cond(source="contact_tag", value="cold"),
            cond(source="contact_tag", value="vip"),
        ]
        assert await evaluate_conditions("and", conditions, fetch) is False
        assert len(fetch.calls) == 1

    @pytest.mark.asyncio
    async def test_or_short_circuits(self, contact):
        fetch = fetcher(contact)
        conditions = [
            cond(source="contact_tag", value="vip"),
            cond(source="contact_tag", value="cold"),
        ]
        assert await evaluate_conditions("or", conditions, fetch) is True
        assert len(fetch.calls) == 1

    @pytest.mark.asyncio
    async def test_and_all_true(self, contact):
        conditions = [
            cond(source="contact_tag", value="vip"),
            cond(source="conversation_window", operator="is_open"),
        ]
        assert await evaluate_conditions("and", conditions, fetcher(contact)) is True

    @pytest.mark.asyncio
    async def test_contact_refetched_per_condition(self, contact):
        fetch = fetcher(contact)
        conditions = [cond(source="contact_tag", value="vip"), cond(source="contact_tag", value="lead")]
        await evaluate_conditions("and", conditions, fetch)
        assert len(fetch.calls) == 2

    @pytest.mark.asyncio
    async def test_vanished_contact_returns_seed(self):
        async def gone():
            return None

        conditions = [cond(source="contact_tag", value="vip")]
        assert await evaluate_conditions("and", conditions, gone) is True
        assert await evaluate_conditions("or", conditions, gone) is False
