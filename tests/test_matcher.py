"""TriggerMatcher — gating, per-trigger predicates, sequential dispatch."""

from __future__ import annotations

import pytest

from autoflow.engine.matcher import trigger_accepts
from autoflow.exceptions import TriggerError
from autoflow.types import AutomationStatus, CrmStage, RunOutcome, TriggerType

from conftest import action, automation, chain, edge, trigger


@pytest.fixture
def contact(store, connection):
    return store.add_contact(id=7, name="Ana", phone="5511999990000", is_24h_window_open=True)


def tagging(trigger_node, tag="ran", **kwargs):
    return automation([trigger_node, action("tag", "add_tag", tag_name=tag)], chain("t", "tag"), **kwargs)


# ── Predicates ────────────────────────────────────────────────────────────────

class TestTriggerAccepts:

    def test_wrong_subtype_rejected(self):
        assert not trigger_accepts(trigger("contact_created"), TriggerType.TAG_ADDED, {})

    def test_action_node_never_accepts(self):
        assert not trigger_accepts(action("a", "opt_out"), TriggerType.CONTACT_CREATED, {})

    def test_contact_created(self):
        assert trigger_accepts(trigger("contact_created"), TriggerType.CONTACT_CREATED, {})

    @pytest.mark.parametrize("value,tag,expected", [
        ("vip", "vip", True),
        ("vip", "lead", False),
        ("", "anything", True),
    ])
    def test_tag_added(self, value, tag, expected):
        node = trigger("tag_added", value=value)
        assert trigger_accepts(node, TriggerType.TAG_ADDED, {"tag_name": tag}) is expected

    @pytest.mark.parametrize("board,stage,ctx_board,ctx_stage,expected", [
        ("b1", "s1", "b1", "s1", True),
        ("b1", "s1", "b1", "s2", False),
        ("b1", "", "b1", "s9", True),
        ("", "", "b7", "s9", True),
        ("b1", "s1", "b2", "s1", False),
    ])
    def test_crm_stage_changed(self, board, stage, ctx_board, ctx_stage, expected):
        node = trigger("crm_stage_changed", crm_board_id=board, crm_stage_id=stage)
        ctx = {"board": {"id": ctx_board}, "stage": CrmStage(id=ctx_stage, title="x")}
        assert trigger_accepts(node, TriggerType.CRM_STAGE_CHANGED, ctx) is expected

    @pytest.mark.parametrize("match,value,text,expected", [
        ("any", "", "whatever", True),
        ("any", "price", "hello", True),
        ("contains", "PRICE", "what is the price?", True),
        ("contains", "price", "hello", False),
        ("exact", "hi", "HI", True),
        ("exact", "hi", "hi there", False),
        ("exact", "", "anything", True),
    ])
    def test_context_message(self, match, value, text, expected):
        node = trigger("context_message", match=match, value=value)
        assert trigger_accepts(node, TriggerType.CONTEXT_MESSAGE, {"message_text": text}) is expected

    def test_webhook_always_accepts(self):
        node = trigger("webhook", webhook_id="hook-A")
        assert trigger_accepts(node, TriggerType.WEBHOOK, {"contact_id": 1, "webhook_id": "hook-A"})
        assert trigger_accepts(node, TriggerType.WEBHOOK, {"contact_id": 1, "webhook_id": "hook-B"})
        assert trigger_accepts(node, TriggerType.WEBHOOK, {})


# ── Dispatch ──────────────────────────────────────────────────────────────────

class TestDispatch:

    @pytest.mark.asyncio
    async def test_vip_scenario_end_to_end(self, matcher, store, messaging, contact):
        store.contacts[7].tags = ["vip"]
        a = store.add_automation(automation(
            [
                trigger("tag_added", value="vip"),
                action("tag", "add_tag", tag_name="{{contact.name}}-welcomed"),
                action("msg", "send_message", sub_type="text", text="Hi {{contact.name}}"),
            ],
            chain("t", "tag", "msg"),
        ))

        results = await matcher.dispatch("tag_added", {"contact_id": 7, "tag_name": "vip"})

        assert [r.automation_id for r in results] == [a.id]
        assert results[0].outcome == RunOutcome.COMPLETED
        assert store.contacts[7].tags == ["vip", "Ana-welcomed"]
        assert messaging.sent[0]["text"] == "Hi Ana"
        stats = store.automations[a.id].execution_stats
        assert all((s.total, s.success, s.error) == (1, 1, 0) for s in stats.values())
        assert set(stats) == {"t", "tag", "msg"}

    @pytest.mark.asyncio
    async def test_only_active_automations(self, matcher, store, contact):
        store.add_automation(tagging(trigger(), status=AutomationStatus.PAUSED))
        store.add_automation(tagging(trigger(), status=AutomationStatus.DRAFT))
        assert await matcher.dispatch("contact_created", {"contact_id": 7}) == []

    @pytest.mark.asyncio
    async def test_opted_out_contact_runs_nothing(self, matcher, store, contact):
        store.contacts[7].is_opted_out = True
        store.add_automation(tagging(trigger()))
        assert await matcher.dispatch("contact_created", {"contact_id": 7}) == []
        assert store.contacts[7].tags == []

    @pytest.mark.asyncio
    async def test_unknown_contact_runs_nothing(self, matcher, store, contact):
        store.add_automation(tagging(trigger()))
        assert await matcher.dispatch("contact_created", {"contact_id": 999}) == []

    @pytest.mark.asyncio
    async def test_block_on_open_chat(self, matcher, store, contact):
        blocked = store.add_automation(tagging(trigger(), tag="blocked", block_on_open_chat=True))
        allowed = store.add_automation(tagging(trigger(), tag="allowed"))
        results = await matcher.dispatch("contact_created", {"contact_id": 7})
        assert [r.automation_id for r in results] == [allowed.id]
        assert blocked.id not in store.stats_writes

    @pytest.mark.asyncio
    async def test_block_on_open_chat_when_window_closed(self, matcher, store, contact):
        store.contacts[7].is_24h_window_open = False
        a = store.add_automation(tagging(trigger(), block_on_open_chat=True))
        results = await matcher.dispatch("contact_created", {"contact_id": 7})
        assert [r.automation_id for r in results] == [a.id]

    @pytest.mark.asyncio
    async def test_no_active_connection(self, matcher, store, contact, caplog):
        store.connections.clear()
        store.add_automation(tagging(trigger()))
        assert await matcher.dispatch("contact_created", {"contact_id": 7}) == []
        assert "no active messaging connection" in caplog.text

    @pytest.mark.asyncio
    async def test_missing_contact_id_raises(self, matcher):
        with pytest.raises(TriggerError):
            await matcher.dispatch("contact_created", {})

    @pytest.mark.asyncio
    async def test_unknown_trigger_type_raises(self, matcher):
        with pytest.raises(ValueError):
            await matcher.dispatch("birthday", {"contact_id": 7})

    @pytest.mark.asyncio
    async def test_runs_are_sequential_and_see_each_other(self, matcher, store, contact):
        first = store.add_automation(tagging(trigger(), tag="first", name="first"))
        second = store.add_automation(automation(
            [trigger(),
             action("if", "conditional", conditions=[{"source": "contact_tag", "value": "first"}]),
             action("yes", "add_tag", tag_name="saw-first")],
            [edge("t", "if"), edge("if", "yes", "true")],
            name="second",
        ))

        results = await matcher.dispatch("contact_created", {"contact_id": 7})
        assert [r.automation_id for r in results] == [first.id, second.id]
        assert store.contacts[7].tags == ["first", "saw-first"]

    @pytest.mark.asyncio
    async def test_webhook_dispatch_runs_every_webhook_automation(self, matcher, store, contact):
        a = store.add_automation(tagging(trigger("webhook", webhook_id="hook-A"), tag="a"))
        b = store.add_automation(tagging(trigger("webhook", webhook_id="hook-B"), tag="b"))
        results = await matcher.dispatch("webhook", {"contact_id": 7, "webhook_id": "hook-A"})
        assert [r.automation_id for r in results] == [a.id, b.id]

    @pytest.mark.asyncio
    async def test_only_restricts_candidates(self, matcher, store, contact):
        a = store.add_automation(tagging(trigger("webhook", webhook_id="hook-A"), tag="a"))
        store.add_automation(tagging(trigger("webhook", webhook_id="hook-B"), tag="b"))
        results = await matcher.dispatch("webhook", {"contact_id": 7}, only={a.id})
        assert [r.automation_id for r in results] == [a.id]
        assert store.contacts[7].tags == ["a"]

    @pytest.mark.asyncio
    async def test_match_does_not_run(self, matcher, store, contact):
        a = store.add_automation(tagging(trigger("tag_added", value="vip")))
        matched = await matcher.match("tag_added", {"contact_id": 7, "tag_name": "vip"})
        assert [m.id for m in matched] == [a.id]
        assert store.stats_writes == []
