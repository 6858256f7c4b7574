"""
Trigger matching: which automations should fire for a domain event.

Gating happens in this order:
  1. contact exists and has not opted out (hard gate)
  2. an active messaging connection exists (warning otherwise)
  3. per automation: status is active, ``block_on_open_chat`` vs. the
     contact's 24h window, then the trigger node's own predicate

Matching automations are run one after another, never concurrently, so two
runs spawned by the same event cannot race on the same contact.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from autoflow.engine.runner import AutomationRunner
from autoflow.exceptions import TriggerError
from autoflow.interfaces import AutomationCatalog, ConnectionStore, ContactStore
from autoflow.types import (
    Automation,
    AutomationStatus,
    Contact,
    ContextMessageTrigger,
    CrmStageChangedTrigger,
    MessagingConnection,
    Node,
    NodeKind,
    RunResult,
    TagAddedTrigger,
    TriggerType,
)

logger = logging.getLogger(__name__)


def _nested_id(context: dict[str, Any], key: str) -> Any:
    value = context.get(key)
    if isinstance(value, dict):
        return value.get("id")
    return getattr(value, "id", None)


def trigger_accepts(node: Node, trigger_type: TriggerType, context: dict[str, Any]) -> bool:
    """Return True when a trigger *node* of the right subtype accepts the event."""
    if node.type != NodeKind.TRIGGER or node.sub_type != trigger_type.value:
        return False

    if trigger_type in (TriggerType.CONTACT_CREATED, TriggerType.WEBHOOK):
        return True

    if trigger_type == TriggerType.TAG_ADDED:
        data: TagAddedTrigger = node.data
        return not data.value or data.value == context.get("tag_name")

    if trigger_type == TriggerType.CRM_STAGE_CHANGED:
        data: CrmStageChangedTrigger = node.data
        board_ok = not data.crm_board_id or data.crm_board_id == _nested_id(context, "board")
        stage_ok = not data.crm_stage_id or data.crm_stage_id == _nested_id(context, "stage")
        return board_ok and stage_ok

    if trigger_type == TriggerType.CONTEXT_MESSAGE:
        data: ContextMessageTrigger = node.data
        if not data.value or data.match == "any":
            return True
        text = str(context.get("message_text") or "").lower()
        value = data.value.lower()
        if data.match == "contains":
            return value in text
        if data.match == "exact":
            return text == value
        return False

    return False


class TriggerMatcher:
    """Resolves a domain event to the automations it should run, and runs them."""

    def __init__(
        self,
        contacts: ContactStore,
        catalog: AutomationCatalog,
        connections: ConnectionStore,
        runner: AutomationRunner,
    ):
        self.contacts = contacts
        self.catalog = catalog
        self.connections = connections
        self.runner = runner

    async def match(
        self,
        trigger_type: TriggerType | str,
        context: dict[str, Any],
        only: Optional[set[str]] = None,
    ) -> list[Automation]:
        """Return the automations that would fire for this event, without running them.

        *only* restricts the candidates to these automation ids.
        """
        trigger_type = TriggerType(trigger_type)
        gate = await self._gate(trigger_type, context)
        if gate is None:
            return []
        contact, _ = gate
        return await self._filter(trigger_type, contact, context, only)

    async def dispatch(
        self,
        trigger_type: TriggerType | str,
        context: dict[str, Any],
        only: Optional[set[str]] = None,
    ) -> list[RunResult]:
        """Run every matching automation sequentially and collect their results.

        *only* restricts the candidates to these automation ids.

        Raises:
            TriggerError: if the event carries no ``contact_id``.
            Catalog / store errors propagate unchanged.
        """
        trigger_type = TriggerType(trigger_type)
        gate = await self._gate(trigger_type, context)
        if gate is None:
            return []
        contact, connection = gate

        results: list[RunResult] = []
        for automation in await self._filter(trigger_type, contact, context, only):
            results.append(await self.runner.run(automation, contact, context, connection))
        logger.info(
            "Trigger %s for contact %s ran %d automation(s)",
            trigger_type.value, contact.id, len(results),
        )
        return results

    async def _gate(
        self, trigger_type: TriggerType, context: dict[str, Any]
    ) -> Optional[tuple[Contact, MessagingConnection]]:
        contact_id = context.get("contact_id")
        if contact_id is None:
            raise TriggerError(
                "Event context has no contact_id",
                trigger_type=trigger_type.value,
            )

        contact = await self.contacts.get_contact(contact_id)
        if contact is None:
            logger.info("Trigger %s: contact %s not found", trigger_type.value, contact_id)
            return None
        if contact.is_opted_out:
            logger.info("Trigger %s: contact %s opted out of automations", trigger_type.value, contact_id)
            return None

        connection = await self.connections.get_active_connection()
        if connection is None:
            logger.warning("Cannot run automations: no active messaging connection")
            return None
        return contact, connection

    async def _filter(
        self,
        trigger_type: TriggerType,
        contact: Contact,
        context: dict[str, Any],
        only: Optional[set[str]] = None,
    ) -> list[Automation]:
        matched = []
        for automation in await self.catalog.list_automations():
            if only is not None and automation.id not in only:
                continue
            if automation.status != AutomationStatus.ACTIVE:
                continue
            if automation.block_on_open_chat and contact.is_24h_window_open:
                logger.info("Automation %r blocked: chat window is open", automation.name)
                continue
            if any(trigger_accepts(n, trigger_type, context) for n in automation.nodes):
                matched.append(automation)
        return matched
