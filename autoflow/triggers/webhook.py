"""WebhookHandler — adapter from an inbound webhook call to trigger dispatch.

Routing is by the ``webhook_id`` stored on an automation's webhook trigger
node; only that automation runs for the call.  A trigger in listening mode
captures the request body as a sample instead of running anything.
"""

from __future__ import annotations

import logging
from typing import Any

from autoflow.engine.matcher import TriggerMatcher
from autoflow.exceptions import TriggerError, WebhookNotFoundError
from autoflow.interfaces import AutomationCatalog, ContactStore
from autoflow.types import Automation, Node, TriggerType, WebhookOutcome, WebhookTrigger

logger = logging.getLogger(__name__)

_RESERVED_KEYS = {"phone", "name", "tags"}


class WebhookHandler:
    """Resolves an inbound webhook to its automation, contact and triggers."""

    def __init__(
        self,
        catalog: AutomationCatalog,
        contacts: ContactStore,
        matcher: TriggerMatcher,
    ) -> None:
        self._catalog = catalog
        self._contacts = contacts
        self._matcher = matcher

    async def handle(self, webhook_id: str, body: Any) -> WebhookOutcome:
        """Capture a sample or fire the ``webhook`` trigger for *body*.

        Args:
            webhook_id: Id from the automation's webhook trigger node.
            body:       Parsed JSON request body.  Must be an object with a
                        ``phone`` key unless the trigger is listening.

        Raises:
            WebhookNotFoundError: no automation owns *webhook_id*.
            TriggerError: the body is not an object or has no ``phone``.
        """
        automation, node = await self._find(webhook_id)
        trigger: WebhookTrigger = node.data

        if trigger.is_listening:
            trigger.last_sample = body
            trigger.is_listening = False
            await self._catalog.save_automation(automation)
            logger.info("Webhook sample captured for automation %r", automation.name)
            return WebhookOutcome(status="sample_captured", automation_id=automation.id)

        if not isinstance(body, dict):
            raise TriggerError("Webhook body must be a JSON object", trigger_type="webhook")
        phone = body.get("phone")
        if not phone:
            raise TriggerError(
                'Request body must contain a "phone" property for execution',
                trigger_type="webhook",
            )
        phone = str(phone)

        contact = await self._contacts.find_contact_by_phone(phone)
        created = contact is None
        if created:
            tags = body.get("tags") or []
            contact = await self._contacts.create_contact(
                name=body.get("name") or f"Webhook contact {phone[-4:]}",
                phone=phone,
                tags=[str(t) for t in tags] if isinstance(tags, list) else [str(tags)],
                custom_fields={k: v for k, v in body.items() if k not in _RESERVED_KEYS},
            )
            logger.info("Webhook %s created contact %s", webhook_id, contact.id)

        runs = await self._matcher.dispatch(
            TriggerType.WEBHOOK,
            {"contact_id": contact.id, "webhook_id": webhook_id, "webhook": body},
            only={automation.id},
        )
        if created:
            runs += await self._matcher.dispatch(
                TriggerType.CONTACT_CREATED, {"contact_id": contact.id}
            )
            for tag in contact.tags:
                runs += await self._matcher.dispatch(
                    TriggerType.TAG_ADDED, {"contact_id": contact.id, "tag_name": tag}
                )

        return WebhookOutcome(
            status="triggered",
            automation_id=automation.id,
            contact_id=contact.id,
            contact_created=created,
            runs=runs,
        )

    async def _find(self, webhook_id: str) -> tuple[Automation, Node]:
        for automation in await self._catalog.list_automations():
            for node in automation.nodes:
                if (
                    node.sub_type == TriggerType.WEBHOOK.value
                    and isinstance(node.data, WebhookTrigger)
                    and node.data.webhook_id == webhook_id
                ):
                    return automation, node
        raise WebhookNotFoundError(
            f"No automation found for webhook {webhook_id!r}", webhook_id=webhook_id
        )
