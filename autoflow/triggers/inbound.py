"""InboundMessageHandler — messaging-provider webhook to ``context_message``.

The provider posts ``whatsapp_business_account`` deliveries; each text
message from a known contact is logged to the conversation and fires the
``context_message`` trigger with the message body.  Senders with no
matching contact are skipped.  A failure on one message is logged and the
remaining messages still run.
"""

from __future__ import annotations

import logging
from typing import Any, Iterator

from autoflow.engine.matcher import TriggerMatcher
from autoflow.interfaces import ContactStore, ConversationLog
from autoflow.types import InboundReport, TriggerType

logger = logging.getLogger(__name__)

BUSINESS_ACCOUNT_OBJECT = "whatsapp_business_account"


def iter_text_messages(payload: Any) -> Iterator[tuple[str, str]]:
    """Yield ``(from_phone, text)`` for every text message in *payload*."""
    if not isinstance(payload, dict) or payload.get("object") != BUSINESS_ACCOUNT_OBJECT:
        return
    for entry in payload.get("entry") or []:
        if not isinstance(entry, dict):
            continue
        for change in entry.get("changes") or []:
            if not isinstance(change, dict) or change.get("field") != "messages":
                continue
            messages = (change.get("value") or {}).get("messages")
            if not isinstance(messages, list):
                continue
            for message in messages:
                if not isinstance(message, dict) or message.get("type") != "text":
                    continue
                body = (message.get("text") or {}).get("body")
                if message.get("from") and body is not None:
                    yield str(message["from"]), str(body)


class InboundMessageHandler:
    """Logs inbound text messages and dispatches ``context_message``."""

    def __init__(
        self,
        contacts: ContactStore,
        conversations: ConversationLog,
        matcher: TriggerMatcher,
    ) -> None:
        self._contacts = contacts
        self._conversations = conversations
        self._matcher = matcher

    async def handle(self, payload: Any) -> InboundReport:
        report = InboundReport()
        for phone, text in iter_text_messages(payload):
            try:
                contact = await self._contacts.find_contact_by_phone(phone)
                if contact is None:
                    logger.warning("Inbound message from unknown number %s", phone)
                    report.unknown_senders.append(phone)
                    continue
                await self._conversations.append_inbound(contact.id, text)
                report.runs += await self._matcher.dispatch(
                    TriggerType.CONTEXT_MESSAGE,
                    {"contact_id": contact.id, "message_text": text},
                )
                report.processed += 1
            except Exception:
                logger.exception("Failed to process inbound message from %s", phone)
                report.failed += 1
        return report
