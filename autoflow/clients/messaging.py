"""
WhatsApp Cloud API client (Meta Graph API).

Every call takes the ``MessagingConnection`` to send from, so one client
instance serves any number of phone numbers.  All sends go to
``POST /{phone_number_id}/messages`` with the connection's bearer token.

Docs: https://developers.facebook.com/docs/whatsapp/cloud-api
"""

import logging
import uuid
from typing import Any, Optional

import httpx

from autoflow.config import AutoflowConfig
from autoflow.exceptions import MessagingError
from autoflow.types import MessageTemplate, MessagingConnection

logger = logging.getLogger(__name__)

FLOW_MESSAGE_VERSION = "3"


def _error_message(payload: Any, default: str) -> tuple[str, str]:
    """Pull (message, code) out of a Graph API error body."""
    error = payload.get("error", payload) if isinstance(payload, dict) else payload
    if not isinstance(error, dict):
        return (error if isinstance(error, str) and error else default), ""
    message = error.get("message") if isinstance(error.get("message"), str) else default
    return message, str(error.get("code", ""))


class WhatsAppClient:
    """Sends text, template and interactive-flow messages via the Graph API."""

    def __init__(
        self,
        config: AutoflowConfig = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or AutoflowConfig()
        self.base_url = f"{self.config.graph_base_url.rstrip('/')}/{self.config.graph_api_version}"
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.config.messaging_timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "WhatsAppClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _call(
        self,
        method: str,
        path: str,
        connection: MessagingConnection,
        failure: str,
        **kwargs: Any,
    ) -> dict:
        client = await self._get_client()
        headers = {
            "Authorization": f"Bearer {connection.api_token}",
            "Content-Type": "application/json",
        }
        try:
            response = await client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            raise MessagingError(f"{failure}: request timed out") from exc
        except httpx.HTTPError as exc:
            raise MessagingError(f"{failure}: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.is_error:
            message, code = _error_message(payload, failure)
            logger.error("Graph API %s %s failed (%d): %s", method, path, response.status_code, payload)
            raise MessagingError(message, code=code, details={"status_code": response.status_code})
        return payload

    async def _send(self, connection: MessagingConnection, to: str, body: dict, failure: str) -> dict:
        payload = {"messaging_product": "whatsapp", "to": to, **body}
        result = await self._call(
            "POST", f"/{connection.phone_number_id}/messages", connection, failure, json=payload,
        )
        message_id = (result.get("messages") or [{}])[0].get("id")
        logger.info("WhatsApp %s message sent to %s: %s", body.get("type"), to, message_id)
        return result

    # ── MessagingChannel ─────────────────────────────────────────────────────

    async def send_text(self, connection: MessagingConnection, to: str, text: str) -> dict:
        return await self._send(
            connection, to,
            {"type": "text", "text": {"preview_url": True, "body": text}},
            "Failed to send text message",
        )

    async def send_template(
        self,
        connection: MessagingConnection,
        to: str,
        template_name: str,
        language: str,
        parameters: Optional[list[dict]] = None,
    ) -> dict:
        template = {
            "name": template_name,
            "language": {"code": language},
            "components": parameters or [],
        }
        return await self._send(
            connection, to, {"type": "template", "template": template}, "Failed to send template",
        )

    async def send_flow(self, connection: MessagingConnection, to: str, flow_id: str) -> dict:
        interactive = {
            "type": "flow",
            "body": {"text": "Tap to start."},
            "action": {
                "name": "flow",
                "parameters": {
                    "flow_message_version": FLOW_MESSAGE_VERSION,
                    "flow_token": str(uuid.uuid4()),
                    "flow_id": flow_id,
                    "flow_cta": "Open",
                    "flow_action": "navigate",
                },
            },
        }
        return await self._send(
            connection, to, {"type": "interactive", "interactive": interactive}, "Failed to send flow",
        )

    async def list_templates(self, connection: MessagingConnection) -> list[MessageTemplate]:
        result = await self._call(
            "GET",
            f"/{connection.waba_id}/message_templates",
            connection,
            "Failed to list templates",
            params={"fields": "id,name,status,language", "limit": 100},
        )
        return [
            MessageTemplate(
                id=str(t["id"]),
                name=t.get("name", ""),
                language=t.get("language", "en_US"),
                status=t.get("status", ""),
            )
            for t in result.get("data", [])
            if "id" in t
        ]

    async def get_template(
        self, connection: MessagingConnection, template_id: str
    ) -> Optional[MessageTemplate]:
        """Approved template with this id, or None."""
        for template in await self.list_templates(connection):
            if template.id == template_id and template.status == "APPROVED":
                return template
        return None
