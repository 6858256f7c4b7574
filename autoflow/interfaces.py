"""Collaborator protocols the engine depends on.

The engine never talks to a database or an HTTP API directly.  Every side
effect goes through one of these structural types, so the SQLAlchemy
``Repository``, the httpx clients, and the in-memory fakes used in tests are
interchangeable.

Usage:
    runner = AutomationRunner(
        contacts=repo, catalog=repo, tasks=repo, crm=repo,
        conversations=repo, messaging=WhatsAppClient(), http=HttpClient(),
    )
"""

from datetime import datetime
from typing import Any, Optional, Protocol, runtime_checkable

from autoflow.types import (
    Automation,
    Contact,
    CrmBoard,
    CrmStage,
    DeferredTask,
    MessageTemplate,
    MessagingConnection,
    NodeStats,
)


@runtime_checkable
class ContactStore(Protocol):
    """Strongly consistent contact reads and partial updates."""

    async def get_contact(self, contact_id: int) -> Optional[Contact]:
        ...

    async def update_contact(self, contact_id: int, **fields: Any) -> Optional[Contact]:
        """Apply a partial update.  Unknown keys land in ``custom_fields``; None if missing."""
        ...

    async def find_contact_by_phone(self, phone: str) -> Optional[Contact]:
        ...

    async def create_contact(
        self,
        name: str,
        phone: str,
        tags: Optional[list[str]] = None,
        custom_fields: Optional[dict[str, Any]] = None,
    ) -> Contact:
        ...

    async def set_opt_out(self, contact_id: int, opted_out: bool) -> None:
        ...


@runtime_checkable
class AutomationCatalog(Protocol):
    async def list_automations(self) -> list[Automation]:
        ...

    async def get_automation(self, automation_id: str) -> Optional[Automation]:
        ...

    async def save_automation(self, automation: Automation) -> None:
        """Full overwrite of name, status, nodes, edges, flags and statistics."""
        ...

    async def save_stats(self, automation_id: str, stats: dict[str, NodeStats]) -> None:
        """Full overwrite of the statistics map (last writer wins)."""
        ...


@runtime_checkable
class DeferredTaskStore(Protocol):
    async def insert_pending(
        self,
        automation_id: str,
        contact_id: int,
        resume_from_node_id: str,
        execute_at: datetime,
        context: dict[str, Any],
        connection_id: Optional[str],
    ) -> DeferredTask:
        ...

    async def list_due(self, now: datetime, limit: int) -> list[DeferredTask]:
        """Pending tasks whose ``execute_at`` is at or before *now*, oldest first."""
        ...

    async def claim(self, task_id: str) -> bool:
        """Move pending → processing.  False when another worker got there first."""
        ...

    async def mark_processed(self, task_id: str) -> None:
        ...

    async def mark_failed(self, task_id: str, message: str) -> None:
        ...


@runtime_checkable
class CrmStore(Protocol):
    async def list_boards(self) -> list[CrmBoard]:
        ...

    async def get_stage(self, stage_id: str) -> Optional[CrmStage]:
        """Resolve a stage by id across every board."""
        ...

    async def move_contact_to_stage(self, contact_id: int, stage: CrmStage) -> Optional[Contact]:
        """Set the contact's stage and add the stage's ``tags_to_apply``."""
        ...


@runtime_checkable
class ConnectionStore(Protocol):
    async def get_active_connection(self) -> Optional[MessagingConnection]:
        ...

    async def get_connection(self, connection_id: str) -> Optional[MessagingConnection]:
        ...


@runtime_checkable
class ConversationLog(Protocol):
    async def append_outbound(self, contact_id: int, text: str) -> str:
        """Record an outbound automated message; returns its message id."""
        ...

    async def mark_message_failed(self, contact_id: int, message_id: str) -> None:
        ...

    async def append_inbound(self, contact_id: int, text: str) -> str:
        """Record a message received from the contact; returns its message id."""
        ...


@runtime_checkable
class MessagingChannel(Protocol):
    """Outbound messaging provider.  Every call raises ``MessagingError`` on failure."""

    async def send_text(self, connection: MessagingConnection, to: str, text: str) -> dict:
        ...

    async def send_template(
        self,
        connection: MessagingConnection,
        to: str,
        template_name: str,
        language: str,
        parameters: Optional[list[dict]] = None,
    ) -> dict:
        ...

    async def send_flow(self, connection: MessagingConnection, to: str, flow_id: str) -> dict:
        ...

    async def get_template(
        self, connection: MessagingConnection, template_id: str
    ) -> Optional[MessageTemplate]:
        ...


@runtime_checkable
class OutboundHttp(Protocol):
    async def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: Optional[str],
        timeout: float,
    ) -> tuple[int, bytes]:
        """Issue one request; returns ``(status_code, raw body)``."""
        ...
