"""Test fixtures: in-memory stores, fake messaging and HTTP, graph builders.

All tests should use these fixtures for consistency.  The fakes implement
the store protocols in ``autoflow.interfaces`` with plain dicts and hand
out copies, so a test sees the same stale-snapshot behaviour the database
repository gives.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import pytest

from autoflow.config import AutoflowConfig
from autoflow.engine.matcher import TriggerMatcher
from autoflow.engine.runner import AutomationRunner
from autoflow.exceptions import MessagingError
from autoflow.types import (
    Automation,
    AutomationStatus,
    Contact,
    CrmBoard,
    CrmStage,
    DeferredTask,
    Edge,
    MessageTemplate,
    MessagingConnection,
    Node,
    NodeKind,
    NodeStats,
    TaskStatus,
)

# Monday, 12:00 UTC
NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


# ── Graph builders ────────────────────────────────────────────────────────────

def trigger(kind: str = "contact_created", id: str = "t", **data: Any) -> Node:
    return Node(id=id, type=NodeKind.TRIGGER, sub_type=kind, data={"type": kind, **data})


def action(id: str, kind: str, **data: Any) -> Node:
    """Action node; ``data`` may carry its own ``sub_type`` (send_message)."""
    return Node(id=id, type=NodeKind.ACTION, sub_type=kind, data={"type": kind, **data})


def edge(source: str, target: str, handle: Optional[str] = None) -> Edge:
    return Edge(id=f"{source}->{target}:{handle}", source=source, target=target, source_handle=handle)


def chain(*node_ids: str) -> list[Edge]:
    """Unlabelled edges linking the ids in order."""
    return [edge(a, b) for a, b in zip(node_ids, node_ids[1:])]


def automation(nodes: list[Node], edges: list[Edge], **kwargs: Any) -> Automation:
    kwargs.setdefault("name", "test automation")
    kwargs.setdefault("status", AutomationStatus.ACTIVE)
    return Automation(nodes=nodes, edges=edges, **kwargs)


# ── Fake infrastructure ───────────────────────────────────────────────────────

def _digits(phone: str) -> str:
    return re.sub(r"\D", "", phone or "")


_CONTACT_FIELDS = set(Contact.model_fields) - {"id"}


class InMemoryStore:
    """Every store protocol over plain dicts — no DB, no SQLAlchemy session."""

    def __init__(self) -> None:
        self.automations: dict[str, Automation] = {}
        self.contacts: dict[int, Contact] = {}
        self.boards: list[CrmBoard] = []
        self.connections: dict[str, MessagingConnection] = {}
        self.tasks: dict[str, DeferredTask] = {}
        self.messages: list[dict] = []
        self.stats_writes: list[str] = []
        self._next_id = 1

    # ── seeding helpers ──
    def add_automation(self, a: Automation) -> Automation:
        self.automations[a.id] = a.model_copy(deep=True)
        return a

    def add_contact(self, **fields: Any) -> Contact:
        if "id" not in fields:
            fields["id"] = self._next_id
        self._next_id = max(self._next_id, fields["id"]) + 1
        contact = Contact(**fields)
        self.contacts[contact.id] = contact
        return contact.model_copy(deep=True)

    def add_connection(self, **fields: Any) -> MessagingConnection:
        fields.setdefault("waba_id", "waba-1")
        fields.setdefault("phone_number_id", "pn-1")
        fields.setdefault("api_token", "token")
        connection = MessagingConnection(**fields)
        self.connections[connection.id] = connection
        return connection

    # ── AutomationCatalog ──
    async def list_automations(self) -> list[Automation]:
        return [a.model_copy(deep=True) for a in self.automations.values()]

    async def get_automation(self, automation_id: str) -> Optional[Automation]:
        a = self.automations.get(automation_id)
        return a.model_copy(deep=True) if a else None

    async def save_automation(self, a: Automation) -> Automation:
        self.automations[a.id] = a.model_copy(deep=True)
        return a

    async def save_stats(self, automation_id: str, stats: dict[str, NodeStats]) -> None:
        self.stats_writes.append(automation_id)
        if automation_id in self.automations:
            self.automations[automation_id].execution_stats = {
                k: v.model_copy() for k, v in stats.items()
            }

    # ── ContactStore ──
    async def get_contact(self, contact_id: int) -> Optional[Contact]:
        c = self.contacts.get(contact_id)
        return c.model_copy(deep=True) if c else None

    async def update_contact(self, contact_id: int, **fields: Any) -> Optional[Contact]:
        c = self.contacts.get(contact_id)
        if c is None:
            return None
        custom = dict(c.custom_fields)
        for key, value in fields.items():
            if key == "custom_fields":
                custom.update(value or {})
            elif key in _CONTACT_FIELDS:
                setattr(c, key, value)
            else:
                custom[key] = value
        c.custom_fields = custom
        return c.model_copy(deep=True)

    async def find_contact_by_phone(self, phone: str) -> Optional[Contact]:
        wanted = _digits(phone)
        for c in self.contacts.values():
            if wanted and _digits(c.phone) == wanted:
                return c.model_copy(deep=True)
        return None

    async def create_contact(
        self,
        name: str,
        phone: str,
        tags: Optional[list[str]] = None,
        custom_fields: Optional[dict[str, Any]] = None,
    ) -> Contact:
        return self.add_contact(
            name=name, phone=phone, tags=list(tags or []), custom_fields=dict(custom_fields or {})
        )

    async def set_opt_out(self, contact_id: int, opted_out: bool) -> None:
        if contact_id in self.contacts:
            self.contacts[contact_id].is_opted_out = opted_out

    # ── CrmStore ──
    async def list_boards(self) -> list[CrmBoard]:
        return [b.model_copy(deep=True) for b in self.boards]

    async def get_stage(self, stage_id: str) -> Optional[CrmStage]:
        for board in self.boards:
            for stage in board.columns:
                if stage.id == stage_id:
                    return stage.model_copy()
        return None

    async def move_contact_to_stage(self, contact_id: int, stage: CrmStage) -> Optional[Contact]:
        c = self.contacts.get(contact_id)
        if c is None:
            return None
        c.crm_stage_id = stage.id
        c.tags = c.tags + [t for t in stage.tags_to_apply if t not in c.tags]
        return c.model_copy(deep=True)

    # ── ConnectionStore ──
    async def get_active_connection(self) -> Optional[MessagingConnection]:
        return next((c for c in self.connections.values() if c.is_active), None)

    async def get_connection(self, connection_id: str) -> Optional[MessagingConnection]:
        return self.connections.get(connection_id)

    # ── ConversationLog ──
    async def append_outbound(self, contact_id: int, text: str) -> str:
        message_id = str(uuid.uuid4())
        self.messages.append({"id": message_id, "contact_id": contact_id, "text": text, "status": "sent"})
        return message_id

    async def append_inbound(self, contact_id: int, text: str) -> str:
        message_id = str(uuid.uuid4())
        self.messages.append({
            "id": message_id, "contact_id": contact_id, "text": text,
            "status": "delivered", "direction": "inbound",
        })
        return message_id

    async def mark_message_failed(self, contact_id: int, message_id: str) -> None:
        for m in self.messages:
            if m["id"] == message_id and m["contact_id"] == contact_id:
                m["status"] = "failed"

    # ── DeferredTaskStore ──
    async def insert_pending(
        self,
        automation_id: str,
        contact_id: int,
        resume_from_node_id: str,
        execute_at: datetime,
        context: dict[str, Any],
        connection_id: Optional[str],
    ) -> DeferredTask:
        task = DeferredTask(
            automation_id=automation_id,
            contact_id=contact_id,
            resume_from_node_id=resume_from_node_id,
            execute_at=execute_at,
            context=dict(context),
            connection_id=connection_id,
        )
        self.tasks[task.id] = task
        return task.model_copy(deep=True)

    async def list_due(self, now: datetime, limit: int) -> list[DeferredTask]:
        due = sorted(
            (t for t in self.tasks.values() if t.status == TaskStatus.PENDING and t.execute_at <= now),
            key=lambda t: t.execute_at,
        )
        return [t.model_copy(deep=True) for t in due[:limit]]

    async def claim(self, task_id: str) -> bool:
        task = self.tasks.get(task_id)
        if task is None or task.status != TaskStatus.PENDING:
            return False
        task.status = TaskStatus.PROCESSING
        return True

    async def mark_processed(self, task_id: str) -> None:
        self.tasks[task_id].status = TaskStatus.PROCESSED

    async def mark_failed(self, task_id: str, message: str) -> None:
        self.tasks[task_id].status = TaskStatus.FAILED
        self.tasks[task_id].error_message = message


class FakeMessaging:
    """Records every send; ``fail=True`` makes sends raise MessagingError."""

    def __init__(self, templates: Optional[list[MessageTemplate]] = None, fail: bool = False) -> None:
        self.sent: list[dict] = []
        self.templates = {t.id: t for t in templates or []}
        self.fail = fail

    def _record(self, **entry: Any) -> dict:
        if self.fail:
            raise MessagingError("provider rejected the message", code="131047")
        self.sent.append(entry)
        return {"messages": [{"id": f"wamid.{len(self.sent)}"}]}

    async def send_text(self, connection, to, text):
        return self._record(kind="text", to=to, text=text)

    async def send_template(self, connection, to, template_name, language, parameters=None):
        return self._record(kind="template", to=to, name=template_name, language=language)

    async def send_flow(self, connection, to, flow_id):
        return self._record(kind="flow", to=to, flow_id=flow_id)

    async def get_template(self, connection, template_id):
        t = self.templates.get(template_id)
        return t if t is not None and t.status == "APPROVED" else None


class FakeHttp:
    """Returns queued ``(status, body)`` pairs and records each request."""

    def __init__(self, *responses: tuple[int, bytes]) -> None:
        self.responses = list(responses) or [(200, b"{}")]
        self.requests: list[dict] = []

    async def request(self, method, url, headers, body, timeout):
        self.requests.append(
            {"method": method, "url": url, "headers": headers, "body": body, "timeout": timeout}
        )
        return self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def config():
    """Test configuration with safe defaults."""
    return AutoflowConfig(
        database_url="sqlite+aiosqlite://",
        max_steps_per_run=100,
        max_forward_depth=5,
        business_timezone="UTC",
        cron_secret="test-cron-secret",
        meta_verify_token="verify-me",
    )


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def connection(store):
    return store.add_connection(id="conn-1", name="main line")


@pytest.fixture
def messaging():
    return FakeMessaging(templates=[MessageTemplate(id="tpl-1", name="welcome", language="pt_BR")])


@pytest.fixture
def http():
    return FakeHttp()


@pytest.fixture
def events():
    """List that collects (event, data) pairs from the runner's callbacks."""
    return []


@pytest.fixture
def runner(store, messaging, http, config, events):
    async def record(event: str, data: dict) -> None:
        events.append((event, data))

    return AutomationRunner(
        contacts=store,
        catalog=store,
        tasks=store,
        crm=store,
        conversations=store,
        messaging=messaging,
        http=http,
        callbacks=[record],
        config=config,
        clock=lambda: NOW,
    )


@pytest.fixture
def matcher(store, runner):
    return TriggerMatcher(contacts=store, catalog=store, connections=store, runner=runner)
