"""
Per-node side effects.

``StepExecutor.execute`` runs exactly one node, once.  There is no retry at
this layer; any exception escapes to the runner, which books it as that
node's error.  Data-integrity gaps (missing template, stage, target
automation) are logged and treated as a successful no-op.

A ``wait`` node returns a ``Suspend`` signal carrying the persisted deferred
task; every other node returns None.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import jmespath
from jmespath.exceptions import JMESPathError

from autoflow.config import AutoflowConfig
from autoflow.engine.graph import RouteTable
from autoflow.engine.interpolate import interpolate
from autoflow.exceptions import ConfigurationError, HttpActionError
from autoflow.interfaces import (
    AutomationCatalog,
    ContactStore,
    ConversationLog,
    CrmStore,
    DeferredTaskStore,
    MessagingChannel,
    OutboundHttp,
)
from autoflow.types import (
    ActionType,
    AddTagAction,
    Automation,
    Contact,
    DeferredTask,
    ForwardAutomationAction,
    HttpRequestAction,
    MessagingConnection,
    MoveCrmStageAction,
    Node,
    NodeKind,
    RemoveTagAction,
    SendMessageAction,
    WaitAction,
)

logger = logging.getLogger(__name__)

_WAIT_UNITS = {
    "minutes": timedelta(minutes=1),
    "hours": timedelta(hours=1),
    "days": timedelta(days=1),
}


@dataclass
class RunState:
    """Everything one walk needs beyond the node itself."""

    automation: Automation                  # the run's private deep copy
    contact: Contact                        # snapshot taken when the run started
    context: dict[str, Any]                 # event payload; what a deferred task persists
    routes: RouteTable
    connection: Optional[MessagingConnection] = None
    depth: int = 0                          # forward_automation nesting level
    visited: list[str] = field(default_factory=list)

    @property
    def variables(self) -> dict[str, Any]:
        """Interpolation context: ``{"contact": {...}, **event payload}``."""
        return {"contact": self.contact.model_dump(mode="json"), **self.context}


@dataclass
class Suspend:
    """Returned by a ``wait`` step once its continuation is durable."""

    task: DeferredTask


class StepExecutor:
    """Executes the side effect of a single automation node.

    ``on_forward(target, state)`` is supplied by the runner; it schedules a
    detached run of *target* for the same contact.
    """

    def __init__(
        self,
        contacts: ContactStore,
        catalog: AutomationCatalog,
        tasks: DeferredTaskStore,
        crm: CrmStore,
        conversations: ConversationLog,
        messaging: MessagingChannel,
        http: OutboundHttp,
        on_forward: Optional[Callable[[Automation, RunState], None]] = None,
        config: AutoflowConfig = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.contacts = contacts
        self.catalog = catalog
        self.tasks = tasks
        self.crm = crm
        self.conversations = conversations
        self.messaging = messaging
        self.http = http
        self.on_forward = on_forward
        self.config = config or AutoflowConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def execute(self, node: Node, state: RunState) -> Optional[Suspend]:
        """Run *node*'s side effect.  Raises whatever the collaborator raised."""
        if node.type == NodeKind.TRIGGER:
            return None
        handler = getattr(self, _HANDLERS[ActionType(node.sub_type)])
        return await handler(node, state)

    # ── Messaging ────────────────────────────────────────────────────────────

    def _require_connection(self, state: RunState) -> MessagingConnection:
        if state.connection is None:
            raise ConfigurationError(
                "No messaging connection for this run",
                details={"automation_id": state.automation.id},
            )
        return state.connection

    async def _send_message(self, node: Node, state: RunState) -> None:
        data: SendMessageAction = node.data
        if data.sub_type == "text":
            if data.text:
                await self._send_text(interpolate(data.text, state.variables), state)
        elif data.sub_type == "template":
            if data.template_id:
                await self._send_template(data, state)
        elif data.sub_type == "flow":
            if data.flow_id:
                connection = self._require_connection(state)
                await self.messaging.send_flow(connection, state.contact.phone, data.flow_id)

    async def _send_text(self, text: str, state: RunState) -> None:
        """Free-form send, only inside the 24-hour window, mirrored into the conversation log."""
        connection = self._require_connection(state)
        contact = await self.contacts.get_contact(state.contact.id) or state.contact
        if not contact.is_24h_window_open:
            logger.warning(
                "Skipping text to contact %s: 24h window closed (automation %s)",
                contact.id, state.automation.id,
            )
            return

        message_id = await self.conversations.append_outbound(contact.id, text)
        try:
            await self.messaging.send_text(connection, contact.phone, text)
        except Exception:
            await self.conversations.mark_message_failed(contact.id, message_id)
            raise

    async def _send_template(self, data: SendMessageAction, state: RunState) -> None:
        connection = self._require_connection(state)
        template = await self.messaging.get_template(connection, data.template_id)
        if template is None:
            logger.error(
                "Template %s not found or not approved (automation %s)",
                data.template_id, state.automation.id,
            )
            return
        await self.messaging.send_template(
            connection,
            state.contact.phone,
            template_name=template.name,
            language=template.language,
            parameters=[],
        )

    # ── Suspension ───────────────────────────────────────────────────────────

    async def _wait(self, node: Node, state: RunState) -> Optional[Suspend]:
        data: WaitAction = node.data
        execute_at = self._clock() + data.delay * _WAIT_UNITS[data.unit]
        resume_from = state.routes.linear(node.id)
        if not resume_from:
            logger.debug("Wait node %s has no successor; nothing scheduled", node.id)
            return None

        task = await self.tasks.insert_pending(
            automation_id=state.automation.id,
            contact_id=state.contact.id,
            resume_from_node_id=resume_from,
            execute_at=execute_at,
            context=state.context,
            connection_id=state.connection.id if state.connection else None,
        )
        logger.info(
            "Contact %s suspended in automation %s until %s",
            state.contact.id, state.automation.id, execute_at.isoformat(),
        )
        return Suspend(task=task)

    # ── Contact mutations ────────────────────────────────────────────────────

    async def _mutate_tag(self, node: Node, state: RunState, add: bool) -> None:
        data: AddTagAction | RemoveTagAction = node.data
        if not data.tag_name:
            return
        tag = interpolate(data.tag_name, state.variables)
        contact = await self.contacts.get_contact(state.contact.id)
        if contact is None:
            logger.warning("Contact %s disappeared before tag update", state.contact.id)
            return
        if add:
            tags = contact.tags if tag in contact.tags else [*contact.tags, tag]
        else:
            tags = [t for t in contact.tags if t != tag]
        await self.contacts.update_contact(contact.id, tags=tags)

    async def _add_tag(self, node: Node, state: RunState) -> None:
        await self._mutate_tag(node, state, add=True)

    async def _remove_tag(self, node: Node, state: RunState) -> None:
        await self._mutate_tag(node, state, add=False)

    async def _move_crm_stage(self, node: Node, state: RunState) -> None:
        data: MoveCrmStageAction = node.data
        if not data.crm_stage_id:
            return
        stage = await self.crm.get_stage(data.crm_stage_id)
        if stage is None:
            logger.error("CRM stage %s not found for move action", data.crm_stage_id)
            return
        await self.crm.move_contact_to_stage(state.contact.id, stage)

    async def _opt_out(self, node: Node, state: RunState) -> None:
        await self.contacts.set_opt_out(state.contact.id, True)

    # ── Routing-only nodes ───────────────────────────────────────────────────

    async def _noop(self, node: Node, state: RunState) -> None:
        return None

    # ── Forwarding ───────────────────────────────────────────────────────────

    async def _forward_automation(self, node: Node, state: RunState) -> None:
        data: ForwardAutomationAction = node.data
        if not data.automation_id:
            return
        target = await self.catalog.get_automation(data.automation_id)
        if target is None:
            logger.warning("Forward target automation %s not found", data.automation_id)
            return
        if self.on_forward is None:
            raise ConfigurationError("forward_automation requires a runner")
        self.on_forward(target, state)

    # ── Outbound HTTP ────────────────────────────────────────────────────────

    async def _http_request(self, node: Node, state: RunState) -> None:
        data: HttpRequestAction = node.data
        if not data.url:
            return
        variables = state.variables
        url = interpolate(data.url, variables)
        body = interpolate(data.body, variables) if data.body else None
        headers = {"Content-Type": "application/json"}
        for header in data.headers:
            if header.key and header.value:
                headers[header.key] = interpolate(header.value, variables)

        status, content = await self.http.request(
            data.method, url, headers, body, self.config.http_action_timeout_seconds
        )
        if not 200 <= status < 300:
            raise HttpActionError(
                f"{data.method} {url} returned HTTP {status}",
                status_code=status,
                node_id=node.id,
            )
        if not data.response_mapping:
            return

        try:
            payload = json.loads(content)
        except (json.JSONDecodeError, ValueError) as exc:
            raise HttpActionError(
                f"{data.method} {url} returned a non-JSON body",
                status_code=status,
                node_id=node.id,
            ) from exc

        update: dict[str, Any] = {}
        for mapping in data.response_mapping:
            try:
                value = jmespath.search(mapping.json_path, payload)
            except JMESPathError as exc:
                raise HttpActionError(
                    f"Invalid response path {mapping.json_path!r}: {exc}",
                    status_code=status,
                    node_id=node.id,
                ) from exc
            if value is not None:
                update[mapping.contact_field] = value
        if update:
            await self.contacts.update_contact(state.contact.id, **update)


# Every action type must have exactly one handler method.
_HANDLERS: dict[ActionType, str] = {
    ActionType.SEND_MESSAGE: "_send_message",
    ActionType.WAIT: "_wait",
    ActionType.ADD_TAG: "_add_tag",
    ActionType.REMOVE_TAG: "_remove_tag",
    ActionType.MOVE_CRM_STAGE: "_move_crm_stage",
    ActionType.CONDITIONAL: "_noop",
    ActionType.HTTP_REQUEST: "_http_request",
    ActionType.OPT_OUT: "_opt_out",
    ActionType.RANDOMIZER: "_noop",
    ActionType.FORWARD_AUTOMATION: "_forward_automation",
}

_unhandled = set(ActionType) - set(_HANDLERS)
if _unhandled:
    raise RuntimeError(f"unhandled action types: {sorted(t.value for t in _unhandled)}")
