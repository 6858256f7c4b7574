"""All shared types, enums, and type aliases. Everything imports from here."""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
import uuid

from pydantic import BaseModel, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enums ──────────────────────────────────────────────────────────────

class AutomationStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    DRAFT = "draft"

class NodeKind(str, Enum):
    TRIGGER = "trigger"
    ACTION = "action"

class TriggerType(str, Enum):
    CONTACT_CREATED = "contact_created"
    TAG_ADDED = "tag_added"
    CRM_STAGE_CHANGED = "crm_stage_changed"
    CONTEXT_MESSAGE = "context_message"
    WEBHOOK = "webhook"

_TRIGGER_VALUES = {t.value for t in TriggerType}

class ActionType(str, Enum):
    SEND_MESSAGE = "send_message"
    WAIT = "wait"
    ADD_TAG = "add_tag"
    REMOVE_TAG = "remove_tag"
    MOVE_CRM_STAGE = "move_crm_stage"
    CONDITIONAL = "conditional"
    HTTP_REQUEST = "http_request"
    OPT_OUT = "opt_out"
    RANDOMIZER = "randomizer"
    FORWARD_AUTOMATION = "forward_automation"

class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"   # terminal
    FAILED = "failed"         # terminal

class RunOutcome(str, Enum):
    COMPLETED = "completed"   # dead end reached, stats persisted
    SUSPENDED = "suspended"   # wait step persisted a deferred task
    ABORTED = "aborted"       # no start node, nothing written


# ── Trigger payloads ───────────────────────────────────────────────────

class ContactCreatedTrigger(BaseModel):
    type: Literal["contact_created"] = "contact_created"

class TagAddedTrigger(BaseModel):
    type: Literal["tag_added"] = "tag_added"
    value: str = ""                     # empty = any tag

class CrmStageChangedTrigger(BaseModel):
    type: Literal["crm_stage_changed"] = "crm_stage_changed"
    crm_board_id: str = ""              # empty = any board
    crm_stage_id: str = ""              # empty = any stage

class ContextMessageTrigger(BaseModel):
    type: Literal["context_message"] = "context_message"
    match: Literal["any", "exact", "contains"] = "any"
    value: str = ""

class WebhookTrigger(BaseModel):
    type: Literal["webhook"] = "webhook"
    webhook_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    is_listening: bool = False          # next call captures a sample instead of running
    last_sample: Any = None


# ── Conditions ─────────────────────────────────────────────────────────

class ContactTagCondition(BaseModel):
    source: Literal["contact_tag"] = "contact_tag"
    operator: Literal["contains", "not_contains"] = "contains"
    value: str

class ContactFieldCondition(BaseModel):
    source: Literal["contact_field"] = "contact_field"
    field: str                          # attribute name or custom field key
    operator: Literal["is", "is_not", "contains"] = "is"
    value: str

class ConversationWindowCondition(BaseModel):
    source: Literal["conversation_window"] = "conversation_window"
    operator: Literal["is_open", "is_closed"] = "is_open"

class BusinessHoursCondition(BaseModel):
    source: Literal["business_hours"] = "business_hours"
    operator: Literal["is_within", "is_outside"] = "is_within"
    days: list[Literal["mon", "tue", "wed", "thu", "fri", "sat", "sun"]] = Field(default_factory=list)
    start_time: str = "09:00"           # "HH:MM", inclusive
    end_time: str = "18:00"             # "HH:MM", inclusive

Condition = Annotated[
    Union[
        ContactTagCondition,
        ContactFieldCondition,
        ConversationWindowCondition,
        BusinessHoursCondition,
    ],
    Field(discriminator="source"),
]


# ── Action payloads ────────────────────────────────────────────────────

class SendMessageAction(BaseModel):
    type: Literal["send_message"] = "send_message"
    sub_type: Literal["text", "template", "flow"] = "text"
    text: str = ""
    template_id: str = ""
    flow_id: str = ""
    variables: dict[str, str] = Field(default_factory=dict)

class WaitAction(BaseModel):
    type: Literal["wait"] = "wait"
    delay: int = 0
    unit: Literal["minutes", "hours", "days"] = "minutes"

class AddTagAction(BaseModel):
    type: Literal["add_tag"] = "add_tag"
    tag_name: str = ""

class RemoveTagAction(BaseModel):
    type: Literal["remove_tag"] = "remove_tag"
    tag_name: str = ""

class MoveCrmStageAction(BaseModel):
    type: Literal["move_crm_stage"] = "move_crm_stage"
    crm_board_id: str = ""
    crm_stage_id: str = ""

class ConditionalAction(BaseModel):
    type: Literal["conditional"] = "conditional"
    logic: Literal["and", "or"] = "and"
    conditions: list[Condition] = Field(default_factory=list)

class HttpHeader(BaseModel):
    key: str
    value: str

class ResponseMapping(BaseModel):
    json_path: str                      # JMESPath; plain dotted paths work as-is
    contact_field: str

class HttpRequestAction(BaseModel):
    type: Literal["http_request"] = "http_request"
    url: str = ""
    method: Literal["GET", "POST", "PUT", "DELETE"] = "GET"
    headers: list[HttpHeader] = Field(default_factory=list)
    body: str = ""
    response_mapping: list[ResponseMapping] = Field(default_factory=list)

class OptOutAction(BaseModel):
    type: Literal["opt_out"] = "opt_out"

class RandomizerAction(BaseModel):
    type: Literal["randomizer"] = "randomizer"
    branches: int = 2                   # authoring hint; routing uses branch-N edges

class ForwardAutomationAction(BaseModel):
    type: Literal["forward_automation"] = "forward_automation"
    automation_id: str = ""

NodeData = Annotated[
    Union[
        ContactCreatedTrigger,
        TagAddedTrigger,
        CrmStageChangedTrigger,
        ContextMessageTrigger,
        WebhookTrigger,
        SendMessageAction,
        WaitAction,
        AddTagAction,
        RemoveTagAction,
        MoveCrmStageAction,
        ConditionalAction,
        HttpRequestAction,
        OptOutAction,
        RandomizerAction,
        ForwardAutomationAction,
    ],
    Field(discriminator="type"),
]


# ── Graph ──────────────────────────────────────────────────────────────

class Position(BaseModel):
    x: float = 0.0
    y: float = 0.0

class Node(BaseModel):
    """One vertex of an automation graph."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: NodeKind
    sub_type: str                       # TriggerType or ActionType value; mirrors data.type
    position: Position = Field(default_factory=Position)
    data: NodeData

    @model_validator(mode="after")
    def _check_sub_type(self) -> "Node":
        if self.sub_type != self.data.type:
            raise ValueError(
                f"Node {self.id!r}: sub_type {self.sub_type!r} does not match data.type {self.data.type!r}"
            )
        expected = NodeKind.TRIGGER if self.sub_type in _TRIGGER_VALUES else NodeKind.ACTION
        if self.type != expected:
            raise ValueError(f"Node {self.id!r}: {self.sub_type!r} must be a {expected.value} node")
        return self

class Edge(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source: str
    target: str
    source_handle: Optional[str] = None  # None | "true" | "false" | "branch-<n>"

class NodeStats(BaseModel):
    total: int = 0
    success: int = 0
    error: int = 0

class Automation(BaseModel):
    """A trigger-rooted node graph plus its per-node execution counters."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    status: AutomationStatus = AutomationStatus.DRAFT
    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)
    allow_reactivation: bool = False
    block_on_open_chat: bool = False
    execution_stats: dict[str, NodeStats] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _single_trigger(self) -> "Automation":
        triggers = [n.id for n in self.nodes if n.type == NodeKind.TRIGGER]
        if len(triggers) > 1:
            raise ValueError(f"Automation {self.name!r} has {len(triggers)} trigger nodes: {triggers}")
        return self

    @property
    def trigger_node(self) -> Optional[Node]:
        return next((n for n in self.nodes if n.type == NodeKind.TRIGGER), None)

    def get_node(self, node_id: str) -> Optional[Node]:
        return next((n for n in self.nodes if n.id == node_id), None)


# ── CRM / contacts ─────────────────────────────────────────────────────

class Contact(BaseModel):
    id: int
    name: str = ""
    phone: str = ""
    tags: list[str] = Field(default_factory=list)
    crm_stage_id: Optional[str] = None
    is_24h_window_open: bool = False
    is_opted_out: bool = False
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    last_interaction: Optional[datetime] = None

class CrmStage(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str
    tags_to_apply: list[str] = Field(default_factory=list)

class CrmBoard(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    columns: list[CrmStage] = Field(default_factory=list)


# ── Messaging ──────────────────────────────────────────────────────────

class MessagingConnection(BaseModel):
    """Credentials for one WhatsApp Business phone number."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    waba_id: str
    phone_number_id: str
    api_token: str
    is_active: bool = True

class MessageTemplate(BaseModel):
    id: str
    name: str
    language: str = "en_US"
    status: str = "APPROVED"


# ── Execution ──────────────────────────────────────────────────────────

class DeferredTask(BaseModel):
    """Durable continuation of a run suspended by a wait step."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    contact_id: int
    automation_id: str
    resume_from_node_id: str
    execute_at: datetime
    context: dict[str, Any] = Field(default_factory=dict)
    connection_id: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

class RunResult(BaseModel):
    """What one walk of an automation did for one contact."""
    automation_id: str
    contact_id: int
    outcome: RunOutcome
    visited: list[str] = Field(default_factory=list)      # node ids in visit order
    deferred_task_id: Optional[str] = None
    step_limit_hit: bool = False
    error: Optional[str] = None

class PollReport(BaseModel):
    """Aggregate outcome of one deferred-task poll."""
    processed: int = 0
    failed: int = 0
    skipped: int = 0                    # lost the claim to another poller
    errors: dict[str, str] = Field(default_factory=dict)  # task id → message

class WebhookOutcome(BaseModel):
    """What an inbound webhook call did."""
    status: Literal["sample_captured", "triggered"]
    automation_id: str
    contact_id: Optional[int] = None
    contact_created: bool = False
    runs: list[RunResult] = Field(default_factory=list)

class InboundReport(BaseModel):
    """What one messaging-provider webhook delivery did."""
    processed: int = 0                  # text messages from known contacts
    unknown_senders: list[str] = Field(default_factory=list)
    failed: int = 0
    runs: list[RunResult] = Field(default_factory=list)
