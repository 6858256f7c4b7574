"""autoflow — trigger-driven automation workflows for a messaging CRM.

Usage:
    from autoflow.engine import AutomationRunner, TriggerMatcher

    runner = AutomationRunner(contacts=repo, catalog=repo, tasks=repo, crm=repo,
                              conversations=repo, messaging=WhatsAppClient(), http=HttpClient())
    results = await TriggerMatcher(repo, repo, repo, runner).dispatch("tag_added", {"contact_id": 7, "tag_name": "vip"})
"""

from autoflow.types import (
    Automation, Node, Edge, NodeStats, Contact, CrmBoard, CrmStage,
    DeferredTask, MessagingConnection, RunResult, PollReport,
    AutomationStatus, NodeKind, TriggerType, ActionType, RunOutcome, TaskStatus,
)
from autoflow.exceptions import (
    AutoflowError, ConfigurationError, StepError,
    MessagingError, HttpActionError, TriggerError, WebhookNotFoundError,
    DeferredTaskError,
)
from autoflow.version import __version__

__all__ = [
    "Automation", "Node", "Edge", "NodeStats", "Contact", "CrmBoard", "CrmStage",
    "DeferredTask", "MessagingConnection", "RunResult", "PollReport",
    "AutomationStatus", "NodeKind", "TriggerType", "ActionType", "RunOutcome", "TaskStatus",
    "AutoflowError", "ConfigurationError", "StepError",
    "MessagingError", "HttpActionError", "TriggerError", "WebhookNotFoundError",
    "DeferredTaskError",
    "__version__",
]
