"""Typed exception hierarchy. Every error autoflow can raise."""


class AutoflowError(Exception):
    """Base exception for all autoflow errors."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(AutoflowError):
    """A required collaborator or setting is missing."""
    pass


# ── Steps ───────────────────────────────────────────────────────────────────


class StepError(AutoflowError):
    """A single node's side effect failed."""
    def __init__(self, message: str, node_id: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.node_id = node_id


class MessagingError(StepError):
    """The messaging provider rejected or failed to deliver a message."""
    def __init__(self, message: str, code: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.code = code


class HttpActionError(StepError):
    """An http_request step got a non-2xx response or an unparseable body."""
    def __init__(self, message: str, status_code: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code


# ── Triggers ────────────────────────────────────────────────────────────────


class TriggerError(AutoflowError):
    """An inbound trigger could not be resolved or fired."""
    def __init__(self, message: str, trigger_type: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.trigger_type = trigger_type


class WebhookNotFoundError(TriggerError):
    """No automation owns a webhook trigger with the given id."""
    def __init__(self, message: str, webhook_id: str = ""):
        super().__init__(message, trigger_type="webhook")
        self.webhook_id = webhook_id


class DeferredTaskError(AutoflowError):
    """A deferred task could not be resumed."""
    def __init__(self, message: str, task_id: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.task_id = task_id
