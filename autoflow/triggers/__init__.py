"""Inbound surfaces: webhook calls, provider messages and the deferred-task poller."""

from autoflow.triggers.inbound import InboundMessageHandler
from autoflow.triggers.poller import DeferredTaskPoller
from autoflow.triggers.webhook import WebhookHandler

__all__ = ["DeferredTaskPoller", "InboundMessageHandler", "WebhookHandler"]
