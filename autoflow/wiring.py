"""Component assembly shared by the API, the CLI and the standalone poller.

Every entry point needs the same graph of objects: one store object that
satisfies all store protocols, a runner over it, a matcher over the runner,
and the inbound surfaces.  ``build_services`` builds that graph once.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

from autoflow.callbacks.logging import LoggingCallback
from autoflow.config import AutoflowConfig
from autoflow.engine.matcher import TriggerMatcher
from autoflow.engine.runner import AutomationRunner
from autoflow.interfaces import MessagingChannel, OutboundHttp
from autoflow.triggers.inbound import InboundMessageHandler
from autoflow.triggers.poller import DeferredTaskPoller
from autoflow.triggers.webhook import WebhookHandler


@dataclass
class Services:
    store: Any                          # implements every store protocol
    runner: AutomationRunner
    matcher: TriggerMatcher
    webhooks: WebhookHandler
    poller: DeferredTaskPoller
    inbound: Optional[InboundMessageHandler] = None
    session_factory: Optional[Callable] = None


def build_services(
    messaging: MessagingChannel,
    store: Any = None,
    http: OutboundHttp = None,
    session_factory: Optional[Callable] = None,
    config: AutoflowConfig = None,
    callbacks: list = None,
) -> Services:
    """Wire the engine around *store*, or a session-per-call repository when omitted."""
    config = config or AutoflowConfig()
    if store is None:
        from autoflow.db.repository import SessionScopedRepository
        if session_factory is None:
            from autoflow.db.database import async_session
            session_factory = async_session
        store = SessionScopedRepository(session_factory)
    if http is None:
        from autoflow.clients.http import HttpClient
        http = HttpClient()

    runner = AutomationRunner(
        contacts=store,
        catalog=store,
        tasks=store,
        crm=store,
        conversations=store,
        messaging=messaging,
        http=http,
        callbacks=[LoggingCallback()] if callbacks is None else callbacks,
        config=config,
    )
    matcher = TriggerMatcher(contacts=store, catalog=store, connections=store, runner=runner)
    return Services(
        store=store,
        runner=runner,
        matcher=matcher,
        webhooks=WebhookHandler(catalog=store, contacts=store, matcher=matcher),
        inbound=InboundMessageHandler(contacts=store, conversations=store, matcher=matcher),
        poller=DeferredTaskPoller(
            tasks=store,
            catalog=store,
            contacts=store,
            connections=store,
            runner=runner,
            config=config,
        ),
        session_factory=session_factory,
    )
