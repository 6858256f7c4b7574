"""
The automation run loop.

Walks one automation graph for one contact, starting at the trigger node (or
at a deferred task's resume node), one node at a time:

    total += 1 → execute side effect → success / error → pick next node

A failing node is booked as an error and the walk carries on along the
node's route.  A failure while picking the route (e.g. the contact store
blowing up inside a conditional) ends the walk.  A ``wait`` node that
schedules a continuation suspends the run.

Every run works on a deep copy of the automation and persists its statistics
with a full overwrite when it finishes or suspends.  Two concurrent runs of
the same automation for different contacts can therefore overwrite each
other's counters (last write wins).
"""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime
from typing import Any, Callable, Optional

from autoflow.config import AutoflowConfig
from autoflow.engine.conditions import evaluate_conditions
from autoflow.engine.graph import build_routes
from autoflow.engine.steps import RunState, StepExecutor, Suspend
from autoflow.exceptions import AutoflowError
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
    Automation,
    ConditionalAction,
    Contact,
    MessagingConnection,
    Node,
    NodeStats,
    RunOutcome,
    RunResult,
)

logger = logging.getLogger(__name__)


class AutomationRunner:
    """Executes automations against contacts.

    Constructor dependencies (all injected):
        - contacts, catalog, tasks, crm, conversations: store protocols
        - messaging: MessagingChannel (e.g. WhatsAppClient)
        - http: OutboundHttp (e.g. HttpClient)
        - callbacks: ``async def cb(event, data)`` lifecycle hooks
        - config: AutoflowConfig
        - rng / clock: injectable randomness and time source
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
        callbacks: list = None,
        config: AutoflowConfig = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.contacts = contacts
        self.catalog = catalog
        self.config = config or AutoflowConfig()
        self.callbacks = callbacks or []
        self._rng = rng
        self._clock = clock
        self._background: set[asyncio.Task] = set()
        self.executor = StepExecutor(
            contacts=contacts,
            catalog=catalog,
            tasks=tasks,
            crm=crm,
            conversations=conversations,
            messaging=messaging,
            http=http,
            on_forward=self._forward,
            config=self.config,
            clock=clock,
        )

    async def run(
        self,
        automation: Automation,
        contact: Contact,
        context: Optional[dict[str, Any]] = None,
        connection: Optional[MessagingConnection] = None,
        resume_from_node_id: Optional[str] = None,
        depth: int = 0,
    ) -> RunResult:
        """Walk *automation* for *contact*.

        Args:
            automation:          Catalog copy; never mutated.
            contact:             Snapshot used for interpolation and as the run's subject.
            context:             Event payload.  Persisted verbatim by ``wait`` steps.
            connection:          Messaging credentials used by send steps.
            resume_from_node_id: Start here instead of the trigger node.
            depth:               forward_automation nesting level.

        Returns:
            RunResult with the outcome and the visited node ids.

        Raises:
            Whatever the catalog or task store raises while persisting.
        """
        working = automation.model_copy(deep=True)
        stats = working.execution_stats
        nodes = {n.id: n for n in working.nodes}
        context = dict(context or {})

        start = nodes.get(resume_from_node_id) if resume_from_node_id else working.trigger_node
        if start is None:
            reason = (
                f"resume node {resume_from_node_id!r} not found"
                if resume_from_node_id else "no trigger node"
            )
            logger.error("Automation %r (%s) cannot start: %s", working.name, working.id, reason)
            await self._fire_callbacks("run_aborted", {
                "automation_id": working.id, "contact_id": contact.id, "reason": reason,
            })
            return RunResult(
                automation_id=working.id,
                contact_id=contact.id,
                outcome=RunOutcome.ABORTED,
                error=reason,
            )

        state = RunState(
            automation=working,
            contact=contact,
            context=context,
            routes=build_routes(working.edges),
            connection=connection,
            depth=depth,
        )
        logger.info(
            "Running automation %r for contact %s from node %s",
            working.name, contact.id, start.id,
        )
        await self._fire_callbacks("run_started", {
            "automation_id": working.id,
            "contact_id": contact.id,
            "start_node_id": start.id,
            "resumed": resume_from_node_id is not None,
            "depth": depth,
        })

        step_limit_hit = False
        node: Optional[Node] = start
        while node is not None:
            if len(state.visited) >= self.config.max_steps_per_run:
                logger.error(
                    "Automation %s hit the %d-step limit for contact %s; stopping",
                    working.id, self.config.max_steps_per_run, contact.id,
                )
                step_limit_hit = True
                break

            state.visited.append(node.id)
            counters = stats.setdefault(node.id, NodeStats())
            counters.total += 1

            failed = False
            try:
                signal = await self.executor.execute(node, state)
            except Exception as exc:
                failed = True
                signal = None
                await self._record_failure(node, state, counters, exc)

            if isinstance(signal, Suspend):
                counters.success += 1
                await self.catalog.save_stats(working.id, stats)
                await self._fire_callbacks("node_completed", self._node_event(node, state))
                await self._fire_callbacks("run_suspended", {
                    "automation_id": working.id,
                    "contact_id": contact.id,
                    "node_id": node.id,
                    "deferred_task_id": signal.task.id,
                    "execute_at": signal.task.execute_at.isoformat(),
                })
                return RunResult(
                    automation_id=working.id,
                    contact_id=contact.id,
                    outcome=RunOutcome.SUSPENDED,
                    visited=state.visited,
                    deferred_task_id=signal.task.id,
                )

            try:
                next_id = await self._select_next(node, state)
            except Exception as exc:
                if not failed:
                    await self._record_failure(node, state, counters, exc)
                else:
                    logger.exception("Route selection also failed at node %s", node.id)
                break

            if not failed:
                counters.success += 1
                await self._fire_callbacks("node_completed", self._node_event(node, state))
            node = nodes.get(next_id) if next_id else None

        await self.catalog.save_stats(working.id, stats)
        await self._fire_callbacks("run_completed", {
            "automation_id": working.id,
            "contact_id": contact.id,
            "visited": list(state.visited),
            "step_limit_hit": step_limit_hit,
        })
        return RunResult(
            automation_id=working.id,
            contact_id=contact.id,
            outcome=RunOutcome.COMPLETED,
            visited=state.visited,
            step_limit_hit=step_limit_hit,
        )

    # ── Routing ──────────────────────────────────────────────────────────────

    async def _select_next(self, node: Node, state: RunState) -> Optional[str]:
        if node.sub_type == ActionType.CONDITIONAL.value:
            data: ConditionalAction = node.data
            result = await evaluate_conditions(
                data.logic,
                data.conditions,
                fetch_contact=lambda: self.contacts.get_contact(state.contact.id),
                now=self._clock() if self._clock else None,
                timezone=self.config.business_timezone,
            )
            return state.routes.conditional(node.id, result)
        if node.sub_type == ActionType.RANDOMIZER.value:
            return state.routes.randomized(node.id, self._rng)
        return state.routes.linear(node.id)

    # ── Forwarding ───────────────────────────────────────────────────────────

    def _forward(self, target: Automation, state: RunState) -> None:
        """Start *target* for the same contact without awaiting it."""
        depth = state.depth + 1
        if depth > self.config.max_forward_depth:
            logger.warning(
                "Not forwarding contact %s to automation %s: depth %d exceeds %d",
                state.contact.id, target.id, depth, self.config.max_forward_depth,
            )
            return
        task = asyncio.create_task(
            self.run(target, state.contact, state.context, state.connection, depth=depth),
            name=f"forward:{target.id}:{state.contact.id}",
        )
        self._background.add(task)
        task.add_done_callback(self._forward_done)

    def _forward_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Forwarded run %s failed: %s", task.get_name(), exc)

    async def drain(self) -> None:
        """Wait for every forwarded run started so far (and the ones they start)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ── Bookkeeping ──────────────────────────────────────────────────────────

    async def _record_failure(
        self, node: Node, state: RunState, counters: NodeStats, exc: Exception
    ) -> None:
        counters.error += 1
        if isinstance(exc, AutoflowError):
            logger.warning(
                "Node %s (%s) failed in automation %s: %s",
                node.id, node.sub_type, state.automation.id, exc,
            )
        else:
            logger.exception(
                "Node %s (%s) failed in automation %s",
                node.id, node.sub_type, state.automation.id,
            )
        await self._fire_callbacks("node_failed", {
            **self._node_event(node, state),
            "error": str(exc),
        })

    @staticmethod
    def _node_event(node: Node, state: RunState) -> dict:
        return {
            "automation_id": state.automation.id,
            "contact_id": state.contact.id,
            "node_id": node.id,
            "sub_type": node.sub_type,
        }

    async def _fire_callbacks(self, event: str, data: dict) -> None:
        """Invoke all registered callbacks for a lifecycle event."""
        for cb in self.callbacks:
            try:
                result = cb(event, data)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as cb_exc:
                logger.warning("Callback error on '%s': %s", event, cb_exc)
