"""Base callback protocol for automation run lifecycle hooks.

The runner fires plain ``async def cb(event: str, data: dict)`` callables at
key points of every run.  Subclass ``BaseCallback`` to receive the same events
as named methods instead.

Events and their ``data`` keys:
    run_started     automation_id, contact_id, start_node_id, resumed, depth
    node_completed  automation_id, contact_id, node_id, sub_type
    node_failed     automation_id, contact_id, node_id, sub_type, error
    run_suspended   automation_id, contact_id, node_id, deferred_task_id, execute_at
    run_completed   automation_id, contact_id, visited, step_limit_hit
    run_aborted     automation_id, contact_id, reason

Usage:
    class CountFailures(BaseCallback):
        async def on_node_failed(self, data, **kw):
            metrics.incr(data["sub_type"])

    runner = AutomationRunner(..., callbacks=[CountFailures()])
"""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class AutoflowCallback(Protocol):
    """Anything the runner can call with ``(event, data)``."""

    async def __call__(self, event: str, data: dict) -> None:
        ...


class BaseCallback:
    """Dispatches ``(event, data)`` to ``on_<event>`` with no-op defaults.

    Subclass and override only the hooks you need.
    """

    async def __call__(self, event: str, data: dict) -> None:
        handler = getattr(self, f"on_{event}", None)
        if handler is not None:
            await handler(data)

    async def on_run_started(self, data: dict, **kwargs: Any) -> None:
        pass

    async def on_node_completed(self, data: dict, **kwargs: Any) -> None:
        pass

    async def on_node_failed(self, data: dict, **kwargs: Any) -> None:
        pass

    async def on_run_suspended(self, data: dict, **kwargs: Any) -> None:
        pass

    async def on_run_completed(self, data: dict, **kwargs: Any) -> None:
        pass

    async def on_run_aborted(self, data: dict, **kwargs: Any) -> None:
        pass
