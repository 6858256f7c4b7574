"""Structured JSON logging callback for automation run events."""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from autoflow.callbacks.base import BaseCallback

logger = logging.getLogger("autoflow.audit")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _flatten(data: dict) -> dict:
    return {
        k: (v if isinstance(v, (int, float, bool)) or v is None else str(v)[:200])
        for k, v in data.items()
    }


class LoggingCallback(BaseCallback):
    """Emits one self-contained JSON log line per lifecycle event.

    Each line carries ``event``, an ISO-8601 UTC ``ts`` and the event's data.
    Log level: INFO for normal events, WARNING for node failures and aborts.
    Logger name: autoflow.audit (configure in your logging setup)

        runner = AutomationRunner(..., callbacks=[LoggingCallback()])
    """

    def _emit(self, level: int, event: str, data: dict) -> None:
        logger.log(level, json.dumps({"event": event, "ts": _now(), **_flatten(data)}))

    async def on_run_started(self, data: dict, **kwargs: Any) -> None:
        self._emit(logging.INFO, "run_started", data)

    async def on_node_completed(self, data: dict, **kwargs: Any) -> None:
        self._emit(logging.INFO, "node_completed", data)

    async def on_node_failed(self, data: dict, **kwargs: Any) -> None:
        self._emit(logging.WARNING, "node_failed", data)

    async def on_run_suspended(self, data: dict, **kwargs: Any) -> None:
        self._emit(logging.INFO, "run_suspended", data)

    async def on_run_completed(self, data: dict, **kwargs: Any) -> None:
        logger.info(json.dumps({
            "event": "run_completed",
            "ts": _now(),
            "automation_id": data.get("automation_id", ""),
            "contact_id": data.get("contact_id"),
            "node_count": len(data.get("visited", [])),
            "step_limit_hit": data.get("step_limit_hit", False),
        }))

    async def on_run_aborted(self, data: dict, **kwargs: Any) -> None:
        self._emit(logging.WARNING, "run_aborted", data)
