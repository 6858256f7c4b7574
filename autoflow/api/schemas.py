"""Pydantic models for API request/response. Mirrors types.py for API I/O."""

from pydantic import BaseModel, Field
from typing import Any, Optional

from autoflow.types import RunResult


# ── Requests ──

class EventRequest(BaseModel):
    contact_id: int                        # the contact the event is about
    data: dict[str, Any] = Field(default_factory=dict)   # tag_name, crm_stage, message_text, ...


# ── Responses ──

class WebhookResponse(BaseModel):
    success: bool
    message: str
    contact_id: Optional[int] = None
    runs: list[RunResult] = []


class CronResponse(BaseModel):
    success: bool
    message: str
    processed: int = 0
    failed: int = 0
    skipped: int = 0


class EventResponse(BaseModel):
    trigger_type: str
    runs: list[RunResult]


class HealthResponse(BaseModel):
    status: str                            # "ok" | "degraded"
    version: str
    services: dict[str, bool]
