"""POST /v1/events/{trigger_type} — report a domain event and run matching automations."""

import logging

from fastapi import APIRouter, HTTPException, Request

from autoflow.api.schemas import EventRequest, EventResponse
from autoflow.exceptions import TriggerError
from autoflow.types import TriggerType

logger = logging.getLogger(__name__)
router = APIRouter(tags=["events"])


@router.post("/events/{trigger_type}", response_model=EventResponse)
async def fire_event(request: Request, trigger_type: TriggerType, body: EventRequest):
    """Dispatch *trigger_type* for ``body.contact_id`` with ``body.data`` as the payload."""
    matcher = request.app.state.services.matcher
    context = {**body.data, "contact_id": body.contact_id}
    try:
        runs = await matcher.dispatch(trigger_type, context)
    except TriggerError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return EventResponse(trigger_type=trigger_type.value, runs=runs)
