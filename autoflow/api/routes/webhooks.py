"""POST /v1/automations/webhook/{webhook_id} — inbound webhook trigger, no auth.

The id is the ``webhook_id`` of an automation's webhook trigger node.  The
JSON body must carry ``phone`` unless the trigger is listening for a sample.
"""

import json
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from autoflow.api.schemas import WebhookResponse
from autoflow.exceptions import TriggerError, WebhookNotFoundError

logger = logging.getLogger(__name__)
router = APIRouter(tags=["webhooks"])


def _reply(status_code: int, **body) -> JSONResponse:
    return JSONResponse(WebhookResponse(**body).model_dump(mode="json"), status_code=status_code)


@router.post("/automations/webhook/{webhook_id}")
async def execute_webhook(request: Request, webhook_id: str):
    """Capture a sample or run the automation owning *webhook_id*."""
    handler = request.app.state.services.webhooks

    raw = await request.body()
    try:
        body = json.loads(raw) if raw else {}
    except ValueError:
        return _reply(400, success=False, message="Request body must be valid JSON.")

    try:
        outcome = await handler.handle(webhook_id, body)
    except WebhookNotFoundError as exc:
        return _reply(404, success=False, message=str(exc))
    except TriggerError as exc:
        return _reply(422, success=False, message=str(exc))
    except Exception as exc:
        logger.exception("Webhook handler error for id=%r", webhook_id)
        return _reply(500, success=False, message=str(exc) or "Internal webhook error.")

    if outcome.status == "sample_captured":
        return _reply(200, success=True, message="Sample captured successfully.")
    return _reply(
        200,
        success=True,
        message="Automation triggered successfully.",
        contact_id=outcome.contact_id,
        runs=outcome.runs,
    )
