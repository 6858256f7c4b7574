"""GET/POST /v1/messaging/webhook — the messaging provider's own webhook.

GET answers the provider's subscription handshake: the challenge is echoed
back when ``hub.verify_token`` equals ``AUTOFLOW_META_VERIFY_TOKEN``.  With
no token configured every handshake is refused.

POST receives message deliveries.  It always answers 200 so the provider
does not retry; per-message failures are only logged.
"""

import json
import logging
import secrets

from fastapi import APIRouter, Query, Request
from fastapi.responses import PlainTextResponse

logger = logging.getLogger(__name__)
router = APIRouter(tags=["messaging"])


@router.get("/messaging/webhook")
async def verify_subscription(
    request: Request,
    mode: str = Query(default="", alias="hub.mode"),
    token: str = Query(default="", alias="hub.verify_token"),
    challenge: str = Query(default="", alias="hub.challenge"),
):
    expected = request.app.state.config.meta_verify_token
    if mode == "subscribe" and expected and secrets.compare_digest(token, expected):
        logger.info("Messaging webhook verified")
        return PlainTextResponse(challenge)
    return PlainTextResponse("Forbidden", status_code=403)


@router.post("/messaging/webhook")
async def receive_messages(request: Request):
    """Log inbound text messages and fire ``context_message`` for each."""
    raw = await request.body()
    try:
        payload = json.loads(raw) if raw else {}
    except ValueError:
        logger.warning("Messaging webhook body is not valid JSON")
        return PlainTextResponse("OK")

    try:
        report = await request.app.state.services.inbound.handle(payload)
    except Exception:
        logger.exception("Messaging webhook processing failed")
        return PlainTextResponse("OK")

    if report.processed or report.failed:
        logger.info(
            "Inbound messages: %d processed, %d failed, %d unknown senders",
            report.processed, report.failed, len(report.unknown_senders),
        )
    return PlainTextResponse("OK")
