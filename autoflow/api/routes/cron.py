"""POST /v1/cron/process-automations — one deferred-task poll, for external schedulers.

Requires ``Authorization: Bearer <AUTOFLOW_CRON_SECRET>``.  With no secret
configured every call is rejected.
"""

import logging
import secrets

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from autoflow.api.schemas import CronResponse

logger = logging.getLogger(__name__)
router = APIRouter(tags=["cron"])


def _authorized(authorization: str, secret: str | None) -> bool:
    if not secret or not authorization:
        return False
    return secrets.compare_digest(authorization, f"Bearer {secret}")


@router.post("/cron/process-automations", response_model=CronResponse)
async def process_automations(request: Request, authorization: str = Header(default="")):
    """Resume every due deferred task once."""
    if not _authorized(authorization, request.app.state.config.cron_secret):
        return JSONResponse({"success": False, "message": "Unauthorized"}, status_code=401)

    services = request.app.state.services
    try:
        report = await services.poller.poll_once()
    except Exception:
        logger.exception("Cron poll failed")
        return JSONResponse(
            {"success": False, "message": "Cron job execution failed."}, status_code=500
        )

    if not (report.processed or report.failed or report.skipped):
        message = "No pending tasks to process."
    else:
        message = f"Processed {report.processed} tasks, {report.failed} failed."
    return CronResponse(
        success=True,
        message=message,
        processed=report.processed,
        failed=report.failed,
        skipped=report.skipped,
    )
