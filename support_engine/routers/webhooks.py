"""Helpdesk webhook receiver."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from ..config import EngineSettings
from ..core.errors import SupportEngineError
from ..helpdesk.automation import Dispatcher
from ..helpdesk.schemas import WebhookEnvelope, WebhookResult
from ..helpdesk.signatures import require_valid_signature
from .dependencies import ReconcilerScope, get_engine_settings, get_reconciler_scope

logger = logging.getLogger(__name__)

router = APIRouter(tags=["helpdesk"])


def _error(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


def _reconcile(
    scope: ReconcilerScope, envelope: WebhookEnvelope, dispatch: Dispatcher
) -> WebhookResult:
    with scope() as reconciler:
        return reconciler.handle(envelope, dispatch)


@router.post("/api/helpdesk/webhook")
async def helpdesk_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    scope: ReconcilerScope = Depends(get_reconciler_scope),
    settings: EngineSettings = Depends(get_engine_settings),
):
    """Verify, parse and reconcile one helpdesk event.

    Side effects (enrichment, assignment, notifications, surveys) are queued
    as background tasks and run after the response is sent.
    """
    body = await request.body()
    try:
        require_valid_signature(
            body,
            request.headers,
            header_name=settings.helpdesk_signature_header,
            secret=settings.helpdesk_webhook_secret,
        )
    except SupportEngineError as exc:
        logger.warning("Rejected helpdesk webhook: %s", exc)
        return _error(exc.status_code, str(exc))

    try:
        envelope = WebhookEnvelope.model_validate(json.loads(body))
    except json.JSONDecodeError:
        return _error(400, "Invalid JSON payload")
    except ValidationError as exc:
        return _error(400, f"Invalid webhook envelope: {exc.error_count()} validation error(s)")

    try:
        result = await run_in_threadpool(
            _reconcile, scope, envelope, background_tasks.add_task
        )
    except SupportEngineError as exc:
        logger.warning("Helpdesk event %s failed: %s", envelope.event, exc)
        return _error(exc.status_code, str(exc))
    except Exception:
        logger.exception("Unexpected error while processing helpdesk event %s", envelope.event)
        return _error(500, "Internal error")

    return result.model_dump(exclude={"ignored"})
