"""Agent-facing customer context for the helpdesk sidebar."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from ..context.insights import InsightAction, select_slice
from ..core.errors import SupportEngineError
from .dependencies import InsightScope, get_insight_scope

logger = logging.getLogger(__name__)

router = APIRouter(tags=["helpdesk"])


@router.get("/api/helpdesk/customer-context")
def customer_context(
    contact_id: int = Query(...),
    account_id: int = Query(...),
    action: str = Query(InsightAction.CONTEXT.value),
    scope: InsightScope = Depends(get_insight_scope),
):
    try:
        selected = InsightAction(action)
    except ValueError:
        return JSONResponse(
            status_code=400, content={"success": False, "error": f"Unknown action: {action}"}
        )
    try:
        with scope() as insights:
            view = insights.for_contact(contact_id, account_id)
    except SupportEngineError as exc:
        return JSONResponse(
            status_code=exc.status_code, content={"success": False, "error": str(exc)}
        )
    return {"success": True, **select_slice(view, selected)}
