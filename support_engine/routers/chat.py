"""Customer-facing chat turn endpoint."""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import EngineSettings
from ..core.errors import SupportEngineError
from ..core.ratelimit import CHAT_RATE_LIMIT, limiter
from ..dialogue.engine import TurnEngine, TurnRequest
from .dependencies import get_engine_settings, get_turn_engine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


class ChatTurnBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    session_token: str = Field(min_length=1, max_length=128, alias="sessionToken")
    message: str = Field(min_length=1)
    organization_id: UUID = Field(alias="organizationId")
    customer_id: UUID | None = Field(default=None, alias="customerId")


def _failure(status_code: int, error: str, settings: EngineSettings) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": error,
            "fallbackResponse": settings.fallback_response,
        },
    )


@router.post("/api/chat/turn")
@limiter.limit(CHAT_RATE_LIMIT)
def chat_turn(
    request: Request,
    payload: dict[str, Any] = Body(...),
    engine: TurnEngine = Depends(get_turn_engine),
    settings: EngineSettings = Depends(get_engine_settings),
):
    """Handle one customer message and return the assistant reply.

    Failures never raise to the client: the body always carries
    ``fallbackResponse`` so the widget has something to show.
    """
    try:
        body = ChatTurnBody.model_validate(payload)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        return _failure(400, f"Invalid request: {fields}", settings)
    if len(body.message) > settings.chat_max_message_length:
        return _failure(400, "Message too long", settings)

    try:
        result = engine.handle_turn(
            TurnRequest(
                session_token=body.session_token,
                message=body.message,
                organization_id=body.organization_id,
                customer_id=body.customer_id,
            )
        )
    except SupportEngineError as exc:
        logger.warning("Chat turn failed (%s): %s", type(exc).__name__, exc)
        return _failure(exc.status_code, str(exc), settings)
    except ValueError as exc:
        return _failure(400, str(exc), settings)
    except Exception:
        logger.exception("Unexpected error while handling chat turn")
        return _failure(500, "Internal error", settings)

    return {
        "success": True,
        "response": result.response,
        "shouldEscalate": result.should_escalate,
        "sessionId": str(result.session_id),
    }
