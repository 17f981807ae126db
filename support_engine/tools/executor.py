"""Tool registry and dispatch."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ValidationError

from ..config import EngineSettings
from ..context.repository import CommerceRepository
from ..context.schemas import CustomerContextBundle
from ..core.errors import SupportEngineError, UpstreamServiceError
from .schemas import ToolInvocation, ToolResult, ToolStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolContext:
    """What a tool handler may consult: the turn's bundle and one read."""

    organization_id: UUID
    bundle: CustomerContextBundle
    commerce: CommerceRepository
    settings: EngineSettings


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    args_model: type[BaseModel]
    handler: Callable[[Any, ToolContext], ToolResult]

    def openai_schema(self) -> dict[str, Any]:
        parameters = self.args_model.model_json_schema()
        parameters.pop("title", None)
        parameters.pop("description", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


UNKNOWN_TOOL_TEXT = "I'm not sure how to help with that. Let me connect you with a human agent."
INVALID_ARGS_TEXT = (
    "I couldn't process that request. Could you rephrase it or share a few more details?"
)


class ToolExecutor:
    """Fixed registry of tools keyed by name."""

    def __init__(self, tools: Iterable[ToolSpec]) -> None:
        self._tools: dict[str, ToolSpec] = {}
        for spec in tools:
            if spec.name in self._tools:
                raise ValueError(f"Duplicate tool name: {spec.name}")
            self._tools[spec.name] = spec

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def schemas(self) -> list[dict[str, Any]]:
        """Function-tool definitions in the OpenAI chat completions format."""
        return [spec.openai_schema() for spec in self._tools.values()]

    def execute(
        self,
        name: str,
        arguments: str | Mapping[str, Any] | None,
        context: ToolContext,
    ) -> ToolInvocation:
        """Validate ``arguments`` and run the named tool.

        Unknown names, malformed JSON and invalid arguments come back as typed
        results. Repository failures surface as :class:`UpstreamServiceError`.
        """

        spec = self._tools.get(name)
        if spec is None:
            logger.warning("Model requested unknown tool %r", name)
            return ToolInvocation(
                name=name,
                result=ToolResult(
                    status=ToolStatus.ESCALATE,
                    content=UNKNOWN_TOOL_TEXT,
                    data={"reason": "unknown_tool"},
                ),
            )

        try:
            raw = self._decode(arguments)
        except ValueError as exc:
            logger.info("Tool %s received malformed arguments: %s", name, exc)
            return ToolInvocation(
                name=name,
                result=ToolResult(
                    status=ToolStatus.INVALID,
                    content=INVALID_ARGS_TEXT,
                    data={"errors": [str(exc)]},
                ),
            )

        try:
            args = spec.args_model.model_validate(raw)
        except ValidationError as exc:
            logger.info("Tool %s rejected arguments %s", name, raw)
            return ToolInvocation(
                name=name,
                arguments=raw,
                result=ToolResult(
                    status=ToolStatus.INVALID,
                    content=INVALID_ARGS_TEXT,
                    data={"errors": [err["msg"] for err in exc.errors()]},
                ),
            )

        try:
            result = spec.handler(args, context)
        except SupportEngineError:
            raise
        except Exception as exc:
            logger.exception("Tool %s failed", name)
            raise UpstreamServiceError(f"Tool {name} could not complete") from exc
        logger.info("Tool %s finished with status %s", name, result.status.value)
        return ToolInvocation(
            name=name,
            arguments=args.model_dump(mode="json", exclude_none=True),
            result=result,
        )

    @staticmethod
    def _decode(arguments: str | Mapping[str, Any] | None) -> dict[str, Any]:
        if arguments is None or arguments == "":
            return {}
        if isinstance(arguments, Mapping):
            return dict(arguments)
        try:
            decoded = json.loads(arguments)
        except json.JSONDecodeError as exc:
            raise ValueError(f"arguments are not valid JSON: {exc.msg}") from exc
        if not isinstance(decoded, dict):
            raise ValueError("arguments must be a JSON object")
        return decoded
