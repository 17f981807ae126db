"""Chat completion client used by the dialogue orchestrator."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import openai
from openai import AzureOpenAI, OpenAI

from ..core.errors import UpstreamServiceError
from .providers import ProviderCredentials

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: str


@dataclass(frozen=True)
class ModelReply:
    content: str | None
    model: str
    tool_calls: list[ToolCall] = field(default_factory=list)


class LLMClient(Protocol):
    def complete(
        self,
        *,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        params: dict[str, Any] | None = None,
    ) -> ModelReply: ...


class OpenAIChatClient:
    """``LLMClient`` backed by the ``openai`` SDK.

    Each call is bounded by ``timeout`` seconds and at most ``max_retries``
    SDK retries; a failure becomes :class:`UpstreamServiceError`.
    """

    def __init__(
        self,
        credentials: ProviderCredentials,
        *,
        timeout: float = 8.0,
        max_retries: int = 1,
    ) -> None:
        self._credentials = credentials
        self._client: OpenAI | None = None
        if credentials.configured and credentials.provider == "azure":
            self._client = AzureOpenAI(
                api_key=credentials.api_key,
                azure_endpoint=credentials.base_url,
                api_version=credentials.api_version,
                timeout=timeout,
                max_retries=max_retries,
                default_headers=credentials.extras or None,
            )
        elif credentials.configured:
            self._client = OpenAI(
                api_key=credentials.api_key,
                base_url=credentials.base_url,
                timeout=timeout,
                max_retries=max_retries,
                default_headers=credentials.extras or None,
            )
        else:
            logger.warning(
                "LLM provider %s is not configured; chat turns will fail", credentials.provider
            )

    def complete(
        self,
        *,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        params: dict[str, Any] | None = None,
    ) -> ModelReply:
        if self._client is None:
            raise UpstreamServiceError(
                f"LLM provider {self._credentials.provider} is not configured"
            )
        request: dict[str, Any] = {"model": model, "messages": messages, **(params or {})}
        if tools:
            request["tools"] = tools
            request["tool_choice"] = "auto"
        try:
            completion = self._client.chat.completions.create(**request)
        except openai.APITimeoutError as exc:
            logger.warning("LLM request to %s timed out", model)
            raise UpstreamServiceError("The language model did not respond in time") from exc
        except openai.APIError as exc:
            logger.warning("LLM request to %s failed: %s", model, exc)
            raise UpstreamServiceError("The language model request failed") from exc

        message = completion.choices[0].message
        calls = [
            ToolCall(id=call.id, name=call.function.name, arguments=call.function.arguments or "")
            for call in (message.tool_calls or [])
            if getattr(call, "function", None) is not None
        ]
        return ModelReply(
            content=(message.content or "").strip() or None,
            model=completion.model or model,
            tool_calls=calls,
        )
