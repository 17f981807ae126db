"""One model round trip per turn, with a bounded number of tool calls."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence
from uuid import UUID

from ..config import EngineSettings
from ..context.repository import CommerceRepository
from ..context.schemas import CustomerContextBundle
from ..sessions.schemas import ConversationMessage, MessageRole
from ..tools.executor import ToolContext, ToolExecutor
from ..tools.schemas import ToolInvocation
from .complexity import ComplexityClassifier, ModelTier
from .llm import LLMClient, ModelReply, ToolCall
from .prompts import PromptBuilder
from .providers import ResponseParameterStore

logger = logging.getLogger(__name__)

_ROLE_MAP = {
    MessageRole.CUSTOMER: "user",
    MessageRole.ASSISTANT: "assistant",
    MessageRole.HUMAN_AGENT: "assistant",
}

EMPTY_REPLY_TEXT = "Could you tell me a little more about what you need?"


class DialogueState(str, Enum):
    AWAITING_MODEL_RESPONSE = "awaiting_model_response"
    AWAITING_TOOL_RESULT = "awaiting_tool_result"
    DONE = "done"


@dataclass
class DialogueOutcome:
    """Final reply of a turn plus what produced it.

    ``tool`` is the last tool invocation of the turn, if any.
    """

    reply: str
    model_tier: ModelTier
    model: str
    tool: ToolInvocation | None = None
    tool_calls: list[ToolInvocation] = field(default_factory=list)


class DialogueOrchestrator:
    """Drive the model through ``awaiting_model_response -> awaiting_tool_result -> done``.

    With ``max_tool_calls == 1`` a tool result is folded straight into the
    reply. Larger caps feed tool results back to the model until it answers
    in text or the cap is reached.
    """

    def __init__(
        self,
        llm: LLMClient,
        tools: ToolExecutor,
        commerce: CommerceRepository,
        *,
        settings: EngineSettings,
        classifier: ComplexityClassifier | None = None,
        prompts: PromptBuilder | None = None,
        parameters: ResponseParameterStore | None = None,
    ) -> None:
        self._llm = llm
        self._tools = tools
        self._commerce = commerce
        self._settings = settings
        self._classifier = classifier or ComplexityClassifier(settings)
        self._prompts = prompts or PromptBuilder()
        self._parameters = parameters or ResponseParameterStore()

    def model_for(self, tier: ModelTier) -> str:
        if tier == ModelTier.CAPABLE:
            return self._settings.capable_model
        return self._settings.fast_model

    def run(
        self,
        message: str,
        bundle: CustomerContextBundle,
        transcript: Sequence[ConversationMessage],
        *,
        organization_id: UUID | None = None,
    ) -> DialogueOutcome:
        tier = self._classifier.classify(message, bundle)
        model = self.model_for(tier)
        params = self._parameters.for_tier(tier.value)
        messages = self._build_messages(message, bundle, transcript)
        tool_schemas = self._tools.schemas() if self._settings.max_tool_calls > 0 else None
        context = ToolContext(
            organization_id=organization_id or bundle.store.id,
            bundle=bundle,
            commerce=self._commerce,
            settings=self._settings,
        )

        invocations: list[ToolInvocation] = []
        state = DialogueState.AWAITING_MODEL_RESPONSE
        reply = ""
        while state != DialogueState.DONE:
            response = self._llm.complete(
                model=model, messages=messages, tools=tool_schemas, params=params
            )
            model = response.model or model
            if not response.tool_calls or tool_schemas is None:
                reply = response.content or EMPTY_REPLY_TEXT
                state = DialogueState.DONE
                continue

            state = DialogueState.AWAITING_TOOL_RESULT
            call = response.tool_calls[0]
            if len(response.tool_calls) > 1:
                logger.info(
                    "Model requested %d tools; running only %s",
                    len(response.tool_calls),
                    call.name,
                )
            invocation = self._tools.execute(call.name, call.arguments, context)
            invocations.append(invocation)

            if (
                len(invocations) >= self._settings.max_tool_calls
                or invocation.result.escalation_reason is not None
            ):
                reply = self._fold(response, invocation)
                state = DialogueState.DONE
                continue

            messages.append(self._assistant_tool_message(response, call))
            messages.append(
                {
                    "role": "tool",
                    "tool_call_id": call.id,
                    "content": json.dumps(
                        {
                            "status": invocation.result.status.value,
                            "content": invocation.result.content,
                        }
                    ),
                }
            )
            state = DialogueState.AWAITING_MODEL_RESPONSE

        logger.info(
            "Dialogue finished with %s (%s) after %d tool call(s)",
            model,
            tier.value,
            len(invocations),
        )
        return DialogueOutcome(
            reply=reply,
            model_tier=tier,
            model=model,
            tool=invocations[-1] if invocations else None,
            tool_calls=invocations,
        )

    def _build_messages(
        self,
        message: str,
        bundle: CustomerContextBundle,
        transcript: Sequence[ConversationMessage],
    ) -> list[dict[str, Any]]:
        system = self._prompts.system_prompt(bundle, message, self._settings.reply_language)
        messages: list[dict[str, Any]] = [{"role": "system", "content": system}]
        for entry in transcript:
            role = _ROLE_MAP.get(entry.role)
            if role is None:
                continue
            messages.append({"role": role, "content": entry.content})
        messages.append({"role": "user", "content": message})
        return messages

    @staticmethod
    def _fold(response: ModelReply, invocation: ToolInvocation) -> str:
        fragment = invocation.result.content
        if response.content:
            return f"{response.content}\n\n{fragment}"
        return fragment

    @staticmethod
    def _assistant_tool_message(response: ModelReply, call: ToolCall) -> dict[str, Any]:
        return {
            "role": "assistant",
            "content": response.content,
            "tool_calls": [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments or "{}"},
                }
            ],
        }
