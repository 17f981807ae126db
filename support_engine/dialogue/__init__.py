"""Model routing, prompting, the tool loop and turn handling."""

from .complexity import ComplexityClassifier, ModelTier
from .engine import TurnEngine, TurnRequest, TurnResponse
from .llm import LLMClient, ModelReply, OpenAIChatClient, ToolCall
from .orchestrator import DialogueOrchestrator, DialogueOutcome, DialogueState
from .prompts import PromptBuilder, detect_language
from .providers import ProviderCredentials, ProviderRegistry, ResponseParameterStore

__all__ = [
    "ComplexityClassifier",
    "DialogueOrchestrator",
    "DialogueOutcome",
    "DialogueState",
    "LLMClient",
    "ModelReply",
    "ModelTier",
    "OpenAIChatClient",
    "PromptBuilder",
    "ProviderCredentials",
    "ProviderRegistry",
    "ResponseParameterStore",
    "ToolCall",
    "TurnEngine",
    "TurnRequest",
    "TurnResponse",
    "detect_language",
]
