"""Tools the assistant can call: order, product, shipping, policy, escalation."""

from .executor import ToolContext, ToolExecutor, ToolSpec
from .handlers import BUILTIN_TOOLS
from .schemas import ToolInvocation, ToolResult, ToolStatus


def default_tool_executor() -> ToolExecutor:
    return ToolExecutor(BUILTIN_TOOLS)


__all__ = [
    "BUILTIN_TOOLS",
    "ToolContext",
    "ToolExecutor",
    "ToolInvocation",
    "ToolResult",
    "ToolSpec",
    "ToolStatus",
    "default_tool_executor",
]
