"""Agent tools."""

from .base import (
    CAPABILITY_RAG,
    CAPABILITY_VISION_TOOLS,
    CAPABILITY_WEB_SEARCH,
    DEFAULT_CAPABILITIES,
    FINAL_ANSWER_TOOL,
    BaseTool,
    FinalAnswerTool,
    FunctionTool,
    ToolResult,
    filter_tools,
)

__all__ = [
    "BaseTool",
    "CAPABILITY_RAG",
    "CAPABILITY_VISION_TOOLS",
    "CAPABILITY_WEB_SEARCH",
    "DEFAULT_CAPABILITIES",
    "FINAL_ANSWER_TOOL",
    "FinalAnswerTool",
    "FunctionTool",
    "ToolResult",
    "filter_tools",
]
