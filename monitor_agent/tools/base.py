"""Tool abstractions shared by all agents."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, Mapping, Optional

from ..providers.types import ToolSchema

FINAL_ANSWER_TOOL = "finalAnswer"

CAPABILITY_WEB_SEARCH = "web_search"
CAPABILITY_VISION_TOOLS = "vision_tool_calling"
CAPABILITY_RAG = "knowledge_base"
DEFAULT_CAPABILITIES: FrozenSet[str] = frozenset({CAPABILITY_WEB_SEARCH, CAPABILITY_VISION_TOOLS, CAPABILITY_RAG})

# Capabilities implied by well-known tool names, on top of what a tool declares.
TOOL_CAPABILITIES: Dict[str, FrozenSet[str]] = {
    "searchWeb": frozenset({CAPABILITY_WEB_SEARCH}),
    "analyzeScreenshot": frozenset({CAPABILITY_VISION_TOOLS}),
    "searchKnowledgeBase": frozenset({CAPABILITY_RAG}),
}


@dataclass
class ToolResult:
    """Outcome of one tool execution."""

    success: bool
    output: Any = None
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """Shape sent back to the model and emitted in ``tool_result`` events."""
        if not self.success:
            payload: Dict[str, Any] = {"error": self.error or "tool failed"}
            if self.output:
                payload["output"] = self.output
            return payload
        payload = {"result": self.output}
        payload.update(self.data)
        return payload


class BaseTool(ABC):
    """Base class for agent tools.

    ``parameters`` is a JSON Schema object. ``required_capabilities`` lists the
    runtime capability flags that must be enabled for the tool to be offered
    to the model.
    """

    name: str
    description: str
    parameters: Dict[str, Any]
    required_capabilities: FrozenSet[str] = frozenset()

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Run the tool with model-supplied arguments."""

    def to_schema(self) -> ToolSchema:
        return ToolSchema(name=self.name, description=self.description, parameters=self.parameters)


class FunctionTool(BaseTool):
    """Adapts a plain (sync or async) callable returning JSON-able data."""

    def __init__(
        self,
        name: str,
        func: Callable[..., Any],
        description: str = "",
        parameters: Optional[Dict[str, Any]] = None,
        required_capabilities: Iterable[str] = (),
    ):
        self.name = name
        self.func = func
        self.description = description or (func.__doc__ or "").strip()
        self.parameters = parameters or {"type": "object", "properties": {}}
        self.required_capabilities = frozenset(required_capabilities)

    async def execute(self, **kwargs: Any) -> ToolResult:
        if asyncio.iscoroutinefunction(self.func):
            output = await self.func(**kwargs)
        else:
            output = self.func(**kwargs)
        if isinstance(output, ToolResult):
            return output
        return ToolResult(success=True, output=output)


class FinalAnswerTool(BaseTool):
    """Terminates the agent loop; its ``answer`` argument is the agent's reply."""

    name = FINAL_ANSWER_TOOL
    description = "Call this once with the complete final answer for the user. Ends the conversation turn."
    parameters = {
        "type": "object",
        "properties": {"answer": {"type": "string", "description": "Final answer in Markdown"}},
        "required": ["answer"],
    }

    async def execute(self, **kwargs: Any) -> ToolResult:
        answer = str(kwargs.get("answer") or "")
        return ToolResult(success=True, output=answer, data={"answer": answer})


def filter_tools(tools: Mapping[str, BaseTool], capabilities: Iterable[str]) -> Dict[str, BaseTool]:
    """Drop tools whose capabilities are disabled; ``finalAnswer`` always stays."""
    enabled = frozenset(capabilities)
    filtered = {
        name: tool
        for name, tool in tools.items()
        if name == FINAL_ANSWER_TOOL
        or (tool.required_capabilities | TOOL_CAPABILITIES.get(name, frozenset())) <= enabled
    }
    if FINAL_ANSWER_TOOL not in filtered:
        filtered[FINAL_ANSWER_TOOL] = FinalAnswerTool()
    return filtered
