"""Provider-agnostic chat message, tool schema and streaming types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional


@dataclass
class FunctionCall:
    """A tool call requested by the model."""

    name: str
    arguments: Dict[str, Any]
    id: Optional[str] = None


@dataclass
class FunctionResponse:
    """A tool result sent back to the model."""

    name: str
    response: Dict[str, Any]
    call_id: Optional[str] = None


@dataclass
class MessagePart:
    text: Optional[str] = None
    function_call: Optional[FunctionCall] = None
    function_response: Optional[FunctionResponse] = None


@dataclass
class Message:
    """Chat message exchanged with a provider.

    ``role`` is one of ``user``, ``assistant`` or ``tool``.
    """

    role: str
    parts: List[MessagePart] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(part.text for part in self.parts if part.text)

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(role="user", parts=[MessagePart(text=text)])

    @classmethod
    def assistant(cls, text: str, calls: Optional[List[FunctionCall]] = None) -> "Message":
        parts: List[MessagePart] = []
        if text:
            parts.append(MessagePart(text=text))
        parts.extend(MessagePart(function_call=call) for call in calls or [])
        return cls(role="assistant", parts=parts)

    @classmethod
    def tool_response(cls, responses: List[FunctionResponse]) -> "Message":
        return cls(role="tool", parts=[MessagePart(function_response=r) for r in responses])

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Message":
        """Build a message from a transport payload (``{"role", "content"}``).

        ``content`` may be a plain string or a list of ``{"type": "text"}``
        parts, which is how chat UIs usually send it.
        """
        role = str(data.get("role") or "user")
        if role not in ("user", "assistant", "tool"):
            role = "assistant" if role == "system" else "user"
        content = data.get("content", "")
        if isinstance(content, list):
            chunks = [str(item.get("text", "")) for item in content if isinstance(item, dict) and item.get("text")]
            content = "".join(chunks)
        return cls(role=role, parts=[MessagePart(text=str(content or ""))])


@dataclass
class ToolSchema:
    """Tool declaration in JSON Schema form."""

    name: str
    description: str
    parameters: Dict[str, Any]


@dataclass
class GenerationConfig:
    system_prompt: str = ""
    max_tokens: int = 1536
    temperature: Optional[float] = 0.4


@dataclass
class StreamDelta:
    """Single normalized chunk from a streaming response."""

    text: Optional[str] = None
    function_call_start: Optional[FunctionCall] = None
    function_call_delta: Optional[str] = None
    function_call_id: Optional[str] = None
    function_call_index: Optional[int] = None
    function_call_end: bool = False
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, int]] = None


@dataclass
class LLMResponse:
    text: str = ""
    function_calls: List[FunctionCall] = field(default_factory=list)
    usage: Optional[Dict[str, int]] = None
    raw: Any = None


def merge_usage(total: Dict[str, int], usage: Optional[Dict[str, int]]) -> Dict[str, int]:
    """Add token counts from ``usage`` into ``total`` in place."""
    for key, value in (usage or {}).items():
        total[key] = total.get(key, 0) + int(value or 0)
    return total
