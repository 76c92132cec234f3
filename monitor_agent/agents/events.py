"""Stream event vocabulary shared by agents, the orchestrator and transports.

Every event is ``{"type": ..., "data": ...}``. ``text_delta`` carries the text
itself as ``data``; every other kind carries a dict.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional


class EventType:
    AGENT_STATUS = "agent_status"
    HANDOFF = "handoff"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    TEXT_DELTA = "text_delta"
    STEP_FINISH = "step_finish"
    DONE = "done"
    ERROR = "error"


EVENT_TYPES = frozenset(
    {
        EventType.AGENT_STATUS,
        EventType.HANDOFF,
        EventType.TOOL_CALL,
        EventType.TOOL_RESULT,
        EventType.TEXT_DELTA,
        EventType.STEP_FINISH,
        EventType.DONE,
        EventType.ERROR,
    }
)
TERMINAL_EVENT_TYPES = frozenset({EventType.DONE, EventType.ERROR})


class ErrorCode:
    CONFIG_NOT_FOUND = "CONFIG_NOT_FOUND"
    MODEL_UNAVAILABLE = "MODEL_UNAVAILABLE"
    STREAM_ERROR = "STREAM_ERROR"
    CANCELLED = "CANCELLED"
    INVALID_REQUEST = "INVALID_REQUEST"


@dataclass(frozen=True)
class StreamEvent:
    type: str
    data: Any

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENT_TYPES

    @property
    def is_known(self) -> bool:
        return self.type in EVENT_TYPES

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.data) if isinstance(self.data, dict) else self.data
        return {"type": self.type, "data": data}


def agent_status(agent: str, status: str) -> StreamEvent:
    return StreamEvent(EventType.AGENT_STATUS, {"agent": agent, "status": status})


def handoff(from_agent: str, to_agent: str, reason: Optional[str] = None) -> StreamEvent:
    data: Dict[str, Any] = {"from": from_agent, "to": to_agent}
    if reason:
        data["reason"] = reason
    return StreamEvent(EventType.HANDOFF, data)


def tool_call(name: str, args: Dict[str, Any]) -> StreamEvent:
    return StreamEvent(EventType.TOOL_CALL, {"name": name, "args": dict(args)})


def tool_result(name: str, result: Any) -> StreamEvent:
    return StreamEvent(EventType.TOOL_RESULT, {"name": name, "result": result})


def text_delta(text: str) -> StreamEvent:
    return StreamEvent(EventType.TEXT_DELTA, text)


def step_finish(finish_reason: str, tool_calls: Iterable[str], tool_results: Iterable[Any]) -> StreamEvent:
    return StreamEvent(
        EventType.STEP_FINISH,
        {"finishReason": finish_reason, "toolCalls": list(tool_calls), "toolResults": list(tool_results)},
    )


def done(
    final_agent: str,
    tools_called: List[str],
    provider: str,
    model_id: str,
    duration_ms: int,
    success: bool = True,
    metadata: Optional[Dict[str, Any]] = None,
    **extra: Any,
) -> StreamEvent:
    """Build a terminal success event.

    ``metadata`` entries are merged after provider/modelId/durationMs;
    ``extra`` keys are added at the top level of ``data``.
    """
    meta: Dict[str, Any] = {"provider": provider, "modelId": model_id, "durationMs": max(0, int(duration_ms))}
    meta.update(metadata or {})
    data: Dict[str, Any] = {
        "success": success,
        "finalAgent": final_agent,
        "toolsCalled": list(tools_called),
        "metadata": meta,
    }
    data.update(extra)
    return StreamEvent(EventType.DONE, data)


def error(code: str, message: Optional[str] = None) -> StreamEvent:
    data: Dict[str, Any] = {"code": code}
    if message:
        data["message"] = message
    return StreamEvent(EventType.ERROR, data)
