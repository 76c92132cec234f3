"""Per-agent execution log: steps, model requests, tool calls and errors."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

LOGGER_NAME = "monitor_agent"


@dataclass
class AgentEvent:
    """One recorded occurrence during an agent invocation."""

    timestamp: datetime
    event_type: str  # "step_start", "step_end", "llm_request", "tool_call", "error"
    data: Dict[str, Any]
    duration_ms: Optional[float] = None
    tokens_used: Optional[int] = None


class AgentObserver:
    """
    Collects execution events for one agent and mirrors them to logging.

    The event list is kept in memory for the lifetime of the observer so a
    caller can inspect a finished run through ``get_session_stats``.
    """

    def __init__(self, agent_id: Optional[str] = None, verbose: bool = False):
        self.events: List[AgentEvent] = []
        self.logger = logging.getLogger(LOGGER_NAME)
        self.agent_id = agent_id
        self.verbose = verbose
        self._setup_logging()

    def _setup_logging(self):
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
            )
            self.logger.addHandler(handler)
        if self.verbose:
            self.logger.setLevel(logging.INFO)
        elif self.logger.level == logging.NOTSET:
            self.logger.setLevel(logging.WARNING)

    def _prefix(self) -> str:
        return f"[{self.agent_id}] " if self.agent_id else ""

    def _record(self, event_type: str, data: Dict[str, Any], **extra: Any) -> None:
        self.events.append(AgentEvent(timestamp=datetime.now(), event_type=event_type, data=data, **extra))

    def log_step_start(self, step: int, query: Optional[str] = None):
        self._record("step_start", {"step": step, "query": query[:100] if query else None})
        if step == 1 and query:
            self.logger.info(f"{self._prefix()}Query: {query[:100]}")
        self.logger.info(f"{self._prefix()}Step {step} started")

    def log_step_end(self, step: int, duration_ms: float, finish_reason: Optional[str] = None):
        self._record("step_end", {"step": step, "finish_reason": finish_reason}, duration_ms=duration_ms)
        self.logger.info(f"{self._prefix()}Step {step} finished ({finish_reason or 'n/a'}, {duration_ms:.2f}ms)")

    def log_llm_request(self, provider: str, model: str, step: int, duration_ms: float, tokens: int = 0):
        """
        Record a model round-trip.

        Args:
            provider: Provider name (e.g. "cerebras")
            model: Model id (e.g. "gpt-oss-120b")
            step: Step number in the tool loop
            duration_ms: Wall time spent streaming the step
            tokens: Total tokens reported by the provider, 0 if unknown
        """
        self._record(
            "llm_request",
            {"provider": provider, "model": model, "step": step},
            duration_ms=duration_ms,
            tokens_used=tokens,
        )
        self.logger.info(f"{self._prefix()}LLM: {provider}/{model} | Step {step} | {tokens} tokens | {duration_ms:.2f}ms")

    def log_tool_call(self, tool_name: str, args: Dict[str, Any], result: Any, duration_ms: float, success: bool = True):
        try:
            preview = json.dumps(result, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            preview = str(result)
        self._record(
            "tool_call",
            {"tool": tool_name, "args": args, "result": preview[:200], "success": success},
            duration_ms=duration_ms,
        )
        status = "ok" if success else "failed"
        self.logger.info(f"{self._prefix()}Tool {tool_name} {status} ({duration_ms:.2f}ms)")

    def log_error(self, error_type: str, message: str, context: Optional[Dict[str, Any]] = None):
        self._record("error", {"error_type": error_type, "message": message, "context": context or {}})
        self.logger.error(f"{self._prefix()}Error ({error_type}): {message}")

    def get_session_stats(self) -> Dict[str, Any]:
        tool_calls = [e for e in self.events if e.event_type == "tool_call"]
        return {
            "total_tokens": sum(e.tokens_used or 0 for e in self.events),
            "llm_requests": sum(1 for e in self.events if e.event_type == "llm_request"),
            "tool_calls": len(tool_calls),
            "failed_tool_calls": sum(1 for e in tool_calls if not e.data.get("success", True)),
            "errors": sum(1 for e in self.events if e.event_type == "error"),
            "steps": sum(1 for e in self.events if e.event_type == "step_end"),
        }
