"""Records passed between the pre-filter, decomposer, agents and unifier."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..providers.types import Message


@dataclass(frozen=True)
class Query:
    """Input to one orchestration run."""

    text: str
    session_id: str = ""
    history: List[Message] = field(default_factory=list)


@dataclass(frozen=True)
class PreFilterResult:
    """
    Outcome of the rule-based first pass.

    Attributes:
        should_handoff: False when ``direct_response`` answers the query.
        confidence: Classifier confidence in [0, 1].
        direct_response: Canned answer for greetings and general questions.
        suggested_agent: Single agent to route to, or None when ambiguous.
    """

    should_handoff: bool
    confidence: float
    direct_response: Optional[str] = None
    suggested_agent: Optional[str] = None


@dataclass(frozen=True)
class Task:
    """One single-agent subtask of a decomposed query."""

    sub_query: str
    target_agent: str
    order: int


@dataclass(frozen=True)
class AgentResult:
    agent: str
    response: str


@dataclass(frozen=True)
class Handoff:
    from_agent: str
    to_agent: str
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"from": self.from_agent, "to": self.to_agent}
        if self.reason:
            data["reason"] = self.reason
        return data


@dataclass(frozen=True)
class Clarification:
    """Question sent back to the user when a query cannot be routed."""

    original_query: str
    reason: str
    options: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"originalQuery": self.original_query, "reason": self.reason, "options": list(self.options)}

    def to_text(self) -> str:
        lines = [self.reason]
        lines.extend(f"- {option}" for option in self.options)
        return "\n".join(lines)
