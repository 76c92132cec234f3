"""Multi-agent orchestration for server-monitoring queries.

Queries pass through a rule-based pre-filter, an optional task decomposer
and one or more specialized agents (NLQ, Analyst, Reporter, Advisor, Vision)
whose answers are merged by the result unifier.
"""

from .base import AgentConfig, AgentRunOptions, AgentRunResult, BaseAgent, ConfigAgent, StreamCancelled, StreamTimeout
from .context import InMemorySessionContextStore, SessionContext, SessionContextStore, save_agent_findings
from .decomposition import TaskDecomposition, decompose_task, is_complex_query, split_into_tasks
from .events import ErrorCode, EventType, StreamEvent
from .orchestrator import (
    MultiAgentOrchestrator,
    build_orchestrator,
    execute_multi_agent_stream,
    stream_text_in_chunks,
)
from .prefilter import pre_filter_query
from .protocol import AgentResult, Clarification, Handoff, PreFilterResult, Query, Task
from .quality import classify_latency_tier, evaluate_response_quality
from .registry import AgentRegistry, build_default_registry
from .unifier import unify_results

__all__ = [
    "AgentConfig",
    "AgentRegistry",
    "AgentResult",
    "AgentRunOptions",
    "AgentRunResult",
    "BaseAgent",
    "Clarification",
    "ConfigAgent",
    "ErrorCode",
    "EventType",
    "Handoff",
    "InMemorySessionContextStore",
    "MultiAgentOrchestrator",
    "PreFilterResult",
    "Query",
    "SessionContext",
    "SessionContextStore",
    "StreamCancelled",
    "StreamEvent",
    "StreamTimeout",
    "Task",
    "TaskDecomposition",
    "build_default_registry",
    "build_orchestrator",
    "classify_latency_tier",
    "decompose_task",
    "evaluate_response_quality",
    "execute_multi_agent_stream",
    "is_complex_query",
    "pre_filter_query",
    "save_agent_findings",
    "split_into_tasks",
    "stream_text_in_chunks",
    "unify_results",
]
