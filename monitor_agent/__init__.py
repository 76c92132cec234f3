"""monitor-agent: multi-agent query orchestration for a server-monitoring AI."""

from .agents import (
    MultiAgentOrchestrator,
    StreamEvent,
    build_orchestrator,
    execute_multi_agent_stream,
    pre_filter_query,
    unify_results,
)
from .config import ConfigError, OrchestratorConfig, load_config
from .observability import AgentEvent, AgentObserver
from .retry import PermanentError, RetryConfig, TransientError, is_transient_error, retry_with_backoff

__version__ = "0.1.0"

__all__ = [
    "AgentEvent",
    "AgentObserver",
    "ConfigError",
    "MultiAgentOrchestrator",
    "OrchestratorConfig",
    "PermanentError",
    "RetryConfig",
    "StreamEvent",
    "TransientError",
    "build_orchestrator",
    "execute_multi_agent_stream",
    "is_transient_error",
    "load_config",
    "pre_filter_query",
    "unify_results",
    "retry_with_backoff",
]
