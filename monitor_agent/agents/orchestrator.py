"""Multi-agent stream executor.

Routes one user query through the pre-filter, the decomposer and one or more
agents, forwarding every agent event to the caller and closing the run with a
single ``done`` (or a single ``error``).
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections import deque
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Deque,
    Dict,
    FrozenSet,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from ..config import OrchestratorConfig, load_config
from ..providers.selection import DEFAULT_PROVIDER_ORDER, ModelSelector, ProviderFactory, ResolvedModel, check_provider_status
from ..providers.types import Message
from ..tools.base import BaseTool
from . import events
from .base import AgentRunOptions
from .context import InMemorySessionContextStore, SessionContextStore, save_agent_findings
from .decomposition import decompose_task
from .events import ErrorCode, EventType, StreamEvent
from .prefilter import has_server_keyword, pre_filter_query
from .protocol import AgentResult, Clarification, Handoff, PreFilterResult, Task
from .quality import evaluate_response_quality
from .registry import (
    AGENT_DEFINITIONS,
    ANALYST_AGENT,
    OPTIMIZER_AGENT,
    REPORTER_AGENT,
    VISION_AGENT,
    AgentRegistry,
    build_default_registry,
)
from .reporter_pipeline import ReportEvaluation, ReporterPipeline, build_optimizer_prompt
from .unifier import unify_results
from .web_search import WebSearchSetting, resolve_capabilities

logger = logging.getLogger(__name__)

ORCHESTRATOR_NAME = "Orchestrator"
FAST_PATH_AGENT = "Orchestrator (Fast Path)"
RULE_BASED_PROVIDER = "rule-based"
MULTI_AGENT_PROVIDER = "multi-agent"
MAX_HANDOFF_HISTORY = 50
VISION_FALLBACK_STATUS = "vision_fallback"

CLARIFICATION_REASON = "질문이 너무 짧아 의도를 파악하기 어렵습니다. 어떤 정보가 필요하신지 알려주세요."
CLARIFICATION_OPTIONS = [
    "서버 상태 조회 (예: 서버 상태 알려줘)",
    "이상 탐지 및 원인 분석 (예: CPU 이상 원인 분석해줘)",
    "장애 보고서 작성 (예: 장애 보고서 만들어줘)",
    "해결 방법 안내 (예: 메모리 부족 해결 방법)",
]

IncomingMessage = Union[Message, Mapping[str, Any]]


def stream_text_in_chunks(text: str, chunk_size: int = 80) -> Iterator[StreamEvent]:
    """Yield ``text`` as consecutive ``text_delta`` events of at most ``chunk_size`` chars."""
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
    for start in range(0, len(text), chunk_size):
        yield events.text_delta(text[start : start + chunk_size])


def split_messages(messages: Sequence[IncomingMessage]) -> Tuple[List[Message], Optional[str]]:
    """Return (history, latest user text). The text is None without a user message."""
    converted = [m if isinstance(m, Message) else Message.from_dict(m) for m in messages]
    for index in range(len(converted) - 1, -1, -1):
        message = converted[index]
        if message.role == "user" and message.text.strip():
            return converted[:index], message.text.strip()
    return converted, None


def _sum_usage(total: Dict[str, int], usage: Optional[Mapping[str, Any]]) -> None:
    for key, value in (usage or {}).items():
        total[key] = total.get(key, 0) + int(value or 0)


class MultiAgentOrchestrator:
    """Runs user queries across the registered agents.

    Example:
        orchestrator = build_orchestrator()
        async for event in orchestrator.execute_stream(
            [{"role": "user", "content": "서버 상태 알려줘"}], session_id="s1"
        ):
            print(event.to_dict())
    """

    def __init__(
        self,
        registry: AgentRegistry,
        config: Optional[OrchestratorConfig] = None,
        store: Optional[SessionContextStore] = None,
        planner: Optional[Callable[[], Optional[ResolvedModel]]] = None,
        verbose: bool = False,
    ):
        """
        Args:
            registry: Agents available for routing.
            config: Orchestrator settings (defaults when omitted).
            store: Session context sink for handoffs and findings.
            planner: ``get_model`` callable for the decomposition planner.
            verbose: Passed to agents for observer logging.
        """
        self.registry = registry
        self.config = config or OrchestratorConfig()
        self.store = store
        self.planner = planner
        self.verbose = verbose
        self._handoffs: Deque[Dict[str, Any]] = deque(maxlen=MAX_HANDOFF_HISTORY)

    def record_handoff(self, from_agent: str, to_agent: str, reason: Optional[str] = None) -> Handoff:
        handoff = Handoff(from_agent, to_agent, reason)
        self._handoffs.append({**handoff.to_dict(), "timestamp": time.time()})
        logger.info(f"[Handoff] {from_agent} -> {to_agent} ({reason or 'no reason'})")
        return handoff

    def get_recent_handoffs(self, limit: int = 10) -> List[Dict[str, Any]]:
        return list(self._handoffs)[-limit:] if limit > 0 else []

    def _run_options(
        self,
        session_id: str,
        history: List[Message],
        cancel_event: Optional[asyncio.Event],
        capabilities: FrozenSet[str],
    ) -> AgentRunOptions:
        return AgentRunOptions(
            session_id=session_id,
            history=list(history),
            capabilities=capabilities,
            timeout_s=self.config.agent_timeout_s,
            temperature=self.config.temperature,
            max_output_tokens=self.config.max_output_tokens,
            cancel_event=cancel_event,
        )

    def _has_model(self, name: str) -> bool:
        config = self.registry.get_config(name)
        return config is not None and config.resolve_model() is not None

    def _needs_clarification(self, query: str, prefiltered: PreFilterResult) -> bool:
        return (
            prefiltered.suggested_agent is None
            and not has_server_keyword(query)
            and len(query.strip()) <= self.config.clarify_max_chars
        )

    def _resolve_planner(self) -> Optional[ResolvedModel]:
        if self.planner is None:
            return None
        try:
            return self.planner()
        except Exception as e:
            logger.warning(f"[Orchestrator] Planner model unavailable: {e}")
            return None

    async def _remember_handoff(self, session_id: str, handoff: Handoff) -> None:
        if self.store is None or not session_id:
            return
        try:
            await self.store.record_handoff(session_id, handoff.from_agent, handoff.to_agent, handoff.reason)
        except Exception as e:
            logger.warning(f"[Orchestrator] Failed to store handoff: {e}")

    async def _run_optimizer(
        self,
        query: str,
        session_id: str,
        options: AgentRunOptions,
        run_handoffs: List[Dict[str, Any]],
        report: str,
        evaluation: ReportEvaluation,
    ) -> AsyncIterator[StreamEvent]:
        handoff = self.record_handoff(
            REPORTER_AGENT, OPTIMIZER_AGENT, f"report quality {evaluation.overall_score:.2f}"
        )
        run_handoffs.append(handoff.to_dict())
        await self._remember_handoff(session_id, handoff)
        yield events.handoff(handoff.from_agent, handoff.to_agent, handoff.reason)
        stream = self.registry.create_agent(OPTIMIZER_AGENT).stream(
            build_optimizer_prompt(query, report, evaluation), options
        )
        try:
            async for event in stream:
                yield event
        finally:
            await stream.aclose()

    async def execute_stream(
        self,
        messages: Sequence[IncomingMessage],
        session_id: str = "",
        cancel_event: Optional[asyncio.Event] = None,
        enable_web_search: WebSearchSetting = None,
        enable_rag: Optional[bool] = True,
    ) -> AsyncIterator[StreamEvent]:
        """Stream the events of one orchestration run.

        ``enable_web_search`` forces ``searchWeb`` on or off; ``None`` or
        ``"auto"`` decide from the query. ``enable_rag=False`` withholds the
        knowledge-base tool. The stream always ends with exactly one ``done``
        or one ``error``.
        """
        started = time.monotonic()
        history, query = split_messages(messages)
        if query is None:
            yield events.error(ErrorCode.INVALID_REQUEST, "No user message found")
            return

        chunk_size = self.config.chunk_size
        prefiltered = pre_filter_query(query, self.config.prefilter)
        logger.info(
            f"[Orchestrator] Pre-filter: handoff={prefiltered.should_handoff}, "
            f"agent={prefiltered.suggested_agent}, confidence={prefiltered.confidence:.2f}"
        )

        if not prefiltered.should_handoff and prefiltered.direct_response:
            for event in stream_text_in_chunks(prefiltered.direct_response, chunk_size):
                yield event
            yield events.done(
                final_agent=FAST_PATH_AGENT,
                tools_called=[],
                provider=RULE_BASED_PROVIDER,
                model_id="prefilter",
                duration_ms=int((time.monotonic() - started) * 1000),
                metadata={"confidence": prefiltered.confidence},
                response=prefiltered.direct_response,
            )
            return

        tasks: Optional[List[Task]] = None
        if prefiltered.suggested_agent is None:
            tasks = await decompose_task(
                query,
                registry=self.registry,
                planner=self._resolve_planner(),
                policy=self.config.prefilter,
                max_subtasks=self.config.max_subtasks,
            )
            if tasks is None and self._needs_clarification(query, prefiltered):
                clarification = Clarification(query, CLARIFICATION_REASON, list(CLARIFICATION_OPTIONS))
                text = clarification.to_text()
                for event in stream_text_in_chunks(text, chunk_size):
                    yield event
                yield events.done(
                    final_agent=ORCHESTRATOR_NAME,
                    tools_called=[],
                    provider=RULE_BASED_PROVIDER,
                    model_id="clarification",
                    duration_ms=int((time.monotonic() - started) * 1000),
                    metadata={"clarification": clarification.to_dict(), "confidence": prefiltered.confidence},
                    response=text,
                )
                return

        if tasks:
            logger.info(f"[Orchestrator] Decomposed into {len(tasks)} subtasks: {[t.target_agent for t in tasks]}")
        else:
            target = prefiltered.suggested_agent or self.config.default_agent
            tasks = [Task(sub_query=query, target_agent=target, order=0)]

        multi = len(tasks) > 1
        capabilities = resolve_capabilities(self.config.capabilities, query, enable_web_search, enable_rag)
        options = self._run_options(session_id, history, cancel_event, capabilities)
        results: List[AgentResult] = []
        tools_called: List[str] = []
        usage: Dict[str, int] = {}
        run_handoffs: List[Dict[str, Any]] = []
        last_done: Optional[StreamEvent] = None
        fallback_reason: Optional[str] = None
        report_quality: Optional[Dict[str, Any]] = None
        previous = ORCHESTRATOR_NAME

        for task in tasks:
            agent_name = task.target_agent
            if agent_name == VISION_AGENT and not self._has_model(VISION_AGENT):
                logger.warning("[Orchestrator] Vision Agent has no model, falling back to Analyst Agent")
                yield events.agent_status(VISION_AGENT, VISION_FALLBACK_STATUS)
                agent_name = ANALYST_AGENT
                fallback_reason = "VISION_FALLBACK"

            if multi:
                reason = f"subtask {task.order + 1}/{len(tasks)}"
            elif prefiltered.suggested_agent:
                reason = f"pre-filter match ({prefiltered.confidence:.2f})"
            else:
                reason = "default agent"
            handoff = self.record_handoff(previous, agent_name, reason)
            run_handoffs.append(handoff.to_dict())
            await self._remember_handoff(session_id, handoff)
            yield events.handoff(handoff.from_agent, handoff.to_agent, handoff.reason)

            refine = agent_name == REPORTER_AGENT and self.config.report_pipeline_enabled
            hold_text = multi or refine
            agent_done: Optional[StreamEvent] = None
            stream = self.registry.create_agent(agent_name).stream(task.sub_query, options)
            try:
                async for event in stream:
                    if event.type == EventType.DONE:
                        agent_done = event
                        continue
                    if event.type == EventType.ERROR:
                        logger.warning(f"[Orchestrator] {agent_name} failed: {event.data.get('code')}, halting run")
                        yield event
                        return
                    if hold_text and event.type == EventType.TEXT_DELTA:
                        continue
                    yield event
            finally:
                await stream.aclose()

            if agent_done is None:
                yield events.error(ErrorCode.STREAM_ERROR, f"{agent_name} ended without a result")
                return

            response = str(agent_done.data.get("response") or "")
            tools_called.extend(agent_done.data.get("toolsCalled", []))
            _sum_usage(usage, agent_done.data.get("usage"))
            last_done = agent_done

            if refine:
                optimize = None
                if self._has_model(OPTIMIZER_AGENT):
                    optimize = functools.partial(self._run_optimizer, task.sub_query, session_id, options, run_handoffs)
                pipeline = ReporterPipeline(
                    optimize,
                    threshold=self.config.report_quality_threshold,
                    max_iterations=self.config.report_max_iterations,
                )
                async for event in pipeline.run(response):
                    yield event
                outcome = pipeline.outcome
                if outcome.error is not None:
                    yield outcome.error
                    return
                for optimizer_done in pipeline.agent_runs:
                    tools_called.extend(optimizer_done.data.get("toolsCalled", []))
                    _sum_usage(usage, optimizer_done.data.get("usage"))
                response = outcome.report
                report_quality = outcome.quality()
                if not multi:
                    for event in stream_text_in_chunks(response, chunk_size):
                        yield event

            results.append(AgentResult(agent=agent_name, response=response))
            if self.store is not None and session_id:
                await save_agent_findings(self.store, session_id, agent_name, response)
            previous = agent_name

        unified = unify_results(results)
        if multi:
            for event in stream_text_in_chunks(unified, chunk_size):
                yield event

        duration_ms = int((time.monotonic() - started) * 1000)
        final_agent = results[-1].agent
        agent_meta = last_done.data.get("metadata", {}) if last_done else {}
        provider = MULTI_AGENT_PROVIDER if multi else agent_meta.get("provider", "")
        model_id = agent_meta.get("modelId", "")
        quality = evaluate_response_quality(
            ORCHESTRATOR_NAME if multi else final_agent, unified, duration_ms, fallback_reason
        )
        logger.info(
            f"[Orchestrator] Completed in {duration_ms}ms via {final_agent}, "
            f"quality flags: {quality['qualityFlags'] or 'none'}"
        )
        metadata: Dict[str, Any] = {"handoffs": run_handoffs, "confidence": prefiltered.confidence, **quality}
        if report_quality is not None:
            metadata["reportQuality"] = report_quality
        yield events.done(
            final_agent=final_agent,
            tools_called=tools_called,
            provider=provider,
            model_id=model_id,
            duration_ms=duration_ms,
            metadata=metadata,
            response=unified,
            usage=usage,
        )


def build_orchestrator(
    config: Optional[OrchestratorConfig] = None,
    env: Optional[Mapping[str, str]] = None,
    tools: Optional[Mapping[str, BaseTool]] = None,
    store: Optional[SessionContextStore] = None,
    factory: Optional[ProviderFactory] = None,
    verbose: bool = False,
) -> MultiAgentOrchestrator:
    """Wire config, provider status, registry and context store together."""
    config = config or load_config(env=env)
    selector = ModelSelector(check_provider_status(env), factory=factory, models=config.models)
    registry = build_default_registry(
        selector,
        tools=tools,
        provider_order=config.provider_order,
        max_steps={name: config.steps_for(name) for name in AGENT_DEFINITIONS},
        verbose=verbose,
    )
    planner_order = config.provider_order.get(ORCHESTRATOR_NAME, DEFAULT_PROVIDER_ORDER[ORCHESTRATOR_NAME])
    return MultiAgentOrchestrator(
        registry,
        config=config,
        store=store if store is not None else InMemorySessionContextStore(config.context_ttl_seconds),
        planner=selector.selector_for(ORCHESTRATOR_NAME, planner_order),
        verbose=verbose,
    )


async def execute_multi_agent_stream(
    request: Mapping[str, Any],
    *,
    orchestrator: Optional[MultiAgentOrchestrator] = None,
) -> AsyncIterator[StreamEvent]:
    """Entry point for transports.

    ``request`` carries ``messages`` and ``session_id`` plus the optional
    ``enable_web_search`` (true, false or "auto") and ``enable_rag`` toggles.
    camelCase keys (``sessionId``, ``enableWebSearch``, ``enableRAG``) are
    accepted too.
    """
    orchestrator = orchestrator or build_orchestrator()
    session_id = str(request.get("session_id") or request.get("sessionId") or "")
    web_search = request.get("enable_web_search", request.get("enableWebSearch"))
    rag = request.get("enable_rag", request.get("enableRAG", True))
    async for event in orchestrator.execute_stream(
        list(request.get("messages") or []),
        session_id=session_id,
        cancel_event=request.get("cancel_event"),
        enable_web_search=web_search,
        enable_rag=rag,
    ):
        yield event
