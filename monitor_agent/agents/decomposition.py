"""Task decomposition: split a composite query into ordered single-agent tasks.

Only composite queries are decomposed. When an orchestrator model is
available it is asked for a JSON plan; otherwise (or when the plan is
unusable) the query is split into clauses by connectors and each clause is
assigned by keyword family.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from ..config import PreFilterPolicy
from ..providers.selection import ResolvedModel
from ..providers.types import GenerationConfig, Message
from ..retry import RetryConfig, retry_with_backoff
from .prefilter import (
    ADVISOR_QUERY_PATTERN,
    ANALYST_QUERY_PATTERN,
    DEFAULT_POLICY,
    REPORTER_QUERY_PATTERN,
    pre_filter_query,
)
from .protocol import Task
from .registry import (
    ADVISOR_AGENT,
    ANALYST_AGENT,
    NLQ_AGENT,
    REPORTER_AGENT,
    VISION_AGENT,
    VISION_MATCH_PATTERNS,
    AgentRegistry,
)

logger = logging.getLogger(__name__)

MAX_SUBTASKS = 4

COMPLEXITY_INDICATORS = [
    re.compile(r"그리고|또한|동시에|함께"),
    re.compile(r"비교|차이|대비"),
    re.compile(r"분석.*보고서|보고서.*분석"),
    re.compile(r"전체.*상세|상세.*전체"),
]

NLQ_QUERY_PATTERN = re.compile(
    r"상태|현황|목록|조회|메트릭|사용률|사용량|cpu|메모리|디스크|네트워크|status|metric|usage", re.I
)

CLAUSE_SPLIT = re.compile(
    r"\s*(?:그리고|또한|그\s*다음에?|다음으로|하고\s+|[,;]|\band also\b|\band then\b|\bthen\b)\s*", re.I
)

DECOMPOSE_SYSTEM_PROMPT = "복합 질문을 서브태스크로 분해하는 전문가입니다. JSON 객체 하나만 출력하세요."

DECOMPOSE_PROMPT = """다음 복합 질문을 서브태스크로 분해하세요.

## 사용 가능한 에이전트
- NLQ Agent: 서버 상태 조회, 메트릭 필터링/집계
- Analyst Agent: 이상 탐지, 트렌드 예측, 근본 원인 분석
- Reporter Agent: 장애 보고서, 인시던트 타임라인
- Advisor Agent: 해결 방법, CLI 명령어, 과거 사례
- Vision Agent: 스크린샷/대시보드 이미지 분석

## 사용자 질문
{query}

## 분해 가이드라인
- 각 서브태스크는 하나의 에이전트가 독립적으로 처리할 수 있어야 함
- 서브태스크는 실행 순서대로 나열 (앞 결과를 뒤에서 참고할 수 있음)
- 최대 {max_subtasks}개의 서브태스크로 제한
- Vision Agent는 이미지/스크린샷이 필요한 경우에만 할당

## 출력 형식
{{"subtasks": [{{"task": "서브 질문", "agent": "에이전트 이름"}}], "requires_sequential": true}}"""


class PlannedSubtask(BaseModel):
    task: str = Field(min_length=1)
    agent: str = Field(min_length=1)


class TaskDecomposition(BaseModel):
    """Plan returned by the orchestrator model."""

    subtasks: List[PlannedSubtask] = Field(min_length=1, max_length=8)
    requires_sequential: bool = True


def _first_vision_match(text: str) -> Optional[int]:
    lowered = text.lower()
    positions = []
    for pattern in VISION_MATCH_PATTERNS:
        if isinstance(pattern, str):
            index = lowered.find(pattern.lower())
            if index >= 0:
                positions.append(index)
        else:
            match = pattern.search(text)
            if match:
                positions.append(match.start())
    return min(positions) if positions else None


def intent_families(text: str) -> List[str]:
    """Agents whose vocabulary appears in ``text``, ordered by first occurrence."""
    found: List[Tuple[int, str]] = []
    for agent, pattern in (
        (NLQ_AGENT, NLQ_QUERY_PATTERN),
        (ANALYST_AGENT, ANALYST_QUERY_PATTERN),
        (REPORTER_AGENT, REPORTER_QUERY_PATTERN),
        (ADVISOR_AGENT, ADVISOR_QUERY_PATTERN),
    ):
        match = pattern.search(text)
        if match:
            found.append((match.start(), agent))
    vision_at = _first_vision_match(text)
    if vision_at is not None:
        found.append((vision_at, VISION_AGENT))
    return [agent for _, agent in sorted(found)]


def is_complex_query(query: str) -> bool:
    matches = sum(1 for pattern in COMPLEXITY_INDICATORS if pattern.search(query))
    return matches >= 2 or len(query) > 100 or len(intent_families(query)) >= 2


def split_into_tasks(query: str, max_subtasks: int = MAX_SUBTASKS) -> List[Task]:
    """Rule-based split: one task per agent, built from the clauses that mention it."""
    clauses = [clause.strip() for clause in CLAUSE_SPLIT.split(query) if clause and clause.strip()]
    by_agent: Dict[str, List[str]] = {}
    for clause in clauses:
        for agent in intent_families(clause):
            parts = by_agent.setdefault(agent, [])
            if clause not in parts:
                parts.append(clause)

    tasks = [
        Task(sub_query=", ".join(parts), target_agent=agent, order=index)
        for index, (agent, parts) in enumerate(by_agent.items())
    ]
    return tasks[:max_subtasks]


def validate_tasks(tasks: Sequence[Task], registry: Optional[AgentRegistry]) -> List[Task]:
    """Drop tasks whose agent is unknown, internal or has no model; renumber the rest."""
    if registry is None:
        return [Task(t.sub_query, t.target_agent, index) for index, t in enumerate(tasks)]

    valid: List[Task] = []
    for task in tasks:
        config = registry.get_config(task.target_agent)
        if config is None or config.internal:
            logger.warning(f"[Decompose] Agent {task.target_agent!r} not routable, removing: {task.sub_query[:40]!r}")
            continue
        if config.resolve_model() is None:
            logger.warning(f"[Decompose] Agent {task.target_agent!r} model unavailable, removing: {task.sub_query[:40]!r}")
            continue
        valid.append(Task(task.sub_query, task.target_agent, len(valid)))

    if len(valid) != len(tasks):
        logger.info(f"[Decompose] Validated: {len(valid)}/{len(tasks)} subtasks kept")
    return valid


def _extract_json(text: str) -> str:
    start, end = text.find("{"), text.rfind("}")
    if start < 0 or end <= start:
        raise ValueError("planner response contains no JSON object")
    return text[start : end + 1]


async def plan_with_model(
    query: str,
    planner: ResolvedModel,
    max_subtasks: int = MAX_SUBTASKS,
    retry_config: Optional[RetryConfig] = None,
) -> List[Task]:
    """Ask the orchestrator model for a plan.

    Raises:
        ValueError: The response is not a valid plan.
        PermanentError: The provider call failed for a non-transient reason.
    """
    response = await retry_with_backoff(
        planner.model.generate,
        retry_config or RetryConfig(max_attempts=2),
        [Message.user(DECOMPOSE_PROMPT.format(query=query, max_subtasks=max_subtasks))],
        None,
        GenerationConfig(system_prompt=DECOMPOSE_SYSTEM_PROMPT, max_tokens=1024, temperature=0.2),
    )
    plan = TaskDecomposition.model_validate_json(_extract_json(response.text))
    logger.info(f"[Decompose] Model planned {len(plan.subtasks)} subtasks via {planner.provider}/{planner.model_id}")
    return [
        Task(sub_query=subtask.task.strip(), target_agent=subtask.agent.strip(), order=index)
        for index, subtask in enumerate(plan.subtasks[:max_subtasks])
    ]


async def decompose_task(
    query: str,
    *,
    registry: Optional[AgentRegistry] = None,
    planner: Optional[ResolvedModel] = None,
    policy: PreFilterPolicy = DEFAULT_POLICY,
    max_subtasks: int = MAX_SUBTASKS,
    retry_config: Optional[RetryConfig] = None,
) -> Optional[List[Task]]:
    """Split ``query`` into ordered tasks, or return None if it is atomic.

    A query that the pre-filter resolves on its own (direct answer or a single
    suggested agent) is atomic by definition.
    """
    prefiltered = pre_filter_query(query, policy)
    if not prefiltered.should_handoff or prefiltered.suggested_agent:
        return None
    if not is_complex_query(query):
        logger.info("[Decompose] Query is simple, skipping decomposition")
        return None

    tasks: List[Task] = []
    if planner is not None:
        try:
            tasks = await plan_with_model(query, planner, max_subtasks, retry_config)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[Decompose] Model planning failed, using rule-based split: {e}")
            tasks = []

    if len(tasks) < 2:
        tasks = split_into_tasks(query, max_subtasks)
    if len(tasks) < 2:
        return None

    tasks = validate_tasks(tasks, registry)
    if not tasks:
        logger.warning("[Decompose] No valid subtasks after validation, falling back to single agent")
        return None
    return tasks
