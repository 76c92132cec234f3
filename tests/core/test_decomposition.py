"""Tests for task decomposition."""

import pytest

from monitor_agent.agents.decomposition import (
    decompose_task,
    intent_families,
    is_complex_query,
    split_into_tasks,
)
from monitor_agent.providers.types import LLMResponse
from monitor_agent.retry import RetryConfig

COMPOSITE_QUERY = "서버 상태와 원인 분석을 비교하고 해결 방법도 알려줘"


class TestRuleBasedSplit:
    def test_families_follow_order_of_appearance(self):
        assert intent_families("해결 방법과 서버 상태") == ["Advisor Agent", "NLQ Agent"]

    def test_complexity(self):
        assert is_complex_query(COMPOSITE_QUERY) is True
        assert is_complex_query("서버 상태") is False
        assert is_complex_query("x" * 101) is True

    def test_split_assigns_clauses_per_agent(self):
        tasks = split_into_tasks(COMPOSITE_QUERY)

        assert [t.target_agent for t in tasks] == ["NLQ Agent", "Analyst Agent", "Advisor Agent"]
        assert [t.order for t in tasks] == [0, 1, 2]
        assert tasks[0].sub_query == "서버 상태와 원인 분석을 비교"
        assert tasks[2].sub_query == "해결 방법도 알려줘"

    def test_split_respects_max_subtasks(self):
        assert len(split_into_tasks(COMPOSITE_QUERY, max_subtasks=2)) == 2


class TestDecomposeTask:
    @pytest.mark.asyncio
    async def test_atomic_query_is_not_decomposed(self):
        assert await decompose_task("서버 상태") is None
        assert await decompose_task("안녕하세요") is None

    @pytest.mark.asyncio
    async def test_composite_query_is_decomposed(self):
        tasks = await decompose_task(COMPOSITE_QUERY)

        assert tasks is not None
        assert [t.target_agent for t in tasks] == ["NLQ Agent", "Analyst Agent", "Advisor Agent"]

    @pytest.mark.asyncio
    async def test_tasks_for_unavailable_agents_are_dropped(self, fake_llm):
        registry = fake_llm.registry(
            {
                "NLQ Agent": fake_llm.Provider(),
                "Analyst Agent": None,
                "Advisor Agent": fake_llm.Provider(),
            }
        )

        tasks = await decompose_task(COMPOSITE_QUERY, registry=registry)

        assert [t.target_agent for t in tasks] == ["NLQ Agent", "Advisor Agent"]
        assert [t.order for t in tasks] == [0, 1]

    @pytest.mark.asyncio
    async def test_task_is_dropped_when_model_lookup_raises(self, fake_llm):
        registry = fake_llm.registry(
            {
                "NLQ Agent": fake_llm.Provider(),
                "Analyst Agent": fake_llm.Provider(),
                "Advisor Agent": fake_llm.Provider(),
            }
        )

        def broken():
            raise ConnectionError("provider lookup failed")

        registry.get_config("Advisor Agent").get_model = broken

        tasks = await decompose_task(COMPOSITE_QUERY, registry=registry)

        assert [t.target_agent for t in tasks] == ["NLQ Agent", "Analyst Agent"]

    @pytest.mark.asyncio
    async def test_no_valid_tasks_returns_none(self, fake_llm):
        registry = fake_llm.registry({"Reporter Agent": fake_llm.Provider()})

        assert await decompose_task(COMPOSITE_QUERY, registry=registry) is None

    @pytest.mark.asyncio
    async def test_planner_plan_is_used(self, fake_llm):
        planner = fake_llm.Provider()
        planner.responses.append(
            LLMResponse(
                text=(
                    "```json\n"
                    '{"subtasks": [{"task": "전체 서버 상태 조회", "agent": "NLQ Agent"},'
                    ' {"task": "장애 보고서 작성", "agent": "Reporter Agent"}],'
                    ' "requires_sequential": true}\n```'
                )
            )
        )

        tasks = await decompose_task(COMPOSITE_QUERY, planner=fake_llm.resolved(planner))

        assert [(t.sub_query, t.target_agent) for t in tasks] == [
            ("전체 서버 상태 조회", "NLQ Agent"),
            ("장애 보고서 작성", "Reporter Agent"),
        ]
        assert len(planner.calls) == 1

    @pytest.mark.asyncio
    async def test_unusable_plan_falls_back_to_rules(self, fake_llm):
        planner = fake_llm.Provider()
        planner.responses.append(LLMResponse(text="I cannot help with that."))

        tasks = await decompose_task(COMPOSITE_QUERY, planner=fake_llm.resolved(planner))

        assert [t.target_agent for t in tasks] == ["NLQ Agent", "Analyst Agent", "Advisor Agent"]

    @pytest.mark.asyncio
    async def test_planner_failure_falls_back_to_rules(self, fake_llm):
        planner = fake_llm.Provider()
        planner.responses.append(RuntimeError("invalid api key"))

        tasks = await decompose_task(
            COMPOSITE_QUERY,
            planner=fake_llm.resolved(planner),
            retry_config=RetryConfig(max_attempts=1),
        )

        assert len(tasks) == 3
