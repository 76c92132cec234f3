"""Tests for the agent execution contract (BaseAgent.stream)."""

import asyncio

import pytest

from monitor_agent.agents.base import AgentRunOptions, ConfigAgent, normalize_stream_text_delta, sanitize_text
from monitor_agent.agents.events import ErrorCode, EventType
from monitor_agent.tools.base import FunctionTool


def _agent(config):
    return ConfigAgent(config.name if config else "Ghost Agent", lambda name: config)


def _types(events):
    return [event.type for event in events]


def _assert_single_terminal(events):
    terminal = [event for event in events if event.is_terminal]
    assert len(terminal) == 1
    assert events[-1] is terminal[0]


class TestBaseAgentStream:
    """Event sequences produced by one agent invocation."""

    @pytest.mark.asyncio
    async def test_plain_text_answer(self, fake_llm):
        provider = fake_llm.Provider(fake_llm.text("서버 ", "정상입니다"))
        agent = _agent(fake_llm.agent_config("NLQ Agent", provider))

        events = await fake_llm.collect(agent.stream("서버 상태 알려줘"))

        assert _types(events) == [EventType.TEXT_DELTA, EventType.TEXT_DELTA, EventType.STEP_FINISH, EventType.DONE]
        done = events[-1].data
        assert done["success"] is True
        assert done["finalAgent"] == "NLQ Agent"
        assert done["response"] == "서버 정상입니다"
        assert done["toolsCalled"] == []
        assert done["metadata"]["provider"] == "fake"
        assert done["metadata"]["modelId"] == "scripted-1"
        assert done["usage"]["totalTokens"] == 8
        _assert_single_terminal(events)

    @pytest.mark.asyncio
    async def test_tool_loop_ends_on_final_answer(self, fake_llm):
        metrics = FunctionTool(
            "getServerMetrics",
            lambda serverId: {"serverId": serverId, "cpu": 92},
            description="Current metrics",
        )
        provider = fake_llm.Provider(
            fake_llm.call("getServerMetrics", {"serverId": "web-01"}),
            fake_llm.call("finalAnswer", {"answer": "web-01 CPU 92%"}, call_id="call_2"),
        )
        agent = _agent(fake_llm.agent_config("NLQ Agent", provider, tools={"getServerMetrics": metrics}))

        events = await fake_llm.collect(agent.stream("web-01 상태"))

        assert _types(events) == [
            EventType.TOOL_CALL,
            EventType.TOOL_RESULT,
            EventType.STEP_FINISH,
            EventType.TOOL_CALL,
            EventType.TOOL_RESULT,
            EventType.STEP_FINISH,
            EventType.TEXT_DELTA,
            EventType.DONE,
        ]
        assert events[0].data == {"name": "getServerMetrics", "args": {"serverId": "web-01"}}
        assert events[1].data["result"] == {"result": {"serverId": "web-01", "cpu": 92}}
        assert events[2].data["toolCalls"] == ["getServerMetrics"]
        assert events[6].data == "web-01 CPU 92%"
        assert events[-1].data["toolsCalled"] == ["getServerMetrics"]
        assert events[-1].data["response"] == "web-01 CPU 92%"
        assert len(provider.calls) == 2

    @pytest.mark.asyncio
    async def test_tool_failure_becomes_error_payload(self, fake_llm):
        def broken(**kwargs):
            raise RuntimeError("metrics backend down")

        provider = fake_llm.Provider(
            fake_llm.call("getServerMetrics", {}),
            fake_llm.text("데이터를 가져오지 못했습니다"),
        )
        tools = {"getServerMetrics": FunctionTool("getServerMetrics", broken, description="x")}
        agent = _agent(fake_llm.agent_config("NLQ Agent", provider, tools=tools))

        events = await fake_llm.collect(agent.stream("상태"))

        result = next(e for e in events if e.type == EventType.TOOL_RESULT)
        assert result.data["result"] == {"error": "metrics backend down"}
        assert events[-1].type == EventType.DONE
        assert events[-1].data["response"] == "데이터를 가져오지 못했습니다"

    @pytest.mark.asyncio
    async def test_unknown_tool_is_reported_to_model(self, fake_llm):
        provider = fake_llm.Provider(fake_llm.call("deleteEverything", {}), fake_llm.text("ok"))
        agent = _agent(fake_llm.agent_config("NLQ Agent", provider))

        events = await fake_llm.collect(agent.stream("상태"))

        result = next(e for e in events if e.type == EventType.TOOL_RESULT)
        assert "Unknown tool" in result.data["result"]["error"]
        _assert_single_terminal(events)

    @pytest.mark.asyncio
    async def test_step_cap_emits_fallback_text(self, fake_llm):
        provider = fake_llm.Provider(
            fake_llm.call("getServerMetrics", {}),
            fake_llm.call("getServerMetrics", {}, call_id="call_2"),
            fake_llm.call("getServerMetrics", {}, call_id="call_3"),
        )
        tools = {"getServerMetrics": FunctionTool("getServerMetrics", lambda: {"cpu": 1}, description="x")}
        agent = _agent(fake_llm.agent_config("NLQ Agent", provider, tools=tools, max_steps=2))

        events = await fake_llm.collect(agent.stream("상태"))

        assert len(provider.calls) == 2
        assert sum(1 for e in events if e.type == EventType.STEP_FINISH) == 2
        text = "".join(e.data for e in events if e.type == EventType.TEXT_DELTA)
        assert "응답을 생성하지 못했습니다" in text
        assert events[-1].type == EventType.DONE

    @pytest.mark.asyncio
    async def test_missing_config_yields_config_not_found(self):
        agent = ConfigAgent("Ghost Agent", lambda name: None)

        events = [event async for event in agent.stream("hi")]

        assert len(events) == 1
        assert events[0].type == EventType.ERROR
        assert events[0].data["code"] == ErrorCode.CONFIG_NOT_FOUND

    @pytest.mark.asyncio
    async def test_missing_model_yields_model_unavailable(self, fake_llm):
        agent = _agent(fake_llm.agent_config("Vision Agent", None))

        events = await fake_llm.collect(agent.stream("스크린샷"))

        assert _types(events) == [EventType.ERROR]
        assert events[0].data["code"] == ErrorCode.MODEL_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_provider_exception_yields_stream_error(self, fake_llm):
        provider = fake_llm.Provider([fake_llm.text("부분")[0], RuntimeError("connection reset")])
        agent = _agent(fake_llm.agent_config("NLQ Agent", provider))

        events = await fake_llm.collect(agent.stream("상태"))

        assert _types(events) == [EventType.TEXT_DELTA, EventType.ERROR]
        assert events[-1].data == {"code": ErrorCode.STREAM_ERROR, "message": "connection reset"}

    @pytest.mark.asyncio
    async def test_timeout_yields_stream_error(self, fake_llm):
        provider = fake_llm.Provider(fake_llm.text("late"), delay=5)
        agent = _agent(fake_llm.agent_config("NLQ Agent", provider))

        events = await fake_llm.collect(agent.stream("상태", AgentRunOptions(timeout_s=0.05)))

        assert _types(events) == [EventType.ERROR]
        assert events[0].data["code"] == ErrorCode.STREAM_ERROR
        assert "timed out" in events[0].data["message"]

    @pytest.mark.asyncio
    async def test_cancel_event_yields_cancelled(self, fake_llm):
        provider = fake_llm.Provider(fake_llm.text("late"), delay=5)
        agent = _agent(fake_llm.agent_config("NLQ Agent", provider))
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.02, cancel.set)

        events = await fake_llm.collect(agent.stream("상태", AgentRunOptions(cancel_event=cancel)))

        assert _types(events) == [EventType.ERROR]
        assert events[0].data["code"] == ErrorCode.CANCELLED

    @pytest.mark.asyncio
    async def test_capabilities_filter_tools_but_keep_final_answer(self, fake_llm):
        provider = fake_llm.Provider(fake_llm.text("ok"))
        tools = {
            "searchWeb": FunctionTool("searchWeb", lambda query: [], description="web"),
            "getServerMetrics": FunctionTool("getServerMetrics", lambda: {}, description="metrics"),
        }
        agent = _agent(fake_llm.agent_config("NLQ Agent", provider, tools=tools))

        await fake_llm.collect(agent.stream("상태", AgentRunOptions(capabilities=frozenset())))

        offered = provider.calls[0]["tools"]
        assert "searchWeb" not in offered
        assert "getServerMetrics" in offered
        assert "finalAnswer" in offered

    @pytest.mark.asyncio
    async def test_run_collects_stream(self, fake_llm):
        provider = fake_llm.Provider(fake_llm.text("정상"))
        agent = _agent(fake_llm.agent_config("NLQ Agent", provider))

        result = await agent.run("상태")

        assert result.success is True
        assert result.text == "정상"
        assert result.metadata["provider"] == "fake"


class TestStreamTextHelpers:
    def test_snapshot_delta_is_reduced_to_suffix(self):
        accumulated = "CPU usage is currently"
        assert normalize_stream_text_delta(accumulated, accumulated + " 92%") == " 92%"

    def test_incremental_delta_is_kept(self):
        assert normalize_stream_text_delta("abc", "abc") == "abc"
        assert normalize_stream_text_delta("", "hello") == "hello"

    def test_sanitize_removes_han_characters(self):
        assert sanitize_text("서버 状態 정상") == "서버  정상"
