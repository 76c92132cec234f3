"""Tests for the per-agent observer."""

import logging

from monitor_agent.observability import LOGGER_NAME, AgentObserver


def test_session_stats_aggregate_events():
    observer = AgentObserver(agent_id="NLQ Agent")

    observer.log_step_start(1, "서버 상태")
    observer.log_llm_request("cerebras", "gpt-oss-120b", step=1, duration_ms=12.0, tokens=40)
    observer.log_tool_call("getServerMetrics", {"serverId": "web-01"}, {"cpu": 42}, duration_ms=3.0)
    observer.log_tool_call("searchWeb", {}, {"error": "offline"}, duration_ms=1.0, success=False)
    observer.log_step_end(1, 20.0, "tool_calls")
    observer.log_error("stream", "boom")

    assert observer.get_session_stats() == {
        "total_tokens": 40,
        "llm_requests": 1,
        "tool_calls": 2,
        "failed_tool_calls": 1,
        "errors": 1,
        "steps": 1,
    }


def test_verbose_observer_logs_steps(caplog):
    observer = AgentObserver(agent_id="Analyst Agent", verbose=True)

    with caplog.at_level(logging.INFO, logger=LOGGER_NAME):
        observer.log_step_start(1, "CPU 원인 분석")

    assert "[Analyst Agent] Step 1 started" in caplog.text
