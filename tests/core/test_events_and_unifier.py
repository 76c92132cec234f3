"""Tests for the event vocabulary and the result unifier."""

from monitor_agent.agents import events
from monitor_agent.agents.events import EVENT_TYPES, ErrorCode, EventType
from monitor_agent.agents.protocol import AgentResult, Clarification
from monitor_agent.agents.unifier import EMPTY_RESULT_MESSAGE, unify_results


class TestEvents:
    def test_eight_event_kinds(self):
        assert len(EVENT_TYPES) == 8

    def test_text_delta_carries_plain_text(self):
        event = events.text_delta("hello")

        assert event.to_dict() == {"type": "text_delta", "data": "hello"}
        assert event.is_terminal is False

    def test_done_shape(self):
        event = events.done(
            final_agent="NLQ Agent",
            tools_called=["getServerMetrics"],
            provider="cerebras",
            model_id="gpt-oss-120b",
            duration_ms=-5,
            metadata={"latencyTier": "fast"},
            response="ok",
        )

        assert event.is_terminal is True
        assert event.data == {
            "success": True,
            "finalAgent": "NLQ Agent",
            "toolsCalled": ["getServerMetrics"],
            "metadata": {"provider": "cerebras", "modelId": "gpt-oss-120b", "durationMs": 0, "latencyTier": "fast"},
            "response": "ok",
        }

    def test_error_message_is_optional(self):
        assert events.error(ErrorCode.CANCELLED).data == {"code": "CANCELLED"}
        assert events.error(ErrorCode.STREAM_ERROR, "boom").data == {"code": "STREAM_ERROR", "message": "boom"}

    def test_handoff_reason_is_optional(self):
        assert events.handoff("Orchestrator", "NLQ Agent").data == {"from": "Orchestrator", "to": "NLQ Agent"}
        assert events.handoff("A", "B", "why").data["reason"] == "why"

    def test_unknown_type_is_flagged(self):
        assert events.StreamEvent("heartbeat", {}).is_known is False
        assert events.step_finish("stop", [], []).type == EventType.STEP_FINISH


class TestUnifier:
    def test_empty(self):
        assert unify_results([]) == EMPTY_RESULT_MESSAGE

    def test_single_result_is_identity(self):
        assert unify_results([AgentResult("NLQ Agent", "  그대로  ")]) == "  그대로  "

    def test_multiple_results_are_sectioned_in_order(self):
        unified = unify_results(
            [
                AgentResult("NLQ Agent", "상태 요약"),
                AgentResult("Analyst Agent", "원인 분석"),
            ]
        )

        assert unified == "# 종합 분석 결과\n\n## NLQ 분석\n상태 요약\n\n---\n\n## Analyst 분석\n원인 분석"


class TestClarification:
    def test_text_and_dict(self):
        clarification = Clarification("음", "무엇이 궁금하신가요?", ["서버 상태", "장애 보고서"])

        assert clarification.to_text() == "무엇이 궁금하신가요?\n- 서버 상태\n- 장애 보고서"
        assert clarification.to_dict()["originalQuery"] == "음"
