"""Tests for per-request web search and knowledge-base toggles."""

import pytest

from monitor_agent.agents.web_search import (
    resolve_capabilities,
    resolve_web_search_setting,
    should_enable_web_search,
)
from monitor_agent.tools.base import (
    CAPABILITY_RAG,
    CAPABILITY_VISION_TOOLS,
    CAPABILITY_WEB_SEARCH,
    DEFAULT_CAPABILITIES,
)


class TestShouldEnableWebSearch:
    @pytest.mark.parametrize(
        "query",
        [
            "최신 리눅스 커널 소식 알려줘",
            "Latest Redis release notes",
            "CVE-2024-3094 영향 받는지",
            "보안 취약점 뉴스 정리해줘",
        ],
    )
    def test_external_information_enables(self, query):
        assert should_enable_web_search(query) is True

    def test_external_wins_over_internal_keywords(self):
        assert should_enable_web_search("서버 상태 관련 최신 업데이트") is True

    @pytest.mark.parametrize(
        "query",
        [
            "nginx 502 에러 해결 방법",
            "How to fix Kubernetes CrashLoopBackOff",
            "PostgreSQL 버전 이슈 정리",
        ],
    )
    def test_technology_with_problem_solving_enables(self, query):
        assert should_enable_web_search(query) is True

    def test_technology_alone_stays_off(self):
        assert should_enable_web_search("docker 컨테이너 목록") is False

    def test_problem_solving_alone_stays_off(self):
        assert should_enable_web_search("메모리 부족 해결 방법") is False

    @pytest.mark.parametrize("query", ["서버 상태 알려줘", "CPU 사용률 트렌드", "과거 장애 보고서 보여줘"])
    def test_internal_queries_stay_off(self, query):
        assert should_enable_web_search(query) is False

    def test_unclassified_query_stays_off(self):
        assert should_enable_web_search("안녕") is False


class TestResolveWebSearchSetting:
    def test_true_forces_on(self):
        assert resolve_web_search_setting(True, "서버 상태 알려줘") is True

    def test_false_forces_off(self):
        assert resolve_web_search_setting(False, "latest nginx news") is False

    @pytest.mark.parametrize("setting", [None, "auto", "AUTO"])
    def test_auto_detects_from_query(self, setting):
        assert resolve_web_search_setting(setting, "latest nginx news") is True
        assert resolve_web_search_setting(setting, "서버 상태 알려줘") is False

    def test_unknown_string_falls_back_to_detection(self):
        assert resolve_web_search_setting("sometimes", "서버 상태 알려줘") is False


class TestResolveCapabilities:
    def test_internal_query_drops_web_search_only(self):
        capabilities = resolve_capabilities(DEFAULT_CAPABILITIES, "서버 상태 알려줘")

        assert capabilities == frozenset({CAPABILITY_VISION_TOOLS, CAPABILITY_RAG})

    def test_rag_can_be_disabled(self):
        capabilities = resolve_capabilities(DEFAULT_CAPABILITIES, "서버 상태", enable_web_search=True, enable_rag=False)

        assert capabilities == frozenset({CAPABILITY_VISION_TOOLS, CAPABILITY_WEB_SEARCH})

    def test_rag_defaults_on_when_unset(self):
        assert CAPABILITY_RAG in resolve_capabilities(DEFAULT_CAPABILITIES, "서버 상태", enable_rag=None)

    def test_request_cannot_add_unconfigured_capability(self):
        capabilities = resolve_capabilities([CAPABILITY_VISION_TOOLS], "latest news", enable_web_search=True)

        assert capabilities == frozenset({CAPABILITY_VISION_TOOLS})
