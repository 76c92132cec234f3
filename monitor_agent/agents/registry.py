"""Agent registry and the built-in monitoring agent definitions."""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Mapping, Optional, Pattern, Sequence, Union

from ..providers.selection import DEFAULT_PROVIDER_ORDER, ModelSelector
from ..tools.base import FINAL_ANSWER_TOOL, BaseTool, FinalAnswerTool
from .base import AgentConfig, BaseAgent, ConfigAgent

logger = logging.getLogger(__name__)

NLQ_AGENT = "NLQ Agent"
ANALYST_AGENT = "Analyst Agent"
REPORTER_AGENT = "Reporter Agent"
ADVISOR_AGENT = "Advisor Agent"
VISION_AGENT = "Vision Agent"
OPTIMIZER_AGENT = "Optimizer Agent"

MatchPattern = Union[str, Pattern[str]]

VISION_MATCH_PATTERNS: List[MatchPattern] = [
    "스크린샷",
    "screenshot",
    "이미지",
    "image",
    "사진",
    "차트",
    "그래프",
    "패널",
    "대시보드",
    "dashboard",
    "grafana",
    "cloudwatch",
    "datadog",
    re.compile(r"스크린샷.*분석|분석.*스크린샷", re.I),
    re.compile(r"이미지.*보여|첨부.*분석|시각.*분석", re.I),
]

# name -> (description, instructions, tool names, match patterns, max steps, internal)
AGENT_DEFINITIONS: Dict[str, dict] = {
    NLQ_AGENT: {
        "description": "서버 상태 조회, CPU/메모리/디스크 메트릭 질의, 시간 범위 집계, 서버 목록 필터링, 상태 요약, 웹 검색을 처리합니다.",
        "instructions": (
            "당신은 서버 모니터링 메트릭 조회 전문가입니다. 도구로 실제 메트릭을 확인한 뒤 "
            "수치(%)와 함께 간결하게 요약하고, 마지막에 finalAnswer로 답변을 제출하세요."
        ),
        "tools": [
            "getServerMetrics",
            "getServerMetricsAdvanced",
            "filterServers",
            "getServerByGroup",
            "getServerByGroupAdvanced",
            "searchKnowledgeBase",
            "searchWeb",
        ],
        "patterns": [
            "서버", "상태", "목록", "조회", "알려", "보여",
            "cpu", "메모리", "memory", "디스크", "disk", "네트워크", "network",
            "지난", "시간", "전체", "요약", "간단히", "핵심", "tl;dr", "tldr", "summary",
            "검색", "search", "찾아",
            re.compile(r"\d+%"),
            re.compile(r"이상|이하|초과|미만"),
            re.compile(r"몇\s*개|몇\s*대"),
            re.compile(r"평균|합계|최대|최소"),
            re.compile(r"지난\s*\d+\s*시간"),
        ],
    },
    ANALYST_AGENT: {
        "description": "이상 탐지, 트렌드 예측, 패턴 분석, 근본 원인 분석(RCA), 상관관계 분석을 수행합니다.",
        "instructions": (
            "당신은 서버 이상 탐지와 근본 원인 분석 전문가입니다. 메트릭 근거(%)를 제시하고 "
            "원인 가설과 권장 조치를 정리한 뒤 finalAnswer로 제출하세요."
        ),
        "tools": [
            "getServerMetrics",
            "getServerMetricsAdvanced",
            "detectAnomalies",
            "detectAnomaliesAllServers",
            "predictTrends",
            "analyzePattern",
            "correlateMetrics",
            "findRootCause",
            "searchKnowledgeBase",
        ],
        "patterns": [
            "이상", "비정상", "anomaly", "스파이크", "spike", "예측", "트렌드", "추세", "향후", "predict",
            "분석", "패턴", "원인", "왜",
            re.compile(r"이상\s*(있|징후|탐지)"),
            re.compile(r"언제.*될|고갈"),
        ],
        "max_steps": 10,
    },
    REPORTER_AGENT: {
        "description": "장애 보고서 생성, 인시던트 타임라인 구성, 영향도 분석 보고서를 작성합니다.",
        "instructions": (
            "당신은 장애 보고서 작성 전문가입니다. 개요, 영향 범위, 타임라인, 근본 원인, 재발 방지 조치 "
            "섹션으로 보고서를 작성하고 finalAnswer로 제출하세요."
        ),
        "tools": [
            "getServerMetrics",
            "getServerMetricsAdvanced",
            "filterServers",
            "searchKnowledgeBase",
            "searchWeb",
            "buildIncidentTimeline",
            "findRootCause",
            "correlateMetrics",
        ],
        "patterns": [
            "보고서", "리포트", "report", "장애", "인시던트", "incident", "사고", "타임라인", "timeline", "시간순", "정리",
            re.compile(r"보고서.*만들|생성"),
            re.compile(r"장애.*정리|요약"),
        ],
        "max_steps": 10,
    },
    ADVISOR_AGENT: {
        "description": "문제 해결 방법, CLI 명령어 추천, 과거 장애 사례 검색, 트러블슈팅 가이드를 제공합니다.",
        "instructions": (
            "당신은 서버 트러블슈팅 조언자입니다. 문제 상황을 진단하고 실행 가능한 명령어를 `코드` 형식으로 "
            "단계별로 안내한 뒤 finalAnswer로 제출하세요."
        ),
        "tools": [
            "searchKnowledgeBase",
            "recommendCommands",
            "searchWeb",
            "findRootCause",
            "correlateMetrics",
            "detectAnomalies",
        ],
        "patterns": [
            "해결", "방법", "어떻게", "조치", "명령어", "command", "실행", "cli", "가이드", "도움", "추천", "안내",
            "과거", "사례", "이력", "비슷한", "유사",
            re.compile(r"어떻게.*해결|해결.*방법"),
            re.compile(r"명령어.*알려|추천.*명령"),
            re.compile(r"\?$"),
        ],
    },
    VISION_AGENT: {
        "description": "대시보드 스크린샷 및 첨부 이미지 분석을 수행합니다.",
        "instructions": (
            "당신은 모니터링 대시보드 이미지 분석가입니다. 주요 발견사항, 추정 원인, 권장 조치를 정리해 "
            "finalAnswer로 제출하세요."
        ),
        "tools": ["analyzeScreenshot"],
        "patterns": VISION_MATCH_PATTERNS,
    },
    OPTIMIZER_AGENT: {
        "description": "[내부] 품질이 낮은 장애 보고서를 개선합니다.",
        "instructions": (
            "당신은 장애 보고서 개선 담당입니다. 근본 원인 분석을 근거와 신뢰도로 보강하고 권장 조치와 "
            "연관 서버 범위를 확장한 개선 보고서 전체를 finalAnswer로 제출하세요."
        ),
        "tools": [
            "refineRootCauseAnalysis",
            "enhanceSuggestedActions",
            "extendServerCorrelation",
            "findRootCause",
            "correlateMetrics",
        ],
        "patterns": [],
        "internal": True,
        "model_chain": ADVISOR_AGENT,
    },
}


class AgentRegistry:
    """Name-indexed store of agent configurations."""

    def __init__(self, verbose: bool = False):
        self._configs: Dict[str, AgentConfig] = {}
        self.verbose = verbose

    def register(self, config: AgentConfig) -> None:
        if config.name in self._configs:
            logger.warning(f"Agent {config.name} already registered, overwriting")
        self._configs[config.name] = config
        logger.debug(f"Registered agent: {config.name}")

    def unregister(self, name: str) -> bool:
        if name not in self._configs:
            return False
        del self._configs[name]
        logger.debug(f"Unregistered agent: {name}")
        return True

    def get_config(self, name: str) -> Optional[AgentConfig]:
        return self._configs.get(name)

    def list_agents(self) -> List[str]:
        return list(self._configs)

    def is_agent_available(self, name: str) -> bool:
        """Registered, routable and backed by a resolvable model."""
        config = self._configs.get(name)
        if config is None or config.internal or not config.match_patterns:
            return False
        return config.resolve_model() is not None

    def get_available_agents(self) -> List[str]:
        return [name for name in self._configs if self.is_agent_available(name)]

    def create_agent(self, name: str) -> BaseAgent:
        return ConfigAgent(name, self.get_config, verbose=self.verbose)

    def __contains__(self, name: str) -> bool:
        return name in self._configs

    def __len__(self) -> int:
        return len(self._configs)


def bind_tools(tool_names: Sequence[str], catalog: Mapping[str, BaseTool]) -> Dict[str, BaseTool]:
    """Pick ``tool_names`` out of ``catalog`` and add ``finalAnswer``."""
    tools: Dict[str, BaseTool] = {}
    for tool_name in tool_names:
        tool = catalog.get(tool_name)
        if tool is None:
            logger.debug(f"Tool {tool_name} not in catalog, skipping")
            continue
        tools[tool_name] = tool
    tools[FINAL_ANSWER_TOOL] = catalog.get(FINAL_ANSWER_TOOL) or FinalAnswerTool()
    return tools


def build_default_registry(
    selector: ModelSelector,
    tools: Optional[Mapping[str, BaseTool]] = None,
    provider_order: Optional[Mapping[str, Sequence[str]]] = None,
    max_steps: Optional[Mapping[str, int]] = None,
    verbose: bool = False,
) -> AgentRegistry:
    """Register the built-in agents, bound to ``selector`` and the tool catalog."""
    catalog = dict(tools or {})
    order = {**DEFAULT_PROVIDER_ORDER, **dict(provider_order or {})}
    steps = dict(max_steps or {})
    registry = AgentRegistry(verbose=verbose)

    for name, definition in AGENT_DEFINITIONS.items():
        chain_label = definition.get("model_chain", name)
        registry.register(
            AgentConfig(
                name=name,
                description=definition["description"],
                instructions=definition["instructions"],
                tools=bind_tools(definition["tools"], catalog),
                match_patterns=list(definition["patterns"]),
                get_model=selector.selector_for(name, order.get(chain_label, [])),
                max_steps=steps.get(name, definition.get("max_steps", 7)),
                internal=definition.get("internal", False),
            )
        )
    return registry
