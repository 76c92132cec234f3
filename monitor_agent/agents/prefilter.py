"""Rule-based pre-filter: answer trivial queries, suggest an agent for the rest.

No model calls and no I/O. Rules are applied in priority order and the first
match wins; keyword families never add up their confidences.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from ..config import PreFilterPolicy
from .protocol import PreFilterResult
from .registry import ADVISOR_AGENT, ANALYST_AGENT, NLQ_AGENT, REPORTER_AGENT, VISION_AGENT, VISION_MATCH_PATTERNS

DEFAULT_POLICY = PreFilterPolicy()

KST = timezone(timedelta(hours=9), "KST")

GREETING_RESPONSE = (
    "안녕하세요! 서버 모니터링 AI입니다. 서버 상태, 이상 탐지, 장애 분석 등을 도와드립니다. 무엇을 도와드릴까요?"
)
IDENTITY_RESPONSE = (
    "저는 OpenManager 서버 모니터링 AI입니다. 서버 상태 조회, 이상 탐지, 트렌드 예측, 장애 보고서 생성 등을 지원합니다."
)
HELP_RESPONSE = "\n".join(
    [
        "다음과 같은 기능을 제공합니다:",
        '• **서버 상태 조회**: "서버 상태 알려줘", "CPU 높은 서버"',
        '• **이상 탐지**: "이상 있어?", "문제 서버 찾아줘"',
        '• **트렌드 분석**: "트렌드 예측해줘"',
        '• **장애 보고서**: "장애 보고서 만들어줘"',
        '• **해결 방법**: "메모리 부족 해결 방법"',
    ]
)
PING_RESPONSE = "Pong! 서버 모니터링 AI가 정상 동작 중입니다."

GREETING_PATTERNS = [
    re.compile(r"^(안녕하세요|안녕|하이|헬로|hi|hello|hey|반가워|좋은\s*(아침|오후|저녁))[\s!?.]*$", re.I),
    re.compile(r"^(고마워|감사합니다|감사|ㄱㅅ|수고|잘가|바이|bye|thanks)[\s!?.]*$", re.I),
]

GENERAL_PATTERNS = [
    re.compile(r"^(오늘|지금)\s*(날씨|몇\s*일|몇\s*시|요일|며칠)[\s?]*$", re.I),
    re.compile(r"^(넌|너는?|뭐야|누구|뭘\s*할\s*수|도움말|help|도와줘)[\s?]*$", re.I),
    re.compile(r"^(테스트|ping|echo)[\s?]*$", re.I),
]

SERVER_KEYWORDS = [
    "서버", "cpu", "메모리", "디스크", "memory", "disk", "상태",
    "이상", "분석", "예측", "트렌드", "장애", "보고서", "리포트",
    "해결", "명령어", "요약", "모니터링", "server", "알람", "경고",
    "평균", "최대", "최소", "지난", "시간", "전체",
    "사례", "이력", "과거", "유사", "인시던트", "incident",
    "스크린샷", "screenshot", "이미지", "image", "대시보드", "dashboard",
    "로그 분석", "대용량", "최신 문서", "grafana", "cloudwatch",
    "높은", "낮은", "상승", "하강", "급증", "급감",
    "오프라인", "온라인", "다운", "down", "offline", "online",
    "부하", "load", "사용량", "usage",
    "응답시간", "response", "latency", "대역폭", "bandwidth",
    "장비",
]  # fmt: skip

ANALYST_QUERY_PATTERN = re.compile(r"이상|분석|예측|트렌드|패턴|원인|왜|상관관계|근본\s*원인|rca", re.I)
REPORTER_QUERY_PATTERN = re.compile(r"보고서|리포트|타임라인|인시던트|incident", re.I)
ADVISOR_QUERY_PATTERN = re.compile(r"해결|방법|명령어|가이드|어떻게|과거.*사례|사례.*찾|이력|유사|권장\s*조치", re.I)
COMPOSITE_QUERY_PATTERNS = [
    re.compile(r"그리고|또한|동시에|함께|및|plus|and|then", re.I),
    re.compile(r"비교|대비|차이", re.I),
    re.compile(r"원인.*해결|해결.*원인|분석.*조치|조치.*분석", re.I),
]

_WEEKDAYS = ["월요일", "화요일", "수요일", "목요일", "금요일", "토요일", "일요일"]


def is_vision_query(query: str) -> bool:
    lowered = query.lower()
    for pattern in VISION_MATCH_PATTERNS:
        if isinstance(pattern, str):
            if pattern.lower() in lowered:
                return True
        elif pattern.search(query):
            return True
    return False


def has_server_keyword(query: str) -> bool:
    normalized = query.strip().lower()
    return any(keyword in normalized for keyword in SERVER_KEYWORDS)


def detect_intents(query: str) -> List[str]:
    """Agent-specific intent families present in ``query``, in priority order."""
    intents = []
    if is_vision_query(query):
        intents.append(VISION_AGENT)
    if REPORTER_QUERY_PATTERN.search(query):
        intents.append(REPORTER_AGENT)
    if ANALYST_QUERY_PATTERN.search(query):
        intents.append(ANALYST_AGENT)
    if ADVISOR_QUERY_PATTERN.search(query):
        intents.append(ADVISOR_AGENT)
    return intents


def is_composite_query(query: str, intents: List[str], min_length: int = 70) -> bool:
    if len(intents) >= 2:
        return True
    has_signal = any(pattern.search(query) for pattern in COMPOSITE_QUERY_PATTERNS)
    return has_signal and (len(intents) >= 1 or len(query) >= min_length)


def _general_response(query: str, now: datetime) -> Optional[str]:
    if re.search(r"날짜|몇\s*일|며칠", query):
        return f"오늘은 {now.year}년 {now.month}월 {now.day}일 {_WEEKDAYS[now.weekday()]}입니다."
    if re.search(r"몇\s*시", query):
        meridiem = "오전" if now.hour < 12 else "오후"
        return f"현재 시간은 {meridiem} {now.hour % 12 or 12:02d}:{now.minute:02d}입니다."
    if re.search(r"넌|너는?|뭐야|누구", query):
        return IDENTITY_RESPONSE
    if re.search(r"도움말|help|뭘\s*할\s*수", query, re.I):
        return HELP_RESPONSE
    if re.search(r"테스트|ping|echo", query, re.I):
        return PING_RESPONSE
    return None


def pre_filter_query(
    query: str,
    policy: PreFilterPolicy = DEFAULT_POLICY,
    now: Optional[datetime] = None,
) -> PreFilterResult:
    """Classify ``query`` without calling a model.

    Args:
        query: Raw user text.
        policy: Confidence levels per rule.
        now: Clock used for date/time answers (defaults to the current KST time).

    Returns:
        A direct response, a suggested agent, or a bare handoff when the
        query is composite (0.68 by default) or unrelated to monitoring
        (0.5 by default).
    """
    text = query.strip()

    for pattern in GREETING_PATTERNS:
        if pattern.search(text):
            return PreFilterResult(
                should_handoff=False,
                direct_response=GREETING_RESPONSE,
                confidence=policy.greeting_confidence,
            )

    for pattern in GENERAL_PATTERNS:
        if pattern.search(text):
            response = _general_response(text, now or datetime.now(KST))
            if response:
                return PreFilterResult(
                    should_handoff=False,
                    direct_response=response,
                    confidence=policy.general_confidence,
                )

    if not has_server_keyword(text):
        return PreFilterResult(should_handoff=True, confidence=policy.unknown_confidence)

    intents = detect_intents(text)
    if is_composite_query(text, intents, policy.composite_min_length):
        return PreFilterResult(should_handoff=True, confidence=policy.composite_confidence)

    confidences = {
        VISION_AGENT: policy.vision_confidence,
        REPORTER_AGENT: policy.reporter_confidence,
        ANALYST_AGENT: policy.analyst_confidence,
        ADVISOR_AGENT: policy.advisor_confidence,
    }
    if intents:
        return PreFilterResult(should_handoff=True, suggested_agent=intents[0], confidence=confidences[intents[0]])
    return PreFilterResult(should_handoff=True, suggested_agent=NLQ_AGENT, confidence=policy.nlq_confidence)
