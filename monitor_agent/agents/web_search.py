"""Per-request web search and knowledge-base (RAG) tool toggles.

Web search is conservative: it is enabled for a query only when the query
asks for external or current information, or pairs a named technology with a
problem-solving request. Pure monitoring questions are answered from internal
data.
"""

from __future__ import annotations

import logging
from typing import FrozenSet, Iterable, Optional, Union

from ..tools.base import CAPABILITY_RAG, CAPABILITY_WEB_SEARCH

logger = logging.getLogger(__name__)

EXTERNAL_INDICATORS = [
    "최신", "latest", "2024", "2025", "2026",
    "뉴스", "news", "업데이트", "update",
    "cve", "security advisory", "보안 취약점",
]  # fmt: skip

TECHNOLOGY_INDICATORS = [
    "kubernetes", "k8s", "docker", "aws", "azure", "gcp",
    "nginx", "apache", "redis", "postgresql", "mysql",
    "linux", "ubuntu", "centos", "debian",
]  # fmt: skip

PROBLEM_SOLVING_INDICATORS = [
    "공식 문서", "documentation", "docs",
    "버그", "bug", "이슈", "issue",
    "릴리스", "release", "버전", "version",
    "해결", "방법", "가이드", "어떻게",
    "how to", "fix", "resolve", "troubleshoot",
]  # fmt: skip

INTERNAL_ONLY_INDICATORS = [
    "서버 상태", "서버 목록", "cpu", "메모리", "디스크",
    "과거 장애", "인시던트", "보고서", "타임라인",
    "우리 서버", "내부", "현재 상태",
    "네트워크", "디비", "캐시", "로드밸런서", "트래픽",
    "응답시간", "장애", "알림", "경고", "위험",
    "서버 현황", "모니터링", "대시보드", "헬스체크",
    "사용률", "임계값", "트렌드",
]  # fmt: skip

WebSearchSetting = Union[bool, str, None]


def _contains_any(text: str, keywords: Iterable[str]) -> bool:
    return any(keyword in text for keyword in keywords)


def should_enable_web_search(query: str) -> bool:
    """Decide from the query text alone whether ``searchWeb`` should be offered.

    Checked in order: external indicators enable; technology plus
    problem-solving enables; internal-only indicators disable; anything else
    stays disabled.
    """
    text = query.lower()
    if _contains_any(text, EXTERNAL_INDICATORS):
        return True
    if _contains_any(text, TECHNOLOGY_INDICATORS) and _contains_any(text, PROBLEM_SOLVING_INDICATORS):
        return True
    if _contains_any(text, INTERNAL_ONLY_INDICATORS):
        logger.debug("[WebSearch] Internal-only query, web search off")
    return False


def resolve_web_search_setting(setting: WebSearchSetting, query: str) -> bool:
    """``True``/``False`` force the toggle; ``None`` or ``"auto"`` detect from the query."""
    if setting is True:
        return True
    if setting is False:
        return False
    if isinstance(setting, str) and setting.lower() not in ("", "auto"):
        logger.warning(f"[WebSearch] Unknown setting {setting!r}, using auto-detection")
    return should_enable_web_search(query)


def resolve_capabilities(
    allowed: Iterable[str],
    query: str,
    enable_web_search: WebSearchSetting = None,
    enable_rag: Optional[bool] = True,
) -> FrozenSet[str]:
    """Narrow the configured capability set for one request.

    Settings can only switch capabilities off: a capability missing from
    ``allowed`` stays off regardless of the request.
    """
    capabilities = set(allowed)
    web_search = resolve_web_search_setting(enable_web_search, query)
    rag = enable_rag is not False
    if not web_search:
        capabilities.discard(CAPABILITY_WEB_SEARCH)
    if not rag:
        capabilities.discard(CAPABILITY_RAG)
    logger.debug(f"[WebSearch] web_search={web_search} (request: {enable_web_search}), rag={rag}")
    return frozenset(capabilities)
