"""Lightweight response quality metrics attached to the final ``done`` event."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Pattern, Tuple

LATENCY_FAST = "fast"
LATENCY_NORMAL = "normal"
LATENCY_SLOW = "slow"
LATENCY_VERY_SLOW = "very_slow"

HEAVY_AGENTS = frozenset({"Reporter Agent", "Vision Agent", "Analyst Agent"})

_PERCENT = re.compile(r"\d{1,3}(?:\.\d+)?%")


@dataclass
class ResponsePolicy:
    min_chars: int
    max_chars: int
    required: List[Tuple[Pattern[str], str]] = field(default_factory=list)


DEFAULT_RESPONSE_POLICY = ResponsePolicy(min_chars=120, max_chars=4000)

RESPONSE_POLICIES: Dict[str, ResponsePolicy] = {
    "NLQ Agent": ResponsePolicy(
        140,
        2500,
        [
            (_PERCENT, "MISSING_METRIC_EVIDENCE"),
            (re.compile(r"권고|조치|요약"), "MISSING_ACTION_GUIDANCE"),
            (re.compile("\U0001F4CA|\U0001F4A1|서버 현황 요약|⚠"), "MISSING_STATUS_STRUCTURE"),
        ],
    ),
    "Analyst Agent": ResponsePolicy(
        220,
        2800,
        [
            (re.compile(r"현황|요약"), "MISSING_SCENARIO_OVERVIEW"),
            (_PERCENT, "MISSING_PERCENT_EVIDENCE"),
            (re.compile(r"원인|가설|추정 원인|신뢰도"), "MISSING_CAUSE_HYPOTHESIS"),
            (re.compile(r"조치|권장"), "MISSING_ACTION_SECTION"),
        ],
    ),
    "Reporter Agent": ResponsePolicy(
        280,
        4200,
        [
            (
                re.compile(r"##\s*개요|##\s*영향 범위|##\s*타임라인|###\s*개요|###\s*근본 원인"),
                "MISSING_REPORT_SECTIONS",
            ),
            (re.compile(r"권장|재발|조치|권고"), "MISSING_ACTION_SECTION"),
            (re.compile(r"영향|사이드|재현|영향도"), "MISSING_IMPACT_EVIDENCE"),
        ],
    ),
    "Advisor Agent": ResponsePolicy(
        190,
        2600,
        [
            (re.compile(r"`[^`]+`"), "MISSING_COMMAND_BLOCK"),
            (re.compile(r"진단|조치|확인|권장"), "MISSING_STEP_GUIDE"),
            (re.compile(r"문제|원인|해결"), "MISSING_PROBLEM_CONTEXT"),
        ],
    ),
    "Vision Agent": ResponsePolicy(
        210,
        3200,
        [
            (re.compile(r"주요 발견사항|추정 원인|권장 조치|구조|트렌드"), "MISSING_VISUAL_FINDINGS"),
            (re.compile(r"권장|조치"), "MISSING_ACTION_SECTION"),
            (re.compile(r"분석|근거|로그|메트릭"), "MISSING_ANALYSIS_EVIDENCE"),
        ],
    ),
}


def classify_latency_tier(duration_ms: float, agent: str) -> str:
    if agent in HEAVY_AGENTS:
        fast, normal, slow = 5000, 13000, 25000
    else:
        fast, normal, slow = 3000, 8000, 18000
    if duration_ms <= fast:
        return LATENCY_FAST
    if duration_ms <= normal:
        return LATENCY_NORMAL
    if duration_ms <= slow:
        return LATENCY_SLOW
    return LATENCY_VERY_SLOW


def _is_format_flag(flag: str) -> bool:
    return flag in ("EMPTY_RESPONSE", "TOO_SHORT", "TOO_LONG") or flag.startswith("MISSING_")


def evaluate_response_quality(
    agent: str,
    text: str,
    duration_ms: float,
    fallback_reason: Optional[str] = None,
) -> Dict[str, Any]:
    """Score ``text`` against the agent's length bounds and expected markers.

    Returns the wire-shaped dict merged into ``done.metadata``:
    ``responseChars``, ``formatCompliance``, ``qualityFlags``, ``latencyTier``.
    Latency flags do not affect ``formatCompliance``.
    """
    normalized = text.strip()
    chars = len(normalized)
    policy = RESPONSE_POLICIES.get(agent, DEFAULT_RESPONSE_POLICY)
    flags: List[str] = []

    if chars == 0:
        flags.append("EMPTY_RESPONSE")
    elif chars < policy.min_chars:
        flags.append("TOO_SHORT")
    if chars > policy.max_chars:
        flags.append("TOO_LONG")

    for pattern, flag in policy.required:
        if not pattern.search(normalized):
            flags.append(flag)

    if fallback_reason and fallback_reason not in flags:
        flags.append(fallback_reason)

    tier = classify_latency_tier(duration_ms, agent)
    if tier == LATENCY_SLOW:
        flags.append("LATENCY_SLOW")
    elif tier == LATENCY_VERY_SLOW:
        flags.append("LATENCY_VERY_SLOW")

    return {
        "responseChars": chars,
        "formatCompliance": not any(_is_format_flag(flag) for flag in flags),
        "qualityFlags": flags,
        "latencyTier": tier,
    }
