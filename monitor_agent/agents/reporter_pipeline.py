"""Evaluate-then-optimize pass over incident reports.

The Reporter Agent writes a draft; ``evaluate_report`` scores it without a
model call. While the score is below the threshold and rounds remain, the
Optimizer Agent rewrites the draft and generic action lists get concrete CLI
commands appended.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from .context import extract_server_names
from .events import ErrorCode, EventType, StreamEvent

logger = logging.getLogger(__name__)

DEFAULT_QUALITY_THRESHOLD = 0.75
DEFAULT_MAX_ITERATIONS = 2

ISSUE_STRUCTURE = "보고서 구조 불완전"
ISSUE_ACCURACY = "근본원인 분석 신뢰도 부족"
ISSUE_ACTIONABILITY = "권장 조치가 너무 일반적"

OPTIMIZATION_ROOT_CAUSE = "근본원인 분석 심화"
OPTIMIZATION_COMMANDS = "권장 조치 구체화"

SCORE_WEIGHTS = {"structure": 0.2, "completeness": 0.25, "accuracy": 0.35, "actionability": 0.2}

REPORT_SECTIONS = {
    "summary": ("개요", "요약", "summary", "overview"),
    "impact": ("영향", "impact", "affected"),
    "timeline": ("타임라인", "timeline", "시간순"),
    "root_cause": ("원인", "root cause"),
    "actions": ("조치", "권장", "재발 방지", "action", "recommend"),
}

COMMAND_TEMPLATES: Dict[str, List[str]] = {
    "cpu": ["top -o %CPU -b -n 1 | head -20", "ps aux --sort=-%cpu | head -10"],
    "memory": ["free -h", "ps aux --sort=-%mem | head -10"],
    "disk": ["df -h", "du -sh /* 2>/dev/null | sort -hr | head -10"],
    "network": ["netstat -tuln", "ss -tuln"],
    "general": ["systemctl status", "journalctl -xe --no-pager | tail -50"],
}

_FOCUS_KEYWORDS = [
    ("cpu", ("cpu",)),
    ("memory", ("memory", "메모리")),
    ("disk", ("disk", "디스크")),
    ("network", ("network", "네트워크")),
]

_PERCENT = re.compile(r"\d{1,3}(?:\.\d+)?\s*%")
_TIMESTAMP = re.compile(r"\b\d{1,2}:\d{2}\b|\d{4}-\d{2}-\d{2}")
_CONFIDENCE = re.compile(r"(?:신뢰도|confidence)\s*[:=]?\s*(\d{1,3}(?:\.\d+)?)\s*%", re.I)
_INLINE_COMMAND = re.compile(r"`([^`\n]+)`")

OPTIMIZE_PROMPT = """다음 장애 보고서의 품질을 개선하세요.

## 원래 요청
{query}

## 현재 보고서
{report}

## 평가 결과 (종합 점수 {score:.0%})
{issues}

## 개선 지침
{recommendations}
- 기존 섹션 구조(개요, 영향 범위, 타임라인, 근본 원인, 재발 방지 조치)를 유지하세요.
- 근본 원인에는 근거 메트릭(%)과 "신뢰도 NN%"를 명시하세요.
- 개선된 전체 보고서를 finalAnswer로 제출하세요."""


@dataclass
class ReportEvaluation:
    scores: Dict[str, float]
    overall_score: float
    issues: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)


@dataclass
class PipelineOutcome:
    """Final report and quality summary of one pipeline run."""

    report: str
    initial_score: float = 0.0
    final_score: float = 0.0
    iterations: int = 0
    optimizations: List[str] = field(default_factory=list)
    error: Optional[StreamEvent] = None

    def quality(self) -> Dict[str, Any]:
        return {
            "initialScore": round(self.initial_score, 3),
            "finalScore": round(self.final_score, 3),
            "iterations": self.iterations,
            "optimizationsApplied": list(self.optimizations),
        }


def _structure_score(text: str) -> float:
    lowered = text.lower()
    found = sum(1 for keywords in REPORT_SECTIONS.values() if any(k in lowered for k in keywords))
    return found / len(REPORT_SECTIONS)


def _completeness_score(text: str) -> float:
    checks = [
        bool(extract_server_names(text)),
        bool(_PERCENT.search(text)),
        bool(_TIMESTAMP.search(text)),
        len(text.strip()) >= 300,
    ]
    return sum(checks) / len(checks)


def _accuracy_score(text: str) -> float:
    stated = [float(value) for value in _CONFIDENCE.findall(text)]
    if stated:
        return min(max(stated) / 100, 0.95)
    tenths = 5
    lowered = text.lower()
    if any(k in lowered for k in REPORT_SECTIONS["root_cause"]):
        tenths += 1
    if _PERCENT.search(text):
        tenths += 1
    return tenths / 10


def _actionability_score(text: str) -> float:
    commands = set(_INLINE_COMMAND.findall(text))
    return min(3 + 2 * len(commands), 10) / 10


def evaluate_report(text: str) -> ReportEvaluation:
    """Score a markdown report on structure, completeness, accuracy and actionability."""
    scores = {
        "structure": _structure_score(text),
        "completeness": _completeness_score(text),
        "accuracy": _accuracy_score(text),
        "actionability": _actionability_score(text),
    }
    overall = sum(scores[name] * weight for name, weight in SCORE_WEIGHTS.items())

    issues: List[str] = []
    recommendations: List[str] = []
    if scores["structure"] < 0.6:
        issues.append(ISSUE_STRUCTURE)
        recommendations.append("누락된 보고서 섹션 추가 필요")
    if scores["accuracy"] < 0.75:
        issues.append(ISSUE_ACCURACY)
        recommendations.append("근본원인 분석 심화 필요")
    if scores["actionability"] < 0.7:
        issues.append(ISSUE_ACTIONABILITY)
        recommendations.append("CLI 명령어 추가 필요")
    return ReportEvaluation(scores=scores, overall_score=overall, issues=issues, recommendations=recommendations)


def focus_area(text: str) -> str:
    lowered = text.lower()
    for area, keywords in _FOCUS_KEYWORDS:
        if any(k in lowered for k in keywords):
            return area
    return "general"


def add_command_suggestions(text: str) -> str:
    """Append a command section for the report's dominant resource."""
    commands = COMMAND_TEMPLATES[focus_area(text)]
    lines = "\n".join(f"- `{command}`" for command in commands)
    return f"{text.rstrip()}\n\n### 권장 명령어\n{lines}"


def build_optimizer_prompt(query: str, report: str, evaluation: ReportEvaluation) -> str:
    return OPTIMIZE_PROMPT.format(
        query=query,
        report=report,
        score=evaluation.overall_score,
        issues="\n".join(f"- {issue}" for issue in evaluation.issues) or "- 없음",
        recommendations="\n".join(f"- {item}" for item in evaluation.recommendations),
    )


Optimizer = Callable[[str, ReportEvaluation], AsyncIterator[StreamEvent]]


class ReporterPipeline:
    """Bounded evaluate/optimize loop over one report.

    ``optimize(report, evaluation)`` streams an agent run whose ``done``
    carries the rewritten report. ``run`` forwards that run's non-text events
    and leaves the result in ``outcome``. A cancelled optimizer run is the
    only failure that is surfaced (as ``outcome.error``); other failures keep
    the current report.
    """

    def __init__(
        self,
        optimize: Optional[Optimizer] = None,
        threshold: float = DEFAULT_QUALITY_THRESHOLD,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ):
        self.optimize = optimize
        self.threshold = threshold
        self.max_iterations = max_iterations
        self.outcome: Optional[PipelineOutcome] = None
        self.agent_runs: List[StreamEvent] = []

    async def run(self, report: str) -> AsyncIterator[StreamEvent]:
        outcome = PipelineOutcome(report=report)
        self.outcome = outcome

        for iteration in range(self.max_iterations):
            evaluation = evaluate_report(outcome.report)
            if iteration == 0:
                outcome.initial_score = evaluation.overall_score
            outcome.final_score = evaluation.overall_score
            outcome.iterations = iteration + 1
            logger.info(f"[ReporterPipeline] Iteration {iteration + 1}: score {evaluation.overall_score:.2f}")

            if evaluation.overall_score >= self.threshold:
                break
            if iteration >= self.max_iterations - 1:
                break

            if self.optimize is not None and (ISSUE_ACCURACY in evaluation.issues or ISSUE_STRUCTURE in evaluation.issues):
                rewritten = None
                async for event in self._run_optimizer(outcome, evaluation):
                    if event.type == EventType.DONE:
                        rewritten = str(event.data.get("response") or "").strip()
                        continue
                    yield event
                if outcome.error is not None:
                    return
                if rewritten:
                    outcome.report = rewritten
                    outcome.optimizations.append(OPTIMIZATION_ROOT_CAUSE)

            if ISSUE_ACTIONABILITY in evaluate_report(outcome.report).issues:
                outcome.report = add_command_suggestions(outcome.report)
                outcome.optimizations.append(OPTIMIZATION_COMMANDS)

        logger.info(
            f"[ReporterPipeline] {outcome.initial_score:.2f} -> {outcome.final_score:.2f} "
            f"in {outcome.iterations} iteration(s), applied: {outcome.optimizations or 'none'}"
        )

    async def _run_optimizer(self, outcome: PipelineOutcome, evaluation: ReportEvaluation) -> AsyncIterator[StreamEvent]:
        stream = self.optimize(outcome.report, evaluation)
        try:
            async for event in stream:
                if event.type == EventType.DONE:
                    self.agent_runs.append(event)
                    yield event
                elif event.type == EventType.ERROR:
                    if event.data.get("code") == ErrorCode.CANCELLED:
                        outcome.error = event
                        return
                    logger.warning(f"[ReporterPipeline] Optimizer failed, keeping report: {event.data.get('message')}")
                    return
                elif event.type != EventType.TEXT_DELTA:
                    yield event
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
