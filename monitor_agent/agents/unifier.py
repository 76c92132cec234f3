"""Merge the answers of one or more agents into a single response."""

from __future__ import annotations

from typing import Sequence

from .protocol import AgentResult

EMPTY_RESULT_MESSAGE = "결과를 생성할 수 없습니다."
UNIFIED_HEADING = "# 종합 분석 결과"
SECTION_SEPARATOR = "\n\n---\n\n"


def section_title(agent: str) -> str:
    label = agent[: -len(" Agent")] if agent.endswith(" Agent") else agent
    return f"## {label} 분석"


def unify_results(results: Sequence[AgentResult]) -> str:
    """Combine agent responses.

    A single result is returned untouched. Several results become one
    Markdown document with a section per agent, in input order, each
    response copied verbatim.
    """
    if not results:
        return EMPTY_RESULT_MESSAGE
    if len(results) == 1:
        return results[0].response

    sections = [f"{section_title(result.agent)}\n{result.response}" for result in results]
    return f"{UNIFIED_HEADING}\n\n" + SECTION_SEPARATOR.join(sections)
