"""Global pytest fixtures for deterministic test environment."""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from monitor_agent.agents.base import AgentConfig
from monitor_agent.agents.registry import AgentRegistry
from monitor_agent.providers.selection import ResolvedModel
from monitor_agent.providers.types import FunctionCall, LLMResponse, StreamDelta


@pytest.fixture(autouse=True)
def _isolate_runtime_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clear local runtime env that can leak into tests on developer machines."""
    for key in (
        "CEREBRAS_API_KEY",
        "GROQ_API_KEY",
        "MISTRAL_API_KEY",
        "GEMINI_API_KEY",
        "OPENROUTER_API_KEY",
        "CONTEXT_TTL_SECONDS",
        "MONITOR_AGENT_TIMEOUT_SECONDS",
        "MONITOR_AGENT_DEFAULT_AGENT",
    ):
        monkeypatch.delenv(key, raising=False)


class ScriptedProvider:
    """Chat provider that replays one scripted turn per ``generate_stream`` call.

    A turn is a list of ``StreamDelta``; an ``Exception`` in the list is raised
    at that point of the stream. ``delay`` makes every turn sleep first.
    """

    def __init__(self, *turns: List[Any], model: str = "scripted-1", delay: float = 0.0):
        self.model = model
        self.turns = list(turns)
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []
        self.responses: List[Any] = []

    async def generate(self, messages, tools, config) -> LLMResponse:
        self.calls.append({"messages": list(messages), "tools": [t.name for t in tools or []]})
        if not self.responses:
            raise RuntimeError("no scripted response")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def generate_stream(self, messages, tools, config):
        self.calls.append({"messages": list(messages), "tools": [t.name for t in tools or []], "config": config})
        if self.delay:
            await asyncio.sleep(self.delay)
        turn = self.turns.pop(0) if self.turns else text_turn("")
        for item in turn:
            if isinstance(item, Exception):
                raise item
            yield item


def text_turn(*chunks: str) -> List[StreamDelta]:
    deltas = [StreamDelta(text=chunk) for chunk in chunks if chunk]
    deltas.append(StreamDelta(finish_reason="stop", usage={"prompt_tokens": 5, "completion_tokens": 3, "total_tokens": 8}))
    return deltas


def call_turn(name: str, args: Dict[str, Any], call_id: str = "call_1") -> List[StreamDelta]:
    return [
        StreamDelta(
            function_call_start=FunctionCall(name=name, arguments={}, id=call_id),
            function_call_id=call_id,
            function_call_index=0,
        ),
        StreamDelta(function_call_delta=json.dumps(args, ensure_ascii=False), function_call_id=call_id, function_call_index=0),
        StreamDelta(finish_reason="tool_calls"),
    ]


def resolved(provider: Optional[ScriptedProvider]) -> Optional[ResolvedModel]:
    if provider is None:
        return None
    return ResolvedModel(model=provider, provider="fake", model_id=provider.model)


def agent_config(name: str, provider: Optional[ScriptedProvider], tools=None, max_steps: int = 7) -> AgentConfig:
    model = resolved(provider)
    return AgentConfig(
        name=name,
        description=f"{name} for tests",
        instructions="Answer briefly.",
        tools=dict(tools or {}),
        match_patterns=[name.lower()],
        get_model=lambda: model,
        max_steps=max_steps,
    )


def registry_of(providers: Dict[str, Optional[ScriptedProvider]]) -> AgentRegistry:
    registry = AgentRegistry()
    for name, provider in providers.items():
        registry.register(agent_config(name, provider))
    return registry


async def collect(stream) -> list:
    return [event async for event in stream]


@pytest.fixture
def fake_llm() -> SimpleNamespace:
    """Helpers for building scripted providers, agent configs and registries."""
    return SimpleNamespace(
        Provider=ScriptedProvider,
        text=text_turn,
        call=call_turn,
        resolved=resolved,
        agent_config=agent_config,
        registry=registry_of,
        collect=collect,
    )
