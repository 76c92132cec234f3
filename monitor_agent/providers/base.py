"""Chat provider protocol used by agents and the task planner."""

from __future__ import annotations

from typing import AsyncIterator, List, Optional, Protocol

from .types import GenerationConfig, LLMResponse, Message, StreamDelta, ToolSchema


class ChatProvider(Protocol):
    """Anything that can answer a chat turn, whole or streamed.

    Agents only talk to models through this protocol, so tests and
    alternative SDKs plug in without touching the orchestration code.
    """

    model: str

    async def generate(
        self,
        messages: List[Message],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
    ) -> LLMResponse: ...

    def generate_stream(
        self,
        messages: List[Message],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
    ) -> AsyncIterator[StreamDelta]: ...
