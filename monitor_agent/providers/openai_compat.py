"""Provider for OpenAI-compatible chat APIs (Cerebras, Groq, Mistral, OpenRouter).

All four vendors speak the Chat Completions wire format, so one client class
covers them; only ``api_base`` and the model id differ.
"""

from __future__ import annotations

import json
import uuid
from typing import Any, AsyncIterator, Dict, Iterator, List, Optional

from openai import AsyncOpenAI

from .types import (
    FunctionCall,
    FunctionResponse,
    GenerationConfig,
    LLMResponse,
    Message,
    StreamDelta,
    ToolSchema,
)

TOOL_CALLS_FINISH = "tool_calls"


def usage_dict(usage: Any) -> Optional[Dict[str, int]]:
    """Token counts from an SDK usage object, or None when absent."""
    if not usage:
        return None
    return {
        key: int(getattr(usage, key, 0) or 0)
        for key in ("prompt_tokens", "completion_tokens", "total_tokens")
    }


def content_text(content: Any) -> str:
    """Flatten string or content-part-list message content into plain text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return str(content)

    def part_text(part: Any) -> str:
        if isinstance(part, str):
            return part
        value = part.get("text") if isinstance(part, dict) else getattr(part, "text", None)
        return str(value or "")

    return "".join(part_text(part) for part in content)


def parse_arguments(arguments: Any) -> Dict[str, Any]:
    """Tool-call arguments as a dict; malformed JSON yields ``{}``."""
    if isinstance(arguments, dict):
        return arguments
    if not arguments:
        return {}
    try:
        parsed = json.loads(arguments)
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _new_call_id() -> str:
    return f"call_{uuid.uuid4().hex}"


def tool_payload(tool: ToolSchema) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {"name": tool.name, "description": tool.description, "parameters": tool.parameters},
    }


class _CallIdLedger:
    """Pairs tool responses that lack an id with the oldest open call of the same name."""

    def __init__(self) -> None:
        self._open: Dict[str, List[str]] = {}

    def issue(self, call: FunctionCall) -> str:
        call.id = call.id or _new_call_id()
        self._open.setdefault(call.name, []).append(call.id)
        return call.id

    def claim(self, response: FunctionResponse) -> str:
        if response.call_id:
            return response.call_id
        queue = self._open.get(response.name)
        return queue.pop(0) if queue else _new_call_id()


class OpenAICompatibleProvider:
    """Chat provider backed by ``openai.AsyncOpenAI`` with a vendor base URL."""

    def __init__(
        self,
        api_key: str,
        model: str,
        api_base: str = "",
        provider_name: str = "openai",
    ) -> None:
        self.model = model
        self.api_base = api_base or ""
        self.provider_name = provider_name
        self.client = AsyncOpenAI(api_key=api_key, base_url=self.api_base or None)

    async def generate(
        self,
        messages: List[Message],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
    ) -> LLMResponse:
        request = self._build_chat_kwargs(messages, tools, config, stream=False)
        return self._from_completion(await self.client.chat.completions.create(**request))

    async def generate_stream(
        self,
        messages: List[Message],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
    ) -> AsyncIterator[StreamDelta]:
        request = self._build_chat_kwargs(messages, tools, config, stream=True)
        # Vendors send the call id only on a call's first chunk; later chunks carry just the index.
        call_ids_by_index: Dict[int, str] = {}
        async for chunk in await self.client.chat.completions.create(**request):
            for delta in self._iter_stream_deltas(chunk, call_ids_by_index):
                yield delta

    def _build_chat_kwargs(
        self,
        messages: List[Message],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
        stream: bool,
    ) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "model": self.model,
            "messages": self._to_openai_messages(messages, config.system_prompt),
            "stream": stream,
        }
        if (config.max_tokens or 0) > 0:
            request["max_tokens"] = config.max_tokens
        if config.temperature is not None:
            request["temperature"] = config.temperature
        if tools:
            request["tools"] = [tool_payload(tool) for tool in tools]
            request["tool_choice"] = "auto"
        return request

    def _to_openai_messages(self, messages: List[Message], system_prompt: str) -> List[Dict[str, Any]]:
        ledger = _CallIdLedger()
        converted: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}] if system_prompt else []

        for message in messages:
            if message.role == "tool":
                converted.extend(
                    {
                        "role": "tool",
                        "tool_call_id": ledger.claim(part.function_response),
                        "content": json.dumps(part.function_response.response, ensure_ascii=False, default=str),
                    }
                    for part in message.parts
                    if part.function_response is not None
                )
                continue

            entry: Dict[str, Any] = {"role": message.role, "content": message.text}
            calls = [part.function_call for part in message.parts if part.function_call is not None]
            if calls:
                entry["tool_calls"] = [
                    {
                        "id": ledger.issue(call),
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.arguments or {})},
                    }
                    for call in calls
                ]
            converted.append(entry)

        return converted

    def _from_completion(self, completion: Any) -> LLMResponse:
        if not completion.choices:
            raise RuntimeError(f"Empty response from {self.provider_name}/{self.model}: no choices")

        message = completion.choices[0].message
        calls = [
            FunctionCall(
                name=getattr(raw.function, "name", "") or "",
                arguments=parse_arguments(getattr(raw.function, "arguments", None)),
                id=getattr(raw, "id", None),
            )
            for raw in getattr(message, "tool_calls", None) or []
            if getattr(raw, "function", None) is not None
        ]
        return LLMResponse(
            text=content_text(getattr(message, "content", None)),
            function_calls=calls,
            usage=usage_dict(getattr(completion, "usage", None)),
            raw=completion,
        )

    def _iter_stream_deltas(self, chunk: Any, call_ids_by_index: Dict[int, str]) -> List[StreamDelta]:
        usage = usage_dict(getattr(chunk, "usage", None))
        choices = getattr(chunk, "choices", None) or []
        if not choices:
            return [StreamDelta(usage=usage)] if usage else []

        choice = choices[0]
        deltas: List[StreamDelta] = []
        delta = getattr(choice, "delta", None)
        if delta is not None:
            text = content_text(getattr(delta, "content", None))
            if text:
                deltas.append(StreamDelta(text=text))
            for tool_call in getattr(delta, "tool_calls", None) or []:
                deltas.extend(_tool_call_deltas(tool_call, call_ids_by_index))

        finish_reason = getattr(choice, "finish_reason", None)
        if finish_reason or usage:
            deltas.append(
                StreamDelta(
                    function_call_end=finish_reason == TOOL_CALLS_FINISH,
                    finish_reason=finish_reason,
                    usage=usage,
                )
            )
        return deltas


def _tool_call_deltas(tool_call: Any, call_ids_by_index: Dict[int, str]) -> Iterator[StreamDelta]:
    index = getattr(tool_call, "index", None)
    if not isinstance(index, int):
        index = None
    call_id = getattr(tool_call, "id", None)
    if index is not None:
        if call_id:
            call_ids_by_index[index] = call_id
        else:
            call_id = call_ids_by_index.get(index)

    function = getattr(tool_call, "function", None)
    name = getattr(function, "name", None)
    arguments = getattr(function, "arguments", None)
    if name:
        yield StreamDelta(
            function_call_start=FunctionCall(name=name, arguments={}, id=call_id),
            function_call_id=call_id,
            function_call_index=index,
        )
    if arguments:
        yield StreamDelta(function_call_delta=str(arguments), function_call_id=call_id, function_call_index=index)
