"""Google Gemini provider (used by the Vision Agent)."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, cast

from google import genai
from google.genai import types

from .types import (
    FunctionCall,
    GenerationConfig,
    LLMResponse,
    Message,
    StreamDelta,
    ToolSchema,
)

_SCHEMA_TYPES = {
    "string": types.Type.STRING,
    "integer": types.Type.INTEGER,
    "number": types.Type.NUMBER,
    "boolean": types.Type.BOOLEAN,
    "object": types.Type.OBJECT,
    "array": types.Type.ARRAY,
}


class GeminiProvider:
    """Gemini chat provider using the async surface of the google-genai SDK."""

    provider_name = "gemini"

    def __init__(self, api_key: str, model: str) -> None:
        self.model = model
        self.client = genai.Client(api_key=api_key)

    async def generate(
        self,
        messages: List[Message],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
    ) -> LLMResponse:
        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=cast(Any, self._to_gemini_contents(messages)),
            config=self._content_config(tools, config),
        )
        return self._from_gemini_response(response)

    async def generate_stream(
        self,
        messages: List[Message],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
    ):
        stream = await self.client.aio.models.generate_content_stream(
            model=self.model,
            contents=cast(Any, self._to_gemini_contents(messages)),
            config=self._content_config(tools, config),
        )
        async for chunk in stream:
            for delta in self._iter_stream_deltas(chunk):
                yield delta

    def _content_config(self, tools: Optional[List[ToolSchema]], config: GenerationConfig) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            system_instruction=config.system_prompt or None,
            tools=cast(Any, self._to_gemini_tools(tools)),
            max_output_tokens=config.max_tokens,
            temperature=config.temperature,
        )

    def _iter_stream_deltas(self, chunk: Any) -> List[StreamDelta]:
        deltas: List[StreamDelta] = []
        for part in self._candidate_parts(chunk):
            if part.text:
                deltas.append(StreamDelta(text=part.text))
            elif part.function_call:
                deltas.append(
                    StreamDelta(
                        function_call_start=FunctionCall(
                            name=part.function_call.name,
                            arguments=dict(part.function_call.args or {}),
                        )
                    )
                )

        usage = self._usage(getattr(chunk, "usage_metadata", None))
        finish_reason = self._finish_reason(chunk)
        if finish_reason or usage:
            deltas.append(StreamDelta(finish_reason=finish_reason, usage=usage))
        return deltas

    def _from_gemini_response(self, response: Any) -> LLMResponse:
        if not response.candidates:
            raise RuntimeError(f"Empty response from gemini/{self.model}: no candidates")

        function_calls: List[FunctionCall] = []
        text_parts: List[str] = []
        for part in self._candidate_parts(response):
            if part.function_call:
                function_calls.append(
                    FunctionCall(
                        name=part.function_call.name,
                        arguments=dict(part.function_call.args or {}),
                    )
                )
            elif part.text:
                text_parts.append(part.text)

        return LLMResponse(
            text=" ".join(text_parts).strip(),
            function_calls=function_calls,
            usage=self._usage(getattr(response, "usage_metadata", None)),
            raw=response,
        )

    @staticmethod
    def _candidate_parts(response: Any) -> List[Any]:
        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            return []
        content = getattr(candidates[0], "content", None)
        return list(getattr(content, "parts", None) or []) if content else []

    @staticmethod
    def _finish_reason(response: Any) -> Optional[str]:
        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            return None
        reason = getattr(candidates[0], "finish_reason", None)
        if reason is None:
            return None
        return str(getattr(reason, "value", reason)).lower()

    @staticmethod
    def _usage(metadata: Any) -> Optional[Dict[str, int]]:
        if not metadata:
            return None
        return {
            "prompt_tokens": int(getattr(metadata, "prompt_token_count", 0) or 0),
            "completion_tokens": int(getattr(metadata, "candidates_token_count", 0) or 0),
            "total_tokens": int(getattr(metadata, "total_token_count", 0) or 0),
        }

    def _to_gemini_contents(self, messages: List[Message]) -> List[types.Content]:
        contents: List[types.Content] = []
        for msg in messages:
            role = {"assistant": "model", "tool": "user"}.get(msg.role, msg.role)
            parts: List[types.Part] = []
            for part in msg.parts:
                if part.text:
                    parts.append(types.Part.from_text(text=part.text))
                elif part.function_call:
                    parts.append(
                        types.Part.from_function_call(
                            name=part.function_call.name,
                            args=part.function_call.arguments,
                        )
                    )
                elif part.function_response:
                    parts.append(
                        types.Part.from_function_response(
                            name=part.function_response.name,
                            response=part.function_response.response,
                        )
                    )
            if parts:
                contents.append(types.Content(role=role, parts=parts))
        return contents

    def _to_gemini_tools(self, tools: Optional[List[ToolSchema]]) -> Optional[List[types.Tool]]:
        if not tools:
            return None
        declarations = [
            types.FunctionDeclaration(
                name=tool.name,
                description=tool.description,
                parameters=self._to_gemini_schema({"type": "object", **tool.parameters}),
            )
            for tool in tools
        ]
        return [types.Tool(function_declarations=declarations)]

    def _to_gemini_schema(self, schema_def: Dict[str, Any]) -> types.Schema:
        gemini_type = _SCHEMA_TYPES.get(str(schema_def.get("type") or "string").lower(), types.Type.STRING)
        kwargs: Dict[str, Any] = {"type": gemini_type, "description": schema_def.get("description", "")}

        enum_values = schema_def.get("enum")
        if isinstance(enum_values, list) and enum_values:
            kwargs["enum"] = [str(v) for v in enum_values]

        if gemini_type == types.Type.OBJECT:
            kwargs["properties"] = {
                name: self._to_gemini_schema(prop)
                for name, prop in (schema_def.get("properties") or {}).items()
                if isinstance(prop, dict)
            }
            required = schema_def.get("required")
            if isinstance(required, list) and required:
                kwargs["required"] = required

        if gemini_type == types.Type.ARRAY and isinstance(schema_def.get("items"), dict):
            kwargs["items"] = self._to_gemini_schema(schema_def["items"])

        return types.Schema(**kwargs)
