"""Provider normalization and streaming regression tests."""

from types import SimpleNamespace

import pytest

from monitor_agent.providers.gemini import GeminiProvider
from monitor_agent.providers.openai_compat import OpenAICompatibleProvider
from monitor_agent.providers.types import (
    FunctionCall,
    FunctionResponse,
    GenerationConfig,
    Message,
    ToolSchema,
)


def _gemini():
    return GeminiProvider(api_key="test-key", model="gemini-2.5-flash")


def _openai():
    return OpenAICompatibleProvider(
        api_key="test-key",
        model="gpt-oss-120b",
        api_base="https://api.cerebras.ai/v1",
        provider_name="cerebras",
    )


def test_gemini_completion_normalizes_text_and_tool_calls():
    response = SimpleNamespace(
        candidates=[
            SimpleNamespace(
                content=SimpleNamespace(
                    parts=[
                        SimpleNamespace(text="hello", function_call=None),
                        SimpleNamespace(
                            text=None,
                            function_call=SimpleNamespace(name="getServerMetrics", args={"serverId": "web-01"}),
                        ),
                        SimpleNamespace(text="world", function_call=None),
                    ]
                )
            )
        ]
    )

    normalized = _gemini()._from_gemini_response(response)

    assert normalized.text == "hello world"
    assert len(normalized.function_calls) == 1
    assert normalized.function_calls[0].name == "getServerMetrics"
    assert normalized.function_calls[0].arguments == {"serverId": "web-01"}


def test_gemini_empty_candidates_raise():
    with pytest.raises(RuntimeError):
        _gemini()._from_gemini_response(SimpleNamespace(candidates=[]))


def test_gemini_stream_deltas_normalize_text_and_function_call_start():
    chunk = SimpleNamespace(
        candidates=[
            SimpleNamespace(
                content=SimpleNamespace(
                    parts=[
                        SimpleNamespace(text="partial", function_call=None),
                        SimpleNamespace(
                            text=None,
                            function_call=SimpleNamespace(name="analyzeScreenshot", args={"url": "s3://a.png"}),
                        ),
                    ]
                )
            )
        ]
    )

    deltas = _gemini()._iter_stream_deltas(chunk)

    assert len(deltas) == 2
    assert deltas[0].text == "partial"
    assert deltas[1].function_call_start.name == "analyzeScreenshot"
    assert deltas[1].function_call_start.arguments == {"url": "s3://a.png"}


def test_gemini_stream_finish_reason_and_usage():
    chunk = SimpleNamespace(
        candidates=[
            SimpleNamespace(
                content=SimpleNamespace(parts=[]),
                finish_reason=SimpleNamespace(value="STOP"),
            )
        ],
        usage_metadata=SimpleNamespace(prompt_token_count=4, candidates_token_count=6, total_token_count=10),
    )

    deltas = _gemini()._iter_stream_deltas(chunk)

    assert len(deltas) == 1
    assert deltas[0].finish_reason == "stop"
    assert deltas[0].usage == {"prompt_tokens": 4, "completion_tokens": 6, "total_tokens": 10}


def test_openai_completion_normalizes_list_content_and_tool_calls():
    completion = SimpleNamespace(
        choices=[
            SimpleNamespace(
                message=SimpleNamespace(
                    content=[
                        {"type": "text", "text": "hello "},
                        {"type": "text", "text": "world"},
                    ],
                    tool_calls=[
                        SimpleNamespace(
                            id="call_1",
                            function=SimpleNamespace(name="getServerMetrics", arguments='{"serverId":"db-01"}'),
                        )
                    ],
                )
            )
        ],
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=20, total_tokens=30),
    )

    response = _openai()._from_completion(completion)

    assert response.text == "hello world"
    assert response.function_calls[0].id == "call_1"
    assert response.function_calls[0].arguments == {"serverId": "db-01"}
    assert response.usage == {"prompt_tokens": 10, "completion_tokens": 20, "total_tokens": 30}


def test_openai_malformed_arguments_become_empty_dict():
    completion = SimpleNamespace(
        choices=[
            SimpleNamespace(
                message=SimpleNamespace(
                    content=None,
                    tool_calls=[SimpleNamespace(id="c", function=SimpleNamespace(name="x", arguments="{not json"))],
                )
            )
        ],
        usage=None,
    )

    response = _openai()._from_completion(completion)

    assert response.text == ""
    assert response.function_calls[0].arguments == {}
    assert response.usage is None


def test_openai_stream_delta_keeps_tool_call_id_by_index():
    provider = _openai()
    call_ids_by_index = {}

    chunk1 = SimpleNamespace(
        choices=[
            SimpleNamespace(
                delta=SimpleNamespace(
                    content=None,
                    tool_calls=[
                        SimpleNamespace(
                            index=0, id="call_1", function=SimpleNamespace(name="getServerMetrics", arguments='{"a')
                        ),
                        SimpleNamespace(
                            index=1, id="call_2", function=SimpleNamespace(name="searchKnowledge", arguments='{"b')
                        ),
                    ],
                ),
                finish_reason=None,
            )
        ]
    )
    provider._iter_stream_deltas(chunk1, call_ids_by_index)

    # IDs are omitted after the first chunk; the index carries them.
    chunk2 = SimpleNamespace(
        choices=[
            SimpleNamespace(
                delta=SimpleNamespace(
                    content=None,
                    tool_calls=[
                        SimpleNamespace(index=0, id=None, function=SimpleNamespace(name=None, arguments='"}')),
                        SimpleNamespace(index=1, id=None, function=SimpleNamespace(name=None, arguments='"}')),
                    ],
                ),
                finish_reason="tool_calls",
            )
        ]
    )
    deltas = provider._iter_stream_deltas(chunk2, call_ids_by_index)

    arg_deltas = [d for d in deltas if d.function_call_delta]
    assert [d.function_call_id for d in arg_deltas] == ["call_1", "call_2"]
    assert deltas[-1].function_call_end is True
    assert deltas[-1].finish_reason == "tool_calls"


def test_openai_usage_only_chunk():
    chunk = SimpleNamespace(
        choices=[],
        usage=SimpleNamespace(prompt_tokens=1, completion_tokens=2, total_tokens=3),
    )

    deltas = _openai()._iter_stream_deltas(chunk, {})

    assert len(deltas) == 1
    assert deltas[0].usage == {"prompt_tokens": 1, "completion_tokens": 2, "total_tokens": 3}


def test_openai_kwargs_use_configured_temperature_and_tools():
    kwargs = _openai()._build_chat_kwargs(
        messages=[Message.user("hello")],
        tools=[ToolSchema(name="getServerMetrics", description="metrics", parameters={"type": "object"})],
        config=GenerationConfig(system_prompt="sys", max_tokens=128, temperature=0.2),
        stream=False,
    )

    assert kwargs["temperature"] == 0.2
    assert kwargs["max_tokens"] == 128
    assert kwargs["tool_choice"] == "auto"
    assert kwargs["tools"][0]["function"]["name"] == "getServerMetrics"
    assert kwargs["messages"][0] == {"role": "system", "content": "sys"}


def test_openai_kwargs_omit_temperature_when_unset():
    kwargs = _openai()._build_chat_kwargs(
        messages=[Message.user("hello")],
        tools=None,
        config=GenerationConfig(max_tokens=0, temperature=None),
        stream=True,
    )

    assert "temperature" not in kwargs
    assert "max_tokens" not in kwargs
    assert "tools" not in kwargs
    assert kwargs["stream"] is True


def test_tool_responses_are_paired_with_call_ids():
    messages = [
        Message.user("web-01 상태"),
        Message.assistant("", [FunctionCall(name="getServerMetrics", arguments={"serverId": "web-01"}, id="call_a")]),
        Message.tool_response([FunctionResponse(name="getServerMetrics", response={"cpu": 42})]),
    ]

    converted = _openai()._to_openai_messages(messages, system_prompt="")

    assert converted[1]["tool_calls"][0]["id"] == "call_a"
    assert converted[2] == {"role": "tool", "tool_call_id": "call_a", "content": '{"cpu": 42}'}


def test_unanswered_calls_are_paired_in_order_and_missing_ids_issued():
    messages = [
        Message.user("web-01, web-02 상태"),
        Message.assistant(
            "",
            [
                FunctionCall(name="getServerMetrics", arguments={"serverId": "web-01"}, id="call_a"),
                FunctionCall(name="getServerMetrics", arguments={"serverId": "web-02"}),
            ],
        ),
        Message.tool_response(
            [
                FunctionResponse(name="getServerMetrics", response={"cpu": 42}),
                FunctionResponse(name="getServerMetrics", response={"cpu": 77}),
            ]
        ),
    ]

    converted = _openai()._to_openai_messages(messages, system_prompt="모니터링 어시스턴트")

    assert converted[0] == {"role": "system", "content": "모니터링 어시스턴트"}
    issued = converted[2]["tool_calls"][1]["id"]
    assert issued.startswith("call_") and issued != "call_a"
    assert [m["tool_call_id"] for m in converted[3:]] == ["call_a", issued]
