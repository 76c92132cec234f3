"""Agent execution contract: drive one agent through a bounded tool loop.

``BaseAgent.stream`` turns every failure into a terminal ``error`` event, so
callers always see a well-formed event sequence ending in ``done`` or
``error``. The only exception that escapes is ``asyncio.CancelledError`` when
the consuming task itself is cancelled.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    FrozenSet,
    List,
    Optional,
    Pattern,
    TypeVar,
    Union,
)

from ..observability import AgentObserver
from ..providers.selection import ResolvedModel
from ..providers.types import (
    FunctionCall,
    FunctionResponse,
    GenerationConfig,
    Message,
    StreamDelta,
    ToolSchema,
    merge_usage,
)
from ..tools.base import DEFAULT_CAPABILITIES, FINAL_ANSWER_TOOL, BaseTool, filter_tools
from . import events
from .events import ErrorCode, StreamEvent

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Han ideographs occasionally leak into Korean model output.
_HAN_CHARACTERS = re.compile(r"[\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff]")

_EXHAUSTED = object()
_SNAPSHOT_MIN_CHARS = 16


@dataclass
class AgentConfig:
    """Static description of a routable agent."""

    name: str
    description: str
    instructions: str
    tools: Dict[str, BaseTool]
    match_patterns: List[Union[str, Pattern[str]]]
    get_model: Callable[[], Optional[ResolvedModel]]
    max_steps: int = 7
    internal: bool = False

    def matches(self, query: str) -> bool:
        lowered = query.lower()
        for pattern in self.match_patterns:
            if isinstance(pattern, str):
                if pattern.lower() in lowered:
                    return True
            elif pattern.search(query):
                return True
        return False

    def resolve_model(self) -> Optional[ResolvedModel]:
        """``get_model()`` with lookup failures reported as no model."""
        try:
            return self.get_model()
        except Exception as e:
            logger.warning(f"[{self.name}] Model resolution failed: {e}")
            return None


@dataclass
class AgentRunOptions:
    session_id: str = ""
    history: List[Message] = field(default_factory=list)
    capabilities: FrozenSet[str] = DEFAULT_CAPABILITIES
    timeout_s: float = 45.0
    max_steps: Optional[int] = None
    temperature: float = 0.4
    max_output_tokens: int = 1536
    cancel_event: Optional[asyncio.Event] = None


@dataclass
class AgentRunResult:
    """Collected outcome of a non-streaming agent run."""

    success: bool
    text: str = ""
    tools_called: List[str] = field(default_factory=list)
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class StreamTimeout(Exception):
    """The invocation exhausted its wall-clock budget."""


class StreamCancelled(Exception):
    """The caller set the cancellation event."""


@dataclass
class _StepState:
    raw_text: str = ""
    text: str = ""
    calls: List[FunctionCall] = field(default_factory=list)
    finish_reason: Optional[str] = None
    usage: Dict[str, int] = field(default_factory=dict)


class _CallAggregator:
    """Reassembles streamed tool calls from start/argument deltas.

    Providers identify a call by id, by index, or not at all (then the most
    recent call is extended).
    """

    def __init__(self) -> None:
        self._calls: Dict[str, FunctionCall] = {}
        self._order: List[str] = []
        self._buffers: Dict[str, str] = {}
        self._last_key: Optional[str] = None
        self._counter = 0

    def _key(self, delta: StreamDelta, call_id: Optional[str] = None) -> str:
        if call_id or delta.function_call_id:
            return f"id:{call_id or delta.function_call_id}"
        if delta.function_call_index is not None:
            return f"idx:{delta.function_call_index}"
        self._counter += 1
        return f"stream:{self._counter}"

    def add(self, delta: StreamDelta) -> None:
        if delta.function_call_start:
            start = delta.function_call_start
            key = self._key(delta, start.id)
            if key not in self._calls:
                self._calls[key] = FunctionCall(
                    name=start.name,
                    arguments=dict(start.arguments or {}),
                    id=start.id or delta.function_call_id or f"call_{len(self._order) + 1}",
                )
                self._order.append(key)
            elif not self._calls[key].name:
                self._calls[key].name = start.name
            self._buffers.setdefault(key, "")
            self._last_key = key

        if delta.function_call_delta:
            if delta.function_call_id or delta.function_call_index is not None:
                key = self._key(delta)
            else:
                key = self._last_key or self._key(delta)
            if key not in self._calls:
                self._calls[key] = FunctionCall(name="", arguments={}, id=delta.function_call_id)
                self._order.append(key)
            prior = self._buffers.get(key, "")
            self._buffers[key] = prior + normalize_stream_text_delta(prior, delta.function_call_delta)
            self._last_key = key

    def finish(self) -> List[FunctionCall]:
        calls: List[FunctionCall] = []
        for key in self._order:
            call = self._calls[key]
            buffer = self._buffers.get(key, "")
            if buffer:
                try:
                    parsed = json.loads(buffer)
                except ValueError:
                    logger.warning(f"Discarding malformed arguments for tool call {call.name!r}")
                    parsed = {}
                call.arguments = parsed if isinstance(parsed, dict) else {}
            if call.name:
                calls.append(call)
        return calls


def normalize_stream_text_delta(accumulated: str, incoming: str) -> str:
    """Return only the new part of ``incoming``.

    Some providers stream cumulative snapshots instead of increments. A delta
    that repeats everything seen so far (and is long enough not to be a
    coincidence) is cut down to its new suffix.
    """
    if len(incoming) > len(accumulated) >= _SNAPSHOT_MIN_CHARS and incoming.startswith(accumulated):
        return incoming[len(accumulated) :]
    return incoming


def sanitize_text(text: str) -> str:
    return _HAN_CHARACTERS.sub("", text)


def empty_response_message(provider: str, model_id: str, agent_name: str) -> str:
    return (
        f"{agent_name}가 응답을 생성하지 못했습니다 ({provider}/{model_id}). "
        "잠시 후 다시 시도하거나 질문을 조금 더 구체적으로 입력해 주세요."
    )


async def _next_delta(stream: AsyncIterator[StreamDelta]) -> Any:
    try:
        return await stream.__anext__()
    except StopAsyncIteration:
        return _EXHAUSTED


async def _guarded(awaitable: Awaitable[T], deadline: float, cancel_event: Optional[asyncio.Event]) -> T:
    """Await ``awaitable`` unless the deadline passes or cancellation is requested first.

    On timeout or cancellation the in-flight work is cancelled before
    ``StreamTimeout`` / ``StreamCancelled`` is raised.
    """
    task = asyncio.ensure_future(awaitable)
    waiters = {task}
    cancel_waiter: Optional[asyncio.Future] = None
    if cancel_event is not None:
        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        waiters.add(cancel_waiter)

    try:
        finished, _ = await asyncio.wait(
            waiters,
            timeout=max(deadline - time.monotonic(), 0.0),
            return_when=asyncio.FIRST_COMPLETED,
        )
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()

    if task in finished:
        return task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    if cancel_event is not None and cancel_event.is_set():
        raise StreamCancelled()
    raise StreamTimeout()


class BaseAgent(ABC):
    """Base class for agents that stream Event Protocol events."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    @abstractmethod
    def get_name(self) -> str:
        """Display name, also used as ``finalAgent``."""

    @abstractmethod
    def get_config(self) -> Optional[AgentConfig]:
        """Current configuration, or None when the agent is not registered."""

    async def run(self, query: str, options: Optional[AgentRunOptions] = None) -> AgentRunResult:
        """Consume ``stream`` and return the collected result."""
        chunks: List[str] = []
        async for event in self.stream(query, options):
            if event.type == events.EventType.TEXT_DELTA:
                chunks.append(event.data)
            elif event.type == events.EventType.DONE:
                return AgentRunResult(
                    success=bool(event.data.get("success")),
                    text=event.data.get("response") or "".join(chunks),
                    tools_called=list(event.data.get("toolsCalled", [])),
                    metadata=dict(event.data.get("metadata", {})),
                )
            elif event.type == events.EventType.ERROR:
                return AgentRunResult(
                    success=False,
                    text="".join(chunks),
                    error_code=event.data.get("code"),
                    error_message=event.data.get("message"),
                )
        return AgentRunResult(success=False, error_code=ErrorCode.STREAM_ERROR, error_message="stream ended early")

    async def stream(self, query: str, options: Optional[AgentRunOptions] = None) -> AsyncIterator[StreamEvent]:
        options = options or AgentRunOptions()
        name = self.get_name()

        try:
            config = self.get_config()
        except Exception as e:
            logger.error(f"[{name}] Failed to load config: {e}")
            config = None
        if config is None:
            yield events.error(ErrorCode.CONFIG_NOT_FOUND, f"Agent {name} config not found")
            return

        resolved = config.resolve_model()
        if resolved is None:
            yield events.error(ErrorCode.MODEL_UNAVAILABLE, f"No model available for {name}")
            return

        started = time.monotonic()
        deadline = started + options.timeout_s
        observer = AgentObserver(agent_id=name, verbose=self.verbose)
        tools = filter_tools(config.tools, options.capabilities)
        schemas = [tool.to_schema() for tool in tools.values()]
        generation = GenerationConfig(
            system_prompt=config.instructions,
            max_tokens=options.max_output_tokens,
            temperature=options.temperature,
        )
        messages: List[Message] = [*options.history, Message.user(query)]
        max_steps = options.max_steps or config.max_steps

        tools_called: List[str] = []
        usage: Dict[str, int] = {}
        streamed: List[str] = []
        last_text = ""
        final_answer: Optional[str] = None

        try:
            for step in range(1, max_steps + 1):
                observer.log_step_start(step, query if step == 1 else None)
                step_started = time.monotonic()
                state = _StepState()

                async for event in self._stream_step(resolved, messages, schemas, generation, state, deadline, options):
                    streamed.append(event.data)
                    yield event

                merge_usage(usage, state.usage)
                step_ms = (time.monotonic() - step_started) * 1000
                observer.log_llm_request(
                    resolved.provider, resolved.model_id, step, step_ms, state.usage.get("total_tokens", 0)
                )
                messages.append(Message.assistant(state.text, state.calls))
                if state.text.strip():
                    last_text = state.text

                if not state.calls:
                    observer.log_step_end(step, step_ms, state.finish_reason)
                    yield events.step_finish(state.finish_reason or "stop", [], [])
                    break

                responses: List[FunctionResponse] = []
                results: List[Any] = []
                for call in state.calls:
                    yield events.tool_call(call.name, call.arguments)
                    payload = await self._execute_tool(tools, call, deadline, options, observer)
                    yield events.tool_result(call.name, payload)
                    responses.append(FunctionResponse(name=call.name, response=payload, call_id=call.id))
                    results.append(payload)
                    if call.name == FINAL_ANSWER_TOOL:
                        if payload.get("answer") is not None:
                            final_answer = str(payload["answer"])
                    else:
                        tools_called.append(call.name)

                messages.append(Message.tool_response(responses))
                observer.log_step_end(step, (time.monotonic() - step_started) * 1000, state.finish_reason)
                yield events.step_finish(
                    state.finish_reason or "tool-calls", [call.name for call in state.calls], results
                )
                if final_answer is not None:
                    break
            else:
                logger.info(f"[{name}] Step cap ({max_steps}) reached, using last text as answer")

        except StreamTimeout:
            observer.log_error("timeout", f"exceeded {options.timeout_s}s")
            yield events.error(ErrorCode.STREAM_ERROR, f"{name} timed out after {options.timeout_s:g}s")
            return
        except StreamCancelled:
            logger.info(f"[{name}] Cancelled by caller")
            yield events.error(ErrorCode.CANCELLED, f"{name} was cancelled")
            return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            observer.log_error("stream", str(e), {"provider": resolved.provider, "model": resolved.model_id})
            yield events.error(ErrorCode.STREAM_ERROR, str(e))
            return

        response = sanitize_text(final_answer).strip() if final_answer else ""
        response = response or last_text.strip()
        shown = "".join(streamed)
        if response and response not in shown:
            piece = f"\n\n{response}" if shown.strip() else response
            yield events.text_delta(piece)
            shown += piece
        if not shown.strip():
            response = empty_response_message(resolved.provider, resolved.model_id, name)
            logger.warning(f"[{name}] Empty content from {resolved.provider}/{resolved.model_id}, emitting fallback")
            yield events.text_delta(response)

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"[{name}] Completed in {duration_ms}ms, tools: [{', '.join(tools_called)}]")
        yield events.done(
            final_agent=name,
            tools_called=tools_called,
            provider=resolved.provider,
            model_id=resolved.model_id,
            duration_ms=duration_ms,
            response=response,
            usage={
                "promptTokens": usage.get("prompt_tokens", 0),
                "completionTokens": usage.get("completion_tokens", 0),
                "totalTokens": usage.get("total_tokens", 0),
            },
        )

    async def _stream_step(
        self,
        resolved: ResolvedModel,
        messages: List[Message],
        schemas: List[ToolSchema],
        generation: GenerationConfig,
        state: _StepState,
        deadline: float,
        options: AgentRunOptions,
    ) -> AsyncIterator[StreamEvent]:
        stream = resolved.model.generate_stream(list(messages), schemas or None, generation)
        aggregator = _CallAggregator()
        try:
            while True:
                delta = await _guarded(_next_delta(stream), deadline, options.cancel_event)
                if delta is _EXHAUSTED:
                    break
                if delta.text:
                    piece = normalize_stream_text_delta(state.raw_text, delta.text)
                    state.raw_text += piece
                    clean = sanitize_text(piece)
                    if clean:
                        state.text += clean
                        yield events.text_delta(clean)
                aggregator.add(delta)
                if delta.finish_reason:
                    state.finish_reason = delta.finish_reason
                if delta.usage:
                    merge_usage(state.usage, delta.usage)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
        state.calls = aggregator.finish()

    async def _execute_tool(
        self,
        tools: Dict[str, BaseTool],
        call: FunctionCall,
        deadline: float,
        options: AgentRunOptions,
        observer: AgentObserver,
    ) -> Dict[str, Any]:
        """Run one tool call; tool failures become ``{"error": ...}`` payloads."""
        started = time.monotonic()
        tool = tools.get(call.name)
        if tool is None:
            payload: Dict[str, Any] = {"error": f"Unknown tool '{call.name}'"}
            success = False
        else:
            try:
                result = await _guarded(tool.execute(**call.arguments), deadline, options.cancel_event)
            except (StreamTimeout, StreamCancelled, asyncio.CancelledError):
                raise
            except Exception as e:
                observer.log_error("tool_execution", str(e), {"tool": call.name, "args": call.arguments})
                payload = {"error": str(e)}
                success = False
            else:
                payload = result.to_payload()
                success = result.success

        observer.log_tool_call(call.name, call.arguments, payload, (time.monotonic() - started) * 1000, success)
        return payload


class ConfigAgent(BaseAgent):
    """Agent whose configuration is looked up by name on every invocation."""

    def __init__(self, name: str, lookup: Callable[[str], Optional[AgentConfig]], verbose: bool = False):
        super().__init__(verbose=verbose)
        self.name = name
        self._lookup = lookup

    def get_name(self) -> str:
        return self.name

    def get_config(self) -> Optional[AgentConfig]:
        return self._lookup(self.name)
