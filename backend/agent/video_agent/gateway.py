"""Local language model access.

``ModelGateway`` owns the OpenAI-compatible client for the local model server
(llama.cpp, Ollama, LM Studio, vLLM, ...) and its lifecycle:

    IDLE -> ACQUIRING -> READY
                      -> ERROR  (prepare() may be retried)

``complete`` only works in READY. Content deltas are streamed to an optional
``on_token`` sink with control tokens removed; tool calls are accumulated from
the stream and returned once generation finishes.
"""
from __future__ import annotations

import json
import logging
import os
import re
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from openai import OpenAI, OpenAIError

from .config import VideoAgentConfig
from .tools import ToolSpec, to_openai_tools
from .types import CompletionResult, ProposedToolCall

logger = logging.getLogger(__name__)

LOG_PAYLOADS = os.getenv("VIDEO_AGENT_LOG_PAYLOADS", "").lower() in {"1", "true", "yes"}
LOG_MAX_CHARS = int(os.getenv("VIDEO_AGENT_LOG_MAX_CHARS", "2000"))

SENTINEL_TOKENS = (
    "<|im_start|>",
    "<|im_end|>",
    "<|eot_id|>",
    "<|end_of_text|>",
    "<|begin_of_text|>",
    "<|endoftext|>",
    "<|end|>",
    "<|assistant|>",
    "<|user|>",
    "<|system|>",
    "<start_of_turn>",
    "<end_of_turn>",
    "<s>",
    "</s>",
)
HIDDEN_BLOCKS = (
    ("<think>", "</think>"),
    ("<tool_call>", "</tool_call>"),
    ("<|start_header_id|>", "<|end_header_id|>"),
)
_MARKERS = SENTINEL_TOKENS + tuple(open_tag for open_tag, _ in HIDDEN_BLOCKS)
_INLINE_TOOL_CALL = re.compile(r"<tool_call>\s*(.*?)\s*</tool_call>", re.DOTALL)


class GatewayError(Exception):
    pass


class AgentNotReadyError(GatewayError):
    pass


class GenerationCancelledError(GatewayError):
    pass


class GatewayState(str, Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class GatewayStatus:
    state: GatewayState
    progress: int = 0
    error: str | None = None


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


StatusListener = Callable[[GatewayStatus], None]
ProgressReporter = Callable[[float], None]
AcquireFn = Callable[[ProgressReporter], None]


def _log_payload(label: str, payload: Any) -> None:
    if not LOG_PAYLOADS:
        return
    if isinstance(payload, str):
        message = payload
    else:
        try:
            message = json.dumps(payload, default=str, ensure_ascii=True)
        except TypeError:
            message = str(payload)
    if LOG_MAX_CHARS > 0 and len(message) > LOG_MAX_CHARS:
        message = f"{message[:LOG_MAX_CHARS]}... [truncated]"
    logger.info("Model gateway %s: %s", label, message)


class ControlTokenFilter:
    """Incrementally removes control tokens and hidden blocks from streamed text.

    Text that could still turn into a marker is held back until the next
    chunk (or ``flush``) decides it.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._hidden_end: str | None = None

    def feed(self, text: str) -> str:
        self._buffer += text
        return self._drain(final=False)

    def flush(self) -> str:
        return self._drain(final=True)

    def _drain(self, final: bool) -> str:
        out: list[str] = []
        while self._buffer:
            if self._hidden_end is not None:
                idx = self._buffer.find(self._hidden_end)
                if idx < 0:
                    if final:
                        self._buffer = ""
                    break
                self._buffer = self._buffer[idx + len(self._hidden_end):]
                self._hidden_end = None
                continue

            idx = self._buffer.find("<")
            if idx < 0:
                out.append(self._buffer)
                self._buffer = ""
                break
            out.append(self._buffer[:idx])
            self._buffer = self._buffer[idx:]

            block = next((b for b in HIDDEN_BLOCKS if self._buffer.startswith(b[0])), None)
            if block is not None:
                self._buffer = self._buffer[len(block[0]):]
                self._hidden_end = block[1]
                continue
            token = next((t for t in SENTINEL_TOKENS if self._buffer.startswith(t)), None)
            if token is not None:
                self._buffer = self._buffer[len(token):]
                continue
            if not final and any(m.startswith(self._buffer) for m in _MARKERS):
                break
            out.append("<")
            self._buffer = self._buffer[1:]
        return "".join(out)


def strip_control_tokens(text: str) -> str:
    token_filter = ControlTokenFilter()
    return (token_filter.feed(text) + token_filter.flush()).strip()


def _parse_arguments(name: str, raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as exc:
        raise GatewayError(f"Model returned malformed arguments for {name}: {exc}") from exc
    if not isinstance(parsed, dict):
        raise GatewayError(f"Model returned non-object arguments for {name}")
    return parsed


def extract_inline_tool_calls(text: str) -> list[ProposedToolCall]:
    """Recover ``<tool_call>{"name": ..., "arguments": {...}}</tool_call>`` blocks."""
    calls: list[ProposedToolCall] = []
    for block in _INLINE_TOOL_CALL.findall(text):
        try:
            payload = json.loads(block)
        except json.JSONDecodeError as exc:
            raise GatewayError(f"Model returned a malformed inline tool call: {exc}") from exc
        name = payload.get("name") if isinstance(payload, dict) else None
        if not name:
            raise GatewayError("Model returned an inline tool call without a name")
        arguments = payload.get("arguments", payload.get("parameters"))
        calls.append(ProposedToolCall(name=name, arguments=_parse_arguments(name, arguments)))
    return calls


class ModelGateway:
    def __init__(
        self,
        config: VideoAgentConfig | None = None,
        client: OpenAI | None = None,
        acquire: AcquireFn | None = None,
    ):
        self.config = config or VideoAgentConfig.from_env()
        self._client = client
        self._owns_client = client is None
        self._acquire = acquire or self._check_model
        self._lock = threading.Lock()
        self._listeners: list[StatusListener] = []
        self._status = GatewayStatus(GatewayState.IDLE)

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(base_url=self.config.base_url, api_key=self.config.api_key)
        return self._client

    @property
    def status(self) -> GatewayStatus:
        return self._status

    @property
    def state(self) -> GatewayState:
        return self._status.state

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, status: GatewayStatus) -> None:
        with self._lock:
            self._status = status
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(status)
            except Exception:
                logger.exception("Gateway status listener failed")

    def _report_progress(self, fraction: float) -> None:
        percent = max(0, min(100, int(round(fraction * 100))))
        current = self._status
        if current.state != GatewayState.ACQUIRING or percent <= current.progress:
            return
        self._publish(GatewayStatus(GatewayState.ACQUIRING, progress=percent))

    def _check_model(self, report: ProgressReporter) -> None:
        report(0.1)
        self.client.models.retrieve(self.config.model)
        report(1.0)

    def prepare(self) -> GatewayStatus:
        with self._lock:
            state = self._status.state
            if state == GatewayState.READY:
                return self._status
            if state == GatewayState.ACQUIRING:
                raise GatewayError("Model preparation already in progress")
            self._status = GatewayStatus(GatewayState.ACQUIRING, progress=0)
        self._publish(self._status)

        logger.info("Preparing model %s at %s", self.config.model, self.config.base_url)
        try:
            self._acquire(self._report_progress)
        except Exception as exc:
            logger.exception("Model preparation failed")
            self._publish(
                GatewayStatus(GatewayState.ERROR, progress=self._status.progress, error=str(exc))
            )
            raise GatewayError(f"Model preparation failed: {exc}") from exc

        self._publish(GatewayStatus(GatewayState.READY, progress=100))
        logger.info("Model %s ready", self.config.model)
        return self._status

    def destroy(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
        self._publish(GatewayStatus(GatewayState.IDLE))

    def complete(
        self,
        system_context: str,
        history: list[dict[str, str]],
        new_message: str,
        tools: tuple[ToolSpec, ...] | list[ToolSpec],
        on_token: Callable[[str], None] | None = None,
        cancel: CancellationToken | None = None,
    ) -> CompletionResult:
        if self.state != GatewayState.READY:
            raise AgentNotReadyError(f"Agent not ready (state: {self.state.value})")

        messages = [
            {"role": "system", "content": system_context},
            *history,
            {"role": "user", "content": new_message},
        ]
        request: dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "stream": True,
        }
        if tools:
            request["tools"] = to_openai_tools(tools)
            request["tool_choice"] = "auto"
        _log_payload("request_messages", messages)

        try:
            stream = self.client.chat.completions.create(**request)
        except OpenAIError as exc:
            logger.error("Model request failed: %s", exc)
            raise GatewayError(f"Model request failed: {exc}") from exc

        token_filter = ControlTokenFilter()
        text_parts: list[str] = []
        pending_calls: dict[int, dict[str, Any]] = {}

        def emit(text: str) -> None:
            if text and on_token is not None:
                on_token(text)

        try:
            for chunk in stream:
                if cancel is not None and cancel.cancelled:
                    raise GenerationCancelledError("Generation cancelled")
                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                delta = choices[0].delta
                content = getattr(delta, "content", None)
                if content:
                    text_parts.append(content)
                    emit(token_filter.feed(content))
                for tool_delta in getattr(delta, "tool_calls", None) or []:
                    index = getattr(tool_delta, "index", None) or 0
                    entry = pending_calls.setdefault(index, {"id": None, "name": "", "arguments": ""})
                    if getattr(tool_delta, "id", None):
                        entry["id"] = tool_delta.id
                    function = getattr(tool_delta, "function", None)
                    if function is not None:
                        if getattr(function, "name", None):
                            entry["name"] += function.name
                        if getattr(function, "arguments", None):
                            entry["arguments"] += function.arguments
        except OpenAIError as exc:
            logger.error("Model stream failed: %s", exc)
            raise GatewayError(f"Model stream failed: {exc}") from exc
        finally:
            close = getattr(stream, "close", None)
            if callable(close):
                close()

        if cancel is not None and cancel.cancelled:
            raise GenerationCancelledError("Generation cancelled")
        emit(token_filter.flush())

        raw_text = "".join(text_parts)
        _log_payload("assistant_message", raw_text)

        tool_calls: list[ProposedToolCall] = []
        for index in sorted(pending_calls):
            entry = pending_calls[index]
            name = entry["name"].strip()
            if not name:
                raise GatewayError("Model returned a tool call without a name")
            call = ProposedToolCall(name=name, arguments=_parse_arguments(name, entry["arguments"]))
            if entry["id"]:
                call.id = entry["id"]
            tool_calls.append(call)
        tool_calls.extend(extract_inline_tool_calls(raw_text))
        _log_payload("tool_calls", [c.model_dump() for c in tool_calls])

        return CompletionResult(text=strip_control_tokens(raw_text), tool_calls=tool_calls)
