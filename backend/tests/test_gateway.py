from types import SimpleNamespace

import pytest

from agent.video_agent.config import VideoAgentConfig
from agent.video_agent.gateway import (
    AgentNotReadyError,
    CancellationToken,
    ControlTokenFilter,
    GatewayError,
    GatewayState,
    GenerationCancelledError,
    ModelGateway,
    extract_inline_tool_calls,
    strip_control_tokens,
)
from agent.video_agent.tools import list_tools


def _content_chunk(text):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text, tool_calls=None))])


def _tool_chunk(index, call_id=None, name=None, arguments=None):
    tool_delta = SimpleNamespace(
        index=index,
        id=call_id,
        function=SimpleNamespace(name=name, arguments=arguments),
    )
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=None, tool_calls=[tool_delta]))])


class _FakeStream:
    def __init__(self, chunks):
        self._chunks = list(chunks)
        self.closed = False

    def __iter__(self):
        return iter(self._chunks)

    def close(self):
        self.closed = True


class _FakeClient:
    def __init__(self, chunks=(), retrieve_error=None):
        self.stream = _FakeStream(chunks)
        self.requests = []
        self.retrieve_error = retrieve_error
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))
        self.models = SimpleNamespace(retrieve=self._retrieve)

    def _create(self, **kwargs):
        self.requests.append(kwargs)
        return self.stream

    def _retrieve(self, model):
        if self.retrieve_error is not None:
            raise self.retrieve_error
        return SimpleNamespace(id=model)


def _ready_gateway(chunks=()):
    client = _FakeClient(chunks)
    gateway = ModelGateway(VideoAgentConfig(model="test-model"), client=client)
    gateway.prepare()
    return gateway, client


def _complete(gateway, **kwargs):
    return gateway.complete("PROJECT context", [], "trim the first 10 seconds", list_tools(), **kwargs)


class TestControlTokens:
    def test_strip_sentinels_and_hidden_blocks(self):
        text = "<|im_start|>assistant\n<think>plan the trim</think>Trimming now.<|im_end|></s>"

        assert strip_control_tokens(text) == "assistant\nTrimming now."

    def test_filter_holds_back_partial_markers(self):
        token_filter = ControlTokenFilter()

        assert token_filter.feed("Done <|im") == "Done "
        assert token_filter.feed("_end|> ok") == " ok"

    def test_filter_releases_plain_angle_brackets(self):
        token_filter = ControlTokenFilter()

        out = token_filter.feed("a < b") + token_filter.flush()

        assert out == "a < b"

    def test_unterminated_hidden_block_is_dropped_on_flush(self):
        token_filter = ControlTokenFilter()

        out = token_filter.feed("Sure.<think>still thinking") + token_filter.flush()

        assert out == "Sure."


class TestLifecycle:
    def test_starts_idle(self):
        gateway = ModelGateway(VideoAgentConfig(), client=_FakeClient())

        assert gateway.state == GatewayState.IDLE

    def test_prepare_reaches_ready_with_monotonic_progress(self):
        def acquire(report):
            for fraction in (0.3, 0.2, 0.8, 1.0):
                report(fraction)

        gateway = ModelGateway(VideoAgentConfig(), client=_FakeClient(), acquire=acquire)
        seen = []
        gateway.subscribe(seen.append)

        status = gateway.prepare()

        assert status.state == GatewayState.READY
        progress = [s.progress for s in seen if s.state == GatewayState.ACQUIRING]
        assert progress == [0, 30, 80, 100]
        assert seen[-1].state == GatewayState.READY

    def test_prepare_checks_model_by_default(self):
        client = _FakeClient()
        gateway = ModelGateway(VideoAgentConfig(model="qwen"), client=client)

        assert gateway.prepare().state == GatewayState.READY

    def test_prepare_failure_moves_to_error_and_can_retry(self):
        client = _FakeClient(retrieve_error=RuntimeError("connection refused"))
        gateway = ModelGateway(VideoAgentConfig(), client=client)

        with pytest.raises(GatewayError):
            gateway.prepare()

        assert gateway.state == GatewayState.ERROR
        assert "connection refused" in gateway.status.error

        client.retrieve_error = None
        assert gateway.prepare().state == GatewayState.READY

    def test_unsubscribe_stops_updates(self):
        gateway = ModelGateway(VideoAgentConfig(), client=_FakeClient())
        seen = []
        unsubscribe = gateway.subscribe(seen.append)
        unsubscribe()

        gateway.prepare()

        assert seen == []

    def test_destroy_returns_to_idle(self):
        gateway, _ = _ready_gateway()

        gateway.destroy()

        assert gateway.state == GatewayState.IDLE


class TestComplete:
    def test_not_ready_fails_fast(self):
        client = _FakeClient([_content_chunk("hi")])
        gateway = ModelGateway(VideoAgentConfig(), client=client)

        with pytest.raises(AgentNotReadyError):
            _complete(gateway)

        assert client.requests == []

    def test_streams_clean_tokens(self):
        gateway, client = _ready_gateway([_content_chunk("Trimming"), _content_chunk(" now<|im_end|>")])
        tokens = []

        result = _complete(gateway, on_token=tokens.append)

        assert "".join(tokens) == "Trimming now"
        assert result.text == "Trimming now"
        assert result.tool_calls == []
        assert client.stream.closed

    def test_request_carries_context_history_and_tools(self):
        gateway, client = _ready_gateway([_content_chunk("ok")])

        gateway.complete(
            "PROJECT context",
            [{"role": "user", "content": "hello"}, {"role": "assistant", "content": "hi"}],
            "make it brighter",
            list_tools(),
        )

        request = client.requests[0]
        assert request["model"] == "test-model"
        assert request["stream"] is True
        assert request["tool_choice"] == "auto"
        assert len(request["tools"]) == len(list_tools())
        assert [m["role"] for m in request["messages"]] == ["system", "user", "assistant", "user"]
        assert request["messages"][0]["content"] == "PROJECT context"
        assert request["messages"][-1]["content"] == "make it brighter"

    def test_accumulates_streamed_tool_call_deltas(self):
        gateway, _ = _ready_gateway([
            _tool_chunk(0, call_id="call_a", name="ffmpeg_trim", arguments='{"inputFile": "input/beach.mp4", '),
            _tool_chunk(0, arguments='"startTime": "0", "endTime": "10"}'),
            _tool_chunk(1, call_id="call_b", name="ffmpeg_filter", arguments='{"inputFile": "output/x.mp4", "filterName": "sepia"}'),
        ])

        result = _complete(gateway)

        assert [c.name for c in result.tool_calls] == ["ffmpeg_trim", "ffmpeg_filter"]
        assert result.tool_calls[0].id == "call_a"
        assert result.tool_calls[0].arguments == {"inputFile": "input/beach.mp4", "startTime": "0", "endTime": "10"}

    def test_malformed_tool_arguments_raise(self):
        gateway, _ = _ready_gateway([_tool_chunk(0, call_id="call_a", name="ffmpeg_trim", arguments='{"inputFile": ')])

        with pytest.raises(GatewayError):
            _complete(gateway)

    def test_inline_tool_calls_are_recovered_and_hidden(self):
        text = 'On it.<tool_call>{"name": "ffmpeg_speed", "arguments": {"inputFile": "input/a.mp4", "speed": 2}}</tool_call>'
        gateway, _ = _ready_gateway([_content_chunk(text)])
        tokens = []

        result = _complete(gateway, on_token=tokens.append)

        assert result.text == "On it."
        assert "".join(tokens) == "On it."
        assert result.tool_calls[0].name == "ffmpeg_speed"
        assert result.tool_calls[0].arguments == {"inputFile": "input/a.mp4", "speed": 2}

    def test_cancellation_stops_generation(self):
        cancel = CancellationToken()
        gateway, client = _ready_gateway([_content_chunk("a"), _content_chunk("b")])
        tokens = []

        def on_token(text):
            tokens.append(text)
            cancel.cancel()

        with pytest.raises(GenerationCancelledError):
            _complete(gateway, on_token=on_token, cancel=cancel)

        assert tokens == ["a"]
        assert client.stream.closed


def test_extract_inline_tool_calls_rejects_nameless_calls():
    with pytest.raises(GatewayError):
        extract_inline_tool_calls('<tool_call>{"arguments": {}}</tool_call>')
