"""
unistream - Transport Iterator Tests

Verifies:
- SSE framing across arbitrary chunk boundaries
- Raw chunk iteration over SSE, object and binary frame transports
- Error isolation (malformed frames) vs fatal errors (bad UTF-8, transport failures)
- Abort stops upstream reads
- Normalization into a single trailing Finish
"""

import base64
import json

import httpx
import pytest

from unistream.adapters import TransportKind, get_adapter
from unistream.core.errors import ProviderStreamError, StreamDecodeError, TransportError
from unistream.core.models import ErrorEvent, Finish, FinishReason, TextDelta, Usage
from unistream.streaming.cancellation import AbortSignal, StreamAbortedError
from unistream.streaming.iterators import iter_raw_chunks
from unistream.streaming.normalizer import StreamNormalizer, normalize_events
from unistream.streaming.sse import SSEDecoder, SSEEvent


def _decode_all(pieces):
    decoder = SSEDecoder()
    events = []
    for piece in pieces:
        events.extend(decoder.decode(piece))
    events.extend(decoder.flush())
    return events


# ============================================================
# SSE Decoder
# ============================================================

class TestSSEDecoder:
    """Test incremental SSE framing."""

    def test_single_event(self):
        assert _decode_all([b"data: hello\n\n"]) == [SSEEvent(data="hello")]

    def test_any_chunk_boundary(self, sse_body, split_bytes):
        """Splitting the body anywhere yields the same events."""
        body = sse_body({"n": 1}, {"n": 2}, sentinel=None)
        expected = _decode_all([body])

        for size in (1, 2, 3, 7, 16):
            assert _decode_all(split_bytes(body, size)) == expected
        assert [json.loads(e.data) for e in expected] == [{"n": 1}, {"n": 2}]

    def test_crlf_split_between_cr_and_lf(self):
        """A CR at a chunk boundary is not taken as a blank line."""
        events = _decode_all([b"data: a\r", b"\n\r", b"\ndata: b\r\n\r\n"])
        assert [e.data for e in events] == ["a", "b"]

    def test_bare_cr_line_endings(self):
        assert [e.data for e in _decode_all([b"data: x\r\rdata: y\r\r"])] == ["x", "y"]

    def test_multibyte_character_split(self):
        """A UTF-8 sequence split across chunks decodes intact."""
        body = "data: héllo 👋\n\n".encode("utf-8")
        cut = body.index("👋".encode("utf-8")) + 2
        assert _decode_all([body[:cut], body[cut:]]) == [SSEEvent(data="héllo 👋")]

    def test_multiple_data_lines_joined(self):
        events = _decode_all([b"data: line1\ndata: line2\n\n"])
        assert events[0].data == "line1\nline2"

    def test_comments_and_fields(self):
        """Comments are ignored; event and id fields are kept."""
        events = _decode_all([b": keep-alive\nevent: completion\nid: 7\ndata: {}\n\n"])
        assert events == [SSEEvent(data="{}", event="completion", id="7")]

    def test_trailing_event_without_blank_line(self):
        """Flush dispatches an event cut off at the end of the stream."""
        assert [e.data for e in _decode_all([b"data: a\n\ndata: b"])] == ["a", "b"]

    def test_invalid_utf8_raises(self):
        decoder = SSEDecoder()
        with pytest.raises(UnicodeDecodeError):
            decoder.decode(b"data: \xff\xfe\n\n")


# ============================================================
# SSE Transport
# ============================================================

class TestSSEIteration:
    """Test raw chunk iteration over SSE byte streams."""

    @pytest.mark.asyncio
    async def test_chunks_decoded_until_sentinel(self, openai_text_chunks, sse_body, split_bytes, async_items, collect):
        """Payloads after the [DONE] sentinel are never read."""
        body = sse_body(*openai_text_chunks) + b'data: {"late": true}\n\n'
        adapter = get_adapter("openai")

        raw = await collect(iter_raw_chunks(async_items(split_bytes(body, 5)), adapter))

        assert raw == openai_text_chunks

    @pytest.mark.asyncio
    async def test_single_bytes_source(self, openai_text_chunks, sse_body, collect):
        """A whole body given as bytes is one transport item."""
        raw = await collect(iter_raw_chunks(sse_body(*openai_text_chunks), get_adapter("openai")))
        assert len(raw) == len(openai_text_chunks)

    @pytest.mark.asyncio
    async def test_malformed_payload_is_isolated(self, openai_chunk, sse_body, async_items, collect):
        """A bad data line becomes a non-fatal error and the stream continues."""
        body = sse_body(openai_chunk({"content": "a"}), "{not json", openai_chunk({"content": "b"}))

        raw = await collect(iter_raw_chunks(async_items([body]), get_adapter("openai")))

        assert len(raw) == 3
        assert isinstance(raw[1], ErrorEvent)
        assert raw[1].fatal is False
        assert isinstance(raw[1].cause, StreamDecodeError)
        assert raw[2]["choices"][0]["delta"]["content"] == "b"

    @pytest.mark.asyncio
    async def test_non_object_payload_is_isolated(self, sse_body, async_items, collect):
        raw = await collect(iter_raw_chunks(async_items([sse_body("[1, 2]")]), get_adapter("openai")))
        assert len(raw) == 1
        assert raw[0].fatal is False

    @pytest.mark.asyncio
    async def test_invalid_utf8_is_fatal(self, openai_chunk, sse_body, async_items, collect):
        """Undecodable bytes end the stream with a fatal error."""
        pieces = [sse_body(openai_chunk({"content": "a"}), sentinel=None), b"data: \xff\n\n", b"data: {}\n\n"]

        raw = await collect(iter_raw_chunks(async_items(pieces), get_adapter("openai")))

        assert len(raw) == 2
        assert isinstance(raw[-1], ErrorEvent)
        assert raw[-1].fatal is True
        assert raw[-1].cause.code == "decode_error"

    @pytest.mark.asyncio
    async def test_custom_sentinel(self, sse_body, async_items, collect):
        body = sse_body({"completion": "a"}, {"completion": "b"}, sentinel="[END]")
        raw = await collect(iter_raw_chunks(async_items([body]), get_adapter("anthropic"), sse_sentinel="[END]"))
        assert raw == [{"completion": "a"}, {"completion": "b"}]

    @pytest.mark.asyncio
    async def test_transport_exception_is_fatal(self, openai_chunk, sse_body, collect):
        """An exception from the source is classified and ends the stream."""

        async def source():
            yield sse_body(openai_chunk({"content": "a"}), sentinel=None)
            raise httpx.ReadTimeout("timed out")

        raw = await collect(iter_raw_chunks(source(), get_adapter("openai")))

        assert isinstance(raw[-1], ErrorEvent)
        assert isinstance(raw[-1].cause, TransportError)
        assert raw[-1].cause.code == "read_timeout"

    @pytest.mark.asyncio
    async def test_unsupported_transport_rejected(self, async_items, collect):
        with pytest.raises(ValueError):
            await collect(iter_raw_chunks(async_items([b""]), get_adapter("bedrock-cohere"), transport=TransportKind.SSE))


# ============================================================
# httpx Responses
# ============================================================

class TestHTTPXResponse:
    """Test reading an httpx streaming response directly."""

    @pytest.mark.asyncio
    async def test_streaming_response(self, openai_text_chunks, sse_body, collect):
        body = sse_body(*openai_text_chunks)

        def handler(request):
            return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            async with client.stream("POST", "https://api.example.com/v1/chat/completions") as response:
                raw = await collect(iter_raw_chunks(response, get_adapter("openai")))

        assert raw == openai_text_chunks

    @pytest.mark.asyncio
    async def test_error_status_is_fatal(self, collect):
        """A non-2xx upstream status becomes a fatal transport error."""

        def handler(request):
            return httpx.Response(503, json={"error": "unavailable"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            async with client.stream("POST", "https://api.example.com/v1/chat/completions") as response:
                raw = await collect(iter_raw_chunks(response, get_adapter("openai")))

        assert len(raw) == 1
        assert raw[0].fatal is True
        assert raw[0].cause.status_code == 503
        assert raw[0].cause.code == "upstream_503"
        assert raw[0].cause.error.retryable is True


# ============================================================
# Object and Binary Frame Transports
# ============================================================

def _frame(payload):
    return {"chunk": {"bytes": json.dumps(payload).encode("utf-8")}}


class TestObjectAndFrameIteration:
    """Test SDK object streams and Bedrock frames."""

    @pytest.mark.asyncio
    async def test_object_chunks(self, async_items, collect):
        chunks = [{"candidates": [{"content": {"parts": [{"text": "a"}]}}]}]
        raw = await collect(iter_raw_chunks(async_items(chunks), get_adapter("google")))
        assert raw == chunks

    @pytest.mark.asyncio
    async def test_sync_iterable_source(self, collect):
        chunks = [{"candidates": [{"content": {"parts": [{"text": "a"}]}}]}]
        raw = await collect(iter_raw_chunks(iter(chunks), get_adapter("google")))
        assert raw == chunks

    @pytest.mark.asyncio
    async def test_binary_frames(self, async_items, collect):
        """Frames carry raw bytes or base64 text."""
        encoded = base64.b64encode(json.dumps({"generation": "b"}).encode("utf-8")).decode("ascii")
        frames = [_frame({"generation": "a"}), {"chunk": {"bytes": encoded}}]

        raw = await collect(iter_raw_chunks(async_items(frames), get_adapter("bedrock-llama2")))

        assert raw == [{"generation": "a"}, {"generation": "b"}]

    @pytest.mark.asyncio
    async def test_bad_frame_is_isolated(self, async_items, collect):
        frames = [_frame({"generation": "a"}), {"chunk": {"bytes": b"\x00garbage"}}, _frame({"generation": "b"})]

        raw = await collect(iter_raw_chunks(async_items(frames), get_adapter("bedrock-llama2")))

        assert raw[1].fatal is False
        assert raw[2] == {"generation": "b"}

    @pytest.mark.asyncio
    async def test_exception_frame_is_fatal(self, async_items, collect):
        frames = [
            _frame({"completion": "a"}),
            {"throttlingException": {"message": "Rate exceeded"}},
            _frame({"completion": "b"}),
        ]

        raw = await collect(iter_raw_chunks(async_items(frames), get_adapter("bedrock-anthropic")))

        assert len(raw) == 2
        assert isinstance(raw[1].cause, ProviderStreamError)
        assert str(raw[1].cause) == "Rate exceeded"


# ============================================================
# Abort
# ============================================================

class TestAbort:
    """Test cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_abort_stops_upstream_reads(self, openai_text_chunks):
        """No further chunk is pulled once the signal fires."""
        pulled = []

        async def source():
            for chunk in openai_text_chunks:
                pulled.append(chunk)
                yield chunk

        signal = AbortSignal()
        received = []
        async for raw in iter_raw_chunks(source(), get_adapter("openai"), signal=signal):
            received.append(raw)
            if len(received) == 2:
                signal.abort("client disconnected")

        assert len(received) == 2
        assert len(pulled) == 2

    @pytest.mark.asyncio
    async def test_pre_aborted_signal_reads_nothing(self, openai_text_chunks, async_items, collect):
        signal = AbortSignal()
        signal.abort()
        assert await collect(iter_raw_chunks(async_items(openai_text_chunks), get_adapter("openai"), signal=signal)) == []

    def test_signal_cascades_and_is_idempotent(self):
        parent = AbortSignal()
        child = parent.child()
        calls = []
        child.add_listener(calls.append)

        parent.abort("stop")
        parent.abort("again")

        assert child.aborted is True
        assert child.reason == "stop"
        assert calls == ["stop"]
        with pytest.raises(StreamAbortedError):
            child.raise_if_aborted()

    def test_late_child_is_aborted_immediately(self):
        parent = AbortSignal()
        parent.abort("done")
        assert AbortSignal(parent=parent).aborted is True


# ============================================================
# Normalization
# ============================================================

class TestNormalizeEvents:
    """Test extraction into canonical events."""

    @pytest.mark.asyncio
    async def test_single_trailing_finish(self, openai_text_chunks, async_items, collect):
        """Finish is emitted once, after every delta."""
        usage_chunk = {"choices": [], "usage": {"prompt_tokens": 5, "completion_tokens": 4}}

        events = await collect(normalize_events(
            async_items(openai_text_chunks + [usage_chunk]),
            get_adapter("openai"),
        ))

        assert events[:-1] == [TextDelta("Hello"), TextDelta(","), TextDelta(" world"), TextDelta(".")]
        assert events[-1] == Finish(FinishReason.STOP, Usage(prompt_tokens=5, completion_tokens=4))

    @pytest.mark.asyncio
    async def test_anthropic_messages(self, anthropic_message_events, async_items, collect):
        events = await collect(normalize_events(async_items(anthropic_message_events), get_adapter("anthropic")))

        assert events == [
            TextDelta("Hi"),
            TextDelta(" there"),
            Finish(FinishReason.STOP, Usage(prompt_tokens=12, completion_tokens=5)),
        ]

    @pytest.mark.asyncio
    async def test_finish_without_report(self, async_items, collect):
        """A stream that never reports a reason still finishes."""
        events = await collect(normalize_events(async_items([{"generation": "x"}]), get_adapter("bedrock-llama2")))
        assert events == [TextDelta("x"), Finish(FinishReason.UNKNOWN)]

    @pytest.mark.asyncio
    async def test_fatal_error_suppresses_finish(self, async_items, collect):
        error = ErrorEvent(ProviderStreamError("anthropic", "Overloaded"))
        items = [{"completion": "a"}, error, {"completion": "b"}]

        events = await collect(normalize_events(async_items(items), get_adapter("anthropic")))

        assert events == [TextDelta("a"), error]

    @pytest.mark.asyncio
    async def test_aborted_stream_has_no_finish(self, async_items, collect):
        signal = AbortSignal()
        signal.abort()
        events = await collect(normalize_events(async_items([{"completion": "a"}]), get_adapter("anthropic"), signal=signal))
        assert events == [TextDelta("a")]

    def test_unreadable_chunk_is_isolated(self):
        """Extractor failures become a non-fatal error for that chunk."""
        normalizer = StreamNormalizer(get_adapter("openai"))

        events = normalizer.normalize_chunk({"choices": [{"delta": {"tool_calls": [None]}}]})

        assert len(events) == 1
        assert events[0].fatal is False
        assert normalizer.normalize_chunk({"choices": [{"delta": {"content": "ok"}}]}) == [TextDelta("ok")]
