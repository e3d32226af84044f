"""
unistream - Streaming Response

Starlette response wrapping an encoded wire stream. The body is pulled
by the ASGI server, so nothing upstream runs ahead of the client.

Usage:
    @app.post("/api/chat")
    async def chat(request: ChatRequest):
        upstream = await client.send(build_request(request), stream=True)
        return stream_response(upstream, "openai")
"""

from typing import AsyncIterable, AsyncIterator, Dict, Optional

from starlette.responses import StreamingResponse

from ..config import WireProtocol
from .iterators import aclose_iterator
from .stream_data import StreamData

STREAM_DATA_HEADER = "X-Experimental-Stream-Data"


async def merge_stream_data(lines: AsyncIterable[str], data: StreamData) -> AsyncIterator[str]:
    """
    Interleave side-channel parts with the primary lines.

    Pending data is written before each primary line and once more when
    the primary stream ends; the channel is closed afterwards, however
    the primary stream ended.
    """
    iterator = lines.__aiter__()
    try:
        async for line in iterator:
            pending = data.format_pending()
            if pending is not None:
                yield pending
            yield line

        pending = data.format_pending()
        if pending is not None:
            yield pending
    finally:
        await aclose_iterator(iterator)
        data.close()


async def _encode_utf8(lines: AsyncIterable[str]) -> AsyncIterator[bytes]:
    iterator = lines.__aiter__()
    try:
        async for line in iterator:
            yield line.encode("utf-8")
    finally:
        await aclose_iterator(iterator)


class StreamingTextResponse(StreamingResponse):
    """
    HTTP 200 streaming body for the wire protocol.

    Content-Type is ``text/plain; charset=utf-8``; the
    ``X-Experimental-Stream-Data`` header tells clients whether the body
    uses code-prefixed lines (``true``) or raw text (``false``).
    """

    def __init__(
        self,
        lines: AsyncIterable[str],
        data: Optional[StreamData] = None,
        protocol: WireProtocol = WireProtocol.DATA,
        status_code: int = 200,
        headers: Optional[Dict[str, str]] = None,
    ):
        if data is not None and protocol != WireProtocol.DATA:
            raise ValueError("Stream data requires the data protocol")

        body = merge_stream_data(lines, data) if data is not None else lines

        merged_headers = {
            STREAM_DATA_HEADER: "true" if protocol == WireProtocol.DATA else "false",
        }
        merged_headers.update(headers or {})

        super().__init__(
            _encode_utf8(body),
            status_code=status_code,
            headers=merged_headers,
            media_type="text/plain",
        )
        self.data = data
        self.protocol = protocol
