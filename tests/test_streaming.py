"""
Unit tests for the event stream decoder.
"""

import httpx
import pytest

from mistral_client.errors import DecodeError
from mistral_client.streaming import (
    AsyncEventStream,
    EventStream,
    SSEDecoder,
    frame_payload,
)

STREAM = b'data: {"a":1}\n\ndata: {"a":2}\n\ndata: [DONE]\n'


class Source:
    """Byte chunk source that records how far it was read and whether it was closed."""

    def __init__(self, *chunks: bytes):
        self.chunks = list(chunks)
        self.read = 0
        self.closed = 0

    def __iter__(self):
        for chunk in self.chunks:
            self.read += 1
            yield chunk

    def close(self):
        self.closed += 1


def decode(*chunks: bytes) -> list:
    return list(EventStream(iter(chunks)))


# SSEDecoder


def test_decoder_carries_partial_line():
    decoder = SSEDecoder()
    assert decoder.feed(b'data: {"a"') == []
    assert decoder.remainder == 'data: {"a"'
    assert decoder.feed(b':1}\nda') == ['data: {"a":1}']
    assert decoder.remainder == "da"
    assert decoder.flush() == ["da"]
    assert decoder.remainder == ""


def test_decoder_handles_split_multibyte_character():
    encoded = "data: café\n".encode("utf-8")
    split = encoded.index(b"\xa9")  # second byte of "é"
    decoder = SSEDecoder()
    assert decoder.feed(encoded[:split]) == []
    assert decoder.feed(encoded[split:]) == ["data: café"]


def test_decoder_rejects_invalid_utf8():
    with pytest.raises(DecodeError):
        SSEDecoder().feed(b"data: \xff\xfe\n")


@pytest.mark.parametrize(
    "line, expected",
    [
        ('data: {"a": 1}', '{"a": 1}'),
        ('data:{"a": 1}', '{"a": 1}'),
        ("data:   [DONE]  ", "[DONE]"),
        ("data: x\r", "x"),
        ("event: message", None),
        (": keep-alive", None),
        ("", None),
        (' data: {"a": 1}', None),
    ],
)
def test_frame_payload(line, expected):
    assert frame_payload(line) == expected


# EventStream


def test_decodes_events_until_done():
    assert decode(STREAM) == [{"a": 1}, {"a": 2}]


def test_every_two_chunk_split_decodes_identically():
    expected = decode(STREAM)
    for split in range(len(STREAM) + 1):
        assert decode(STREAM[:split], STREAM[split:]) == expected, split


def test_multibyte_payload_survives_any_split():
    data = 'data: {"text": "crème brûlée 🧀"}\n\ndata: [DONE]\n'.encode("utf-8")
    for split in range(len(data) + 1):
        assert decode(data[:split], data[split:]) == [{"text": "crème brûlée 🧀"}]


def test_byte_at_a_time_delivery():
    chunks = [STREAM[i:i + 1] for i in range(len(STREAM))]
    assert decode(*chunks) == [{"a": 1}, {"a": 2}]


def test_decoding_twice_is_identical():
    assert decode(STREAM) == decode(STREAM)


def test_non_data_lines_are_ignored():
    data = (
        b": keep-alive\n"
        b"event: completion\n"
        b"id: 7\n"
        b'data: {"a":1}\n'
        b"\n"
        b"retry: 1000\n"
        b"data: [DONE]\n"
    )
    assert decode(data) == [{"a": 1}]


def test_crlf_framing():
    assert decode(b'data: {"a":1}\r\n\r\ndata: [DONE]\r\n') == [{"a": 1}]


def test_stream_closure_without_sentinel_flushes_last_line():
    assert decode(b'data: {"a":1}\ndata: {"a":2}') == [{"a": 1}, {"a": 2}]


def test_empty_stream():
    assert decode() == []
    assert decode(b"") == []


def test_done_stops_reading_and_closes_source():
    source = Source(b"data: [DONE]\n", b'data: {"late":true}\n')
    stream = EventStream(source, close=source.close)

    assert list(stream) == []
    assert source.read == 1
    assert source.closed == 1
    assert stream.closed


def test_events_are_lazy():
    source = Source(b'data: {"a":1}\n', b'data: {"a":2}\n')
    stream = EventStream(source, close=source.close)

    assert next(stream) == {"a": 1}
    assert source.read == 1
    assert next(stream) == {"a": 2}
    assert source.read == 2


def test_malformed_payload_fails_the_stream():
    source = Source(b'data: {"a":1}\ndata: {not json}\ndata: {"a":3}\n')
    stream = EventStream(source, close=source.close)

    assert next(stream) == {"a": 1}
    with pytest.raises(DecodeError) as exc_info:
        next(stream)

    assert exc_info.value.line == "data: {not json}"
    assert source.closed == 1
    with pytest.raises(StopIteration):
        next(stream)


def test_read_error_closes_stream_and_drops_partial_line():
    source = Source()

    def chunks():
        yield b'data: {"a":1}\ndata: 12'
        raise httpx.ReadError("connection reset")

    stream = EventStream(chunks(), close=source.close)

    assert next(stream) == {"a": 1}
    with pytest.raises(httpx.ReadError):
        next(stream)

    assert stream.closed
    assert source.closed == 1
    assert list(stream) == []


def test_close_discards_partial_line_and_stops():
    source = Source(b'data: {"a":1}\ndata: {"a"', b':2}\n')
    stream = EventStream(source, close=source.close)

    assert next(stream) == {"a": 1}
    stream.close()
    stream.close()

    assert source.closed == 1
    assert list(stream) == []


def test_context_manager_closes_source():
    source = Source(STREAM)
    with EventStream(source, close=source.close) as stream:
        assert next(stream) == {"a": 1}
    assert source.closed == 1


def test_exhausted_stream_is_not_restartable():
    stream = EventStream(iter([STREAM]))
    assert list(stream) == [{"a": 1}, {"a": 2}]
    assert list(stream) == []


def test_non_object_json_values_are_events():
    assert decode(b"data: 42\ndata: null\ndata: [1, 2]\n") == [42, None, [1, 2]]


# AsyncEventStream


async def agen(*chunks: bytes):
    for chunk in chunks:
        yield chunk


async def adecode(*chunks: bytes) -> list:
    return [event async for event in AsyncEventStream(agen(*chunks))]


@pytest.mark.asyncio
async def test_async_decodes_split_stream():
    split = STREAM.index(b":1}")
    assert await adecode(STREAM[:split], STREAM[split:]) == [{"a": 1}, {"a": 2}]


@pytest.mark.asyncio
async def test_async_done_closes_source():
    closed = []

    async def aclose():
        closed.append(True)

    stream = AsyncEventStream(agen(b'data: {"a":1}\ndata: [DONE]\n', b'data: {"b":2}\n'), aclose=aclose)
    events = [event async for event in stream]

    assert events == [{"a": 1}]
    assert closed == [True]


@pytest.mark.asyncio
async def test_async_malformed_payload_raises():
    with pytest.raises(DecodeError):
        await adecode(b"data: {oops\n")


@pytest.mark.asyncio
async def test_async_close_stops_iteration():
    async with AsyncEventStream(agen(STREAM)) as stream:
        assert await stream.__anext__() == {"a": 1}
        await stream.aclose()
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()


@pytest.mark.asyncio
async def test_async_read_error_closes_stream_and_drops_partial_line():
    closed = []

    async def aclose():
        closed.append(True)

    async def chunks():
        yield b'data: {"a":1}\ndata: 12'
        raise httpx.ReadError("connection reset")

    stream = AsyncEventStream(chunks(), aclose=aclose)

    assert await stream.__anext__() == {"a": 1}
    with pytest.raises(httpx.ReadError):
        await stream.__anext__()

    assert stream.closed
    assert closed == [True]
    assert [event async for event in stream] == []
