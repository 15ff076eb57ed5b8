"""Incremental decoding of ``data:``-framed event streams.

The wire format is newline-delimited text. A line that starts with
``data:`` carries a JSON payload; ``data: [DONE]`` ends the stream and
every other line is ignored. Chunk boundaries from the network are
arbitrary, so the decoder keeps the unterminated tail of the last chunk
until the rest of the line arrives.
"""

import codecs
import json
from collections import deque
from typing import (
    Any,
    AsyncIterable,
    AsyncIterator,
    Awaitable,
    Callable,
    Deque,
    Iterable,
    Iterator,
    List,
    Optional,
)

from .errors import DecodeError
from .logging_config import get_logger

logger = get_logger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

_NEED_MORE = object()
_END = object()


def frame_payload(line: str) -> Optional[str]:
    """Return the payload of a ``data:`` line, or None for any other line."""
    if not line.startswith(DATA_PREFIX):
        return None
    return line[len(DATA_PREFIX):].strip()


def parse_payload(payload: str, line: str = "") -> Any:
    """Parse a frame payload as JSON."""
    try:
        return json.loads(payload)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Malformed JSON in stream frame: {e}", line=line or payload) from e


class SSEDecoder:
    """Splits a byte stream into text lines, carrying partial lines between chunks."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._remainder = ""

    @property
    def remainder(self) -> str:
        return self._remainder

    def feed(self, chunk: bytes) -> List[str]:
        """Decode ``chunk`` and return the lines it completes."""
        self._remainder += self._decode(chunk)
        *lines, self._remainder = self._remainder.split("\n")
        return lines

    def flush(self) -> List[str]:
        """Return the unterminated last line at end of stream, if any."""
        tail = self._remainder + self._decode(b"", final=True)
        self.reset()
        return [tail] if tail else []

    def reset(self) -> None:
        self._decoder.reset()
        self._remainder = ""

    def _decode(self, data: bytes, final: bool = False) -> str:
        try:
            return self._decoder.decode(data, final)
        except UnicodeDecodeError as e:
            raise DecodeError(f"Stream is not valid UTF-8: {e}") from e


class _BaseEventStream:
    def __init__(self) -> None:
        self._decoder = SSEDecoder()
        self._lines: Deque[str] = deque()
        self._exhausted = False
        self._closed = False
        self._count = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def _take(self) -> Any:
        """Next event from complete lines; _NEED_MORE if none, _END at [DONE]."""
        while self._lines:
            line = self._lines.popleft()
            payload = frame_payload(line)
            if payload is None:
                continue
            if payload == DONE_SENTINEL:
                return _END
            event = parse_payload(payload, line)
            self._count += 1
            return event
        return _NEED_MORE

    def _receive(self, chunk: Optional[bytes]) -> None:
        """Buffer a chunk, or flush the tail when ``chunk`` is None (source closed)."""
        if chunk is None:
            self._exhausted = True
            self._lines.extend(self._decoder.flush())
        else:
            self._lines.extend(self._decoder.feed(chunk))

    def _discard(self) -> bool:
        """Drop buffered state; False if already closed."""
        if self._closed:
            return False
        self._closed = True
        self._lines.clear()
        self._decoder.reset()
        logger.debug("Event stream closed", events=self._count)
        return True


class EventStream(_BaseEventStream):
    """
    Lazy iterator of decoded events over a byte stream.

    Iteration stops at ``data: [DONE]`` or when the source runs dry. The
    stream cannot be restarted; closing it early releases the source and
    discards any partial line. An error raised while reading or decoding
    closes the stream before it propagates.
    """

    def __init__(
        self,
        chunks: Iterable[bytes],
        close: Optional[Callable[[], None]] = None,
    ):
        super().__init__()
        self._chunks: Iterator[bytes] = iter(chunks)
        self._close = close

    def __iter__(self) -> "EventStream":
        return self

    def __next__(self) -> Any:
        try:
            while not self._closed:
                event = self._take()
                if event is _END:
                    break
                if event is not _NEED_MORE:
                    return event
                if self._exhausted:
                    break
                self._receive(next(self._chunks, None))
        except BaseException:
            self.close()
            raise

        self.close()
        raise StopIteration

    def close(self) -> None:
        if self._discard() and self._close is not None:
            self._close()

    def __enter__(self) -> "EventStream":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


class AsyncEventStream(_BaseEventStream):
    """Async counterpart of ``EventStream``."""

    def __init__(
        self,
        chunks: AsyncIterable[bytes],
        aclose: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        super().__init__()
        self._chunks: AsyncIterator[bytes] = chunks.__aiter__()
        self._aclose = aclose

    def __aiter__(self) -> "AsyncEventStream":
        return self

    async def __anext__(self) -> Any:
        try:
            while not self._closed:
                event = self._take()
                if event is _END:
                    break
                if event is not _NEED_MORE:
                    return event
                if self._exhausted:
                    break
                try:
                    chunk: Optional[bytes] = await self._chunks.__anext__()
                except StopAsyncIteration:
                    chunk = None
                self._receive(chunk)
        except BaseException:
            await self.aclose()
            raise

        await self.aclose()
        raise StopAsyncIteration

    async def aclose(self) -> None:
        if self._discard() and self._aclose is not None:
            await self._aclose()

    async def __aenter__(self) -> "AsyncEventStream":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()
