"""Split one async byte stream into a caller-facing copy and a logging copy."""

import asyncio
from collections.abc import AsyncIterable, AsyncIterator


class UpstreamStreamError(Exception):
    """Raised on the logging copy when the source stream failed."""


class _StreamEnd:
    def __init__(self, error: BaseException | None = None):
        self.error = error


class _PrimaryStream:
    """Caller-facing copy. Signals end-of-stream exactly once, even if never iterated."""

    def __init__(self, source: AsyncIterable[bytes], queue: asyncio.Queue):
        self._iterator = source.__aiter__()
        self._queue = queue
        self._ended = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        if self._ended:
            raise StopAsyncIteration
        try:
            chunk = await self._iterator.__anext__()
        except StopAsyncIteration:
            self._end()
            raise
        except Exception as e:
            self._end(e)
            raise
        except BaseException:
            # Cancelled by the caller
            self._end()
            raise
        self._queue.put_nowait(chunk)
        return chunk

    async def aclose(self) -> None:
        self._end()
        aclose = getattr(self._iterator, "aclose", None)
        if aclose is not None:
            await aclose()

    def __del__(self):
        try:
            self._end()
        except RuntimeError:
            # Event loop already closed, nobody is reading the logging copy
            pass

    def _end(self, error: BaseException | None = None) -> None:
        if not self._ended:
            self._ended = True
            self._queue.put_nowait(_StreamEnd(error))


def tee(source: AsyncIterable[bytes]) -> tuple[AsyncIterator[bytes], AsyncIterator[bytes]]:
    """Fork source into (primary, secondary) async iterators.

    The primary copy pulls from source and yields every chunk unchanged. Each
    chunk is also pushed onto an unbounded queue read by the secondary copy,
    so a slow secondary reader never holds back the primary one.

    The secondary copy ends when the primary one ends, is closed, or is
    garbage collected, whether or not it was ever iterated. If the source
    raises, the primary copy re-raises the original exception and the
    secondary copy raises UpstreamStreamError chained to it.
    """
    queue: asyncio.Queue = asyncio.Queue()

    async def secondary() -> AsyncIterator[bytes]:
        while True:
            item = await queue.get()
            if isinstance(item, _StreamEnd):
                if item.error is not None:
                    raise UpstreamStreamError(str(item.error)) from item.error
                return
            yield item

    return _PrimaryStream(source, queue), secondary()
