# chatstream/infra/llm/sources.py
from __future__ import annotations
import logging
from pathlib import Path
from typing import Iterable, Iterator, Optional, Tuple, Union

import requests

from .base import ByteSource

log = logging.getLogger("stream.source")

Chunk = Union[bytes, str]


class IterByteSource(ByteSource):
    """Wraps any iterable of chunks (bytes or str). Used for replays and tests."""

    def __init__(self, chunks: Iterable[Chunk]):
        self._it: Optional[Iterator[Chunk]] = iter(chunks)

    def read(self) -> Tuple[bytes, bool]:
        if self._it is None:
            return b"", True
        chunk = next(self._it, None)
        if chunk is None:
            self._close_iter()
            return b"", True
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        return bytes(chunk), False

    def cancel(self) -> None:
        self._close_iter()

    def close(self) -> None:
        self._close_iter()

    def _close_iter(self):
        it, self._it = self._it, None
        close = getattr(it, "close", None)
        if close is not None:
            close()

    @classmethod
    def from_file(cls, path: Union[str, Path], chunk_size: int = 4096) -> "IterByteSource":
        """Replay a captured response body from disk in fixed-size chunks."""
        path = Path(path)

        def _chunks() -> Iterator[bytes]:
            with path.open("rb") as f:
                while True:
                    block = f.read(chunk_size)
                    if not block:
                        return
                    yield block

        return cls(_chunks())


class ResponseByteSource(ByteSource):
    """A streamed requests.Response; chunks come as the server flushes them."""

    def __init__(self, response: requests.Response):
        self.response = response
        self._it: Optional[Iterator[bytes]] = response.iter_content(chunk_size=None)
        self._closed = False

    def read(self) -> Tuple[bytes, bool]:
        it = self._it
        if self._closed or it is None:
            return b"", True
        # network errors propagate; the session turns them into on_error
        chunk = next(it, None)
        if chunk is None:
            self.close()
            return b"", True
        return chunk, False

    def cancel(self) -> None:
        log.debug("Cancelling response stream %s", getattr(self.response, "url", ""))
        self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._it = None
        self.response.close()
