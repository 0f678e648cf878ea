# chatstream/infra/llm/line_assembler.py
from __future__ import annotations
import codecs
from typing import List, Optional, Union


class LineAssembler:
    """
    Turns arbitrarily split byte chunks into complete newline-delimited lines.

    Decoding is incremental: a chunk boundary inside a multi-byte character
    leaves the undecoded tail inside the codec until the next feed().
    Undecodable bytes become U+FFFD instead of raising.
    """

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""

    @property
    def pending(self) -> str:
        return self._pending

    def feed(self, chunk: Union[bytes, bytearray, str]) -> List[str]:
        if isinstance(chunk, str):
            chunk = chunk.encode(self.encoding)
        if not chunk:
            return []
        self._pending += self._decoder.decode(bytes(chunk))
        if "\n" not in self._pending:
            return []
        *lines, self._pending = self._pending.split("\n")
        return [_strip_cr(line) for line in lines]

    def flush(self) -> Optional[str]:
        """Finish the stream; return the trailing partial line, if it has content."""
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._decoder.reset()
        self._pending = ""
        if not tail.strip():
            return None
        return _strip_cr(tail)


def _strip_cr(line: str) -> str:
    # CRLF terminators: the \r belongs to the delimiter, not the record
    return line[:-1] if line.endswith("\r") else line
