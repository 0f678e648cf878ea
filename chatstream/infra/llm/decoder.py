# chatstream/infra/llm/decoder.py
from __future__ import annotations
import logging
import threading
from typing import Optional, Union

from .base import ByteSource, EventSink, deliver
from .line_assembler import LineAssembler
from .parsers import LineParser, SessionState, WireFormat, make_parser

log = logging.getLogger("stream")

# DecoderSession.outcome values
FINISHED  = "finished"
FAILED    = "error"
CANCELLED = "cancelled"


class DecoderSession:
    """
    Decodes one request's response stream into sink callbacks.

    A session runs once. It calls sink.on_start() first, then one callback per
    decoded event, and ends with exactly one of on_finish() (source exhausted)
    or on_error() (source failed). After cancel() nothing more is pulled from
    the source and no further callbacks are made, terminal ones included.

    cancel() may be called from another thread; the outcome is set once and
    a cancelled session never reports finished or error afterwards.
    """

    def __init__(self, name: str = ""):
        self.name = name or f"session-{id(self):x}"
        self.state = SessionState()
        self.outcome: Optional[str] = None
        self.wire_format: Optional[WireFormat] = None
        self._assembler = LineAssembler()
        self._parser: Optional[LineParser] = None
        self._source: Optional[ByteSource] = None
        self._lock = threading.Lock()
        self._cancelled = False
        self._used = False

    @property
    def active(self) -> bool:
        return self.state.active

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def run(self, source: ByteSource, wire_format: Union[str, WireFormat], sink: EventSink) -> Optional[str]:
        """Drive source through the decoder; returns the outcome."""
        if self._used:
            log.warning("[%s] run() called on a used session; ignoring", self.name)
            return self.outcome
        self._used = True
        self.wire_format = WireFormat.parse(wire_format)
        self._parser = make_parser(self.wire_format)
        self._source = source

        # go active first, then look for a cancel that landed in the meantime
        self.state.active = True
        self.state.first_token_pending = False
        if self._cancelled:
            self.state.active = False
            return self.outcome

        log.debug("[%s] start (%s)", self.name, self.wire_format.value)
        try:
            sink.on_start()
            self._pump(source, sink)
        finally:
            self.state.active = False
        return self.outcome

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            self.state.active = False
            if self.outcome is None:
                self.outcome = CANCELLED
        src = self._source
        if src is not None:
            try:
                src.cancel()
            except Exception as e:
                log.warning("[%s] source cancel failed: %s", self.name, e)
        log.info("[%s] cancelled", self.name)

    # -------- internals --------
    def _settle(self, outcome: str) -> bool:
        """Claim the terminal outcome; False when cancel() or another end got there first."""
        with self._lock:
            if self._cancelled or self.outcome is not None:
                return False
            self.state.active = False
            self.outcome = outcome
            return True

    def _pump(self, source: ByteSource, sink: EventSink) -> None:
        chunks = 0
        while self.state.active:
            try:
                chunk, done = source.read()
            except Exception as exc:
                # reads fail once the source is cancelled underneath us
                if not self._settle(FAILED):
                    return
                log.error("[%s] stream read failed: %s", self.name, exc)
                sink.on_error(str(exc) or type(exc).__name__)
                return
            if not self.state.active:
                return
            if chunk:
                chunks += 1
                for line in self._assembler.feed(chunk):
                    self._dispatch(line, sink)
                    if not self.state.active:
                        return
            if done:
                break
        if not self.state.active:
            return

        tail = self._assembler.flush()
        if tail is not None:
            log.debug("[%s] trailing partial line: %r", self.name, tail)
            self._dispatch(tail, sink)
            if not self.state.active:
                return
        if not self._settle(FINISHED):
            return
        log.debug("[%s] finished after %d chunks", self.name, chunks)
        sink.on_finish()

    def _dispatch(self, line: str, sink: EventSink) -> None:
        for ev in self._parser.parse_line(line, self.state):
            if not self.state.active:
                return
            deliver(sink, ev)


def decode_stream(source: ByteSource, wire_format: Union[str, WireFormat], sink: EventSink) -> DecoderSession:
    """Run a fresh session over source and return it (for .outcome)."""
    session = DecoderSession()
    session.run(source, wire_format, sink)
    return session
