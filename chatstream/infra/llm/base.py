# chatstream/infra/llm/base.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Optional, Tuple

ROLES = ("system", "user", "assistant")

# StreamEvent.type values
START       = "start"
TOKEN       = "token"
RESET       = "reset"
TOOL_CALL   = "tool_call"
TOOL_RESULT = "tool_result"
FINISH      = "finish"
ERROR       = "error"


@dataclass
class ChatMessage:
    role: str   # "system" | "user" | "assistant"
    content: str
    metadata: dict | None = None


@dataclass
class StreamEvent:
    type: str               # one of the constants above
    text: str = ""
    payload: Any = None     # decoded JSON for tool_call / tool_result
    error: Optional[str] = None


class EventSink:
    """
    Receives decoded stream events, in arrival order.
    One on_start per session, then any number of the middle callbacks,
    then at most one terminal on_finish / on_error. Override what you need.
    """
    def on_start(self) -> None:
        pass

    def on_token(self, text: str) -> None:
        pass

    def on_reset_text(self) -> None:
        pass

    def on_tool_call(self, payload: Any) -> None:
        pass

    def on_tool_result(self, payload: Any) -> None:
        pass

    def on_finish(self) -> None:
        pass

    def on_error(self, message: str) -> None:
        pass


class ByteSource:
    """Abstract byte-stream source."""
    def read(self) -> Tuple[bytes, bool]:
        """Return (chunk, done). chunk may be empty; done=True means exhausted."""
        raise NotImplementedError

    def cancel(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        """Release transport resources once decoding is over."""


def deliver(sink: EventSink, ev: StreamEvent) -> None:
    """Invoke the sink callback matching ev.type."""
    if ev.type == TOKEN:
        sink.on_token(ev.text)
    elif ev.type == RESET:
        sink.on_reset_text()
    elif ev.type == TOOL_CALL:
        sink.on_tool_call(ev.payload)
    elif ev.type == TOOL_RESULT:
        sink.on_tool_result(ev.payload)
    elif ev.type == ERROR:
        sink.on_error(ev.error or "")
    elif ev.type == START:
        sink.on_start()
    elif ev.type == FINISH:
        sink.on_finish()
    else:
        raise ValueError(f"Unknown stream event type {ev.type!r}")
