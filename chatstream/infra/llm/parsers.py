# chatstream/infra/llm/parsers.py
from __future__ import annotations
import json, logging, re
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Union

from .base import StreamEvent, TOKEN, RESET, TOOL_CALL, TOOL_RESULT, ERROR

log = logging.getLogger("stream.parse")

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
PREFIX_LINE_RE = re.compile(r"^([a-zA-Z0-9]):(.*)$", re.DOTALL)


class WireFormat(str, Enum):
    DELTA  = "delta"    # format A: "data: {json}" ... "data: [DONE]"
    PREFIX = "prefix"   # format B: "<code>:<payload>"

    @classmethod
    def parse(cls, value: Union[str, "WireFormat"]) -> "WireFormat":
        if isinstance(value, WireFormat):
            return value
        v = str(value).strip().lower()
        aliases = {"a": cls.DELTA, "b": cls.PREFIX, "sse": cls.DELTA, "agent": cls.PREFIX}
        if v in aliases:
            return aliases[v]
        try:
            return cls(v)
        except ValueError:
            raise ValueError(f"Unknown wire format {value!r} (expected 'delta' or 'prefix')") from None


@dataclass
class SessionState:
    first_token_pending: bool = False
    active: bool = False


def _error_message(err: Any) -> str:
    if isinstance(err, dict):
        msg = err.get("message")
        if msg:
            return str(msg)
    return str(err)


class LineParser:
    """One complete record in, zero or more events out. Never raises on bad input."""
    def parse_line(self, line: str, state: SessionState) -> List[StreamEvent]:
        raise NotImplementedError


class DeltaParser(LineParser):
    """Single-channel chat-completion chunks: data: {"choices":[{"delta":{"content":...}}]}"""

    def parse_line(self, line: str, state: SessionState) -> List[StreamEvent]:
        if not line.strip():
            return []
        if not line.startswith(DATA_PREFIX):
            log.debug("Skipping non-data line: %r", line)
            return []
        data = line[len(DATA_PREFIX):].strip()
        if data == DONE_SENTINEL:
            return []
        try:
            obj = json.loads(data)
        except ValueError as e:
            log.warning("Bad JSON in data line (%s): %r", e, data)
            return []
        if not isinstance(obj, dict):
            log.debug("Ignoring non-object payload: %r", data)
            return []

        if obj.get("error"):
            return [StreamEvent(type=ERROR, error=_error_message(obj["error"]))]
        if obj.get("test"):
            log.debug("Heartbeat payload")
            return []

        choice = _first_choice(obj)
        if choice is None:
            return []
        delta = choice.get("delta")
        if isinstance(delta, dict) and isinstance(delta.get("content"), str) and delta["content"]:
            return [StreamEvent(type=TOKEN, text=delta["content"])]
        # Non-streaming body: the whole message replaces whatever came before
        message = choice.get("message")
        if isinstance(message, dict) and isinstance(message.get("content"), str) and message["content"]:
            return [StreamEvent(type=RESET), StreamEvent(type=TOKEN, text=message["content"])]
        return []


def _first_choice(obj: dict) -> Optional[dict]:
    choices = obj.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return None


class PrefixParser(LineParser):
    """
    Multiplexed agent stream, one code per channel:
      f  message start (next text token resets the message)
      0  text token
      9  tool call (JSON)
      a  tool result (JSON)
      e  step finished / d  message finished (logged only)
    """

    def parse_line(self, line: str, state: SessionState) -> List[StreamEvent]:
        if not line.strip():
            return []
        m = PREFIX_LINE_RE.match(line)
        if not m:
            log.warning("Unexpected line format: %r", line)
            return []
        code, content = m.group(1), m.group(2)

        if code == "0":
            return self._token(content, state)
        if code == "f":
            log.debug("Message start: %s", content)
            state.first_token_pending = True
            return []
        if code == "9":
            payload = _load_json(content, "tool call")
            if payload is _INVALID:
                return []
            log.debug("Tool call: %r", payload)
            return [StreamEvent(type=TOOL_CALL, payload=payload)]
        if code == "a":
            payload = _load_json(content, "tool result")
            if payload is _INVALID:
                return []
            log.debug("Tool result: %r", payload)
            events = [StreamEvent(type=TOOL_RESULT, payload=payload)]
            if isinstance(payload, dict) and payload.get("error"):
                events.append(StreamEvent(type=ERROR, error=_error_message(payload["error"])))
            return events
        if code in ("e", "d"):
            log.debug("Completion event %s: %s", code, content)
            return []
        log.info("Unknown prefix %s: %r", code, content)
        return []

    def _token(self, content: str, state: SessionState) -> List[StreamEvent]:
        try:
            token = json.loads(content)
        except ValueError:
            token = content
        if not isinstance(token, str):
            token = content
        events: List[StreamEvent] = []
        if state.first_token_pending:
            state.first_token_pending = False
            events.append(StreamEvent(type=RESET))
        events.append(StreamEvent(type=TOKEN, text=token))
        return events


_INVALID = object()

def _load_json(content: str, what: str) -> Any:
    try:
        return json.loads(content)
    except ValueError as e:
        log.error("Failed to parse %s (%s): %r", what, e, content)
        return _INVALID


def make_parser(wire_format: Union[str, WireFormat]) -> LineParser:
    fmt = WireFormat.parse(wire_format)
    if fmt is WireFormat.DELTA:
        return DeltaParser()
    return PrefixParser()
