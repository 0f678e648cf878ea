# chatstream/infra/llm/chat_client.py
from __future__ import annotations
import logging
from typing import Dict, List, Optional, Sequence
from urllib.parse import quote

import requests

from chatstream.constants import DEFAULT_CHAT_URL, DEFAULT_AGENTS_URL, DEFAULT_TIMEOUT
from .base import ChatMessage, EventSink
from .decoder import DecoderSession
from .parsers import WireFormat
from .sources import ResponseByteSource

log = logging.getLogger("http")


class ChatAPIError(RuntimeError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


def wire_messages(messages: Sequence[ChatMessage]) -> List[Dict[str, str]]:
    """Request-body messages; a system message is only kept in first position."""
    wire = []
    for i, m in enumerate(messages):
        role = getattr(m, "role", "user")
        if role == "system" and i != 0:
            continue
        wire.append({"role": role, "content": getattr(m, "content", "") or ""})
    return wire


class ChatClient:
    """
    Opens streaming chat requests. Two endpoints, two wire formats:
    the plain chat endpoint streams "data: {...}" chunks (WireFormat.DELTA),
    agent endpoints stream "<code>:<payload>" records (WireFormat.PREFIX).
    """

    def __init__(self, chat_url: str = DEFAULT_CHAT_URL, agents_url: str = DEFAULT_AGENTS_URL,
                 timeout: int = DEFAULT_TIMEOUT, http: Optional[requests.Session] = None):
        self.chat_url = chat_url
        self.agents_url = agents_url.rstrip("/")
        self.timeout = timeout
        self.http = http or requests.Session()

    @classmethod
    def from_settings(cls, cfg: dict) -> "ChatClient":
        ep = cfg.get("endpoints", {})
        return cls(
            chat_url=ep.get("chat_url", DEFAULT_CHAT_URL),
            agents_url=ep.get("agents_url", DEFAULT_AGENTS_URL),
            timeout=int(cfg.get("stream", {}).get("timeout", DEFAULT_TIMEOUT)),
        )

    def agent_url(self, agent_id: str) -> str:
        return f"{self.agents_url}/{quote(agent_id, safe='')}/stream"

    # -------- opening streams --------
    def open_chat_stream(self, messages: Sequence[ChatMessage]) -> ResponseByteSource:
        return self._open(self.chat_url, messages)

    def open_agent_stream(self, agent_id: str, messages: Sequence[ChatMessage]) -> ResponseByteSource:
        return self._open(self.agent_url(agent_id), messages)

    def _open(self, url: str, messages: Sequence[ChatMessage]) -> ResponseByteSource:
        payload = {"messages": wire_messages(messages)}
        log.info("POST %s (%d messages)", url, len(payload["messages"]))
        try:
            r = self.http.post(url, json=payload, stream=True, timeout=self.timeout)
        except requests.RequestException as e:
            raise ChatAPIError(f"Request failed: {e}") from e
        if not r.ok:
            status = r.status_code
            r.close()
            log.error("API error: %s %s", status, getattr(r, "reason", ""))
            raise ChatAPIError(f"API error: {status}", status=status)
        return ResponseByteSource(r)

    # -------- open + decode --------
    def stream_chat(self, messages: Sequence[ChatMessage], sink: EventSink,
                    session: Optional[DecoderSession] = None) -> Optional[DecoderSession]:
        return self._stream(lambda: self.open_chat_stream(messages), WireFormat.DELTA, sink, session)

    def stream_agent(self, agent_id: str, messages: Sequence[ChatMessage], sink: EventSink,
                     session: Optional[DecoderSession] = None) -> Optional[DecoderSession]:
        return self._stream(lambda: self.open_agent_stream(agent_id, messages), WireFormat.PREFIX, sink, session)

    def _stream(self, opener, wire_format: WireFormat, sink: EventSink,
                session: Optional[DecoderSession]) -> Optional[DecoderSession]:
        try:
            source = opener()
        except ChatAPIError as e:
            # no session was started, so there is no on_start to pair with
            sink.on_error(str(e))
            return None
        session = session or DecoderSession()
        try:
            session.run(source, wire_format, sink)
        finally:
            source.close()
        return session
