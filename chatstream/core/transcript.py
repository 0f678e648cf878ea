# chatstream/core/transcript.py
from __future__ import annotations
import logging
from typing import Any, List, Optional

from chatstream.constants import DEFAULT_SYSTEM_PROMPT
from chatstream.infra.llm.base import ChatMessage, EventSink, ROLES
from chatstream.infra.llm.chat_client import wire_messages

log = logging.getLogger("transcript")

NO_DATA_ERROR = "No data received from the API"


class Conversation:
    """In-memory message list for one chat; seeded with a system prompt."""

    def __init__(self, system_prompt: Optional[str] = DEFAULT_SYSTEM_PROMPT):
        self.system_prompt = system_prompt
        self.messages: List[ChatMessage] = []
        self.clear()

    def clear(self) -> None:
        self.messages = []
        if self.system_prompt:
            self.messages.append(ChatMessage(role="system", content=self.system_prompt))

    def add(self, role: str, content: str) -> ChatMessage:
        if role not in ROLES:
            raise ValueError(f"Unknown role {role!r}")
        msg = ChatMessage(role=role, content=content)
        self.messages.append(msg)
        return msg

    def add_user(self, text: str) -> ChatMessage:
        text = text.strip()
        if not text:
            raise ValueError("Empty user message")
        return self.add("user", text)

    def wire_messages(self):
        return wire_messages(self.messages)

    @property
    def last(self) -> Optional[ChatMessage]:
        return self.messages[-1] if self.messages else None


class TranscriptSink(EventSink):
    """
    Builds the assistant reply of a conversation from stream callbacks.

    A reset clears the text gathered so far. A stream that finishes without
    any token or tool activity is flagged as empty and reported as an error,
    and a terminal error or a cancel drops the assistant message if it is
    still blank.
    """

    def __init__(self, conversation: Conversation):
        self.conversation = conversation
        self.reply: Optional[ChatMessage] = None
        self.tool_calls: List[Any] = []
        self.tool_results: List[Any] = []
        self.errors: List[str] = []
        self.received_any = False
        self.finished = False
        self.failed = False
        self.cancelled = False

    @property
    def text(self) -> str:
        return self.reply.content if self.reply else ""

    @property
    def empty(self) -> bool:
        return self.finished and not self.received_any

    @property
    def error(self) -> Optional[str]:
        return self.errors[-1] if self.errors else None

    def on_start(self) -> None:
        self.reply = self.conversation.add("assistant", "")

    def on_token(self, text: str) -> None:
        self.received_any = True
        if self.reply is not None:
            self.reply.content += text

    def on_reset_text(self) -> None:
        if self.reply is not None:
            self.reply.content = ""

    def on_tool_call(self, payload: Any) -> None:
        self.received_any = True
        self.tool_calls.append(payload)

    def on_tool_result(self, payload: Any) -> None:
        self.received_any = True
        self.tool_results.append(payload)

    def on_error(self, message: str) -> None:
        # error records can arrive mid-stream; the transport decides when it ends
        self.errors.append(message)

    def on_finish(self) -> None:
        self.finished = True
        if not self.received_any and not self.errors:
            log.error("Stream ended without any data")
            self.errors.append(NO_DATA_ERROR)
            self._drop_blank_reply()

    def mark_failed(self) -> None:
        """The stream died or was refused; its on_error already carried the message."""
        self.failed = True
        self._drop_blank_reply()

    def mark_cancelled(self) -> None:
        """The reply was stopped; a partial reply stays, a blank one goes."""
        self.cancelled = True
        self._drop_blank_reply()

    def _drop_blank_reply(self) -> None:
        r = self.reply
        msgs = self.conversation.messages
        if r is not None and not r.content and msgs and msgs[-1] is r:
            msgs.pop()
            self.reply = None
