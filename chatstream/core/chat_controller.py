# chatstream/core/chat_controller.py
from __future__ import annotations
import logging
from typing import Optional

from PyQt6.QtCore import QObject, pyqtSignal, Qt

from chatstream.infra.llm.chat_client import ChatClient
from chatstream.infra.llm.parsers import WireFormat
from chatstream.infra.llm.thread_broker import ThreadBroker
from .transcript import Conversation, TranscriptSink, NO_DATA_ERROR

log = logging.getLogger("ui.chat")


class ChatController(QObject):
    """
    Glue between a view and the streaming layer:
    - Keeps the Conversation and the assistant reply being streamed.
    - Runs one request at a time through ThreadBroker; send() is refused while busy.
    - Talks to the plain chat endpoint, or to an agent when agent_id is set.
    """
    replyChanged = pyqtSignal(str)      # full assistant text so far
    toolActivity = pyqtSignal(str, object)   # ("call" | "result", payload)
    errorRaised  = pyqtSignal(str)
    busyChanged  = pyqtSignal(bool)
    replyDone    = pyqtSignal(str)      # final text (may be "")

    def __init__(self, client: ChatClient, conversation: Optional[Conversation] = None,
                 agent_id: Optional[str] = None, parent: QObject | None = None):
        super().__init__(parent)
        self.client = client
        self.conversation = conversation or Conversation()
        self.agent_id = agent_id
        self.broker = ThreadBroker(self)
        self._active_ticket = -1
        self._sink: Optional[TranscriptSink] = None

        q = Qt.ConnectionType.QueuedConnection
        self.broker.job_started.connect(self._on_started, q)
        self.broker.job_token.connect(self._on_token, q)
        self.broker.job_reset.connect(self._on_reset, q)
        self.broker.job_tool_call.connect(self._on_tool_call, q)
        self.broker.job_tool_result.connect(self._on_tool_result, q)
        self.broker.job_error.connect(self._on_error, q)
        self.broker.job_finished.connect(self._on_finished, q)

    @property
    def busy(self) -> bool:
        return self._active_ticket != -1

    @property
    def wire_format(self) -> WireFormat:
        return WireFormat.PREFIX if self.agent_id else WireFormat.DELTA

    def set_agent(self, agent_id: Optional[str]) -> None:
        """Switch endpoint; only between requests."""
        if self.busy:
            raise RuntimeError("Cannot switch agent while a reply is streaming")
        self.agent_id = agent_id or None

    def send(self, text: str) -> Optional[int]:
        if self.busy:
            log.info("send() ignored: a reply is still streaming")
            return None
        if not text.strip():
            return None
        self.conversation.add_user(text)
        snapshot = list(self.conversation.messages)
        agent_id = self.agent_id

        def opener():
            if agent_id:
                return self.client.open_agent_stream(agent_id, snapshot)
            return self.client.open_chat_stream(snapshot)

        self._sink = None
        self._active_ticket = self.broker.submit(opener, self.wire_format)
        self.busyChanged.emit(True)
        return self._active_ticket

    def stop(self) -> None:
        self.broker.stop_active()

    def clear(self) -> None:
        if self.busy:
            self.stop()
        self.conversation.clear()

    # -------- broker slots --------
    def _mine(self, ticket: int) -> bool:
        return ticket == self._active_ticket

    def _on_started(self, ticket: int):
        if self._mine(ticket):
            self._sink = TranscriptSink(self.conversation)
            self._sink.on_start()

    def _on_token(self, ticket: int, text: str):
        if self._mine(ticket) and self._sink:
            self._sink.on_token(text)
            self.replyChanged.emit(self._sink.text)

    def _on_reset(self, ticket: int):
        if self._mine(ticket) and self._sink:
            self._sink.on_reset_text()
            self.replyChanged.emit("")

    def _on_tool_call(self, ticket: int, payload):
        if self._mine(ticket) and self._sink:
            self._sink.on_tool_call(payload)
            self.toolActivity.emit("call", payload)

    def _on_tool_result(self, ticket: int, payload):
        if self._mine(ticket) and self._sink:
            self._sink.on_tool_result(payload)
            self.toolActivity.emit("result", payload)

    def _on_error(self, ticket: int, message: str):
        if not self._mine(ticket):
            return
        if self._sink:
            self._sink.on_error(message)
        self.errorRaised.emit(message)

    def _on_finished(self, ticket: int, status: str):
        if not self._mine(ticket):
            return
        sink = self._sink
        if sink is not None:
            if status == "ok":
                sink.on_finish()
                if sink.empty and sink.error == NO_DATA_ERROR:
                    self.errorRaised.emit(NO_DATA_ERROR)
            elif status == "error":
                sink.mark_failed()
            elif status == "cancelled":
                sink.mark_cancelled()
        text = sink.text if sink else ""
        self._active_ticket = -1
        self._sink = None
        log.debug("Reply %d done (%s), %d chars", ticket, status, len(text))
        self.busyChanged.emit(False)
        self.replyDone.emit(text)
