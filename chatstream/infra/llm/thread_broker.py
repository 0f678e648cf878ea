# chatstream/infra/llm/thread_broker.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Callable, Deque, Optional
from collections import deque
from itertools import count

from PyQt6.QtCore import QObject, QThread, pyqtSignal, Qt

from .base import ByteSource, EventSink
from .decoder import DecoderSession, FINISHED, CANCELLED
from .parsers import WireFormat

log = logging.getLogger("broker")


# ---------- Public types ----------
SourceOpener = Callable[[], ByteSource]   # may raise (e.g. ChatAPIError)

@dataclass(slots=True)
class Job:
    ticket:      int
    open_source: SourceOpener
    wire_format: WireFormat


# ---------- Sink → signals ----------
class _SignalSink(EventSink):
    def __init__(self, worker: "_Worker", ticket: int):
        self._w = worker
        self._t = ticket

    def on_start(self):                 self._w.started.emit(self._t)
    def on_token(self, text: str):      self._w.token.emit(self._t, text)
    def on_reset_text(self):            self._w.reset.emit(self._t)
    def on_tool_call(self, payload):    self._w.tool_call.emit(self._t, payload)
    def on_tool_result(self, payload):  self._w.tool_result.emit(self._t, payload)
    def on_error(self, message: str):   self._w.error.emit(self._t, message)
    def on_finish(self):                pass   # reported via finished(ticket, "ok")


# ---------- Worker ----------
class _Worker(QObject):
    started     = pyqtSignal(int)
    token       = pyqtSignal(int, str)
    reset       = pyqtSignal(int)
    tool_call   = pyqtSignal(int, object)
    tool_result = pyqtSignal(int, object)
    error       = pyqtSignal(int, str)
    finished    = pyqtSignal(int, str)   # status: "ok" | "cancelled" | "error"

    def __init__(self, job: Job):
        super().__init__()
        self._job = job
        self.session = DecoderSession(name=f"ticket-{job.ticket}")

    def stop(self):
        # callable from the UI thread; the session stops pulling and goes quiet
        self.session.cancel()

    def run(self):
        ticket = self._job.ticket
        status = "error"
        sink = _SignalSink(self, ticket)
        try:
            if self.session.cancelled:
                status = "cancelled"
                return
            source = self._job.open_source()
            try:
                outcome = self.session.run(source, self._job.wire_format, sink)
            finally:
                source.close()
            if outcome == FINISHED:
                status = "ok"
            elif outcome == CANCELLED:
                status = "cancelled"
        except Exception as exc:
            log.warning("Job %d failed: %s", ticket, exc)
            if not self.session.cancelled:
                self.error.emit(ticket, str(exc) or type(exc).__name__)
            else:
                status = "cancelled"
        finally:
            self.finished.emit(ticket, status)


# ---------- Broker ----------
class ThreadBroker(QObject):
    """
    Single-concurrency ticket queue for streamed replies.
    Each job opens a byte source and decodes it on a worker thread; decoded
    events come back as signals on the broker's thread, in order.
    """
    job_started     = pyqtSignal(int)           # ticket (stream opened, on_start)
    job_token       = pyqtSignal(int, str)      # (ticket, text)
    job_reset       = pyqtSignal(int)           # ticket
    job_tool_call   = pyqtSignal(int, object)   # (ticket, payload)
    job_tool_result = pyqtSignal(int, object)   # (ticket, payload)
    job_error       = pyqtSignal(int, str)      # (ticket, message)
    job_finished    = pyqtSignal(int, str)      # (ticket, status)
    queue_changed   = pyqtSignal(int, int)      # (active_ticket or -1, queued_count)

    def __init__(self, parent: QObject | None = None):
        super().__init__(parent)
        self._tickets = count(1)
        self._queue: Deque[Job] = deque()
        self._thread: Optional[QThread] = None
        self._worker: Optional[_Worker] = None
        self._active_ticket: int = -1

    # -------- API --------
    def submit(self, open_source: SourceOpener, wire_format: WireFormat | str, *, preempt: bool = False) -> int:
        """Queue a stream. preempt=True cancels the active one and drops the queue first."""
        if preempt:
            self.clear_queue(include_active=True)
        ticket = next(self._tickets)
        self._queue.append(Job(ticket, open_source, WireFormat.parse(wire_format)))
        self.queue_changed.emit(self._active_ticket, len(self._queue))
        if self._active_ticket == -1:
            self._start_next()
        return ticket

    def stop_active(self):
        if self._worker:
            self._worker.stop()

    def cancel_ticket(self, ticket: int):
        if ticket == self._active_ticket:
            self.stop_active()
            return
        self._queue = deque(j for j in self._queue if j.ticket != ticket)
        self.queue_changed.emit(self._active_ticket, len(self._queue))

    def clear_queue(self, include_active: bool = False):
        self._queue.clear()
        if include_active:
            self.stop_active()
        self.queue_changed.emit(self._active_ticket, 0)

    def active_ticket(self) -> int:
        return self._active_ticket

    def is_busy(self) -> bool:
        return self._active_ticket != -1 or bool(self._queue)

    # -------- internals --------
    def _start_next(self):
        if self._thread or self._worker or not self._queue:
            return

        job = self._queue.popleft()
        self._active_ticket = job.ticket
        self.queue_changed.emit(self._active_ticket, len(self._queue))

        self._thread = QThread()
        self._worker = _Worker(job)
        self._worker.moveToThread(self._thread)

        q = Qt.ConnectionType.QueuedConnection
        self._worker.started.connect(self.job_started, q)
        self._worker.token.connect(self.job_token, q)
        self._worker.reset.connect(self.job_reset, q)
        self._worker.tool_call.connect(self.job_tool_call, q)
        self._worker.tool_result.connect(self.job_tool_result, q)
        self._worker.error.connect(self.job_error, q)
        self._worker.finished.connect(self._on_worker_finished, q)

        self._thread.started.connect(self._worker.run)
        self._thread.start()
        log.debug("Started job %d (%s)", job.ticket, job.wire_format.value)

    def _cleanup(self):
        if self._thread:
            self._thread.quit()
            self._thread.wait()
            self._thread.deleteLater()
            self._thread = None
        if self._worker:
            self._worker.deleteLater()
            self._worker = None
        self._active_ticket = -1

    def _on_worker_finished(self, ticket: int, status: str):
        self.job_finished.emit(ticket, status)
        self._cleanup()
        self._start_next()
