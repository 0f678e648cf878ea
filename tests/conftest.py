"""Shared fixtures: a sink that records every callback, and byte sources for sessions."""

import threading
import time

import pytest

from chatstream.infra.llm.base import ByteSource, EventSink


class RecordingSink(EventSink):
    """Collects callbacks as tuples, in call order."""

    def __init__(self):
        self.calls = []

    def on_start(self):
        self.calls.append(("start",))

    def on_token(self, text):
        self.calls.append(("token", text))

    def on_reset_text(self):
        self.calls.append(("reset",))

    def on_tool_call(self, payload):
        self.calls.append(("tool_call", payload))

    def on_tool_result(self, payload):
        self.calls.append(("tool_result", payload))

    def on_finish(self):
        self.calls.append(("finish",))

    def on_error(self, message):
        self.calls.append(("error", message))

    def names(self):
        return [c[0] for c in self.calls]

    def text(self):
        return "".join(c[1] for c in self.calls if c[0] == "token")


class FailingSource(ByteSource):
    """Yields the given chunks, then raises instead of reporting exhaustion."""

    def __init__(self, chunks, exc=None):
        self._chunks = list(chunks)
        self._exc = exc or ConnectionError("connection reset by peer")
        self.cancelled = False

    def read(self):
        if self._chunks:
            return self._chunks.pop(0), False
        raise self._exc

    def cancel(self):
        self.cancelled = True


class DripSource(ByteSource):
    """Endless slow source of prefix-format tokens until cancelled."""

    def __init__(self, line=b'0:"x"\n', delay=0.02):
        self.line = line
        self.delay = delay
        self.reads = 0
        self._stop = threading.Event()

    def read(self):
        if self._stop.wait(self.delay):
            return b"", True
        self.reads += 1
        return self.line, False

    def cancel(self):
        self._stop.set()


@pytest.fixture
def sink():
    return RecordingSink()


def wait_until(app, predicate, timeout=5.0):
    """Pump the Qt event loop until predicate() holds or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        app.processEvents()
        if predicate():
            return True
        time.sleep(0.005)
    app.processEvents()
    return predicate()


@pytest.fixture
def qapp():
    QtCore = pytest.importorskip("PyQt6.QtCore")
    app = QtCore.QCoreApplication.instance() or QtCore.QCoreApplication([])
    yield app
