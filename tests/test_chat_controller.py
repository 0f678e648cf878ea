"""Tests for ChatController: one streamed reply at a time into the conversation."""

import pytest

pytest.importorskip("PyQt6.QtCore")

from conftest import DripSource, wait_until

from chatstream.core.chat_controller import ChatController
from chatstream.core.transcript import NO_DATA_ERROR
from chatstream.infra.llm.chat_client import ChatAPIError
from chatstream.infra.llm.sources import IterByteSource


class FakeClient:
    """Stands in for ChatClient; hands out canned byte sources."""

    def __init__(self, chat=None, agent=None, fail=None):
        self.chat = chat
        self.agent = agent
        self.fail = fail
        self.requests = []

    def open_chat_stream(self, messages):
        self.requests.append(("chat", None, [m.content for m in messages]))
        if self.fail:
            raise self.fail
        return self.chat() if callable(self.chat) else IterByteSource(self.chat or [])

    def open_agent_stream(self, agent_id, messages):
        self.requests.append(("agent", agent_id, [m.content for m in messages]))
        if self.fail:
            raise self.fail
        return self.agent() if callable(self.agent) else IterByteSource(self.agent or [])


def _watch(ctrl):
    seen = {"replies": [], "errors": [], "done": [], "busy": [], "tools": []}
    ctrl.replyChanged.connect(seen["replies"].append)
    ctrl.errorRaised.connect(seen["errors"].append)
    ctrl.replyDone.connect(seen["done"].append)
    ctrl.busyChanged.connect(seen["busy"].append)
    ctrl.toolActivity.connect(lambda kind, p: seen["tools"].append((kind, p)))
    return seen


def test_chat_reply_lands_in_conversation(qapp):
    client = FakeClient(chat=[b'data: {"choices":[{"delta":{"content":"Hi "}}]}\n',
                              b'data: {"choices":[{"delta":{"content":"there"}}]}\ndata: [DONE]\n'])
    ctrl = ChatController(client)
    seen = _watch(ctrl)

    assert ctrl.send("hello") is not None
    assert wait_until(qapp, lambda: seen["done"])

    assert seen["done"] == ["Hi there"]
    assert seen["replies"] == ["Hi ", "Hi there"]
    assert seen["busy"] == [True, False]
    assert [(m.role, m.content) for m in ctrl.conversation.messages][-2:] == [
        ("user", "hello"), ("assistant", "Hi there"),
    ]
    assert client.requests[0][0] == "chat"


def test_agent_reply_with_reset_and_tools(qapp):
    client = FakeClient(agent=['0:"old"\nf:m\n9:{"toolName":"w"}\na:{"result":3}\n0:"new"\n'])
    ctrl = ChatController(client, agent_id="weatherAgent")
    seen = _watch(ctrl)

    ctrl.send("forecast")
    assert wait_until(qapp, lambda: seen["done"])

    assert seen["done"] == ["new"]
    assert seen["tools"] == [("call", {"toolName": "w"}), ("result", {"result": 3})]
    assert client.requests[0][:2] == ("agent", "weatherAgent")


def test_send_refused_while_busy(qapp):
    client = FakeClient(chat=lambda: DripSource(line=b'data: {"choices":[{"delta":{"content":"."}}]}\n'))
    ctrl = ChatController(client)
    seen = _watch(ctrl)

    assert ctrl.send("first") is not None
    assert ctrl.send("second") is None
    with pytest.raises(RuntimeError):
        ctrl.set_agent("other")

    ctrl.stop()
    assert wait_until(qapp, lambda: seen["done"])
    assert not ctrl.busy
    assert [m.content for m in ctrl.conversation.messages if m.role == "user"] == ["first"]


def test_empty_reply_reports_no_data(qapp):
    ctrl = ChatController(FakeClient(chat=[b"data: [DONE]\n"]))
    seen = _watch(ctrl)

    ctrl.send("anyone?")
    assert wait_until(qapp, lambda: seen["done"])

    assert seen["errors"] == [NO_DATA_ERROR]
    assert ctrl.conversation.last.role == "user"


def test_refused_request_reports_error(qapp):
    ctrl = ChatController(FakeClient(fail=ChatAPIError("API error: 500", status=500)))
    seen = _watch(ctrl)

    ctrl.send("hi")
    assert wait_until(qapp, lambda: seen["done"])

    assert seen["errors"] == ["API error: 500"]
    assert seen["done"] == [""]
    assert ctrl.conversation.last.role == "user"


def test_stop_before_first_token_leaves_no_blank_reply(qapp):
    sources = iter([DripSource(line=b"", delay=0.01), IterByteSource([b"data: [DONE]\n"])])
    client = FakeClient(chat=lambda: next(sources))
    ctrl = ChatController(client)
    seen = _watch(ctrl)

    ctrl.send("hello")
    assert wait_until(qapp, lambda: ctrl.conversation.last.role == "assistant")
    ctrl.stop()
    assert wait_until(qapp, lambda: seen["done"])
    assert seen["done"] == [""]
    assert ctrl.conversation.last.role == "user"

    ctrl.send("again")
    assert wait_until(qapp, lambda: len(seen["done"]) == 2)
    assert client.requests[1][2] == ["You are a helpful assistant.", "hello", "again"]
