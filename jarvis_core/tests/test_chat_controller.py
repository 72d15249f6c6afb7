import tempfile
from pathlib import Path

import pytest

from jarvis_core.chat.controller import ChatSessionController, ControllerConfig
from jarvis_core.domain.events import (
    Done,
    ErrorEvent,
    SessionInit,
    TextDelta,
    ToolDone,
    ToolStart,
)
from jarvis_core.domain.exceptions import (
    AgentStreamError,
    ApiError,
    NetworkError,
    RateLimitError,
    StreamTruncatedError,
)
from jarvis_core.infrastructure.storage.json_store import JsonThreadStore
from jarvis_core.notifications.notifier import UrgentNotifier
from jarvis_core.streaming.reducer import TurnPhase


class FakeAgentClient:
    """Replays scripted events; a callable in the script runs instead of yielding."""

    name = "fake"

    def __init__(self, script):
        self.script = list(script)
        self.requests = []
        self.closed = False

    def stream_turn(self, req, cancel_token=None):
        self.requests.append(req)
        try:
            for item in self.script:
                if callable(item):
                    item()
                else:
                    yield item
        finally:
            self.closed = True


class SpyStore(JsonThreadStore):
    def __init__(self, root):
        super().__init__(root=root)
        self.binding_calls = []

    def update_thread_binding(self, thread_id, session_id=None, model=None):
        self.binding_calls.append((session_id, model))
        return super().update_thread_binding(thread_id, session_id=session_id, model=model)


def _controller(tmp, script, **kwargs):
    store = SpyStore(Path(tmp) / ".storage")
    client = FakeAgentClient(script)
    controller = ChatSessionController(store=store, client=client, config=ControllerConfig(), **kwargs)
    return controller, store, client


def _assistant_messages(store, thread_id):
    return [m.content for m in store.list_messages(thread_id) if m.role == "assistant"]


def test_scenario_text_stream_binds_session():
    with tempfile.TemporaryDirectory() as d:
        controller, store, client = _controller(
            d,
            [
                SessionInit(session_id="s1", model="m1"),
                TextDelta(content="Hello"),
                TextDelta(content=" there"),
                Done(content=""),
            ],
        )
        result = controller.send("Hi")

        assert result.status == "done"
        assert result.content == "Hello there"
        thread = store.get_thread(result.thread_id)
        assert _assistant_messages(store, thread.id) == ["Hello there"]
        assert (thread.agent_session_id, thread.model) == ("s1", "m1")
        assert thread.title == "Hi"
        assert client.requests[0].session_id is None
        assert client.closed is True
        assert controller.is_streaming is False
        assert controller.state.phase is TurnPhase.IDLE


def test_scenario_tool_call_then_text():
    with tempfile.TemporaryDirectory() as d:
        expanded = []
        controller, store, _ = _controller(
            d,
            [
                ToolStart(tool_name="WebSearch", tool_input="{}", message_id="t1"),
                ToolDone(tool_name="WebSearch", tool_output="3 results", message_id="t1"),
                TextDelta(content="Found it"),
                Done(content="Found it"),
            ],
            on_state=lambda s: expanded.append(s.activity_expanded),
        )
        result = controller.send("search something")

        assert len(result.tool_calls) == 1
        assert result.tool_calls[0].status == "done"
        assert result.tool_calls[0].output == "3 results"
        assert _assistant_messages(store, result.thread_id) == ["Found it"]
        # initial, tool_start, tool_done, text, done, reset
        assert expanded == [False, True, True, False, False, False]


def test_scenario_error_event_is_persisted_as_error_bubble():
    with tempfile.TemporaryDirectory() as d:
        controller, store, _ = _controller(d, [ErrorEvent(error="rate limited")])
        result = controller.send("Hi")

        assert result.status == "errored"
        assert result.error == "rate limited"
        assert _assistant_messages(store, result.thread_id) == ["Error: rate limited"]
        assert controller.is_streaming is False


def test_run_turn_raises_protocol_error():
    with tempfile.TemporaryDirectory() as d:
        controller, store, _ = _controller(d, [ErrorEvent(error="rate limited")])
        thread = controller.new_thread()
        with pytest.raises(AgentStreamError) as exc:
            controller.run_turn(thread.id, "Hi")
        assert exc.value.message == "rate limited"
        assert _assistant_messages(store, thread.id) == []


def test_scenario_abort_mid_stream():
    with tempfile.TemporaryDirectory() as d:
        states = []
        controller, store, client = _controller(d, [], on_state=lambda s: states.append(s.phase))
        client.script = [
            SessionInit(session_id="s-new", model="m1"),
            ToolStart(tool_name="mcp__gmail__list_recent", tool_input="{}"),
            lambda: controller.abort(),
            TextDelta(content="should not render"),
            Done(content="should not persist"),
        ]
        result = controller.send("Check my email")

        assert result.status == "aborted"
        thread = store.get_thread(result.thread_id)
        assert [m.role for m in store.list_messages(thread.id)] == ["user"]
        assert thread.agent_session_id is None
        assert store.binding_calls == []
        assert TurnPhase.RESPONDING not in states
        assert controller.state.phase is TurnPhase.IDLE
        assert len(controller.state.tools) == 0
        assert controller.is_streaming is False
        assert client.closed is True


def test_abort_when_stream_ends_right_after_is_not_truncation():
    with tempfile.TemporaryDirectory() as d:
        controller, store, client = _controller(d, [])
        client.script = [ToolStart(tool_name="Read", tool_input="{}"), lambda: controller.abort()]
        result = controller.send("read it")
        assert result.status == "aborted"
        assert _assistant_messages(store, result.thread_id) == []


def test_stream_ending_after_tool_start_is_truncation():
    with tempfile.TemporaryDirectory() as d:
        controller, store, _ = _controller(d, [ToolStart(tool_name="Read", tool_input="{}")])
        result = controller.send("read it")
        assert result.status == "errored"
        assert result.error == StreamTruncatedError.DEFAULT_MESSAGE
        assert _assistant_messages(store, result.thread_id) == [f"Error: {StreamTruncatedError.DEFAULT_MESSAGE}"]


def test_transport_failure_becomes_error_bubble():
    class BrokenClient:
        name = "broken"

        def stream_turn(self, req, cancel_token=None):
            raise NetworkError(code="NETWORK_ERROR", message="connection refused")

    with tempfile.TemporaryDirectory() as d:
        store = JsonThreadStore(root=Path(d) / ".storage")
        controller = ChatSessionController(store=store, client=BrokenClient(), config=ControllerConfig())
        result = controller.send("Hi")
        assert result.status == "errored"
        assert _assistant_messages(store, result.thread_id) == ["Error: connection refused"]


def test_failure_after_abort_is_reported_as_aborted():
    class AbortThenFailClient:
        name = "abort-then-fail"

        def __init__(self):
            self.controller = None

        def stream_turn(self, req, cancel_token=None):
            self.controller.abort()
            raise ApiError(code="API_ERROR", message="Agent server error: 500", http_status=500)

    with tempfile.TemporaryDirectory() as d:
        store = JsonThreadStore(root=Path(d) / ".storage")
        client = AbortThenFailClient()
        controller = ChatSessionController(store=store, client=client, config=ControllerConfig())
        client.controller = controller
        result = controller.send("hi")

        assert result.status == "aborted"
        assert [(m.role, m.content) for m in store.list_messages(result.thread_id)] == [("user", "hi")]
        assert controller.is_streaming is False


def test_failure_mid_stream_without_abort_persists_error():
    def fail():
        raise RateLimitError(code="RATE_LIMIT", message="Agent server rate limit", http_status=429)

    with tempfile.TemporaryDirectory() as d:
        controller, store, _ = _controller(d, [SessionInit(session_id="s1", model="m1"), fail])
        result = controller.send("hi")
        assert result.status == "errored"
        assert _assistant_messages(store, result.thread_id) == ["Error: Agent server rate limit"]
        assert store.get_thread(result.thread_id).agent_session_id is None


def test_session_binding_write_policy():
    with tempfile.TemporaryDirectory() as d:
        controller, store, client = _controller(d, [])
        thread = controller.new_thread()
        store.update_thread_binding(thread.id, session_id="s1", model="m1")
        store.binding_calls.clear()

        # same handle, same model: no write
        client.script = [SessionInit(session_id="s1", model="m1"), Done(content="a")]
        controller.send("one")
        assert store.binding_calls == []
        assert client.requests[-1].session_id == "s1"

        # same handle, new model: model-only write
        client.script = [SessionInit(session_id="s1", model="m2"), Done(content="b")]
        controller.send("two")
        assert store.binding_calls == [(None, "m2")]

        # new handle: handle + model written
        client.script = [SessionInit(session_id="s2", model="m2"), Done(content="c")]
        controller.send("three")
        assert store.binding_calls[-1] == ("s2", "m2")
        reloaded = store.get_thread(thread.id)
        assert (reloaded.agent_session_id, reloaded.model) == ("s2", "m2")
        assert client.requests[-1].session_id == "s1"


def test_model_override_is_sent_for_one_turn_only():
    with tempfile.TemporaryDirectory() as d:
        controller, _, client = _controller(d, [Done(content="ok")])
        controller.send("first", model_override="big-model")
        controller.send("second")
        assert client.requests[0].model_override == "big-model"
        assert client.requests[1].model_override is None


def test_send_is_noop_while_streaming_or_blank():
    with tempfile.TemporaryDirectory() as d:
        nested = []
        controller, _, client = _controller(d, [])
        client.script = [lambda: nested.append(controller.send("again")), Done(content="ok")]
        assert controller.send("   ") is None
        result = controller.send("go")
        assert result.status == "done"
        assert nested == [None]
        assert len(client.requests) == 1


def test_title_is_only_auto_named_once():
    with tempfile.TemporaryDirectory() as d:
        controller, store, _ = _controller(d, [Done(content="ok")])
        result = controller.send("Plan my week around the product launch and two dentist appointments")
        controller.send("second message")
        title = store.get_thread(result.thread_id).title
        assert title == "Plan my week around the product launch and two den"


def test_done_with_empty_text_persists_nothing_but_binding():
    with tempfile.TemporaryDirectory() as d:
        controller, store, _ = _controller(d, [SessionInit(session_id="s9", model="m"), Done(content="")])
        result = controller.send("Hi")
        assert result.status == "done"
        assert result.assistant_message is None
        assert _assistant_messages(store, result.thread_id) == []
        assert store.get_thread(result.thread_id).agent_session_id == "s9"


def test_tool_messages_persisted_when_enabled():
    with tempfile.TemporaryDirectory() as d:
        store = JsonThreadStore(root=Path(d) / ".storage")
        client = FakeAgentClient(
            [
                ToolStart(tool_name="Bash", tool_input="ls", message_id="b1"),
                ToolDone(tool_name="Bash", tool_output="a.txt", message_id="b1"),
                Done(content="Listed"),
            ]
        )
        controller = ChatSessionController(
            store=store, client=client, config=ControllerConfig(persist_tool_messages=True)
        )
        result = controller.send("list files")
        msgs = store.list_messages(result.thread_id)
        assert [m.role for m in msgs] == ["user", "tool", "assistant"]
        assert (msgs[1].tool_name, msgs[1].tool_output, msgs[1].tool_status) == ("Bash", "a.txt", "done")


def test_urgent_reply_triggers_notification():
    class Backend:
        shown = []

        def permission_granted(self):
            return True

        def show(self, title, body):
            self.shown.append(body)

    backend = Backend()
    notifier = UrgentNotifier(backend, enabled=True, is_foreground=lambda: False)
    with tempfile.TemporaryDirectory() as d:
        controller, _, _ = _controller(d, [Done(content="URGENT: invoice overdue")], notifier=notifier)
        result = controller.send("anything important?")
        assert result.notified is True
        assert backend.shown == ["URGENT: invoice overdue"]


def test_thread_selection_and_delete_fallback():
    with tempfile.TemporaryDirectory() as d:
        controller, store, _ = _controller(d, [])
        first = controller.ensure_active_thread()
        assert first.title == "New conversation"
        assert controller.ensure_active_thread().id == first.id

        second = controller.new_thread()
        assert controller.active_thread_id == second.id
        assert controller.delete_thread(second.id) == first.id

        replacement = controller.delete_thread(first.id)
        assert replacement not in (first.id, second.id)
        assert [t.id for t in controller.list_threads()] == [replacement]


def test_ensure_active_thread_picks_existing():
    with tempfile.TemporaryDirectory() as d:
        controller, store, _ = _controller(d, [])
        existing = store.create_thread("Earlier chat")
        assert controller.ensure_active_thread().id == existing.id
        assert controller.select_thread(existing.id).title == "Earlier chat"
