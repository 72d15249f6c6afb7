import httpx
import pytest

from jarvis_core.domain.events import Done, SessionInit, TextDelta
from jarvis_core.domain.exceptions import ApiError, NetworkError, RateLimitError, TurnCancelled
from jarvis_core.domain.models import TurnRequest
from jarvis_core.providers import create_agent_client
from jarvis_core.providers.agent_client import AgentServerClient
from jarvis_core.streaming.cancellation import CancelToken


class SettingsStub:
    agent_server_url = "http://agent.local:3001"
    agent_chat_path = "/api/chat"
    http_timeout = 1.0
    stream_read_timeout = 5.0
    agent_connectors = ["gmail", "github"]


class FakeResponse:
    def __init__(self, chunks, status_code=200, json_body=None):
        self._chunks = list(chunks)
        self.status_code = status_code
        self._json = json_body
        self.closed = False

    def iter_bytes(self):
        for chunk in self._chunks:
            if self.closed:
                raise httpx.StreamClosed()
            yield chunk

    def close(self):
        self.closed = True

    def json(self):
        return self._json


class StreamContext:
    def __init__(self, response):
        self._response = response

    def __enter__(self):
        return self._response

    def __exit__(self, *args):
        return False


def _fake_client(captured, response=None, error=None):
    class Client:
        def __init__(self, *a, **kw):
            captured["client_kwargs"] = kw

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def stream(self, method, url, json=None, **kw):
            if error is not None:
                raise error
            captured["method"] = method
            captured["url"] = url
            captured["payload"] = json
            return StreamContext(response)

        def get(self, url, **kw):
            if error is not None:
                raise error
            captured["url"] = url
            return response

    return Client


def test_stream_turn_posts_payload_and_decodes_events(monkeypatch):
    captured = {}
    response = FakeResponse(
        [
            b'data: {"type": "session_init", "sessionId": "s1", "model": "m1"}\n\ndata: {"type": "te',
            b'xt", "content": "Hi"}\n',
            b'data: {"type": "done", "content": ""}\n',
        ]
    )
    monkeypatch.setattr("httpx.Client", _fake_client(captured, response))
    client = AgentServerClient(SettingsStub())
    req = TurnRequest(thread_id="t-1", message="Hi", session_id="s0", model_override="opus")

    events = list(client.stream_turn(req))

    assert events == [SessionInit(session_id="s1", model="m1"), TextDelta(content="Hi"), Done(content="")]
    assert captured["method"] == "POST"
    assert captured["url"] == "http://agent.local:3001/api/chat"
    assert captured["payload"] == {
        "threadId": "t-1",
        "message": "Hi",
        "sessionId": "s0",
        "modelOverride": "opus",
        "connectors": ["gmail", "github"],
    }
    timeout = captured["client_kwargs"]["timeout"]
    assert timeout.read == 5.0


def test_payload_omits_optional_fields():
    assert TurnRequest(thread_id="t", message="m").to_payload() == {"threadId": "t", "message": "m"}


def test_non_ok_status_raises_before_streaming(monkeypatch):
    monkeypatch.setattr("httpx.Client", _fake_client({}, FakeResponse([], status_code=502)))
    client = AgentServerClient(SettingsStub())
    with pytest.raises(ApiError) as exc:
        list(client.stream_turn(TurnRequest(thread_id="t", message="m")))
    assert exc.value.message == "Agent server error: 502"
    assert exc.value.http_status == 502


def test_rate_limit_status(monkeypatch):
    monkeypatch.setattr("httpx.Client", _fake_client({}, FakeResponse([], status_code=429)))
    client = AgentServerClient(SettingsStub())
    with pytest.raises(RateLimitError):
        list(client.stream_turn(TurnRequest(thread_id="t", message="m")))


def test_transport_failure_is_network_error(monkeypatch):
    err = httpx.ConnectError("connection refused")
    monkeypatch.setattr("httpx.Client", _fake_client({}, error=err))
    client = AgentServerClient(SettingsStub())
    with pytest.raises(NetworkError) as exc:
        list(client.stream_turn(TurnRequest(thread_id="t", message="m")))
    assert "connection refused" in exc.value.message


def test_cancel_closes_response_and_raises_turn_cancelled(monkeypatch):
    response = FakeResponse(
        [
            b'data: {"type": "tool_start", "toolName": "Bash", "toolInput": "ls"}\n',
            b'data: {"type": "done", "content": "never seen"}\n',
        ]
    )
    monkeypatch.setattr("httpx.Client", _fake_client({}, response))
    client = AgentServerClient(SettingsStub())
    token = CancelToken()
    stream = client.stream_turn(TurnRequest(thread_id="t", message="m"), token)

    first = next(stream)
    assert first.tool_name == "Bash"
    token.cancel()
    assert response.closed is True
    with pytest.raises(TurnCancelled):
        next(stream)


def test_status_reads_unconfigured_503_body(monkeypatch):
    body = {"mode": "unconfigured", "model": None, "description": "No AI auth configured"}
    monkeypatch.setattr("httpx.Client", _fake_client({}, FakeResponse([], status_code=503, json_body=body)))
    status = AgentServerClient(SettingsStub()).status()
    assert status.mode == "unconfigured"
    assert status.configured is False
    assert status.description == "No AI auth configured"


def test_health(monkeypatch):
    captured = {}
    body = {"ok": True, "timestamp": 1}
    monkeypatch.setattr("httpx.Client", _fake_client(captured, FakeResponse([], json_body=body)))
    assert AgentServerClient(SettingsStub()).health() == body
    assert captured["url"] == "http://agent.local:3001/api/health"


def test_create_agent_client_overrides_base_url(monkeypatch):
    captured = {}
    monkeypatch.setattr("httpx.Client", _fake_client(captured, FakeResponse([], json_body={"ok": True})))
    client = create_agent_client("http://other-host:4000/")
    client.health()
    assert captured["url"] == "http://other-host:4000/api/health"
