import asyncio
from types import SimpleNamespace

import anthropic
import httpx
import pytest
import requests

from mapscribe.shared import llm_client
from mapscribe.shared.errors import AuthError, NetworkError
from mapscribe.shared.llm_client import (
    AnthropicClient,
    CompletionClient,
    OllamaClient,
    check_credential,
)

API_URL = "https://api.anthropic.com/v1/messages"


class FakeMessages:
    def __init__(self, outcome):
        self.outcome = outcome
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class FakeAsyncAnthropic:
    """Stands in for anthropic.AsyncAnthropic; records how each client was built."""
    instances = []
    outcome = None

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.messages = FakeMessages(FakeAsyncAnthropic.outcome)
        self.closed = False
        FakeAsyncAnthropic.instances.append(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.closed = True
        return False


@pytest.fixture
def fake_anthropic(monkeypatch):
    FakeAsyncAnthropic.instances = []
    FakeAsyncAnthropic.outcome = None
    monkeypatch.setattr(llm_client.anthropic, "AsyncAnthropic", FakeAsyncAnthropic)
    return FakeAsyncAnthropic


def text_response(*texts):
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=t) for t in texts],
        stop_reason="end_turn",
    )


def status_error(cls, status_code):
    request = httpx.Request("POST", API_URL)
    response = httpx.Response(status_code, request=request)
    return cls(message=f"status {status_code}", response=response, body=None)


def test_check_credential():
    assert check_credential("  sk-test  ") == "sk-test"
    for bad in ("", "   ", None, 42):
        with pytest.raises(AuthError):
            check_credential(bad)


def test_create_dispatches_on_provider():
    assert isinstance(CompletionClient.create("anthropic", model="m"), AnthropicClient)
    assert isinstance(CompletionClient.create("ollama"), OllamaClient)
    with pytest.raises(ValueError):
        CompletionClient.create("openai")


def test_anthropic_sends_credential_per_call(fake_anthropic):
    fake_anthropic.outcome = text_response('{"grid": ', "[]}")
    client = AnthropicClient(model="claude-test", temperature=0.5, max_tokens=100, timeout=12.0)
    history = [{"role": "user", "content": "first"}, {"role": "assistant", "content": "reply"}]

    text = asyncio.run(client.complete("system", "again", "sk-one", history))

    assert text == '{"grid": []}'
    instance = fake_anthropic.instances[0]
    assert instance.kwargs == {"api_key": "sk-one", "timeout": 12.0, "max_retries": 0}
    assert instance.closed
    sent = instance.messages.kwargs
    assert sent["model"] == "claude-test"
    assert sent["system"] == "system"
    assert sent["max_tokens"] == 100
    assert sent["messages"] == history + [{"role": "user", "content": "again"}]

    asyncio.run(client.complete("system", "again", "sk-two"))
    assert fake_anthropic.instances[1].kwargs["api_key"] == "sk-two"


def test_anthropic_missing_credential_sends_nothing(fake_anthropic):
    with pytest.raises(AuthError):
        asyncio.run(AnthropicClient().complete("s", "u", ""))

    assert fake_anthropic.instances == []


@pytest.mark.parametrize("error_cls, status_code", [
    (anthropic.AuthenticationError, 401),
    (anthropic.PermissionDeniedError, 403),
])
def test_anthropic_rejected_credential_is_auth_error(fake_anthropic, error_cls, status_code):
    fake_anthropic.outcome = status_error(error_cls, status_code)

    with pytest.raises(AuthError, match=str(status_code)):
        asyncio.run(AnthropicClient().complete("s", "u", "sk-bad"))


def test_anthropic_server_error_is_network_error(fake_anthropic):
    fake_anthropic.outcome = status_error(anthropic.InternalServerError, 500)

    with pytest.raises(NetworkError) as excinfo:
        asyncio.run(AnthropicClient().complete("s", "u", "sk"))

    assert excinfo.value.status_code == 500


def test_anthropic_timeout_is_network_error(fake_anthropic):
    fake_anthropic.outcome = anthropic.APITimeoutError(request=httpx.Request("POST", API_URL))

    with pytest.raises(NetworkError, match="timed out"):
        asyncio.run(AnthropicClient(timeout=5.0).complete("s", "u", "sk"))


def test_anthropic_connection_error_is_network_error(fake_anthropic):
    fake_anthropic.outcome = anthropic.APIConnectionError(request=httpx.Request("POST", API_URL))

    with pytest.raises(NetworkError, match="connection error"):
        asyncio.run(AnthropicClient().complete("s", "u", "sk"))


def test_anthropic_empty_text_is_network_error(fake_anthropic):
    fake_anthropic.outcome = text_response()

    with pytest.raises(NetworkError):
        asyncio.run(AnthropicClient().complete("s", "u", "sk"))


@pytest.fixture
def ollama_env(monkeypatch):
    monkeypatch.delenv("OLLAMA_MODEL", raising=False)
    monkeypatch.delenv("OLLAMA_ENDPOINT", raising=False)


def fake_http_response(status_code=200, body=None, text=""):
    def json():
        if body is None:
            raise ValueError("no json")
        return body
    return SimpleNamespace(status_code=status_code, ok=status_code < 400, text=text, json=json)


def test_ollama_posts_generate_request(monkeypatch, ollama_env):
    captured = {}

    def fake_post(url, json=None, headers=None, timeout=None):
        captured.update(url=url, json=json, headers=headers, timeout=timeout)
        return fake_http_response(body={"response": '{"grid": []}'})

    monkeypatch.setattr(llm_client.requests, "post", fake_post)
    client = OllamaClient(model="qwen-test", endpoint="http://ollama:11434", timeout=9.0)

    text = asyncio.run(client.complete("system", "user", None))

    assert text == '{"grid": []}'
    assert captured["url"] == "http://ollama:11434/api/generate"
    assert captured["json"]["model"] == "qwen-test"
    assert captured["json"]["system"] == "system"
    assert captured["json"]["prompt"] == "user"
    assert captured["json"]["format"] == "json"
    assert captured["json"]["stream"] is False
    assert captured["headers"] == {}
    assert captured["timeout"] == 9.0


def test_ollama_env_overrides(monkeypatch):
    monkeypatch.setenv("OLLAMA_MODEL", "env-model")
    monkeypatch.setenv("OLLAMA_ENDPOINT", "http://env:1")

    client = OllamaClient(model="config-model")

    assert client.model == "env-model"
    assert client.endpoint == "http://env:1"


def test_ollama_sends_bearer_credential_and_folds_history(monkeypatch, ollama_env):
    captured = {}

    def fake_post(url, json=None, headers=None, timeout=None):
        captured.update(json=json, headers=headers)
        return fake_http_response(body={"response": "ok"})

    monkeypatch.setattr(llm_client.requests, "post", fake_post)
    history = [{"role": "user", "content": "first"}, {"role": "assistant", "content": "reply"}]

    asyncio.run(OllamaClient().complete("s", "fix it", "token", history))

    assert captured["headers"] == {"Authorization": "Bearer token"}
    assert captured["json"]["prompt"] == "USER:\nfirst\n\nASSISTANT:\nreply\n\nUSER:\nfix it"


@pytest.mark.parametrize("status_code, error", [(401, AuthError), (403, AuthError), (500, NetworkError)])
def test_ollama_error_statuses(monkeypatch, ollama_env, status_code, error):
    monkeypatch.setattr(llm_client.requests, "post",
                        lambda *args, **kwargs: fake_http_response(status_code, text="nope"))

    with pytest.raises(error):
        asyncio.run(OllamaClient().complete("s", "u", None))


@pytest.mark.parametrize("exc, message", [
    (requests.exceptions.Timeout("slow"), "timed out"),
    (requests.exceptions.ConnectionError("refused"), "connection error"),
])
def test_ollama_transport_errors(monkeypatch, ollama_env, exc, message):
    def fake_post(*args, **kwargs):
        raise exc

    monkeypatch.setattr(llm_client.requests, "post", fake_post)

    with pytest.raises(NetworkError, match=message):
        asyncio.run(OllamaClient().complete("s", "u", None))


@pytest.mark.parametrize("body", [None, {}, {"response": ""}])
def test_ollama_malformed_or_empty_body(monkeypatch, ollama_env, body):
    monkeypatch.setattr(llm_client.requests, "post",
                        lambda *args, **kwargs: fake_http_response(body=body))

    with pytest.raises(NetworkError):
        asyncio.run(OllamaClient().complete("s", "u", None))
