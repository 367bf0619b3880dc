"""Tests for provider adapters."""

import json

import httpx
import pytest
from tenacity import wait_none

from app.exceptions import ConfigurationError, ProviderError
from app.services.llm_client import (
    AnthropicProvider,
    BaseProvider,
    GeminiProvider,
    OpenAIProvider,
    OpenRouterProvider,
    get_provider,
)

MESSAGES = [
    {"role": "system", "content": "Be brief."},
    {"role": "user", "content": "Hi"},
]


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(BaseProvider._post.retry, "wait", wait_none())


def _openai_body(text="Hello"):
    return {
        "choices": [{"message": {"role": "assistant", "content": text}}],
        "usage": {"prompt_tokens": 11, "completion_tokens": 7},
    }


def _transport(responses, seen):
    """Replay `responses` in order, recording each request."""
    queue = list(responses)

    def handler(request):
        seen.append(request)
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        status, body = item
        return httpx.Response(status, json=body)

    return httpx.MockTransport(handler)


def test_openai_success():
    seen = []
    provider = OpenAIProvider("sk-test", "https://api.test/v1", transport=_transport([(200, _openai_body())], seen))

    result = provider.complete("gpt-4o-mini", MESSAGES, temperature=0.2, max_tokens=50)

    assert result.text == "Hello"
    assert result.input_tokens == 11
    assert result.output_tokens == 7
    assert result.latency_ms >= 0

    request = seen[0]
    assert str(request.url) == "https://api.test/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    body = json.loads(request.content)
    assert body["model"] == "gpt-4o-mini"
    assert body["messages"] == MESSAGES
    assert body["max_tokens"] == 50


def test_client_error_is_not_retried():
    seen = []
    provider = OpenAIProvider("sk-test", "https://api.test/v1", transport=_transport([(401, {"error": "bad key"})], seen))

    with pytest.raises(ProviderError) as exc_info:
        provider.complete("gpt-4o-mini", MESSAGES)

    assert exc_info.value.retryable is False
    assert exc_info.value.status_code == 401
    assert len(seen) == 1


def test_server_error_retried_then_succeeds():
    seen = []
    provider = OpenAIProvider(
        "sk-test",
        "https://api.test/v1",
        transport=_transport([(503, {}), (200, _openai_body("Recovered"))], seen),
    )

    assert provider.complete("gpt-4o-mini", MESSAGES).text == "Recovered"
    assert len(seen) == 2


def test_rate_limit_exhausts_attempts():
    seen = []
    provider = OpenAIProvider("sk-test", "https://api.test/v1", transport=_transport([(429, {})], seen))

    with pytest.raises(ProviderError) as exc_info:
        provider.complete("gpt-4o-mini", MESSAGES)

    assert exc_info.value.retryable is True
    assert len(seen) == 3


def test_timeout_is_retryable():
    seen = []
    provider = OpenAIProvider(
        "sk-test",
        "https://api.test/v1",
        transport=_transport([httpx.ReadTimeout("slow")], seen),
    )

    with pytest.raises(ProviderError) as exc_info:
        provider.complete("gpt-4o-mini", MESSAGES)

    assert exc_info.value.retryable is True
    assert len(seen) == 3


def test_empty_reply_is_an_error():
    provider = OpenAIProvider("sk-test", "https://api.test/v1", transport=_transport([(200, _openai_body(""))], []))

    with pytest.raises(ProviderError, match="empty"):
        provider.complete("gpt-4o-mini", MESSAGES)


def test_anthropic_folds_system_messages():
    seen = []
    body = {
        "content": [{"type": "text", "text": "Hel"}, {"type": "text", "text": "lo"}],
        "usage": {"input_tokens": 5, "output_tokens": 2},
    }
    provider = AnthropicProvider("ak-test", "https://api.test/v1", transport=_transport([(200, body)], seen))

    result = provider.complete("claude-model", MESSAGES)

    assert result.text == "Hello"
    assert result.input_tokens == 5
    sent = json.loads(seen[0].content)
    assert sent["system"] == "Be brief."
    assert sent["messages"] == [{"role": "user", "content": "Hi"}]
    assert seen[0].headers["x-api-key"] == "ak-test"
    assert str(seen[0].url) == "https://api.test/v1/messages"


def test_openrouter_sends_site_headers(monkeypatch):
    from app.config import settings

    monkeypatch.setattr(settings, "SITE_URL", "https://surveys.example")
    seen = []
    provider = OpenRouterProvider("or-test", "https://or.test/api/v1", transport=_transport([(200, _openai_body())], seen))

    provider.complete("openai/gpt-4o", MESSAGES)

    assert seen[0].headers["HTTP-Referer"] == "https://surveys.example"
    assert seen[0].headers["X-Title"] == settings.SITE_NAME


def test_missing_api_key():
    with pytest.raises(ConfigurationError):
        OpenAIProvider("", "https://api.test/v1")


def test_unknown_provider_key():
    with pytest.raises(ConfigurationError):
        get_provider("carrier-pigeon")


def test_unimplemented_provider_fails_permanently():
    provider = get_provider("gemini")

    assert isinstance(provider, GeminiProvider)
    with pytest.raises(ProviderError, match="Provider not implemented: gemini") as exc_info:
        provider.complete("gemini-pro", MESSAGES)
    assert exc_info.value.retryable is False
