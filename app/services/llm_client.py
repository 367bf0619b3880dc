"""LLM provider adapters with retries and request hashing.

Every adapter exposes `complete(model, messages)` and returns an `LLMResult`.
Adapters are selected by the provider key stored on a model target.
"""

import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Type

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from app.config import settings
from app.exceptions import ConfigurationError, ProviderError

logger = logging.getLogger(__name__)

# Suppress per-request httpx logging
logging.getLogger("httpx").setLevel(logging.WARNING)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

ANTHROPIC_VERSION = "2023-06-01"


@dataclass
class LLMResult:
    """Reply text, token usage and wall-clock latency of one provider call."""

    text: str
    input_tokens: int
    output_tokens: int
    latency_ms: int


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, ProviderError) and error.retryable


def _hash_text(text: str) -> str:
    """Hash text using SHA256."""
    return hashlib.sha256(text.encode()).hexdigest()


class BaseProvider:
    """Shared HTTP handling for provider adapters."""

    name = "base"

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not api_key or api_key.isspace():
            raise ConfigurationError(f"Missing API key for provider {self.name}")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else settings.LLM_TIMEOUT
        self.transport = transport

    def complete(
        self,
        model: str,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResult:
        """
        Send role-tagged messages to `model`.

        Args:
            model: Provider model identifier
            messages: List of {'role', 'content'} dicts
            temperature: Sampling temperature (defaults to settings)
            max_tokens: Maximum tokens in response (defaults to settings)

        Returns:
            LLMResult

        Raises:
            ProviderError: On network, auth or upstream request failures
        """
        if not messages:
            raise ProviderError("No messages to send")

        payload = self._build_payload(
            model,
            messages,
            settings.LLM_TEMPERATURE if temperature is None else temperature,
            settings.LLM_MAX_TOKENS if max_tokens is None else max_tokens,
        )
        request_hash = _hash_text(json.dumps(payload, sort_keys=True))
        logger.info(f"LLM request to {self.name}/{model}, hash: {request_hash[:16]}")

        start = time.monotonic()
        body = self._post(self._endpoint(), payload)
        latency_ms = int((time.monotonic() - start) * 1000)

        result = self._parse_response(body, latency_ms)
        logger.info(
            f"LLM response hash: {_hash_text(result.text)[:16]} "
            f"({result.input_tokens} in / {result.output_tokens} out, {latency_ms}ms)"
        )
        return result

    @retry(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _post(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(url, headers=self._build_headers(), json=payload)
        except httpx.TimeoutException as e:
            raise ProviderError(f"{self.name} request timed out: {e}", retryable=True) from e
        except httpx.TransportError as e:
            raise ProviderError(f"{self.name} connection error: {e}", retryable=True) from e

        if response.status_code in RETRYABLE_STATUS_CODES:
            logger.warning(f"Retryable error {response.status_code} from {self.name}")
            raise ProviderError(
                f"{self.name} returned {response.status_code}",
                retryable=True,
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise ProviderError(
                f"{self.name} returned {response.status_code}: {response.text[:200]}",
                retryable=False,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"{self.name} returned invalid JSON") from e

    def _endpoint(self) -> str:
        raise NotImplementedError

    def _build_headers(self) -> Dict[str, str]:
        raise NotImplementedError

    def _build_payload(
        self, model: str, messages: List[Dict[str, str]], temperature: float, max_tokens: int
    ) -> Dict[str, Any]:
        raise NotImplementedError

    def _parse_response(self, body: Dict[str, Any], latency_ms: int) -> LLMResult:
        raise NotImplementedError


class OpenAIProvider(BaseProvider):
    """OpenAI chat completions API."""

    name = "openai"
    default_base_url = "https://api.openai.com/v1"

    @classmethod
    def from_settings(cls, **kwargs) -> "OpenAIProvider":
        return cls(settings.OPENAI_API_KEY, cls.default_base_url, **kwargs)

    def _endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _build_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _build_payload(self, model, messages, temperature, max_tokens):
        return {
            "model": model,
            "messages": [{"role": m["role"], "content": m["content"]} for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

    def _parse_response(self, body, latency_ms):
        choices = body.get("choices") or []
        content = choices[0].get("message", {}).get("content") if choices else None
        if not content:
            raise ProviderError(f"{self.name} returned an empty response")

        usage = body.get("usage") or {}
        return LLMResult(
            text=content,
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
            latency_ms=latency_ms,
        )


class OpenRouterProvider(OpenAIProvider):
    """OpenRouter's OpenAI-compatible endpoint."""

    name = "openrouter"

    @classmethod
    def from_settings(cls, **kwargs) -> "OpenRouterProvider":
        return cls(settings.OPENROUTER_API_KEY, settings.OPENROUTER_BASE_URL, **kwargs)

    def _build_headers(self) -> Dict[str, str]:
        headers = super()._build_headers()
        if settings.SITE_URL:
            headers["HTTP-Referer"] = settings.SITE_URL
        if settings.SITE_NAME:
            headers["X-Title"] = settings.SITE_NAME
        return headers


class AnthropicProvider(BaseProvider):
    """Anthropic messages API. System messages go in the top-level `system` field."""

    name = "anthropic"
    default_base_url = "https://api.anthropic.com/v1"

    @classmethod
    def from_settings(cls, **kwargs) -> "AnthropicProvider":
        return cls(settings.ANTHROPIC_API_KEY, cls.default_base_url, **kwargs)

    def _endpoint(self) -> str:
        return f"{self.base_url}/messages"

    def _build_headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    def _build_payload(self, model, messages, temperature, max_tokens):
        system_text = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        payload: Dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [
                {"role": m["role"], "content": m["content"]}
                for m in messages
                if m["role"] != "system"
            ],
        }
        if system_text:
            payload["system"] = system_text
        return payload

    def _parse_response(self, body, latency_ms):
        text_blocks = [b.get("text", "") for b in body.get("content") or [] if b.get("type") == "text"]
        if not text_blocks:
            raise ProviderError(f"{self.name} returned no text content block")

        usage = body.get("usage") or {}
        return LLMResult(
            text="".join(text_blocks),
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
            latency_ms=latency_ms,
        )


class UnimplementedProvider:
    """Registered provider without an adapter yet. Every call fails permanently."""

    name = "unimplemented"

    @classmethod
    def from_settings(cls, **kwargs) -> "UnimplementedProvider":
        return cls()

    def complete(self, model: str, messages: List[Dict[str, str]], **kwargs) -> LLMResult:
        raise ProviderError(f"Provider not implemented: {self.name}")


class GeminiProvider(UnimplementedProvider):
    name = "gemini"


class PerplexityProvider(UnimplementedProvider):
    name = "perplexity"


class CopilotProvider(UnimplementedProvider):
    name = "copilot"


PROVIDERS: Dict[str, Type] = {
    "OPENAI": OpenAIProvider,
    "ANTHROPIC": AnthropicProvider,
    "OPENROUTER": OpenRouterProvider,
    "GEMINI": GeminiProvider,
    "PERPLEXITY": PerplexityProvider,
    "COPILOT": CopilotProvider,
}


def get_provider(provider_key: str):
    """
    Resolve a provider key to a configured adapter.

    Raises:
        ConfigurationError: Unknown key or missing credentials
    """
    provider_cls = PROVIDERS.get((provider_key or "").upper())
    if provider_cls is None:
        raise ConfigurationError(f"Unknown provider: {provider_key}")
    return provider_cls.from_settings()
