"""Summary: Chat-style inference provider abstraction and implementations.

Importance: Centralizes LLM access for portability and auditability.
Alternatives: Call provider SDKs directly in each processor.
"""

from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from actionpilot.config import AppConfig
from actionpilot.errors import InferenceError
from actionpilot.models import AiRequest, AiResponse
from actionpilot.storage.sqlite_store import SqliteStore, utc_now

logger = logging.getLogger(__name__)

ChatMessages = list[dict[str, str]]


class AiProvider(ABC):
    """Summary: Abstract interface for chat completions.

    Importance: Allows switching between local and cloud LLMs without refactors.
    Alternatives: Use a single vendor SDK and accept lock-in risk.
    """

    name = "abstract"
    model = ""

    @abstractmethod
    def chat(
        self,
        messages: ChatMessages,
        temperature: float = 0.2,
        max_tokens: int = 800,
        model: str | None = None,
    ) -> tuple[str, int]:
        """Summary: Return the assistant reply text and latency in milliseconds.

        Importance: Every caller treats the text as untrusted and extracts from it.
        Alternatives: Return provider-specific response objects directly.
        """


class MockAiProvider(AiProvider):
    """Summary: Deterministic provider for local runs and tests.

    Importance: Replies come from a script (queued strings or a responder
    callable) or fall back to an echo that no JSON extractor will accept.
    Alternatives: Use a small local LLM for all development tasks.
    """

    name = "mock"
    model = "mock"

    def __init__(
        self,
        responses: Iterable[str | Exception] | None = None,
        responder: Callable[[ChatMessages], str] | None = None,
    ) -> None:
        self._responses: deque[str | Exception] = deque(responses or [])
        self._responder = responder
        self.calls: list[dict[str, Any]] = []

    def script(self, *responses: str | Exception) -> None:
        """Queue replies (or exceptions to raise) for the next calls."""

        self._responses.extend(responses)

    def chat(
        self,
        messages: ChatMessages,
        temperature: float = 0.2,
        max_tokens: int = 800,
        model: str | None = None,
    ) -> tuple[str, int]:
        started = time.time()
        self.calls.append(
            {"messages": messages, "temperature": temperature, "max_tokens": max_tokens}
        )
        if self._responses:
            scripted = self._responses.popleft()
            if isinstance(scripted, Exception):
                raise scripted
            response = scripted
        elif self._responder is not None:
            response = self._responder(messages)
        else:
            response = f"[mock] {messages[-1]['content'][:240]}"
        latency_ms = int((time.time() - started) * 1000)
        return response, latency_ms


class OllamaProvider(AiProvider):
    """Summary: Provider that targets a local Ollama server.

    Importance: Supports privacy-sensitive workflows on local hardware.
    Alternatives: Use llama.cpp directly with a Python binding.
    """

    name = "ollama"

    def __init__(self, base_url: str, model: str) -> None:
        self._base_url = base_url.rstrip("/")
        self.model = model

    def chat(
        self,
        messages: ChatMessages,
        temperature: float = 0.2,
        max_tokens: int = 800,
        model: str | None = None,
    ) -> tuple[str, int]:
        payload = {
            "model": model or self.model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }
        request = urllib.request.Request(
            url=f"{self._base_url}/api/chat",
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        started = time.time()
        try:
            with urllib.request.urlopen(request, timeout=60) as response:
                raw = json.loads(response.read().decode("utf-8"))
        except urllib.error.URLError as exc:
            raise InferenceError(f"Ollama request failed: {exc}") from exc
        latency_ms = int((time.time() - started) * 1000)
        return raw.get("message", {}).get("content", ""), latency_ms


class OpenAiProvider(AiProvider):
    """Summary: Provider using OpenAI's chat completion API.

    Importance: Enables higher-quality suggestions when a key is configured.
    Alternatives: Use other cloud providers or a local model.
    """

    name = "openai"

    def __init__(self, api_key: str, model: str) -> None:
        self._api_key = api_key
        self.model = model

    def chat(
        self,
        messages: ChatMessages,
        temperature: float = 0.2,
        max_tokens: int = 800,
        model: str | None = None,
    ) -> tuple[str, int]:
        payload = {
            "model": model or self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        request = urllib.request.Request(
            url="https://api.openai.com/v1/chat/completions",
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            },
            method="POST",
        )
        started = time.time()
        try:
            with urllib.request.urlopen(request, timeout=60) as response:
                raw = json.loads(response.read().decode("utf-8"))
        except urllib.error.URLError as exc:
            raise InferenceError(f"OpenAI request failed: {exc}") from exc
        latency_ms = int((time.time() - started) * 1000)
        try:
            content = raw["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise InferenceError(f"OpenAI response missing content: {exc}") from exc
        return content or "", latency_ms


@dataclass(frozen=True)
class AiProviderFactory:
    """Summary: Factory for selecting AI providers from configuration.

    Importance: Keeps provider selection logic centralized.
    Alternatives: Wire providers manually at the application entrypoint.
    """

    config: AppConfig

    def build(self) -> AiProvider:
        if self.config.ai_provider == "ollama":
            return OllamaProvider(self.config.ollama_url, self.config.ollama_model)
        if self.config.ai_provider == "openai":
            if not self.config.openai_api_key:
                raise ValueError("OPENAI_API_KEY is required for openai provider")
            return OpenAiProvider(self.config.openai_api_key, self.config.openai_model)
        return MockAiProvider()


def estimate_tokens(text: str) -> int:
    """Summary: Estimate tokens from text length.

    Importance: Provides a rough metric for AI usage auditing.
    Alternatives: Use provider token counters or tiktoken.
    """

    return max(1, len(text) // 4)


def render_prompt(messages: ChatMessages) -> str:
    """Flatten chat messages into a single string for the audit table."""

    return "\n\n".join(f"[{message['role']}] {message['content']}" for message in messages)


@dataclass
class AuditedChat:
    """Summary: Wraps a provider so every call lands in the AI audit tables.

    Importance: Processors and the meeting resolver share one audited entrypoint.
    Alternatives: Log requests separately inside each caller.
    """

    provider: AiProvider
    store: SqliteStore
    provider_name: str
    model_name: str

    def __call__(
        self,
        messages: ChatMessages,
        temperature: float,
        max_tokens: int,
        purpose: str,
        user_id: int | None = None,
        model: str | None = None,
    ) -> str:
        prompt = render_prompt(messages)
        request = AiRequest(
            provider=self.provider_name,
            model=model or self.model_name,
            prompt=prompt,
            purpose=purpose,
            timestamp=utc_now(),
            temperature=temperature,
        )
        request_id = self.store.log_ai_request(request, user_id=user_id)
        text, latency_ms = self.provider.chat(
            messages, temperature=temperature, max_tokens=max_tokens, model=model
        )
        self.store.log_ai_response(
            AiResponse(
                request_id=request_id,
                response_text=text,
                latency_ms=latency_ms,
                token_estimate=estimate_tokens(prompt + text),
            )
        )
        logger.info("AI call for %s completed in %sms.", purpose, latency_ms)
        return text
