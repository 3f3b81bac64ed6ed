"""
Chat completion providers.

Each provider offers a one-shot ``complete`` and a token-streaming
``stream_complete``. Cancelling the calling task aborts the request.
"""

import json
import logging
import os
from collections.abc import AsyncIterator

import httpx

from ..errors import ConfigurationError, ProviderResponseError
from .base import ChatMessage, TokenCallback, check_http_response, emit_token, get_registry

logger = logging.getLogger(__name__)

DEFAULT_LOCAL_CHAT_URL = "http://localhost:1234/v1/chat/completions"
DEFAULT_TIMEOUT = httpx.Timeout(120.0, connect=10.0)


async def iter_sse_content(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """
    Yield content deltas from an OpenAI-style server-sent event stream.

    Lines look like ``data: {...}``; the stream ends at ``data: [DONE]``.
    Keep-alives and undecodable events are skipped.
    """
    async for line in lines:
        line = line.strip()
        if not line.startswith("data:"):
            continue
        data = line[len("data:"):].strip()
        if data == "[DONE]":
            return
        try:
            event = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Skipping undecodable SSE event: %s", data[:100])
            continue
        choices = event.get("choices") or []
        if not choices:
            continue
        content = (choices[0].get("delta") or {}).get("content")
        if content:
            yield content


class LocalChat:
    """
    Chat through an OpenAI-compatible ``/v1/chat/completions`` endpoint.

    Works with LM Studio, llama.cpp server, vLLM and similar.
    """

    def __init__(
        self,
        url: str = DEFAULT_LOCAL_CHAT_URL,
        model: str = "",
        api_key: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2048,
        client: httpx.AsyncClient | None = None,
    ):
        if not url:
            raise ConfigurationError("Local chat provider requires a 'url'")
        self.url = url
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT, headers=headers)

    def _payload(self, messages: list[ChatMessage], stream: bool) -> dict:
        return {
            "model": self.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": stream,
        }

    async def complete(self, messages: list[ChatMessage]) -> str:
        try:
            response = await self._client.post(self.url, json=self._payload(messages, False))
        except httpx.TransportError as e:
            raise ConfigurationError(f"Cannot reach chat endpoint {self.url}: {e}") from e
        check_http_response(response, f"Chat endpoint {self.url}")
        try:
            return response.json()["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderResponseError(
                f"Unexpected chat response from {self.url}: {response.text[:200]}"
            ) from e

    async def stream_complete(self, messages: list[ChatMessage], on_token: TokenCallback) -> str:
        parts: list[str] = []
        try:
            async with self._client.stream(
                "POST", self.url, json=self._payload(messages, True)
            ) as response:
                if not response.is_success:
                    await response.aread()
                    check_http_response(response, f"Chat endpoint {self.url}")
                async for token in iter_sse_content(response.aiter_lines()):
                    parts.append(token)
                    await emit_token(on_token, token)
        except httpx.TransportError as e:
            raise ConfigurationError(f"Cannot reach chat endpoint {self.url}: {e}") from e
        return "".join(parts)

    async def aclose(self) -> None:
        await self._client.aclose()


class OpenAIChat:
    """
    Chat provider using OpenAI's chat API.

    Requires: RECALL_OPENAI_API_KEY or OPENAI_API_KEY environment variable.
    """

    def __init__(
        self,
        model: str = "gpt-4.1-mini",
        api_key: str | None = None,
        max_tokens: int = 2048,
        base_url: str | None = None,
    ):
        from openai import AsyncOpenAI

        key = api_key or os.environ.get("RECALL_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")
        if not key:
            raise ConfigurationError(
                "OpenAI API key required. Set RECALL_OPENAI_API_KEY or OPENAI_API_KEY"
            )
        self.model = model
        self.max_tokens = max_tokens
        self._client = AsyncOpenAI(api_key=key, base_url=base_url)
        # GPT-5+ and reasoning models take max_completion_tokens and no temperature
        self._new_api = self.model.startswith(("gpt-5", "o3", "o4"))

    def _completion_kwargs(self) -> dict:
        if self._new_api:
            return {"max_completion_tokens": self.max_tokens}
        return {"max_tokens": self.max_tokens, "temperature": 0.3}

    async def complete(self, messages: list[ChatMessage]) -> str:
        import openai

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[m.to_dict() for m in messages],
                **self._completion_kwargs(),
            )
        except openai.AuthenticationError as e:
            raise ConfigurationError(f"OpenAI rejected the API key: {e}") from e
        except openai.APIError as e:
            raise ProviderResponseError(f"OpenAI chat failed: {e}") from e
        if not response.choices:
            raise ProviderResponseError("OpenAI returned no choices")
        return response.choices[0].message.content or ""

    async def stream_complete(self, messages: list[ChatMessage], on_token: TokenCallback) -> str:
        import openai

        parts: list[str] = []
        try:
            stream = await self._client.chat.completions.create(
                model=self.model,
                messages=[m.to_dict() for m in messages],
                stream=True,
                **self._completion_kwargs(),
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                token = chunk.choices[0].delta.content
                if token:
                    parts.append(token)
                    await emit_token(on_token, token)
        except openai.AuthenticationError as e:
            raise ConfigurationError(f"OpenAI rejected the API key: {e}") from e
        except openai.APIError as e:
            raise ProviderResponseError(f"OpenAI chat failed: {e}") from e
        return "".join(parts)


class AnthropicChat:
    """
    Chat provider using Anthropic's Claude API.

    Authentication: api_key parameter or ANTHROPIC_API_KEY.
    System messages are passed through the ``system`` parameter.
    """

    def __init__(
        self,
        model: str = "claude-haiku-4-5-20251001",
        api_key: str | None = None,
        max_tokens: int = 2048,
    ):
        from anthropic import AsyncAnthropic

        key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not key:
            raise ConfigurationError(
                "Anthropic authentication required. Set ANTHROPIC_API_KEY"
            )
        self.model = model
        self.max_tokens = max_tokens
        self._client = AsyncAnthropic(api_key=key)

    @staticmethod
    def _split_system(messages: list[ChatMessage]) -> tuple[str, list[dict]]:
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        rest = [m.to_dict() for m in messages if m.role != "system"]
        return system, rest

    async def complete(self, messages: list[ChatMessage]) -> str:
        import anthropic

        system, rest = self._split_system(messages)
        try:
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system,
                messages=rest,
            )
        except anthropic.AuthenticationError as e:
            raise ConfigurationError(f"Anthropic rejected the API key: {e}") from e
        except anthropic.APIError as e:
            raise ProviderResponseError(f"Anthropic chat failed: {e}") from e
        return "".join(block.text for block in response.content if block.type == "text")

    async def stream_complete(self, messages: list[ChatMessage], on_token: TokenCallback) -> str:
        import anthropic

        system, rest = self._split_system(messages)
        parts: list[str] = []
        try:
            async with self._client.messages.stream(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system,
                messages=rest,
            ) as stream:
                async for token in stream.text_stream:
                    parts.append(token)
                    await emit_token(on_token, token)
        except anthropic.AuthenticationError as e:
            raise ConfigurationError(f"Anthropic rejected the API key: {e}") from e
        except anthropic.APIError as e:
            raise ProviderResponseError(f"Anthropic chat failed: {e}") from e
        return "".join(parts)


class OllamaChat:
    """
    Chat provider using Ollama's local API.

    Respects OLLAMA_HOST env var (default: http://localhost:11434).
    """

    def __init__(
        self,
        model: str = "llama3.2",
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        check_model: bool = True,
    ):
        from .ollama_utils import ollama_base_url, ollama_ensure_model

        self.model = model
        self.base_url = ollama_base_url(base_url)
        if check_model:
            ollama_ensure_model(self.base_url, self.model)
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(300.0, connect=10.0))

    def _payload(self, messages: list[ChatMessage], stream: bool) -> dict:
        return {
            "model": self.model,
            "messages": [m.to_dict() for m in messages],
            "stream": stream,
        }

    async def complete(self, messages: list[ChatMessage]) -> str:
        url = f"{self.base_url}/api/chat"
        try:
            response = await self._client.post(url, json=self._payload(messages, False))
        except httpx.TransportError as e:
            raise ConfigurationError(f"Cannot reach Ollama at {self.base_url}: {e}") from e
        check_http_response(response, f"Ollama chat (model={self.model})")
        try:
            return response.json()["message"]["content"]
        except (ValueError, KeyError, TypeError) as e:
            raise ProviderResponseError(
                f"Unexpected Ollama chat response: {response.text[:200]}"
            ) from e

    async def stream_complete(self, messages: list[ChatMessage], on_token: TokenCallback) -> str:
        # Ollama streams newline-delimited JSON rather than SSE
        url = f"{self.base_url}/api/chat"
        parts: list[str] = []
        try:
            async with self._client.stream("POST", url, json=self._payload(messages, True)) as response:
                if not response.is_success:
                    await response.aread()
                    check_http_response(response, f"Ollama chat (model={self.model})")
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        event = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    token = (event.get("message") or {}).get("content")
                    if token:
                        parts.append(token)
                        await emit_token(on_token, token)
                    if event.get("done"):
                        break
        except httpx.TransportError as e:
            raise ConfigurationError(f"Cannot reach Ollama at {self.base_url}: {e}") from e
        return "".join(parts)

    async def aclose(self) -> None:
        await self._client.aclose()


# Register providers
_registry = get_registry()
_registry.register_chat("local", LocalChat)
_registry.register_chat("openai", OpenAIChat)
_registry.register_chat("anthropic", AnthropicChat)
_registry.register_chat("ollama", OllamaChat)
