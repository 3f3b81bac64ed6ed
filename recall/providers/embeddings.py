"""
Embedding providers.

All providers are async. HTTP endpoints are called through a shared
httpx.AsyncClient; the OpenAI provider uses the official SDK.
"""

import logging
import os
from typing import Any

import httpx

from ..errors import ConfigurationError, ProviderResponseError
from .base import check_http_response, get_registry

logger = logging.getLogger(__name__)

DEFAULT_LOCAL_EMBEDDING_URL = "http://localhost:1234/v1/embeddings"
DEFAULT_TIMEOUT = httpx.Timeout(60.0, connect=10.0)


def _as_vector(value: Any, source: str) -> list[float]:
    """Validate an embedding from a provider response."""
    if not isinstance(value, list) or not value:
        raise ProviderResponseError(f"{source} returned no embedding vector")
    try:
        return [float(x) for x in value]
    except (TypeError, ValueError) as e:
        raise ProviderResponseError(f"{source} returned a non-numeric embedding") from e


class LocalEmbedding:
    """
    Embeddings from an OpenAI-compatible HTTP endpoint.

    Works with LM Studio, llama.cpp server, vLLM and similar. Sends
    ``{"model", "input"}`` and reads ``data[0].embedding``.
    """

    def __init__(
        self,
        url: str = DEFAULT_LOCAL_EMBEDDING_URL,
        model: str = "",
        dimension: int = 384,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        if not url:
            raise ConfigurationError("Local embedding provider requires a 'url'")
        self.url = url
        self.model = model
        self._dimension = dimension
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT, headers=headers)

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed(self, text: str) -> list[float]:
        try:
            response = await self._client.post(
                self.url, json={"model": self.model, "input": text}
            )
        except httpx.TransportError as e:
            raise ConfigurationError(
                f"Cannot reach embedding endpoint {self.url}: {e}"
            ) from e
        check_http_response(response, f"Embedding endpoint {self.url}")
        try:
            value = response.json()["data"][0]["embedding"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderResponseError(
                f"Unexpected embedding response from {self.url}: {response.text[:200]}"
            ) from e
        return _as_vector(value, self.url)

    async def aclose(self) -> None:
        await self._client.aclose()


class OpenAIEmbedding:
    """
    Embeddings from the OpenAI API.

    Requires: RECALL_OPENAI_API_KEY or OPENAI_API_KEY environment variable.
    """

    MODEL_DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: str | None = None,
        dimension: int | None = None,
        base_url: str | None = None,
    ):
        from openai import AsyncOpenAI

        key = api_key or os.environ.get("RECALL_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")
        if not key:
            raise ConfigurationError(
                "OpenAI API key required. Set RECALL_OPENAI_API_KEY or OPENAI_API_KEY"
            )
        self.model = model
        self._dimension = dimension or self.MODEL_DIMENSIONS.get(model, 1536)
        # Only the v3 models accept a reduced output width
        self._send_dimensions = dimension is not None and model.startswith("text-embedding-3")
        self._client = AsyncOpenAI(api_key=key, base_url=base_url)

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed(self, text: str) -> list[float]:
        import openai

        kwargs = {"dimensions": self._dimension} if self._send_dimensions else {}
        try:
            response = await self._client.embeddings.create(
                model=self.model, input=text, **kwargs
            )
        except openai.AuthenticationError as e:
            raise ConfigurationError(f"OpenAI rejected the API key: {e}") from e
        except openai.APIError as e:
            raise ProviderResponseError(f"OpenAI embedding failed: {e}") from e
        if not response.data:
            raise ProviderResponseError("OpenAI returned no embedding data")
        return _as_vector(list(response.data[0].embedding), "OpenAI")


class OllamaEmbedding:
    """
    Embeddings from a local Ollama server.

    Respects OLLAMA_HOST env var (default: http://localhost:11434).
    """

    def __init__(
        self,
        model: str = "nomic-embed-text",
        base_url: str | None = None,
        dimension: int = 768,
        client: httpx.AsyncClient | None = None,
        check_model: bool = True,
    ):
        from .ollama_utils import ollama_base_url, ollama_ensure_model

        self.model = model
        self.base_url = ollama_base_url(base_url)
        self._dimension = dimension
        if check_model:
            ollama_ensure_model(self.base_url, self.model)
        self._client = client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed(self, text: str) -> list[float]:
        url = f"{self.base_url}/api/embed"
        try:
            response = await self._client.post(url, json={"model": self.model, "input": text})
        except httpx.TransportError as e:
            raise ConfigurationError(f"Cannot reach Ollama at {self.base_url}: {e}") from e
        check_http_response(response, f"Ollama embedding (model={self.model})")
        try:
            value = response.json()["embeddings"][0]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderResponseError(
                f"Unexpected Ollama embedding response: {response.text[:200]}"
            ) from e
        return _as_vector(value, "Ollama")

    async def aclose(self) -> None:
        await self._client.aclose()


# Register providers
_registry = get_registry()
_registry.register_embedding("local", LocalEmbedding)
_registry.register_embedding("openai", OpenAIEmbedding)
_registry.register_embedding("ollama", OllamaEmbedding)
