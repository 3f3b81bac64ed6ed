"""
Base provider protocols.

These define the interfaces that concrete providers must implement.
Using Protocol for structural subtyping - no explicit inheritance required.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import httpx

from ..errors import ConfigurationError, ProviderResponseError


# -----------------------------------------------------------------------------
# Documents
# -----------------------------------------------------------------------------

@runtime_checkable
class DocumentStore(Protocol):
    """
    Read access to the user's notes.

    Paths are opaque identifiers; the filesystem implementation uses
    paths relative to the notes root with forward slashes.
    """

    def list_documents(self) -> list[str]:
        """Return the paths of all indexable documents."""
        ...

    def read_document(self, path: str) -> str:
        """
        Return the full text of a document.

        Raises:
            FileNotFoundError: If the document does not exist
        """
        ...

    def get_modified_time(self, path: str) -> float:
        """Return the last modification time as epoch seconds."""
        ...


# -----------------------------------------------------------------------------
# Embedding Generation
# -----------------------------------------------------------------------------

@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Generates vector embeddings from text.

    The same provider must be used for indexing and querying; vectors
    from different models are not comparable.

    Example implementation:
        class HashEmbedding:
            dimension = 8

            async def embed(self, text: str) -> list[float]:
                h = hashlib.md5(text.encode()).digest()
                return [b / 255.0 for b in h[:8]]
    """

    @property
    def dimension(self) -> int:
        """Expected width of the embedding vectors."""
        ...

    async def embed(self, text: str) -> list[float]:
        """
        Generate an embedding vector for the given text.

        Raises:
            ConfigurationError: If the endpoint or credentials are missing
            ProviderResponseError: If the response has no usable vector
        """
        ...


# -----------------------------------------------------------------------------
# Chat Completion
# -----------------------------------------------------------------------------

@dataclass
class ChatMessage:
    """One message of a chat transcript."""
    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


TokenCallback = Callable[[str], None] | Callable[[str], Awaitable[None]]


@runtime_checkable
class ChatProvider(Protocol):
    """
    Generates assistant replies from a chat transcript.

    Cancelling the awaiting task aborts the in-flight request.
    """

    async def complete(self, messages: list[ChatMessage]) -> str:
        """Return the assistant reply."""
        ...

    async def stream_complete(
        self,
        messages: list[ChatMessage],
        on_token: TokenCallback,
    ) -> str:
        """Deliver the reply token by token, then return all of it."""
        ...


async def emit_token(on_token: TokenCallback, token: str) -> None:
    """Call a token callback that may or may not be a coroutine function."""
    result = on_token(token)
    if isinstance(result, Awaitable):
        await result


# -----------------------------------------------------------------------------
# HTTP helpers
# -----------------------------------------------------------------------------

def check_http_response(response: httpx.Response, source: str) -> None:
    """
    Raise a typed error for a non-2xx response.

    Auth failures are configuration problems; anything else is a bad response.
    The body must already be read (call ``aread()`` on streamed responses).
    """
    if response.is_success:
        return
    detail = response.text[:200] if response.text else ""
    if response.status_code in (401, 403):
        raise ConfigurationError(
            f"{source} rejected the credentials: HTTP {response.status_code}. {detail}"
        )
    raise ProviderResponseError(f"{source} failed: HTTP {response.status_code}. {detail}")


# -----------------------------------------------------------------------------
# Provider Registry
# -----------------------------------------------------------------------------

class ProviderRegistry:
    """
    Registry for discovering and instantiating providers.

    Providers are registered by name and can be instantiated from configuration.
    This allows recall.toml to name providers rather than requiring code changes.

    Example:
        registry = ProviderRegistry()
        registry.register_embedding("local", LocalEmbedding)

        # Later, from config:
        provider = registry.create_embedding("local", {"model": "nomic-embed-text"})
    """

    def __init__(self):
        self._embedding_providers: dict[str, type] = {}
        self._chat_providers: dict[str, type] = {}
        self._document_providers: dict[str, type] = {}
        self._lazy_loaded = False

    def _ensure_providers_loaded(self) -> None:
        """Import provider modules so they register themselves."""
        if self._lazy_loaded:
            return
        self._lazy_loaded = True
        from . import documents, embeddings, llm  # noqa: F401

    # Registration methods

    def register_embedding(self, name: str, provider_class: type) -> None:
        """Register an embedding provider class."""
        self._embedding_providers[name] = provider_class

    def register_chat(self, name: str, provider_class: type) -> None:
        """Register a chat provider class."""
        self._chat_providers[name] = provider_class

    def register_document(self, name: str, provider_class: type) -> None:
        """Register a document store class."""
        self._document_providers[name] = provider_class

    # Factory methods

    @staticmethod
    def _create_provider(kind: str, name: str, providers: dict, params: dict | None):
        """Shared factory logic for all provider types."""
        if name not in providers:
            available = ", ".join(providers.keys()) or "none"
            raise ConfigurationError(
                f"Unknown {kind} provider: '{name}'. "
                f"Available providers: {available}."
            )
        try:
            return providers[name](**(params or {}))
        except ConfigurationError:
            raise
        except TypeError as e:
            raise ConfigurationError(
                f"Invalid parameters for {kind} provider '{name}': {e}"
            ) from e

    def create_embedding(self, name: str, params: dict | None = None) -> EmbeddingProvider:
        """Create an embedding provider instance."""
        self._ensure_providers_loaded()
        return self._create_provider("embedding", name, self._embedding_providers, params)

    def create_chat(self, name: str, params: dict | None = None) -> ChatProvider:
        """Create a chat provider instance."""
        self._ensure_providers_loaded()
        return self._create_provider("chat", name, self._chat_providers, params)

    def create_document(self, name: str, params: dict | None = None) -> DocumentStore:
        """Create a document store instance."""
        self._ensure_providers_loaded()
        return self._create_provider("document", name, self._document_providers, params)

    # Introspection

    def list_embedding_providers(self) -> list[str]:
        """List registered embedding provider names."""
        self._ensure_providers_loaded()
        return list(self._embedding_providers.keys())

    def list_chat_providers(self) -> list[str]:
        """List registered chat provider names."""
        self._ensure_providers_loaded()
        return list(self._chat_providers.keys())


# Global registry instance
# Concrete providers register themselves on import
_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    return _registry
