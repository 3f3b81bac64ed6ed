"""
Provider interfaces and implementations.
"""

from .base import (
    ChatMessage,
    ChatProvider,
    DocumentStore,
    EmbeddingProvider,
    ProviderRegistry,
    get_registry,
)

__all__ = [
    "ChatMessage",
    "ChatProvider",
    "DocumentStore",
    "EmbeddingProvider",
    "ProviderRegistry",
    "get_registry",
]
