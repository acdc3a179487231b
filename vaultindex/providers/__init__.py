"""
Embedding providers for vaultindex.

Concrete providers register themselves with the global registry when
``vaultindex.providers.embeddings`` is imported (the registry does this
lazily on first use).
"""

from .base import (
    EmbeddingProvider,
    ProviderRegistry,
    get_registry,
)

__all__ = [
    "EmbeddingProvider",
    "ProviderRegistry",
    "get_registry",
]
