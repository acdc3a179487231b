"""
Embedding provider interface and name-based registry.

A provider turns note text into a vector. Any object with ``dimension``,
``embed`` and ``embed_batch`` qualifies; no base class is needed.
"""

from collections.abc import Callable
from typing import Any, Optional, Protocol, runtime_checkable


@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Maps text to a fixed-length float vector.

    Notes and queries must go through the same provider and model, or the
    stored vectors and the query vector live in different spaces.

    Minimal example:
        class HashEmbedding:
            dimension = 16

            def embed(self, text):
                digest = hashlib.sha256(text.encode()).digest()
                return [b / 255.0 for b in digest[:16]]

            def embed_batch(self, texts):
                return [self.embed(t) for t in texts]
    """

    @property
    def dimension(self) -> Optional[int]:
        """Vector length, or None until a remote provider has answered once."""
        ...

    def embed(self, text: str) -> list[float]:
        """Vector for one note body or query."""
        ...

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Vectors for several texts, in input order."""
        ...


ProviderFactory = Callable[..., EmbeddingProvider]


class ProviderRegistry:
    """
    Embedding providers by name, so the config file can say
    ``[embedding] name = "ollama"`` plus keyword parameters.

    Example:
        registry.register("ollama", OllamaEmbedding)
        provider = registry.create("ollama", {"model": "nomic-embed-text"})
    """

    def __init__(self):
        self._factories: dict[str, ProviderFactory] = {}
        self._builtins_loaded = False

    def _load_builtins(self) -> None:
        if self._builtins_loaded:
            return
        self._builtins_loaded = True
        # Registers the bundled providers as a side effect
        from . import embeddings  # noqa: F401

    def register(self, name: str, factory: ProviderFactory) -> None:
        self._factories[name] = factory

    def available(self) -> list[str]:
        """Registered provider names, built-ins included."""
        self._load_builtins()
        return sorted(self._factories)

    def create(self, name: str, params: Optional[dict[str, Any]] = None) -> EmbeddingProvider:
        """
        Instantiate a provider with keyword parameters from config.

        Raises:
            ValueError: If no provider is registered under ``name``
            RuntimeError: If the provider's constructor fails (missing
                optional package, missing API key, bad parameter)
        """
        self._load_builtins()
        factory = self._factories.get(name)
        if factory is None:
            raise ValueError(
                f"Unknown embedding provider: '{name}'. "
                f"Available providers: {', '.join(self.available()) or 'none'}."
            )
        try:
            return factory(**(params or {}))
        except ImportError as e:
            raise RuntimeError(
                f"Embedding provider '{name}' needs an optional package: {e}"
            ) from e
        except (TypeError, ValueError, RuntimeError) as e:
            raise RuntimeError(f"Failed to create embedding provider '{name}': {e}") from e


_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    """The process-wide registry the CLI resolves config names against."""
    return _registry
