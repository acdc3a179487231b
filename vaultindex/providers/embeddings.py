"""
Embedding providers.

- ollama: local Ollama server over HTTP (default)
- openai: OpenAI embeddings API (optional ``openai`` dependency)
"""

import logging
import os

import requests

from ..errors import EmbeddingError
from .base import get_registry
from .ollama_utils import ollama_base_url, ollama_has_model, ollama_model_name

logger = logging.getLogger(__name__)

_EMBED_PATH = "/api/embed"


class OllamaEmbedding:
    """
    Embedding provider using Ollama's /api/embed endpoint.

    Respects OLLAMA_HOST env var (default: http://127.0.0.1:11434).
    A base URL that already ends in /api/embed is used as the endpoint.
    """

    def __init__(
        self,
        model: str = "nomic-embed-text",
        base_url: str | None = None,
        timeout: float = 60,
    ):
        self.model = ollama_model_name(model)
        url = ollama_base_url(base_url)
        if url.lower().endswith(_EMBED_PATH):
            self.endpoint = url
            self.base_url = url[: -len(_EMBED_PATH)]
        else:
            self.endpoint = f"{url}{_EMBED_PATH}"
            self.base_url = url
        self.timeout = timeout
        self._dimension: int | None = None

    @property
    def dimension(self) -> int | None:
        return self._dimension

    def ensure_available(self) -> None:
        """Fail early if the server is down or the model is not pulled."""
        try:
            available = ollama_has_model(self.base_url, self.model)
        except RuntimeError as e:
            raise EmbeddingError(str(e)) from e
        if not available:
            raise EmbeddingError(
                f"Ollama model '{self.model}' is not installed. "
                f"Pull it with: ollama pull {self.model}"
            )

    def embed(self, text: str) -> list[float]:
        return self._request([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return self._request(texts)

    def _request(self, inputs: list[str]) -> list[list[float]]:
        try:
            response = requests.post(
                self.endpoint,
                json={"model": self.model, "input": inputs},
                timeout=(10, self.timeout),  # (connect, read)
            )
        except requests.RequestException as e:
            raise EmbeddingError(f"Cannot reach Ollama at {self.base_url}: {e}") from e

        if not response.ok:
            detail = response.text[:200] if response.text else ""
            raise EmbeddingError(
                f"Ollama embedding failed (model={self.model}): "
                f"HTTP {response.status_code} from {self.base_url}. {detail}"
            )

        try:
            embeddings = response.json().get("embeddings") or []
        except ValueError as e:
            raise EmbeddingError(f"Ollama returned invalid JSON: {e}") from e
        if len(embeddings) < len(inputs):
            raise EmbeddingError(
                f"Ollama returned {len(embeddings)} embeddings for {len(inputs)} inputs"
            )

        if self._dimension is None and embeddings[0]:
            self._dimension = len(embeddings[0])
        return [[float(x) for x in vec] for vec in embeddings]


class OpenAIEmbedding:
    """
    Embedding provider using OpenAI's embeddings API.

    Requires: VAULTINDEX_OPENAI_API_KEY or OPENAI_API_KEY environment variable.
    """

    DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: str | None = None,
    ):
        try:
            from openai import OpenAI, OpenAIError
        except ImportError:
            raise RuntimeError("OpenAIEmbedding requires 'openai' library")

        self.model = model

        key = api_key or os.environ.get("VAULTINDEX_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")
        if not key:
            raise ValueError(
                "OpenAI API key required. Set VAULTINDEX_OPENAI_API_KEY or OPENAI_API_KEY"
            )

        self._client = OpenAI(api_key=key)
        self._api_error = OpenAIError
        self._dimension = self.DIMENSIONS.get(model)

    @property
    def dimension(self) -> int | None:
        return self._dimension

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            response = self._client.embeddings.create(model=self.model, input=texts)
        except self._api_error as e:
            raise EmbeddingError(f"OpenAI embedding failed (model={self.model}): {e}") from e
        vectors = [list(item.embedding) for item in response.data]
        if vectors and self._dimension is None:
            self._dimension = len(vectors[0])
        return vectors


# Register providers
_registry = get_registry()
_registry.register("ollama", OllamaEmbedding)
_registry.register("openai", OpenAIEmbedding)
