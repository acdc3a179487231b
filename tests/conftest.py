"""
Shared pytest fixtures for vaultindex tests.

Provides a mock embedding provider so no Ollama server is needed.
"""

import hashlib
import os
from pathlib import Path

import pytest

from vaultindex.note_store import NoteStore


class MockEmbeddingProvider:
    """
    Deterministic mock embedding provider for testing.

    Generates consistent embeddings based on text hash - no model server.
    """

    dimension = 16
    model_name = "mock-model"

    def __init__(self):
        self.embed_calls = 0
        self.batch_calls = 0

    def embed(self, text: str) -> list[float]:
        """Generate deterministic embedding from text hash."""
        self.embed_calls += 1
        h = hashlib.md5(text.encode()).hexdigest()
        return [int(h[i:i+2], 16) / 255.0 for i in range(0, 32, 2)]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts."""
        self.batch_calls += 1
        return [self.embed(t) for t in texts]


class TableEmbeddingProvider:
    """Returns fixed vectors keyed by exact text; unknown text raises."""

    def __init__(self, vectors: dict[str, list[float]]):
        self.vectors = vectors
        self.embed_calls = 0

    @property
    def dimension(self):
        first = next(iter(self.vectors.values()), None)
        return len(first) if first else None

    def embed(self, text: str) -> list[float]:
        self.embed_calls += 1
        if text not in self.vectors:
            raise RuntimeError(f"no vector for {text!r}")
        return list(self.vectors[text])

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self.embed(t) for t in texts]


def write_note(root: Path, rel: str, text: str, mtime: float | None = None) -> Path:
    """Write a note (creating directories) and optionally pin its mtime."""
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(text.encode("utf-8"))
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def mock_embedding_provider():
    """Create a fresh MockEmbeddingProvider instance."""
    return MockEmbeddingProvider()


@pytest.fixture
def vault(tmp_path):
    """Empty vault directory."""
    root = tmp_path / "vault"
    root.mkdir()
    return root


@pytest.fixture
def store(tmp_path):
    """Note store in a temp directory, closed after the test."""
    s = NoteStore(tmp_path / "index" / "state.sqlite")
    yield s
    s.close()
