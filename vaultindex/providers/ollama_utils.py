"""
Shared Ollama utilities: base URL resolution and model availability check.
"""

import logging
import os

import requests

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://127.0.0.1:11434"


def ollama_base_url(base_url: str | None = None) -> str:
    """Resolve the Ollama server URL: explicit value, then $OLLAMA_HOST, then localhost.

    OLLAMA_HOST is often set without a scheme ("0.0.0.0:11434"), so one is
    added when missing.
    """
    url = base_url or os.environ.get("OLLAMA_HOST") or DEFAULT_OLLAMA_URL
    if "://" not in url:
        url = f"http://{url}"
    return url.rstrip("/")


def ollama_model_name(model: str) -> str:
    """Strip a registry-style prefix ("ollama/nomic-embed-text" -> "nomic-embed-text")."""
    return model.rsplit("/", 1)[-1]


def ollama_has_model(base_url: str, model: str) -> bool:
    """Check if an Ollama model is available locally.

    Raises RuntimeError if Ollama is unreachable.
    """
    # Ollama strips :latest
    bare = model.split(":")[0] if ":" in model else model

    try:
        resp = requests.get(f"{base_url}/api/tags", timeout=5)
        resp.raise_for_status()
    except requests.RequestException as e:
        raise RuntimeError(
            f"Cannot reach Ollama at {base_url}. "
            "Is Ollama running? Start it with: ollama serve"
        ) from e

    installed = {m["name"] for m in resp.json().get("models", [])}
    # Installed names look like "name:tag"
    if model in installed or f"{model}:latest" in installed:
        return True
    if bare in installed or f"{bare}:latest" in installed:
        return True
    logger.debug("Ollama model %s not installed (have: %s)", model, sorted(installed))
    return False
