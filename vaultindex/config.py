"""
Configuration management for vaultindex.

One TOML file, ``vaultindex.toml``, in the config directory:

    [config]
    version = 1

    [vault]
    path = "~/Obsidian"

    [store]
    path = "~/.vaultindex/state.sqlite"

    [embedding]
    name = "ollama"
    model = "nomic-embed-text"

    [search]
    top_k = 5

Only the CLI reads configuration. The core functions (reconcile, embed,
search) take explicit paths, stores and providers.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import tomli_w

CONFIG_FILENAME = "vaultindex.toml"
CONFIG_VERSION = 1

DEFAULT_VAULT_PATH = Path.home() / "Obsidian"
DEFAULT_STORE_PATH = Path.home() / ".vaultindex" / "state.sqlite"
DEFAULT_TOP_K = 5
DEFAULT_EMBEDDING = {"name": "ollama", "model": "nomic-embed-text"}


@dataclass
class ProviderConfig:
    """A provider name plus the keyword arguments for its constructor."""
    name: str
    params: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_section(cls, section: dict[str, Any]) -> "ProviderConfig":
        params = {k: v for k, v in section.items() if k != "name"}
        return cls(name=section.get("name", ""), params=params)

    def to_section(self) -> dict[str, Any]:
        return {"name": self.name, **self.params}


@dataclass
class IndexConfig:
    """Complete vaultindex configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    vault: Optional[Path] = None
    store: Path = DEFAULT_STORE_PATH
    embedding: ProviderConfig = field(
        default_factory=lambda: ProviderConfig.from_section(DEFAULT_EMBEDDING)
    )
    top_k: int = DEFAULT_TOP_K

    @property
    def config_path(self) -> Path:
        return self.path / CONFIG_FILENAME


def get_config_dir() -> Path:
    """
    Resolve the config directory.

    Checks, in order: VAULTINDEX_CONFIG_DIR, $XDG_CONFIG_HOME/vaultindex,
    ~/.config/vaultindex.
    """
    explicit = os.environ.get("VAULTINDEX_CONFIG_DIR")
    if explicit:
        return Path(explicit).expanduser()
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg).expanduser() if xdg else Path.home() / ".config"
    return base / "vaultindex"


def _expand(value: Any) -> Optional[Path]:
    if not value:
        return None
    if not isinstance(value, str):
        raise ValueError(f"path must be a string, got {value!r}")
    return Path(value).expanduser()


def _apply_env_overrides(config: IndexConfig) -> IndexConfig:
    vault = _expand(os.environ.get("VAULTINDEX_VAULT"))
    if vault is not None:
        config.vault = vault
    store = _expand(os.environ.get("VAULTINDEX_DB"))
    if store is not None:
        config.store = store
    return config


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ValueError(f"[{name}] must be a table, got {section!r}")
    return section


def _read_top_k(data: dict[str, Any]) -> int:
    top_k = _section(data, "search").get("top_k", DEFAULT_TOP_K)
    # bool is an int subclass; reject it explicitly
    if isinstance(top_k, bool) or not isinstance(top_k, int) or top_k <= 0:
        raise ValueError(f"search.top_k must be a positive integer, got {top_k!r}")
    return top_k


def load_config(config_dir: Path) -> IndexConfig:
    """
    Read ``vaultindex.toml`` from ``config_dir``.

    VAULTINDEX_VAULT and VAULTINDEX_DB, when set, replace the file's vault
    and store paths (without being written back).

    Raises:
        FileNotFoundError: If there is no config file
        ValueError: If the file is not valid TOML, is from a newer
            version, or has a bad value
    """
    config_path = config_dir / CONFIG_FILENAME
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    try:
        data = tomllib.loads(config_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid config {config_path}: {e}") from e

    meta = _section(data, "config")
    version = meta.get("version", CONFIG_VERSION)
    if isinstance(version, bool) or not isinstance(version, int):
        raise ValueError(f"config.version must be an integer, got {version!r}")
    if version > CONFIG_VERSION:
        raise ValueError(
            f"{config_path} has config version {version}; "
            f"this vaultindex understands up to {CONFIG_VERSION}"
        )

    config = IndexConfig(
        path=config_dir,
        version=version,
        created=meta.get("created", ""),
        vault=_expand(_section(data, "vault").get("path")),
        store=_expand(_section(data, "store").get("path")) or DEFAULT_STORE_PATH,
        embedding=ProviderConfig.from_section(_section(data, "embedding") or DEFAULT_EMBEDDING),
        top_k=_read_top_k(data),
    )
    return _apply_env_overrides(config)


def save_config(config: IndexConfig) -> None:
    """Write ``config`` to its directory, creating the directory if needed."""
    data: dict[str, Any] = {
        "config": {"version": config.version, "created": config.created},
    }
    if config.vault is not None:
        data["vault"] = {"path": str(config.vault)}
    data["store"] = {"path": str(config.store)}
    data["embedding"] = config.embedding.to_section()
    data["search"] = {"top_k": config.top_k}

    config.path.mkdir(parents=True, exist_ok=True)
    config.config_path.write_text(tomli_w.dumps(data), encoding="utf-8")


def load_or_create_config(config_dir: Optional[Path] = None) -> IndexConfig:
    """
    Load the config, writing a default file first if there is none.

    This is what the CLI calls on every command.
    """
    config_dir = config_dir or get_config_dir()
    if (config_dir / CONFIG_FILENAME).exists():
        return load_config(config_dir)
    config = IndexConfig(path=config_dir)
    save_config(config)
    return _apply_env_overrides(config)
