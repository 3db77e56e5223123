import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from pydantic import ValidationError

from .models import GeneratorSettings, TileType

logger = logging.getLogger(__name__)

CONFIG_DIR = Path("config")

TILE_CHARS = {
    TileType.WALL: '#',
    TileType.FLOOR: '.',
    TileType.DOOR: '+',
    TileType.SECRET_DOOR: 's',
    TileType.START: '<',
    TileType.END: '>',
}


def load_config(config_file: str, config_dir: Path = CONFIG_DIR) -> Dict[str, Any]:
    """Load configuration from JSON file."""
    config_path = Path(config_dir) / config_file
    with open(config_path, "r") as f:
        return json.load(f)


def load_settings(config_file: str = "generator.json", config_dir: Path = CONFIG_DIR) -> GeneratorSettings:
    """
    Map config/generator.json onto GeneratorSettings.

    Missing files fall back to the defaults; a malformed file is an error.
    """
    try:
        config = load_config(config_file, config_dir)
    except FileNotFoundError:
        logger.debug(f"No {config_file} in {config_dir}, using default settings")
        return GeneratorSettings()

    llm = config.get("llm", {})
    values: Dict[str, Any] = {}
    for key in ("provider", "max_tokens", "timeout", "max_attempts"):
        if key in llm:
            values[key] = llm[key]

    anthropic_cfg = config.get("anthropic", {})
    for key in ("model", "temperature"):
        if key in anthropic_cfg:
            values[key] = anthropic_cfg[key]

    ollama_cfg = config.get("ollama", {})
    for key in ("model", "endpoint", "temperature"):
        if key in ollama_cfg:
            values[f"ollama_{key}"] = ollama_cfg[key]

    map_defaults = config.get("map_defaults", {})
    if "width" in map_defaults:
        values["default_width"] = map_defaults["width"]
    if "height" in map_defaults:
        values["default_height"] = map_defaults["height"]

    try:
        return GeneratorSettings(**values)
    except ValidationError as e:
        raise ValueError(f"Invalid settings in {config_file}: {e}") from e


class KeyStore(ABC):
    """Caller-side credential storage. The generation core never touches this."""

    @abstractmethod
    def get(self, name: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, name: str, value: str) -> None:
        pass

    @abstractmethod
    def delete(self, name: str) -> None:
        pass


class SecretsFileKeyStore(KeyStore):
    """Keys kept in config/secrets.json."""

    def __init__(self, path: Path = None):
        self.path = Path(path) if path else CONFIG_DIR / "secrets.json"

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        with open(self.path, "r") as f:
            return json.load(f)

    def _save(self, secrets: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(secrets, f, indent=2)

    def get(self, name: str) -> Optional[str]:
        return self._load().get(name) or None

    def set(self, name: str, value: str) -> None:
        secrets = self._load()
        secrets[name] = value
        self._save(secrets)

    def delete(self, name: str) -> None:
        secrets = self._load()
        if secrets.pop(name, None) is not None:
            self._save(secrets)


def render_grid(grid: Sequence[Sequence[int]]) -> str:
    """Plain ASCII preview of a grid for terminal output."""
    return '\n'.join(''.join(TILE_CHARS.get(cell, '?') for cell in row) for row in grid)


def render_legend() -> str:
    return "  ".join(f"{TILE_CHARS[t]} {t.name.lower()}" for t in TileType)
