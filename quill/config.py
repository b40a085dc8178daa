"""Site configuration loading for Quill.

Key functions:
- load_config: Loads quill.yaml with defaults applied.
- load_data: Loads site data from YAML files in the data directory.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "quill.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "output_dir": "output",
    "port": 4000,
    "root_url": "",
    "posts_dir": "posts",
}


class ConfigError(Exception):
    """Invalid or incomplete site configuration.

    Attributes:
        message: Human-readable error message.
        path: Configuration file involved, when known.
    """

    def __init__(self, message: str, path: Path | None = None):
        self.message = message
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


def _read_yaml(path: Path) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML: {exc}", path) from exc


def load_config(project_root: Path) -> dict[str, Any]:
    """Load site configuration from quill.yaml.

    Args:
        project_root: Root directory of the project.

    Returns:
        Dictionary containing configuration values, with defaults applied.

    Raises:
        ConfigError: If the file is not valid YAML or not a mapping.
    """
    config_path = project_root / CONFIG_FILENAME
    config = DEFAULT_CONFIG.copy()
    if config_path.exists():
        loaded = _read_yaml(config_path) or {}
        if not isinstance(loaded, dict):
            raise ConfigError("Top level must be a mapping", config_path)
        config.update(loaded)
    else:
        logger.debug("No %s in %s; using defaults", CONFIG_FILENAME, project_root)
    return config


def load_data(project_root: Path) -> dict[str, Any]:
    """Load site data from YAML files in the data directory.

    ``site.yaml`` is merged into the top level; every other file is stored
    under its stem (``data/authors.yaml`` becomes ``data.authors``).
    """
    data_dir = project_root / "data"
    data: dict[str, Any] = {}
    if not data_dir.exists():
        return data
    for path in sorted([*data_dir.glob("*.yaml"), *data_dir.glob("*.yml")]):
        payload = _read_yaml(path)
        if payload is None:
            continue
        if path.stem == "site":
            if not isinstance(payload, dict):
                raise ConfigError("site data must be a mapping", path)
            data.update(payload)
        else:
            data[path.stem] = payload
    return data
