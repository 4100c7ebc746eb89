"""YAML configuration loading.

Safe YAML loading via ``yaml.safe_load`` for
[BaseService.from_yaml()][notestream.core.base_service.BaseService.from_yaml]
and the CLI.

Examples:
    ```python
    from notestream.core.yaml import load_yaml

    config = load_yaml("config/feed.yaml")
    ```
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError


def load_yaml(config_path: str | Path) -> dict[str, Any]:
    """Load and parse a YAML configuration file.

    Args:
        config_path: Path to the YAML file (absolute or relative).

    Returns:
        Parsed configuration as a nested dictionary; ``{}`` for an empty file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the file is not valid YAML or its top level
            is not a mapping.

    Warning:
        The structure of the result is not validated here. Pass it to a
        Pydantic model such as
        [IngestionConfig][notestream.services.ingestion.IngestionConfig].
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config {config_path} must contain a mapping, got {type(data).__name__}"
        )
    return data
