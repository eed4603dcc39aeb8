"""Configuration for Ideaforge.

Settings come from the packaged ``default.yaml``, overlaid by a user file
(``IDEAFORGE_CONFIG`` or ``~/.ideaforge/config.yaml``), then by a few
environment variables. Source definitions are merged by ``name`` so a user
file can retune one bundled source without restating the whole list.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Container, Mapping
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "default.yaml"
USER_CONFIG_PATH = Path("~/.ideaforge/config.yaml").expanduser()

CONFIG_ENV = "IDEAFORGE_CONFIG"
DB_PATH_ENV = "IDEAFORGE_DB_PATH"


def load_config(
    config_path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    env = os.environ if environ is None else environ
    explicit = config_path or env.get(CONFIG_ENV)
    user_path = Path(explicit).expanduser() if explicit else USER_CONFIG_PATH

    config = read_yaml(DEFAULT_CONFIG_PATH)
    if user_path.is_file():
        config = overlay(config, read_yaml(user_path))
    elif explicit:
        logger.warning("Config file %s not found, using defaults", user_path)

    if env.get(DB_PATH_ENV):
        config["db_path"] = env[DB_PATH_ENV]
    return config


def read_yaml(path: Path) -> dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must hold a mapping, got {type(data).__name__}")
    return data


def overlay(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    """Return ``base`` with ``extra`` laid over it. Neither input is modified."""
    merged = dict(base)
    for key, value in extra.items():
        current = merged.get(key)
        if key == "sources" and isinstance(current, list) and isinstance(value, list):
            merged[key] = _overlay_sources(current, value)
        elif isinstance(current, dict) and isinstance(value, dict):
            merged[key] = overlay(current, value)
        else:
            merged[key] = value
    return merged


def _overlay_sources(base: list, extra: list) -> list:
    by_name = {d.get("name"): i for i, d in enumerate(base) if isinstance(d, dict)}
    merged = list(base)
    for definition in extra:
        idx = by_name.get(definition.get("name")) if isinstance(definition, dict) else None
        if idx is None:
            merged.append(definition)
        else:
            merged[idx] = overlay(merged[idx], definition)
    return merged


def section(config: Mapping[str, Any], name: str) -> dict[str, Any]:
    """A top-level block such as ``scraper`` or ``server``; empty if unset."""
    return config.get(name) or {}


def get_db_path(config: Mapping[str, Any]) -> Path:
    return Path(config.get("db_path") or "~/.ideaforge/ideaforge.db").expanduser()


def get_source_definitions(
    config: Mapping[str, Any], kinds: Container[str] | None = None
) -> list[dict[str, Any]]:
    """Usable source definitions. Entries without a name, or of a kind not in
    ``kinds``, are logged and left out."""
    definitions = []
    for definition in config.get("sources") or []:
        if not isinstance(definition, dict) or not definition.get("name"):
            logger.warning("Skipping invalid source definition: %r", definition)
            continue
        if kinds is not None and definition.get("kind") not in kinds:
            logger.warning("Skipping invalid source definition: %r", definition)
            continue
        definitions.append(definition)
    return definitions
