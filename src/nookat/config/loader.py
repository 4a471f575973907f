# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nookat/config/loader.py

import logging
import os
import yaml
from pathlib import Path
from .models import NookatConfig

log = logging.getLogger("nookat")

ENV_CONFIG_FILE = "NOOKAT_CONFIG_FILE"
LOCAL_OVERRIDE_NAME = "config.local.yaml"


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is non-empty.
    """
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        elif value not in (None, ""):
            base[key] = value
    return base


def default_config_path() -> Path:
    return Path.home() / ".nookat" / "config.yaml"


def find_config_file(explicit: str | Path | None = None) -> Path | None:
    """
    Locate the config file using this priority:

    1. explicit path (``--config``); must exist
    2. NOOKAT_CONFIG_FILE environment variable
    3. ~/.nookat/config.yaml

    Returns None when nothing is found; built-in defaults apply.
    """
    if explicit:
        p = Path(explicit).expanduser()
        if not p.is_file():
            raise FileNotFoundError(f"Config file not found: {p}")
        return p

    env = os.environ.get(ENV_CONFIG_FILE)
    if env:
        p = Path(env).expanduser()
        if p.is_file():
            return p
        log.warning("%s=%s does not exist, ignoring", ENV_CONFIG_FILE, env)

    p = default_config_path()
    if p.is_file():
        return p
    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    data = yaml.safe_load(expanded) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def load_config(path: str | Path | None = None) -> NookatConfig:
    """
    Load and validate the nookat config.

    A ``config.local.yaml`` next to the main file is deep-merged on top of it,
    which keeps machine-specific overrides out of a shared config.
    """
    found = find_config_file(path)
    if found is None:
        log.debug("No config file found, using defaults")
        return NookatConfig()

    log.debug("Loading config from %s", found)
    data = _load_yaml(found)

    local = found.parent / LOCAL_OVERRIDE_NAME
    if local.is_file() and local != found:
        log.debug("Merging local overrides from %s", local)
        _deep_merge(data, _load_yaml(local))

    return NookatConfig.model_validate(data)
