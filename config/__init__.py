"""Network-aware JSON configuration loader."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Tuple

CONFIG_ROOT = Path(__file__).resolve().parent
"""Root directory for repository configuration files."""

NETWORK_ENV_VAR = "VEILEDCASTS_NETWORK"
"""Environment variable selecting network specific overrides (devnet, mainnet)."""

_DISABLED_VALUES = {"", "0", "false", "off", "no", "none", "null"}


def _copy(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _copy(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_copy(item) for item in value]
    return value


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = {key: _copy(value) for key, value in base.items()}
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = _copy(value)
    return result


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    return payload if isinstance(payload, dict) else {}


def _normalise(value: str | None) -> str | None:
    if value is None:
        return None
    candidate = value.strip().lower()
    if candidate in _DISABLED_VALUES:
        return None
    return candidate


def load_config_with_sources(
    name: str,
    *,
    network: str | None = None,
) -> Tuple[Dict[str, Any], Tuple[Path, ...]]:
    """Load ``name`` merged with its network override, returning the files read."""

    network = _normalise(network if network is not None else os.getenv(NETWORK_ENV_VAR))
    config: Dict[str, Any] = {}
    sources: list[Path] = []

    base = CONFIG_ROOT / f"{name}.json"
    if base.exists():
        config = _load_json(base)
        sources.append(base)
    if network:
        override_path = CONFIG_ROOT / f"{name}.{network}.json"
        if override_path.exists():
            config = _deep_merge(config, _load_json(override_path))
            sources.append(override_path)

    return config, tuple(sources)


def load_config(name: str, *, network: str | None = None) -> Dict[str, Any]:
    """Load configuration for ``name`` with its network override."""

    config, _ = load_config_with_sources(name, network=network)
    return config


__all__ = [
    "CONFIG_ROOT",
    "NETWORK_ENV_VAR",
    "load_config",
    "load_config_with_sources",
]
