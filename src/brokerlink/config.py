from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import ValidationError

from .settings import Settings

ENV_PREFIX = "BROKERLINK_"
_RESERVED = {"CONFIG", "LOG_LEVEL"}


def _deep_set(obj: dict[str, Any], path: list[str], value: Any) -> None:
    cur = obj
    for key in path[:-1]:
        nxt = cur.get(key)
        if not isinstance(nxt, dict):
            nxt = {}
            cur[key] = nxt
        cur = nxt
    cur[path[-1]] = value


def _parse_env_value(raw: str) -> Any:
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw


def apply_env_overrides(
    data: dict[str, Any],
    environ: Mapping[str, str] | None = None,
    *,
    prefix: str = ENV_PREFIX,
) -> dict[str, Any]:
    """Merge ``BROKERLINK_A__B=value`` variables into ``data['a']['b']``."""
    environ = os.environ if environ is None else environ
    merged = dict(data)

    for key, raw_value in environ.items():
        if not key.startswith(prefix):
            continue

        remainder = key[len(prefix):]
        if remainder in _RESERVED:
            continue

        path = [p.lower() for p in remainder.split("__") if p]
        if path:
            _deep_set(merged, path, _parse_env_value(raw_value))

    return merged


def read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}

    loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError(f"Config root must be a mapping, got: {type(loaded)!r}")
    return loaded


def load_settings(
    config_path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    environ = os.environ if environ is None else environ
    if config_path is None:
        config_path = environ.get(f"{ENV_PREFIX}CONFIG", "config.yml")

    data = apply_env_overrides(read_config_file(Path(config_path)), environ)

    try:
        return Settings.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc
