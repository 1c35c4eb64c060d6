"""
Runtime settings for rate-card ingestion.

Values come from three layers, later layers winning:
  1. the defaults on ``Settings``
  2. an optional JSON config file (``ratecard-recon.json`` or ``--config``)
  3. ``RATECARD_RECON_*`` environment variables
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

DEFAULT_CONFIG_NAME = "ratecard-recon.json"

ENV_PREFIX = "RATECARD_RECON_"
ENV_KEYS = {
    "commit_chunk_size": "CHUNK_SIZE",
    "max_inline_slabs": "MAX_INLINE_SLABS",
    "max_inline_fees": "MAX_INLINE_FEES",
    "default_gst_percent": "DEFAULT_GST",
    "default_tcs_percent": "DEFAULT_TCS",
    "default_grace_days": "DEFAULT_GRACE_DAYS",
    "store_path": "STORE",
}


@dataclass(frozen=True)
class Settings:
    commit_chunk_size: int = 50
    max_inline_slabs: int = 10
    max_inline_fees: int = 10
    default_gst_percent: float = 18.0
    default_tcs_percent: float = 1.0
    default_grace_days: int = 0
    store_path: str = "ratecard-store.json"

    def to_dict(self) -> dict[str, Any]:
        return {field.name: getattr(self, field.name) for field in fields(self)}


DEFAULT_SETTINGS = Settings()

_FIELD_TYPES = {field.name: field.type for field in fields(Settings)}


def _coerce(key: str, value: Any) -> Any:
    kind = _FIELD_TYPES[key]
    try:
        if kind == "int":
            if isinstance(value, bool):
                raise ValueError
            number = float(value)
            if not number.is_integer():
                raise ValueError
            coerced: Any = int(number)
        elif kind == "float":
            if isinstance(value, bool):
                raise ValueError
            coerced = float(value)
        else:
            coerced = str(value).strip()
            if not coerced:
                raise ValueError
    except (TypeError, ValueError):
        raise ValueError(f"Invalid value for setting '{key}': {value!r}") from None

    if key in {"commit_chunk_size", "max_inline_slabs", "max_inline_fees"} and coerced < 1:
        raise ValueError(f"Setting '{key}' must be at least 1, got {coerced}")
    if key == "default_grace_days" and coerced < 0:
        raise ValueError(f"Setting '{key}' must not be negative, got {coerced}")
    return coerced


def settings_from_mapping(values: Mapping[str, Any], base: Settings = DEFAULT_SETTINGS) -> Settings:
    unknown = sorted(set(values) - set(_FIELD_TYPES))
    if unknown:
        raise ValueError(f"Unknown setting(s): {', '.join(unknown)}")
    return replace(base, **{key: _coerce(key, value) for key, value in values.items()})


def read_config_file(path: Path) -> dict[str, Any]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Could not read config {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"Config root must be a JSON object: {path}")
    return payload


def load_settings(
    path: "str | Path | None" = None,
    env: Mapping[str, str] | None = None,
) -> Settings:
    """
    Build settings from defaults, an optional config file and the environment.

    An explicit ``path`` must exist; the implicit ``ratecard-recon.json`` in the
    working directory is only read when present.
    """
    env = os.environ if env is None else env
    settings = DEFAULT_SETTINGS

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config not found: {config_path}")
        settings = settings_from_mapping(read_config_file(config_path), settings)
    else:
        implicit = Path.cwd() / DEFAULT_CONFIG_NAME
        if implicit.exists():
            settings = settings_from_mapping(read_config_file(implicit), settings)

    overrides = {
        key: env[ENV_PREFIX + suffix]
        for key, suffix in ENV_KEYS.items()
        if env.get(ENV_PREFIX + suffix)
    }
    if overrides:
        settings = settings_from_mapping(overrides, settings)
    return settings


def starter_config() -> str:
    return json.dumps(DEFAULT_SETTINGS.to_dict(), indent=2, sort_keys=True) + "\n"
