from __future__ import annotations

import json
import os
import warnings
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .models import RepoInfo, parse_repo_info

DEFAULT_CONFIG_PATH = Path("~/.config/cardboard/config.json").expanduser()

CONFIG_ENV_OVERRIDES = {
    "repos": "CARDBOARD_REPOS",
    "labels": "CARDBOARD_LABELS",
    "github_token": "GITHUB_TOKEN",
    "api_base_url": "CARDBOARD_API_BASE_URL",
    "can_cache_lots": "CARDBOARD_CAN_CACHE_LOTS",
    "poll_short_s": "CARDBOARD_POLL_SHORT_S",
    "poll_long_s": "CARDBOARD_POLL_LONG_S",
    "per_page": "CARDBOARD_PER_PAGE",
    "db_path": "CARDBOARD_DB_PATH",
    "request_timeout_s": "CARDBOARD_REQUEST_TIMEOUT_S",
}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("CARDBOARD_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class CardboardConfig:
    # "owner/name" entries; "owner/*" expands to every repository of owner.
    repos: list[str] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)
    github_token: str | None = None
    api_base_url: str = "https://api.github.com"
    # Fetch full issue history per repository; off means first page of open issues only.
    can_cache_lots: bool = True
    poll_short_s: int = 30
    poll_long_s: int = 300
    per_page: int = 100
    db_path: str | None = None
    request_timeout_s: float = 30.0

    def repo_infos(self) -> list[RepoInfo]:
        return [parse_repo_info(value) for value in self.repos]


def _as_bool(value: object, default: bool, *, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=3)
    return default


def _as_int(value: object, default: int, *, key: str) -> int:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=3)
        return default


def _as_float(value: object, default: float, *, key: str) -> float:
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=3)
        return default


def _as_str_list(value: object, default: list[str], *, key: str) -> list[str]:
    # Env overrides arrive as comma separated strings.
    if isinstance(value, str):
        value = value.split(",")
    if isinstance(value, list):
        return [item.strip() for item in value if isinstance(item, str) and item.strip()]
    warnings.warn(f"Invalid list for {key}: {value!r}", RuntimeWarning, stacklevel=3)
    return default


_COERCERS: dict[str, Callable[..., Any]] = {
    "repos": _as_str_list,
    "labels": _as_str_list,
    "can_cache_lots": _as_bool,
    "poll_short_s": _as_int,
    "poll_long_s": _as_int,
    "per_page": _as_int,
    "request_timeout_s": _as_float,
}


def load_config(path: Path | None = None) -> CardboardConfig:
    """File values first, then environment overrides; unknown keys are ignored."""
    cfg = CardboardConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError:
            data = {}
        if isinstance(data, dict):
            _apply_dict(cfg, data)
    _apply_dict(cfg, get_env_overrides())
    return cfg


def _apply_dict(cfg: CardboardConfig, data: dict[str, Any]) -> None:
    for key, value in data.items():
        if not hasattr(cfg, key) or value is None:
            continue
        coerce = _COERCERS.get(key)
        if coerce is not None:
            value = coerce(value, getattr(cfg, key), key=key)
        setattr(cfg, key, value)
