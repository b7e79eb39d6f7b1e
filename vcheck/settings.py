from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


_DEFAULT_CACHE_DIR = os.path.join(os.path.expanduser("~"), ".cache", "version_checker")


@dataclass(frozen=True)
class Settings:
    # Core
    config_path: str = os.getenv("VCHECK_CONFIG", "config.yaml")
    cache_dir: str = os.getenv("VCHECK_CACHE_DIR", _DEFAULT_CACHE_DIR)
    workers: int = _env_int("VCHECK_WORKERS", 0)  # 0 = use global.max_parallel from the config file

    # Release listing
    release_source: str = os.getenv("VCHECK_RELEASE_SOURCE", "gh")  # gh|api
    gh_binary: str = os.getenv("VCHECK_GH_BINARY", "gh")
    gh_timeout_s: int = _env_int("VCHECK_GH_TIMEOUT_S", 30)
    github_api_url: str = os.getenv("VCHECK_GITHUB_API_URL", "https://api.github.com")
    github_token: str | None = os.getenv("VCHECK_GITHUB_TOKEN") or os.getenv("GITHUB_TOKEN")

    # Diagnostic event log (sqlite)
    enable_events: bool = _env_bool("VCHECK_ENABLE_EVENTS", True)
    db_path: str = os.getenv("VCHECK_DB_PATH", os.path.join(os.getenv("VCHECK_CACHE_DIR", _DEFAULT_CACHE_DIR), "vcheck.db"))


settings = Settings()
