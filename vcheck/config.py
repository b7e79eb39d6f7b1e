"""Configuration file loading.

The YAML layout mirrors the historical ``config.yaml`` of the shell checker::

    global:            # required, fatal if missing or invalid
    defaults:          # optional default filters / region mode
    services_repo_map: # service key -> {display_name, repo, url_param_default}
    targets:           # list of deployment targets, in declaration order
    pinned_versions:   # optional service key -> reference tag
"""
from __future__ import annotations

import os
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from . import db
from .probe import parse_query

ALL = "all"
REGION_MODES = ("off", "all", "primary", "secondary")


class ConfigError(ValueError):
    """Structural configuration problem; aborts the whole run."""


class UnknownServiceError(KeyError):
    pass


class GlobalConfig(BaseModel):
    default_curl_timeout_seconds: float = Field(..., gt=0, description="Probe HTTP timeout")
    default_version_jq_query: str = Field(..., min_length=1, description="Extraction query, e.g. .version")
    service_url_template: str = Field(..., min_length=1)
    github_release_cache_ttl_seconds: int = Field(..., ge=0, description="0 disables the on-disk release cache")
    max_parallel: int = Field(1, ge=1, le=64, description="1 = sequential")

    @field_validator("default_version_jq_query")
    @classmethod
    def _query_supported(cls, v: str) -> str:
        parse_query(v)
        return v


class ServiceDescriptor(BaseModel):
    model_config = {"frozen": True}

    key: str
    display_name: str
    repo: str = Field(..., min_length=1, description="owner/name")
    url_param_default: str = ""

    @field_validator("url_param_default", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class Target(BaseModel):
    model_config = {"frozen": True}

    name: str = Field(..., min_length=1)
    service_key: str = Field(..., min_length=1)
    tenant: str = Field(..., min_length=1)
    environment: str = Field(..., min_length=1)
    region_url_param: str = ""
    service_url_param_override: str | None = None

    @field_validator("region_url_param", mode="before")
    @classmethod
    def _region_none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else str(v)

    @field_validator("service_url_param_override", mode="before")
    @classmethod
    def _blank_override(cls, v: Any) -> Any:
        if v is None or str(v).strip() in {"", "null"}:
            return None
        return str(v)

    @field_validator("tenant", "environment", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> Any:
        return v if v is None else str(v)


def parse_selection(raw: Any) -> frozenset[str] | None:
    """Parse a filter value: ``"all"`` / missing -> None, else a non-empty set.

    Accepts a list or a comma separated string.
    """
    if raw is None:
        return None
    if isinstance(raw, str):
        items = [p.strip() for p in raw.split(",")]
    elif isinstance(raw, (list, tuple, set, frozenset)):
        items = [p.strip() for x in raw for p in str(x).split(",")]
    else:
        raise ConfigError(f"Invalid filter value: {raw!r}")
    items = [p for p in items if p]
    if any(p.lower() == ALL for p in items):
        return None
    if not items:
        raise ConfigError("A filter must be 'all' or a non-empty list.")
    return frozenset(items)


class FilterDefaults(BaseModel):
    tenants: Any = ALL
    environments: Any = ALL
    services: Any = ALL
    region_mode: str = "off"

    @field_validator("region_mode", mode="before")
    @classmethod
    def _mode(cls, v: Any) -> Any:
        # YAML 1.1 reads a bare `off` as False.
        if v is False:
            return "off"
        v = str(v).strip().lower()
        if v not in REGION_MODES:
            raise ValueError(f"region_mode must be one of {', '.join(REGION_MODES)}")
        return v


class CheckConfig(BaseModel):
    global_: GlobalConfig
    defaults: FilterDefaults = FilterDefaults()
    services: dict[str, ServiceDescriptor] = {}
    targets: list[Target] = []
    pinned_versions: dict[str, str] = {}

    def service(self, key: str) -> ServiceDescriptor:
        return lookup_service(self.services, key)


def lookup_service(services: Mapping[str, ServiceDescriptor], key: str) -> ServiceDescriptor:
    try:
        return services[key]
    except KeyError:
        raise UnknownServiceError(key) from None


def _parse_targets(raw: Any) -> list[Target]:
    if not isinstance(raw, list) or not raw:
        raise ConfigError("No targets declared in config.")
    out: list[Target] = []
    for idx, item in enumerate(raw):
        if not isinstance(item, dict):
            db.log_event("WARN", f"Skipping target #{idx}: not a mapping")
            continue
        try:
            out.append(Target.model_validate(item))
        except ValidationError as e:
            name = item.get("name") or f"#{idx}"
            db.log_event("WARN", f"Skipping target {name}: {e.error_count()} invalid field(s)")
    if not out:
        raise ConfigError("No valid targets in config.")
    return out


def _mapping(data: dict, section: str) -> dict:
    raw = data.get(section) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"'{section}' must be a mapping.")
    return raw


def build_config(data: Any) -> CheckConfig:
    """Validate an already-parsed YAML document."""
    if not isinstance(data, dict):
        raise ConfigError("Config root must be a mapping.")
    try:
        global_cfg = GlobalConfig.model_validate(data.get("global") or {})
    except ValidationError as e:
        raise ConfigError(f"Invalid global configuration: {e}") from e

    services: dict[str, ServiceDescriptor] = {}
    for key, spec in _mapping(data, "services_repo_map").items():
        try:
            services[str(key)] = ServiceDescriptor.model_validate({"key": str(key), **(spec or {})})
        except (ValidationError, TypeError) as e:
            # Targets pointing at it are later dropped as unknown services.
            db.log_event("WARN", f"Skipping service {key}: {e}")

    try:
        defaults = FilterDefaults.model_validate(data.get("defaults") or {})
    except ValidationError as e:
        raise ConfigError(f"Invalid defaults: {e}") from e

    pins = {str(k): str(v) for k, v in _mapping(data, "pinned_versions").items() if v}

    return CheckConfig(
        global_=global_cfg,
        defaults=defaults,
        services=services,
        targets=_parse_targets(data.get("targets")),
        pinned_versions=pins,
    )


def load_config(path: str) -> CheckConfig:
    if not os.path.isfile(path):
        raise ConfigError(f"Config file '{path}' not found.")
    with open(path, encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Config file '{path}' is not valid YAML: {e}") from e
    return build_config(data)
