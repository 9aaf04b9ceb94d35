from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import yaml

from .storage import get_setting, set_setting


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class AppConfig:
    name: str


@dataclass(frozen=True)
class PathsConfig:
    data_dir: str


@dataclass(frozen=True)
class UpstreamConfig:
    api_base: str
    domain: str
    per_page: int
    timeout_seconds: int
    user_agent: str


@dataclass(frozen=True)
class SyncConfig:
    enabled: bool
    interval_minutes: int
    initial_delay_seconds: int
    incremental_page_delay_ms: int
    full_page_delay_ms: int


@dataclass(frozen=True)
class EnrichmentConfig:
    enabled: bool
    cache_ttl_days: int
    timeout_seconds: int
    lookup_delay_ms: int
    user_agent: str


@dataclass(frozen=True)
class ApiConfig:
    cache_ttl_seconds: int
    default_per_page: int
    max_per_page: int


@dataclass(frozen=True)
class Config:
    app: AppConfig
    paths: PathsConfig
    upstream: UpstreamConfig
    sync: SyncConfig
    enrichment: EnrichmentConfig
    api: ApiConfig


DEFAULT_CONFIG: dict[str, Any] = {
    "app": {
        "name": "mentionvault",
    },
    "paths": {
        "data_dir": "/data",
    },
    "upstream": {
        "api_base": "https://webmention.io/api/mentions.jf2",
        "domain": "",
        "per_page": 100,
        "timeout_seconds": 15,
        "user_agent": "mentionvault/0.1",
    },
    "sync": {
        "enabled": True,
        "interval_minutes": 15,
        "initial_delay_seconds": 10,
        "incremental_page_delay_ms": 500,
        "full_page_delay_ms": 1000,
    },
    "enrichment": {
        "enabled": True,
        "cache_ttl_days": 7,
        "timeout_seconds": 10,
        "lookup_delay_ms": 200,
        "user_agent": "mentionvault/0.1 (h-card discovery)",
    },
    "api": {
        "cache_ttl_seconds": 60,
        "default_per_page": 50,
        "max_per_page": 10000,
    },
}

CONFIG_KEY = "config.runtime"


def bootstrap_runtime_config(conn) -> dict[str, Any]:
    cfg = get_setting(conn, CONFIG_KEY, None)
    if cfg is None:
        set_setting(conn, CONFIG_KEY, _deep_copy(DEFAULT_CONFIG))
        cfg = get_setting(conn, CONFIG_KEY, None)
    if not isinstance(cfg, dict):
        raise ConfigError("config.runtime must be a JSON object")
    return cfg


def get_runtime_config(conn) -> dict[str, Any]:
    cfg = bootstrap_runtime_config(conn)
    errors = validate_runtime_config(cfg)
    if errors:
        raise ConfigError("Invalid config.runtime: " + "; ".join(errors))
    return cfg


def set_runtime_config(conn, cfg: dict[str, Any]) -> None:
    errors = validate_runtime_config(cfg)
    if errors:
        raise ConfigError("Invalid config.runtime: " + "; ".join(errors))
    set_setting(conn, CONFIG_KEY, _deep_copy(cfg))


def load_runtime_config(conn) -> Config:
    cfg = get_runtime_config(conn)
    return build_config(cfg)


def load_config_file(path: str) -> dict[str, Any]:
    with open(path, encoding="utf-8") as handle:
        try:
            loaded = yaml.safe_load(handle)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(loaded, dict):
        raise ConfigError(f"{path} must contain a mapping")
    return loaded


def dump_config(cfg: dict[str, Any]) -> str:
    return yaml.safe_dump(cfg, sort_keys=True, default_flow_style=False)


def validate_runtime_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config.runtime", errors)
    if not errors:
        _validate_ranges(cfg, errors)
    return errors


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in schema.keys():
        if key not in value:
            errors.append(f"missing {path}.{key}")
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        if not isinstance(value, dict):
            errors.append(f"{path} must be an object")
            return
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if not isinstance(value, int) or isinstance(value, bool):
            errors.append(f"{path} must be an integer")
        return
    if isinstance(default, str):
        if not isinstance(value, str):
            errors.append(f"{path} must be a string")
        return


def _validate_ranges(cfg: dict[str, Any], errors: list[str]) -> None:
    per_page = cfg["upstream"]["per_page"]
    if per_page < 1:
        errors.append("config.runtime.upstream.per_page must be positive")
    if cfg["sync"]["interval_minutes"] < 1:
        errors.append("config.runtime.sync.interval_minutes must be at least 1")
    if cfg["enrichment"]["cache_ttl_days"] < 0:
        errors.append("config.runtime.enrichment.cache_ttl_days must not be negative")
    if cfg["api"]["max_per_page"] < 1:
        errors.append("config.runtime.api.max_per_page must be positive")


def build_config(cfg: dict[str, Any]) -> Config:
    app_cfg = cfg.get("app") or {}
    paths_cfg = cfg.get("paths") or {}
    upstream_cfg = cfg.get("upstream") or {}
    sync_cfg = cfg.get("sync") or {}
    enrichment_cfg = cfg.get("enrichment") or {}
    api_cfg = cfg.get("api") or {}

    upstream = UpstreamConfig(
        api_base=str(upstream_cfg.get("api_base")),
        domain=str(upstream_cfg.get("domain")),
        per_page=int(upstream_cfg.get("per_page")),
        timeout_seconds=int(upstream_cfg.get("timeout_seconds")),
        user_agent=str(upstream_cfg.get("user_agent")),
    )

    sync = SyncConfig(
        enabled=bool(sync_cfg.get("enabled")),
        interval_minutes=int(sync_cfg.get("interval_minutes")),
        initial_delay_seconds=int(sync_cfg.get("initial_delay_seconds")),
        incremental_page_delay_ms=int(sync_cfg.get("incremental_page_delay_ms")),
        full_page_delay_ms=int(sync_cfg.get("full_page_delay_ms")),
    )

    enrichment = EnrichmentConfig(
        enabled=bool(enrichment_cfg.get("enabled")),
        cache_ttl_days=int(enrichment_cfg.get("cache_ttl_days")),
        timeout_seconds=int(enrichment_cfg.get("timeout_seconds")),
        lookup_delay_ms=int(enrichment_cfg.get("lookup_delay_ms")),
        user_agent=str(enrichment_cfg.get("user_agent")),
    )

    api = ApiConfig(
        cache_ttl_seconds=int(api_cfg.get("cache_ttl_seconds")),
        default_per_page=int(api_cfg.get("default_per_page")),
        max_per_page=int(api_cfg.get("max_per_page")),
    )

    return Config(
        app=AppConfig(name=str(app_cfg.get("name"))),
        paths=PathsConfig(data_dir=str(paths_cfg.get("data_dir"))),
        upstream=upstream,
        sync=sync,
        enrichment=enrichment,
        api=api,
    )


def default_config() -> Config:
    return build_config(_deep_copy(DEFAULT_CONFIG))


def _deep_copy(value: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(value))
