"""Configuration loader for the offline proxy."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from partitions.store import PartitionId

DEFAULT_EXCLUSIONS = (
    "/server/",
    "/lib/firebase-admin",
    "firebase-admin-db",
    "/models/",
    "/api/main.ts",
    "/api/main.js",
)

DEFAULT_APP_SHELL = (
    "/",
    "/index.html",
    "/manifest.webmanifest",
    "/icon-192.png",
    "/icon-512.png",
    "/favicon.svg",
)


@dataclass(frozen=True)
class PartitionConfig:
    static: int = 31536000   # 1 year
    images: int = 2592000    # 30 days
    api: int = 3600          # 1 hour
    runtime: int = 86400     # 1 day

    def max_ages(self) -> Dict[PartitionId, int]:
        return {
            PartitionId.STATIC: self.static,
            PartitionId.IMAGES: self.images,
            PartitionId.API: self.api,
            PartitionId.RUNTIME: self.runtime,
        }


@dataclass(frozen=True)
class NotificationConfig:
    title: str = "Offline Proxy"
    body: str = "You have a new notification"
    icon: str = "/icon-192.png"
    badge: str = "/icon-192.png"
    tag: str = "app-notification"
    views: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ProxyConfig:
    origin: str
    listen_host: str
    listen_port: int
    generation: str
    partition_prefix: str
    cache_db_path: Path
    queue_db_path: Path
    quota_bytes: Optional[int]
    hot_entries: int
    fetch_timeout_sec: float
    partitions: PartitionConfig
    api_prefix: str
    static_prefix: str
    exclusions: Tuple[str, ...]
    app_shell: Tuple[str, ...]
    skip_waiting: bool
    probe_path: str
    probe_ttl_sec: int
    probe_interval_sec: int
    sweep_interval_sec: int
    notifications: NotificationConfig

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProxyConfig":
        part_data = data.get("partitions", {}) or {}
        note_data = data.get("notifications", {}) or {}
        quota = data.get("quota_bytes")
        return cls(
            origin=str(data.get("origin", "http://127.0.0.1:8080")).rstrip("/"),
            listen_host=data.get("listen_host", "127.0.0.1"),
            listen_port=int(data.get("listen_port", 8787)),
            generation=str(data.get("generation", "v2")),
            partition_prefix=data.get("partition_prefix", "offline"),
            cache_db_path=Path(os.path.expanduser(
                data.get("cache_db_path", "~/.offline-proxy/partitions.db")
            )),
            queue_db_path=Path(os.path.expanduser(
                data.get("queue_db_path", "~/.offline-proxy/outbox.db")
            )),
            quota_bytes=int(quota) if quota is not None else None,
            hot_entries=int(data.get("hot_entries", 50)),
            fetch_timeout_sec=float(data.get("fetch_timeout_sec", 10.0)),
            partitions=PartitionConfig(
                static=int(part_data.get("static", PartitionConfig.static)),
                images=int(part_data.get("images", PartitionConfig.images)),
                api=int(part_data.get("api", PartitionConfig.api)),
                runtime=int(part_data.get("runtime", PartitionConfig.runtime)),
            ),
            api_prefix=data.get("api_prefix", "/api/"),
            static_prefix=data.get("static_prefix", "/assets/"),
            exclusions=tuple(data.get("exclusions", DEFAULT_EXCLUSIONS)),
            app_shell=tuple(data.get("app_shell", DEFAULT_APP_SHELL)),
            skip_waiting=bool(data.get("skip_waiting", True)),
            probe_path=data.get("probe_path", "/"),
            probe_ttl_sec=int(data.get("probe_ttl_sec", 15)),
            probe_interval_sec=int(data.get("probe_interval_sec", 30)),
            sweep_interval_sec=int(data.get("sweep_interval_sec", 300)),
            notifications=NotificationConfig(
                title=note_data.get("title", NotificationConfig.title),
                body=note_data.get("body", NotificationConfig.body),
                icon=note_data.get("icon", NotificationConfig.icon),
                badge=note_data.get("badge", NotificationConfig.badge),
                tag=note_data.get("tag", NotificationConfig.tag),
                views=dict(note_data.get("views", {}) or {}),
            ),
        )


ENV_MAP = {
    "origin": "OFFLINE_PROXY_ORIGIN",
    "listen_host": "OFFLINE_PROXY_HOST",
    "listen_port": "OFFLINE_PROXY_PORT",
    "generation": "OFFLINE_PROXY_GENERATION",
    "cache_db_path": "OFFLINE_PROXY_CACHE_DB",
    "queue_db_path": "OFFLINE_PROXY_QUEUE_DB",
    "quota_bytes": "OFFLINE_PROXY_QUOTA_BYTES",
    "fetch_timeout_sec": "OFFLINE_PROXY_FETCH_TIMEOUT",
    "skip_waiting": "OFFLINE_PROXY_SKIP_WAITING",
    "partitions.static": "OFFLINE_PROXY_MAX_AGE_STATIC",
    "partitions.images": "OFFLINE_PROXY_MAX_AGE_IMAGES",
    "partitions.api": "OFFLINE_PROXY_MAX_AGE_API",
    "partitions.runtime": "OFFLINE_PROXY_MAX_AGE_RUNTIME",
}

INT_KEYS = {"listen_port", "quota_bytes", "static", "images", "api", "runtime"}


def load_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def merge_env_overrides(config_data: Dict[str, Any]) -> Dict[str, Any]:
    merged = json.loads(json.dumps(config_data))  # deep copy via json

    for dotted_key, env_name in ENV_MAP.items():
        if env_name not in os.environ:
            continue
        value: Any = os.environ[env_name]
        target = merged
        parts = dotted_key.split(".")
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        last = parts[-1]
        if last in INT_KEYS:
            value = int(value)
        elif last == "fetch_timeout_sec":
            value = float(value)
        elif last == "skip_waiting":
            value = value.strip().lower() in {"1", "true", "yes", "on"}
        target[last] = value

    return merged


def load_config(config_path: str | Path = "config/proxy.defaults.yml") -> ProxyConfig:
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    data = load_yaml(path)
    data = merge_env_overrides(data)
    return ProxyConfig.from_dict(data)
