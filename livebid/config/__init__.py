"""Configuration helpers for the bid broker."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml

_DEFAULT_SERVER_CONFIG = Path(__file__).resolve().parent / "server.yaml"
_DEFAULT_IDENTITIES = Path(__file__).resolve().parent / "identities.yaml"


@dataclass(frozen=True)
class AuthConfig:
    issuer_public_key: str
    token_max_age_seconds: int
    max_clock_skew_ms: int


@dataclass(frozen=True)
class StoreConfig:
    backend: str
    options: Mapping[str, Any]


@dataclass(frozen=True)
class BiddingConfig:
    allow_self_outbid: bool
    default_currency: str


@dataclass(frozen=True)
class SchedulerConfig:
    sweep_interval_ms: int
    max_extensions: int | None


@dataclass(frozen=True)
class FanoutConfig:
    send_timeout_ms: int


@dataclass(frozen=True)
class ServerConfig:
    listen: Mapping[str, Any]
    auth: AuthConfig
    store: StoreConfig
    bidding: BiddingConfig
    scheduler: SchedulerConfig
    fanout: FanoutConfig


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)
    return yaml.safe_load(path.read_text()) or {}


def _issuer_key(auth: Mapping[str, Any], base: Path) -> str:
    inline = auth.get("issuer_public_key") or ""
    if inline:
        return str(inline)
    key_path = auth.get("issuer_public_key_path")
    if not key_path:
        return ""
    path = Path(key_path)
    if not path.is_absolute():
        path = base / path
    return path.read_text()


def load_server_config(path: Path) -> ServerConfig:
    data = _load_yaml(path)
    auth = data.get("auth", {})
    store = data.get("store", {})
    bidding = data.get("bidding", {})
    scheduler = data.get("scheduler", {})
    fanout = data.get("fanout", {})
    max_extensions = scheduler.get("max_extensions")
    return ServerConfig(
        listen=data.get("listen", {}),
        auth=AuthConfig(
            issuer_public_key=_issuer_key(auth, path.parent),
            token_max_age_seconds=int(auth.get("token_max_age_seconds", 3600)),
            max_clock_skew_ms=int(auth.get("max_clock_skew_ms", 500)),
        ),
        store=StoreConfig(
            backend=str(store.get("backend", "in_memory")),
            options=dict(store.get("options") or {}),
        ),
        bidding=BiddingConfig(
            allow_self_outbid=bool(bidding.get("allow_self_outbid", False)),
            default_currency=str(bidding.get("default_currency", "EUR")).upper(),
        ),
        scheduler=SchedulerConfig(
            sweep_interval_ms=int(scheduler.get("sweep_interval_ms", 1000)),
            max_extensions=int(max_extensions) if max_extensions is not None else None,
        ),
        fanout=FanoutConfig(
            send_timeout_ms=int(fanout.get("send_timeout_ms", 2000)),
        ),
    )


@lru_cache(maxsize=1)
def get_server_config() -> ServerConfig:
    return load_server_config(Path(os.getenv("LIVEBID_CONFIG_PATH", _DEFAULT_SERVER_CONFIG)))


def get_identities_path() -> Path:
    return Path(os.getenv("LIVEBID_IDENTITIES_PATH", _DEFAULT_IDENTITIES))
