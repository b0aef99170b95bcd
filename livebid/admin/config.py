"""Expose currently loaded server config for debugging."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from ..config import ServerConfig

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_config(request: Request) -> ServerConfig:
    return request.app.state.server_config


@router.get("/config")
async def config(
    request: Request,
    config: ServerConfig = Depends(_get_config),
) -> dict:
    return {
        "version": request.app.version,
        "storage_backend": config.store.backend,
        "issuer_key_configured": bool(config.auth.issuer_public_key),
        "token_max_age_seconds": config.auth.token_max_age_seconds,
        "max_clock_skew_ms": config.auth.max_clock_skew_ms,
        "allow_self_outbid": config.bidding.allow_self_outbid,
        "default_currency": config.bidding.default_currency,
        "sweep_interval_ms": config.scheduler.sweep_interval_ms,
        "max_extensions": config.scheduler.max_extensions,
        "send_timeout_ms": config.fanout.send_timeout_ms,
    }
