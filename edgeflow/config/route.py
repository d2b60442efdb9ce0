import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from edgeflow.activity import ActivitySink
from edgeflow.config.models import ProxyConfig
from edgeflow.config.provider import ConfigError, ConfigProvider, parse_config
from edgeflow.dependencies import get_activity_sink, get_config_provider
from edgeflow.utils.exception_logging import log_exception_with_details

router = APIRouter(prefix="/api")
logger = logging.getLogger("uvicorn.error")


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_aliases(updates: dict) -> dict:
    """Accept both snake_case field names and the stored camelCase keys."""
    aliases = {
        name: info.alias
        for name, info in ProxyConfig.model_fields.items()
        if info.alias
    }
    return {aliases.get(key, key): value for key, value in updates.items()}


@router.get("/config")
async def get_config(provider: ConfigProvider = Depends(get_config_provider)):
    config = provider.resolve()
    return {"success": True, "config": config.to_payload(), "timestamp": _timestamp()}


@router.post("/config")
async def update_config(
    request: Request,
    provider: ConfigProvider = Depends(get_config_provider),
    activity: ActivitySink = Depends(get_activity_sink),
):
    try:
        updates = await request.json()
    except ValueError:
        updates = None
    if not isinstance(updates, dict):
        return JSONResponse({"error": "Invalid configuration data"}, status_code=400)

    merged = {**provider.resolve().to_payload(), **_to_aliases(updates)}
    try:
        new_config = parse_config(merged)
    except ConfigError as e:
        logger.warning(f"[Config] Rejected configuration update: {e}")
        return JSONResponse({"error": "Invalid configuration structure"}, status_code=400)

    store = provider.writable_store()
    if store is None:
        return JSONResponse(
            {"error": "No writable configuration store"}, status_code=503
        )
    try:
        store.save(new_config)
    except Exception as e:
        log_exception_with_details(logger, "[Config]", e)
        return JSONResponse({"error": "Failed to update configuration"}, status_code=500)

    activity.record(
        "info", "Configuration updated", {"admin": True, "changes": sorted(updates)}
    )
    return {
        "success": True,
        "config": new_config.to_payload(),
        "timestamp": _timestamp(),
    }
