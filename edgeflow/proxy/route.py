import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from edgeflow.dependencies import get_proxy_service
from edgeflow.proxy.errors import ErrorCode, ProxyError
from edgeflow.proxy.models import ProxyRequest
from edgeflow.proxy.service import ProxyService

router = APIRouter(prefix="/api")
logger = logging.getLogger("uvicorn.error")


def error_response(error: ProxyError) -> JSONResponse:
    return JSONResponse(error.to_payload(), status_code=error.status)


def parse_proxy_request(payload: Any) -> ProxyRequest:
    if not isinstance(payload, dict):
        raise ProxyError(ErrorCode.INVALID_INPUT, "Malformed request body")
    if not payload.get("url"):
        raise ProxyError(ErrorCode.INVALID_INPUT, "URL is required")
    try:
        return ProxyRequest.model_validate(payload)
    except ValidationError as e:
        logger.debug(f"[Proxy] Rejected request body: {e}")
        raise ProxyError(ErrorCode.INVALID_INPUT, "Malformed request body")


async def run_proxy(payload: Any, service: ProxyService) -> JSONResponse:
    try:
        proxy_request = parse_proxy_request(payload)
        response = await service.handle(proxy_request)
    except ProxyError as e:
        return error_response(e)
    return JSONResponse(response.to_payload())


@router.post("/proxy")
async def proxy_post(
    request: Request, service: ProxyService = Depends(get_proxy_service)
):
    """Proxy the request described by the JSON body."""
    try:
        payload = await request.json()
    except ValueError:
        return error_response(
            ProxyError(ErrorCode.INVALID_INPUT, "Malformed request body")
        )
    return await run_proxy(payload, service)


@router.get("/proxy")
async def proxy_get(
    url: Optional[str] = Query(None, description="Absolute URL to fetch"),
    service: ProxyService = Depends(get_proxy_service),
):
    """Direct access: same as POSTing ``{"url": url}``."""
    if not url:
        return error_response(
            ProxyError(ErrorCode.INVALID_INPUT, "URL parameter is required")
        )
    return await run_proxy({"url": url}, service)
