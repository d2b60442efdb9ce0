import logging

from fastapi import APIRouter

from edgeflow.config.route import router as config_router
from edgeflow.proxy.route import router as proxy_router
from edgeflow.vars import PROXY_BASE_PATH

router = APIRouter()

logger = logging.getLogger("uvicorn.error")

if PROXY_BASE_PATH:
    router.prefix = PROXY_BASE_PATH
    logger.info(f"Using PROXY_BASE_PATH: {PROXY_BASE_PATH}")
else:
    logger.info("No PROXY_BASE_PATH set, using root path")

router.include_router(proxy_router)
router.include_router(config_router)
