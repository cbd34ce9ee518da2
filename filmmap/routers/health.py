import asyncio
import logging
from fastapi import APIRouter, Request
from filmmap.db.session import ping

router = APIRouter(prefix="/health", tags=["Health"])
logger = logging.getLogger(__name__)


@router.get("")
async def health(request: Request):
    status = {"database": False, "asset_store": False, "status": "fail"}

    # DB
    status["database"] = await asyncio.to_thread(ping)

    # Almacen de imagenes
    status["asset_store"] = await asyncio.to_thread(request.app.state.assets.healthy)
    if not status["asset_store"]:
        logger.error("Asset store no responde")

    status["status"] = "ok" if status["database"] and status["asset_store"] else "fail"
    return status
