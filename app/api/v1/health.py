import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import events_redis
from app.core.database import get_session
from app.core.events import get_backend_info

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    status: Literal["ok", "error"] = Field(..., description="The status of the health check")
    database: Literal["ok", "error"]
    events: Literal["ok", "unavailable"] = Field(
        ..., description="Redis indisponible: les événements sont ignorés, le service reste opérationnel"
    )
    events_backend: str


@router.get("/health", tags=["health"], response_model=HealthResponse)
async def health(db: AsyncSession = Depends(get_session)):
    try:
        result = await db.execute(select(text("1")))
        result.scalar_one()
    except Exception as e:
        logger.error(f"Error checking health: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to check health: {e!s}") from None

    events = "unavailable"
    if events_redis.redis_client is not None:
        try:
            await events_redis.redis_client.ping()
            events = "ok"
        except Exception as e:
            logger.warning(f"Redis indisponible pour le health check: {e}")

    return HealthResponse(
        status="ok",
        database="ok",
        events=events,
        events_backend=get_backend_info()["version"],
    )
