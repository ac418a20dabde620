import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from chatrooms.db.database import get_db, ping

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def get_health(db: AsyncSession = Depends(get_db)):
    try:
        await ping(db)
    except (SQLAlchemyError, OSError) as e:
        logger.error("Health check failed: %s", e)
        return JSONResponse(status_code=503, content={"status": "Unhealthy", "error": str(e)})
    return {"status": "Healthy"}
