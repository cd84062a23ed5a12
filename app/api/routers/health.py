from fastapi import APIRouter
from ...db import db_health
from ...redis_client import redis_health
from ...config import get_settings

router = APIRouter(prefix="/health", tags=["health"])
S = get_settings()

@router.get("")
async def health():
    db_ok, redis_ok = await db_health(), await redis_health()
    # redis only counts when it backs the OTP registry
    status = "ok" if (db_ok and redis_ok is not False) else "degraded"
    return {
        "status": status,
        "otp_backend": S.OTP_BACKEND,
        "dependencies": {
            "database": db_ok,
            "redis": redis_ok,
        },
    }

@router.get("/readiness")
async def readiness():
    db_ok, redis_ok = await db_health(), await redis_health()
    return {"ready": bool(db_ok and redis_ok is not False), "database": db_ok, "redis": redis_ok}

@router.get("/liveness")
async def liveness():
    return {"alive": True}
