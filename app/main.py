import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.core import config
from app.core.database import engine, get_db, SessionLocal
from app.core.exceptions import AppError
from app.models import Base
from app.services.auth_service import AuthService
from .routers import (
    auth_router, appointments_router, admin_router, users_router, profile_router,
    locations_router, line_router
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)


async def otp_cleanup_loop(interval: int):
    while True:
        await asyncio.sleep(interval)
        await asyncio.to_thread(AuthService.run_otp_cleanup, SessionLocal)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)

    cleanup_task = None
    if config.OTP_CLEANUP_ENABLED:
        cleanup_task = asyncio.create_task(otp_cleanup_loop(config.OTP_CLEANUP_INTERVAL_SECONDS))
        logger.info("OTP cleanup scheduled every %s seconds", config.OTP_CLEANUP_INTERVAL_SECONDS)

    yield

    if cleanup_task:
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            pass


app = FastAPI(title="Hospital Shuttle Booking API", version="1.0.0", lifespan=lifespan)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "detail": exc.message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "detail": "Internal server error"})


# Include routers
app.include_router(auth_router.router, tags=["auth"])
app.include_router(users_router.router, prefix="/users", tags=["users"])
app.include_router(profile_router.router, prefix="/profile", tags=["profile"])
app.include_router(appointments_router.router, prefix="/appointments", tags=["appointments"])
app.include_router(admin_router.router, prefix="/admin", tags=["admin"])
app.include_router(locations_router.router, prefix="/locations", tags=["locations"])
app.include_router(line_router.router, prefix="/api/line", tags=["line"])


@app.get("/health")
async def health():
    return {
        "success": True,
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "message": "Server is running"
    }

@app.get("/health/detailed")
def health_detailed(db: Session = Depends(get_db)):
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Health check failed: %s", e)
        return JSONResponse(
            status_code=500,
            content={"success": False, "status": "unhealthy", "timestamp": timestamp, "error": "database unavailable"}
        )

    return {
        "success": True,
        "status": "healthy",
        "timestamp": timestamp,
        "services": {
            "database": "connected",
            "api": "running",
            "email": "smtp_configured" if config.SMTP_USERNAME and config.SMTP_PASSWORD else "not_configured",
            "line": "configured" if config.LINE_MESSAGING_ACCESS_TOKEN else "not_configured"
        }
    }

@app.get("/health/email")
async def health_email():
    if not config.SMTP_USERNAME or not config.SMTP_PASSWORD:
        return {"success": False, "status": "not_configured", "message": "SMTP credentials not configured"}
    return {
        "success": True,
        "status": "configured",
        "message": "SMTP is configured",
        "server": f"{config.SMTP_SERVER}:{config.SMTP_PORT}"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
