"""
Foxy Ground Station - FastAPI Application

Serves the operator dashboard API: telemetry tail, fleet roster, active
control, discovery/pairing, camera streams and managed upgrade.
"""
import logging
import sys
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from groundstation.config import get_settings
from groundstation.database import get_telemetry_db
from groundstation.errors import InputInvalidError, ServiceError
from groundstation.routes import auth, cameras, discovery, drones, mediamtx, profiles, telemetry, upgrade

settings = get_settings()

logging.basicConfig(stream=sys.stdout, level=settings.log_level.upper(), format="%(message)s")

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown."""
    logger.info(
        "Starting Foxy Ground Station",
        version=settings.app_version,
        db_path=settings.telemetry_db_path,
        scripts_path=settings.scripts_path,
        mediamtx_path=settings.mediamtx_path,
        cors_origin=settings.cors_origin,
    )
    db = get_telemetry_db()
    if not await db.connect():
        # Not fatal: requests retry the open lazily
        logger.warning("Telemetry database unavailable at startup", path=settings.telemetry_db_path)

    yield

    logger.info("Shutting down Foxy Ground Station")
    await db.close()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Ground station backend for the Foxy drone fleet",
    lifespan=lifespan,
)

# CORS middleware: the dashboard is served from a single known origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.cors_origin],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Passkey"],
)

# Include routers
app.include_router(telemetry.router)
app.include_router(drones.router)
app.include_router(profiles.router)
app.include_router(discovery.router)
app.include_router(cameras.router)
app.include_router(mediamtx.router)
app.include_router(auth.router)
app.include_router(upgrade.router)


@app.get("/api/health")
async def health_check():
    """Service and database status."""
    current = get_settings()
    db = get_telemetry_db()
    connected = db.is_connected or await db.connect()
    return {
        "status": "ok",
        "version": current.app_version,
        "dbConnected": connected,
        "dbPath": current.telemetry_db_path,
        "scriptsPath": current.scripts_path,
        "mediamtxPath": current.mediamtx_path,
    }


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, kind=exc.kind, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content=InputInvalidError(message).to_body())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler to prevent internal detail leakage."""
    logger.exception("Unhandled exception", path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error"},
    )


def run():
    import uvicorn
    uvicorn.run(
        "groundstation.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
