from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from loguru import logger

from scan_gateway.config import settings
from scan_gateway.errors import GatewayError
from scan_gateway.init_db import init_database
from scan_gateway.api.v1 import admin, health, quota


# Lifespan context manager for startup and shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"Starting {settings.APP_NAME}...")
    logger.info(f"Initializing database at {settings.DATABASE_URL}")
    init_database()
    logger.info("Database initialized successfully")

    from scan_gateway.scheduler import scheduler_service
    if settings.SCHEDULER_ENABLED:
        logger.info("Initializing scheduler...")
        scheduler_service.initialize()
        scheduler_service.start()
    else:
        logger.info("Scheduler disabled, maintenance jobs will not run")

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}...")
    scheduler_service.shutdown()


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="AI response cache, scan quotas and admin cache control",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    """Render every gateway error as {success, error, code}"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "code": exc.code}
    )


# Include routers
app.include_router(health.router, prefix="/api/v1")
app.include_router(quota.router, prefix="/api/v1")
app.include_router(admin.router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "docs": "/docs",
        "health": "/api/v1/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "scan_gateway.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
