from fastapi import FastAPI
from pmpulse.core.config import settings
from pmpulse.core.logging import LoggingMiddleware, setup_logging
from pmpulse.routers import sync_router
import logging

# Setup logging
setup_logging(
    environment=settings.ENVIRONMENT,
    log_level=settings.LOG_LEVEL,
    log_file=settings.LOG_FILE_PATH,
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="AppFolio ingestion and sync service",
    debug=settings.DEBUG
)

app.add_middleware(LoggingMiddleware)

# Include routers
app.include_router(sync_router, prefix=settings.API_V1_STR)


@app.get("/")
async def root():
    return {"message": f"{settings.APP_NAME} is running!", "version": settings.APP_VERSION}


@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": settings.APP_VERSION}
