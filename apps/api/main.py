from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
import logging
from contextlib import asynccontextmanager

from config import settings
from database import connect_to_mongo, close_mongo_connection, ping_database
from routers.content import router as content_router
from routers.course import router as course_router

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Container mode: {settings.is_container()}")
    logger.info(f"LLM providers configured: {settings.available_providers() or 'none'}")

    # Connect to MongoDB
    db_connected = await connect_to_mongo()
    if not db_connected:
        logger.warning(
            "Failed to connect to MongoDB - course storage will not work")

    yield

    # Shutdown
    await close_mongo_connection()
    logger.info("Application shutdown complete")

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Turns source material into multi-module courses",
    lifespan=lifespan
)

logger.info(f"Configuring CORS with origins: {settings.cors_origins_list}")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
    expose_headers=["*"],
)


@app.get("/")
async def root():
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "status": "running"
    }


@app.get("/api/health/")
async def basic_health():
    return {
        "status": "healthy",
        "message": "Course Creator API is running",
        "version": settings.app_version,
        "database": (await ping_database())["status"],
        "providers": settings.available_providers()
    }


app.include_router(content_router, prefix="/api", tags=["content"])
app.include_router(course_router, prefix="/api", tags=["courses"])


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level="info"
    )
