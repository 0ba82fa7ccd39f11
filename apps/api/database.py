from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from typing import Any, Dict, Optional
import logging
from config import settings

logger = logging.getLogger(__name__)

# Milliseconds; a missing MongoDB must not stall startup
MONGO_TIMEOUT_MS = 5000


class CourseStore:
    """Motor client and database backing the Course documents"""
    client: Optional[AsyncIOMotorClient] = None
    database: Optional[AsyncIOMotorDatabase] = None


db = CourseStore()


async def connect_to_mongo(mongodb_url: Optional[str] = None, database_name: Optional[str] = None) -> bool:
    """
    Connect to MongoDB and register the Course document with Beanie.

    Returns False instead of raising so the stateless endpoints keep working
    without a database.
    """
    url = mongodb_url or settings.mongodb_url
    name = database_name or settings.database_name
    client = AsyncIOMotorClient(
        url,
        serverSelectionTimeoutMS=MONGO_TIMEOUT_MS,
        connectTimeoutMS=MONGO_TIMEOUT_MS,
        socketTimeoutMS=MONGO_TIMEOUT_MS,
    )

    try:
        await client.admin.command("ping")
        logger.info(f"Connected to MongoDB, using database '{name}'")

        from models.course import Course
        await init_beanie(database=client[name], document_models=[Course])
        logger.info("Course store initialized")
    except Exception as e:
        logger.error(f"Failed to connect to MongoDB: {e}")
        client.close()
        return False

    db.client = client
    db.database = client[name]
    return True


async def close_mongo_connection():
    if db.client:
        db.client.close()
        logger.info("Disconnected from MongoDB")
    db.client = None
    db.database = None


def is_connected() -> bool:
    """Whether course storage is usable"""
    return db.database is not None


async def ping_database() -> Dict[str, Any]:
    """Health check for the course store"""
    if not db.client:
        return {"status": "disconnected", "error": "No client"}

    try:
        await db.client.admin.command("ping")
    except Exception as e:
        logger.warning(f"MongoDB ping failed: {e}")
        return {"status": "error", "error": str(e)}

    from models.course import Course
    return {
        "status": "connected",
        "database": db.database.name,
        "courses": await Course.count(),
    }
