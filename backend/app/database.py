"""
Database connection - MongoDB async (Motor).
"""

from motor.motor_asyncio import AsyncIOMotorClient

from app.config import MONGO_URL, DB_NAME, logger

# Async client (used by all app queries)
client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]


async def ensure_indexes(database=None):
    """Create the indexes the progress subsystem relies on."""
    database = database if database is not None else db
    # One aggregate per user; racing upserts for a new user collide here instead of duplicating
    await database.user_progress.create_index("user_id", unique=True)
    await database.tests.create_index("test_id", unique=True)
    await database.tests.create_index("group_id")
    await database.submissions.create_index([("student_id", 1), ("status", 1)])
    logger.info("MongoDB indexes ensured")
