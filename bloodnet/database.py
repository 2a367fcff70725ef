from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from .config import MONGO_URL, DB_NAME

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]


def get_database() -> AsyncIOMotorDatabase:
    """FastAPI dependency returning the active database handle."""
    return db
